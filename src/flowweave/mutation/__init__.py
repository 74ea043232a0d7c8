"""Pure AST edits and locked read-modify-write of workflow files."""

from .file_ops import PathLockRegistry, mutate_workflow_file
from .operations import (
    add_connection,
    add_node,
    move_to_scope,
    parse_port_ref,
    reconnect,
    remove_all_connections,
    remove_connection,
    remove_from_scope,
    remove_node,
    rename_node,
    set_node_position,
    set_port_expression,
    update_node_config,
)

__all__ = [
    "PathLockRegistry",
    "add_connection",
    "add_node",
    "move_to_scope",
    "mutate_workflow_file",
    "parse_port_ref",
    "reconnect",
    "remove_all_connections",
    "remove_connection",
    "remove_from_scope",
    "remove_node",
    "rename_node",
    "set_node_position",
    "set_port_expression",
    "update_node_config",
]
