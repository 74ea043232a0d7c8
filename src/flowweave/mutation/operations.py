"""Pure operations on ``WorkflowAST`` values.

Every operation returns a new AST and leaves its argument untouched. Node
types are not checked when instances are added; the validator reports an
unknown type, so a graph can be edited while it is temporarily invalid.
"""

import logging
from typing import Any, Optional, Union

from flowweave.core.ast_models import Connection, InstanceConfig, NodeInstance, ParentRef, PortRef, WorkflowAST
from flowweave.core.exceptions import MutationError
from flowweave.core.port_types import RESERVED_NODE_IDS

logger = logging.getLogger(__name__)

PortLike = Union[str, PortRef]


def parse_port_ref(text: PortLike) -> PortRef:
    """Parse ``node.port`` or ``node.port:scope`` into a ``PortRef``.

    Examples:
        >>> parse_port_ref("loop.item:body")
        PortRef(node='loop', port='item', scope='body')
    """
    if isinstance(text, PortRef):
        return text
    endpoint, _, scope = text.partition(":")
    node, dot, port = endpoint.partition(".")
    if not dot or not node or not port:
        raise MutationError("parse port reference", f"'{text}' is not of the form node.port[:scope]")
    return PortRef(node=node.strip(), port=port.strip(), scope=scope.strip() or None)


def _assert_exists(ast: WorkflowAST, node_id: str, operation: str) -> NodeInstance:
    instance = ast.get_instance(node_id)
    if instance is None:
        raise MutationError(operation, f"node '{node_id}' does not exist")
    return instance


def _assert_free(ast: WorkflowAST, node_id: str, operation: str) -> None:
    if node_id in RESERVED_NODE_IDS:
        raise MutationError(operation, f"'{node_id}' is a reserved node id")
    if ast.get_instance(node_id) is not None:
        raise MutationError(operation, f"node '{node_id}' already exists")


def _replace_instance(ast: WorkflowAST, updated: NodeInstance) -> WorkflowAST:
    instances = [updated if i.id == updated.id else i for i in ast.instances]
    return ast.model_copy(update={"instances": instances})


# --- nodes ---------------------------------------------------------------------


def add_node(
    ast: WorkflowAST,
    node_id: str,
    node_type: str,
    parent: Optional[tuple[str, str]] = None,
    config: Optional[InstanceConfig] = None,
) -> WorkflowAST:
    """Add an instance of ``node_type``, optionally inside ``(owner, scope)``."""
    _assert_free(ast, node_id, "add_node")
    instance = NodeInstance(
        id=node_id,
        node_type=node_type,
        config=config or InstanceConfig(),
        parent=ParentRef(instance_id=parent[0], scope_name=parent[1]) if parent else None,
    )
    return ast.model_copy(update={"instances": [*ast.instances, instance]})


def _descendants(ast: WorkflowAST, node_id: str) -> list[str]:
    found: list[str] = []
    pending = [node_id]
    while pending:
        current = pending.pop()
        for instance in ast.instances:
            if instance.parent is not None and instance.parent.instance_id == current and instance.id not in found:
                found.append(instance.id)
                pending.append(instance.id)
    return found


def remove_node(ast: WorkflowAST, node_id: str, remove_children: bool = True) -> WorkflowAST:
    """Remove an instance and every connection touching it.

    With ``remove_children`` the nodes placed in its scopes go too; otherwise
    they are moved to the removed node's own layer.
    """
    instance = _assert_exists(ast, node_id, "remove_node")
    removed = {node_id}
    instances = []
    if remove_children:
        removed.update(_descendants(ast, node_id))
        instances = [i for i in ast.instances if i.id not in removed]
    else:
        for i in ast.instances:
            if i.id == node_id:
                continue
            if i.parent is not None and i.parent.instance_id == node_id:
                i = i.model_copy(update={"parent": instance.parent})
            instances.append(i)

    connections = [c for c in ast.connections if c.source.node not in removed and c.target.node not in removed]
    logger.debug(
        f"Removed {', '.join(sorted(removed))} and {len(ast.connections) - len(connections)} connections",
        extra={"phase": "mutate"},
    )
    return ast.model_copy(update={"instances": instances, "connections": connections})


def _rename_ref(ref: PortRef, old: str, new: str) -> PortRef:
    return ref.model_copy(update={"node": new}) if ref.node == old else ref


def rename_node(ast: WorkflowAST, old_id: str, new_id: str) -> WorkflowAST:
    """Rename an instance, updating connections and the parents of its children."""
    instance = _assert_exists(ast, old_id, "rename_node")
    _assert_free(ast, new_id, "rename_node")

    instances = []
    for i in ast.instances:
        if i.id == old_id:
            i = instance.model_copy(update={"id": new_id})
        if i.parent is not None and i.parent.instance_id == old_id:
            i = i.model_copy(update={"parent": i.parent.model_copy(update={"instance_id": new_id})})
        instances.append(i)

    connections = [
        Connection(source=_rename_ref(c.source, old_id, new_id), target=_rename_ref(c.target, old_id, new_id))
        for c in ast.connections
    ]
    return ast.model_copy(update={"instances": instances, "connections": connections})


def update_node_config(ast: WorkflowAST, node_id: str, **updates: Any) -> WorkflowAST:
    """Update ``InstanceConfig`` fields of one instance, e.g. ``label="Fetch"``."""
    instance = _assert_exists(ast, node_id, "update_node_config")
    unknown = [key for key in updates if key not in InstanceConfig.model_fields]
    if unknown:
        raise MutationError("update_node_config", f"unknown config fields: {', '.join(unknown)}")
    config = instance.config.model_copy(update=updates)
    return _replace_instance(ast, instance.model_copy(update={"config": config}))


def set_node_position(ast: WorkflowAST, node_id: str, x: float, y: float) -> WorkflowAST:
    return update_node_config(ast, node_id, x=x, y=y)


def set_port_expression(ast: WorkflowAST, node_id: str, port: str, expression: Optional[str]) -> WorkflowAST:
    """Set (or with ``None`` clear) a constant expression for one input port."""
    instance = _assert_exists(ast, node_id, "set_port_expression")
    expressions = dict(instance.config.port_expressions)
    if expression is None:
        expressions.pop(port, None)
    else:
        expressions[port] = expression
    return update_node_config(ast, node_id, port_expressions=expressions)


# --- scopes --------------------------------------------------------------------


def move_to_scope(ast: WorkflowAST, node_id: str, owner_id: str, scope_name: str) -> WorkflowAST:
    """Place an instance inside ``owner_id``'s scope ``scope_name``."""
    instance = _assert_exists(ast, node_id, "move_to_scope")
    owner = _assert_exists(ast, owner_id, "move_to_scope")
    if owner_id == node_id or owner_id in _descendants(ast, node_id):
        raise MutationError("move_to_scope", f"'{node_id}' cannot be placed inside its own scope tree")
    owner_type = ast.node_types.get(owner.node_type)
    if owner_type is not None and scope_name not in owner_type.scopes:
        raise MutationError("move_to_scope", f"'{owner_id}' ({owner_type.name}) has no scope '{scope_name}'")
    parent = ParentRef(instance_id=owner_id, scope_name=scope_name)
    return _replace_instance(ast, instance.model_copy(update={"parent": parent}))


def remove_from_scope(ast: WorkflowAST, node_id: str) -> WorkflowAST:
    """Move an instance out to the workflow root."""
    instance = _assert_exists(ast, node_id, "remove_from_scope")
    if instance.parent is None:
        raise MutationError("remove_from_scope", f"node '{node_id}' is not inside a scope")
    return _replace_instance(ast, instance.model_copy(update={"parent": None}))


# --- connections ---------------------------------------------------------------


def _find_connection(ast: WorkflowAST, source: PortRef, target: PortRef) -> Optional[int]:
    for index, connection in enumerate(ast.connections):
        if connection.source == source and connection.target == target:
            return index
    return None


def add_connection(ast: WorkflowAST, source: PortLike, target: PortLike) -> WorkflowAST:
    source_ref, target_ref = parse_port_ref(source), parse_port_ref(target)
    if _find_connection(ast, source_ref, target_ref) is not None:
        raise MutationError("add_connection", f"connection already exists: {source_ref} -> {target_ref}")
    connection = Connection(source=source_ref, target=target_ref)
    return ast.model_copy(update={"connections": [*ast.connections, connection]})


def remove_connection(ast: WorkflowAST, source: PortLike, target: PortLike) -> WorkflowAST:
    source_ref, target_ref = parse_port_ref(source), parse_port_ref(target)
    index = _find_connection(ast, source_ref, target_ref)
    if index is None:
        raise MutationError("remove_connection", f"connection not found: {source_ref} -> {target_ref}")
    connections = [c for i, c in enumerate(ast.connections) if i != index]
    return ast.model_copy(update={"connections": connections})


def remove_all_connections(ast: WorkflowAST, node_id: str, port: Optional[str] = None) -> WorkflowAST:
    """Remove every connection touching ``node_id`` (or only its port ``port``)."""

    def touches(ref: PortRef) -> bool:
        return ref.node == node_id and (port is None or ref.port == port)

    connections = [c for c in ast.connections if not touches(c.source) and not touches(c.target)]
    return ast.model_copy(update={"connections": connections})


def reconnect(ast: WorkflowAST, source: PortLike, old_target: PortLike, new_target: PortLike) -> WorkflowAST:
    """Point an existing connection at a different target, keeping its position."""
    source_ref, old_ref, new_ref = parse_port_ref(source), parse_port_ref(old_target), parse_port_ref(new_target)
    index = _find_connection(ast, source_ref, old_ref)
    if index is None:
        raise MutationError("reconnect", f"connection not found: {source_ref} -> {old_ref}")
    connections = list(ast.connections)
    connections[index] = Connection(source=source_ref, target=new_ref)
    return ast.model_copy(update={"connections": connections})
