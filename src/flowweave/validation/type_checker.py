"""Type compatibility checks for connections."""

from typing import Optional

from flowweave.core import error_codes
from flowweave.core.ast_models import Connection, PortDefinition
from flowweave.core.port_types import PortType, is_type_compatible
from flowweave.core.validation_result import ValidationIssue


def describe_type(port: PortDefinition) -> str:
    """Render a port type for messages, e.g. ``NUMBER (float)``."""
    if port.py_type and port.data_type != PortType.STEP:
        return f"{port.data_type.value} ({port.py_type})"
    return port.data_type.value


def check_connection_types(
    connection: Connection,
    source_port: PortDefinition,
    target_port: PortDefinition,
    strict: bool = False,
    scoped: bool = False,
) -> Optional[ValidationIssue]:
    """Return the issue a connection's endpoint types produce, if any.

    STEP ports only connect to STEP ports (or to ports the compatibility matrix
    lets through, i.e. BOOLEAN and ANY). Incompatible data types are a warning,
    an error in strict mode, and a scope warning on scoped connections.
    """
    source_type = source_port.data_type
    target_type = target_port.data_type

    if (source_type == PortType.STEP) != (target_type == PortType.STEP):
        if is_type_compatible(source_type, target_type):
            return None
        if source_type == PortType.STEP:
            message = (
                f"STEP port '{connection.source}' cannot connect to non-STEP port "
                f"'{connection.target}' ({describe_type(target_port)})"
            )
        else:
            message = (
                f"Non-STEP port '{connection.source}' ({describe_type(source_port)}) cannot connect to "
                f"STEP port '{connection.target}'"
            )
        return ValidationIssue.create(
            error_codes.STEP_PORT_TYPE_MISMATCH, message, node=connection.target.node, port=connection.target.port
        )

    if is_type_compatible(source_type, target_type):
        return None

    detail = (
        f"'{connection.source}' outputs {describe_type(source_port)} but "
        f"'{connection.target}' expects {describe_type(target_port)}"
    )
    if scoped:
        scope = connection.source.scope or connection.target.scope
        where = f" in scope '{scope}'" if scope else ""
        return ValidationIssue.create(
            error_codes.SCOPE_PORT_TYPE_MISMATCH,
            f"Type mismatch{where}: {detail}",
            node=connection.target.node,
            port=connection.target.port,
        )
    if strict:
        return ValidationIssue.create(
            error_codes.TYPE_INCOMPATIBLE,
            f"Incompatible types: {detail}",
            node=connection.target.node,
            port=connection.target.port,
        )
    return ValidationIssue.create(
        error_codes.TYPE_MISMATCH,
        f"Type mismatch: {detail}",
        node=connection.target.node,
        port=connection.target.port,
    )
