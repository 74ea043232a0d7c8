"""Error-code taxonomy shared by the assembler and the validator.

Codes are plain strings so they serialize unchanged into the validation
result shape that editors and adapters consume.
"""

# Assembly errors
UNKNOWN_NODE_TYPE = "UNKNOWN_NODE_TYPE"
DUPLICATE_INSTANCE_ID = "DUPLICATE_INSTANCE_ID"
INFERRED_NODE_TYPE = "INFERRED_NODE_TYPE"

# Existence and direction
UNKNOWN_SOURCE_NODE = "UNKNOWN_SOURCE_NODE"
UNKNOWN_TARGET_NODE = "UNKNOWN_TARGET_NODE"
UNKNOWN_SOURCE_PORT = "UNKNOWN_SOURCE_PORT"
UNKNOWN_TARGET_PORT = "UNKNOWN_TARGET_PORT"
DUPLICATE_CONNECTION = "DUPLICATE_CONNECTION"

# Types
STEP_PORT_TYPE_MISMATCH = "STEP_PORT_TYPE_MISMATCH"
TYPE_MISMATCH = "TYPE_MISMATCH"
TYPE_INCOMPATIBLE = "TYPE_INCOMPATIBLE"

# Cardinality
MULTIPLE_CONNECTIONS_TO_INPUT = "MULTIPLE_CONNECTIONS_TO_INPUT"
MULTIPLE_EXIT_CONNECTIONS = "MULTIPLE_EXIT_CONNECTIONS"

MISSING_REQUIRED_INPUT = "MISSING_REQUIRED_INPUT"
CYCLE_DETECTED = "CYCLE_DETECTED"

# Scopes
SCOPE_UNKNOWN_PARENT = "SCOPE_UNKNOWN_PARENT"
SCOPE_WRONG_SCOPE_NAME = "SCOPE_WRONG_SCOPE_NAME"
SCOPE_UNKNOWN_PORT = "SCOPE_UNKNOWN_PORT"
SCOPE_CONNECTION_OUTSIDE = "SCOPE_CONNECTION_OUTSIDE"
SCOPE_MISSING_REQUIRED_INPUT = "SCOPE_MISSING_REQUIRED_INPUT"
SCOPE_EMPTY = "SCOPE_EMPTY"
SCOPE_ORPHANED_CHILD = "SCOPE_ORPHANED_CHILD"
SCOPE_UNUSED_INPUT = "SCOPE_UNUSED_INPUT"
SCOPE_PORT_TYPE_MISMATCH = "SCOPE_PORT_TYPE_MISMATCH"

# Reserved names
RESERVED_NODE_NAME = "RESERVED_NODE_NAME"
RESERVED_INSTANCE_ID = "RESERVED_INSTANCE_ID"

# Advisories
UNUSED_NODE = "UNUSED_NODE"
UNREACHABLE_EXIT_PORT = "UNREACHABLE_EXIT_PORT"
PORT_TYPE_FALLBACK = "PORT_TYPE_FALLBACK"
PARSE_WARNING = "PARSE_WARNING"

WARNING_CODES = frozenset({
    INFERRED_NODE_TYPE,
    TYPE_MISMATCH,
    MULTIPLE_EXIT_CONNECTIONS,
    SCOPE_EMPTY,
    SCOPE_ORPHANED_CHILD,
    SCOPE_UNUSED_INPUT,
    SCOPE_PORT_TYPE_MISMATCH,
    UNUSED_NODE,
    UNREACHABLE_EXIT_PORT,
    PORT_TYPE_FALLBACK,
    PARSE_WARNING,
})


def default_severity(code: str) -> str:
    """Return "warning" for advisory codes and "error" for everything else."""
    return "warning" if code in WARNING_CODES else "error"
