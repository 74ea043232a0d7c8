"""Port type vocabulary and compatibility rules.

The vocabulary is closed: every port on a node type or on a workflow
boundary carries exactly one of these types. ``STEP`` is the boolean
control-flow type that drives whether a node fires.
"""

from enum import Enum


class PortType(str, Enum):
    """Data type of a port."""

    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    ARRAY = "ARRAY"
    OBJECT = "OBJECT"
    FUNCTION = "FUNCTION"
    STEP = "STEP"
    ANY = "ANY"


class ExecuteWhen(str, Enum):
    """Policy for combining incoming STEP signals at one node."""

    CONJUNCTION = "CONJUNCTION"
    DISJUNCTION = "DISJUNCTION"
    CUSTOM = "CUSTOM"


class Placement(str, Enum):
    TOP = "TOP"
    BOTTOM = "BOTTOM"


EXECUTE_PORT = "execute"
SUCCESS_PORT = "onSuccess"
FAILURE_PORT = "onFailure"

# Reserved control-flow vocabulary on node and workflow boundaries
CONTROL_PORTS = frozenset({EXECUTE_PORT, SUCCESS_PORT, FAILURE_PORT})

START_NODE = "Start"
EXIT_NODE = "Exit"
RESERVED_NODE_IDS = frozenset({START_NODE, EXIT_NODE})

# Type compatibility matrix
# source_type -> set of target types it can feed without a warning
TYPE_COMPATIBILITY_MATRIX: dict[PortType, frozenset[PortType]] = {
    PortType.STRING: frozenset({PortType.STRING}),
    PortType.NUMBER: frozenset({PortType.NUMBER, PortType.STRING}),  # numbers stringify
    PortType.BOOLEAN: frozenset({PortType.BOOLEAN, PortType.STEP, PortType.STRING}),
    PortType.ARRAY: frozenset({PortType.ARRAY}),
    PortType.OBJECT: frozenset({PortType.OBJECT}),
    PortType.FUNCTION: frozenset({PortType.FUNCTION}),
    PortType.STEP: frozenset({PortType.STEP, PortType.BOOLEAN}),
}


def is_type_compatible(source_type: PortType, target_type: PortType) -> bool:
    """Check if a value of ``source_type`` can flow into a ``target_type`` port.

    ANY on either side is always compatible.

    Examples:
        >>> is_type_compatible(PortType.NUMBER, PortType.STRING)
        True
        >>> is_type_compatible(PortType.STRING, PortType.NUMBER)
        False
    """
    if source_type == target_type:
        return True
    if PortType.ANY in (source_type, target_type):
        return True
    return target_type in TYPE_COMPATIBILITY_MATRIX.get(source_type, frozenset())


def is_control_port(name: str) -> bool:
    return name in CONTROL_PORTS
