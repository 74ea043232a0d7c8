"""JSON Schema for the serialized workflow AST.

``WorkflowAST.to_dict()`` produces this shape and external tools (diffing,
migration, editors) exchange it. ``validate_ast_dict`` checks a dict against
the schema before it is rebuilt into a model.

Example usage:
    >>> from flowweave.core.ast_schema import validate_ast_dict
    >>> validate_ast_dict({
    ...     "name": "calculate",
    ...     "function_name": "calculate",
    ...     "instances": [{"id": "add", "node_type": "add_numbers"}],
    ...     "connections": [{"from": {"node": "Start", "port": "a"}, "to": {"node": "add", "port": "a"}}],
    ... })
"""

import json
from typing import Any, Union

import jsonschema
from jsonschema import Draft7Validator
from jsonschema import ValidationError as JsonSchemaValidationError

from flowweave.core.port_types import ExecuteWhen, PortType

IDENTIFIER_PATTERN = "^[A-Za-z_][A-Za-z0-9_]*$"

_PORT_REF_SCHEMA = {
    "type": "object",
    "properties": {
        "node": {"type": "string", "pattern": IDENTIFIER_PATTERN},
        "port": {"type": "string", "pattern": IDENTIFIER_PATTERN},
        "scope": {"type": "string", "pattern": IDENTIFIER_PATTERN},
    },
    "required": ["node", "port"],
    "additionalProperties": False,
}

_PORT_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "pattern": IDENTIFIER_PATTERN},
        "data_type": {"type": "string", "enum": [t.value for t in PortType]},
        "optional": {"type": "boolean"},
        "default": {"type": "string"},
        "expression": {"type": "string"},
        "scope": {"type": "string"},
        "label": {"type": "string"},
        "hidden": {"type": "boolean"},
        "py_type": {"type": "string"},
        "metadata": {
            "type": "object",
            "properties": {
                "order": {"type": "integer"},
                "placement": {"type": "string", "enum": ["TOP", "BOTTOM"]},
            },
            "additionalProperties": False,
        },
    },
    "required": ["name"],
    "additionalProperties": False,
}

_NODE_TYPE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "function_name": {"type": "string", "pattern": IDENTIFIER_PATTERN},
        "inputs": {"type": "object", "additionalProperties": _PORT_SCHEMA},
        "outputs": {"type": "object", "additionalProperties": _PORT_SCHEMA},
        "has_success_port": {"type": "boolean"},
        "has_failure_port": {"type": "boolean"},
        "execute_when": {"type": "string", "enum": [p.value for p in ExecuteWhen]},
        "is_async": {"type": "boolean"},
        "scopes": {"type": "array", "items": {"type": "string"}},
        "expression": {"type": "boolean"},
        "returns_dict": {"type": "boolean"},
        "label": {"type": "string"},
        "description": {"type": "string"},
        "source_path": {"type": "string"},
        "inferred": {"type": "boolean"},
    },
    "required": ["name", "function_name"],
    "additionalProperties": False,
}

WORKFLOW_AST_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "flowweave workflow AST",
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "function_name": {"type": "string", "pattern": IDENTIFIER_PATTERN},
        "kind": {"type": "string", "enum": ["workflow", "pattern"]},
        "node_types": {"type": "object", "additionalProperties": _NODE_TYPE_SCHEMA},
        "instances": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                    "node_type": {"type": "string"},
                    "config": {
                        "type": "object",
                        "properties": {
                            "x": {"type": "number"},
                            "y": {"type": "number"},
                            "width": {"type": "number"},
                            "height": {"type": "number"},
                            "label": {"type": "string"},
                            "port_expressions": {"type": "object", "additionalProperties": {"type": "string"}},
                        },
                        "additionalProperties": False,
                    },
                    "parent": {
                        "type": "object",
                        "properties": {
                            "instance_id": {"type": "string"},
                            "scope_name": {"type": "string"},
                        },
                        "required": ["instance_id", "scope_name"],
                        "additionalProperties": False,
                    },
                },
                "required": ["id", "node_type"],
                "additionalProperties": False,
            },
        },
        "connections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"from": _PORT_REF_SCHEMA, "to": _PORT_REF_SCHEMA},
                "required": ["from", "to"],
                "additionalProperties": False,
            },
        },
        "scopes": {"type": "object", "additionalProperties": {"type": "array", "items": {"type": "string"}}},
        "start_ports": {"type": "object", "additionalProperties": _PORT_SCHEMA},
        "exit_ports": {"type": "object", "additionalProperties": _PORT_SCHEMA},
        "imports": {"type": "array", "items": {"type": "string"}},
        "is_async": {"type": "boolean"},
        "description": {"type": "string"},
        "source_path": {"type": "string"},
    },
    "required": ["name", "function_name"],
    "additionalProperties": False,
}


class ValidationError(Exception):
    """Schema validation error with a field path and an optional suggestion.

    Attributes:
        message (str): The validation error message
        path (str): Dotted path to the invalid field (e.g., "instances[0].id")
        suggestion (str): Optional suggestion for fixing the error
    """

    def __init__(self, message: str, path: str = "", suggestion: str = ""):
        self.message = message
        self.path = path
        self.suggestion = suggestion

        full_message = f"Validation error at {path}: {message}" if path else message
        if suggestion:
            full_message = f"{full_message}\nSuggestion: {suggestion}"
        super().__init__(full_message)


def _format_path(path: list) -> str:
    """Format a jsonschema path into a readable string like "instances[0].id"."""
    formatted = ""
    for i, component in enumerate(path):
        if isinstance(component, int):
            formatted += f"[{component}]"
        else:
            if i > 0:
                formatted += "."
            formatted += str(component)
    return formatted or "root"


def _get_suggestion(error: JsonSchemaValidationError) -> str:
    if error.validator == "pattern":
        return "Use a Python identifier (letters, digits and underscores, not starting with a digit)"
    if error.validator == "enum":
        return f"Use one of: {', '.join(str(v) for v in error.validator_value)}"
    if error.validator == "additionalProperties":
        return "Remove unknown fields; the AST shape is closed"
    if error.validator == "required":
        return "Add the missing field"
    return ""


def _validate_instance_references(data: dict[str, Any]) -> None:
    """Check that parents and connection endpoints name declared instances."""
    ids = [instance["id"] for instance in data.get("instances", [])]
    seen: set[str] = set()
    for index, instance_id in enumerate(ids):
        if instance_id in seen:
            raise ValidationError(
                f"Duplicate instance id '{instance_id}'",
                path=f"instances[{index}].id",
                suggestion="Instance ids must be unique within a workflow",
            )
        seen.add(instance_id)

    known = seen | {"Start", "Exit"}
    for index, instance in enumerate(data.get("instances", [])):
        parent = instance.get("parent")
        if parent and parent["instance_id"] not in known:
            raise ValidationError(
                f"Parent instance '{parent['instance_id']}' does not exist",
                path=f"instances[{index}].parent.instance_id",
            )
    for index, connection in enumerate(data.get("connections", [])):
        for end in ("from", "to"):
            node = connection[end]["node"]
            if node not in known:
                raise ValidationError(
                    f"Connection references unknown instance '{node}'",
                    path=f"connections[{index}].{end}.node",
                    suggestion=f"Available instances: {', '.join(sorted(known))}",
                )


def validate_ast_dict(data: Union[dict[str, Any], str]) -> None:
    """Validate a serialized workflow AST.

    Args:
        data: The AST dict, or a JSON string of it

    Raises:
        ValidationError: If the data does not match the schema
        ValueError: If JSON parsing fails
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e

    validator = Draft7Validator(WORKFLOW_AST_SCHEMA)
    try:
        validator.check_schema(WORKFLOW_AST_SCHEMA)
    except jsonschema.SchemaError as e:
        raise RuntimeError(f"Schema definition error: {e}") from e

    errors = sorted(validator.iter_errors(data), key=lambda e: _format_path(list(e.absolute_path)))
    if not errors:
        if isinstance(data, dict):
            _validate_instance_references(data)
        return

    error = errors[0]
    raise ValidationError(
        message=error.message, path=_format_path(list(error.absolute_path)), suggestion=_get_suggestion(error)
    )
