"""Test the JSON schema for serialized workflow ASTs."""

import json

import pytest

from flowweave.core.ast_schema import ValidationError, validate_ast_dict
from flowweave.parsing.workflow_assembler import parse_module


def _minimal():
    return {
        "name": "calculate",
        "function_name": "calculate",
        "instances": [{"id": "add", "node_type": "add_numbers"}],
        "connections": [{"from": {"node": "Start", "port": "a"}, "to": {"node": "add", "port": "a"}}],
    }


class TestValidateAstDict:
    """Test schema validation of AST dicts."""

    def test_minimal_ast_is_valid(self):
        validate_ast_dict(_minimal())

    def test_json_string_is_accepted(self):
        validate_ast_dict(json.dumps(_minimal()))

    def test_invalid_json_raises_value_error(self):
        with pytest.raises(ValueError, match="Invalid JSON"):
            validate_ast_dict("{not json")

    def test_missing_required_field(self):
        data = _minimal()
        del data["function_name"]
        with pytest.raises(ValidationError) as exc_info:
            validate_ast_dict(data)
        assert "function_name" in str(exc_info.value)
        assert exc_info.value.suggestion == "Add the missing field"

    def test_unknown_field_is_rejected(self):
        data = _minimal()
        data["extra"] = True
        with pytest.raises(ValidationError) as exc_info:
            validate_ast_dict(data)
        assert "unknown fields" in exc_info.value.suggestion

    def test_bad_instance_id_reports_path(self):
        data = _minimal()
        data["instances"][0]["id"] = "1add"
        with pytest.raises(ValidationError) as exc_info:
            validate_ast_dict(data)
        assert exc_info.value.path == "instances[0].id"

    def test_duplicate_instance_ids(self):
        data = _minimal()
        data["instances"].append({"id": "add", "node_type": "add_numbers"})
        with pytest.raises(ValidationError, match="Duplicate instance id 'add'"):
            validate_ast_dict(data)

    def test_connection_to_unknown_instance(self):
        data = _minimal()
        data["connections"][0]["to"]["node"] = "ad"
        with pytest.raises(ValidationError) as exc_info:
            validate_ast_dict(data)
        assert exc_info.value.path == "connections[0].to.node"
        assert "Available instances" in exc_info.value.suggestion

    def test_assembled_ast_matches_schema(self, for_each_source):
        """A parsed workflow serializes into the shape the schema describes."""
        ast = parse_module(for_each_source).workflows[0].ast
        validate_ast_dict(ast.to_dict())
