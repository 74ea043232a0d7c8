"""Tests for port type compatibility and the error taxonomy."""

import pytest

from flowweave.core.error_codes import CYCLE_DETECTED, UNUSED_NODE, default_severity
from flowweave.core.port_types import PortType, is_control_port, is_type_compatible
from flowweave.core.suggestion_utils import did_you_mean, find_similar_items
from flowweave.core.validation_result import ValidationIssue, ValidationResult


class TestTypeCompatibility:
    @pytest.mark.parametrize(
        "source,target,expected",
        [
            (PortType.NUMBER, PortType.NUMBER, True),
            (PortType.NUMBER, PortType.STRING, True),
            (PortType.STRING, PortType.NUMBER, False),
            (PortType.ANY, PortType.ARRAY, True),
            (PortType.OBJECT, PortType.ANY, True),
            (PortType.STEP, PortType.BOOLEAN, True),
            (PortType.BOOLEAN, PortType.STEP, True),
            (PortType.STEP, PortType.NUMBER, False),
            (PortType.ARRAY, PortType.OBJECT, False),
        ],
    )
    def test_matrix(self, source, target, expected):
        assert is_type_compatible(source, target) is expected

    def test_control_ports(self):
        assert is_control_port("execute")
        assert is_control_port("onFailure")
        assert not is_control_port("sum")


class TestValidationResult:
    """Test issue severity and result aggregation."""

    def test_severity_follows_the_taxonomy(self):
        assert default_severity(UNUSED_NODE) == "warning"
        assert default_severity(CYCLE_DETECTED) == "error"
        assert ValidationIssue.create(UNUSED_NODE, "unused").severity == "warning"

    def test_from_issues_splits_and_deduplicates(self):
        error = ValidationIssue.create(CYCLE_DETECTED, "cycle", node="a")
        warning = ValidationIssue.create(UNUSED_NODE, "unused", node="b")
        result = ValidationResult.from_issues([error, warning, error])
        assert result.errors == [error]
        assert result.warnings == [warning]
        assert not result.valid
        assert result.codes() == [CYCLE_DETECTED, UNUSED_NODE]

    def test_to_dict_shape(self):
        warning = ValidationIssue.create(UNUSED_NODE, "unused", node="b")
        assert ValidationResult(warnings=[warning]).to_dict() == {
            "valid": True,
            "errors": [],
            "warnings": [{"code": UNUSED_NODE, "message": "unused", "node": "b"}],
        }


class TestSuggestions:
    def test_fuzzy(self):
        assert find_similar_items("ad", ["add", "double"]) == ["add"]

    def test_substring(self):
        assert find_similar_items("NUM", ["add_numbers", "for_each"], method="substring") == ["add_numbers"]

    def test_did_you_mean(self):
        assert did_you_mean("summ", ["sum", "onSuccess"]) == " Did you mean 'sum'?"
        assert did_you_mean("zzz", ["sum"]) == ""
