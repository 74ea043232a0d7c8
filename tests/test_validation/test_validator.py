"""Tests for the workflow validator."""

import pytest

from flowweave.core import error_codes
from flowweave.core.settings import ValidationSettings
from flowweave.core.validation_result import ValidationIssue
from flowweave.parsing.workflow_assembler import parse_module
from flowweave.validation.validator import WorkflowValidator

CALCULATOR_TAGS = (
    "    @node add add_numbers\n"
    "    @connect Start.a -> add.a\n"
    "    @connect Start.b -> add.b\n"
    "    @connect add.sum -> Exit.sum\n"
)

LABEL_NODE = '''

def describe(execute: bool, value: float) -> {"onSuccess": bool, "onFailure": bool, "text": str}:
    """@flowWeaver nodeType
    @input value
    @output text
    """
    return {"onSuccess": execute, "onFailure": False, "text": str(value)}
'''


def _rewire(source, *tags):
    """Replace the calculate workflow's graph tags."""
    return source.replace(CALCULATOR_TAGS, "".join(f"    {tag}\n" for tag in tags))


def _validate(source, settings=None, extra_rules=None):
    (result,) = parse_module(source).workflows
    return WorkflowValidator(extra_rules=extra_rules, settings=settings).validate(result.ast)


@pytest.fixture
def with_describe(calculator_source):
    return calculator_source + LABEL_NODE


class TestValidWorkflows:
    def test_calculator_is_clean(self, calculator_source):
        result = _validate(calculator_source)
        assert result.valid
        assert result.codes() == []

    def test_for_each_is_clean(self, for_each_source):
        result = _validate(for_each_source)
        assert result.valid
        assert result.codes() == []


class TestRequiredInputs:
    def test_unconnected_required_input(self, calculator_source):
        source = _rewire(calculator_source, "@node add add_numbers", "@connect Start.a -> add.a", "@connect add.sum -> Exit.sum")
        result = _validate(source)
        (error,) = result.errors
        assert error.code == error_codes.MISSING_REQUIRED_INPUT
        assert (error.node, error.port) == ("add", "b")

    def test_expression_satisfies_required_input(self, calculator_source):
        source = _rewire(
            calculator_source, '@node add add_numbers [expr: b="1"]', "@connect Start.a -> add.a", "@connect add.sum -> Exit.sum"
        )
        assert _validate(source).valid


class TestCardinality:
    """Test fan-in rules for inputs and Exit ports."""

    def test_two_sources_for_one_exit_port(self, calculator_source):
        source = _rewire(
            calculator_source,
            "@node add1 add_numbers",
            "@node add2 add_numbers",
            "@connect Start.a -> add1.a",
            "@connect Start.b -> add1.b",
            "@connect Start.a -> add2.a",
            "@connect Start.b -> add2.b",
            "@connect add1.sum -> Exit.sum",
            "@connect add2.sum -> Exit.sum",
        )
        result = _validate(source)
        assert result.valid
        (warning,) = result.warnings
        assert warning.code == error_codes.MULTIPLE_EXIT_CONNECTIONS
        assert "has 2 incoming connections" in warning.message

    def test_two_sources_for_one_input(self, calculator_source):
        source = _rewire(
            calculator_source,
            "@node add add_numbers",
            "@connect Start.a -> add.a",
            "@connect Start.b -> add.a",
            "@connect Start.b -> add.b",
            "@connect add.sum -> Exit.sum",
        )
        result = _validate(source)
        assert [e.code for e in result.errors] == [error_codes.MULTIPLE_CONNECTIONS_TO_INPUT]

    def test_duplicate_connection(self, calculator_source):
        source = calculator_source.replace("@connect Start.a -> add.a\n", "@connect Start.a -> add.a\n    @connect Start.a -> add.a\n")
        assert error_codes.DUPLICATE_CONNECTION in _validate(source).codes()


class TestExistence:
    """Test unknown nodes and ports."""

    def test_unknown_source_port_suggests(self, calculator_source):
        source = calculator_source.replace("@connect add.sum -> Exit.sum", "@connect add.summ -> Exit.sum")
        (error,) = _validate(source).errors
        assert error.code == error_codes.UNKNOWN_SOURCE_PORT
        assert "Did you mean 'sum'?" in error.message

    def test_unknown_target_node_suggests(self, calculator_source):
        source = calculator_source.replace("@connect Start.b -> add.b", "@connect Start.b -> ad.b")
        codes = _validate(source).codes()
        assert error_codes.UNKNOWN_TARGET_NODE in codes
        assert error_codes.MISSING_REQUIRED_INPUT in codes

    def test_exit_cannot_be_a_source(self, calculator_source):
        source = calculator_source.replace("@connect Start.b -> add.b", "@connect Exit.sum -> add.b")
        errors = [e for e in _validate(source).errors if e.code == error_codes.UNKNOWN_SOURCE_NODE]
        assert "Exit cannot be a connection source." in errors[0].message

    def test_input_used_as_output(self, calculator_source):
        source = calculator_source.replace("@connect add.sum -> Exit.sum", "@connect add.a -> Exit.sum")
        (error,) = _validate(source).errors
        assert "'a' is an input port." in error.message

    def test_undeclared_start_port(self, calculator_source):
        source = calculator_source.replace("@connect Start.b -> add.b", "@connect Start.zzz -> add.b")
        error = next(e for e in _validate(source).errors if e.code == error_codes.UNKNOWN_SOURCE_PORT)
        assert "Declare it with '@param zzz'." in error.message


class TestTypes:
    """Test connection type checks."""

    def test_incompatible_types_warn_by_default(self, with_describe):
        source = _rewire(
            with_describe,
            "@node label describe",
            "@node add add_numbers",
            "@connect Start.a -> label.value",
            "@connect label.text -> add.a",
            "@connect Start.b -> add.b",
            "@connect add.sum -> Exit.sum",
        )
        result = _validate(source)
        assert result.valid
        assert [w.code for w in result.warnings] == [error_codes.TYPE_MISMATCH]
        assert "outputs STRING (str)" in result.warnings[0].message

    def test_incompatible_types_fail_when_strict(self, with_describe):
        source = _rewire(
            with_describe,
            "@node label describe",
            "@node add add_numbers",
            "@connect Start.a -> label.value",
            "@connect label.text -> add.a",
            "@connect Start.b -> add.b",
            "@connect add.sum -> Exit.sum",
        )
        result = _validate(source, settings=ValidationSettings(strict_types=True))
        assert [e.code for e in result.errors] == [error_codes.TYPE_INCOMPATIBLE]

    def test_step_into_data_port(self, calculator_source):
        source = calculator_source.replace("@connect Start.a -> add.a", "@connect Start.execute -> add.a")
        (error,) = _validate(source).errors
        assert error.code == error_codes.STEP_PORT_TYPE_MISMATCH
        assert (error.node, error.port) == ("add", "a")


class TestCycles:
    def test_two_node_cycle(self, calculator_source):
        source = _rewire(
            calculator_source,
            "@node first add_numbers",
            "@node second add_numbers",
            "@connect first.sum -> second.a",
            "@connect second.sum -> first.a",
            "@connect Start.b -> first.b",
            "@connect Start.b -> second.b",
            "@connect second.sum -> Exit.sum",
        )
        (error,) = _validate(source).errors
        assert error.code == error_codes.CYCLE_DETECTED
        assert "first -> second -> first" in error.message

    def test_self_loop(self, calculator_source):
        source = calculator_source.replace("@connect Start.a -> add.a", "@connect add.sum -> add.a")
        (error,) = _validate(source).errors
        assert error.code == error_codes.CYCLE_DETECTED
        assert error.node == "add"


class TestNamesAndAdvisories:
    def test_reserved_instance_id(self, calculator_source):
        source = calculator_source.replace("@node add add_numbers", "@node add add_numbers\n    @node Exit add_numbers")
        assert error_codes.RESERVED_INSTANCE_ID in [e.code for e in _validate(source).errors]

    def test_reserved_node_type_name_without_instances(self, calculator_source):
        source = calculator_source + LABEL_NODE.replace("def describe", "def Start")
        (error,) = _validate(source).errors
        assert error.code == error_codes.RESERVED_NODE_NAME
        assert error.node == "Start"
        assert "Reserved node names: Exit, Start" in error.message

    def test_unused_node_and_unreachable_exit(self, calculator_source):
        source = _rewire(calculator_source, '@node add add_numbers [expr: a="1", expr: b="2"]')
        result = _validate(source)
        assert result.valid
        assert result.codes() == [error_codes.UNUSED_NODE, error_codes.UNREACHABLE_EXIT_PORT]


class TestConfiguration:
    """Test suppression and extra rules."""

    def test_suppressed_warnings(self, calculator_source):
        source = _rewire(calculator_source, '@node add add_numbers [expr: a="1", expr: b="2"]')
        settings = ValidationSettings(suppressed_warnings=[error_codes.UNUSED_NODE])
        assert _validate(source, settings=settings).codes() == [error_codes.UNREACHABLE_EXIT_PORT]

    def test_errors_cannot_be_suppressed(self):
        with pytest.raises(ValueError):
            ValidationSettings(suppressed_warnings=[error_codes.CYCLE_DETECTED])

    def test_extra_rule(self, calculator_source):
        def no_add(ast):
            return [
                ValidationIssue.create("NO_ADD", f"'{i.id}' is not allowed here", node=i.id)
                for i in ast.instances
                if i.node_type == "add_numbers"
            ]

        result = _validate(calculator_source, extra_rules=[no_add])
        assert not result.valid
        assert result.errors[0].to_dict() == {"code": "NO_ADD", "message": "'add' is not allowed here", "node": "add"}
