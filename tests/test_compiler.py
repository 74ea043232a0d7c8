"""Tests for the compile pipeline facade."""

import textwrap

import pytest

from flowweave.compiler import compile_source, parse_source, validate_source
from flowweave.core.exceptions import WorkflowNotFoundError

MARKED_SOURCE = textwrap.dedent(
    '''
    def add_numbers(execute: bool, a: float, b: float = 0) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:
        """Add two numbers.

        @flowWeaver nodeType
        @input a - First operand
        @input [b=0] - Second operand
        @output sum - Result
        """
        if not execute:
            return {"onSuccess": False, "onFailure": False, "sum": None}
        return {"onSuccess": True, "onFailure": False, "sum": a + b}


    def calculate(execute: bool, a: float, b: float) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:
        """Add the workflow inputs.

        @flowWeaver workflow
        @node add add_numbers
        @connect Start.a -> add.a
        @connect Start.b -> add.b
        @connect add.sum -> Exit.sum
        """
        # @flow-weaver-body-start
        # @flow-weaver-body-end
    '''
).lstrip()

CALCULATOR_BODY = """\
# @flow-weaver-body-start
if not execute:
    return {"onSuccess": False, "onFailure": False, "sum": None}

# add: add_numbers
add_result = add_numbers(True, a=a, b=b)

return {"onSuccess": True, "onFailure": False, "sum": add_result["sum"]}
# @flow-weaver-body-end
"""


class TestMarkedWorkflow:
    """A workflow whose body is only its docstring and the body markers."""

    def test_workflow_is_found(self):
        module = parse_source(MARKED_SOURCE)
        assert [r.ast.name for r in module.workflows] == ["calculate"]
        assert validate_source(MARKED_SOURCE)["calculate"].valid

    def test_compiles_in_place(self):
        result = compile_source(MARKED_SOURCE, in_place=True)
        assert result.code == CALCULATOR_BODY
        assert result.source == MARKED_SOURCE.replace(
            "    # @flow-weaver-body-start\n    # @flow-weaver-body-end\n", textwrap.indent(CALCULATOR_BODY, "    ")
        )
        assert compile_source(result.source, in_place=True).source == result.source


class TestSelectWorkflow:
    def test_no_workflow(self):
        with pytest.raises(WorkflowNotFoundError, match="No @flowWeaver workflow found"):
            compile_source("x = 1\n")
