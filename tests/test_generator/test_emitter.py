"""Tests for emitting workflow bodies."""

import textwrap

from flowweave.core.port_types import ExecuteWhen
from flowweave.core.settings import GenerationSettings
from flowweave.generator.emitter import combine, format_call, generate_code
from flowweave.generator.planner import build_plan
from flowweave.parsing.workflow_assembler import parse_module

CALCULATOR_BODY = """\
# @flow-weaver-body-start
if not execute:
    return {"onSuccess": False, "onFailure": False, "sum": None}

# add: add_numbers
add_result = add_numbers(True, a=a, b=b)

return {"onSuccess": True, "onFailure": False, "sum": add_result["sum"]}
# @flow-weaver-body-end
"""

FOR_EACH_BODY = """\
# @flow-weaver-body-start
if not execute:
    return {"onSuccess": False, "onFailure": False, "results": None}

# Scope 'item' of forEach
def forEach_item_scope(item):
    # double: double
    double_result = double_value(True, x=item)

    return {"result": double_result["y"]}

# forEach: forEach
forEach_result = for_each(True, items=values, item=forEach_item_scope)

return {"onSuccess": True, "onFailure": False, "results": forEach_result["results"]}
# @flow-weaver-body-end
"""

MERGE_NODE = '''

def merge(execute: bool) -> {"onSuccess": bool, "onFailure": bool}:
    """@flowWeaver nodeType
    @executeWhen DISJUNCTION
    """
    return {"onSuccess": execute, "onFailure": False}
'''

SHOUT_SOURCE = textwrap.dedent(
    '''
    def to_upper(text: str) -> str:
        """@flowWeaver nodeType
        @expression
        @input text
        @output upper
        """
        return text.upper()


    def shout(execute: bool, text: str) -> {"onSuccess": bool, "onFailure": bool, "loud": str}:
        """@flowWeaver workflow
        @node up to_upper
        @connect Start.text -> up.text
        @connect up.upper -> Exit.loud
        """
    '''
)


def _generate(source, settings=None, full_function=False):
    (result,) = parse_module(source).workflows
    return generate_code(build_plan(result.ast), settings, full_function=full_function)


def _rewire(source, *tags):
    old = source[source.index("    @node add add_numbers\n") : source.index('    """\n    raise NotImplementedError')]
    return source.replace(old, "".join(f"    {tag}\n" for tag in tags))


class TestGeneratedBody:
    """Test the emitted orchestration body."""

    def test_calculator(self, calculator_source):
        result = _generate(calculator_source)
        assert result.code == CALCULATOR_BODY
        assert result.warnings == []
        assert result.plan.order == ["add"]

    def test_scope_becomes_a_closure(self, for_each_source):
        assert _generate(for_each_source).code == FOR_EACH_BODY

    def test_output_is_deterministic(self, for_each_source):
        assert _generate(for_each_source).code == _generate(for_each_source).code

    def test_without_comments(self, calculator_source):
        code = _generate(calculator_source, GenerationSettings(emit_comments=False)).code
        assert "# add:" not in code
        assert "# @flow-weaver-body-start" in code

    def test_instance_constant(self, calculator_source):
        source = _rewire(
            calculator_source, '@node add add_numbers [expr: b="1"]', "@connect Start.a -> add.a", "@connect add.sum -> Exit.sum"
        )
        assert "add_result = add_numbers(True, a=a, b=1)" in _generate(source).code

    def test_last_fired_source_wins(self, calculator_source):
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
        result = _generate(source)
        assert 'exit_sum = None\nexit_sum = add1_result["sum"]\nexit_sum = add2_result["sum"]\n' in result.code
        assert '"sum": exit_sum}' in result.code
        assert [w.code for w in result.warnings] == ["MULTIPLE_EXIT_CONNECTIONS"]


class TestTriggers:
    def test_disjunction(self, calculator_source):
        source = _rewire(
            calculator_source + MERGE_NODE,
            "@node add1 add_numbers",
            "@node add2 add_numbers",
            "@node join merge",
            "@connect Start.a -> add1.a",
            "@connect Start.b -> add1.b",
            "@connect Start.a -> add2.a",
            "@connect Start.b -> add2.b",
            "@connect add1.onSuccess -> join.execute",
            "@connect add2.onSuccess -> join.execute",
            "@connect add1.sum -> Exit.sum",
        )
        code = _generate(source).code
        assert 'join_result = merge(add1_result["onSuccess"] or add2_result["onSuccess"])' in code

    def test_chained_trigger(self, calculator_source):
        source = _rewire(
            calculator_source,
            "@node add1 add_numbers",
            "@node add2 add_numbers",
            "@connect Start.a -> add1.a",
            "@connect Start.b -> add1.b",
            "@connect add1.sum -> add2.a",
            "@connect Start.b -> add2.b",
            "@connect add1.onSuccess -> add2.execute",
            "@connect add2.sum -> Exit.sum",
        )
        result = _generate(source)
        assert result.plan.order == ["add1", "add2"]
        assert 'add2_result = add_numbers(add1_result["onSuccess"], a=add1_result["sum"], b=b)' in result.code

    def test_combine(self):
        assert combine(ExecuteWhen.CONJUNCTION, ["a", "b"]) == "a and b"
        assert combine(ExecuteWhen.DISJUNCTION, ["a", "b"]) == "a or b"
        assert combine(ExecuteWhen.CUSTOM, ["a", "b"]) == "True"
        assert combine(ExecuteWhen.CONJUNCTION, [], "False") == "False"


class TestNodeKinds:
    def test_async_node_is_awaited(self, calculator_source):
        source = calculator_source.replace("def add_numbers", "async def add_numbers")
        result = _generate(source)
        assert "add_result = await add_numbers(True, a=a, b=b)" in result.code
        assert result.plan.is_async

    def test_expression_node(self):
        code = _generate(SHOUT_SOURCE).code
        assert 'up_result = {"onSuccess": True, "onFailure": False, "upper": to_upper(text=text)}' in code
        assert '"loud": up_result["upper"]' in code

    def test_scope_parameter_does_not_shadow_workflow_input(self, for_each_source):
        source = (
            for_each_source.replace("    @input x\n", "    @input x\n    @input k\n")
            .replace("x: float)", "x: float, k: float)")
            .replace("values: list)", "values: list, item: float)")
            .replace(
                "    @connect forEach.results -> Exit.results\n",
                "    @connect forEach.results -> Exit.results\n    @connect Start.item -> double.k\n",
            )
        )
        code = _generate(source).code
        assert "\nstart_item = item\n\n# Scope 'item' of forEach\ndef forEach_item_scope(item):\n" in code
        assert "    double_result = double_value(True, x=item, k=start_item)\n" in code
        assert "items=values, item=forEach_item_scope)" in code

    def test_long_calls_are_split(self):
        lines = format_call("result = ", "compute", [f"argument_{i}=value_{i}" for i in range(6)], 4)
        assert lines[0] == "result = compute("
        assert lines[1] == "    argument_0=value_0,"
        assert lines[-1] == ")"


class TestFullFunction:
    def test_signature_docstring_and_body(self, calculator_source):
        code = _generate(calculator_source, full_function=True).code
        expected_head = (
            'def calculate(execute: bool, a: float, b: float) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:\n'
            '    """Add a and b."""\n'
            "    # @flow-weaver-body-start\n"
        )
        assert code.startswith(expected_head)
        assert code.endswith("    # @flow-weaver-body-end\n")
