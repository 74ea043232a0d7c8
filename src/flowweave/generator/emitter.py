"""Emit Python orchestration code from an ``ExecutionPlan``.

The emitted body follows the generated-function contract: the workflow's
first parameter is the boolean trigger, and the return value is a dict with
``onSuccess``, ``onFailure`` and every Exit data port.

Every node is called with its combined trigger; a node called with ``False``
returns ``onSuccess``/``onFailure`` both false, so downstream triggers read
its result unconditionally. Scopes become nested ``def`` closures emitted by
``emit_scope``, which recurses through the nodes of each scope.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Optional

from flowweave.core.ast_models import PortDefinition, PortRef, WorkflowAST
from flowweave.core.port_types import (
    EXECUTE_PORT,
    FAILURE_PORT,
    START_NODE,
    SUCCESS_PORT,
    ExecuteWhen,
    PortType,
)
from flowweave.core.settings import GenerationSettings
from flowweave.core.validation_result import ValidationIssue
from flowweave.generator.code_writer import CodeWriter
from flowweave.generator.planner import ExecutionPlan, InputPlan, NodePlan, OutputPlan, ScopePlan, TriggerPlan

logger = logging.getLogger(__name__)

BODY_START_MARKER = "# @flow-weaver-body-start"
BODY_END_MARKER = "# @flow-weaver-body-end"

# Calls longer than this are split one argument per line
MAX_CALL_WIDTH = 100


@dataclass
class GenerationResult:
    """Generated code plus the advisory warnings of the workflow."""

    code: str
    plan: ExecutionPlan
    warnings: list[ValidationIssue] = field(default_factory=list)


def result_variable(node_id: str) -> str:
    return f"{node_id}_result"


def _nested_scopes(scope: ScopePlan) -> Iterator[ScopePlan]:
    for node in scope.nodes:
        for nested in node.scopes:
            yield nested
            yield from _nested_scopes(nested)


def shadow_aliases(plan: ExecutionPlan) -> dict[tuple[str, str], str]:
    """Local names for values that a nested closure parameter would shadow.

    Keys are ``(node, port)`` of a Start port or of an owner's scoped output.
    """
    aliases: dict[tuple[str, str], str] = {}
    inner = {p.name for scope in _nested_scopes(plan.root) for p in scope.params}
    for name in plan.ast.start_ports:
        if name in inner:
            aliases[(START_NODE, name)] = f"start_{name}"
    for scope in _nested_scopes(plan.root):
        inner = {p.name for nested in _nested_scopes(scope) for p in nested.params}
        for port in scope.params:
            if port.name in inner:
                aliases[(scope.owner, port.name)] = f"{scope.owner}_{scope.scope}_{port.name}"
    return aliases


class _Context:
    """Name resolution shared by one emission pass.

    Maps each instance to its trigger expression so "last fired source wins"
    collection can test whether a source node ran.
    """

    def __init__(self, ast: WorkflowAST, aliases: Optional[dict[tuple[str, str], str]] = None):
        self.ast = ast
        self.triggers: dict[str, str] = {}
        self.aliases = aliases or {}

    def source_port(self, ref: PortRef) -> Optional[PortDefinition]:
        ports = self.ast.output_ports(ref.node)
        return ports.get(ref.port) if ports else None

    def value(self, ref: PortRef) -> str:
        """Expression reading the value an output port produced."""
        if ref.node == START_NODE:
            return self.aliases.get((ref.node, ref.port), ref.port)
        port = self.source_port(ref)
        if port is not None and port.scope is not None:
            # An owner's scoped output is a parameter of the enclosing closure
            return self.aliases.get((ref.node, ref.port), ref.port)
        return f'{result_variable(ref.node)}["{ref.port}"]'

    def step_value(self, ref: PortRef) -> str:
        port = self.source_port(ref)
        text = self.value(ref)
        if port is not None and port.data_type in (PortType.STEP, PortType.BOOLEAN):
            return text
        return f"bool({text})"

    def fired(self, ref: PortRef) -> Optional[str]:
        """Condition under which ``ref`` carries a value, or None when it always does."""
        if ref.node == START_NODE:
            return None
        port = self.source_port(ref)
        if port is not None and port.scope is not None:
            return None
        trigger = self.triggers.get(ref.node, "True")
        return None if trigger == "True" else trigger


def combine(policy: ExecuteWhen, terms: list[str], empty: str = "True") -> str:
    """Combine STEP terms per an ``execute_when`` policy."""
    if not terms:
        return empty
    if policy == ExecuteWhen.CUSTOM:
        return "True"
    joiner = " or " if policy == ExecuteWhen.DISJUNCTION else " and "
    return joiner.join(terms)


def format_call(prefix: str, callee: str, args: list[str], indent_width: int) -> list[str]:
    """Render ``prefix + callee(args)``, split one argument per line when long."""
    single = f"{prefix}{callee}({', '.join(args)})"
    if len(single) <= MAX_CALL_WIDTH or not args:
        return [single]
    pad = " " * indent_width
    return [f"{prefix}{callee}(", *(f"{pad}{arg}," for arg in args), ")"]


def format_dict(prefix: str, items: list[tuple[str, str]], indent_width: int) -> list[str]:
    rendered = [f'"{key}": {value}' for key, value in items]
    single = prefix + "{" + ", ".join(rendered) + "}"
    if len(single) <= MAX_CALL_WIDTH:
        return [single]
    pad = " " * indent_width
    return [prefix + "{", *(f"{pad}{item}," for item in rendered), "}"]


class WorkflowEmitter:
    """Emits the orchestration body of one planned workflow."""

    def __init__(self, plan: ExecutionPlan, settings: Optional[GenerationSettings] = None):
        self.plan = plan
        self.settings = settings or GenerationSettings()
        self.context = _Context(plan.ast, shadow_aliases(plan))

    def _writer(self) -> CodeWriter:
        return CodeWriter(indent_width=self.settings.indent)

    # --- values ------------------------------------------------------------------

    def _trigger(self, trigger: TriggerPlan) -> str:
        return combine(trigger.policy, [self.context.step_value(ref) for ref in trigger.sources])

    def _argument(self, node: NodePlan, item: InputPlan) -> str:
        port = item.port
        if item.origin == "connection":
            if port.data_type == PortType.STEP:
                # CUSTOM nodes decide for themselves; hand them any signal that fired
                policy = ExecuteWhen.DISJUNCTION if node.trigger.policy == ExecuteWhen.CUSTOM else node.trigger.policy
                value = combine(policy, [self.context.step_value(ref) for ref in item.sources], "False")
            else:
                value = self.context.value(item.sources[0])
        elif item.constant is not None:
            value = item.constant
        elif port.data_type == PortType.STEP:
            value = "False"
        else:
            value = "None"
        return f"{port.name}={value}"

    def _collect(self, writer: CodeWriter, output: OutputPlan, variable: str, empty: str) -> str:
        """Resolve an output fed by any number of sources; the last one that fired wins."""
        if not output.sources:
            return empty
        if len(output.sources) == 1:
            return self.context.value(output.sources[0])
        # Connected but nothing fired: a STEP output stays low
        writer.writeln(f"{variable} = {'False' if output.port.is_step else 'None'}")
        for ref in output.sources:
            condition = self.context.fired(ref)
            if condition is None:
                writer.writeln(f"{variable} = {self.context.value(ref)}")
            else:
                writer.writeln(f"if {condition}:")
                writer.push().writeln(f"{variable} = {self.context.value(ref)}").pop()
        return variable

    # --- nodes -------------------------------------------------------------------

    def emit_node(self, writer: CodeWriter, node: NodePlan) -> None:
        node_type = node.node_type
        for scope in node.scopes:
            self.emit_scope(writer, scope)
            writer.blank()

        if self.settings.emit_comments:
            label = f" - {node.instance.config.label}" if node.instance.config.label else ""
            writer.comment(f"{node.id}: {node_type.name}{label}")

        args = [self._argument(node, item) for item in node.inputs]
        args += [f"{scope.scope}={scope.function_name}" for scope in node.scopes]
        awaited = "await " if node_type.is_async else ""
        variable = result_variable(node.id)

        if node_type.expression:
            self.context.triggers[node.id] = "True"
            head = f'{variable} = {{"{SUCCESS_PORT}": True, "{FAILURE_PORT}": False, '
            if node_type.returns_dict:
                prefix = f"{head}**{awaited}"
            else:
                outputs = node_type.data_outputs()
                name = outputs[0].name if outputs else "result"
                prefix = f'{head}"{name}": {awaited}'
            lines = format_call(prefix, node_type.function_name, args, self.settings.indent)
            lines[-1] += "}"
            writer.extend(lines)
            return

        trigger = self._trigger(node.trigger)
        self.context.triggers[node.id] = trigger
        lines = format_call(f"{variable} = {awaited}", node_type.function_name, [trigger, *args], self.settings.indent)
        writer.extend(lines)

    # --- scopes ------------------------------------------------------------------

    def emit_scope(self, writer: CodeWriter, scope: ScopePlan) -> None:
        """Emit one scope as a nested closure, recursing into nested scopes."""
        keyword = "async def" if scope.is_async else "def"
        params = ", ".join(port.name for port in scope.params)
        if self.settings.emit_comments:
            writer.comment(f"Scope '{scope.scope}' of {scope.owner}")
        writer.writeln(f"{keyword} {scope.function_name}({params}):")
        writer.push()
        for port in scope.params:
            alias = self.context.aliases.get((scope.owner, port.name))
            if alias is not None:
                writer.writeln(f"{alias} = {port.name}")
        for node in scope.nodes:
            self.emit_node(writer, node)
        if scope.nodes:
            writer.blank()

        items = []
        for output in scope.returns:
            empty = "False" if output.port.data_type == PortType.STEP else "None"
            variable = f"{scope.scope}_{output.port.name}"
            items.append((output.port.name, self._collect(writer, output, variable, empty)))
        writer.extend(format_dict("return ", items, self.settings.indent))
        writer.pop()

    # --- workflow ----------------------------------------------------------------

    def _exit_defaults(self) -> list[tuple[str, str]]:
        return [(output.port.name, "False" if output.port.is_step else "None") for output in self.plan.exits]

    def emit_body(self) -> list[str]:
        """Lines of the marked body, indented relative to the function body."""
        writer = self._writer()
        writer.writeln(BODY_START_MARKER)
        writer.writeln(f"if not {EXECUTE_PORT}:")
        writer.push().extend(format_dict("return ", self._exit_defaults(), self.settings.indent)).pop()
        writer.blank()

        start_aliases = [(name, self.context.aliases.get((START_NODE, name))) for name in self.plan.ast.start_ports]
        for name, alias in start_aliases:
            if alias is not None:
                writer.writeln(f"{alias} = {name}")
        if any(alias for _, alias in start_aliases):
            writer.blank()

        for node in self.plan.root.nodes:
            self.emit_node(writer, node)
        writer.blank()

        items = []
        for output in self.plan.exits:
            name = output.port.name
            if output.port.is_step:
                empty = "True" if name == SUCCESS_PORT else "False"
            else:
                empty = "None"
            items.append((name, self._collect(writer, output, f"exit_{name}", empty)))
        writer.extend(format_dict("return ", items, self.settings.indent))
        writer.writeln(BODY_END_MARKER)
        return writer.lines()

    def emit_signature(self) -> str:
        ast = self.plan.ast
        params = [f"{EXECUTE_PORT}: bool"]
        for port in ast.start_ports.values():
            if port.name == EXECUTE_PORT:
                continue
            text = f"{port.name}: {port.py_type}" if port.py_type else port.name
            if port.default is not None:
                text += f" = {port.default}"
            elif port.optional:
                text += " = None"
            params.append(text)
        fields = [f'"{p.name}": {p.py_type or ("bool" if p.is_step else "object")}' for p in ast.exit_ports.values()]
        keyword = "async def" if self.plan.is_async else "def"
        return f"{keyword} {ast.function_name}({', '.join(params)}) -> {{{', '.join(fields)}}}:"

    def emit_function(self) -> str:
        """A complete function definition for ASTs that have no source to patch."""
        writer = self._writer()
        writer.writeln(self.emit_signature())
        writer.push()
        if self.plan.ast.description:
            writer.writeln('"""' + self.plan.ast.description.replace('"""', r"\"\"\"") + '"""')
        writer.extend(self.emit_body())
        return writer.result() + "\n"


def generate_code(
    plan: ExecutionPlan, settings: Optional[GenerationSettings] = None, full_function: bool = False
) -> GenerationResult:
    """Emit the body (or a whole function) for a plan.

    Output is a pure function of the plan and settings: the same AST always
    produces byte-identical code.
    """
    emitter = WorkflowEmitter(plan, settings)
    code = emitter.emit_function() if full_function else "\n".join(emitter.emit_body()) + "\n"
    logger.debug(
        f"Generated {code.count(chr(10))} lines for '{plan.ast.name}'",
        extra={"phase": "generate", "workflow": plan.ast.name},
    )
    return GenerationResult(code=code, plan=plan, warnings=list(plan.warnings))
