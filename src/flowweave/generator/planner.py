"""Execution planning for validated workflows.

``build_plan`` turns a ``WorkflowAST`` into an ``ExecutionPlan``: a tree of
``ScopePlan`` values, one per scope layer, each holding its nodes in
execution order. The tree mirrors the scope nesting of the AST, so every
scope can be planned and emitted in isolation.

Planning refuses any AST with blocking validation errors.
"""

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

from flowweave.core.ast_models import NodeInstance, NodeTypeDefinition, PortDefinition, PortRef, WorkflowAST
from flowweave.core.exceptions import GenerationError
from flowweave.core.port_types import EXECUTE_PORT, EXIT_NODE, ExecuteWhen
from flowweave.core.scope_tree import Layer, ScopeTree, scope_key
from flowweave.core.settings import ValidationSettings
from flowweave.core.validation_result import ValidationIssue, ValidationResult
from flowweave.core.workflow_data_flow import CycleError, build_execution_order
from flowweave.validation.validator import WorkflowValidator, layer_edges

logger = logging.getLogger(__name__)

ValueOrigin = Literal["connection", "instance", "default", "expression", "none"]


@dataclass(frozen=True)
class InputPlan:
    """How one input argument gets its value.

    Precedence: connection, instance constant, port default, node-type
    expression, ``None``.
    """

    port: PortDefinition
    origin: ValueOrigin
    sources: list[PortRef] = field(default_factory=list)
    constant: Optional[str] = None


@dataclass(frozen=True)
class TriggerPlan:
    """Incoming STEP signals combined per the node's ``execute_when`` policy."""

    policy: ExecuteWhen
    sources: list[PortRef] = field(default_factory=list)


@dataclass(frozen=True)
class OutputPlan:
    """A collected value: an Exit port or a field returned from a scope."""

    port: PortDefinition
    sources: list[PortRef] = field(default_factory=list)


@dataclass(frozen=True)
class NodePlan:
    instance: NodeInstance
    node_type: NodeTypeDefinition
    trigger: TriggerPlan
    inputs: list[InputPlan]
    scopes: list["ScopePlan"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.instance.id


@dataclass(frozen=True)
class ScopePlan:
    """One scope layer: the workflow root or one ``owner.scope`` closure."""

    owner: Optional[str]
    scope: Optional[str]
    nodes: list[NodePlan]
    params: list[PortDefinition] = field(default_factory=list)
    returns: list[OutputPlan] = field(default_factory=list)
    is_async: bool = False

    @property
    def key(self) -> Layer:
        if self.owner is None or self.scope is None:
            return None
        return scope_key(self.owner, self.scope)

    @property
    def function_name(self) -> str:
        return f"{self.owner}_{self.scope}_scope"

    @property
    def order(self) -> list[str]:
        return [node.id for node in self.nodes]


@dataclass(frozen=True)
class ExecutionPlan:
    ast: WorkflowAST
    root: ScopePlan
    exits: list[OutputPlan]
    is_async: bool
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def order(self) -> list[str]:
        """Execution order of the root layer."""
        return self.root.order


def _plan_input(ast: WorkflowAST, instance: NodeInstance, port: PortDefinition) -> InputPlan:
    sources = [c.source for c in ast.incoming(instance.id, port.name)]
    if sources:
        return InputPlan(port=port, origin="connection", sources=sources)
    if port.name in instance.config.port_expressions:
        return InputPlan(port=port, origin="instance", constant=instance.config.port_expressions[port.name])
    if port.default is not None:
        return InputPlan(port=port, origin="default", constant=port.default)
    if port.expression is not None:
        return InputPlan(port=port, origin="expression", constant=port.expression)
    return InputPlan(port=port, origin="none")


def _plan_node(ast: WorkflowAST, tree: ScopeTree, instance: NodeInstance) -> NodePlan:
    node_type = ast.node_types.get(instance.node_type)
    if node_type is None:
        raise GenerationError(f"Cannot plan node '{instance.id}': unknown node type '{instance.node_type}'")
    inputs = [
        _plan_input(ast, instance, port)
        for port in node_type.inputs.values()
        if port.scope is None and port.name != EXECUTE_PORT
    ]
    trigger = TriggerPlan(
        policy=node_type.execute_when,
        sources=[c.source for c in ast.incoming(instance.id, EXECUTE_PORT)],
    )
    scopes = [_plan_scope(ast, tree, instance.id, node_type, scope) for scope in node_type.scopes]
    return NodePlan(instance=instance, node_type=node_type, trigger=trigger, inputs=inputs, scopes=scopes)


def _ordered_nodes(ast: WorkflowAST, tree: ScopeTree, layer: Layer) -> list[NodePlan]:
    members = tree.members(layer)
    try:
        order = build_execution_order(members, layer_edges(ast, tree, layer))
    except CycleError as e:
        raise GenerationError(f"Cannot order workflow '{ast.name}': {e}") from e
    return [_plan_node(ast, tree, ast.get_instance(node_id)) for node_id in order]


def _plan_scope(
    ast: WorkflowAST, tree: ScopeTree, owner_id: str, owner_type: NodeTypeDefinition, scope: str
) -> ScopePlan:
    """Plan one scope closure; recurses through ``_plan_node`` into nested scopes."""
    nodes = _ordered_nodes(ast, tree, scope_key(owner_id, scope))
    returns = [
        OutputPlan(port=port, sources=[c.source for c in ast.incoming(owner_id, port.name)])
        for port in owner_type.scoped_inputs(scope)
    ]
    return ScopePlan(
        owner=owner_id,
        scope=scope,
        nodes=nodes,
        params=owner_type.scoped_outputs(scope),
        returns=returns,
        is_async=any(node.node_type.is_async for node in nodes),
    )


def build_plan(
    ast: WorkflowAST,
    validation: Optional[ValidationResult] = None,
    settings: Optional[ValidationSettings] = None,
) -> ExecutionPlan:
    """Plan a workflow for code generation.

    Args:
        ast: Workflow to plan
        validation: Result of a previous validation; validated here when None
        settings: Validation settings used when validating here

    Returns:
        ExecutionPlan with the scope tree in execution order

    Raises:
        GenerationError: If the workflow has blocking errors or is a pattern
    """
    if ast.kind == "pattern":
        raise GenerationError(f"'{ast.name}' is a pattern; only workflows can be compiled")

    result = validation if validation is not None else WorkflowValidator(settings=settings).validate(ast)
    if not result.valid:
        raise GenerationError(f"Cannot generate workflow '{ast.name}' with {len(result.errors)} error(s)", result)

    tree = ScopeTree(ast)
    nodes = _ordered_nodes(ast, tree, None)
    exits = [
        OutputPlan(port=port, sources=[c.source for c in ast.incoming(EXIT_NODE, port.name)])
        for port in ast.exit_ports.values()
    ]
    is_async = ast.is_async or any(
        node_type.is_async
        for node_type in (ast.node_types.get(i.node_type) for i in ast.instances)
        if node_type is not None
    )
    plan = ExecutionPlan(
        ast=ast,
        root=ScopePlan(owner=None, scope=None, nodes=nodes, is_async=is_async),
        exits=exits,
        is_async=is_async,
        warnings=list(result.warnings),
    )
    logger.debug(
        f"Planned '{ast.name}': {', '.join(plan.order) or 'no nodes'}",
        extra={"phase": "plan", "workflow": ast.name, "async": is_async},
    )
    return plan
