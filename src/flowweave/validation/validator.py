"""Unified workflow validation.

``WorkflowValidator`` is the single source of truth for whether a
``WorkflowAST`` may be compiled. Checks run in order of increasing scope:

1. Node and port existence, including connection types
2. Cardinality of input and Exit ports
3. Required inputs of root-level nodes
4. Acyclicity of every scope layer
5. Scope topology
6. Reserved names

followed by the advisory checks and any injected extra rules. Every check
returns a list of ``ValidationIssue`` values; nothing here raises.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Optional

from flowweave.core import error_codes
from flowweave.core.ast_models import Connection, PortDefinition, WorkflowAST
from flowweave.core.port_types import EXIT_NODE, RESERVED_NODE_IDS, START_NODE, PortType
from flowweave.core.scope_tree import Layer, ScopeTree
from flowweave.core.settings import ValidationSettings
from flowweave.core.suggestion_utils import did_you_mean
from flowweave.core.validation_result import ValidationIssue, ValidationResult, unknown_node_type
from flowweave.core.workflow_data_flow import find_cycles
from flowweave.validation.scope_rules import check_scope_topology
from flowweave.validation.type_checker import check_connection_types

logger = logging.getLogger(__name__)

ValidationRule = Callable[[WorkflowAST], list[ValidationIssue]]


class WorkflowValidator:
    """Orchestrates all workflow validation checks.

    Extra rules share the ``(ast) -> list[ValidationIssue]`` contract of the
    built-in checks; each issue carries its own severity.
    """

    def __init__(
        self,
        extra_rules: Optional[Sequence[ValidationRule]] = None,
        settings: Optional[ValidationSettings] = None,
    ):
        self.extra_rules = list(extra_rules or [])
        self.settings = settings or ValidationSettings()

    def validate(self, ast: WorkflowAST) -> ValidationResult:
        """Run complete workflow validation.

        Args:
            ast: Workflow to validate

        Returns:
            ValidationResult with blocking errors and advisory warnings
        """
        tree = ScopeTree(ast)
        issues: list[ValidationIssue] = []

        # 1. Existence, direction and types
        issues.extend(self._check_existence(ast))
        issues.extend(self._check_types(ast, tree))

        # 2. Cardinality
        issues.extend(self._check_cardinality(ast))

        # 3. Required inputs
        issues.extend(self._check_required_inputs(ast))

        # 4. Acyclicity, per scope layer
        issues.extend(self._check_cycles(ast, tree))

        # 5. Scope topology
        issues.extend(check_scope_topology(ast, tree))

        # 6. Reserved names
        issues.extend(self._check_reserved_names(ast))

        # Advisories
        issues.extend(self._check_unused_nodes(ast))
        issues.extend(self._check_exit_ports(ast))

        for rule in self.extra_rules:
            issues.extend(rule(ast))

        suppressed = set(self.settings.suppressed_warnings)
        issues = [i for i in issues if not (i.severity == "warning" and i.code in suppressed)]
        result = ValidationResult.from_issues(issues)

        if result.errors:
            logger.debug(
                f"Validation of '{ast.name}' found {len(result.errors)} errors",
                extra={"phase": "validate", "errors": len(result.errors), "warnings": len(result.warnings)},
            )
        elif result.warnings:
            logger.debug(
                f"Validation of '{ast.name}' passed with {len(result.warnings)} warnings",
                extra={"phase": "validate", "warnings": len(result.warnings)},
            )
        else:
            logger.debug(f"Validation of '{ast.name}' passed", extra={"phase": "validate"})
        return result

    # --- 1. existence ------------------------------------------------------------

    @staticmethod
    def _check_existence(ast: WorkflowAST) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        known_types = list(ast.node_types)
        seen_ids: set[str] = set()
        for instance in ast.instances:
            if instance.id in seen_ids:
                issues.append(
                    ValidationIssue.create(
                        error_codes.DUPLICATE_INSTANCE_ID,
                        f"Duplicate node id '{instance.id}'; each @node needs a unique id",
                        node=instance.id,
                    )
                )
            seen_ids.add(instance.id)
            if instance.node_type not in ast.node_types:
                issues.append(unknown_node_type(instance.id, instance.node_type, known_types))

        instance_ids = [i.id for i in ast.instances]
        seen_connections: set[str] = set()
        for connection in ast.connections:
            issues.extend(_check_endpoint(ast, connection, "output", instance_ids))
            issues.extend(_check_endpoint(ast, connection, "input", instance_ids))

            source, target = connection.source, connection.target
            key = f"{source.node}.{source.port} -> {target.node}.{target.port}"
            if key in seen_connections:
                issues.append(
                    ValidationIssue.create(
                        error_codes.DUPLICATE_CONNECTION,
                        f"Duplicate connection {connection}",
                        node=connection.target.node,
                        port=connection.target.port,
                    )
                )
            seen_connections.add(key)
        return issues

    def _check_types(self, ast: WorkflowAST, tree: ScopeTree) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for connection in ast.connections:
            source_port = tree.port(connection.source, "output")
            target_port = tree.port(connection.target, "input")
            if source_port is None or target_port is None:
                continue
            scoped = source_port.scope is not None or target_port.scope is not None
            issue = check_connection_types(
                connection, source_port, target_port, strict=self.settings.strict_types, scoped=scoped
            )
            if issue is not None:
                issues.append(issue)
        return issues

    # --- 2. cardinality ----------------------------------------------------------

    @staticmethod
    def _check_cardinality(ast: WorkflowAST) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        grouped: dict[tuple[str, str], list[Connection]] = {}
        for connection in ast.connections:
            grouped.setdefault((connection.target.node, connection.target.port), []).append(connection)

        for (node, port_name), connections in grouped.items():
            if len(connections) < 2:
                continue
            sources = ", ".join(f"{c.source.node}.{c.source.port}" for c in connections)
            if node == EXIT_NODE:
                issues.append(
                    ValidationIssue.create(
                        error_codes.MULTIPLE_EXIT_CONNECTIONS,
                        f"Exit port '{port_name}' has {len(connections)} incoming connections ({sources}); "
                        f"the last source that fires wins",
                        node=EXIT_NODE,
                        port=port_name,
                    )
                )
                continue
            ports = ast.input_ports(node)
            port = ports.get(port_name) if ports else None
            if port is None or port.data_type == PortType.STEP:
                continue
            issues.append(
                ValidationIssue.create(
                    error_codes.MULTIPLE_CONNECTIONS_TO_INPUT,
                    f"Input port '{port_name}' on node '{node}' has {len(connections)} connections ({sources}). "
                    f"Only one value can be received",
                    node=node,
                    port=port_name,
                )
            )
        return issues

    # --- 3. required inputs ------------------------------------------------------

    @staticmethod
    def _check_required_inputs(ast: WorkflowAST) -> list[ValidationIssue]:
        """Root-level nodes only; scope children are covered by the scope rules."""
        issues: list[ValidationIssue] = []
        for instance in ast.instances:
            node_type = ast.node_types.get(instance.node_type)
            if node_type is None or instance.parent is not None:
                continue
            for port in node_type.inputs.values():
                if port.scope is not None or not port.is_required():
                    continue
                if port.name in instance.config.port_expressions or ast.incoming(instance.id, port.name):
                    continue
                issues.append(
                    ValidationIssue.create(
                        error_codes.MISSING_REQUIRED_INPUT,
                        f"Node '{instance.id}' has unconnected required input '{port.name}'. "
                        f"Connect a value to it, or mark it optional with @input [{port.name}]",
                        node=instance.id,
                        port=port.name,
                    )
                )
        return issues

    # --- 4. cycles ---------------------------------------------------------------

    @staticmethod
    def _check_cycles(ast: WorkflowAST, tree: ScopeTree) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for layer in tree.layers():
            members = tree.members(layer)
            if not members:
                continue
            edges = layer_edges(ast, tree, layer)
            for cycle in find_cycles(members, edges):
                where = f" in scope '{layer}'" if layer else ""
                path = " -> ".join([*cycle, cycle[0]])
                issues.append(
                    ValidationIssue.create(
                        error_codes.CYCLE_DETECTED,
                        f"Cycle detected{where}: {path}. Iterate with a scope instead of a loop of connections",
                        node=cycle[0],
                    )
                )
        return issues

    # --- 6. reserved names -------------------------------------------------------

    @staticmethod
    def _check_reserved_names(ast: WorkflowAST) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        reserved = ", ".join(sorted(RESERVED_NODE_IDS))
        for name, node_type in ast.node_types.items():
            if name in RESERVED_NODE_IDS or node_type.name in RESERVED_NODE_IDS:
                issues.append(
                    ValidationIssue.create(
                        error_codes.RESERVED_NODE_NAME,
                        f"Node type name '{node_type.name}' is reserved. Reserved node names: {reserved}",
                        node=node_type.name,
                    )
                )
        for instance in ast.instances:
            if instance.id in RESERVED_NODE_IDS:
                issues.append(
                    ValidationIssue.create(
                        error_codes.RESERVED_INSTANCE_ID,
                        f"Instance id '{instance.id}' is reserved. Reserved names: {reserved}",
                        node=instance.id,
                    )
                )
        return issues

    # --- advisories --------------------------------------------------------------

    @staticmethod
    def _check_unused_nodes(ast: WorkflowAST) -> list[ValidationIssue]:
        used: set[str] = set()
        for connection in ast.connections:
            used.add(connection.source.node)
            used.add(connection.target.node)
        return [
            ValidationIssue.create(
                error_codes.UNUSED_NODE,
                f"Node '{instance.id}' is defined but never connected",
                node=instance.id,
            )
            for instance in ast.instances
            if instance.id not in used and instance.id not in RESERVED_NODE_IDS
        ]

    @staticmethod
    def _check_exit_ports(ast: WorkflowAST) -> list[ValidationIssue]:
        return [
            ValidationIssue.create(
                error_codes.UNREACHABLE_EXIT_PORT,
                f"Exit port '{port.name}' has no incoming connection; the workflow returns None for it",
                node=EXIT_NODE,
                port=port.name,
            )
            for port in ast.exit_ports.values()
            if not port.is_step and not ast.incoming(EXIT_NODE, port.name)
        ]


def _check_endpoint(
    ast: WorkflowAST, connection: Connection, direction: str, instance_ids: list[str]
) -> list[ValidationIssue]:
    ref = connection.source if direction == "output" else connection.target
    is_source = direction == "output"
    boundary = START_NODE if is_source else EXIT_NODE

    if ref.node != boundary and ast.get_instance(ref.node) is None:
        code = error_codes.UNKNOWN_SOURCE_NODE if is_source else error_codes.UNKNOWN_TARGET_NODE
        if ref.node in RESERVED_NODE_IDS:
            hint = f" {ref.node} cannot be a connection {'source' if is_source else 'target'}."
        else:
            hint = did_you_mean(ref.node, instance_ids)
        side = "source" if is_source else "target"
        return [
            ValidationIssue.create(
                code, f"Connection {connection} references unknown {side} node '{ref.node}'.{hint}", node=ref.node
            )
        ]

    ports: Optional[dict[str, PortDefinition]]
    ports = ast.output_ports(ref.node) if is_source else ast.input_ports(ref.node)
    if ports is None or ref.port in ports:
        # Unknown node type: reported once per instance
        return []

    code = error_codes.UNKNOWN_SOURCE_PORT if is_source else error_codes.UNKNOWN_TARGET_PORT
    kind = "output" if is_source else "input"
    opposite = ast.input_ports(ref.node) if is_source else ast.output_ports(ref.node)
    if opposite and ref.port in opposite:
        hint = f" '{ref.port}' is an {'input' if is_source else 'output'} port."
    elif ref.node == START_NODE:
        hint = did_you_mean(ref.port, list(ports)) or f" Declare it with '@param {ref.port}'."
    elif ref.node == EXIT_NODE:
        hint = did_you_mean(ref.port, list(ports)) or f" Declare it with '@returns {ref.port}'."
    else:
        hint = did_you_mean(ref.port, list(ports))
    return [
        ValidationIssue.create(
            code,
            f"Node '{ref.node}' does not have {kind} port '{ref.port}'.{hint}",
            node=ref.node,
            port=ref.port,
        )
    ]


def layer_edges(ast: WorkflowAST, tree: ScopeTree, layer: Layer) -> list[tuple[str, str]]:
    """Dependency edges between the members of one scope layer.

    Endpoints are lifted to the member of ``layer`` that contains them.
    Connections through an owner's scoped ports are the scope's own wiring and
    never order the owner. A value flowing from a member into its own scope is
    kept as a self-edge: the owner would need its own result to run.
    """
    edges: list[tuple[str, str]] = []
    for connection in ast.connections:
        source_port = tree.port(connection.source, "output")
        target_port = tree.port(connection.target, "input")
        if source_port is None or target_port is None:
            continue
        if source_port.scope is not None or target_port.scope is not None:
            continue
        source = tree.lift(connection.source.node, layer)
        target = tree.lift(connection.target.node, layer)
        if source is None or target is None:
            continue
        if source == target and connection.source.node != source:
            continue
        edges.append((source, target))
    return edges
