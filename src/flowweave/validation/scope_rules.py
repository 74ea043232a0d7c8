"""Scope topology rules.

Scoped connections link an owner's scoped ports with the children placed in
that scope. An owner's scoped OUTPUT feeds children (it becomes a parameter of
the scope callback); an owner's scoped INPUT collects a child's value (it
becomes a field of the callback's return value).

A scope qualifier on an endpoint is optional on owner ports (the port's own
scope is implied) and on child ports (the child's parent scope is implied).
Values may flow from an enclosing layer into a scope, never out of it.
"""

import logging
from typing import Optional

from flowweave.core import error_codes
from flowweave.core.ast_models import NodeInstance, PortRef, WorkflowAST
from flowweave.core.port_types import EXIT_NODE, START_NODE
from flowweave.core.scope_tree import Direction, ScopeTree, scope_key
from flowweave.core.suggestion_utils import did_you_mean
from flowweave.core.validation_result import ValidationIssue

logger = logging.getLogger(__name__)


def check_parents(ast: WorkflowAST) -> list[ValidationIssue]:
    """Every parent reference names an existing instance and a scope its type declares."""
    issues: list[ValidationIssue] = []
    instance_ids = [i.id for i in ast.instances]
    for instance in ast.instances:
        parent = instance.parent
        if parent is None:
            continue
        if parent.instance_id == instance.id:
            issues.append(
                ValidationIssue.create(
                    error_codes.SCOPE_UNKNOWN_PARENT,
                    f"Node '{instance.id}' cannot be placed inside its own scope '{parent.scope_name}'",
                    node=instance.id,
                )
            )
            continue
        owner = ast.get_instance(parent.instance_id)
        if owner is None:
            issues.append(
                ValidationIssue.create(
                    error_codes.SCOPE_UNKNOWN_PARENT,
                    f"Node '{instance.id}' is placed in scope '{parent.key}' of unknown node "
                    f"'{parent.instance_id}'.{did_you_mean(parent.instance_id, instance_ids)}",
                    node=instance.id,
                )
            )
            continue
        owner_type = ast.node_types.get(owner.node_type)
        if owner_type is not None and parent.scope_name not in owner_type.scopes:
            available = ", ".join(owner_type.scopes) or "none"
            issues.append(
                ValidationIssue.create(
                    error_codes.SCOPE_WRONG_SCOPE_NAME,
                    f"Node '{instance.id}' is placed in scope '{parent.scope_name}' but '{owner.id}' "
                    f"({owner_type.name}) does not declare it. Available scopes: {available}",
                    node=instance.id,
                )
            )

    issues.extend(_check_parent_loops(ast))
    return issues


def _check_parent_loops(ast: WorkflowAST) -> list[ValidationIssue]:
    issues = []
    parents = {i.id: i.parent.instance_id for i in ast.instances if i.parent is not None}
    reported: set[str] = set()
    for start in parents:
        if start in reported:
            continue
        path = [start]
        current = parents.get(start)
        while current is not None and current != start and current not in path:
            path.append(current)
            current = parents.get(current)
        # Self-placement is reported by check_parents
        if current != start or len(path) == 1:
            continue
        reported.update(path)
        issues.append(
            ValidationIssue.create(
                error_codes.SCOPE_UNKNOWN_PARENT,
                f"Scope placement loops back on itself: {' -> '.join([*path, start])}",
                node=start,
            )
        )
    return issues


def _check_qualifier(
    ast: WorkflowAST, tree: ScopeTree, ref: PortRef, direction: Direction
) -> Optional[ValidationIssue]:
    if ref.scope is None:
        return None
    side = "from" if direction == "output" else "to"
    if ref.node in (START_NODE, EXIT_NODE):
        return ValidationIssue.create(
            error_codes.SCOPE_WRONG_SCOPE_NAME,
            f"Connection {side} '{ref}' uses scope qualifier ':{ref.scope}' but {ref.node} has no scopes",
            node=ref.node,
            port=ref.port,
        )
    port = tree.port(ref, direction)
    node_type = ast.node_type_of(ref.node)
    if port is None or node_type is None:
        return None

    declared = node_type.scopes
    kind = "output" if direction == "output" else "input"
    if port.scope is not None:
        if ref.scope == port.scope:
            return None
        if ref.scope in declared:
            return ValidationIssue.create(
                error_codes.SCOPE_UNKNOWN_PORT,
                f"Scoped {kind} '{ref.port}' on '{ref.node}' belongs to scope '{port.scope}', not '{ref.scope}'",
                node=ref.node,
                port=ref.port,
            )
    else:
        if ref.scope in declared:
            ports = node_type.outputs if direction == "output" else node_type.inputs
            available = [p.name for p in ports.values() if p.scope == ref.scope]
            return ValidationIssue.create(
                error_codes.SCOPE_UNKNOWN_PORT,
                f"'{ref.node}.{ref.port}' is not a scoped {kind} of scope '{ref.scope}'. "
                f"Available scoped {kind}s: {', '.join(available) or 'none'}",
                node=ref.node,
                port=ref.port,
            )
        instance = ast.get_instance(ref.node)
        if instance is not None and instance.parent is not None and instance.parent.scope_name == ref.scope:
            return None

    available_scopes = ", ".join(declared) or "none"
    return ValidationIssue.create(
        error_codes.SCOPE_WRONG_SCOPE_NAME,
        f"Connection {side} '{ref.node}.{ref.port}' uses scope qualifier ':{ref.scope}' but '{ref.node}' "
        f"does not define scope '{ref.scope}'. Available scopes: {available_scopes}",
        node=ref.node,
        port=ref.port,
    )


def check_connection_scopes(ast: WorkflowAST, tree: ScopeTree) -> list[ValidationIssue]:
    """Scope qualifiers name the right scope and no connection leaves its scope."""
    issues: list[ValidationIssue] = []
    for connection in ast.connections:
        source_port = tree.port(connection.source, "output")
        target_port = tree.port(connection.target, "input")
        qualifier_issues = [
            issue
            for issue in (
                _check_qualifier(ast, tree, connection.source, "output"),
                _check_qualifier(ast, tree, connection.target, "input"),
            )
            if issue is not None
        ]
        issues.extend(qualifier_issues)
        if qualifier_issues or source_port is None or target_port is None:
            continue

        source_layer = tree.endpoint_layer(connection.source, "output")
        target_layer = tree.endpoint_layer(connection.target, "input")
        if source_layer == target_layer or tree.encloses(source_layer, target_layer):
            continue
        outside = target_layer or "the workflow root"
        inside = source_layer or "the workflow root"
        issues.append(
            ValidationIssue.create(
                error_codes.SCOPE_CONNECTION_OUTSIDE,
                f"Connection {connection} leaves scope '{inside}': '{connection.target.node}' is in {outside}",
                node=connection.source.node,
                port=connection.source.port,
            )
        )
    return issues


def _has_value(ast: WorkflowAST, instance: NodeInstance, port_name: str) -> bool:
    return port_name in instance.config.port_expressions or bool(ast.incoming(instance.id, port_name))


def check_scope_contents(ast: WorkflowAST, tree: ScopeTree) -> list[ValidationIssue]:
    """Per declared scope: emptiness, child inputs, scoped inputs and orphaned children."""
    issues: list[ValidationIssue] = []
    for instance in ast.instances:
        node_type = ast.node_types.get(instance.node_type)
        if node_type is None:
            continue
        for scope in node_type.scopes:
            key = scope_key(instance.id, scope)
            children = tree.members(key)
            if not children:
                issues.append(
                    ValidationIssue.create(
                        error_codes.SCOPE_EMPTY,
                        f"Scope '{scope}' on node '{instance.id}' has no child nodes",
                        node=instance.id,
                    )
                )
                continue

            for child_id in children:
                child = ast.get_instance(child_id)
                child_type = ast.node_types.get(child.node_type) if child else None
                if child is None or child_type is None:
                    continue
                for port in child_type.inputs.values():
                    if port.scope is not None or not port.is_required() or _has_value(ast, child, port.name):
                        continue
                    issues.append(
                        ValidationIssue.create(
                            error_codes.SCOPE_MISSING_REQUIRED_INPUT,
                            f"Scoped child '{child_id}' has unconnected required input '{port.name}' "
                            f"within scope '{scope}' of '{instance.id}'",
                            node=child_id,
                            port=port.name,
                        )
                    )

            for port in node_type.scoped_inputs(scope):
                if not ast.incoming(instance.id, port.name):
                    issues.append(
                        ValidationIssue.create(
                            error_codes.SCOPE_UNUSED_INPUT,
                            f"Scoped input '{port.name}' of '{instance.id}' (scope '{scope}') has no connection "
                            f"from inner nodes; the scope returns None for it",
                            node=instance.id,
                            port=port.name,
                        )
                    )

            scoped_outputs = {p.name for p in node_type.scoped_outputs(scope)}
            scoped_inputs = {p.name for p in node_type.scoped_inputs(scope)}
            for child_id in children:
                linked = any(
                    c.source.node == instance.id and c.source.port in scoped_outputs and c.target.node == child_id
                    for c in ast.connections
                ) or any(
                    c.target.node == instance.id and c.target.port in scoped_inputs and c.source.node == child_id
                    for c in ast.connections
                )
                if not linked:
                    issues.append(
                        ValidationIssue.create(
                            error_codes.SCOPE_ORPHANED_CHILD,
                            f"Child node '{child_id}' is inside scope '{scope}' of '{instance.id}' but has no "
                            f"scoped connection to or from it",
                            node=child_id,
                        )
                    )

    logger.debug(f"Checked scope contents of '{ast.name}'", extra={"phase": "validate_scopes"})
    return issues


def check_scope_topology(ast: WorkflowAST, tree: Optional[ScopeTree] = None) -> list[ValidationIssue]:
    tree = tree or ScopeTree(ast)
    return [*check_parents(ast), *check_connection_scopes(ast, tree), *check_scope_contents(ast, tree)]
