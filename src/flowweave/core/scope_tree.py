"""Scope layers of a workflow graph.

A layer is either the workflow root (``None``) or one ``owner.scopeName`` key.
Each instance lives in exactly one layer, given by its parent reference. Each
connection endpoint lives in a layer too: an owner's scoped port lives inside
the scope it belongs to, every other port in its instance's layer.
"""

from typing import Literal, Optional

from flowweave.core.ast_models import NodeInstance, PortDefinition, PortRef, WorkflowAST
from flowweave.core.port_types import EXIT_NODE, START_NODE

Layer = Optional[str]
Direction = Literal["input", "output"]


def scope_key(owner_id: str, scope_name: str) -> str:
    return f"{owner_id}.{scope_name}"


class ScopeTree:
    """Read-only index over the scope layers of one ``WorkflowAST``."""

    def __init__(self, ast: WorkflowAST):
        self.ast = ast
        self._instances: dict[str, NodeInstance] = {}
        for instance in ast.instances:
            self._instances.setdefault(instance.id, instance)

    def layer_of(self, node_id: str) -> Layer:
        """Layer an instance is placed in; ``Start``/``Exit`` are on the root."""
        instance = self._instances.get(node_id)
        if instance is None or instance.parent is None:
            return None
        return instance.parent.key

    def owner_of(self, layer: Layer) -> Optional[str]:
        if layer is None:
            return None
        return layer.rsplit(".", 1)[0]

    def members(self, layer: Layer) -> list[str]:
        """Instance ids placed directly in ``layer``, in declaration order."""
        return [i for i in self._instances if self.layer_of(i) == layer]

    def port(self, ref: PortRef, direction: Direction) -> Optional[PortDefinition]:
        ports = self.ast.output_ports(ref.node) if direction == "output" else self.ast.input_ports(ref.node)
        if ports is None:
            return None
        return ports.get(ref.port)

    def endpoint_layer(self, ref: PortRef, direction: Direction) -> Layer:
        """Layer a connection endpoint lives in."""
        if ref.node in (START_NODE, EXIT_NODE):
            return None
        port = self.port(ref, direction)
        if port is not None and port.scope is not None:
            return scope_key(ref.node, port.scope)
        return self.layer_of(ref.node)

    def ancestors(self, layer: Layer) -> list[Layer]:
        """``layer`` followed by every enclosing layer, ending at the root."""
        chain: list[Layer] = []
        seen: set[str] = set()
        current = layer
        while current is not None and current not in seen:
            seen.add(current)
            chain.append(current)
            owner = self.owner_of(current)
            current = self.layer_of(owner) if owner is not None else None
        chain.append(None)
        return chain

    def encloses(self, outer: Layer, inner: Layer) -> bool:
        """Return True if ``outer`` is ``inner`` or one of its enclosing layers."""
        return outer in self.ancestors(inner)

    def lift(self, node_id: str, layer: Layer) -> Optional[str]:
        """Return the node of ``layer`` that contains ``node_id``, or None.

        A node inside a nested scope lifts to the scope owner (or the owner's
        owner) that sits directly in ``layer``.
        """
        current: Optional[str] = node_id
        seen: set[str] = set()
        while current is not None and current not in seen:
            seen.add(current)
            if current in self._instances and self.layer_of(current) == layer:
                return current
            current = self.owner_of(self.layer_of(current))
        return None

    def layers(self) -> list[Layer]:
        """Root first, then every declared scope of every instance, in declaration order."""
        result: list[Layer] = [None]
        for instance in self.ast.instances:
            node_type = self.ast.node_types.get(instance.node_type)
            if node_type is None:
                continue
            for scope in node_type.scopes:
                key = scope_key(instance.id, scope)
                if key not in result:
                    result.append(key)
        return result
