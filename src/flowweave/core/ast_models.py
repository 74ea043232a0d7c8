"""Pydantic models for the workflow graph.

Every model here is frozen. Operations that change a graph return a new
value through ``model_copy(update=...)``; no graph state is shared between
compiles or mutations.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from flowweave.core.port_types import (
    EXECUTE_PORT,
    EXIT_NODE,
    FAILURE_PORT,
    START_NODE,
    SUCCESS_PORT,
    ExecuteWhen,
    Placement,
    PortType,
)


class PortMetadata(BaseModel):
    """Display-only port metadata."""

    model_config = ConfigDict(frozen=True)

    order: Optional[int] = None
    placement: Optional[Placement] = None


class PortDefinition(BaseModel):
    """A named, typed input or output slot."""

    model_config = ConfigDict(frozen=True)

    name: str
    data_type: PortType = PortType.ANY
    optional: bool = False
    # Python source text of the default value, e.g. "0" or "'csv'"
    default: Optional[str] = None
    # Constant-producing Python expression used in lieu of a connection
    expression: Optional[str] = None
    scope: Optional[str] = None
    label: Optional[str] = None
    hidden: bool = False
    py_type: Optional[str] = None
    metadata: PortMetadata = Field(default_factory=PortMetadata)

    @property
    def is_step(self) -> bool:
        return self.data_type == PortType.STEP

    def is_required(self) -> bool:
        """Return True if the port needs an incoming value to run.

        STEP ports, optional ports and ports with a default or a node-type
        expression are never required.
        """
        if self.is_step or self.optional:
            return False
        return self.default is None and self.expression is None


class NodeTypeDefinition(BaseModel):
    """The parsed contract of one annotated function."""

    model_config = ConfigDict(frozen=True)

    name: str
    function_name: str
    inputs: dict[str, PortDefinition] = Field(default_factory=dict)
    outputs: dict[str, PortDefinition] = Field(default_factory=dict)
    execute_when: ExecuteWhen = ExecuteWhen.CONJUNCTION
    is_async: bool = False
    scopes: list[str] = Field(default_factory=list)
    # Pure value-producing node type, called without a trigger argument
    expression: bool = False
    # False when the function returns a bare value instead of a dict of outputs
    returns_dict: bool = True
    label: Optional[str] = None
    description: Optional[str] = None
    source_path: Optional[str] = None
    inferred: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_success_port(self) -> bool:
        return SUCCESS_PORT in self.outputs

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_failure_port(self) -> bool:
        return FAILURE_PORT in self.outputs

    def data_inputs(self, scope: Optional[str] = None) -> list[PortDefinition]:
        """Non-STEP inputs on the node boundary, or under ``scope`` when given."""
        return [p for p in self.inputs.values() if p.scope == scope and not p.is_step]

    def data_outputs(self, scope: Optional[str] = None) -> list[PortDefinition]:
        return [p for p in self.outputs.values() if p.scope == scope and not p.is_step]

    def scoped_inputs(self, scope: str) -> list[PortDefinition]:
        return [p for p in self.inputs.values() if p.scope == scope]

    def scoped_outputs(self, scope: str) -> list[PortDefinition]:
        return [p for p in self.outputs.values() if p.scope == scope]


class InstanceConfig(BaseModel):
    """Per-instance placement and constant overrides."""

    model_config = ConfigDict(frozen=True)

    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    label: Optional[str] = None
    port_expressions: dict[str, str] = Field(default_factory=dict)


class ParentRef(BaseModel):
    """Places an instance inside another instance's named scope."""

    model_config = ConfigDict(frozen=True)

    instance_id: str
    scope_name: str

    @property
    def key(self) -> str:
        return f"{self.instance_id}.{self.scope_name}"


class NodeInstance(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    node_type: str
    config: InstanceConfig = Field(default_factory=InstanceConfig)
    parent: Optional[ParentRef] = None


class PortRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    node: str
    port: str
    scope: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.node}.{self.port}"
        return f"{text}:{self.scope}" if self.scope else text


class Connection(BaseModel):
    """A wire from an output port to an input port."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: PortRef = Field(alias="from")
    target: PortRef = Field(alias="to")

    def __str__(self) -> str:
        return f"{self.source} -> {self.target}"


def default_start_ports() -> dict[str, PortDefinition]:
    return {EXECUTE_PORT: PortDefinition(name=EXECUTE_PORT, data_type=PortType.STEP)}


def default_exit_ports() -> dict[str, PortDefinition]:
    return {
        SUCCESS_PORT: PortDefinition(name=SUCCESS_PORT, data_type=PortType.STEP),
        FAILURE_PORT: PortDefinition(name=FAILURE_PORT, data_type=PortType.STEP),
    }


class WorkflowAST(BaseModel):
    """The complete workflow graph."""

    model_config = ConfigDict(frozen=True)

    name: str
    function_name: str
    kind: Literal["workflow", "pattern"] = "workflow"
    node_types: dict[str, NodeTypeDefinition] = Field(default_factory=dict)
    instances: list[NodeInstance] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    start_ports: dict[str, PortDefinition] = Field(default_factory=default_start_ports)
    exit_ports: dict[str, PortDefinition] = Field(default_factory=default_exit_ports)
    imports: list[str] = Field(default_factory=list)
    is_async: bool = False
    description: Optional[str] = None
    source_path: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def scopes(self) -> dict[str, list[str]]:
        """Map ``owner.scopeName`` to the ids of instances parented there."""
        result: dict[str, list[str]] = {}
        for instance in self.instances:
            if instance.parent is not None:
                result.setdefault(instance.parent.key, []).append(instance.id)
        return result

    def get_instance(self, instance_id: str) -> Optional[NodeInstance]:
        for instance in self.instances:
            if instance.id == instance_id:
                return instance
        return None

    def node_type_of(self, instance_id: str) -> Optional[NodeTypeDefinition]:
        instance = self.get_instance(instance_id)
        if instance is None:
            return None
        return self.node_types.get(instance.node_type)

    def output_ports(self, node_id: str) -> Optional[dict[str, PortDefinition]]:
        """Ports a connection may originate from, or None for an unknown node."""
        if node_id == START_NODE:
            return self.start_ports
        if node_id == EXIT_NODE:
            return {}
        node_type = self.node_type_of(node_id)
        return node_type.outputs if node_type is not None else None

    def input_ports(self, node_id: str) -> Optional[dict[str, PortDefinition]]:
        if node_id == EXIT_NODE:
            return self.exit_ports
        if node_id == START_NODE:
            return {}
        node_type = self.node_type_of(node_id)
        return node_type.inputs if node_type is not None else None

    def children_of(self, owner_id: str, scope_name: str) -> list[NodeInstance]:
        return [
            i
            for i in self.instances
            if i.parent is not None and i.parent.instance_id == owner_id and i.parent.scope_name == scope_name
        ]

    def incoming(self, node_id: str, port: Optional[str] = None) -> list[Connection]:
        return [
            c for c in self.connections if c.target.node == node_id and (port is None or c.target.port == port)
        ]

    def outgoing(self, node_id: str, port: Optional[str] = None) -> list[Connection]:
        return [
            c for c in self.connections if c.source.node == node_id and (port is None or c.source.port == port)
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the plain JSON shape shared with external tooling."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowAST":
        return cls.model_validate(data)
