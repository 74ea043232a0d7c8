"""Tests for the workflow graph models."""

import pytest
from pydantic import ValidationError

from flowweave.core.ast_models import (
    Connection,
    NodeInstance,
    NodeTypeDefinition,
    ParentRef,
    PortDefinition,
    PortRef,
    WorkflowAST,
)
from flowweave.core.port_types import PortType


def _loop_type():
    return NodeTypeDefinition(
        name="forEach",
        function_name="for_each",
        inputs={
            "execute": PortDefinition(name="execute", data_type=PortType.STEP),
            "items": PortDefinition(name="items", data_type=PortType.ARRAY),
            "result": PortDefinition(name="result", scope="item"),
        },
        outputs={
            "results": PortDefinition(name="results", data_type=PortType.ARRAY),
            "item": PortDefinition(name="item", scope="item"),
        },
        scopes=["item"],
    )


class TestPortDefinition:
    """Test required-ness of ports."""

    def test_plain_port_is_required(self):
        assert PortDefinition(name="a", data_type=PortType.NUMBER).is_required()

    @pytest.mark.parametrize(
        "port",
        [
            PortDefinition(name="go", data_type=PortType.STEP),
            PortDefinition(name="a", optional=True),
            PortDefinition(name="a", default="0"),
            PortDefinition(name="a", expression="[]"),
        ],
    )
    def test_port_not_required(self, port):
        """STEP, optional, defaulted and expression ports never need a connection."""
        assert not port.is_required()

    def test_models_are_frozen(self):
        port = PortDefinition(name="a")
        with pytest.raises(ValidationError):
            port.name = "b"


class TestNodeTypeDefinition:
    def test_boundary_and_scoped_ports_are_separated(self):
        node_type = _loop_type()
        assert [p.name for p in node_type.data_inputs()] == ["items"]
        assert [p.name for p in node_type.data_outputs()] == ["results"]
        assert [p.name for p in node_type.scoped_inputs("item")] == ["result"]
        assert [p.name for p in node_type.scoped_outputs("item")] == ["item"]


class TestWorkflowAST:
    """Test graph queries on WorkflowAST."""

    @pytest.fixture
    def ast(self):
        return WorkflowAST(
            name="double_all",
            function_name="double_all",
            node_types={"forEach": _loop_type()},
            instances=[
                NodeInstance(id="loop", node_type="forEach"),
                NodeInstance(id="inner", node_type="forEach", parent=ParentRef(instance_id="loop", scope_name="item")),
            ],
            connections=[
                Connection(source=PortRef(node="Start", port="values"), target=PortRef(node="loop", port="items")),
                Connection(source=PortRef(node="loop", port="results"), target=PortRef(node="Exit", port="out")),
            ],
        )

    def test_scopes_map_owner_scope_to_children(self, ast):
        assert ast.scopes == {"loop.item": ["inner"]}

    def test_default_boundary_ports(self, ast):
        assert list(ast.start_ports) == ["execute"]
        assert list(ast.exit_ports) == ["onSuccess", "onFailure"]
        assert ast.exit_ports["onSuccess"].is_step

    def test_port_lookup(self, ast):
        assert ast.output_ports("Start") is ast.start_ports
        assert ast.input_ports("Exit") is ast.exit_ports
        assert ast.output_ports("Exit") == {}
        assert "items" in ast.input_ports("loop")
        assert ast.input_ports("missing") is None

    def test_children_and_connections(self, ast):
        assert [i.id for i in ast.children_of("loop", "item")] == ["inner"]
        assert len(ast.incoming("loop")) == 1
        assert ast.outgoing("loop", "results")[0].target.node == "Exit"
        assert ast.incoming("loop", "other") == []

    def test_to_dict_uses_from_and_to(self, ast):
        data = ast.to_dict()
        assert data["connections"][0] == {
            "from": {"node": "Start", "port": "values"},
            "to": {"node": "loop", "port": "items"},
        }
        assert data["scopes"] == {"loop.item": ["inner"]}

    def test_dict_round_trip(self, ast):
        assert WorkflowAST.from_dict(ast.to_dict()) == ast

    def test_connection_str(self):
        connection = Connection(
            source=PortRef(node="loop", port="item", scope="item"), target=PortRef(node="inner", port="x")
        )
        assert str(connection) == "loop.item:item -> inner.x"
