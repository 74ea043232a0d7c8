"""Tests for pure AST mutations."""

import pytest

from flowweave.core import error_codes
from flowweave.core.ast_models import ParentRef, PortRef
from flowweave.core.exceptions import MutationError
from flowweave.mutation.operations import (
    add_connection,
    add_node,
    move_to_scope,
    parse_port_ref,
    reconnect,
    remove_all_connections,
    remove_connection,
    remove_from_scope,
    remove_node,
    rename_node,
    set_node_position,
    set_port_expression,
    update_node_config,
)
from flowweave.parsing.workflow_assembler import parse_module
from flowweave.validation.validator import WorkflowValidator


@pytest.fixture
def calculator(calculator_source):
    (result,) = parse_module(calculator_source).workflows
    return result.ast


@pytest.fixture
def for_each(for_each_source):
    (result,) = parse_module(for_each_source).workflows
    return result.ast


def _connections(ast):
    return [str(c) for c in ast.connections]


class TestNodeOperations:
    """Test adding, removing and renaming instances."""

    def test_add_node_returns_a_new_ast(self, calculator):
        updated = add_node(calculator, "add2", "add_numbers")
        assert [i.id for i in updated.instances] == ["add", "add2"]
        assert [i.id for i in calculator.instances] == ["add"]

    def test_add_node_into_scope(self, for_each):
        updated = add_node(for_each, "triple", "double_value", parent=("forEach", "item"))
        assert updated.get_instance("triple").parent == ParentRef(instance_id="forEach", scope_name="item")
        assert updated.scopes == {"forEach.item": ["double", "triple"]}

    @pytest.mark.parametrize("node_id,reason", [("add", "already exists"), ("Start", "reserved")])
    def test_add_node_rejects_taken_ids(self, calculator, node_id, reason):
        with pytest.raises(MutationError, match=reason):
            add_node(calculator, node_id, "add_numbers")

    def test_unknown_type_is_left_to_the_validator(self, calculator):
        updated = add_node(calculator, "mystery", "not_a_type")
        codes = WorkflowValidator().validate(updated).codes()
        assert error_codes.UNKNOWN_NODE_TYPE in codes

    def test_remove_node_drops_its_connections(self, calculator):
        updated = remove_node(calculator, "add")
        assert updated.instances == []
        assert updated.connections == []

    def test_remove_node_with_children(self, for_each):
        updated = remove_node(for_each, "forEach")
        assert updated.instances == []
        assert updated.connections == []

    def test_remove_node_keeping_children(self, for_each):
        updated = remove_node(for_each, "forEach", remove_children=False)
        (double,) = updated.instances
        assert double.parent is None
        assert _connections(updated) == []

    def test_rename_node(self, for_each):
        updated = rename_node(for_each, "forEach", "loop")
        assert updated.get_instance("double").parent.instance_id == "loop"
        assert _connections(updated) == [
            "Start.values -> loop.items",
            "loop.item:item -> double.x",
            "double.y -> loop.result:item",
            "loop.results -> Exit.results",
        ]

    def test_rename_to_taken_id(self, for_each):
        with pytest.raises(MutationError, match="already exists"):
            rename_node(for_each, "forEach", "double")

    def test_missing_node(self, calculator):
        with pytest.raises(MutationError) as exc_info:
            remove_node(calculator, "nope")
        assert exc_info.value.operation == "remove_node"
        assert str(exc_info.value) == "remove_node failed: node 'nope' does not exist"


class TestConfig:
    def test_update_config(self, calculator):
        updated = update_node_config(calculator, "add", label="Sum it")
        assert updated.get_instance("add").config.label == "Sum it"

    def test_unknown_config_field(self, calculator):
        with pytest.raises(MutationError, match="unknown config fields: colour"):
            update_node_config(calculator, "add", colour="red")

    def test_position(self, calculator):
        config = set_node_position(calculator, "add", 10, 20).get_instance("add").config
        assert (config.x, config.y) == (10, 20)

    def test_port_expression_set_and_clear(self, calculator):
        updated = set_port_expression(calculator, "add", "b", "1")
        assert updated.get_instance("add").config.port_expressions == {"b": "1"}
        cleared = set_port_expression(updated, "add", "b", None)
        assert cleared.get_instance("add").config.port_expressions == {}


class TestScopeOperations:
    def test_remove_from_scope_and_move_back(self, for_each):
        outside = remove_from_scope(for_each, "double")
        assert outside.get_instance("double").parent is None
        inside = move_to_scope(outside, "double", "forEach", "item")
        assert inside.get_instance("double").parent == for_each.get_instance("double").parent

    def test_remove_from_scope_at_root(self, for_each):
        with pytest.raises(MutationError, match="not inside a scope"):
            remove_from_scope(for_each, "forEach")

    def test_move_to_undeclared_scope(self, for_each):
        with pytest.raises(MutationError, match="has no scope 'body'"):
            move_to_scope(for_each, "double", "forEach", "body")

    def test_move_into_own_scope_tree(self, for_each):
        with pytest.raises(MutationError, match="its own scope tree"):
            move_to_scope(for_each, "forEach", "double", "item")


class TestConnectionOperations:
    """Test connection edits and their effect on validation."""

    def test_removing_a_required_connection(self, calculator):
        updated = remove_connection(calculator, "Start.b", "add.b")
        (error,) = WorkflowValidator().validate(updated).errors
        assert error.code == error_codes.MISSING_REQUIRED_INPUT
        assert (error.node, error.port) == ("add", "b")

    def test_add_connection(self, calculator):
        updated = add_connection(calculator, "add.onSuccess", PortRef(node="Exit", port="onSuccess"))
        assert _connections(updated)[-1] == "add.onSuccess -> Exit.onSuccess"

    def test_duplicate_connection(self, calculator):
        with pytest.raises(MutationError, match="already exists"):
            add_connection(calculator, "Start.a", "add.a")

    def test_remove_missing_connection(self, calculator):
        with pytest.raises(MutationError, match="connection not found"):
            remove_connection(calculator, "Start.a", "add.b")

    def test_remove_all_connections_of_a_port(self, calculator):
        assert _connections(remove_all_connections(calculator, "add", "a")) == [
            "Start.b -> add.b",
            "add.sum -> Exit.sum",
        ]
        assert _connections(remove_all_connections(calculator, "add")) == []

    def test_reconnect_keeps_position(self, calculator):
        updated = reconnect(calculator, "Start.a", "add.a", "add.b")
        assert _connections(updated)[0] == "Start.a -> add.b"
        assert len(updated.connections) == 3

    def test_parse_port_ref(self):
        assert parse_port_ref("loop.item:body") == PortRef(node="loop", port="item", scope="body")
        assert parse_port_ref("add.sum") == PortRef(node="add", port="sum")
        with pytest.raises(MutationError, match="node.port"):
            parse_port_ref("add")
