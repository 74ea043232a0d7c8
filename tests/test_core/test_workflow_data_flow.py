"""Test the execution ordering module."""

import pytest

from flowweave.core.workflow_data_flow import CycleError, build_execution_order, find_cycles


class TestBuildExecutionOrder:
    """Test the topological sort for execution order."""

    def test_linear_workflow(self):
        """Test simple linear workflow."""
        order = build_execution_order(["c", "b", "a"], [("a", "b"), ("b", "c")])
        assert order == ["a", "b", "c"]

    def test_ties_follow_declaration_order(self):
        """Independent nodes keep the order they were declared in."""
        order = build_execution_order(["z", "y", "x"], [])
        assert order == ["z", "y", "x"]

    def test_parallel_branches(self):
        """Test workflow with parallel branches."""
        edges = [("start", "left"), ("start", "right"), ("left", "end"), ("right", "end")]
        order = build_execution_order(["end", "right", "left", "start"], edges)
        assert order == ["start", "right", "left", "end"]

    def test_edges_outside_the_layer_are_ignored(self):
        order = build_execution_order(["a", "b"], [("Start", "a"), ("b", "Exit"), ("a", "b")])
        assert order == ["a", "b"]

    def test_duplicate_edges(self):
        assert build_execution_order(["a", "b"], [("a", "b"), ("a", "b")]) == ["a", "b"]

    def test_cycle_raises(self):
        with pytest.raises(CycleError) as exc_info:
            build_execution_order(["a", "b", "c"], [("a", "b"), ("b", "a"), ("b", "c")])
        assert exc_info.value.nodes == ["a", "b"]
        assert "a, b" in str(exc_info.value)


class TestFindCycles:
    """Test cycle detection."""

    def test_acyclic_graph(self):
        assert find_cycles(["a", "b", "c"], [("a", "b"), ("b", "c")]) == []

    def test_self_loop_is_a_cycle(self):
        assert find_cycles(["a", "b"], [("a", "a"), ("a", "b")]) == [["a"]]

    def test_multiple_components_in_declaration_order(self):
        edges = [("d", "c"), ("c", "d"), ("b", "a"), ("a", "b"), ("b", "c")]
        assert find_cycles(["a", "b", "c", "d"], edges) == [["a", "b"], ["c", "d"]]

    def test_long_cycle(self):
        nodes = [f"n{i}" for i in range(50)]
        edges = [(nodes[i], nodes[(i + 1) % 50]) for i in range(50)]
        assert find_cycles(nodes, edges) == [nodes]
