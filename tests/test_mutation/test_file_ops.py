"""Tests for locked read-modify-write of workflow files."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from flowweave.core.exceptions import GenerationError
from flowweave.mutation.file_ops import PathLockRegistry, mutate_workflow_file
from flowweave.mutation.operations import add_node, remove_connection, set_node_position, set_port_expression
from flowweave.parsing.workflow_assembler import parse_module


class TestPathLockRegistry:
    def test_one_lock_per_resolved_path(self, tmp_path):
        locks = PathLockRegistry()
        assert locks.lock_for(tmp_path / "a.py") is locks.lock_for(tmp_path / "sub" / ".." / "a.py")
        assert locks.lock_for(tmp_path / "a.py") is not locks.lock_for(tmp_path / "b.py")


class TestMutateWorkflowFile:
    """Test mutations written back to disk."""

    def test_tags_are_written(self, calculator_file):
        mutated = mutate_workflow_file(
            calculator_file, lambda ast: set_node_position(ast, "add", 10, 20), PathLockRegistry()
        )
        text = calculator_file.read_text(encoding="utf-8")
        assert "    @connect add.sum -> Exit.sum\n    @position add 10 20\n" in text
        assert mutated.get_instance("add").config.x == 10
        # The body is left alone without regeneration
        assert "raise NotImplementedError" in text

    def test_regenerate_writes_the_body(self, calculator_file):
        mutate_workflow_file(
            calculator_file,
            lambda ast: set_port_expression(remove_connection(ast, "Start.b", "add.b"), "add", "b", "1"),
            PathLockRegistry(),
            workflow="calculate",
            regenerate=True,
        )
        text = calculator_file.read_text(encoding="utf-8")
        assert '    @node add add_numbers [expr: b="1"]\n' in text
        assert "    add_result = add_numbers(True, a=a, b=1)\n" in text
        assert "raise NotImplementedError" not in text

    def test_invalid_result_leaves_the_file_untouched(self, calculator_file, calculator_source):
        with pytest.raises(GenerationError):
            mutate_workflow_file(
                calculator_file,
                lambda ast: remove_connection(ast, "Start.b", "add.b"),
                PathLockRegistry(),
                regenerate=True,
            )
        assert calculator_file.read_text(encoding="utf-8") == calculator_source

    def test_concurrent_mutations_are_serialized(self, calculator_file):
        locks = PathLockRegistry()

        def add(index):
            return mutate_workflow_file(calculator_file, lambda ast: add_node(ast, f"extra{index}", "add_numbers"), locks)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(add, range(8)))

        (result,) = parse_module(calculator_file.read_text(encoding="utf-8")).workflows
        ids = {i.id for i in result.ast.instances}
        assert ids == {"add", *(f"extra{i}" for i in range(8))}
