"""Tests for the flowweave command line."""

import json

import pytest
from click.testing import CliRunner

from flowweave.cli.main import main

CALCULATOR_BODY = """\
# @flow-weaver-body-start
if not execute:
    return {"onSuccess": False, "onFailure": False, "sum": None}

# add: add_numbers
add_result = add_numbers(True, a=a, b=b)

return {"onSuccess": True, "onFailure": False, "sum": add_result["sum"]}
# @flow-weaver-body-end
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def broken_file(tmp_path, calculator_source):
    path = tmp_path / "broken.py"
    path.write_text(calculator_source.replace("    @connect Start.b -> add.b\n", ""), encoding="utf-8")
    return path


class TestValidateCommand:
    def test_valid_workflow(self, runner, calculator_file):
        result = runner.invoke(main, ["validate", str(calculator_file)])
        assert result.exit_code == 0
        assert "✓ calculate: 0 error(s), 0 warning(s)" in result.output

    def test_errors_exit_with_status_1(self, runner, broken_file):
        result = runner.invoke(main, ["validate", str(broken_file)])
        assert result.exit_code == 1
        assert "❌ calculate: 1 error(s), 0 warning(s)" in result.output
        assert "[MISSING_REQUIRED_INPUT] (add.b)" in result.output

    def test_json_output(self, runner, calculator_file):
        result = runner.invoke(main, ["validate", "--json", str(calculator_file)])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"calculate": {"valid": True, "errors": [], "warnings": []}}

    def test_module_without_workflows(self, runner, tmp_path):
        path = tmp_path / "empty.py"
        path.write_text("x = 1\n", encoding="utf-8")
        result = runner.invoke(main, ["validate", str(path)])
        assert result.exit_code == 0
        assert f"No workflows found in {path}" in result.output

    def test_unknown_workflow(self, runner, calculator_file):
        result = runner.invoke(main, ["validate", "-w", "missing", str(calculator_file)])
        assert result.exit_code == 1
        assert "No workflow named 'missing'. Available workflows: calculate" in result.output


class TestCompileCommand:
    """Test body generation from the command line."""

    def test_prints_the_body(self, runner, calculator_file):
        result = runner.invoke(main, ["compile", str(calculator_file)])
        assert result.exit_code == 0
        assert result.output == CALCULATOR_BODY

    def test_in_place(self, runner, calculator_file):
        result = runner.invoke(main, ["compile", "--in-place", str(calculator_file)])
        assert result.exit_code == 0
        assert f"✓ Regenerated 'calculate' in {calculator_file}" in result.output
        text = calculator_file.read_text(encoding="utf-8")
        assert "    # @flow-weaver-body-start\n" in text
        assert "raise NotImplementedError" not in text

        again = runner.invoke(main, ["compile", "--in-place", str(calculator_file)])
        assert again.exit_code == 0
        assert calculator_file.read_text(encoding="utf-8") == text

    def test_output_file(self, runner, calculator_file, tmp_path):
        output = tmp_path / "body.py"
        result = runner.invoke(main, ["compile", "-o", str(output), str(calculator_file)])
        assert result.exit_code == 0
        assert f"✓ Wrote 'calculate' body to {output}" in result.output
        assert output.read_text(encoding="utf-8") == CALCULATOR_BODY

    def test_blocking_errors(self, runner, broken_file):
        result = runner.invoke(main, ["compile", "--in-place", str(broken_file)])
        assert result.exit_code == 1
        assert "MISSING_REQUIRED_INPUT" in result.output
        assert "raise NotImplementedError" in broken_file.read_text(encoding="utf-8")


class TestSyncCommand:
    def test_already_in_sync(self, runner, calculator_file):
        result = runner.invoke(main, ["sync", str(calculator_file)])
        assert result.exit_code == 0
        assert f"{calculator_file} is already in sync" in result.output

    def test_signature_direction(self, runner, calculator_file, calculator_source):
        calculator_file.write_text(
            calculator_source.replace("@output sum - Sum of a and b", "@output sum - Sum of a and b\n    @output carry"),
            encoding="utf-8",
        )
        result = runner.invoke(main, ["sync", str(calculator_file)])
        assert result.exit_code == 0
        assert f"✓ Updated signatures in {calculator_file}" in result.output
        assert '"sum": float, "carry": object}' in calculator_file.read_text(encoding="utf-8")

    def test_docstring_direction(self, runner, calculator_file, calculator_source):
        calculator_file.write_text(
            calculator_source.replace("a: float, b: float)", "a: float, b: float, scale: float = 1.0)", 1),
            encoding="utf-8",
        )
        result = runner.invoke(main, ["sync", "--direction", "docstring", str(calculator_file)])
        assert result.exit_code == 0
        assert f"✓ Updated docstrings in {calculator_file}" in result.output
        assert "    @input [scale=1.0]\n" in calculator_file.read_text(encoding="utf-8")

    def test_unknown_function(self, runner, calculator_file):
        result = runner.invoke(main, ["sync", "--function", "nope", str(calculator_file)])
        assert result.exit_code == 1
        assert "No function named 'nope'" in result.output
