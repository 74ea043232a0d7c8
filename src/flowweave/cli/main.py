"""Command-line entry point: ``flowweave validate|compile|sync``."""

import json
import sys
from pathlib import Path
from typing import Optional

import click

from flowweave.cli.logging_config import configure_logging
from flowweave.compiler import compile_file, validate_source, write_source_atomic
from flowweave.core.exceptions import FlowWeaveError, GenerationError
from flowweave.core.settings import SettingsManager
from flowweave.core.validation_result import ValidationIssue, ValidationResult
from flowweave.parsing.port_sync import sync_docstring_to_signature, sync_signature_to_docstring
from flowweave.parsing.workflow_assembler import read_source_file

verbose_option = click.option("--verbose", "-v", is_flag=True, help="Show debug logs")
file_argument = click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))


def _format_issue(issue: ValidationIssue) -> str:
    location = ""
    if issue.node:
        location = f" ({issue.node}.{issue.port})" if issue.port else f" ({issue.node})"
    return f"[{issue.code}]{location} {issue.message}"


def _echo_result(name: str, result: ValidationResult) -> None:
    mark = "✓" if result.valid else "❌"
    click.echo(f"{mark} {name}: {len(result.errors)} error(s), {len(result.warnings)} warning(s)")
    for issue in result.errors:
        click.echo(f"  error   {_format_issue(issue)}")
    for issue in result.warnings:
        click.echo(f"  warning {_format_issue(issue)}")


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(package_name="flowweave")
def main() -> None:
    """Compile annotated Python functions into executable workflows."""
    pass


@main.command()
@file_argument
@click.option("--workflow", "-w", help="Only validate this workflow")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@verbose_option
def validate(file: Path, workflow: Optional[str], as_json: bool, verbose: bool) -> None:
    """Validate the workflows in FILE.

    Exits with status 1 when any workflow has errors.
    """
    configure_logging(verbose)
    settings = SettingsManager().load()
    try:
        results = validate_source(read_source_file(file), str(file), workflow, settings)
    except FlowWeaveError as e:
        _fail(str(e))
        return

    if as_json:
        click.echo(json.dumps({name: result.to_dict() for name, result in results.items()}, indent=2))
    elif not results:
        click.echo(f"No workflows found in {file}")
    else:
        for name, result in results.items():
            _echo_result(name, result)

    if not all(result.valid for result in results.values()):
        sys.exit(1)


@main.command(name="compile")
@file_argument
@click.option("--workflow", "-w", help="Workflow to compile (default: the first one)")
@click.option("--in-place", is_flag=True, help="Regenerate the workflow body inside FILE")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Write the body to a file")
@verbose_option
def compile_command(
    file: Path, workflow: Optional[str], in_place: bool, output: Optional[Path], verbose: bool
) -> None:
    """Generate the orchestration body of a workflow in FILE."""
    configure_logging(verbose)
    settings = SettingsManager().load()
    try:
        result = compile_file(file, workflow, settings, in_place=in_place)
    except GenerationError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    except FlowWeaveError as e:
        _fail(str(e))
        return

    for issue in result.warnings:
        click.echo(f"warning {_format_issue(issue)}", err=True)

    if output is not None:
        output.write_text(result.code, encoding="utf-8")
        click.echo(f"✓ Wrote '{result.ast.name}' body to {output}")
    if in_place:
        click.echo(f"✓ Regenerated '{result.ast.name}' in {file}")
    if output is None and not in_place:
        click.echo(result.code, nl=False)


@main.command()
@file_argument
@click.option(
    "--direction",
    type=click.Choice(["signature", "docstring"]),
    default="signature",
    show_default=True,
    help="'signature' updates signatures from tags; 'docstring' updates tags from signatures",
)
@click.option("--function", "function_name", help="Only sync this function (default: every node type)")
@verbose_option
def sync(file: Path, direction: str, function_name: Optional[str], verbose: bool) -> None:
    """Bring docstring tags and function signatures in FILE back in line."""
    configure_logging(verbose)
    try:
        source = read_source_file(file)
        if direction == "signature":
            updated = sync_docstring_to_signature(source, function_name)
        else:
            updated = sync_signature_to_docstring(source, function_name)
    except FlowWeaveError as e:
        _fail(str(e))
        return

    if updated == source:
        click.echo(f"{file} is already in sync")
        return
    write_source_atomic(file, updated)
    click.echo(f"✓ Updated {direction}s in {file}")
