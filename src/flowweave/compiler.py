"""Compile pipeline: parse, assemble, validate, plan and generate.

Every function here is synchronous and pure apart from ``compile_file``,
which reads (and with ``in_place`` writes) the source file.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from flowweave.core import error_codes
from flowweave.core.ast_models import WorkflowAST
from flowweave.core.exceptions import WorkflowNotFoundError
from flowweave.core.settings import FlowWeaveSettings
from flowweave.core.validation_result import ValidationIssue, ValidationResult
from flowweave.generator.emitter import generate_code
from flowweave.generator.in_place import generate_in_place
from flowweave.generator.planner import build_plan
from flowweave.parsing.workflow_assembler import AssemblyResult, ParsedModule, parse_module, read_source_file
from flowweave.validation.validator import ValidationRule, WorkflowValidator

logger = logging.getLogger(__name__)


@dataclass
class CompileResult:
    """Outcome of compiling one workflow."""

    ast: WorkflowAST
    validation: ValidationResult
    code: str
    # Full module text with the body regenerated, set for in-place compiles
    source: Optional[str] = None
    warnings: list[ValidationIssue] = field(default_factory=list)


def parse_source(source: str, source_path: Optional[str] = None) -> ParsedModule:
    return parse_module(source, source_path)


def select_workflow(module: ParsedModule, name: Optional[str] = None) -> AssemblyResult:
    """Pick a workflow by name, or the first one in the module.

    Raises:
        WorkflowNotFoundError: If no workflow matches
    """
    if name is not None:
        result = module.get_workflow(name)
        if result is None:
            available = ", ".join(r.ast.name for r in module.workflows) or "none"
            raise WorkflowNotFoundError(f"No workflow named '{name}'. Available workflows: {available}")
        return result
    if not module.workflows:
        raise WorkflowNotFoundError(f"No @flowWeaver workflow found in {module.source_path or '<source>'}")
    return module.workflows[0]


def validate_assembly(
    module: ParsedModule,
    assembly: AssemblyResult,
    settings: Optional[FlowWeaveSettings] = None,
    extra_rules: Optional[list[ValidationRule]] = None,
) -> ValidationResult:
    """Validate one assembled workflow, merging parse and assembly issues.

    The assembler already reports unknown node types, so the validator's
    report for the same instances is dropped.
    """
    settings = settings or FlowWeaveSettings()
    validator = WorkflowValidator(extra_rules=extra_rules, settings=settings.validation)
    result = validator.validate(assembly.ast)

    reported = {i.node for i in assembly.issues if i.code == error_codes.UNKNOWN_NODE_TYPE}
    validator_issues = [
        issue
        for issue in [*result.errors, *result.warnings]
        if not (issue.code == error_codes.UNKNOWN_NODE_TYPE and issue.node in reported)
    ]
    suppressed = set(settings.validation.suppressed_warnings)
    issues = [
        issue
        for issue in [*module.warnings, *assembly.issues]
        if not (issue.severity == "warning" and issue.code in suppressed)
    ]
    return ValidationResult.from_issues([*issues, *validator_issues])


def validate_source(
    source: str,
    source_path: Optional[str] = None,
    workflow: Optional[str] = None,
    settings: Optional[FlowWeaveSettings] = None,
) -> dict[str, ValidationResult]:
    """Validate every workflow in a module (or only ``workflow``), keyed by name."""
    module = parse_source(source, source_path)
    assemblies = [select_workflow(module, workflow)] if workflow is not None else module.workflows
    return {a.ast.name: validate_assembly(module, a, settings) for a in assemblies}


def compile_source(
    source: str,
    source_path: Optional[str] = None,
    workflow: Optional[str] = None,
    settings: Optional[FlowWeaveSettings] = None,
    in_place: bool = False,
) -> CompileResult:
    """Compile one workflow of a module.

    Raises:
        WorkflowNotFoundError: If the requested workflow does not exist
        GenerationError: If the workflow has blocking errors
    """
    settings = settings or FlowWeaveSettings()
    module = parse_source(source, source_path)
    assembly = select_workflow(module, workflow)
    validation = validate_assembly(module, assembly, settings)

    plan = build_plan(assembly.ast, validation)
    generated = generate_code(plan, settings.generation)
    updated = generate_in_place(source, plan, settings.generation) if in_place else None

    logger.debug(
        f"Compiled '{assembly.ast.name}' with {len(validation.warnings)} warnings",
        extra={"phase": "compile", "workflow": assembly.ast.name, "in_place": in_place},
    )
    return CompileResult(
        ast=assembly.ast,
        validation=validation,
        code=generated.code,
        source=updated,
        warnings=list(validation.warnings),
    )


def write_source_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` through a temp file in the same directory."""
    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(temp_path, path)
    except Exception:
        Path(temp_path).unlink(missing_ok=True)
        raise


def compile_file(
    path: Path,
    workflow: Optional[str] = None,
    settings: Optional[FlowWeaveSettings] = None,
    in_place: bool = False,
) -> CompileResult:
    """Compile a workflow from disk; with ``in_place`` the file is rewritten.

    Raises:
        SourceReadError: If the file (or a module it imports) cannot be read
        WorkflowNotFoundError: If the requested workflow does not exist
        GenerationError: If the workflow has blocking errors
    """
    source = read_source_file(path)
    result = compile_source(source, str(path), workflow, settings, in_place=in_place)
    if in_place and result.source is not None and result.source != source:
        write_source_atomic(path, result.source)
        logger.debug(f"Rewrote {path}", extra={"phase": "compile"})
    return result
