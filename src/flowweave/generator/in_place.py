"""Regenerate a workflow body inside its source file.

Only the text between the body markers is replaced, so user code around the
generated block survives every recompile. A workflow without markers gets
its whole body (everything after the docstring) replaced by a marked block.
"""

import logging
import re
from typing import Optional

from flowweave.core.settings import GenerationSettings
from flowweave.generator.emitter import BODY_END_MARKER, BODY_START_MARKER, WorkflowEmitter
from flowweave.generator.planner import ExecutionPlan
from flowweave.parsing.source_scanner import FunctionSource, find_function
from flowweave.parsing.text_scan import mask_source

logger = logging.getLogger(__name__)

_TOP_LEVEL_STATEMENT = re.compile(r"^\S", re.MULTILINE)


def _indent_lines(lines: list[str], indent: str) -> str:
    return "".join(f"{indent}{line}\n" if line else "\n" for line in lines)


def _line_start(source: str, index: int) -> int:
    return source.rfind("\n", 0, index) + 1


def _line_end(source: str, index: int) -> int:
    end = source.find("\n", index)
    return len(source) if end == -1 else end + 1


def _region_limit(source: str, function: FunctionSource) -> int:
    """Offset of the next top-level statement after ``function``.

    The scanner leaves trailing comments out of a function, and the end
    marker is one.
    """
    match = _TOP_LEVEL_STATEMENT.search(mask_source(source), function.end)
    return match.start() if match else len(source)


def _find_markers(source: str, function: FunctionSource) -> Optional[tuple[int, int, str]]:
    """Return ``(start, end, indent)`` of the marked region inside ``function``."""
    limit = _region_limit(source, function)
    start = source.find(BODY_START_MARKER, function.header_end, limit)
    if start == -1:
        return None
    end = source.find(BODY_END_MARKER, start, limit)
    if end == -1:
        return None
    line_start = _line_start(source, start)
    indent = source[line_start:start]
    if indent.strip():
        return None
    return line_start, _line_end(source, end), indent


def _body_region(source: str, function: FunctionSource) -> tuple[int, int]:
    """Span of the body after the docstring (or after the header)."""
    if function.docstring is not None:
        # Skip the closing quotes
        start = _line_end(source, function.docstring.end + 3)
    else:
        start = _line_end(source, function.header_end)
    return start, max(start, function.end)


def generate_in_place(source: str, plan: ExecutionPlan, settings: Optional[GenerationSettings] = None) -> str:
    """Return ``source`` with the body of ``plan``'s workflow regenerated.

    Args:
        source: Module text containing the workflow function
        plan: Execution plan of the workflow
        settings: Generation settings

    Returns:
        The updated module text; running it twice yields the same text

    Raises:
        SourceParseError: If the workflow function is not in ``source``
    """
    function_name = plan.ast.function_name
    function = find_function(source, function_name, plan.ast.source_path)
    lines = WorkflowEmitter(plan, settings).emit_body()

    markers = _find_markers(source, function)
    if markers is not None:
        start, end, indent = markers
        logger.debug(f"Replacing marked body of '{function_name}'", extra={"phase": "in_place"})
    else:
        start, end = _body_region(source, function)
        indent = function.body_indent
        logger.debug(f"No body markers in '{function_name}'; replacing its body", extra={"phase": "in_place"})

    updated = source[:start] + _indent_lines(lines, indent) + source[end:]
    if plan.is_async and not function.is_async:
        updated = updated[: function.start] + "async " + updated[function.start :]
    return updated
