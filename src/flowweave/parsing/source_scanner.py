"""Locate top-level function definitions and their docstrings in source text.

The scanner works on masked text (see ``text_scan``), so definitions inside
string literals or commented out with ``#`` are never reported.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from flowweave.core.exceptions import SourceParseError
from flowweave.parsing.text_scan import find_matching, line_number, mask_source, string_regions

logger = logging.getLogger(__name__)

_DEF_PATTERN = re.compile(r"^(async[ \t]+)?def[ \t]+([A-Za-z_]\w*)[ \t]*\(", re.MULTILINE)
_TOP_LEVEL_STATEMENT = re.compile(r"^\S", re.MULTILINE)
_DOCSTRING_START = re.compile(r"[ \t]*(?:#[^\n]*)?\n?([ \t]*)([rRuU]?)(\"\"\"|''')")
_IMPORT_FROM = re.compile(r"^from[ \t]+(\.+[\w.]*|[\w.]+)[ \t]+import[ \t]+(\(?)", re.MULTILINE)


@dataclass(frozen=True)
class Span:
    start: int
    end: int


@dataclass(frozen=True)
class FunctionSource:
    """Offsets of one top-level function inside its module source.

    All spans index into the full module text.
    """

    name: str
    is_async: bool
    line: int
    start: int
    end: int
    params: Span
    return_annotation: Optional[Span]
    header_end: int
    docstring: Optional[Span]
    body_indent: str

    def params_text(self, source: str) -> str:
        return source[self.params.start : self.params.end]

    def return_text(self, source: str) -> Optional[str]:
        if self.return_annotation is None:
            return None
        return source[self.return_annotation.start : self.return_annotation.end].strip()

    def docstring_text(self, source: str) -> Optional[str]:
        if self.docstring is None:
            return None
        return source[self.docstring.start : self.docstring.end]


@dataclass(frozen=True)
class ImportFrom:
    """A ``from module import a, b`` statement."""

    module: str
    names: list[str]
    line: int

    @property
    def is_relative(self) -> bool:
        return self.module.startswith(".")


def scan_functions(source: str, source_path: Optional[str] = None) -> list[FunctionSource]:
    """Return every top-level ``def``/``async def`` in declaration order.

    Raises:
        SourceParseError: If a definition's parameter list or header never closes
    """
    masked = mask_source(source)
    code = mask_source(source, strings=False)
    regions = {start: end for start, end in string_regions(source)}
    functions: list[FunctionSource] = []

    for match in _DEF_PATTERN.finditer(masked):
        open_paren = match.end() - 1
        close_paren = find_matching(masked, open_paren)
        if close_paren is None:
            raise SourceParseError(
                f"Unbalanced parameter list in def {match.group(2)}",
                source_path=source_path,
                line=line_number(source, match.start()),
            )

        header_end, return_span = _scan_header_tail(masked, close_paren + 1)
        if header_end is None:
            raise SourceParseError(
                f"Missing ':' after signature of def {match.group(2)}",
                source_path=source_path,
                line=line_number(source, match.start()),
            )

        end = _function_end(source, masked, code, header_end)
        docstring, indent = _find_docstring(source, regions, header_end, end)
        functions.append(
            FunctionSource(
                name=match.group(2),
                is_async=bool(match.group(1)),
                line=line_number(source, match.start()),
                start=match.start(),
                end=end,
                params=Span(open_paren + 1, close_paren),
                return_annotation=return_span,
                header_end=header_end,
                docstring=docstring,
                body_indent=indent,
            )
        )

    logger.debug(
        f"Scanned {len(functions)} top-level functions",
        extra={"phase": "scan", "source_path": source_path},
    )
    return functions


def find_function(source: str, name: str, source_path: Optional[str] = None) -> FunctionSource:
    for function in scan_functions(source, source_path):
        if function.name == name:
            return function
    raise SourceParseError(f"No function named '{name}'", source_path=source_path)


def _scan_header_tail(masked: str, index: int) -> tuple[Optional[int], Optional[Span]]:
    """Scan from after ``)`` to the header's ``:``, capturing a ``->`` annotation."""
    i = index
    n = len(masked)
    while i < n and masked[i] in " \t\\\n":
        i += 1
    return_span: Optional[Span] = None
    if masked.startswith("->", i):
        start = i + 2
        depth = 0
        j = start
        while j < n:
            c = masked[j]
            if c in "([{":
                depth += 1
            elif c in ")]}":
                depth -= 1
            elif c == ":" and depth == 0:
                return j + 1, Span(start, j)
            j += 1
        return None, None
    if i < n and masked[i] == ":":
        return i + 1, return_span
    return None, None


def _function_end(source: str, masked: str, code: str, header_end: int) -> int:
    match = _TOP_LEVEL_STATEMENT.search(masked, header_end)
    end = match.start() if match else len(source)
    # Trailing blank lines and comments belong to the module, not the function;
    # a closing docstring or other literal still does
    while end > header_end and code[end - 1] in " \t\n":
        end -= 1
    if end < len(source) and source[end] == "\n":
        end += 1
    return end


def _find_docstring(
    source: str, regions: dict[int, int], header_end: int, end: int
) -> tuple[Optional[Span], str]:
    match = _DOCSTRING_START.match(source, header_end)
    if match is None:
        indent_match = re.compile(r"[^\n]*\n([ \t]+)\S").match(source, header_end)
        return None, indent_match.group(1) if indent_match else "    "

    indent = match.group(1) or "    "
    quote_start = match.start(3)
    literal_end = regions.get(quote_start)
    if literal_end is None or literal_end > end:
        return None, indent
    return Span(quote_start + 3, literal_end - 3), indent


def scan_imports(source: str) -> list[ImportFrom]:
    """Return top-level ``from X import a, b`` statements."""
    masked = mask_source(source)
    imports: list[ImportFrom] = []
    for match in _IMPORT_FROM.finditer(masked):
        names_start = match.end()
        if match.group(2):
            close = find_matching(masked, names_start - 1)
            if close is None:
                continue
            names_text = source[names_start:close]
        else:
            line_end = masked.find("\n", names_start)
            names_text = source[names_start : line_end if line_end != -1 else len(source)]
        names = []
        for part in names_text.replace("\\\n", " ").split(","):
            part = part.split("#", 1)[0].strip()
            if not part:
                continue
            # "name as alias" binds alias locally; the definition keeps its name
            names.append(part.split()[0])
        imports.append(ImportFrom(module=match.group(1), names=names, line=line_number(source, match.start())))
    return imports
