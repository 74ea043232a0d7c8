"""Lexical helpers shared by the signature and source scanners.

Python source is scanned as text so partially edited files still parse.
``mask_source`` blanks out string literals and comments while keeping every
offset intact, so bracket matching and keyword searches can run on the masked
text and slice the original.
"""

from typing import Optional

OPENERS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = {")": "(", "]": "[", "}": "{"}


def string_regions(text: str) -> list[tuple[int, int]]:
    """Return (start, end) spans of every string literal and comment."""
    regions: list[tuple[int, int]] = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c == "#":
            end = text.find("\n", i)
            end = n if end == -1 else end
            regions.append((i, end))
            i = end
            continue
        if c in ("'", '"'):
            end = _string_end(text, i)
            regions.append((i, end))
            i = end
            continue
        i += 1
    return regions


def _string_end(text: str, start: int) -> int:
    quote = text[start]
    n = len(text)
    if text.startswith(quote * 3, start):
        delimiter = quote * 3
        j = start + 3
        while j < n:
            if text[j] == "\\":
                j += 2
                continue
            if text.startswith(delimiter, j):
                return j + 3
            j += 1
        return n
    j = start + 1
    while j < n and text[j] != quote and text[j] != "\n":
        if text[j] == "\\":
            j += 2
            continue
        j += 1
    return j + 1 if j < n and text[j] == quote else j


def mask_source(text: str, strings: bool = True) -> str:
    """Replace string and comment characters with spaces, keeping newlines.

    With ``strings=False`` only comments are blanked.
    """
    chars = list(text)
    for start, end in string_regions(text):
        if not strings and text[start] != "#":
            continue
        for k in range(start, min(end, len(chars))):
            if chars[k] != "\n":
                chars[k] = " "
    return "".join(chars)


def find_matching(masked: str, open_index: int) -> Optional[int]:
    """Return the index of the bracket closing the one at ``open_index``.

    ``masked`` must already have strings and comments blanked. Returns None
    when the brackets are unbalanced.
    """
    stack = [masked[open_index]]
    for i in range(open_index + 1, len(masked)):
        c = masked[i]
        if c in OPENERS:
            stack.append(c)
        elif c in CLOSERS:
            if not stack or stack[-1] != CLOSERS[c]:
                return None
            stack.pop()
            if not stack:
                return i
    return None


def find_top_level(text: str, needle: str, start: int = 0) -> int:
    """Find ``needle`` outside any bracket, string or comment, or -1."""
    masked = mask_source(text)
    depth = 0
    i = start
    while i < len(masked):
        c = masked[i]
        if c in OPENERS:
            depth += 1
        elif c in CLOSERS:
            depth -= 1
        elif depth == 0 and masked.startswith(needle, i):
            return i
        i += 1
    return -1


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` outside brackets and strings; parts are stripped.

    Empty trailing parts (a trailing comma) are dropped.

    Examples:
        >>> split_top_level("a: int, b: dict[str, int] = {'x': 1}")
        ['a: int', "b: dict[str, int] = {'x': 1}"]
    """
    masked = mask_source(text)
    parts: list[str] = []
    depth = 0
    last = 0
    for i, c in enumerate(masked):
        if c in OPENERS:
            depth += 1
        elif c in CLOSERS:
            depth -= 1
        elif c == separator and depth == 0:
            parts.append(text[last:i].strip())
            last = i + 1
    parts.append(text[last:].strip())
    while parts and not parts[-1]:
        parts.pop()
    return parts


def line_number(text: str, offset: int) -> int:
    """1-based line number of ``offset``."""
    return text.count("\n", 0, offset) + 1
