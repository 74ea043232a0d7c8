"""Indented line accumulator for emitted source."""


class CodeWriter:
    """Accumulates source lines at a current indentation level.

    Writers are cheap: each scope closure is emitted into its own writer and
    spliced into the enclosing one with ``extend``.
    """

    def __init__(self, indent: int = 0, indent_width: int = 4):
        self._lines: list[str] = []
        self._indent = indent
        self._unit = " " * indent_width

    def writeln(self, line: str = "") -> "CodeWriter":
        if line:
            self._lines.append(self._unit * self._indent + line)
        else:
            self._lines.append("")
        return self

    def blank(self) -> "CodeWriter":
        # Never stack blank lines or open a block with one
        if self._lines and self._lines[-1] != "" and not self._lines[-1].rstrip().endswith(":"):
            self._lines.append("")
        return self

    def comment(self, text: str) -> "CodeWriter":
        return self.writeln(f"# {text}")

    def push(self) -> "CodeWriter":
        self._indent += 1
        return self

    def pop(self) -> "CodeWriter":
        self._indent = max(0, self._indent - 1)
        return self

    def extend(self, lines: list[str]) -> "CodeWriter":
        """Append lines rendered by another writer, re-indented to this level."""
        for line in lines:
            self.writeln(line)
        return self

    def lines(self) -> list[str]:
        return list(self._lines)

    def result(self) -> str:
        return "\n".join(self._lines)
