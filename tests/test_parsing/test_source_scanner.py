"""Tests for locating functions and docstrings in module text."""

import textwrap

from flowweave.parsing.source_scanner import scan_functions

DOCSTRING_ONLY = textwrap.dedent(
    '''
    def identity(execute: bool, x: float) -> {"onSuccess": bool, "onFailure": bool, "y": float}:
        """Pass x through.

        @flowWeaver nodeType
        """


    def marked(execute: bool) -> {"onSuccess": bool, "onFailure": bool}:
        """@flowWeaver workflow"""
        # @flow-weaver-body-start
        # @flow-weaver-body-end

    # module comment
    VALUE = 1
    '''
).lstrip()


class TestScanFunctions:
    """Test function spans when a docstring closes the body."""

    def test_docstring_only_body(self):
        identity, _ = scan_functions(DOCSTRING_ONLY)
        assert identity.docstring_text(DOCSTRING_ONLY).startswith("Pass x through.")
        assert DOCSTRING_ONLY[: identity.end].endswith('@flowWeaver nodeType\n    """\n')

    def test_trailing_comments_after_docstring(self):
        _, marked = scan_functions(DOCSTRING_ONLY)
        assert marked.docstring_text(DOCSTRING_ONLY) == "@flowWeaver workflow"
        assert DOCSTRING_ONLY[: marked.end].endswith('"""@flowWeaver workflow"""\n')

    def test_commented_out_definitions_are_skipped(self):
        source = "# def hidden(x):\nx = '''\ndef quoted(y):\n'''\n"
        assert scan_functions(source) == []
