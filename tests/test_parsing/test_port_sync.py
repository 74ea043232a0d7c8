"""Tests for keeping docstring tags and signatures in line."""

import textwrap

import pytest

from flowweave.core.exceptions import SourceParseError
from flowweave.parsing.node_type_parser import parse_node_types
from flowweave.parsing.port_sync import sync_docstring_to_signature, sync_signature_to_docstring

TAGS_AHEAD = textwrap.dedent(
    '''
    def add(execute: bool, a: float) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:
        """@flowWeaver nodeType
        @input a
        @input b
        @input [c=1]
        @output sum
        @output carry
        """
        return {"onSuccess": execute, "onFailure": False, "sum": a}
    '''
).lstrip()

SIGNATURE_AHEAD = textwrap.dedent(
    '''
    def search(execute: bool, query: str, limit: int = 10) -> {"onSuccess": bool, "onFailure": bool, "hits": list, "count": int}:
        """Search the index.

        @flowWeaver nodeType
        @input query - Search text
        @input stale
        @output hits
        """
        return {"onSuccess": execute, "onFailure": False, "hits": [], "count": 0}
    '''
).lstrip()

SCOPE_WITHOUT_CALLBACK = textwrap.dedent(
    '''
    def loop(execute: bool, items: list) -> {"onSuccess": bool, "onFailure": bool}:
        """@flowWeaver nodeType
        @scope body
        @input items
        @output item scope:body
        @input result scope:body
        """
        return {"onSuccess": execute, "onFailure": False}
    '''
).lstrip()


class TestDocstringToSignature:
    """Test adding signature parts for tags."""

    def test_adds_parameters_and_return_fields(self):
        result = sync_docstring_to_signature(TAGS_AHEAD)
        assert result.startswith(
            'def add(execute: bool, a: float, b, c=1) -> {"onSuccess": bool, "onFailure": bool, "sum": float, '
            '"carry": object}:\n'
        )
        # Docstring and body are untouched
        assert result.split('"""', 1)[1] == TAGS_AHEAD.split('"""', 1)[1]

    def test_is_idempotent(self):
        once = sync_docstring_to_signature(TAGS_AHEAD)
        assert sync_docstring_to_signature(once) == once

    def test_adds_scope_callback_and_imports(self):
        result = sync_docstring_to_signature(SCOPE_WITHOUT_CALLBACK)
        assert result.startswith("from __future__ import annotations\nfrom collections.abc import Callable\n")
        assert 'body: Callable[{"item": object}, {"result": object}]' in result
        (parsed,) = parse_node_types(result)
        assert parsed.warnings == []

    def test_in_sync_source_is_unchanged(self, calculator_source, for_each_source):
        assert sync_docstring_to_signature(calculator_source) == calculator_source
        assert sync_docstring_to_signature(for_each_source) == for_each_source

    def test_unknown_function(self, calculator_source):
        with pytest.raises(SourceParseError, match="No function named 'nope'"):
            sync_docstring_to_signature(calculator_source, "nope")


class TestSignatureToDocstring:
    """Test rewriting tags from the signature."""

    def test_adds_and_removes_tags(self):
        result = sync_signature_to_docstring(SIGNATURE_AHEAD)
        expected_docstring = (
            "Search the index.\n"
            "\n"
            "    @flowWeaver nodeType\n"
            "    @input query - Search text\n"
            "    @input [limit=10]\n"
            "    @output hits\n"
            "    @output count\n"
            "    "
        )
        assert f'"""{expected_docstring}"""' in result
        # The signature itself is untouched
        assert result.splitlines()[0] == SIGNATURE_AHEAD.splitlines()[0]

    def test_line_indexes_survive_form_feeds(self):
        source = SIGNATURE_AHEAD.replace("Search the index.", "Search the index.\x0cFast lookups.")
        result = sync_signature_to_docstring(source)
        expected_docstring = (
            "Search the index.\x0cFast lookups.\n"
            "\n"
            "    @flowWeaver nodeType\n"
            "    @input query - Search text\n"
            "    @input [limit=10]\n"
            "    @output hits\n"
            "    @output count\n"
            "    "
        )
        assert f'"""{expected_docstring}"""' in result

    def test_result_parses_without_warnings(self):
        (parsed,) = parse_node_types(sync_signature_to_docstring(SIGNATURE_AHEAD))
        assert parsed.warnings == []
        assert parsed.node_type.inputs["limit"].default == "10"
        assert parsed.node_type.inputs["query"].label == "Search text"

    def test_in_sync_source_is_unchanged(self, calculator_source, for_each_source):
        assert sync_signature_to_docstring(calculator_source) == calculator_source
        assert sync_signature_to_docstring(for_each_source) == for_each_source

    def test_round_trip_through_both_directions(self):
        """Tags written from a signature need nothing more from the other direction."""
        synced = sync_signature_to_docstring(SIGNATURE_AHEAD)
        assert sync_docstring_to_signature(synced) == synced
