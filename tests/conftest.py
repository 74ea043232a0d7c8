"""Root-level test configuration and fixtures."""

import textwrap

import pytest

from flowweave.core.settings import CONFIG_DIR_ENV, EMIT_COMMENTS_ENV, STRICT_TYPES_ENV

CALCULATOR_SOURCE = textwrap.dedent(
    '''
    def add_numbers(execute: bool, a: float, b: float) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:
        """Add two numbers.

        @flowWeaver nodeType
        @input a - First number
        @input b - Second number
        @output sum - Sum of a and b
        """
        if not execute:
            return {"onSuccess": False, "onFailure": False, "sum": None}
        return {"onSuccess": True, "onFailure": False, "sum": a + b}


    def calculate(execute: bool, a: float, b: float) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:
        """Add a and b.

        @flowWeaver workflow
        @node add add_numbers
        @connect Start.a -> add.a
        @connect Start.b -> add.b
        @connect add.sum -> Exit.sum
        """
        raise NotImplementedError
    '''
).lstrip()

FOR_EACH_SOURCE = textwrap.dedent(
    '''
    from __future__ import annotations

    from collections.abc import Callable
    from typing import Any


    def for_each(execute: bool, items: list, item: Callable[{"item": Any}, {"result": Any}]) -> {"onSuccess": bool, "onFailure": bool, "results": list}:
        """Run the item scope once per element.

        @flowWeaver nodeType
        @name forEach
        @scope item
        @input items - Elements to visit
        @output results - One result per element
        @output item scope:item
        @input result scope:item
        """
        if not execute:
            return {"onSuccess": False, "onFailure": False, "results": None}
        results = [item(value)["result"] for value in items]
        return {"onSuccess": True, "onFailure": False, "results": results}


    def double_value(execute: bool, x: float) -> {"onSuccess": bool, "onFailure": bool, "y": float}:
        """Double a number.

        @flowWeaver nodeType
        @name double
        @input x
        @output y
        """
        return {"onSuccess": execute, "onFailure": False, "y": x * 2 if execute else None}


    def double_all(execute: bool, values: list) -> {"onSuccess": bool, "onFailure": bool, "results": list}:
        """Double every value.

        @flowWeaver workflow
        @node forEach forEach
        @node double double_value forEach.item
        @connect Start.values -> forEach.items
        @connect forEach.item:item -> double.x
        @connect double.y -> forEach.result:item
        @connect forEach.results -> Exit.results
        """
        raise NotImplementedError
    '''
).lstrip()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep every test away from the real ~/.flowweave settings and env overrides."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv(CONFIG_DIR_ENV, str(tmp_path / ".flowweave"))
    monkeypatch.delenv(STRICT_TYPES_ENV, raising=False)
    monkeypatch.delenv(EMIT_COMMENTS_ENV, raising=False)


@pytest.fixture
def calculator_source():
    return CALCULATOR_SOURCE


@pytest.fixture
def for_each_source():
    return FOR_EACH_SOURCE


@pytest.fixture
def calculator_file(tmp_path, calculator_source):
    path = tmp_path / "calculator.py"
    path.write_text(calculator_source, encoding="utf-8")
    return path
