"""Shared "did you mean" helpers for assembly and validation messages."""

import difflib
from collections.abc import Iterable
from typing import Literal


def find_similar_items(
    query: str,
    items: Iterable[str],
    *,
    max_results: int = 3,
    method: Literal["substring", "fuzzy"] = "fuzzy",
    cutoff: float = 0.6,
) -> list[str]:
    """Find items similar to query.

    Args:
        query: Name that failed to match
        items: Available names
        max_results: Maximum number of suggestions to return
        method: "fuzzy" (difflib, typo-tolerant) or "substring" (case-insensitive)
        cutoff: Similarity threshold for fuzzy matching (0.0-1.0)

    Returns:
        List of matching items (up to max_results)

    Examples:
        >>> find_similar_items("ad", ["add", "double"])
        ['add']
        >>> find_similar_items("num", ["add_numbers", "for_each"], method="substring")
        ['add_numbers']
    """
    candidates = list(items)
    if method == "fuzzy":
        return difflib.get_close_matches(query, candidates, n=max_results, cutoff=cutoff)

    query_lower = query.lower()
    return [item for item in candidates if query_lower in item.lower()][:max_results]


def did_you_mean(query: str, items: Iterable[str]) -> str:
    """Format a trailing suggestion for a message, or "" when nothing is close.

    Examples:
        >>> did_you_mean("summ", ["sum", "onSuccess"])
        " Did you mean 'sum'?"
    """
    suggestions = find_similar_items(query, items, max_results=1)
    if not suggestions:
        return ""
    return f" Did you mean '{suggestions[0]}'?"
