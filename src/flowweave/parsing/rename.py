"""Port renaming and rename reconciliation between edits.

``rename_port_in_code`` performs an explicit rename in both the docstring and
the signature. ``sync_code_renames`` compares a previous and a current version
of a module and, when an author renamed a port on only one side, carries the
rename over to the other side.

Rename detection is a heuristic over ordered name lists and lives behind the
``RenameMatcher`` protocol so an exact source of renames (stable port ids,
editor rename events) can replace it without touching callers. When ports are
reordered and renamed in the same edit the positional matcher can pair the
wrong names; that is an accepted limitation, not something to paper over.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol

from flowweave.core.exceptions import MutationError
from flowweave.core.port_types import CONTROL_PORTS, EXECUTE_PORT
from flowweave.parsing import port_sync
from flowweave.parsing.node_type_parser import ParsedFunction, parse_functions
from flowweave.parsing.signature_parser import parse_callback
from flowweave.parsing.tag_grammar import InputTag, OutputTag, ScopeTag

logger = logging.getLogger(__name__)

Direction = Literal["input", "output"]

_ORPHAN_LINE = re.compile(r"^\s*@(input|output)\s*(?:-.*)?$")


@dataclass(frozen=True)
class RenameResult:
    """Outcome of comparing two ordered name lists."""

    renamed: list[tuple[str, str]] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Propagation:
    """Rename ``old`` to ``new`` on the ``target`` side of a function.

    ``was`` is the name ``new`` replaced on the side that changed.
    """

    target: Literal["tags", "signature"]
    old: str
    new: str
    was: str


class RenameMatcher(Protocol):
    def match(self, previous: list[str], current: list[str]) -> RenameResult: ...

    def propagate(
        self, previous_tags: list[str], current_tags: list[str], previous_sig: list[str], current_sig: list[str]
    ) -> list[Propagation]: ...


class PositionalRenameMatcher:
    """Pairs names that changed at the same list position.

    A position counts as a rename only when the old name is gone from the
    current list and the new name did not exist before. Lists of different
    length never produce renames: the change is reported as additions and
    removals.
    """

    def match(self, previous: list[str], current: list[str]) -> RenameResult:
        renamed: list[tuple[str, str]] = []
        if len(previous) == len(current):
            for old, new in zip(previous, current):
                if _is_rename(previous, current, old, new):
                    renamed.append((old, new))
        renamed_old = {old for old, _ in renamed}
        renamed_new = {new for _, new in renamed}
        return RenameResult(
            renamed=renamed,
            added=[name for name in current if name not in previous and name not in renamed_new],
            removed=[name for name in previous if name not in current and name not in renamed_old],
        )

    def propagate(
        self, previous_tags: list[str], current_tags: list[str], previous_sig: list[str], current_sig: list[str]
    ) -> list[Propagation]:
        """Compare tags and signature position by position.

        Where the two sides disagree at a position and only one of them changed
        since the previous version, the changed side's name is carried to the
        other side. Positions where both sides changed are left alone.
        """
        propagations: list[Propagation] = []
        for i in range(min(len(current_tags), len(current_sig))):
            tag, sig = current_tags[i], current_sig[i]
            if tag == sig:
                continue
            old_tag = previous_tags[i] if i < len(previous_tags) else None
            old_sig = previous_sig[i] if i < len(previous_sig) else None
            tag_changed = old_tag != tag
            sig_changed = old_sig != sig
            if tag_changed and not sig_changed:
                if old_tag is not None and _is_rename(previous_tags, current_tags, old_tag, tag):
                    propagations.append(Propagation("signature", sig, tag, old_tag))
            elif sig_changed and not tag_changed:
                if old_sig is not None and _is_rename(previous_sig, current_sig, old_sig, sig):
                    propagations.append(Propagation("tags", tag, sig, old_sig))
        return propagations


def _is_rename(previous: list[str], current: list[str], old: str, new: str) -> bool:
    return old != new and old not in current and new not in previous


# --- explicit rename -----------------------------------------------------------


def _find_port_scope(parsed: ParsedFunction, name: str, direction: Direction) -> tuple[bool, Optional[str]]:
    tag_type = InputTag if direction == "input" else OutputTag
    for tag in parsed.block.of_type(tag_type):
        if tag.name == name:
            return True, tag.scope
    if direction == "input" and parsed.signature.get(name) is not None:
        return True, None
    if direction == "output" and parsed.signature.return_field(name) is not None:
        return True, None
    return False, None


def _all_port_names(parsed: ParsedFunction) -> set[str]:
    names = {t.name for t in parsed.block.of_type(InputTag)} | {t.name for t in parsed.block.of_type(OutputTag)}
    names |= {p.name for p in parsed.signature.params}
    names |= {f.name for f in parsed.signature.return_fields or []}
    return names


def rename_port_in_code(source: str, function_name: str, old: str, new: str, direction: Direction) -> str:
    """Rename a port in the docstring tag and in the signature.

    Inputs rename the parameter (or, for scoped inputs, the callback return
    field); outputs rename the return field (or the callback parameter).

    Raises:
        MutationError: If either name is reserved control-flow vocabulary, the
            port does not exist, or the new name is already taken
    """
    if old in CONTROL_PORTS or new in CONTROL_PORTS:
        raise MutationError("rename_port", f"'{old}' -> '{new}' touches a reserved control port")
    if not re.match(r"^[A-Za-z_]\w*$", new):
        raise MutationError("rename_port", f"'{new}' is not a valid port name")

    parsed = port_sync.find_parsed(source, function_name)
    exists, scope = _find_port_scope(parsed, old, direction)
    if not exists:
        raise MutationError("rename_port", f"def {function_name} has no {direction} port '{old}'")
    if new in _all_port_names(parsed):
        raise MutationError("rename_port", f"def {function_name} already has a port named '{new}'")

    result = port_sync.rename_tag_port(source, function_name, old, new, direction)
    if scope is not None:
        result = port_sync.rename_callback_field(result, function_name, scope, old, new, returned=direction == "input")
    elif direction == "input":
        result = port_sync.rename_parameter(result, function_name, old, new)
    else:
        result = port_sync.rename_return_field(result, function_name, old, new)

    logger.debug(
        f"Renamed {direction} port '{old}' to '{new}' in def {function_name}",
        extra={"phase": "rename", "function": function_name},
    )
    return result


# --- rename reconciliation -----------------------------------------------------


def _orphan_lines(parsed: ParsedFunction, source: str) -> dict[str, bool]:
    """Detect ``@input``/``@output`` lines whose port name is being typed or was deleted."""
    found = {"input": False, "output": False}
    docstring = parsed.function.docstring_text(source) or ""
    for line in docstring.split("\n"):
        match = _ORPHAN_LINE.match(line)
        if match:
            found[match.group(1)] = True
    return found


def _mentions(text: str, name: str) -> bool:
    return re.search(rf"\b{re.escape(name)}\b", text) is not None


def _tag_names(parsed: ParsedFunction, direction: Direction) -> list[str]:
    tag_type = InputTag if direction == "input" else OutputTag
    return [t.name for t in parsed.block.of_type(tag_type) if t.scope is None and t.name not in CONTROL_PORTS]


def _signature_names(parsed: ParsedFunction, direction: Direction) -> list[str]:
    if direction == "output":
        return [f.name for f in parsed.signature.return_fields or [] if f.name not in CONTROL_PORTS]
    scopes = {t.name for t in parsed.block.of_type(ScopeTag)}
    return [
        p.name
        for p in parsed.signature.params
        if p.name != EXECUTE_PORT
        and p.name not in scopes
        and p.kind != "var"
        and parse_callback(p.py_type) is None
    ]


class RenameReconciler:
    """Carries one-sided port renames across to the other side of a function."""

    def __init__(self, matcher: Optional[RenameMatcher] = None):
        self.matcher = matcher or PositionalRenameMatcher()

    def reconcile(self, previous_source: str, current_source: str) -> str:
        if not previous_source.strip():
            return current_source

        previous = {p.name: p for p in parse_functions(previous_source) if p.kind == "nodeType"}
        result = current_source
        for name in [p.name for p in parse_functions(current_source) if p.kind == "nodeType"]:
            if name not in previous:
                continue
            for direction in ("input", "output"):
                result = self._reconcile_direction(previous[name], previous_source, result, name, direction)
        return result

    def _reconcile_direction(
        self, prev: ParsedFunction, previous_source: str, source: str, function_name: str, direction: Direction
    ) -> str:
        curr = port_sync.find_parsed(source, function_name)
        prev_tags = _tag_names(prev, direction)
        curr_tags = _tag_names(curr, direction)
        curr_sig = _signature_names(curr, direction)

        if _orphan_lines(curr, source)[direction]:
            # A tag line lost its name: the author is deleting that port
            for name in prev_tags:
                if name not in curr_tags and name in curr_sig:
                    source = self._remove_from_signature(source, function_name, name, direction)
            return source
        if _orphan_lines(prev, previous_source)[direction]:
            return source

        prev_sig = _signature_names(prev, direction)
        raw_params = curr.function.params_text(source) if direction == "input" else ""
        if any(_mentions(raw_params, name) and name not in curr_sig for name in curr_tags):
            # A tagged name sits in a parameter list that no longer parses cleanly
            return source

        for change in self.matcher.propagate(prev_tags, curr_tags, prev_sig, curr_sig):
            if change.target == "signature":
                source = self._rename_in_signature(source, function_name, change.old, change.new, direction)
                logger.debug(
                    f"Propagated tag rename '{change.was}' -> '{change.new}' to the signature of def {function_name}",
                    extra={"phase": "rename_sync"},
                )
            else:
                if _mentions(raw_params, change.was):
                    # The old parameter is still being edited
                    continue
                source = port_sync.rename_tag_port(source, function_name, change.old, change.new, direction)
                logger.debug(
                    f"Propagated signature rename '{change.was}' -> '{change.new}' to the tags of def {function_name}",
                    extra={"phase": "rename_sync"},
                )
        return source

    @staticmethod
    def _rename_in_signature(source: str, function_name: str, old: str, new: str, direction: Direction) -> str:
        if direction == "input":
            return port_sync.rename_parameter(source, function_name, old, new)
        return port_sync.rename_return_field(source, function_name, old, new)

    @staticmethod
    def _remove_from_signature(source: str, function_name: str, name: str, direction: Direction) -> str:
        if direction == "input":
            return port_sync.remove_parameter(source, function_name, name)
        return port_sync.remove_return_field(source, function_name, name)


def sync_code_renames(previous_source: str, current_source: str, matcher: Optional[RenameMatcher] = None) -> str:
    """Propagate one-sided port renames from the previous to the current version.

    When no unique rename can be established nothing is changed; the two sides
    diverge and the next parse reports the mismatch as a warning.
    """
    return RenameReconciler(matcher).reconcile(previous_source, current_source)
