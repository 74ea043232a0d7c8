"""Keep docstring tags and function signatures consistent.

``sync_docstring_to_signature`` adds parameters, return fields and callback
fields for tags that describe ports the signature does not have yet.
``sync_signature_to_docstring`` rewrites the ``@input``/``@output`` lines to
match the current signature, leaving the description, every other tag and
every untouched line exactly as written.

The text-edit primitives at the bottom (rename/remove a parameter, a return
field, a callback field or a tag) are shared with ``rename``. Every edit
re-scans the module, so callers never hold stale offsets.
"""

import logging
import re
from dataclasses import replace
from typing import Optional

from flowweave.core.exceptions import SourceParseError
from flowweave.core.port_types import CONTROL_PORTS, EXECUTE_PORT, FAILURE_PORT, SUCCESS_PORT
from flowweave.parsing.node_type_parser import ParsedFunction, parse_functions
from flowweave.parsing.signature_parser import (
    CallbackSignature,
    TypedField,
    format_callback,
    format_parameter,
    is_optional_type,
    parse_callback,
    parse_parameter,
)
from flowweave.parsing.source_scanner import FunctionSource
from flowweave.parsing.tag_grammar import (
    ExpressionTag,
    FlowWeaverTag,
    InputTag,
    OutputTag,
    ScopeTag,
    StepTag,
    Tag,
    render_port_tag,
    render_tag,
)
from flowweave.parsing.text_scan import find_top_level, mask_source, split_top_level, string_regions

logger = logging.getLogger(__name__)

# Type text used for ports created from a tag alone; always resolvable at runtime
UNTYPED = "object"

_FUTURE_IMPORT = "from __future__ import annotations"
_CALLABLE_IMPORT = "from collections.abc import Callable"


def _splice(source: str, start: int, end: int, text: str) -> str:
    return source[:start] + text + source[end:]


def find_parsed(source: str, function_name: str) -> ParsedFunction:
    for parsed in parse_functions(source):
        if parsed.name == function_name:
            return parsed
    raise SourceParseError(f"No function named '{function_name}'")


def _targets(source: str, function_name: Optional[str]) -> list[str]:
    """Names of the functions to sync: the named one, or every node type."""
    if function_name is not None:
        find_parsed(source, function_name)
        return [function_name]
    return [p.name for p in parse_functions(source) if p.kind == "nodeType"]


# --- docstring editing ---------------------------------------------------------


class DocstringEditor:
    """Line-level edits of one function's docstring.

    Edits address original line indexes, so they can be applied in any order.
    """

    def __init__(self, source: str, function: FunctionSource):
        if function.docstring is None:
            raise SourceParseError(f"def {function.name} has no docstring")
        self.source = source
        self.function = function
        self.span = function.docstring
        self.lines = (function.docstring_text(source) or "").split("\n")
        self.slots: list[list[str]] = [[line] for line in self.lines]
        self.changed = False

    def indent_of(self, index: int) -> str:
        line = self.lines[index]
        indent = line[: len(line) - len(line.lstrip())]
        if index == 0 and not indent:
            return self.function.body_indent
        return indent

    def replace(self, tag: Tag, text: str) -> None:
        new_line = self.indent_of(tag.line) + text
        if self.slots[tag.line] and self.slots[tag.line][0] == new_line:
            return
        self.slots[tag.line][0:1] = [new_line]
        self.changed = True

    def remove(self, tag: Tag) -> None:
        if self.slots[tag.line]:
            self.slots[tag.line].pop(0)
        self.changed = True

    def insert_after(self, index: int, text: str, indent: Optional[str] = None) -> None:
        self.slots[index].append((indent if indent is not None else self.indent_of(index)) + text)
        self.changed = True

    def render(self) -> str:
        return "\n".join(line for slot in self.slots for line in slot)

    def apply(self) -> str:
        if not self.changed:
            return self.source
        return _splice(self.source, self.span.start, self.span.end, self.render())


def _anchor_line(tags: list[Tag], preferred: list[type], fallback: int) -> int:
    for tag_types in preferred:
        lines = [t.line for t in tags if isinstance(t, tag_types)]
        if lines:
            return max(lines)
    return fallback


# --- signature editing ---------------------------------------------------------


def _param_parts(source: str, function: FunctionSource) -> list[str]:
    return split_top_level(function.params_text(source))


def _render_params(parts: list[str], original: str) -> str:
    if "\n" not in original:
        return ", ".join(parts)
    first = next((line for line in original.split("\n") if line.strip()), "    ")
    indent = first[: len(first) - len(first.lstrip())] or "    "
    tail = original[original.rfind("\n") + 1 :]
    closing = tail if not tail.strip() else ""
    return "\n" + "".join(f"{indent}{part},\n" for part in parts) + closing


def _replace_params(source: str, function: FunctionSource, parts: list[str]) -> str:
    original = function.params_text(source)
    return _splice(source, function.params.start, function.params.end, _render_params(parts, original))


def _replace_return(source: str, function: FunctionSource, text: str) -> str:
    if function.return_annotation is None:
        # Insert before the header's ':'
        colon = function.header_end - 1
        return _splice(source, colon, colon, f" -> {text}")
    span = function.return_annotation
    return _splice(source, span.start, span.end, f" {text}")


def _part_name(part: str) -> Optional[str]:
    param = parse_parameter(part, 0)
    return param.name if param is not None else None


def _has_default(part: str) -> bool:
    return find_top_level(part, "=") != -1


def _required_insert_index(parts: list[str]) -> int:
    for index, part in enumerate(parts):
        if part.startswith("*") or part == "/" or _has_default(part):
            return index
    return len(parts)


def _defaulted_insert_index(parts: list[str]) -> int:
    for index, part in enumerate(parts):
        if part.startswith("**"):
            return index
    return len(parts)


def _insert_param(parts: list[str], text: str) -> None:
    index = _defaulted_insert_index(parts) if _has_default(text) else _required_insert_index(parts)
    parts.insert(index, text)


def _dict_display_add(text: str, fields: list[TypedField]) -> str:
    """Append ``"name": type`` entries before a dict display's closing brace."""
    close = text.rstrip().rfind("}")
    inner = text[text.find("{") + 1 : close]
    entries = ", ".join(f'"{f.name}": {f.py_type or UNTYPED}' for f in fields)
    if not inner.strip():
        separator = ""
    elif inner.rstrip().endswith(","):
        separator = " "
    else:
        separator = ", "
    return text[:close].rstrip() + separator + entries + text[close:]


def _set_annotation(part: str, annotation: str) -> str:
    name = _part_name(part) or part
    eq = find_top_level(part, "=")
    default = part[eq + 1 :].strip() if eq != -1 else None
    return format_parameter(name, annotation, default)


def _ensure_callable_imports(source: str) -> str:
    """Make ``Callable[{...}, {...}]`` annotations importable and unevaluated."""
    masked = mask_source(source)
    if not re.search(r"^from\s+\S+\s+import\s+.*\bCallable\b", masked, re.MULTILINE):
        source = _insert_import(source, _CALLABLE_IMPORT)
        masked = mask_source(source)
    if _FUTURE_IMPORT not in masked:
        source = _insert_import(source, _FUTURE_IMPORT, first=True)
    return source


def _insert_import(source: str, line: str, first: bool = False) -> str:
    masked = mask_source(source)
    offset = 0
    # Skip a module docstring
    leading = len(source) - len(source.lstrip())
    regions = dict(string_regions(source))
    if source.startswith(('"""', "'''"), leading) and leading in regions:
        newline = source.find("\n", regions[leading])
        offset = newline + 1 if newline != -1 else len(source)
    if not first:
        imports = list(re.finditer(r"^(?:from|import)\s[^\n]*\n", masked, re.MULTILINE))
        if imports:
            offset = max(offset, imports[-1].end())
    return _splice(source, offset, offset, line + "\n")


# --- docstring -> signature ----------------------------------------------------


def _callback_from_tags(scope: str, parsed: ParsedFunction) -> CallbackSignature:
    outputs = [t for t in parsed.block.of_type(OutputTag) if t.scope == scope]
    inputs = [t for t in parsed.block.of_type(InputTag) if t.scope == scope]
    return CallbackSignature(
        params=[TypedField(t.name, UNTYPED) for t in outputs],
        returns=[TypedField(t.name, UNTYPED) for t in inputs],
    )


def _sync_one_to_signature(source: str, parsed: ParsedFunction) -> tuple[str, bool]:
    """Return the updated source and whether a scope callback was written."""
    function = parsed.function
    block = parsed.block
    parts = _param_parts(source, function)
    names = [_part_name(p) for p in parts]
    changed = False
    wrote_callback = False

    is_expression = block.first(ExpressionTag) is not None
    if not is_expression and EXECUTE_PORT not in names:
        parts.insert(0, format_parameter(EXECUTE_PORT, "bool"))
        changed = True

    scopes = [t.name for t in block.of_type(ScopeTag)]
    for tag in block.of_type(InputTag):
        if tag.scope is not None or tag.name in names or tag.name in CONTROL_PORTS:
            continue
        default = tag.default if tag.default is not None else ("None" if tag.optional else None)
        _insert_param(parts, format_parameter(tag.name, None, default))
        names.append(tag.name)
        changed = True

    for step in block.of_type(StepTag):
        if step.name not in names:
            _insert_param(parts, format_parameter(step.name, "bool", "False"))
            names.append(step.name)
            changed = True

    for scope in scopes:
        wanted = _callback_from_tags(scope, parsed)
        if scope not in names:
            _insert_param(parts, format_parameter(scope, format_callback(wanted)))
            changed = wrote_callback = True
            continue
        index = [_part_name(p) for p in parts].index(scope)
        param = parse_parameter(parts[index], index)
        current = parse_callback(param.py_type if param else None)
        if current is None:
            continue
        new_params = [f for f in wanted.params if current.param(f.name) is None]
        new_returns = [f for f in wanted.returns if current.returned(f.name) is None]
        if new_params or new_returns:
            merged = CallbackSignature(params=current.params + new_params, returns=current.returns + new_returns)
            parts[index] = _set_annotation(parts[index], format_callback(merged))
            changed = wrote_callback = True

    return_text = function.return_text(source)
    outputs = [t for t in block.of_type(OutputTag) if t.scope is None and t.name not in CONTROL_PORTS]
    new_return: Optional[str] = None
    if return_text is None and not is_expression:
        fields = [TypedField(SUCCESS_PORT, "bool"), TypedField(FAILURE_PORT, "bool")]
        fields += [TypedField(t.name, UNTYPED) for t in outputs]
        new_return = "{" + ", ".join(f'"{f.name}": {f.py_type}' for f in fields) + "}"
    elif return_text is not None and parsed.signature.return_fields is not None:
        present = {f.name for f in parsed.signature.return_fields}
        missing = []
        if not is_expression:
            missing += [TypedField(n, "bool") for n in (SUCCESS_PORT, FAILURE_PORT) if n not in present]
        missing += [TypedField(t.name, UNTYPED) for t in outputs if t.name not in present]
        if missing:
            new_return = _dict_display_add(return_text, missing)

    if new_return is not None:
        source = _replace_return(source, function, new_return)
    if changed:
        # Params precede the return annotation, so their offsets are still valid
        source = _replace_params(source, function, parts)
    return source, wrote_callback


def sync_docstring_to_signature(source: str, function_name: Optional[str] = None) -> str:
    """Add signature parameters and return fields for tags the signature lacks.

    Args:
        source: Module source text
        function_name: Function to sync; every ``@flowWeaver nodeType`` when None

    Returns:
        The updated source (unchanged when already in sync)
    """
    needs_callable = False
    # Work from the bottom up so earlier offsets stay valid
    for name in reversed(_targets(source, function_name)):
        source, wrote_callback = _sync_one_to_signature(source, find_parsed(source, name))
        needs_callable = needs_callable or wrote_callback
    if needs_callable:
        source = _ensure_callable_imports(source)
    return source


# --- signature -> docstring ----------------------------------------------------


def _sync_scope_tags(editor: DocstringEditor, parsed: ParsedFunction) -> None:
    block = parsed.block
    for scope_tag in block.of_type(ScopeTag):
        scope = scope_tag.name
        param = parsed.signature.get(scope)
        callback = parse_callback(param.py_type) if param is not None else None
        if callback is None:
            continue
        outputs = [t for t in block.of_type(OutputTag) if t.scope == scope]
        inputs = [t for t in block.of_type(InputTag) if t.scope == scope]
        for tag in outputs:
            if callback.param(tag.name) is None:
                editor.remove(tag)
        for tag in inputs:
            if callback.returned(tag.name) is None:
                editor.remove(tag)
        line = max([t.line for t in outputs + inputs], default=scope_tag.line)
        tagged_outputs = {t.name for t in outputs}
        tagged_inputs = {t.name for t in inputs}
        for field_ in callback.params:
            if field_.name not in tagged_outputs:
                editor.insert_after(line, render_port_tag("output", field_.name, scope=scope))
        for field_ in callback.returns:
            if field_.name not in tagged_inputs:
                editor.insert_after(line, render_port_tag("input", field_.name, scope=scope))


def _sync_one_to_docstring(source: str, parsed: ParsedFunction) -> str:
    function = parsed.function
    if function.docstring is None:
        return source
    block = parsed.block
    signature = parsed.signature
    editor = DocstringEditor(source, function)
    scopes = {t.name for t in block.of_type(ScopeTag)}
    flow_weaver = block.first(FlowWeaverTag)
    fallback = flow_weaver.line if flow_weaver else len(editor.lines) - 1

    input_tags = [t for t in block.of_type(InputTag) if t.scope is None]
    for tag in input_tags:
        if tag.name == EXECUTE_PORT:
            continue
        param = signature.get(tag.name)
        if param is None:
            editor.remove(tag)
        elif tag.default is not None and param.default is not None and tag.default != param.default:
            editor.replace(tag, render_tag(replace(tag, default=param.default)))

    tagged = {t.name for t in input_tags} | {t.name for t in block.of_type(StepTag)}
    input_anchor = _anchor_line(block.tags, [InputTag, FlowWeaverTag], fallback)
    for param in signature.params:
        if param.name in tagged or param.name == EXECUTE_PORT or param.name in scopes or param.kind == "var":
            continue
        optional = param.default is None and is_optional_type(param.py_type)
        editor.insert_after(
            input_anchor, render_port_tag("input", param.name, optional=optional, default=param.default)
        )

    output_tags = [t for t in block.of_type(OutputTag) if t.scope is None and t.name not in CONTROL_PORTS]
    if signature.return_fields is not None:
        present = {f.name for f in signature.return_fields}
        for tag in output_tags:
            if tag.name not in present:
                editor.remove(tag)
        tagged_outputs = {t.name for t in output_tags}
        output_anchor = _anchor_line(block.tags, [OutputTag, InputTag, FlowWeaverTag], fallback)
        for field_ in signature.return_fields:
            if field_.name in CONTROL_PORTS or field_.name in tagged_outputs:
                continue
            editor.insert_after(output_anchor, render_port_tag("output", field_.name))

    _sync_scope_tags(editor, parsed)
    return editor.apply()


def sync_signature_to_docstring(source: str, function_name: Optional[str] = None) -> str:
    """Rewrite ``@input``/``@output`` tags to match the current signature.

    Tags for ports that left the signature are dropped, new parameters and
    return fields get tags, and everything else in the docstring is kept
    verbatim.
    """
    for name in reversed(_targets(source, function_name)):
        source = _sync_one_to_docstring(source, find_parsed(source, name))
    return source


# --- edit primitives -----------------------------------------------------------


def rename_parameter(source: str, function_name: str, old: str, new: str) -> str:
    parsed = find_parsed(source, function_name)
    parts = _param_parts(source, parsed.function)
    for index, part in enumerate(parts):
        if _part_name(part) == old:
            stars = part[: len(part) - len(part.lstrip("*"))]
            parts[index] = stars + new + part[len(stars) + len(old) :]
            return _replace_params(source, parsed.function, parts)
    return source


def remove_parameter(source: str, function_name: str, name: str) -> str:
    parsed = find_parsed(source, function_name)
    parts = _param_parts(source, parsed.function)
    kept = [p for p in parts if _part_name(p) != name]
    if len(kept) == len(parts):
        return source
    return _replace_params(source, parsed.function, kept)


def _field_key_pattern(name: str) -> re.Pattern:
    return re.compile(r"([\"'])" + re.escape(name) + r"\1(\s*:)")


def rename_return_field(source: str, function_name: str, old: str, new: str) -> str:
    parsed = find_parsed(source, function_name)
    span = parsed.function.return_annotation
    if span is None:
        return source
    text = source[span.start : span.end]
    renamed = _field_key_pattern(old).sub(lambda m: f"{m.group(1)}{new}{m.group(1)}{m.group(2)}", text, count=1)
    return _splice(source, span.start, span.end, renamed)


def remove_return_field(source: str, function_name: str, name: str) -> str:
    parsed = find_parsed(source, function_name)
    fields = parsed.signature.return_fields
    if fields is None or all(f.name != name for f in fields):
        return source
    kept = [f for f in fields if f.name != name]
    text = "{" + ", ".join(f'"{f.name}": {f.py_type or UNTYPED}' for f in kept) + "}"
    return _replace_return(source, parsed.function, text)


def rename_callback_field(source: str, function_name: str, scope: str, old: str, new: str, returned: bool) -> str:
    """Rename a field of a scope callback: a return field when ``returned``, else a parameter."""
    parsed = find_parsed(source, function_name)
    parts = _param_parts(source, parsed.function)
    for index, part in enumerate(parts):
        param = parse_parameter(part, index)
        if param is None or param.name != scope:
            continue
        callback = parse_callback(param.py_type)
        if callback is None:
            return source
        fields = callback.returns if returned else callback.params
        renamed = [TypedField(new, f.py_type) if f.name == old else f for f in fields]
        updated = (
            CallbackSignature(params=callback.params, returns=renamed)
            if returned
            else CallbackSignature(params=renamed, returns=callback.returns)
        )
        parts[index] = _set_annotation(part, format_callback(updated))
        return _replace_params(source, parsed.function, parts)
    return source


def rename_tag_port(source: str, function_name: str, old: str, new: str, direction: str) -> str:
    """Rename the ``@input``/``@output`` tag of a port, keeping its other fields."""
    parsed = find_parsed(source, function_name)
    if parsed.function.docstring is None:
        return source
    tag_type = InputTag if direction == "input" else OutputTag
    editor = DocstringEditor(source, parsed.function)
    for tag in parsed.block.of_type(tag_type):
        if tag.name == old:
            editor.replace(tag, render_tag(replace(tag, name=new)))
    return editor.apply()
