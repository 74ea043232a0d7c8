"""Signature-text grammar: parameter lists, return annotations and callbacks.

Parsing works on source text with balanced-delimiter scanning, so nested
generics (``dict[str, list[int]]``) and scope callbacks
(``Callable[{"item": Any}, {"result": Any}]``) are handled without
evaluating annotations. The return annotation of a node function is a dict
display naming its output fields:

    def add(execute: bool, a: float) -> {"onSuccess": bool, "onFailure": bool, "sum": float}:
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from flowweave.core.port_types import PortType
from flowweave.parsing.text_scan import find_matching, find_top_level, mask_source, split_top_level

NONE_NAMES = frozenset({"None", "NoneType", "type(None)"})

PY_TYPE_MAP: dict[str, PortType] = {
    "str": PortType.STRING,
    "int": PortType.NUMBER,
    "float": PortType.NUMBER,
    "complex": PortType.NUMBER,
    "Decimal": PortType.NUMBER,
    "Fraction": PortType.NUMBER,
    "bool": PortType.BOOLEAN,
    "list": PortType.ARRAY,
    "List": PortType.ARRAY,
    "tuple": PortType.ARRAY,
    "Tuple": PortType.ARRAY,
    "set": PortType.ARRAY,
    "Set": PortType.ARRAY,
    "frozenset": PortType.ARRAY,
    "FrozenSet": PortType.ARRAY,
    "Sequence": PortType.ARRAY,
    "MutableSequence": PortType.ARRAY,
    "Iterable": PortType.ARRAY,
    "Iterator": PortType.ARRAY,
    "dict": PortType.OBJECT,
    "Dict": PortType.OBJECT,
    "Mapping": PortType.OBJECT,
    "MutableMapping": PortType.OBJECT,
    "TypedDict": PortType.OBJECT,
    "Callable": PortType.FUNCTION,
    "Any": PortType.ANY,
    "object": PortType.ANY,
}

_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$")
_CALLABLE = re.compile(r"^(?:typing\.|collections\.abc\.|abc\.)?Callable\s*\[")


@dataclass(frozen=True)
class ParsedParam:
    """One parameter of a function signature."""

    name: str
    py_type: Optional[str]
    default: Optional[str]
    position: int
    # "positional" for ordinary parameters, "var" for *args/**kwargs
    kind: str = "positional"

    @property
    def optional(self) -> bool:
        return self.default is not None or is_optional_type(self.py_type)


@dataclass(frozen=True)
class TypedField:
    """One field of a dict display, e.g. ``"sum": float``."""

    name: str
    py_type: Optional[str]


@dataclass(frozen=True)
class CallbackSignature:
    """Shape of a scope callback parameter.

    ``params`` are the values the owner passes into the scope body; ``returns``
    are the fields the scope body hands back.
    """

    params: list[TypedField] = field(default_factory=list)
    returns: list[TypedField] = field(default_factory=list)

    def param(self, name: str) -> Optional[TypedField]:
        return next((f for f in self.params if f.name == name), None)

    def returned(self, name: str) -> Optional[TypedField]:
        return next((f for f in self.returns if f.name == name), None)


@dataclass(frozen=True)
class ParsedSignature:
    params: list[ParsedParam]
    return_fields: Optional[list[TypedField]]
    return_text: Optional[str]

    def get(self, name: str) -> Optional[ParsedParam]:
        return next((p for p in self.params if p.name == name), None)

    def return_field(self, name: str) -> Optional[TypedField]:
        if self.return_fields is None:
            return None
        return next((f for f in self.return_fields if f.name == name), None)


def parse_parameter(text: str, position: int) -> Optional[ParsedParam]:
    """Parse ``name: type = default``; returns None for ``*`` and ``/`` markers."""
    text = text.strip()
    if text in ("*", "/", ""):
        return None
    kind = "positional"
    if text.startswith("*"):
        kind = "var"
        text = text.lstrip("*")

    default: Optional[str] = None
    eq = find_top_level(text, "=")
    if eq != -1:
        default = text[eq + 1 :].strip()
        text = text[:eq]

    py_type: Optional[str] = None
    colon = find_top_level(text, ":")
    if colon != -1:
        py_type = text[colon + 1 :].strip() or None
        text = text[:colon]

    name = text.strip()
    if not _IDENTIFIER.match(name):
        return None
    return ParsedParam(name=name, py_type=py_type, default=default, position=position, kind=kind)


def parse_parameters(params_text: str) -> list[ParsedParam]:
    """Parse the text between a function's parentheses into ordered parameters."""
    params: list[ParsedParam] = []
    for part in split_top_level(params_text):
        param = parse_parameter(part, len(params))
        if param is not None:
            params.append(param)
    return params


def _unquote(text: str) -> Optional[str]:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return None


def parse_dict_display(text: Optional[str]) -> Optional[list[TypedField]]:
    """Parse ``{"a": int, "b": str}`` into fields; None if not a dict display."""
    if text is None:
        return None
    text = text.strip()
    if not text.startswith("{"):
        return None
    close = find_matching(mask_source(text), 0)
    if close is None or text[close + 1 :].strip():
        return None

    fields: list[TypedField] = []
    for entry in split_top_level(text[1:close]):
        colon = find_top_level(entry, ":")
        key = _unquote(entry[:colon] if colon != -1 else entry)
        if key is None or not _IDENTIFIER.match(key):
            continue
        py_type = entry[colon + 1 :].strip() if colon != -1 else None
        fields.append(TypedField(name=key, py_type=py_type or None))
    return fields


def parse_callback(py_type: Optional[str]) -> Optional[CallbackSignature]:
    """Parse ``Callable[{params}, {returns}]``; None when not a callable type."""
    if not py_type:
        return None
    text = strip_string_annotation(py_type)
    match = _CALLABLE.match(text)
    if not match:
        return None
    open_index = match.end() - 1
    close = find_matching(mask_source(text), open_index)
    if close is None:
        return None
    parts = split_top_level(text[open_index + 1 : close])
    params = parse_dict_display(parts[0]) if parts else None
    returns = parse_dict_display(parts[1]) if len(parts) > 1 else None
    return CallbackSignature(params=params or [], returns=returns or [])


def parse_signature(params_text: str, return_text: Optional[str]) -> ParsedSignature:
    return ParsedSignature(
        params=parse_parameters(params_text),
        return_fields=parse_dict_display(return_text),
        return_text=return_text,
    )


def strip_string_annotation(py_type: str) -> str:
    """Turn a quoted forward reference ``"Foo"`` into ``Foo``."""
    unquoted = _unquote(py_type)
    return unquoted.strip() if unquoted is not None else py_type.strip()


def _split_union(text: str) -> list[str]:
    members = split_top_level(text, "|")
    if len(members) > 1:
        return members
    base, args = _split_generic(text)
    if base in ("Union",) and args is not None:
        return split_top_level(args)
    return [text]


def _split_generic(text: str) -> tuple[str, Optional[str]]:
    """Split ``Base[args]`` into its unqualified base name and argument text."""
    bracket = text.find("[")
    if bracket == -1 or not text.endswith("]"):
        return text.rsplit(".", 1)[-1].strip(), None
    base = text[:bracket].rsplit(".", 1)[-1].strip()
    return base, text[bracket + 1 : -1]


def is_optional_type(py_type: Optional[str]) -> bool:
    """True for ``Optional[X]``, ``Union[X, None]`` and ``X | None``."""
    if not py_type:
        return False
    text = strip_string_annotation(py_type)
    base, _ = _split_generic(text)
    if base == "Optional":
        return True
    members = _split_union(text)
    return len(members) > 1 and any(m.strip() in NONE_NAMES for m in members)


def python_type_to_port(py_type: Optional[str]) -> PortType:
    """Map a Python annotation's text onto the port type vocabulary.

    Examples:
        >>> python_type_to_port("Optional[list[int]]")
        <PortType.ARRAY: 'ARRAY'>
        >>> python_type_to_port("Invoice")
        <PortType.OBJECT: 'OBJECT'>
    """
    if not py_type:
        return PortType.ANY
    text = strip_string_annotation(py_type)
    if not text:
        return PortType.ANY
    if text.startswith("{"):
        return PortType.OBJECT

    base, args = _split_generic(text)
    if base == "Optional" and args is not None:
        return python_type_to_port(args)
    if base == "Annotated" and args is not None:
        parts = split_top_level(args)
        return python_type_to_port(parts[0]) if parts else PortType.ANY
    if base == "Literal" and args is not None:
        parts = split_top_level(args)
        return _literal_type(parts[0]) if parts else PortType.ANY

    members = [m for m in _split_union(text) if m.strip() not in NONE_NAMES]
    if len(members) > 1:
        mapped = {python_type_to_port(m) for m in members}
        return mapped.pop() if len(mapped) == 1 else PortType.ANY
    if len(members) == 1 and members[0].strip() != text:
        return python_type_to_port(members[0])

    if base in PY_TYPE_MAP:
        return PY_TYPE_MAP[base]
    if base[:1].isupper():
        # User-defined classes, dataclasses and pydantic models
        return PortType.OBJECT
    return PortType.ANY


def _literal_type(value: str) -> PortType:
    value = value.strip()
    if _unquote(value) is not None:
        return PortType.STRING
    if value in ("True", "False"):
        return PortType.BOOLEAN
    try:
        float(value)
    except ValueError:
        return PortType.ANY
    return PortType.NUMBER


def format_parameter(name: str, py_type: Optional[str] = None, default: Optional[str] = None) -> str:
    """Render one parameter the way it appears in a ``def`` line."""
    text = f"{name}: {py_type}" if py_type else name
    if default is not None:
        text = f"{text} = {default}" if py_type else f"{text}={default}"
    return text


def format_dict_display(fields: list[TypedField]) -> str:
    """Render fields as ``{"a": int, "b": str}``."""
    return "{" + ", ".join(f'"{f.name}": {f.py_type or "object"}' for f in fields) + "}"


def format_callback(callback: CallbackSignature) -> str:
    return f"Callable[{format_dict_display(callback.params)}, {format_dict_display(callback.returns)}]"
