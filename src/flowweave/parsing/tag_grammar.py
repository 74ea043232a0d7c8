"""Tag-line grammar for docstring annotations.

Each line of a docstring that starts with ``@`` is tokenized by one regular
expression with named groups and handed to the parser registered for its tag
name in ``TAG_PARSERS``. Every parser returns one record from a closed set of
tag types; unknown tags come back as ``UnknownTag`` so they survive a rewrite
verbatim.

Grammar (``[...]`` after the port name holds comma separated modifiers):

    @flowWeaver nodeType|workflow|pattern
    @input name|[name]|[name=default] [scope:s] [order:1, placement:TOP, hidden, expr:"..."] - label
    @output name [scope:s] [modifiers] - label
    @step name [modifiers] - label
    @scope name
    @node id type [owner.scope] [label:"...", expr: port="...", size: W H]
    @connect source.port[:scope] -> target.port[:scope]
    @position id x y
    @label text
    @name nodeTypeName
    @executeWhen CONJUNCTION|DISJUNCTION|CUSTOM
    @expression
    @param name|[name]|[name=default] [modifiers] - label
    @returns name [modifiers] - label

Malformed lines never raise out of ``parse_docstring``; they are dropped and
reported in ``TagBlock.warnings``.
"""

import logging
import re
import textwrap
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Optional, TypeVar

from flowweave.core.port_types import ExecuteWhen, Placement

logger = logging.getLogger(__name__)

_TOKEN_SPEC = [
    ("STRING", r'"(?:[^"\\\n]|\\.)*"|\'(?:[^\'\\\n]|\\.)*\''),
    ("ARROW", r"->"),
    ("NUMBER", r"-?\d+(?:\.\d+)?(?!\w)"),
    ("IDENT", r"[A-Za-z_]\w*"),
    ("LBRACKET", r"\["),
    ("RBRACKET", r"\]"),
    ("EQUALS", r"="),
    ("COLON", r":"),
    ("DOT", r"\."),
    ("COMMA", r","),
    ("DASH", r"-"),
    ("SKIP", r"[ \t]+"),
    ("OTHER", r"."),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC))
_TAG_HEAD = re.compile(r"^@([A-Za-z]\w*)")

FLOW_WEAVER_KINDS = ("nodeType", "workflow", "pattern")


class TagSyntaxError(ValueError):
    """A single tag line does not match the grammar."""


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    start: int
    end: int


def tokenize(text: str) -> list[Token]:
    tokens = []
    for match in _TOKEN_RE.finditer(text):
        kind = match.lastgroup or "OTHER"
        if kind == "SKIP":
            continue
        tokens.append(Token(kind, match.group(), match.start(), match.end()))
    return tokens


@dataclass(frozen=True)
class PortModifiers:
    order: Optional[int] = None
    placement: Optional[Placement] = None
    hidden: bool = False
    expression: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.order is None and self.placement is None and not self.hidden and self.expression is None


@dataclass(frozen=True)
class EndpointRef:
    node: str
    port: str
    scope: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class Tag:
    """Base of every tag record. ``line`` is the 0-based docstring line."""

    line: int = 0
    raw: str = ""


@dataclass(frozen=True, kw_only=True)
class FlowWeaverTag(Tag):
    kind: str


@dataclass(frozen=True, kw_only=True)
class _InputFields(Tag):
    name: str
    optional: bool = False
    default: Optional[str] = None
    scope: Optional[str] = None
    modifiers: PortModifiers = field(default_factory=PortModifiers)
    label: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class _OutputFields(Tag):
    name: str
    scope: Optional[str] = None
    modifiers: PortModifiers = field(default_factory=PortModifiers)
    label: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class InputTag(_InputFields):
    pass


@dataclass(frozen=True, kw_only=True)
class OutputTag(_OutputFields):
    pass


@dataclass(frozen=True, kw_only=True)
class ParamTag(_InputFields):
    """Declares a workflow ``Start`` port."""


@dataclass(frozen=True, kw_only=True)
class ReturnsTag(_OutputFields):
    """Declares a workflow ``Exit`` port."""


@dataclass(frozen=True, kw_only=True)
class StepTag(Tag):
    """Declares an extra STEP input port."""

    name: str
    modifiers: PortModifiers = field(default_factory=PortModifiers)
    label: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ScopeTag(Tag):
    name: str


@dataclass(frozen=True, kw_only=True)
class NodeTag(Tag):
    instance_id: str
    node_type: str
    parent: Optional[tuple[str, str]] = None
    label: Optional[str] = None
    expressions: dict[str, str] = field(default_factory=dict)
    size: Optional[tuple[float, float]] = None


@dataclass(frozen=True, kw_only=True)
class ConnectTag(Tag):
    source: EndpointRef
    target: EndpointRef


@dataclass(frozen=True, kw_only=True)
class PositionTag(Tag):
    instance_id: str
    x: float
    y: float


@dataclass(frozen=True, kw_only=True)
class LabelTag(Tag):
    text: str


@dataclass(frozen=True, kw_only=True)
class NameTag(Tag):
    name: str


@dataclass(frozen=True, kw_only=True)
class ExecuteWhenTag(Tag):
    policy: ExecuteWhen


@dataclass(frozen=True, kw_only=True)
class ExpressionTag(Tag):
    pass


@dataclass(frozen=True, kw_only=True)
class UnknownTag(Tag):
    tag: str
    text: str


T = TypeVar("T", bound=Tag)


@dataclass
class TagBlock:
    """Parsed docstring: free-text description, tags in order and warnings."""

    description: str = ""
    tags: list[Tag] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def of_type(self, tag_type: type[T]) -> list[T]:
        return [t for t in self.tags if isinstance(t, tag_type)]

    def first(self, tag_type: type[T]) -> Optional[T]:
        return next((t for t in self.tags if isinstance(t, tag_type)), None)

    @property
    def flow_weaver_kind(self) -> Optional[str]:
        tag = self.first(FlowWeaverTag)
        return tag.kind if tag else None


class _Cursor:
    """Token cursor over one tag line."""

    def __init__(self, text: str, tokens: list[Token]):
        self.text = text
        self.tokens = tokens
        self.pos = 0
        self.warnings: list[str] = []

    def peek(self, offset: int = 0) -> Optional[Token]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def accept(self, kind: str, value: Optional[str] = None) -> Optional[Token]:
        token = self.peek()
        if token is not None and token.kind == kind and (value is None or token.value == value):
            self.pos += 1
            return token
        return None

    def expect(self, kind: str, what: str) -> Token:
        token = self.accept(kind)
        if token is None:
            found = self.peek()
            got = f"'{found.value}'" if found else "end of line"
            raise TagSyntaxError(f"Expected {what}, got {got}")
        return token

    def expect_end(self) -> None:
        token = self.peek()
        if token is not None:
            raise TagSyntaxError(f"Unexpected '{token.value}'")

    def rest(self) -> str:
        token = self.peek()
        if token is None:
            return ""
        self.pos = len(self.tokens)
        return self.text[token.start :].strip()

    def raw_until_close(self) -> str:
        """Consume tokens up to the ``]`` closing the current bracket; return their text."""
        depth = 0
        start_token = self.peek()
        if start_token is None:
            raise TagSyntaxError("Unterminated '['")
        while not self.at_end():
            token = self.tokens[self.pos]
            if token.kind == "LBRACKET":
                depth += 1
            elif token.kind == "RBRACKET":
                if depth == 0:
                    return self.text[start_token.start : token.start].strip()
                depth -= 1
            self.pos += 1
        raise TagSyntaxError("Unterminated '['")


def unquote(value: str) -> str:
    """Strip matching quotes and unescape escaped quotes and backslashes."""
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        mark = value[0]
        return value[1:-1].replace("\\" + mark, mark).replace("\\\\", "\\")
    return value


def quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _number(token: Token) -> float:
    return float(token.value)


# --- port tags ---------------------------------------------------------------


def _parse_port_head(cur: _Cursor, allow_optional: bool) -> tuple[str, bool, Optional[str]]:
    if allow_optional and cur.accept("LBRACKET"):
        name = cur.expect("IDENT", "port name").value
        default = None
        if cur.accept("EQUALS"):
            default = cur.raw_until_close()
            if not default:
                raise TagSyntaxError(f"Empty default value for '{name}'")
        cur.expect("RBRACKET", "']'")
        return name, True, default
    name = cur.expect("IDENT", "port name").value
    return name, False, None


def _parse_modifier_list(cur: _Cursor) -> tuple[PortModifiers, Optional[str]]:
    """Parse ``order:1, placement:TOP, hidden, expr:"..."`` up to ``]``."""
    order: Optional[int] = None
    placement: Optional[Placement] = None
    hidden = False
    expression: Optional[str] = None
    scope: Optional[str] = None

    while not cur.accept("RBRACKET"):
        key = cur.expect("IDENT", "modifier name").value
        if key == "hidden":
            hidden = True
        else:
            cur.expect("COLON", f"':' after '{key}'")
            if key == "order":
                token = cur.expect("NUMBER", "order number")
                order = int(float(token.value))
            elif key == "placement":
                value = cur.expect("IDENT", "TOP or BOTTOM").value.upper()
                if value not in ("TOP", "BOTTOM"):
                    raise TagSyntaxError(f"Invalid placement '{value}'")
                placement = Placement(value)
            elif key == "expr":
                expression = unquote(cur.expect("STRING", "quoted expression").value)
            elif key == "scope":
                scope = cur.expect("IDENT", "scope name").value
            else:
                token = cur.peek()
                if token is not None:
                    cur.pos += 1
                cur.warnings.append(f"Ignoring unknown modifier '{key}'")
        if not cur.accept("COMMA"):
            cur.expect("RBRACKET", "',' or ']'")
            break

    return PortModifiers(order=order, placement=placement, hidden=hidden, expression=expression), scope


def _parse_port_tail(cur: _Cursor) -> tuple[Optional[str], PortModifiers, Optional[str]]:
    scope: Optional[str] = None
    modifiers = PortModifiers()
    label: Optional[str] = None
    while not cur.at_end():
        token = cur.tokens[cur.pos]
        if token.kind == "IDENT" and token.value == "scope":
            cur.pos += 1
            cur.expect("COLON", "':' after scope")
            scope = cur.expect("IDENT", "scope name").value
        elif token.kind == "LBRACKET":
            cur.pos += 1
            modifiers, bracket_scope = _parse_modifier_list(cur)
            scope = bracket_scope or scope
        elif token.kind == "DASH":
            cur.pos += 1
            label = cur.rest() or None
        else:
            raise TagSyntaxError(f"Unexpected '{token.value}'")
    return scope, modifiers, label


def _parse_input(cur: _Cursor) -> InputTag:
    name, optional, default = _parse_port_head(cur, allow_optional=True)
    scope, modifiers, label = _parse_port_tail(cur)
    return InputTag(
        name=name, optional=optional, default=default, scope=scope, modifiers=modifiers, label=label
    )


def _parse_output(cur: _Cursor) -> OutputTag:
    name, _, _ = _parse_port_head(cur, allow_optional=False)
    scope, modifiers, label = _parse_port_tail(cur)
    return OutputTag(name=name, scope=scope, modifiers=modifiers, label=label)


def _parse_param(cur: _Cursor) -> ParamTag:
    name, optional, default = _parse_port_head(cur, allow_optional=True)
    _, modifiers, label = _parse_port_tail(cur)
    return ParamTag(name=name, optional=optional, default=default, modifiers=modifiers, label=label)


def _parse_returns(cur: _Cursor) -> ReturnsTag:
    name, _, _ = _parse_port_head(cur, allow_optional=False)
    _, modifiers, label = _parse_port_tail(cur)
    return ReturnsTag(name=name, modifiers=modifiers, label=label)


def _parse_step(cur: _Cursor) -> StepTag:
    name = cur.expect("IDENT", "port name").value
    _, modifiers, label = _parse_port_tail(cur)
    return StepTag(name=name, modifiers=modifiers, label=label)


# --- node-type tags ------------------------------------------------------------


def _parse_flow_weaver(cur: _Cursor) -> FlowWeaverTag:
    kind = cur.expect("IDENT", "nodeType, workflow or pattern").value
    if kind not in FLOW_WEAVER_KINDS:
        raise TagSyntaxError(f"Unknown @flowWeaver kind '{kind}'")
    cur.expect_end()
    return FlowWeaverTag(kind=kind)


def _parse_scope(cur: _Cursor) -> ScopeTag:
    name = cur.expect("IDENT", "scope name").value
    cur.expect_end()
    return ScopeTag(name=name)


def _parse_label(cur: _Cursor) -> LabelTag:
    text = cur.rest()
    if not text:
        raise TagSyntaxError("Empty @label")
    return LabelTag(text=unquote(text))


def _parse_name(cur: _Cursor) -> NameTag:
    name = cur.expect("IDENT", "node type name").value
    cur.expect_end()
    return NameTag(name=name)


def _parse_execute_when(cur: _Cursor) -> ExecuteWhenTag:
    value = cur.expect("IDENT", "CONJUNCTION, DISJUNCTION or CUSTOM").value.upper()
    try:
        policy = ExecuteWhen(value)
    except ValueError as e:
        raise TagSyntaxError(f"Unknown executeWhen policy '{value}'") from e
    cur.expect_end()
    return ExecuteWhenTag(policy=policy)


def _parse_expression(cur: _Cursor) -> ExpressionTag:
    cur.expect_end()
    return ExpressionTag()


# --- workflow tags -------------------------------------------------------------


def _parse_node(cur: _Cursor) -> NodeTag:
    instance_id = cur.expect("IDENT", "instance id").value
    node_type = cur.expect("IDENT", "node type name").value

    parent: Optional[tuple[str, str]] = None
    token = cur.peek()
    if token is not None and token.kind == "IDENT":
        owner = cur.expect("IDENT", "scope owner").value
        cur.expect("DOT", "'.' between owner and scope")
        parent = (owner, cur.expect("IDENT", "scope name").value)

    label: Optional[str] = None
    expressions: dict[str, str] = {}
    size: Optional[tuple[float, float]] = None
    if cur.accept("LBRACKET"):
        while not cur.accept("RBRACKET"):
            key = cur.expect("IDENT", "attribute name").value
            cur.expect("COLON", f"':' after '{key}'")
            if key == "label":
                label = unquote(cur.expect("STRING", "quoted label").value)
            elif key == "expr":
                port = cur.expect("IDENT", "port name").value
                cur.expect("EQUALS", "'='")
                expressions[port] = unquote(cur.expect("STRING", "quoted expression").value)
            elif key == "size":
                width = _number(cur.expect("NUMBER", "width"))
                height = _number(cur.expect("NUMBER", "height"))
                size = (width, height)
            else:
                raise TagSyntaxError(f"Unknown @node attribute '{key}'")
            if not cur.accept("COMMA"):
                cur.expect("RBRACKET", "',' or ']'")
                break
    cur.expect_end()
    return NodeTag(
        instance_id=instance_id, node_type=node_type, parent=parent, label=label, expressions=expressions, size=size
    )


def _parse_endpoint(cur: _Cursor) -> EndpointRef:
    node = cur.expect("IDENT", "node id").value
    cur.expect("DOT", "'.' between node and port")
    port = cur.expect("IDENT", "port name").value
    scope = None
    if cur.accept("COLON"):
        scope = cur.expect("IDENT", "scope name").value
    return EndpointRef(node=node, port=port, scope=scope)


def _parse_connect(cur: _Cursor) -> ConnectTag:
    source = _parse_endpoint(cur)
    cur.expect("ARROW", "'->'")
    target = _parse_endpoint(cur)
    cur.expect_end()
    return ConnectTag(source=source, target=target)


def _parse_position(cur: _Cursor) -> PositionTag:
    instance_id = cur.expect("IDENT", "instance id").value
    x = _number(cur.expect("NUMBER", "x coordinate"))
    y = _number(cur.expect("NUMBER", "y coordinate"))
    cur.expect_end()
    return PositionTag(instance_id=instance_id, x=x, y=y)


TAG_PARSERS: dict[str, Callable[[_Cursor], Tag]] = {
    "flowWeaver": _parse_flow_weaver,
    "input": _parse_input,
    "output": _parse_output,
    "step": _parse_step,
    "scope": _parse_scope,
    "node": _parse_node,
    "connect": _parse_connect,
    "position": _parse_position,
    "label": _parse_label,
    "name": _parse_name,
    "executeWhen": _parse_execute_when,
    "expression": _parse_expression,
    "param": _parse_param,
    "returns": _parse_returns,
}


def parse_tag_line(line: str, line_no: int = 0) -> tuple[Tag, list[str]]:
    """Parse one ``@tag ...`` line.

    Returns:
        The tag record and any non-fatal warnings (ignored modifiers)

    Raises:
        TagSyntaxError: If the line does not match its tag's grammar
    """
    text = line.strip()
    head = _TAG_HEAD.match(text)
    if head is None:
        raise TagSyntaxError("Tag lines start with '@name'")
    tag_name = head.group(1)
    body = text[head.end() :]

    parser = TAG_PARSERS.get(tag_name)
    if parser is None:
        return UnknownTag(tag=tag_name, text=body.strip(), line=line_no, raw=text), []

    cur = _Cursor(body, tokenize(body))
    tag = parser(cur)
    return _with_position(tag, line_no, text), cur.warnings


def _with_position(tag: Tag, line_no: int, raw: str) -> Tag:
    return replace(tag, line=line_no, raw=raw)


def parse_docstring(docstring: Optional[str]) -> TagBlock:
    """Parse a docstring into its description and tag records."""
    block = TagBlock()
    if not docstring:
        return block

    # Split on "\n" only so line indexes match the docstring editor
    lines = textwrap.dedent(docstring).split("\n")
    description: list[str] = []
    seen_tag = False
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped.startswith("@"):
            if not seen_tag:
                description.append(stripped)
            continue
        seen_tag = True
        try:
            tag, warnings = parse_tag_line(stripped, index)
        except TagSyntaxError as e:
            message = f"Malformed tag on line {index + 1}: {stripped} ({e})"
            logger.warning(message, extra={"phase": "tags"})
            block.warnings.append(message)
            continue
        block.tags.append(tag)
        block.warnings.extend(f"Line {index + 1}: {w}" for w in warnings)

    block.description = "\n".join(description).strip()
    return block


# --- rendering -----------------------------------------------------------------


def render_modifiers(modifiers: PortModifiers, scope_in_brackets: Optional[str] = None) -> str:
    parts = []
    if scope_in_brackets:
        parts.append(f"scope:{scope_in_brackets}")
    if modifiers.order is not None:
        parts.append(f"order:{modifiers.order}")
    if modifiers.placement is not None:
        parts.append(f"placement:{modifiers.placement.value}")
    if modifiers.hidden:
        parts.append("hidden")
    if modifiers.expression is not None:
        parts.append(f"expr:{quote(modifiers.expression)}")
    return f"[{', '.join(parts)}]" if parts else ""


def render_port_tag(
    keyword: str,
    name: str,
    *,
    optional: bool = False,
    default: Optional[str] = None,
    scope: Optional[str] = None,
    modifiers: Optional[PortModifiers] = None,
    label: Optional[str] = None,
) -> str:
    """Render ``@input``/``@output``/``@param``/``@returns``/``@step`` lines.

    Examples:
        >>> render_port_tag("input", "b", optional=True, default="0", label="Second")
        '@input [b=0] - Second'
    """
    if default is not None:
        head = f"[{name}={default}]"
    elif optional:
        head = f"[{name}]"
    else:
        head = name
    parts = [f"@{keyword}", head]
    if scope:
        parts.append(f"scope:{scope}")
    rendered_modifiers = render_modifiers(modifiers or PortModifiers())
    if rendered_modifiers:
        parts.append(rendered_modifiers)
    if label:
        parts.extend(["-", label])
    return " ".join(parts)


def render_tag(tag: Tag) -> str:
    """Render a tag record back to its canonical text."""
    if isinstance(tag, (InputTag, ParamTag)):
        keyword = "input" if isinstance(tag, InputTag) else "param"
        return render_port_tag(
            keyword,
            tag.name,
            optional=tag.optional,
            default=tag.default,
            scope=tag.scope,
            modifiers=tag.modifiers,
            label=tag.label,
        )
    if isinstance(tag, (OutputTag, ReturnsTag)):
        keyword = "output" if isinstance(tag, OutputTag) else "returns"
        return render_port_tag(keyword, tag.name, scope=tag.scope, modifiers=tag.modifiers, label=tag.label)
    if isinstance(tag, StepTag):
        return render_port_tag("step", tag.name, modifiers=tag.modifiers, label=tag.label)
    if isinstance(tag, FlowWeaverTag):
        return f"@flowWeaver {tag.kind}"
    if isinstance(tag, ScopeTag):
        return f"@scope {tag.name}"
    if isinstance(tag, NodeTag):
        return render_node_tag(tag)
    if isinstance(tag, ConnectTag):
        return f"@connect {_render_endpoint(tag.source)} -> {_render_endpoint(tag.target)}"
    if isinstance(tag, PositionTag):
        return f"@position {tag.instance_id} {_render_number(tag.x)} {_render_number(tag.y)}"
    if isinstance(tag, LabelTag):
        return f"@label {tag.text}"
    if isinstance(tag, NameTag):
        return f"@name {tag.name}"
    if isinstance(tag, ExecuteWhenTag):
        return f"@executeWhen {tag.policy.value}"
    if isinstance(tag, ExpressionTag):
        return "@expression"
    if isinstance(tag, UnknownTag):
        return f"@{tag.tag} {tag.text}".rstrip()
    raise TypeError(f"Cannot render {type(tag).__name__}")


def render_node_tag(tag: NodeTag) -> str:
    parts = ["@node", tag.instance_id, tag.node_type]
    if tag.parent:
        parts.append(f"{tag.parent[0]}.{tag.parent[1]}")
    attributes = []
    if tag.label:
        attributes.append(f"label: {quote(tag.label)}")
    for port, expression in tag.expressions.items():
        attributes.append(f"expr: {port}={quote(expression)}")
    if tag.size:
        attributes.append(f"size: {_render_number(tag.size[0])} {_render_number(tag.size[1])}")
    if attributes:
        parts.append(f"[{', '.join(attributes)}]")
    return " ".join(parts)


def _render_endpoint(ref: EndpointRef) -> str:
    text = f"{ref.node}.{ref.port}"
    return f"{text}:{ref.scope}" if ref.scope else text


def _render_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
