"""Build ``NodeTypeDefinition`` values from annotated functions.

Port existence and type come from the signature: ordinary parameters for
inputs, the dict-display return annotation for outputs, and for scoped ports
the scope's callback parameter ``name: Callable[{params}, {returns}]``.
Labels, order, placement and scope membership come from the docstring tags.
Disagreements between the two halves never fail a parse; they degrade to the
ANY type plus a warning.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from flowweave.core import error_codes
from flowweave.core.ast_models import NodeTypeDefinition, PortDefinition, PortMetadata
from flowweave.core.port_types import (
    CONTROL_PORTS,
    EXECUTE_PORT,
    FAILURE_PORT,
    SUCCESS_PORT,
    ExecuteWhen,
    PortType,
)
from flowweave.core.validation_result import ValidationIssue
from flowweave.parsing.signature_parser import (
    CallbackSignature,
    ParsedParam,
    ParsedSignature,
    is_optional_type,
    parse_callback,
    parse_signature,
    python_type_to_port,
)
from flowweave.parsing.source_scanner import FunctionSource, scan_functions
from flowweave.parsing.tag_grammar import (
    ExecuteWhenTag,
    ExpressionTag,
    InputTag,
    LabelTag,
    NameTag,
    OutputTag,
    ScopeTag,
    StepTag,
    TagBlock,
    parse_docstring,
)

logger = logging.getLogger(__name__)

# Name of the single output of an inferred expression function
EXPRESSION_RESULT_PORT = "result"


@dataclass
class ParsedFunction:
    """One top-level function with its parsed signature and tag block."""

    function: FunctionSource
    signature: ParsedSignature
    block: TagBlock

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def kind(self) -> Optional[str]:
        return self.block.flow_weaver_kind


@dataclass
class NodeTypeParseResult:
    node_type: NodeTypeDefinition
    warnings: list[ValidationIssue] = field(default_factory=list)


def parse_functions(source: str, source_path: Optional[str] = None) -> list[ParsedFunction]:
    """Scan a module and parse every top-level function's signature and docstring."""
    parsed = []
    for function in scan_functions(source, source_path):
        signature = parse_signature(function.params_text(source), function.return_text(source))
        block = parse_docstring(function.docstring_text(source))
        parsed.append(ParsedFunction(function=function, signature=signature, block=block))
    return parsed


class _PortBuilder:
    """Collects ports and warnings for one node type."""

    def __init__(self, parsed: ParsedFunction, type_name: str):
        self.parsed = parsed
        self.type_name = type_name
        self.inputs: dict[str, PortDefinition] = {}
        self.outputs: dict[str, PortDefinition] = {}
        self.warnings: list[ValidationIssue] = []

    def warn(self, code: str, message: str, port: Optional[str] = None) -> None:
        self.warnings.append(ValidationIssue.create(code, message, node=self.type_name, port=port))

    def add(self, target: dict[str, PortDefinition], port: PortDefinition, direction: str) -> None:
        if port.name in target:
            self.warn(
                error_codes.PARSE_WARNING,
                f"Duplicate {direction} port '{port.name}' on node type '{self.type_name}'; keeping the first",
                port=port.name,
            )
            return
        target[port.name] = port


def _scope_callbacks(parsed: ParsedFunction, scopes: list[str], builder: _PortBuilder) -> dict[str, CallbackSignature]:
    callbacks: dict[str, CallbackSignature] = {}
    for scope in scopes:
        param = parsed.signature.get(scope)
        callback = parse_callback(param.py_type) if param is not None else None
        if callback is None:
            builder.warn(
                error_codes.PORT_TYPE_FALLBACK,
                f"Scope '{scope}' on '{builder.type_name}' has no callback parameter "
                f"'{scope}: Callable[{{...}}, {{...}}]'; scoped ports fall back to ANY",
            )
            callbacks[scope] = CallbackSignature()
        else:
            callbacks[scope] = callback
    return callbacks


def _input_from_tag(
    tag: InputTag, builder: _PortBuilder, callbacks: dict[str, CallbackSignature]
) -> PortDefinition:
    parsed = builder.parsed
    py_type: Optional[str] = None
    data_type = PortType.ANY
    default = tag.default
    optional = tag.optional

    if tag.scope is not None:
        callback = callbacks.get(tag.scope)
        returned = callback.returned(tag.name) if callback is not None else None
        if returned is None:
            builder.warn(
                error_codes.PORT_TYPE_FALLBACK,
                f"Scoped input '{tag.name}' has no matching return field in the '{tag.scope}' callback; "
                f"using ANY",
                port=tag.name,
            )
        else:
            py_type = returned.py_type
            data_type = python_type_to_port(py_type)
    else:
        param = parsed.signature.get(tag.name)
        if param is None:
            builder.warn(
                error_codes.PORT_TYPE_FALLBACK,
                f"Input '{tag.name}' has no matching parameter in def {parsed.name}; using ANY",
                port=tag.name,
            )
        else:
            py_type = param.py_type
            data_type = python_type_to_port(py_type)
            default = default if default is not None else param.default
            optional = optional or is_optional_type(py_type)

    return PortDefinition(
        name=tag.name,
        data_type=data_type,
        optional=optional,
        default=default,
        expression=tag.modifiers.expression,
        scope=tag.scope,
        label=tag.label,
        hidden=tag.modifiers.hidden,
        py_type=py_type,
        metadata=PortMetadata(order=tag.modifiers.order, placement=tag.modifiers.placement),
    )


def _output_from_tag(
    tag: OutputTag, builder: _PortBuilder, callbacks: dict[str, CallbackSignature], single_return: Optional[str]
) -> PortDefinition:
    parsed = builder.parsed
    py_type: Optional[str] = None
    data_type = PortType.ANY

    if tag.scope is not None:
        callback = callbacks.get(tag.scope)
        param = callback.param(tag.name) if callback is not None else None
        if param is None:
            builder.warn(
                error_codes.PORT_TYPE_FALLBACK,
                f"Scoped output '{tag.name}' has no matching parameter in the '{tag.scope}' callback; using ANY",
                port=tag.name,
            )
        else:
            py_type = param.py_type
            data_type = python_type_to_port(py_type)
    else:
        field_ = parsed.signature.return_field(tag.name)
        if field_ is not None:
            py_type = field_.py_type
            data_type = python_type_to_port(py_type)
        elif single_return is not None:
            py_type = single_return
            data_type = python_type_to_port(py_type)
        else:
            builder.warn(
                error_codes.PORT_TYPE_FALLBACK,
                f"Output '{tag.name}' has no matching return field in def {parsed.name}; using ANY",
                port=tag.name,
            )

    return PortDefinition(
        name=tag.name,
        data_type=data_type,
        scope=tag.scope,
        label=tag.label,
        hidden=tag.modifiers.hidden,
        py_type=py_type,
        metadata=PortMetadata(order=tag.modifiers.order, placement=tag.modifiers.placement),
    )


def _port_from_param(param: ParsedParam) -> PortDefinition:
    return PortDefinition(
        name=param.name,
        data_type=python_type_to_port(param.py_type),
        optional=is_optional_type(param.py_type),
        default=param.default,
        py_type=param.py_type,
    )


def _control_ports(is_expression: bool) -> tuple[dict[str, PortDefinition], dict[str, PortDefinition]]:
    inputs: dict[str, PortDefinition] = {}
    if not is_expression:
        inputs[EXECUTE_PORT] = PortDefinition(name=EXECUTE_PORT, data_type=PortType.STEP, py_type="bool")
    outputs = {
        SUCCESS_PORT: PortDefinition(name=SUCCESS_PORT, data_type=PortType.STEP, py_type="bool"),
        FAILURE_PORT: PortDefinition(name=FAILURE_PORT, data_type=PortType.STEP, py_type="bool"),
    }
    return inputs, outputs


def parse_node_type(parsed: ParsedFunction, source_path: Optional[str] = None) -> NodeTypeParseResult:
    """Combine one annotated function's tags and signature into a node type."""
    block = parsed.block
    name_tag = block.first(NameTag)
    type_name = name_tag.name if name_tag else parsed.name
    builder = _PortBuilder(parsed, type_name)

    for message in block.warnings:
        builder.warn(error_codes.PARSE_WARNING, f"{parsed.name}: {message}")

    is_expression = block.first(ExpressionTag) is not None
    scopes = [tag.name for tag in block.of_type(ScopeTag)]
    callbacks = _scope_callbacks(parsed, scopes, builder)

    params = parsed.signature.params
    if not is_expression and (not params or params[0].name != EXECUTE_PORT):
        builder.warn(
            error_codes.PARSE_WARNING,
            f"def {parsed.name} should take '{EXECUTE_PORT}: bool' as its first parameter",
            port=EXECUTE_PORT,
        )

    builder.inputs, builder.outputs = _control_ports(is_expression)

    input_tags = block.of_type(InputTag)
    for tag in input_tags:
        if tag.name == EXECUTE_PORT and tag.scope is None:
            execute = builder.inputs.get(EXECUTE_PORT)
            if execute is not None:
                builder.inputs[EXECUTE_PORT] = execute.model_copy(update={"label": tag.label})
            continue
        if tag.name in CONTROL_PORTS and tag.scope is None:
            builder.warn(error_codes.PARSE_WARNING, f"'{tag.name}' is a reserved control port", port=tag.name)
            continue
        builder.add(builder.inputs, _input_from_tag(tag, builder, callbacks), "input")

    for step in block.of_type(StepTag):
        port = PortDefinition(
            name=step.name,
            data_type=PortType.STEP,
            label=step.label,
            hidden=step.modifiers.hidden,
            py_type="bool",
            metadata=PortMetadata(order=step.modifiers.order, placement=step.modifiers.placement),
        )
        builder.add(builder.inputs, port, "input")

    # Signature parameters without a tag still become ports
    tagged = {tag.name for tag in input_tags if tag.scope is None} | {s.name for s in block.of_type(StepTag)}
    for param in params:
        if param.name == EXECUTE_PORT or param.name in scopes or param.kind == "var" or param.name in tagged:
            continue
        builder.warn(
            error_codes.PARSE_WARNING,
            f"Parameter '{param.name}' of def {parsed.name} has no @input tag",
            port=param.name,
        )
        builder.add(builder.inputs, _port_from_param(param), "input")

    return_fields = parsed.signature.return_fields
    output_tags = block.of_type(OutputTag)
    boundary_tags = [tag for tag in output_tags if tag.scope is None and tag.name not in CONTROL_PORTS]
    single_return = None
    if return_fields is None and parsed.signature.return_text and len(boundary_tags) == 1:
        # "-> float" on an expression function types its only output
        single_return = parsed.signature.return_text

    for tag in output_tags:
        if tag.name in (SUCCESS_PORT, FAILURE_PORT) and tag.scope is None:
            existing = builder.outputs[tag.name]
            builder.outputs[tag.name] = existing.model_copy(update={"label": tag.label})
            continue
        builder.add(builder.outputs, _output_from_tag(tag, builder, callbacks, single_return), "output")

    tagged_outputs = {tag.name for tag in output_tags if tag.scope is None}
    for field_ in return_fields or []:
        if field_.name in CONTROL_PORTS or field_.name in tagged_outputs:
            continue
        builder.warn(
            error_codes.PARSE_WARNING,
            f"Return field '{field_.name}' of def {parsed.name} has no @output tag",
            port=field_.name,
        )
        port = PortDefinition(name=field_.name, data_type=python_type_to_port(field_.py_type), py_type=field_.py_type)
        builder.add(builder.outputs, port, "output")

    execute_when_tag = block.first(ExecuteWhenTag)
    label_tag = block.first(LabelTag)
    node_type = NodeTypeDefinition(
        name=type_name,
        function_name=parsed.name,
        inputs=builder.inputs,
        outputs=builder.outputs,
        execute_when=execute_when_tag.policy if execute_when_tag else ExecuteWhen.CONJUNCTION,
        is_async=parsed.function.is_async,
        scopes=scopes,
        expression=is_expression,
        returns_dict=return_fields is not None or (parsed.signature.return_text is None and not is_expression),
        label=label_tag.text if label_tag else None,
        description=block.description or None,
        source_path=source_path,
    )
    logger.debug(
        f"Parsed node type '{type_name}' with {len(node_type.inputs)} inputs and {len(node_type.outputs)} outputs",
        extra={"phase": "node_type", "node_type": type_name, "warnings": len(builder.warnings)},
    )
    return NodeTypeParseResult(node_type=node_type, warnings=builder.warnings)


def infer_node_type(parsed: ParsedFunction, source_path: Optional[str] = None) -> NodeTypeParseResult:
    """Derive a node type from an unannotated function's signature alone.

    A function whose first parameter is not ``execute`` is treated as an
    expression; a non-dict return annotation then types a single ``result``
    output.
    """
    params = parsed.signature.params
    is_expression = not params or params[0].name != EXECUTE_PORT
    inputs, outputs = _control_ports(is_expression)

    for param in params:
        if param.name == EXECUTE_PORT or param.kind == "var":
            continue
        inputs[param.name] = _port_from_param(param)

    if parsed.signature.return_fields is not None:
        for field_ in parsed.signature.return_fields:
            if field_.name in CONTROL_PORTS:
                continue
            outputs[field_.name] = PortDefinition(
                name=field_.name, data_type=python_type_to_port(field_.py_type), py_type=field_.py_type
            )
    elif is_expression:
        return_text = parsed.signature.return_text
        outputs[EXPRESSION_RESULT_PORT] = PortDefinition(
            name=EXPRESSION_RESULT_PORT, data_type=python_type_to_port(return_text), py_type=return_text
        )

    node_type = NodeTypeDefinition(
        name=parsed.name,
        function_name=parsed.name,
        inputs=inputs,
        outputs=outputs,
        is_async=parsed.function.is_async,
        expression=is_expression,
        description=parsed.block.description or None,
        returns_dict=parsed.signature.return_fields is not None,
        source_path=source_path,
        inferred=True,
    )
    warning = ValidationIssue.create(
        error_codes.INFERRED_NODE_TYPE,
        f"Node type '{parsed.name}' was inferred from an unannotated function signature",
        node=parsed.name,
    )
    return NodeTypeParseResult(node_type=node_type, warnings=[warning])


def parse_node_types(source: str, source_path: Optional[str] = None) -> list[NodeTypeParseResult]:
    """Parse every ``@flowWeaver nodeType`` function in a module."""
    return [
        parse_node_type(parsed, source_path)
        for parsed in parse_functions(source, source_path)
        if parsed.kind == "nodeType"
    ]
