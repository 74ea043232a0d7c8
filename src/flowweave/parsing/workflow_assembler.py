"""Assemble ``WorkflowAST`` values from annotated modules.

A module contributes node types (``@flowWeaver nodeType`` functions), and any
number of workflows (``@flowWeaver workflow``) or patterns
(``@flowWeaver pattern``). Node types imported with relative
``from .module import name`` statements are read from disk. All node types of
one assembly pass are collected into a ``NodeTypeTable`` that is passed
explicitly to every workflow assembled from the module.

Unknown node types and duplicate instance ids are assembly errors: they are
collected and returned with the AST, never raised. Files that cannot be read
raise ``SourceReadError`` and abort the whole assembly.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from flowweave.core import error_codes
from flowweave.core.ast_models import (
    Connection,
    InstanceConfig,
    NodeInstance,
    NodeTypeDefinition,
    ParentRef,
    PortDefinition,
    PortMetadata,
    PortRef,
    WorkflowAST,
    default_exit_ports,
    default_start_ports,
)
from flowweave.core.exceptions import SourceReadError
from flowweave.core.port_types import CONTROL_PORTS, EXECUTE_PORT, RESERVED_NODE_IDS
from flowweave.core.validation_result import ValidationIssue, unknown_node_type
from flowweave.parsing.node_type_parser import (
    NodeTypeParseResult,
    ParsedFunction,
    infer_node_type,
    parse_functions,
    parse_node_type,
)
from flowweave.parsing.signature_parser import is_optional_type, python_type_to_port
from flowweave.parsing.source_scanner import ImportFrom, scan_imports
from flowweave.parsing.tag_grammar import (
    ConnectTag,
    EndpointRef,
    LabelTag,
    NodeTag,
    ParamTag,
    PositionTag,
    ReturnsTag,
)

logger = logging.getLogger(__name__)

SourceReader = Callable[[Path], str]

WORKFLOW_KINDS = ("workflow", "pattern")


def read_source_file(path: Path) -> str:
    """Blocking read of one source file."""
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceReadError(str(path), e) from e


class NodeTypeTable:
    """Lookup table ``name -> NodeTypeDefinition`` for one assembly pass.

    Node types resolve by their declared name first and by function name
    second. Unannotated functions of the module are kept aside so an ``@node``
    referencing one can infer its node type on demand.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, NodeTypeDefinition] = {}
        self._by_function: dict[str, NodeTypeDefinition] = {}
        self._inferable: dict[str, ParsedFunction] = {}
        self._inferred_warnings: dict[str, list[ValidationIssue]] = {}

    def register(self, node_type: NodeTypeDefinition) -> bool:
        """Add a node type; returns False when the name is already taken."""
        if node_type.name in self._by_name:
            return False
        self._by_name[node_type.name] = node_type
        self._by_function.setdefault(node_type.function_name, node_type)
        return True

    def add_inferable(self, parsed: ParsedFunction) -> None:
        self._inferable.setdefault(parsed.name, parsed)

    def resolve(self, name: str) -> Optional[NodeTypeDefinition]:
        return self._by_name.get(name) or self._by_function.get(name)

    def resolve_or_infer(self, name: str, source_path: Optional[str]) -> tuple[Optional[NodeTypeDefinition], list[ValidationIssue]]:
        """Resolve ``name``, inferring a node type from an unannotated function if needed.

        Returns the node type (or None) and the warnings produced by inferring it;
        a node type is inferred once per pass.
        """
        found = self.resolve(name)
        if found is not None:
            return found, self._inferred_warnings.get(found.name, [])
        parsed = self._inferable.get(name)
        if parsed is None:
            return None, []
        result = infer_node_type(parsed, source_path)
        self.register(result.node_type)
        self._inferred_warnings[result.node_type.name] = result.warnings
        return result.node_type, result.warnings

    def names(self) -> list[str]:
        return list(self._by_name)

    def as_dict(self) -> dict[str, NodeTypeDefinition]:
        return dict(self._by_name)


@dataclass
class AssemblyResult:
    """One workflow AST plus its assembly errors and warnings."""

    ast: WorkflowAST
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]


@dataclass
class ParsedModule:
    """Everything extracted from one module in a single assembly pass."""

    source_path: Optional[str]
    functions: list[ParsedFunction]
    node_types: list[NodeTypeParseResult]
    table: NodeTypeTable
    workflows: list[AssemblyResult]
    warnings: list[ValidationIssue] = field(default_factory=list)

    def get_workflow(self, name: str) -> Optional[AssemblyResult]:
        for result in self.workflows:
            if result.ast.name == name or result.ast.function_name == name:
                return result
        return None


# --- imports -------------------------------------------------------------------


def resolve_relative_import(module: str, source_path: Path) -> Optional[Path]:
    """Map ``.nodes`` / ``..pkg.nodes`` to a file next to ``source_path``."""
    dots = len(module) - len(module.lstrip("."))
    base = source_path.parent
    for _ in range(dots - 1):
        base = base.parent
    remainder = module[dots:]
    if not remainder:
        return None
    target = base.joinpath(*remainder.split("."))
    candidate = target.with_suffix(".py")
    if candidate.exists():
        return candidate
    package = target / "__init__.py"
    if package.exists():
        return package
    return candidate


def _load_imported_node_types(
    imports: list[ImportFrom],
    source_path: Optional[str],
    table: NodeTypeTable,
    read_file: SourceReader,
) -> tuple[list[str], list[ValidationIssue]]:
    loaded_modules: list[str] = []
    warnings: list[ValidationIssue] = []
    for statement in imports:
        if not statement.is_relative:
            continue
        if source_path is None:
            warnings.append(
                ValidationIssue.create(
                    error_codes.PARSE_WARNING,
                    f"Cannot resolve relative import '{statement.module}' without a source path",
                )
            )
            continue
        path = resolve_relative_import(statement.module, Path(source_path))
        if path is None:
            continue
        text = read_file(path)
        loaded_modules.append(statement.module)
        wanted = set(statement.names)
        for parsed in parse_functions(text, str(path)):
            if parsed.kind != "nodeType" or ("*" not in wanted and parsed.name not in wanted):
                continue
            result = parse_node_type(parsed, str(path))
            warnings.extend(result.warnings)
            if not table.register(result.node_type):
                warnings.append(
                    ValidationIssue.create(
                        error_codes.PARSE_WARNING,
                        f"Imported node type '{result.node_type.name}' from {path} is shadowed by a local definition",
                        node=result.node_type.name,
                    )
                )
        logger.debug(f"Loaded node types from {path}", extra={"phase": "imports", "module": statement.module})
    return loaded_modules, warnings


# --- boundary ports ------------------------------------------------------------


def _start_ports(parsed: ParsedFunction, issues: list[ValidationIssue], strict: bool) -> dict[str, PortDefinition]:
    ports = default_start_ports()
    params = {p.name: p for p in parsed.signature.params if p.name != EXECUTE_PORT and p.kind != "var"}
    tags = {t.name: t for t in parsed.block.of_type(ParamTag)}

    for name, param in params.items():
        tag = tags.get(name)
        ports[name] = PortDefinition(
            name=name,
            data_type=python_type_to_port(param.py_type),
            optional=(tag.optional if tag else False) or is_optional_type(param.py_type),
            default=param.default if param.default is not None else (tag.default if tag else None),
            label=tag.label if tag else None,
            hidden=tag.modifiers.hidden if tag else False,
            py_type=param.py_type,
            metadata=PortMetadata(order=tag.modifiers.order, placement=tag.modifiers.placement) if tag else PortMetadata(),
        )

    for name, tag in tags.items():
        if name in ports:
            continue
        if strict:
            issues.append(
                ValidationIssue.create(
                    error_codes.PORT_TYPE_FALLBACK,
                    f"@param '{name}' has no matching parameter in def {parsed.name}; using ANY",
                    node=parsed.name,
                    port=name,
                )
            )
        ports[name] = PortDefinition(
            name=name,
            optional=tag.optional,
            default=tag.default,
            label=tag.label,
            hidden=tag.modifiers.hidden,
            metadata=PortMetadata(order=tag.modifiers.order, placement=tag.modifiers.placement),
        )
    return ports


def _exit_ports(parsed: ParsedFunction, issues: list[ValidationIssue], strict: bool) -> dict[str, PortDefinition]:
    ports = default_exit_ports()
    tags = {t.name: t for t in parsed.block.of_type(ReturnsTag)}
    for field_ in parsed.signature.return_fields or []:
        if field_.name in CONTROL_PORTS:
            continue
        tag = tags.get(field_.name)
        ports[field_.name] = PortDefinition(
            name=field_.name,
            data_type=python_type_to_port(field_.py_type),
            label=tag.label if tag else None,
            py_type=field_.py_type,
            metadata=PortMetadata(order=tag.modifiers.order, placement=tag.modifiers.placement) if tag else PortMetadata(),
        )
    for name, tag in tags.items():
        if name in ports:
            continue
        if strict:
            issues.append(
                ValidationIssue.create(
                    error_codes.PORT_TYPE_FALLBACK,
                    f"@returns '{name}' has no matching return field in def {parsed.name}; using ANY",
                    node=parsed.name,
                    port=name,
                )
            )
        ports[name] = PortDefinition(
            name=name,
            label=tag.label,
            metadata=PortMetadata(order=tag.modifiers.order, placement=tag.modifiers.placement),
        )
    return ports


# --- workflows -----------------------------------------------------------------


def _port_ref(ref: EndpointRef) -> PortRef:
    return PortRef(node=ref.node, port=ref.port, scope=ref.scope)


def _build_instances(
    tags: list[NodeTag],
    positions: dict[str, PositionTag],
    table: NodeTypeTable,
    source_path: Optional[str],
    issues: list[ValidationIssue],
) -> list[NodeInstance]:
    instances: list[NodeInstance] = []
    seen: set[str] = set()

    for tag in tags:
        if tag.instance_id in seen:
            issues.append(
                ValidationIssue.create(
                    error_codes.DUPLICATE_INSTANCE_ID,
                    f"Duplicate node id '{tag.instance_id}'; each @node needs a unique id",
                    node=tag.instance_id,
                )
            )
            continue
        seen.add(tag.instance_id)

        node_type, inferred_warnings = table.resolve_or_infer(tag.node_type, source_path)
        type_name = tag.node_type
        if node_type is None:
            issues.append(unknown_node_type(tag.instance_id, tag.node_type, table.names()))
        else:
            type_name = node_type.name
            issues.extend(inferred_warnings)

        position = positions.get(tag.instance_id)
        config = InstanceConfig(
            x=position.x if position else None,
            y=position.y if position else None,
            width=tag.size[0] if tag.size else None,
            height=tag.size[1] if tag.size else None,
            label=tag.label,
            port_expressions=dict(tag.expressions),
        )
        parent = ParentRef(instance_id=tag.parent[0], scope_name=tag.parent[1]) if tag.parent else None
        instances.append(NodeInstance(id=tag.instance_id, node_type=type_name, config=config, parent=parent))

    return instances


def assemble_workflow(
    parsed: ParsedFunction,
    table: NodeTypeTable,
    source_path: Optional[str] = None,
    imports: Optional[list[str]] = None,
) -> AssemblyResult:
    """Build the ``WorkflowAST`` of one ``@flowWeaver workflow|pattern`` function."""
    block = parsed.block
    kind = parsed.kind if parsed.kind in WORKFLOW_KINDS else "workflow"
    issues: list[ValidationIssue] = [
        ValidationIssue.create(error_codes.PARSE_WARNING, f"{parsed.name}: {message}", node=parsed.name)
        for message in block.warnings
    ]

    positions: dict[str, PositionTag] = {}
    node_ids = {t.instance_id for t in block.of_type(NodeTag)}
    for position in block.of_type(PositionTag):
        if position.instance_id not in node_ids and position.instance_id not in RESERVED_NODE_IDS:
            issues.append(
                ValidationIssue.create(
                    error_codes.PARSE_WARNING,
                    f"@position references unknown node '{position.instance_id}'",
                    node=position.instance_id,
                )
            )
        positions[position.instance_id] = position

    instances = _build_instances(block.of_type(NodeTag), positions, table, source_path, issues)
    connections = [
        Connection(source=_port_ref(tag.source), target=_port_ref(tag.target)) for tag in block.of_type(ConnectTag)
    ]

    strict_boundary = kind == "workflow"
    label_tag = block.first(LabelTag)
    ast = WorkflowAST(
        name=label_tag.text if label_tag and kind == "pattern" else parsed.name,
        function_name=parsed.name,
        kind=kind,
        # Every node type available to the workflow, instantiated or not
        node_types=table.as_dict(),
        instances=instances,
        connections=connections,
        start_ports=_start_ports(parsed, issues, strict_boundary),
        exit_ports=_exit_ports(parsed, issues, strict_boundary),
        imports=list(imports or []),
        is_async=parsed.function.is_async,
        description=block.description or None,
        source_path=source_path,
    )
    logger.debug(
        f"Assembled {kind} '{parsed.name}' with {len(instances)} nodes and {len(connections)} connections",
        extra={"phase": "assemble", "workflow": parsed.name, "issues": len(issues)},
    )
    return AssemblyResult(ast=ast, issues=issues)


def parse_module(
    source: str,
    source_path: Optional[str] = None,
    read_file: SourceReader = read_source_file,
) -> ParsedModule:
    """Parse a module's node types and assemble all of its workflows.

    Args:
        source: Module source text
        source_path: Path of the module; needed to resolve relative imports
        read_file: Blocking reader for imported modules

    Raises:
        SourceParseError: If a function boundary cannot be located
        SourceReadError: If an imported module cannot be read
    """
    functions = parse_functions(source, source_path)
    table = NodeTypeTable()
    warnings: list[ValidationIssue] = []

    node_types: list[NodeTypeParseResult] = []
    for parsed in functions:
        if parsed.kind == "nodeType":
            result = parse_node_type(parsed, source_path)
            node_types.append(result)
            warnings.extend(result.warnings)
            if not table.register(result.node_type):
                warnings.append(
                    ValidationIssue.create(
                        error_codes.PARSE_WARNING,
                        f"Node type '{result.node_type.name}' is defined more than once; keeping the first",
                        node=result.node_type.name,
                    )
                )
        elif parsed.kind is None:
            table.add_inferable(parsed)

    loaded, import_warnings = _load_imported_node_types(scan_imports(source), source_path, table, read_file)
    warnings.extend(import_warnings)

    workflows = [
        assemble_workflow(parsed, table, source_path, loaded) for parsed in functions if parsed.kind in WORKFLOW_KINDS
    ]
    logger.debug(
        f"Parsed module with {len(node_types)} node types and {len(workflows)} workflows",
        extra={"phase": "parse_module", "source_path": source_path},
    )
    return ParsedModule(
        source_path=source_path,
        functions=functions,
        node_types=node_types,
        table=table,
        workflows=workflows,
        warnings=warnings,
    )
