"""Annotation parsing: tags, signatures, node types and workflow assembly."""

from .node_type_parser import ParsedFunction, parse_functions, parse_node_type, parse_node_types
from .port_sync import sync_docstring_to_signature, sync_signature_to_docstring
from .rename import PositionalRenameMatcher, Propagation, RenameResult, rename_port_in_code, sync_code_renames
from .signature_parser import parse_signature, python_type_to_port
from .tag_grammar import parse_docstring, render_tag
from .workflow_assembler import AssemblyResult, NodeTypeTable, ParsedModule, assemble_workflow, parse_module

__all__ = [
    "AssemblyResult",
    "NodeTypeTable",
    "ParsedFunction",
    "ParsedModule",
    "PositionalRenameMatcher",
    "Propagation",
    "RenameResult",
    "assemble_workflow",
    "parse_docstring",
    "parse_functions",
    "parse_module",
    "parse_node_type",
    "parse_node_types",
    "parse_signature",
    "python_type_to_port",
    "rename_port_in_code",
    "render_tag",
    "sync_code_renames",
    "sync_docstring_to_signature",
    "sync_signature_to_docstring",
]
