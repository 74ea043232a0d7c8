"""Core flowweave modules: the workflow model, its schema, errors and settings."""

from .ast_models import (
    Connection,
    InstanceConfig,
    NodeInstance,
    NodeTypeDefinition,
    ParentRef,
    PortDefinition,
    PortMetadata,
    PortRef,
    WorkflowAST,
)
from .ast_schema import ValidationError, validate_ast_dict
from .exceptions import (
    FlowWeaveError,
    GenerationError,
    MutationError,
    SourceParseError,
    SourceReadError,
    WorkflowNotFoundError,
)
from .port_types import ExecuteWhen, Placement, PortType, is_type_compatible
from .scope_tree import ScopeTree, scope_key
from .settings import FlowWeaveSettings, GenerationSettings, SettingsManager, ValidationSettings
from .validation_result import ValidationIssue, ValidationResult
from .workflow_data_flow import CycleError, build_execution_order, find_cycles

__all__ = [
    "Connection",
    "CycleError",
    "ExecuteWhen",
    "FlowWeaveError",
    "FlowWeaveSettings",
    "GenerationError",
    "GenerationSettings",
    "InstanceConfig",
    "MutationError",
    "NodeInstance",
    "NodeTypeDefinition",
    "ParentRef",
    "Placement",
    "PortDefinition",
    "PortMetadata",
    "PortRef",
    "PortType",
    "ScopeTree",
    "SettingsManager",
    "SourceParseError",
    "SourceReadError",
    "ValidationError",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSettings",
    "WorkflowAST",
    "WorkflowNotFoundError",
    "build_execution_order",
    "find_cycles",
    "is_type_compatible",
    "scope_key",
    "validate_ast_dict",
]
