"""Structural, type and scope validation of workflow graphs."""

from .scope_rules import check_scope_topology
from .type_checker import check_connection_types
from .validator import ValidationRule, WorkflowValidator

__all__ = ["ValidationRule", "WorkflowValidator", "check_connection_types", "check_scope_topology"]
