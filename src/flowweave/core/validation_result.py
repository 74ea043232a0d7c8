"""Validation issue and result models.

``ValidationResult.to_dict()`` is the stable shape external tooling depends
on: ``{"valid": bool, "errors": [...], "warnings": [...]}``.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from flowweave.core.error_codes import UNKNOWN_NODE_TYPE, default_severity
from flowweave.core.suggestion_utils import did_you_mean


class ValidationIssue(BaseModel):
    """One error or warning, keyed by an error code."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    severity: Literal["error", "warning"] = "error"
    node: Optional[str] = None
    port: Optional[str] = None

    @classmethod
    def create(cls, code: str, message: str, node: Optional[str] = None, port: Optional[str] = None) -> "ValidationIssue":
        """Build an issue with the severity the taxonomy assigns to ``code``."""
        return cls(code=code, message=message, severity=default_severity(code), node=node, port=port)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.node is not None:
            data["node"] = self.node
        if self.port is not None:
            data["port"] = self.port
        return data


class ValidationResult(BaseModel):
    """Batch of errors (blocking) and warnings (advisory)."""

    model_config = ConfigDict(frozen=True)

    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationResult":
        """Split issues by severity, dropping exact duplicates but keeping order."""
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        seen: set[ValidationIssue] = set()
        for issue in issues:
            if issue in seen:
                continue
            seen.add(issue)
            (errors if issue.severity == "error" else warnings).append(issue)
        return cls(errors=errors, warnings=warnings)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult.from_issues([*self.errors, *other.errors, *self.warnings, *other.warnings])

    def codes(self) -> list[str]:
        return [issue.code for issue in [*self.errors, *self.warnings]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


def unknown_node_type(instance_id: str, type_name: str, known: list[str]) -> ValidationIssue:
    """Issue for an instance whose node type cannot be resolved."""
    return ValidationIssue.create(
        UNKNOWN_NODE_TYPE,
        f"Node '{instance_id}' references unknown node type '{type_name}'.{did_you_mean(type_name, known)}",
        node=instance_id,
    )
