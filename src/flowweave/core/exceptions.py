"""Custom exceptions for flowweave."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from flowweave.core.validation_result import ValidationResult


class FlowWeaveError(Exception):
    """Base exception for all flowweave errors."""

    pass


class SourceParseError(FlowWeaveError):
    """Raised when no function boundary can be located in annotated source."""

    def __init__(self, message: str, source_path: Optional[str] = None, line: Optional[int] = None):
        self.source_path = source_path
        self.line = line

        location = source_path or "<source>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}")


class SourceReadError(FlowWeaveError):
    """Raised when a referenced source file cannot be read.

    A missing or unreadable dependency fails the whole assembly step; there is
    no partial result.
    """

    def __init__(self, path: str, original_error: Optional[Exception] = None):
        self.path = path
        self.original_error = original_error

        message = f"Cannot read source file: {path}"
        if original_error:
            message = f"{message}\nOriginal error: {original_error!s}"

        super().__init__(message)


class GenerationError(FlowWeaveError):
    """Raised when code generation is refused because of blocking errors."""

    def __init__(self, message: str, result: Optional["ValidationResult"] = None):
        self.result = result

        if result is not None and result.errors:
            details = "\n".join(f"  - [{issue.code}] {issue.message}" for issue in result.errors)
            message = f"{message}\n{details}"

        super().__init__(message)


class WorkflowNotFoundError(FlowWeaveError):
    """Raised when a source file has no workflow with the requested name."""

    pass


class MutationError(FlowWeaveError):
    """Raised when an AST mutation cannot be applied."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")
