"""Workflow validation, execution and job exceptions.

This module defines the error kinds reported in node and run results and
the exceptions raised by the engine. All exceptions inherit from
``AppError`` so the API layer renders them uniformly.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from blockflow.core.exceptions import AppError

if TYPE_CHECKING:
    from blockflow.schemas.validation import ValidationResult


class ErrorKind(str, Enum):
    """Machine-checkable failure kind of a node or a run."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    UNKNOWN_BLOCK_TYPE = "UNKNOWN_BLOCK_TYPE"
    NODE_EXECUTION_FAILED = "NODE_EXECUTION_FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


# ============================================================================
# Workflow Exceptions
# ============================================================================


class WorkflowError(AppError):
    """Base exception for workflow validation and execution errors."""

    default_code = ErrorKind.INTERNAL_ERROR.value


class WorkflowValidationError(WorkflowError):
    """Raised when a definition fails validation before execution.

    Attributes:
        result: The full validation report.
    """

    default_code = ErrorKind.VALIDATION_ERROR.value

    def __init__(self, result: ValidationResult) -> None:
        messages = "; ".join(issue.message for issue in result.errors)
        super().__init__(
            f"Workflow validation failed: {messages}",
            details={"errors": [issue.model_dump() for issue in result.errors]},
        )
        self.result = result


class CycleDetectedError(WorkflowError):
    """Raised when a cycle is detected in the graph.

    Attributes:
        cycle_path: Node ids forming the cycle, first node repeated at the end.
    """

    default_code = ErrorKind.CYCLE_DETECTED.value

    def __init__(self, cycle_path: list[str]) -> None:
        super().__init__(
            f"Cycle detected: {' -> '.join(cycle_path)}",
            details={"cycle_path": list(cycle_path)},
        )
        self.cycle_path = cycle_path


class UnknownBlockTypeError(WorkflowError):
    """Raised when a node references an unregistered block type."""

    default_code = ErrorKind.UNKNOWN_BLOCK_TYPE.value

    def __init__(self, block_type: str, node_id: str | None = None) -> None:
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(
            f"Unknown block type '{block_type}'{where}",
            details={"block_type": block_type, "node_id": node_id},
        )
        self.block_type = block_type
        self.node_id = node_id


class NodeExecutionError(WorkflowError):
    """Raised when a node fails.

    Attributes:
        node_id: ID of the node that failed.
        original_error: The exception that caused the failure, if any.
    """

    default_code = ErrorKind.NODE_EXECUTION_FAILED.value

    def __init__(
        self,
        node_id: str,
        message: str,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Node '{node_id}' execution failed: {message}",
            details={"node_id": node_id, **(details or {})},
        )
        self.node_id = node_id
        self.original_error = original_error


class NodeTimeoutError(WorkflowError):
    """Raised when a node or the whole run exceeds its time budget."""

    default_code = ErrorKind.TIMEOUT.value

    def __init__(self, node_id: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Node '{node_id}' timed out after {timeout_seconds:g}s",
            details={"node_id": node_id, "timeout_seconds": timeout_seconds},
        )
        self.node_id = node_id
        self.timeout_seconds = timeout_seconds


class ExecutionCancelledError(WorkflowError):
    """Raised when a run observes a cancellation request."""

    default_code = ErrorKind.CANCELLATION_REQUESTED.value

    def __init__(self, execution_id: str) -> None:
        super().__init__(
            f"Execution '{execution_id}' was cancelled",
            details={"execution_id": execution_id},
        )
        self.execution_id = execution_id


class DuplicateRegistrationError(WorkflowError):
    """Raised when a block type is registered twice without override."""

    default_code = "DUPLICATE_REGISTRATION"

    def __init__(self, block_type: str) -> None:
        super().__init__(
            f"Block type '{block_type}' is already registered",
            details={"block_type": block_type},
        )
        self.block_type = block_type


# ============================================================================
# Job Exceptions
# ============================================================================


class JobNotFoundError(AppError):
    """Raised when a job id is unknown to the job processor."""

    default_code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job '{job_id}' not found", details={"job_id": job_id})
        self.job_id = job_id


class JobAlreadyProcessingError(AppError):
    """Raised when starting a job that is not pending."""

    default_code = "JOB_ALREADY_PROCESSING"

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(
            f"Job '{job_id}' cannot be started from status '{status}'",
            details={"job_id": job_id, "status": status},
        )
        self.job_id = job_id
        self.status = status


__all__ = [
    "CycleDetectedError",
    "DuplicateRegistrationError",
    "ErrorKind",
    "ExecutionCancelledError",
    "JobAlreadyProcessingError",
    "JobNotFoundError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "UnknownBlockTypeError",
    "WorkflowError",
    "WorkflowValidationError",
]
