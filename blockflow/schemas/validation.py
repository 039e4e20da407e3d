"""Pydantic schemas for workflow validation.

This module defines the validation options, the issue codes and the
validation report returned by the workflow validator and the
``/workflows/validate`` endpoint.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from blockflow.schemas.base import BaseSchema
from blockflow.schemas.workflow import WorkflowDefinition

# =============================================================================
# Validation Enums
# =============================================================================


class IssueType(str, Enum):
    """Area of the definition an issue belongs to."""

    SCHEMA = "schema"
    DAG = "dag"
    CONNECTION = "connection"
    CONFIG = "config"
    PERFORMANCE = "performance"
    BEST_PRACTICE = "best_practice"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


class ValidationCode(str, Enum):
    """Validation issue codes.

    Standardized codes for all validation errors and warnings.
    """

    # Structural errors
    EMPTY_WORKFLOW = "EMPTY_WORKFLOW"
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    DUPLICATE_EDGE_ID = "DUPLICATE_EDGE_ID"
    INVALID_EDGE_REFERENCE = "INVALID_EDGE_REFERENCE"
    SELF_LOOP_DETECTED = "SELF_LOOP_DETECTED"

    # Graph errors
    CYCLE_DETECTED = "CYCLE_DETECTED"
    NO_ENTRY_NODE = "NO_ENTRY_NODE"
    NO_TERMINAL_NODE = "NO_TERMINAL_NODE"
    UNREACHABLE_NODE = "UNREACHABLE_NODE"
    ORPHAN_NODE = "ORPHAN_NODE"

    # Schema and block errors
    INVALID_SCHEMA = "INVALID_SCHEMA"
    UNKNOWN_BLOCK_TYPE = "UNKNOWN_BLOCK_TYPE"

    # Warnings (escalatable)
    NO_INPUT_BLOCK = "NO_INPUT_BLOCK"
    NO_OUTPUT_BLOCK = "NO_OUTPUT_BLOCK"
    MULTIPLE_INPUT_BLOCKS = "MULTIPLE_INPUT_BLOCKS"
    NO_GLOBAL_TIMEOUT = "NO_GLOBAL_TIMEOUT"
    NO_RETRY_POLICY = "NO_RETRY_POLICY"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


# =============================================================================
# Request/Option Schemas
# =============================================================================


class ValidationOptions(BaseSchema):
    """Options controlling which checks run."""

    check_blocks: bool = Field(
        default=True,
        description="Cross-check block types against the registry",
    )
    escalate_warnings: bool = Field(
        default=False,
        description="Report missing input/output blocks as errors",
    )
    include_warnings: bool = Field(
        default=True,
        description="Include non-blocking warnings",
    )


class ValidateWorkflowRequest(BaseSchema):
    """Request body of the validate endpoint."""

    definition: WorkflowDefinition = Field(
        ...,
        description="Workflow definition to validate",
    )
    options: ValidationOptions = Field(
        default_factory=ValidationOptions,
        description="Validation options",
    )


# =============================================================================
# Result Schemas
# =============================================================================


class ValidationIssue(BaseSchema):
    """Single validation error or warning."""

    type: IssueType = Field(
        ...,
        description="Area of the definition the issue belongs to",
    )
    code: ValidationCode = Field(
        ...,
        description="Machine-readable issue code",
    )
    message: str = Field(
        ...,
        description="Human-readable message",
    )
    node_id: str | None = Field(
        default=None,
        description="Offending node id",
    )
    edge_id: str | None = Field(
        default=None,
        description="Offending edge id",
    )
    node_ids: list[str] = Field(
        default_factory=list,
        description="All node ids involved (e.g. the nodes of a cycle)",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional issue context",
    )


class ValidationResult(BaseSchema):
    """Outcome of validating a workflow definition."""

    valid: bool = Field(
        ...,
        description="True when no errors were found",
    )
    errors: list[ValidationIssue] = Field(
        default_factory=list,
        description="Blocking issues",
    )
    warnings: list[ValidationIssue] = Field(
        default_factory=list,
        description="Non-blocking issues",
    )

    @property
    def error_codes(self) -> list[str]:
        """Codes of all errors, in report order."""
        return [str(issue.code) for issue in self.errors]

    @property
    def warning_codes(self) -> list[str]:
        """Codes of all warnings, in report order."""
        return [str(issue.code) for issue in self.warnings]


__all__ = [
    "IssueType",
    "ValidateWorkflowRequest",
    "ValidationCode",
    "ValidationIssue",
    "ValidationOptions",
    "ValidationResult",
]
