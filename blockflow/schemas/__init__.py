"""Pydantic schemas for request/response validation.

This package contains the workflow definition model and all API schemas.
"""

from blockflow.schemas.base import (
    BaseSchema,
    DescriptionField,
    ErrorResponse,
    NameField,
    PaginatedResponse,
)

# Execution schemas
from blockflow.schemas.execution import (
    BlockExecutionResponse,
    BlockMetadataResponse,
    BlockTestRequest,
    CancelExecutionResponse,
    ExecuteInlineRequest,
    ExecuteWorkflowRequest,
    ExecuteWorkflowResponse,
    ExecutionDetailResponse,
    ExecutionListResponse,
    ExecutionResponse,
    ExecutionStats,
    JobResponse,
    JobStats,
    NodeResultResponse,
    TimelineEventResponse,
)

# Validation schemas
from blockflow.schemas.validation import (
    IssueType,
    ValidateWorkflowRequest,
    ValidationCode,
    ValidationIssue,
    ValidationOptions,
    ValidationResult,
)

# Workflow schemas
from blockflow.schemas.workflow import (
    EdgeDefinition,
    NodeDefinition,
    RetryPolicy,
    WorkflowCreate,
    WorkflowDefinition,
    WorkflowGlobals,
    WorkflowPaginatedResponse,
    WorkflowResponse,
    WorkflowUpdate,
)

__all__ = [
    # Base
    "BaseSchema",
    "DescriptionField",
    "ErrorResponse",
    "NameField",
    "PaginatedResponse",
    # Execution
    "BlockExecutionResponse",
    "BlockMetadataResponse",
    "BlockTestRequest",
    "CancelExecutionResponse",
    "ExecuteInlineRequest",
    "ExecuteWorkflowRequest",
    "ExecuteWorkflowResponse",
    "ExecutionDetailResponse",
    "ExecutionListResponse",
    "ExecutionResponse",
    "ExecutionStats",
    "JobResponse",
    "JobStats",
    "NodeResultResponse",
    "TimelineEventResponse",
    # Validation
    "IssueType",
    "ValidateWorkflowRequest",
    "ValidationCode",
    "ValidationIssue",
    "ValidationOptions",
    "ValidationResult",
    # Workflow
    "EdgeDefinition",
    "NodeDefinition",
    "RetryPolicy",
    "WorkflowCreate",
    "WorkflowDefinition",
    "WorkflowGlobals",
    "WorkflowPaginatedResponse",
    "WorkflowResponse",
    "WorkflowUpdate",
]
