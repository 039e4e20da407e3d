"""Pydantic schemas for workflow definitions and stored workflows.

This module defines the executable workflow definition (nodes, edges,
globals, retry policy) and the request/response schemas of the workflow
endpoints.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Required at runtime for Pydantic
from typing import Any, Literal
from uuid import UUID  # noqa: TC003 - Required at runtime for Pydantic

from pydantic import Field, model_validator

from blockflow.schemas.base import (
    BaseSchema,
    DescriptionField,
    NameField,
    PaginatedResponse,
)

# =============================================================================
# Definition Schemas
# =============================================================================


class RetryPolicy(BaseSchema):
    """Retry behaviour for failed node executions.

    The delay before retry ``n`` (0-based) is
    ``initial_delay * backoff_multiplier ** n`` capped at ``max_delay``.
    """

    max_retries: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Maximum number of retry attempts",
        examples=[3],
    )
    initial_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=300.0,
        description="Delay before the first retry in seconds",
        examples=[1.0],
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Multiplier for exponential backoff",
        examples=[2.0],
    )
    max_delay: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound for a single retry delay in seconds",
        examples=[30.0],
    )
    retryable_errors: list[str] = Field(
        default_factory=list,
        description=(
            "Case-insensitive substrings of retryable error messages or kinds; "
            "empty means every failure is retried"
        ),
        examples=[["timeout", "rate limit"]],
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number ``attempt``."""
        return min(self.initial_delay * self.backoff_multiplier**attempt, self.max_delay)

    def is_retryable(self, kind: str, message: str) -> bool:
        """Whether a failure with the given kind and message may be retried."""
        if not self.retryable_errors:
            return True
        haystack = f"{kind} {message}".lower()
        return any(pattern.lower() in haystack for pattern in self.retryable_errors)


class WorkflowGlobals(BaseSchema):
    """Run-wide settings of a workflow definition."""

    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Total run budget in seconds",
        examples=[300.0],
    )
    retry_policy: RetryPolicy | None = Field(
        default=None,
        description="Default retry policy for nodes without their own",
    )
    max_parallel_nodes: int | None = Field(
        default=None,
        ge=1,
        description="Upper bound of nodes executed concurrently within a level",
        examples=[4],
    )


class NodeDefinition(BaseSchema):
    """A single block invocation inside a workflow."""

    id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Node identifier, unique within the workflow",
        examples=["fetch-leads"],
    )
    type: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Registered block type (dotted namespace)",
        examples=["input.static", "transform.fieldMapping", "output.logger"],
    )
    name: str | None = Field(
        default=None,
        max_length=255,
        description="Display name of the node",
    )
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Block configuration; string values may hold {{placeholders}}",
        examples=[{"data": {"message": "hi"}}],
    )
    input_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON Schema for validating node input",
    )
    output_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON Schema for validating node output",
    )
    retry_policy: RetryPolicy | None = Field(
        default=None,
        description="Retry policy overriding the workflow default",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Node timeout in seconds",
        examples=[30.0],
    )
    critical: bool = Field(
        default=False,
        description="A failure of a critical node fails the whole run",
    )
    optional: bool = Field(
        default=False,
        description="Optional nodes are exempt from the orphan check",
    )

    @property
    def display_name(self) -> str:
        """Name shown in logs and tracking records."""
        return self.name or self.id


class EdgeAdapter(BaseSchema):
    """Reshapes the source output before it reaches the target node.

    ``map`` builds an object from ``mapping`` (target field to a dotted source
    path or a template); ``template`` renders the ``template`` object with
    the source output bound to ``output`` and its keys as bare names.
    """

    type: Literal["map", "template"] = Field(
        ...,
        description="Adapter kind",
        examples=["map"],
    )
    mapping: dict[str, str] | None = Field(
        default=None,
        description="Target field to source path or template (map adapters)",
        examples=[{"email": "contact.email", "greeting": "Hi {{ name }}"}],
    )
    template: dict[str, Any] | None = Field(
        default=None,
        description="Object whose string values are templates (template adapters)",
        examples=[{"rows": "{{ output.rows }}", "fetched_at": "{{ now }}"}],
    )

    @model_validator(mode="after")
    def _require_body(self) -> EdgeAdapter:
        if self.type == "map" and self.mapping is None:
            raise ValueError("A map adapter requires 'mapping'")
        if self.type == "template" and self.template is None:
            raise ValueError("A template adapter requires 'template'")
        return self


class EdgeDefinition(BaseSchema):
    """A data dependency between two nodes."""

    id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Edge identifier, unique within the workflow",
        examples=["e1"],
    )
    source: str = Field(
        ...,
        min_length=1,
        description="Id of the upstream node",
    )
    target: str = Field(
        ...,
        min_length=1,
        description="Id of the downstream node",
    )
    source_port: str = Field(
        default="out",
        max_length=50,
        description="Output port on the source node",
    )
    target_port: str = Field(
        default="in",
        max_length=50,
        description=(
            "Input port on the target node; any port other than 'in' nests "
            "the source output under the port name"
        ),
    )
    adapter: EdgeAdapter | None = Field(
        default=None,
        description="Optional reshaping of the source output",
    )


class WorkflowDefinition(BaseSchema):
    """Executable workflow definition.

    The definition is treated as read-only by the validator and the
    orchestrator. Structural problems such as cycles or dangling edges are
    reported by the validator rather than rejected at parse time.
    """

    workflow_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Workflow identifier",
        examples=["lead-enrichment"],
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Display name",
        examples=["Lead enrichment"],
    )
    version: str = Field(
        default="1.0.0",
        max_length=50,
        description="Definition version",
    )
    description: str | None = DescriptionField
    nodes: list[NodeDefinition] = Field(
        default_factory=list,
        description="Ordered node list",
    )
    edges: list[EdgeDefinition] = Field(
        default_factory=list,
        description="Edge list; its order fixes the input merge order",
    )
    globals: WorkflowGlobals | None = Field(
        default=None,
        description="Run-wide settings",
    )

    def get_node(self, node_id: str) -> NodeDefinition | None:
        """Return the first node with the given id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# =============================================================================
# Stored Workflow Schemas
# =============================================================================


class WorkflowCreate(BaseSchema):
    """Schema for storing a new workflow.

    ``workflow_id`` and, when omitted, ``name`` and ``description`` are taken
    from the definition.
    """

    definition: WorkflowDefinition = Field(
        ...,
        description="Workflow definition to store",
    )
    name: str | None = Field(
        default=None,
        min_length=1,
        max_length=255,
        description="Display name (defaults to the definition name)",
    )
    description: str | None = DescriptionField
    category: str | None = Field(
        default=None,
        max_length=100,
        description="Catalog category",
        examples=["leads"],
    )
    tags: list[str] = Field(
        default_factory=list,
        description="Catalog tags",
    )
    is_active: bool = Field(
        default=True,
        description="Whether the workflow can be executed",
    )


class WorkflowUpdate(BaseSchema):
    """Schema for updating a stored workflow.

    All fields are optional to support partial updates.
    """

    name: str | None = Field(
        default=None,
        min_length=1,
        max_length=255,
        description="Display name",
    )
    description: str | None = DescriptionField
    definition: WorkflowDefinition | None = Field(
        default=None,
        description="Replacement definition (its workflow_id must not change)",
    )
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] | None = Field(default=None)
    is_active: bool | None = Field(default=None)


class WorkflowResponse(BaseSchema):
    """Schema for a stored workflow in API responses."""

    id: UUID = Field(..., description="Internal identifier")
    workflow_id: str = Field(..., description="Workflow identifier")
    name: str = NameField
    description: str | None = Field(default=None)
    version: str = Field(..., description="Definition version")
    definition: dict[str, Any] = Field(..., description="Workflow definition")
    is_active: bool = Field(..., description="Whether the workflow is active")
    category: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)
    total_executions: int = Field(default=0, ge=0)
    successful_executions: int = Field(default=0, ge=0)
    failed_executions: int = Field(default=0, ge=0)
    last_executed_at: datetime | None = Field(default=None)
    created_by: str | None = Field(default=None)
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


WorkflowPaginatedResponse = PaginatedResponse[WorkflowResponse]


__all__ = [
    # Definition schemas
    "EdgeAdapter",
    "EdgeDefinition",
    "NodeDefinition",
    "RetryPolicy",
    "WorkflowDefinition",
    "WorkflowGlobals",
    # Stored workflow schemas
    "WorkflowCreate",
    "WorkflowPaginatedResponse",
    "WorkflowResponse",
    "WorkflowUpdate",
]
