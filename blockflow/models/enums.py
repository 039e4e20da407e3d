"""Domain enum definitions for the workflow engine.

This module defines all enum types shared by the models, schemas and
services for type-safe representation of domain-specific values.
"""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow or node execution state.

    Runs use PENDING, RUNNING, COMPLETED, FAILED and CANCELLED.
    Nodes use PENDING, RUNNING, COMPLETED, FAILED and SKIPPED.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value

    @property
    def is_terminal(self) -> bool:
        """True once no further transition is allowed."""
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.SKIPPED,
            ExecutionStatus.CANCELLED,
        )


class ExecutionMode(str, Enum):
    """Mode a workflow run executes in.

    TEST and DEMO runs let blocks substitute mocked data for external calls.
    """

    PRODUCTION = "production"
    TEST = "test"
    DEMO = "demo"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


class BlockCategory(str, Enum):
    """Catalog grouping for registered block types."""

    INPUT = "input"
    OUTPUT = "output"
    API = "api"
    AI = "ai"
    TRANSFORM = "transform"
    FILTER = "filter"
    BRANCH = "branch"
    MERGE = "merge"
    CUSTOM = "custom"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


class JobStatus(str, Enum):
    """Background job lifecycle state."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value

    @property
    def is_terminal(self) -> bool:
        """True for COMPLETED, FAILED and CANCELLED."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    """Kinds of work the job processor runs."""

    WORKFLOW = "WORKFLOW"
    SEARCH = "SEARCH"
    UPLOAD_TO_META = "UPLOAD_TO_META"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


class TimelineEventType(str, Enum):
    """Scope of a timeline event."""

    WORKFLOW = "workflow"
    NODE = "node"
    JOB = "job"

    def __str__(self) -> str:
        """Return the string value for serialization."""
        return self.value


__all__ = [
    "BlockCategory",
    "ExecutionMode",
    "ExecutionStatus",
    "JobStatus",
    "JobType",
    "TimelineEventType",
]
