"""SQLAlchemy models.

This package contains all database models.
"""

from blockflow.models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin
from blockflow.models.enums import (
    BlockCategory,
    ExecutionMode,
    ExecutionStatus,
    JobStatus,
    JobType,
    TimelineEventType,
)
from blockflow.models.execution import BlockExecution, TimelineEvent, WorkflowExecution
from blockflow.models.workflow import Workflow

__all__ = [
    # Base classes
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "SoftDeleteMixin",
    # Enums
    "BlockCategory",
    "ExecutionMode",
    "ExecutionStatus",
    "JobStatus",
    "JobType",
    "TimelineEventType",
    # Models
    "Workflow",
    "WorkflowExecution",
    "BlockExecution",
    "TimelineEvent",
]
