"""Execution tracking models for workflow runs.

This module defines the durable counterpart to the in-memory job processor:
one ``WorkflowExecution`` per run, one ``BlockExecution`` per node per run,
and an append-only ``TimelineEvent`` audit trail.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blockflow.models.base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow
from blockflow.models.enums import ExecutionMode, ExecutionStatus, TimelineEventType

# Statuses a run can end in
TERMINAL_RUN_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class WorkflowExecution(UUIDMixin, TimestampMixin, Base):
    """Tracking record for a single workflow run.

    The public identifier is ``execution_id`` (``exec_<ms>_<random>``); the
    UUID primary key is internal. Once the record reaches a terminal status
    its status and ``completed_at`` never change again.

    Attributes:
        id: UUID primary key (from UUIDMixin)
        execution_id: Public, unique run identifier
        workflow_id: Identifier of the executed workflow definition
        status: Current run status (PENDING, RUNNING, COMPLETED, etc.)
        mode: Execution mode (production, test, demo)
        input_data: JSON input payload of the run
        output_data: JSON output of the run (nullable)
        error_message: Human-readable failure message (nullable)
        error_stack: Traceback of an unexpected failure (nullable)
        progress_percentage: Monotonic progress in the range 0..100
        started_at: When the run started (nullable)
        completed_at: When the run reached a terminal status (nullable)
        execution_time_ms: Wall time of the run in milliseconds (nullable)
        metadata_: JSON metadata (failed nodes, errors, user, job id)
        block_executions: Relationship to BlockExecution records
        timeline: Relationship to TimelineEvent records
    """

    __tablename__ = "workflow_executions"

    execution_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
    )

    workflow_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    status: Mapped[ExecutionStatus] = mapped_column(
        String(50),
        nullable=False,
        default=ExecutionStatus.PENDING,
        server_default="pending",
        index=True,
    )

    mode: Mapped[ExecutionMode] = mapped_column(
        String(20),
        nullable=False,
        default=ExecutionMode.PRODUCTION,
        server_default="production",
    )

    # Data fields
    input_data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    output_data: Mapped[Any | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    error_stack: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    progress_percentage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    # Timing fields
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    execution_time_ms: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    # Relationships
    block_executions: Mapped[list[BlockExecution]] = relationship(
        "BlockExecution",
        back_populates="workflow_execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BlockExecution.created_at",
    )

    timeline: Mapped[list[TimelineEvent]] = relationship(
        "TimelineEvent",
        back_populates="workflow_execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TimelineEvent.sequence",
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the run is in COMPLETED, FAILED or CANCELLED state."""
        return self.status in TERMINAL_RUN_STATUSES

    def start(self) -> None:
        """Mark the run as running.

        Raises:
            ValueError: If the run is not in PENDING state.
        """
        if self.status != ExecutionStatus.PENDING:
            raise ValueError(f"Cannot start execution in {self.status} state")
        self.status = ExecutionStatus.RUNNING
        self.started_at = utcnow()

    def finish(
        self,
        status: ExecutionStatus,
        *,
        output_data: Any = None,
        error_message: str | None = None,
        error_stack: str | None = None,
    ) -> None:
        """Move the run into a terminal status exactly once.

        Args:
            status: COMPLETED, FAILED or CANCELLED.
            output_data: Optional output of the run.
            error_message: Optional failure message.
            error_stack: Optional traceback.

        Raises:
            ValueError: If the run is already terminal or ``status`` is not
                a terminal run status.
        """
        if status not in TERMINAL_RUN_STATUSES:
            raise ValueError(f"{status} is not a terminal execution status")
        if self.is_terminal:
            raise ValueError(f"Cannot finish execution in {self.status} state")
        now = utcnow()
        self.status = status
        self.completed_at = now
        if self.started_at is not None:
            self.execution_time_ms = round(
                (_aware(now) - _aware(self.started_at)).total_seconds() * 1000, 3
            )
        if output_data is not None:
            self.output_data = output_data
        if error_message is not None:
            self.error_message = error_message
        if error_stack is not None:
            self.error_stack = error_stack
        if status == ExecutionStatus.COMPLETED:
            self.progress_percentage = 100

    def cancel(self) -> None:
        """Cancel the run.

        Raises:
            ValueError: If the run is not in PENDING or RUNNING state.
        """
        if self.status not in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING):
            raise ValueError(f"Cannot cancel execution in {self.status} state")
        self.finish(
            ExecutionStatus.CANCELLED, error_message="Execution cancelled by user"
        )

    def advance_progress(self, percentage: float) -> bool:
        """Raise the progress percentage, never lowering it.

        Returns:
            True if the stored value changed.
        """
        value = max(0, min(100, int(percentage)))
        if value <= self.progress_percentage:
            return False
        self.progress_percentage = value
        return True

    def __repr__(self) -> str:
        """Return string representation of the workflow execution."""
        return (
            f"<WorkflowExecution(execution_id={self.execution_id}, "
            f"workflow_id={self.workflow_id}, "
            f"status={self.status})>"
        )


class BlockExecution(UUIDMixin, TimestampMixin, Base):
    """Per-node record of a workflow run.

    Attributes:
        id: UUID primary key (from UUIDMixin)
        execution_id: Public id of the parent WorkflowExecution
        node_id: Node id within the workflow definition
        block_type: Registered block type of the node
        block_name: Display name of the node (nullable)
        status: Node status (PENDING, RUNNING, COMPLETED, FAILED, SKIPPED)
        input_data: JSON input the node received (nullable)
        output_data: JSON output the node produced (nullable)
        error_message: Failure message (nullable)
        error_stack: Traceback of the failure, if one was captured (nullable)
        started_at: When the node started (nullable)
        completed_at: When the node finished (nullable)
        execution_time_ms: Node wall time in milliseconds (nullable)
        retry_count: Number of retries performed
        metadata_: JSON metadata (skip reason, attempt details)
    """

    __tablename__ = "block_executions"

    execution_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("workflow_executions.execution_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    node_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    block_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    block_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    status: Mapped[ExecutionStatus] = mapped_column(
        String(50),
        nullable=False,
        default=ExecutionStatus.PENDING,
        server_default="pending",
    )

    input_data: Mapped[Any | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    output_data: Mapped[Any | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    error_stack: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    execution_time_ms: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    workflow_execution: Mapped[WorkflowExecution] = relationship(
        "WorkflowExecution",
        back_populates="block_executions",
    )

    def __repr__(self) -> str:
        """Return string representation of the block execution."""
        return (
            f"<BlockExecution(execution_id={self.execution_id}, "
            f"node_id={self.node_id}, "
            f"status={self.status})>"
        )


class TimelineEvent(UUIDMixin, Base):
    """Append-only audit entry of a workflow run.

    Attributes:
        id: UUID primary key (from UUIDMixin)
        execution_id: Public id of the parent WorkflowExecution
        sequence: Monotonic insertion counter used for ordering
        event: Event name (e.g. WORKFLOW_STARTED, NODE_COMPLETED)
        event_type: Scope of the event (workflow, node, job)
        node_id: Node the event refers to (nullable)
        block_type: Block type of that node (nullable)
        details: JSON event details (nullable)
        error_message: Error carried by the event (nullable)
        created_at: When the event was recorded
    """

    __tablename__ = "timeline_events"

    execution_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("workflow_executions.execution_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    event: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    event_type: Mapped[TimelineEventType] = mapped_column(
        String(20),
        nullable=False,
        default=TimelineEventType.WORKFLOW,
    )

    node_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    block_type: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    details: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    workflow_execution: Mapped[WorkflowExecution] = relationship(
        "WorkflowExecution",
        back_populates="timeline",
    )

    def __repr__(self) -> str:
        """Return string representation of the timeline event."""
        return (
            f"<TimelineEvent(execution_id={self.execution_id}, "
            f"event={self.event}, node_id={self.node_id})>"
        )


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    if value.tzinfo is None:
        return value.replace(tzinfo=utcnow().tzinfo)
    return value


__all__ = [
    "TERMINAL_RUN_STATUSES",
    "BlockExecution",
    "TimelineEvent",
    "WorkflowExecution",
]
