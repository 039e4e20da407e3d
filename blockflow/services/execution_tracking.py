"""Durable tracking of workflow runs.

This module provides the ExecutionTrackingService, which persists one
``WorkflowExecution`` per run, a ``BlockExecution`` per node and an
append-only ``TimelineEvent`` trail.

Each operation opens its own session from the injected session factory, so
the service can be shared by concurrently running workflows. Writes are
serialized with an ``asyncio.Lock``; timeline sequence numbers are assigned
under that lock.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from blockflow.core.exceptions import ResourceNotFoundError, ResourceStateError
from blockflow.core.logging import get_logger
from blockflow.models.base import utcnow
from blockflow.models.enums import ExecutionMode, ExecutionStatus, TimelineEventType
from blockflow.models.execution import (
    TERMINAL_RUN_STATUSES,
    BlockExecution,
    TimelineEvent,
    WorkflowExecution,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from blockflow.services.workflow.results import NodeExecutionResult

logger = get_logger(__name__)

_EXECUTION_FIELDS = frozenset(
    {"output_data", "error_message", "error_stack", "metadata", "progress_percentage"}
)
_BLOCK_FIELDS = frozenset(
    {
        "status",
        "input_data",
        "output_data",
        "error_message",
        "error_stack",
        "started_at",
        "completed_at",
        "execution_time_ms",
        "retry_count",
        "metadata",
    }
)


def to_json(value: Any) -> Any:
    """Convert arbitrary block data into JSON-compatible values."""
    return to_jsonable_python(value, fallback=str)


class ExecutionTrackingService:
    """Persists workflow runs, node executions and timeline events.

    Example:
        >>> tracker = ExecutionTrackingService(async_session)
        >>> await tracker.create_execution("exec_1", "wf-1", {"q": 1})
        >>> await tracker.update_progress("exec_1", 40)
        >>> await tracker.set_execution_status("exec_1", ExecutionStatus.COMPLETED)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._lock = asyncio.Lock()

    # =========================================================================
    # Workflow executions
    # =========================================================================

    async def create_execution(
        self,
        execution_id: str,
        workflow_id: str,
        input_data: Any = None,
        mode: ExecutionMode | str = ExecutionMode.PRODUCTION,
        metadata: dict[str, Any] | None = None,
        *,
        start: bool = True,
    ) -> WorkflowExecution:
        """Create the tracking record of a run.

        Args:
            execution_id: Public run id.
            workflow_id: Executed workflow.
            input_data: Run input.
            mode: Execution mode.
            metadata: Free-form metadata (user id, job id).
            start: Move the record to RUNNING right away.

        Returns:
            The persisted record.
        """
        async with self._lock, self._session_factory() as session:
            execution = WorkflowExecution(
                execution_id=execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatus.PENDING,
                mode=ExecutionMode(mode),
                input_data=to_json(input_data if input_data is not None else {}),
                metadata_=to_json(metadata or {}),
            )
            if start:
                execution.start()
            session.add(execution)
            await session.commit()

        logger.info(
            "Execution record created",
            extra={"context": {"execution_id": execution_id, "workflow_id": workflow_id}},
        )
        return execution

    async def update_progress(self, execution_id: str, percentage: float) -> bool:
        """Raise the stored progress; lower values are ignored.

        Returns:
            True if the stored value changed.
        """
        async with self._lock, self._session_factory() as session:
            execution = await self._get(session, execution_id)
            if execution is None or execution.is_terminal:
                return False
            changed = execution.advance_progress(percentage)
            if changed:
                await session.commit()
            return changed

    async def update_execution(
        self, execution_id: str, patch: dict[str, Any]
    ) -> WorkflowExecution:
        """Apply a partial update to a run record.

        A terminal ``status`` in the patch finishes the record (setting
        ``completed_at`` and the execution time) exactly once. Terminal
        records are immutable: any later patch is rejected.

        Args:
            execution_id: Public run id.
            patch: Any of ``status``, ``output_data``, ``error_message``,
                ``error_stack``, ``metadata`` and ``progress_percentage``.

        Returns:
            The updated record.

        Raises:
            ResourceNotFoundError: If the run does not exist.
            ResourceStateError: If the run is already terminal.
        """
        unknown = set(patch) - _EXECUTION_FIELDS - {"status"}
        if unknown:
            raise ValueError(f"Unsupported execution fields: {sorted(unknown)}")

        async with self._lock, self._session_factory() as session:
            execution = await self._get(session, execution_id)
            if execution is None:
                raise ResourceNotFoundError("execution", execution_id)

            if execution.is_terminal:
                raise ResourceStateError(
                    "execution",
                    execution_id,
                    f"Execution is already {execution.status}",
                )

            status = patch.get("status")

            if "metadata" in patch:
                execution.metadata_ = {**(execution.metadata_ or {}), **to_json(patch["metadata"])}
            if "progress_percentage" in patch:
                execution.advance_progress(patch["progress_percentage"])

            if status is not None:
                status = ExecutionStatus(status)
                if status in TERMINAL_RUN_STATUSES:
                    execution.finish(
                        status,
                        output_data=to_json(patch.get("output_data")),
                        error_message=patch.get("error_message"),
                        error_stack=patch.get("error_stack"),
                    )
                elif status == ExecutionStatus.RUNNING and execution.status == ExecutionStatus.PENDING:
                    execution.start()
                else:
                    execution.status = status
            else:
                for key in ("error_message", "error_stack"):
                    if key in patch:
                        setattr(execution, key, patch[key])
                if "output_data" in patch:
                    execution.output_data = to_json(patch["output_data"])

            await session.commit()
            return execution

    async def set_execution_status(
        self,
        execution_id: str,
        status: ExecutionStatus | str,
        *,
        output_data: Any = None,
        error_message: str | None = None,
        error_stack: str | None = None,
    ) -> WorkflowExecution:
        """Shorthand for a status patch."""
        patch: dict[str, Any] = {"status": status}
        if output_data is not None:
            patch["output_data"] = output_data
        if error_message is not None:
            patch["error_message"] = error_message
        if error_stack is not None:
            patch["error_stack"] = error_stack
        return await self.update_execution(execution_id, patch)

    async def cancel_execution(self, execution_id: str) -> bool:
        """Mark a pending or running record cancelled.

        Returns:
            False if the record does not exist or is already terminal.
        """
        async with self._lock, self._session_factory() as session:
            execution = await self._get(session, execution_id)
            if execution is None or execution.is_terminal:
                return False
            execution.cancel()
            await session.commit()

        await self.create_timeline_event(execution_id, "WORKFLOW_CANCELLED")
        logger.info("Execution cancelled", extra={"context": {"execution_id": execution_id}})
        return True

    # =========================================================================
    # Block executions
    # =========================================================================

    async def create_block_execution(
        self,
        execution_id: str,
        node_id: str,
        block_type: str,
        *,
        block_name: str | None = None,
        status: ExecutionStatus | str = ExecutionStatus.RUNNING,
        input_data: Any = None,
    ) -> BlockExecution:
        """Create the record of one node in one run."""
        async with self._lock, self._session_factory() as session:
            block = BlockExecution(
                execution_id=execution_id,
                node_id=node_id,
                block_type=block_type,
                block_name=block_name,
                status=ExecutionStatus(status),
                input_data=to_json(input_data),
                started_at=utcnow(),
                metadata_={},
            )
            session.add(block)
            await session.commit()
            return block

    async def update_block_execution(
        self, block_execution_id: Any, patch: dict[str, Any]
    ) -> BlockExecution:
        """Apply a partial update to a node record.

        Raises:
            ResourceNotFoundError: If the record does not exist.
        """
        unknown = set(patch) - _BLOCK_FIELDS
        if unknown:
            raise ValueError(f"Unsupported block execution fields: {sorted(unknown)}")

        async with self._lock, self._session_factory() as session:
            block = await session.get(BlockExecution, block_execution_id)
            if block is None:
                raise ResourceNotFoundError("block execution", str(block_execution_id))
            for key, value in patch.items():
                if key == "metadata":
                    block.metadata_ = {**(block.metadata_ or {}), **to_json(value)}
                elif key in ("input_data", "output_data"):
                    setattr(block, key, to_json(value))
                elif key == "status":
                    block.status = ExecutionStatus(value)
                else:
                    setattr(block, key, value)
            await session.commit()
            return block

    async def record_node_result(
        self,
        execution_id: str,
        result: NodeExecutionResult,
        block_name: str | None = None,
    ) -> BlockExecution:
        """Upsert the node record of a run from a node result."""
        error = result.error
        values: dict[str, Any] = {
            "status": ExecutionStatus(result.status),
            "input_data": to_json(result.input),
            "output_data": to_json(result.output),
            "error_message": error.message if error else None,
            "error_stack": None,
            "started_at": result.start_time,
            "completed_at": result.end_time,
            "execution_time_ms": result.execution_time_ms,
            "retry_count": result.retry_count,
            "metadata_": to_json(
                {**result.metadata, "error_kind": str(error.kind)} if error else result.metadata
            ),
        }

        async with self._lock, self._session_factory() as session:
            block = (
                await session.execute(
                    select(BlockExecution).where(
                        BlockExecution.execution_id == execution_id,
                        BlockExecution.node_id == result.node_id,
                    )
                )
            ).scalar_one_or_none()
            if block is None:
                block = BlockExecution(
                    execution_id=execution_id,
                    node_id=result.node_id,
                    block_type=result.block_type or "unknown",
                    block_name=block_name,
                )
                session.add(block)
            for key, value in values.items():
                setattr(block, key, value)
            await session.commit()
            return block

    async def get_block_executions(self, execution_id: str) -> list[BlockExecution]:
        """Node records of a run in creation order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(BlockExecution)
                .where(BlockExecution.execution_id == execution_id)
                .order_by(BlockExecution.created_at, BlockExecution.node_id)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Timeline
    # =========================================================================

    async def create_timeline_event(
        self,
        execution_id: str,
        event: str,
        *,
        event_type: TimelineEventType | str = TimelineEventType.WORKFLOW,
        node_id: str | None = None,
        block_type: str | None = None,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> TimelineEvent | None:
        """Append a timeline event.

        Write failures are logged as warnings and never raised; the timeline
        is an audit trail, not part of the run outcome.

        Returns:
            The stored event, or None if the write failed.
        """
        try:
            async with self._lock, self._session_factory() as session:
                last = await session.scalar(
                    select(func.max(TimelineEvent.sequence)).where(
                        TimelineEvent.execution_id == execution_id
                    )
                )
                entry = TimelineEvent(
                    execution_id=execution_id,
                    sequence=(last or 0) + 1,
                    event=event,
                    event_type=TimelineEventType(event_type),
                    node_id=node_id,
                    block_type=block_type,
                    details=to_json(details) if details else None,
                    error_message=error_message,
                )
                session.add(entry)
                await session.commit()
                return entry
        except SQLAlchemyError as e:
            logger.warning(
                "Failed to write timeline event",
                extra={
                    "context": {
                        "execution_id": execution_id,
                        "event": event,
                        "error": str(e),
                    }
                },
            )
            return None

    async def get_execution_timeline(self, execution_id: str) -> list[TimelineEvent]:
        """Timeline events of a run in insertion order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(TimelineEvent)
                .where(TimelineEvent.execution_id == execution_id)
                .order_by(TimelineEvent.sequence)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_execution_by_id(
        self,
        execution_id: str,
        *,
        with_details: bool = False,
    ) -> WorkflowExecution | None:
        """Get a run record, optionally with node records and timeline loaded."""
        async with self._session_factory() as session:
            query = select(WorkflowExecution).where(
                WorkflowExecution.execution_id == execution_id
            )
            if with_details:
                query = query.options(
                    selectinload(WorkflowExecution.block_executions),
                    selectinload(WorkflowExecution.timeline),
                )
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def list_executions(
        self,
        workflow_id: str | None = None,
        status: ExecutionStatus | str | None = None,
        mode: ExecutionMode | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WorkflowExecution], int]:
        """List run records, newest first.

        Returns:
            The page of records and the total number of matching records.
        """
        query = select(WorkflowExecution)
        if workflow_id is not None:
            query = query.where(WorkflowExecution.workflow_id == workflow_id)
        if status is not None:
            query = query.where(WorkflowExecution.status == str(ExecutionStatus(status)))
        if mode is not None:
            query = query.where(WorkflowExecution.mode == str(ExecutionMode(mode)))

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(query.subquery())
            )
            result = await session.execute(
                query.order_by(WorkflowExecution.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def get_execution_stats(self, workflow_id: str | None = None) -> dict[str, Any]:
        """Counts per status, success rate and average duration."""
        query = select(
            WorkflowExecution.status,
            func.count(WorkflowExecution.id),
            func.avg(WorkflowExecution.execution_time_ms),
        ).group_by(WorkflowExecution.status)
        if workflow_id is not None:
            query = query.where(WorkflowExecution.workflow_id == workflow_id)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()

        by_status = {str(status): 0 for status in ExecutionStatus if status != ExecutionStatus.SKIPPED}
        durations: list[tuple[int, float]] = []
        for status, count, avg_ms in rows:
            by_status[str(status)] = count
            if avg_ms is not None:
                durations.append((count, float(avg_ms)))

        total = sum(by_status.values())
        finished = by_status["completed"] + by_status["failed"] + by_status["cancelled"]
        weighted = sum(count for count, _ in durations)
        return {
            "workflow_id": workflow_id,
            "total": total,
            "by_status": by_status,
            "success_rate": round(by_status["completed"] / finished, 4) if finished else 0.0,
            "avg_execution_time_ms": (
                round(sum(count * avg for count, avg in durations) / weighted, 3)
                if weighted
                else None
            ),
        }

    async def delete_old_executions(self, days: int = 30) -> int:
        """Delete terminal runs (and their node records and timeline) older than ``days``.

        Returns:
            Number of deleted runs.
        """
        cutoff = utcnow() - timedelta(days=days)
        async with self._lock, self._session_factory() as session:
            ids = list(
                (
                    await session.execute(
                        select(WorkflowExecution.execution_id).where(
                            WorkflowExecution.status.in_(
                                [str(status) for status in TERMINAL_RUN_STATUSES]
                            ),
                            WorkflowExecution.created_at < cutoff,
                        )
                    )
                ).scalars()
            )
            if not ids:
                return 0
            await session.execute(delete(TimelineEvent).where(TimelineEvent.execution_id.in_(ids)))
            await session.execute(delete(BlockExecution).where(BlockExecution.execution_id.in_(ids)))
            await session.execute(
                delete(WorkflowExecution).where(WorkflowExecution.execution_id.in_(ids))
            )
            await session.commit()

        logger.info(
            "Old executions deleted",
            extra={"context": {"deleted": len(ids), "older_than_days": days}},
        )
        return len(ids)

    @staticmethod
    async def _get(session: AsyncSession, execution_id: str) -> WorkflowExecution | None:
        result = await session.execute(
            select(WorkflowExecution).where(WorkflowExecution.execution_id == execution_id)
        )
        return result.scalar_one_or_none()


__all__ = ["ExecutionTrackingService", "to_json"]
