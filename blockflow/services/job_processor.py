"""In-memory background job processor.

This module provides the JobProcessor, which tracks jobs (workflow runs,
searches, uploads) in memory, drives their work bodies and exposes progress,
cancellation and statistics.

Features:
- Monotonic integer progress with an ordered event timeline per job
- Atomic start: a job can only be started once
- Cooperative cancellation through a per-job ``asyncio.Event``
- Terminal callbacks fired exactly once (never for cancelled jobs)
- Bounded memory: oldest terminal jobs are evicted past ``max_jobs`` and an
  APScheduler interval job removes jobs older than ``max_age_hours``
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from blockflow.core.config import settings
from blockflow.core.logging import get_logger
from blockflow.models.enums import JobStatus, JobType
from blockflow.services.workflow.exceptions import (
    JobAlreadyProcessingError,
    JobNotFoundError,
)

logger = get_logger(__name__)

CLEANUP_JOB_ID = "job-cleanup"


def _now() -> datetime:
    return datetime.now(UTC)


def _jsonable(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value


# =============================================================================
# Job Types
# =============================================================================


@dataclass
class JobResult:
    """Terminal outcome of a job."""

    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON payloads."""
        return {"success": self.success, "data": _jsonable(self.data), "error": self.error}


@dataclass
class Job:
    """A unit of background work tracked by the processor.

    Attributes:
        id: Job identifier (the execution id for workflow jobs).
        user_id: Owner of the job.
        type: Job type.
        status: Current status; terminal once completed, failed or cancelled.
        progress: 0..100, never decreases.
        payload: Work body input.
        timeline: Ordered ``{timestamp, event, details}`` entries.
        result: Set on completion or failure.
        cancel_event: Set when cancellation is requested.
    """

    id: str
    user_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    payload: dict[str, Any] = field(default_factory=dict)
    timeline: list[dict[str, Any]] = field(default_factory=list)
    result: JobResult | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancel_event: asyncio.Event = field(
        default_factory=asyncio.Event, repr=False, compare=False
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def add_event(self, event: str, details: dict[str, Any] | None = None) -> None:
        """Append a timeline entry."""
        self.timeline.append(
            {"timestamp": _now().isoformat(), "event": event, "details": details or {}}
        )
        self.updated_at = _now()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON payloads."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": str(self.type),
            "status": str(self.status),
            "progress": self.progress,
            "payload": self.payload,
            "timeline": list(self.timeline),
            "result": self.result.to_dict() if self.result else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


type ProgressHandler = Callable[[str, int, list[dict[str, Any]]], Awaitable[None] | None]
type CompleteHandler = Callable[[str, JobResult], Awaitable[None] | None]
type ErrorHandler = Callable[[str, str], Awaitable[None] | None]


class JobHooks:
    """Handle given to a work body for reporting progress and observing cancellation."""

    def __init__(
        self,
        processor: JobProcessor,
        job: Job,
        on_progress: ProgressHandler | None = None,
    ) -> None:
        self._processor = processor
        self._on_progress = on_progress
        self.job = job

    @property
    def cancel_event(self) -> asyncio.Event:
        return self.job.cancel_event

    @property
    def is_cancelled(self) -> bool:
        return self.job.cancel_event.is_set()

    async def update_progress(
        self, progress: float, event: dict[str, Any] | None = None
    ) -> None:
        """Record progress (and an optional timeline event) and notify ``on_progress``."""
        job = self._processor.update_job_progress(self.job.id, progress, event)
        if job is None or self._on_progress is None:
            return
        await _notify(self._on_progress, job.id, job.progress, list(job.timeline))


async def _notify(callback: Callable[..., Any], *args: Any) -> None:
    """Invoke a sync or async callback; failures are logged, never raised."""
    try:
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        logger.exception(
            "Job callback failed",
            extra={"context": {"callback": getattr(callback, "__name__", repr(callback))}},
        )


type WorkBody = Callable[[Job, JobHooks], Awaitable[Any]]


# =============================================================================
# Job Processor
# =============================================================================


class JobProcessor:
    """Tracks jobs in memory and runs their work bodies.

    All state changes happen on the event loop without awaiting in between,
    so check-and-set operations such as ``start_job`` are atomic.

    Example:
        >>> processor = JobProcessor()
        >>> job = processor.create_job("user-1", JobType.WORKFLOW, {"input": {}})
        >>> await processor.start_job(job.id, run_workflow)
        >>> processor.get_job(job.id).status
        <JobStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        max_jobs: int | None = None,
        max_age_hours: float | None = None,
    ) -> None:
        self.max_jobs = max_jobs or settings.JOB_MAX_JOBS
        self.max_age_hours = max_age_hours or settings.JOB_MAX_AGE_HOURS
        self._jobs: dict[str, Job] = {}
        self._processing: set[str] = set()
        self._tasks: set[asyncio.Task[Job]] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_job(
        self,
        user_id: str,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> Job:
        """Create a pending job.

        Args:
            user_id: Owner of the job.
            job_type: Job type.
            payload: Work body input.
            job_id: Explicit id (e.g. an execution id); a UUID otherwise.

        Returns:
            The new job.
        """
        job_type = JobType(job_type)
        job = Job(
            id=job_id or str(uuid.uuid4()),
            user_id=user_id,
            type=job_type,
            payload=dict(payload or {}),
        )
        job.add_event("JOB_CREATED", {"type": str(job_type)})
        self._jobs[job.id] = job
        self._enforce_job_limit()

        logger.info(
            "Job created",
            extra={"context": {"job_id": job.id, "user_id": user_id, "type": str(job_type)}},
        )
        return job

    async def start_job(
        self,
        job_id: str,
        work_body: WorkBody,
        on_progress: ProgressHandler | None = None,
        on_complete: CompleteHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> Job:
        """Run a pending job to its terminal state.

        Work body exceptions fail the job and do not propagate.

        Args:
            job_id: Job to start.
            work_body: ``async (job, hooks) -> data``.
            on_progress: Called on every progress update.
            on_complete: Called once when the job completes.
            on_error: Called once when the job fails.

        Returns:
            The job in its terminal state.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobAlreadyProcessingError: If the job is not pending.
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PENDING or job_id in self._processing:
            raise JobAlreadyProcessingError(job_id, str(job.status))

        self._processing.add(job_id)
        job.status = JobStatus.PROCESSING
        job.started_at = _now()
        job.add_event("JOB_STARTED", {"type": str(job.type)})
        logger.info("Job started", extra={"context": {"job_id": job_id}})

        hooks = JobHooks(self, job, on_progress)
        try:
            data = await work_body(job, hooks)
        except asyncio.CancelledError:
            self.cancel_job(job_id)
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            if job.status == JobStatus.CANCELLED:
                logger.info(
                    "Cancelled job raised after cancellation",
                    extra={"context": {"job_id": job_id, "error": message}},
                )
                return job
            logger.warning(
                "Job failed",
                exc_info=True,
                extra={"context": {"job_id": job_id, "error": message}},
            )
            self.fail_job(job_id, message)
            if on_error is not None:
                await _notify(on_error, job_id, message)
            return job
        finally:
            self._processing.discard(job_id)

        if job.status == JobStatus.CANCELLED:
            return job

        self.complete_job(job_id, data)
        if on_complete is not None and job.result is not None:
            await _notify(on_complete, job_id, job.result)
        return job

    def start_job_in_background(
        self,
        job_id: str,
        work_body: WorkBody,
        on_progress: ProgressHandler | None = None,
        on_complete: CompleteHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> asyncio.Task[Job]:
        """Schedule ``start_job`` as a task and keep a reference to it.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobAlreadyProcessingError: If the job is not pending.
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PENDING or job_id in self._processing:
            raise JobAlreadyProcessingError(job_id, str(job.status))

        task = asyncio.create_task(
            self.start_job(job_id, work_body, on_progress, on_complete, on_error),
            name=f"job-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # State transitions
    # =========================================================================

    def update_job_progress(
        self,
        job_id: str,
        progress: float,
        event: dict[str, Any] | None = None,
    ) -> Job | None:
        """Raise the job's progress and append an optional timeline event.

        Progress is clamped to 0..100, rounded and never decreases. Terminal
        jobs are returned unchanged.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.is_terminal:
            return job

        job.progress = max(job.progress, round(min(100.0, max(0.0, progress))))
        job.updated_at = _now()
        if event:
            job.timeline.append(
                {
                    "timestamp": event.get("timestamp") or _now().isoformat(),
                    "event": event.get("event", "PROGRESS"),
                    "details": event.get("details") or {},
                }
            )
        return job

    def complete_job(self, job_id: str, data: Any = None) -> Job | None:
        """Mark a job completed; terminal jobs are returned unchanged."""
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return job

        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.result = JobResult(success=True, data=data)
        job.completed_at = _now()
        job.add_event("JOB_COMPLETED")
        self._processing.discard(job_id)
        logger.info("Job completed", extra={"context": {"job_id": job_id}})
        return job

    def fail_job(self, job_id: str, error: str) -> Job | None:
        """Mark a job failed; terminal jobs are returned unchanged."""
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return job

        job.status = JobStatus.FAILED
        job.result = JobResult(success=False, error=error)
        job.completed_at = _now()
        job.add_event("JOB_FAILED", {"error": error})
        self._processing.discard(job_id)
        return job

    def cancel_job(self, job_id: str) -> Job | None:
        """Request cooperative cancellation.

        The job becomes cancelled immediately and its cancel event is set;
        a running work body stops at its next checkpoint. Terminal jobs are
        returned unchanged.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.is_terminal:
            return job

        job.status = JobStatus.CANCELLED
        job.completed_at = _now()
        job.add_event("JOB_CANCELLED")
        job.cancel_event.set()
        logger.info("Job cancelled", extra={"context": {"job_id": job_id}})
        return job

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def get_user_jobs(self, user_id: str) -> list[Job]:
        """Jobs of a user, oldest first."""
        return [job for job in self._jobs.values() if job.user_id == user_id]

    def get_stats(self) -> dict[str, int]:
        """Job counts per status plus the total."""
        stats = {"total": len(self._jobs)}
        for status in JobStatus:
            stats[str(status)] = sum(1 for job in self._jobs.values() if job.status == status)
        return stats

    # =========================================================================
    # Cleanup
    # =========================================================================

    def cleanup_old_jobs(self, max_age_hours: float | None = None) -> int:
        """Remove jobs older than ``max_age_hours`` that are not processing.

        Returns:
            Number of removed jobs.
        """
        cutoff = _now() - timedelta(hours=max_age_hours or self.max_age_hours)
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.created_at < cutoff and job_id not in self._processing
        ]
        for job_id in stale:
            del self._jobs[job_id]
        return len(stale)

    def _enforce_job_limit(self) -> None:
        """Evict the oldest terminal jobs while over ``max_jobs``."""
        if len(self._jobs) <= self.max_jobs:
            return

        removed = 0
        for job in sorted(self._jobs.values(), key=lambda j: j.created_at):
            if len(self._jobs) <= self.max_jobs:
                break
            if job.is_terminal and job.id not in self._processing:
                del self._jobs[job.id]
                removed += 1

        logger.info(
            "Job limit enforced",
            extra={"context": {"removed": removed, "remaining": len(self._jobs)}},
        )

    async def run_cleanup(self) -> int:
        """One cleanup pass: drop old jobs, then enforce ``max_jobs``.

        Must run on the event loop that owns the jobs.

        Returns:
            Number of jobs removed for age.
        """
        cleaned = self.cleanup_old_jobs()
        self._enforce_job_limit()
        if cleaned:
            logger.info(
                "Old jobs cleaned up",
                extra={"context": {"removed": cleaned, "remaining": len(self._jobs)}},
            )
        return cleaned

    def __len__(self) -> int:
        return len(self._jobs)


# =============================================================================
# Global Processor
# =============================================================================

_processor: JobProcessor | None = None


def get_job_processor() -> JobProcessor:
    """Get the process-wide job processor."""
    global _processor
    if _processor is None:
        _processor = JobProcessor()
    return _processor


def create_cleanup_scheduler(
    processor: JobProcessor | None = None,
    interval_seconds: float | None = None,
) -> AsyncIOScheduler:
    """Build a scheduler that runs ``processor.run_cleanup`` periodically.

    The scheduler is returned unstarted; the application lifespan starts it
    and shuts it down.

    Args:
        processor: Processor to clean; the global one by default.
        interval_seconds: Interval between passes; defaults to
            ``JOB_CLEANUP_INTERVAL_SECONDS``.
    """
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1},
    )
    scheduler.add_job(
        (processor or get_job_processor()).run_cleanup,
        trigger=IntervalTrigger(
            seconds=interval_seconds or settings.JOB_CLEANUP_INTERVAL_SECONDS
        ),
        id=CLEANUP_JOB_ID,
        name="Job cleanup",
        replace_existing=True,
    )
    return scheduler


__all__ = [
    "CLEANUP_JOB_ID",
    "Job",
    "JobHooks",
    "JobProcessor",
    "JobResult",
    "WorkBody",
    "create_cleanup_scheduler",
    "get_job_processor",
]
