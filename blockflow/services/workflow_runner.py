"""Workflow runs as background jobs.

This module connects the job processor, the execution tracker and the
workflow engine. ``WorkflowRunner.run`` loads and validates a definition,
creates the tracking record, executes the workflow with a progress callback
that feeds both the tracker and the job, and writes the terminal record.

Job progress is mapped from workflow progress as ``5 + pct * 0.9``: the
first and last five percent belong to loading and job completion.
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import Field, model_validator

from blockflow.core.exceptions import ResourceStateError
from blockflow.core.logging import get_logger
from blockflow.models.enums import ExecutionMode, ExecutionStatus, TimelineEventType
from blockflow.schemas.base import BaseSchema
from blockflow.schemas.workflow import WorkflowDefinition
from blockflow.services.execution_tracking import ExecutionTrackingService
from blockflow.services.workflow.context import ContextFactory
from blockflow.services.workflow.exceptions import WorkflowError
from blockflow.services.workflow.orchestrator import WorkflowOrchestrator
from blockflow.services.workflow.validator import WorkflowValidator
from blockflow.services.workflow_service import WorkflowService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from blockflow.services.job_processor import Job, JobHooks, WorkBody
    from blockflow.services.workflow.results import NodeExecutionResult, WorkflowRunResult

logger = get_logger(__name__)

LOADING_PROGRESS = 5
WORKFLOW_PROGRESS_SHARE = 0.9


def to_job_progress(percentage: float) -> float:
    """Map workflow progress (0..100) to job progress (5..95)."""
    return LOADING_PROGRESS + percentage * WORKFLOW_PROGRESS_SHARE


# =============================================================================
# Payload
# =============================================================================


class WorkflowJobPayload(BaseSchema):
    """Input of a workflow job.

    Either ``workflow_id`` (stored workflow) or ``workflow_definition``
    (inline) is required; an inline definition wins when both are given.
    """

    workflow_id: str | None = Field(default=None, description="Stored workflow id")
    workflow_definition: WorkflowDefinition | None = Field(
        default=None,
        description="Inline workflow definition",
    )
    input: Any = Field(default=None, description="Input handed to entry nodes")
    mode: ExecutionMode = Field(default=ExecutionMode.PRODUCTION)
    variables: dict[str, Any] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(
        default_factory=dict,
        description="Secret values; never stored with the job",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0, description="Run budget in seconds")

    @model_validator(mode="after")
    def _require_workflow(self) -> WorkflowJobPayload:
        if self.workflow_id is None and self.workflow_definition is None:
            raise ValueError("Either workflow_id or workflow_definition is required")
        return self

    def public_dict(self) -> dict[str, Any]:
        """Payload as stored on the job, without secrets."""
        return self.model_dump(mode="json", exclude={"secrets"})


class WorkflowRunFailedError(WorkflowError):
    """Raised by the job body when a run ends FAILED, so the job fails too."""

    def __init__(self, result: WorkflowRunResult) -> None:
        error = result.error
        super().__init__(
            error.message if error else "Workflow execution failed",
            error_code=str(error.kind) if error else None,
            details={"execution_id": result.execution_id, "workflow_id": result.workflow_id},
        )
        self.result = result


# =============================================================================
# Runner
# =============================================================================


class WorkflowRunner:
    """Runs workflows with tracking, optionally on behalf of a job.

    Attributes:
        orchestrator: Engine executing definitions.
        validator: Validator applied before every run.
        tracker: Persistence for run, node and timeline records.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: WorkflowOrchestrator | None = None,
        validator: WorkflowValidator | None = None,
        tracker: ExecutionTrackingService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.orchestrator = orchestrator or WorkflowOrchestrator()
        self.validator = validator or WorkflowValidator(self.orchestrator.registry)
        self.tracker = tracker or ExecutionTrackingService(session_factory)

    async def load_definition(self, payload: WorkflowJobPayload) -> WorkflowDefinition:
        """Inline definition, or the stored definition of ``workflow_id``.

        Raises:
            ResourceNotFoundError: If the stored workflow does not exist.
            ResourceStateError: If the stored workflow is inactive.
        """
        if payload.workflow_definition is not None:
            return payload.workflow_definition
        async with self._session_factory() as session:
            return await WorkflowService(session).get_definition(payload.workflow_id or "")

    async def run(
        self,
        payload: WorkflowJobPayload,
        hooks: JobHooks | None = None,
        *,
        execution_id: str | None = None,
    ) -> WorkflowRunResult:
        """Validate, track and execute a workflow.

        Args:
            payload: What to run and with which input.
            hooks: Job hooks; the job id becomes the execution id and the
                job's cancel event cancels the run.
            execution_id: Explicit execution id when running without a job.

        Returns:
            The run result (COMPLETED, FAILED or CANCELLED).

        Raises:
            WorkflowValidationError: If the definition is invalid; nothing
                is executed or tracked.
            Exception: Unexpected orchestration errors, after the tracking
                record was marked failed.
        """
        definition = await self.load_definition(payload)
        self.validator.validate_or_raise(definition)

        if execution_id is None:
            execution_id = hooks.job.id if hooks else ContextFactory.generate_execution_id()
        tracker = self.tracker

        await tracker.create_execution(
            execution_id,
            definition.workflow_id,
            payload.input,
            payload.mode,
            metadata={
                **payload.metadata,
                "workflow_name": definition.name,
                "workflow_version": definition.version,
            },
        )
        await tracker.create_timeline_event(
            execution_id,
            "WORKFLOW_STARTED",
            details={"total_nodes": len(definition.nodes), "mode": str(payload.mode)},
        )
        if hooks is not None:
            await hooks.update_progress(
                LOADING_PROGRESS,
                {
                    "event": "WORKFLOW_LOADING",
                    "details": {
                        "workflow_id": definition.workflow_id,
                        "execution_id": execution_id,
                        "total_nodes": len(definition.nodes),
                    },
                },
            )

        async def on_progress(percentage: float, event: dict[str, Any]) -> None:
            await tracker.update_progress(execution_id, percentage)
            name = str(event.get("event", "progress"))
            if name == "node_started":
                node = definition.get_node(event.get("node_id") or "")
                await tracker.create_block_execution(
                    execution_id,
                    event["node_id"],
                    event.get("block_type") or (node.type if node else "unknown"),
                    block_name=node.display_name if node else None,
                )
            elif name.startswith("node_"):
                error = event.get("error") or {}
                await tracker.create_timeline_event(
                    execution_id,
                    name.upper(),
                    event_type=TimelineEventType.NODE,
                    node_id=event.get("node_id"),
                    block_type=event.get("block_type"),
                    details=event.get("details"),
                    error_message=error.get("message"),
                )
            if hooks is not None:
                await hooks.update_progress(
                    to_job_progress(percentage),
                    {
                        "event": name.upper(),
                        "details": {
                            "node_id": event.get("node_id"),
                            "status": event.get("status"),
                            **(event.get("details") or {}),
                        },
                    },
                )

        async def on_node_complete(result: NodeExecutionResult) -> None:
            node = definition.get_node(result.node_id)
            await tracker.record_node_result(
                execution_id, result, block_name=node.display_name if node else None
            )

        context = ContextFactory.create(
            workflow_id=definition.workflow_id,
            execution_id=execution_id,
            mode=payload.mode,
            variables=payload.variables,
            secrets=payload.secrets,
            progress=on_progress,
            metadata=payload.metadata,
            cancel_event=hooks.cancel_event if hooks else None,
        )

        try:
            result = await self.orchestrator.execute(
                definition,
                context,
                payload.input,
                timeout=payload.timeout,
                on_node_complete=on_node_complete,
            )
        except Exception as e:
            logger.exception(
                "Workflow run aborted",
                extra={"context": {"execution_id": execution_id}},
            )
            finalized = await self._finalize(
                execution_id,
                {
                    "status": ExecutionStatus.FAILED,
                    "error_message": str(e) or type(e).__name__,
                    "error_stack": traceback.format_exc(),
                },
            )
            if finalized:
                await tracker.create_timeline_event(
                    execution_id, "WORKFLOW_FAILED", error_message=str(e) or type(e).__name__
                )
            await self._record_counters(definition.workflow_id, success=False)
            raise

        finalized = await self._finalize(
            execution_id,
            {
                "status": result.status,
                "output_data": result.output,
                "error_message": result.error.message if result.error else None,
                "metadata": {
                    "error_kind": str(result.error.kind) if result.error else None,
                    "errors": result.metadata.get("errors", []),
                    "failed_nodes": result.metadata.get("failed_nodes", []),
                    "skipped_nodes": result.metadata.get("skipped_nodes", []),
                },
            },
        )
        if finalized:
            await tracker.create_timeline_event(
                execution_id,
                f"WORKFLOW_{str(result.status).upper()}",
                details={"execution_time_ms": result.execution_time_ms},
                error_message=result.error.message if result.error else None,
            )
        if result.status != ExecutionStatus.CANCELLED:
            await self._record_counters(
                definition.workflow_id, success=result.status == ExecutionStatus.COMPLETED
            )
        return result

    def job_body(
        self,
        payload: WorkflowJobPayload,
        on_result: Callable[[WorkflowRunResult], None] | None = None,
    ) -> WorkBody:
        """Work body for ``JobProcessor.start_job``.

        A FAILED run raises ``WorkflowRunFailedError`` so the job fails;
        ``on_result`` still receives the run result first.
        """

        async def body(job: Job, hooks: JobHooks) -> WorkflowRunResult:
            result = await self.run(payload, hooks)
            if on_result is not None:
                on_result(result)
            if result.status == ExecutionStatus.FAILED:
                raise WorkflowRunFailedError(result)
            return result

        return body

    async def _finalize(self, execution_id: str, patch: dict[str, Any]) -> bool:
        """Write the terminal record.

        Returns:
            False if the record was already finalized (e.g. cancelled through
            the API), in which case it is kept as is.
        """
        patch = {key: value for key, value in patch.items() if value is not None}
        try:
            await self.tracker.update_execution(execution_id, patch)
        except ResourceStateError:
            logger.info(
                "Execution already finalized",
                extra={"context": {"execution_id": execution_id, "status": str(patch.get("status"))}},
            )
            return False
        return True

    async def _record_counters(self, workflow_id: str, *, success: bool) -> None:
        async with self._session_factory() as session:
            if await WorkflowService(session).record_execution(workflow_id, success=success):
                await session.commit()


# =============================================================================
# Progress summary
# =============================================================================


def get_workflow_job_progress(job: Job) -> dict[str, Any]:
    """Summarize a workflow job from its timeline.

    Returns:
        ``status``, ``progress``, ``current_step`` (last event name),
        ``completed_nodes``, ``total_nodes``, ``execution_time_ms`` and
        ``error``.
    """
    timeline = job.timeline
    last = timeline[-1] if timeline else {}
    total_nodes = None
    execution_time_ms = None
    completed = 0

    for entry in timeline:
        details = entry.get("details") or {}
        if "total_nodes" in details:
            total_nodes = details["total_nodes"]
        if entry.get("event") == "NODE_COMPLETED":
            completed += 1
        if entry.get("event", "").startswith("WORKFLOW_") and "execution_time_ms" in details:
            execution_time_ms = details["execution_time_ms"]

    return {
        "status": str(job.status),
        "progress": job.progress,
        "current_step": last.get("event"),
        "completed_nodes": completed,
        "total_nodes": total_nodes,
        "execution_time_ms": execution_time_ms,
        "error": job.result.error if job.result else None,
    }


__all__ = [
    "WorkflowJobPayload",
    "WorkflowRunFailedError",
    "WorkflowRunner",
    "get_workflow_job_progress",
    "to_job_progress",
]
