"""Job API Router.

Read access to the in-memory job processor. Workflow jobs carry a progress
summary built from their timeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from blockflow.api.deps import CurrentUserId, Jobs  # noqa: TC001 - Required at runtime for FastAPI
from blockflow.models.enums import JobType
from blockflow.schemas.execution import JobResponse, JobStats
from blockflow.services.workflow.exceptions import JobNotFoundError
from blockflow.services.workflow_runner import get_workflow_job_progress

if TYPE_CHECKING:
    from blockflow.services.job_processor import Job

router = APIRouter()


def _job_response(job: Job) -> JobResponse:
    summary = get_workflow_job_progress(job) if job.type == JobType.WORKFLOW else None
    return JobResponse.model_validate({**job.to_dict(), "summary": summary})


@router.get("/", response_model=list[JobResponse], summary="List my jobs")
async def list_jobs(jobs: Jobs, user_id: CurrentUserId) -> list[JobResponse]:
    """Jobs of the calling user, oldest first."""
    return [_job_response(job) for job in jobs.get_user_jobs(user_id)]


@router.get("/stats", response_model=JobStats, summary="Job statistics")
async def get_job_stats(jobs: Jobs) -> JobStats:
    """Counts of jobs per status."""
    return JobStats.model_validate(jobs.get_stats())


@router.get("/{job_id}", response_model=JobResponse, summary="Get job")
async def get_job(job_id: str, jobs: Jobs) -> JobResponse:
    """Get a job with its timeline and result."""
    job = jobs.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return _job_response(job)


@router.post("/{job_id}/cancel", response_model=JobResponse, summary="Cancel job")
async def cancel_job(job_id: str, jobs: Jobs) -> JobResponse:
    """Request cooperative cancellation of a job."""
    job = jobs.cancel_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return _job_response(job)
