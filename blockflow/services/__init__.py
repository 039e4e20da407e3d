"""Business logic services.

This package contains the stored workflow service, execution tracking, the
in-memory job processor and the workflow runner that ties them together.
The workflow engine itself lives in ``blockflow.services.workflow``.
"""

from blockflow.services.execution_tracking import ExecutionTrackingService
from blockflow.services.job_processor import (
    Job,
    JobHooks,
    JobProcessor,
    JobResult,
    get_job_processor,
)
from blockflow.services.workflow_runner import (
    WorkflowJobPayload,
    WorkflowRunFailedError,
    WorkflowRunner,
    get_workflow_job_progress,
)
from blockflow.services.workflow_service import (
    WorkflowAlreadyExistsError,
    WorkflowService,
)

__all__ = [
    # Tracking
    "ExecutionTrackingService",
    # Jobs
    "Job",
    "JobHooks",
    "JobProcessor",
    "JobResult",
    "get_job_processor",
    # Workflows
    "WorkflowAlreadyExistsError",
    "WorkflowJobPayload",
    "WorkflowRunFailedError",
    "WorkflowRunner",
    "WorkflowService",
    "get_workflow_job_progress",
]
