"""API v1 routing configuration.

This module defines all v1 API routes.
"""

from typing import Any

from fastapi import APIRouter

from blockflow.api.v1 import blocks, executions, jobs, workflows
from blockflow.schemas.base import ErrorResponse

router = APIRouter()

# Application errors share one envelope
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse, "description": "Resource not found"},
    409: {"model": ErrorResponse, "description": "Conflicting resource state"},
}

# Domain routers
router.include_router(
    workflows.router, prefix="/workflows", tags=["Workflows"], responses=ERROR_RESPONSES
)
router.include_router(
    blocks.router, prefix="/blocks", tags=["Blocks"], responses=ERROR_RESPONSES
)
router.include_router(
    executions.router, prefix="/executions", tags=["Executions"], responses=ERROR_RESPONSES
)
router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"], responses=ERROR_RESPONSES)


@router.get("/status", tags=["Status"])
async def api_status() -> dict[str, str]:
    """API v1 status check."""
    return {"status": "ok", "version": "v1"}
