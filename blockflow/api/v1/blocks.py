"""Block catalog API Router.

Lists registered block types and runs a single block outside of a workflow.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from blockflow.api.deps import Registry  # noqa: TC001 - Required at runtime for FastAPI
from blockflow.core.exceptions import ResourceNotFoundError
from blockflow.models.enums import BlockCategory
from blockflow.schemas.execution import (
    BlockMetadataResponse,
    BlockTestRequest,
    NodeResultResponse,
)
from blockflow.services.workflow.context import ContextFactory
from blockflow.services.workflow.orchestrator import WorkflowOrchestrator

router = APIRouter()


@router.get(
    "/",
    response_model=list[BlockMetadataResponse],
    summary="List block types",
)
async def list_blocks(
    registry: Registry,
    category: Annotated[BlockCategory | None, Query(description="Filter by category")] = None,
) -> list[BlockMetadataResponse]:
    """List registered block types, optionally filtered by category."""
    blocks = registry.get_all_metadata()
    if category is not None:
        blocks = [block for block in blocks if block.category == category]
    return [BlockMetadataResponse.model_validate(block.to_dict()) for block in blocks]


@router.get(
    "/{block_type}",
    response_model=BlockMetadataResponse,
    summary="Get block type",
)
async def get_block(block_type: str, registry: Registry) -> BlockMetadataResponse:
    """Get the catalog entry of a block type."""
    metadata = registry.get_metadata(block_type)
    if metadata is None:
        raise ResourceNotFoundError("block", block_type)
    return BlockMetadataResponse.model_validate(metadata.to_dict())


@router.post(
    "/{block_type}/test",
    response_model=NodeResultResponse,
    summary="Test block",
    description="Run one block with the given config and input in test mode.",
)
async def test_block(
    block_type: str,
    request: BlockTestRequest,
    registry: Registry,
) -> NodeResultResponse:
    """Execute a single block and return its node result."""
    if not registry.has(block_type):
        raise ResourceNotFoundError("block", block_type)

    context = ContextFactory.create_test(
        workflow_id=f"block-test:{block_type}",
        variables=request.variables,
    )
    result = await WorkflowOrchestrator(registry).execute_block(
        block_type,
        request.config,
        request.input,
        context,
        timeout=request.timeout,
        retry_policy=request.retry_policy,
    )
    return NodeResultResponse.model_validate(result.to_dict())
