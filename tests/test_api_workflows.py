"""Integration tests for Workflow API endpoints.

Covers validation, stored workflow CRUD and the execute endpoints.
Only built-in blocks are used; the API runs against the process registry.
"""

import asyncio

import pytest
from fastapi import status
from httpx import AsyncClient

API = "/api/v1/workflows"


async def store_workflow(client: AsyncClient, definition: dict, **fields) -> dict:
    response = await client.post(f"{API}/", json={"definition": definition, **fields})
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


async def wait_for_job(client: AsyncClient, job_id: str, attempts: int = 200) -> dict:
    """Poll a job until it leaves the pending and processing states."""
    for _ in range(attempts):
        response = await client.get(f"/api/v1/jobs/{job_id}")
        job = response.json()
        if job["status"] not in ("pending", "processing"):
            return job
        await asyncio.sleep(0.01)
    raise AssertionError(f"Job {job_id} did not finish")


# =============================================================================
# Validation Endpoint Tests
# =============================================================================


class TestValidateEndpoint:
    """Tests for POST /workflows/validate."""

    @pytest.mark.asyncio
    async def test_validate_valid_definition(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """A valid definition reports no errors."""
        response = await async_client.post(
            f"{API}/validate", json={"definition": linear_definition_data}
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["valid"] is True
        assert data["errors"] == []
        assert [w["code"] for w in data["warnings"]] == ["NO_RETRY_POLICY"]

    @pytest.mark.asyncio
    async def test_validate_cycle(self, async_client: AsyncClient, node, edge):
        """Cycles are reported as errors with their nodes."""
        definition = {
            "workflow_id": "wf-cycle",
            "name": "Cycle",
            "nodes": [node("a"), node("b")],
            "edges": [edge("a", "b"), edge("b", "a")],
        }
        response = await async_client.post(f"{API}/validate", json={"definition": definition})

        data = response.json()
        assert data["valid"] is False
        cycle = next(e for e in data["errors"] if e["code"] == "CYCLE_DETECTED")
        assert cycle["type"] == "dag"
        assert sorted(cycle["node_ids"]) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_validate_with_options(self, async_client: AsyncClient, node):
        """Options are honoured: warnings can be escalated."""
        definition = {"workflow_id": "wf-x", "name": "X", "nodes": [node("a")]}
        response = await async_client.post(
            f"{API}/validate",
            json={"definition": definition, "options": {"escalate_warnings": True}},
        )

        data = response.json()
        assert data["valid"] is False
        assert "NO_INPUT_BLOCK" in [e["code"] for e in data["errors"]]

    @pytest.mark.asyncio
    async def test_validate_malformed_body(self, async_client: AsyncClient):
        """Definitions missing required fields are rejected by request validation."""
        response = await async_client.post(f"{API}/validate", json={"definition": {"nodes": []}})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# =============================================================================
# Stored Workflow Endpoint Tests
# =============================================================================


class TestWorkflowEndpoints:
    """Test suite for stored workflow endpoints."""

    @pytest.mark.asyncio
    async def test_list_workflows_empty(self, async_client: AsyncClient):
        """Listing without workflows returns an empty page."""
        response = await async_client.get(f"{API}/")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["items"] == []
        assert data["total"] == 0
        assert data["page"] == 1

    @pytest.mark.asyncio
    async def test_create_workflow(self, async_client: AsyncClient, linear_definition_data):
        """Storing a workflow returns it with the caller as creator."""
        response = await async_client.post(
            f"{API}/",
            json={"definition": linear_definition_data, "category": "demo"},
            headers={"X-User-Id": "alice"},
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["workflow_id"] == "wf-linear"
        assert data["name"] == "Test workflow"
        assert data["category"] == "demo"
        assert data["created_by"] == "alice"
        assert data["total_executions"] == 0
        assert data["definition"]["nodes"][0]["id"] == "input"

    @pytest.mark.asyncio
    async def test_create_duplicate_workflow(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """A taken workflow id yields 409."""
        await store_workflow(async_client, linear_definition_data)
        response = await async_client.post(
            f"{API}/", json={"definition": linear_definition_data}
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "WORKFLOW_ALREADY_EXISTS"

    @pytest.mark.asyncio
    async def test_get_workflow(self, async_client: AsyncClient, linear_definition_data):
        """Stored workflows are fetched by workflow id."""
        await store_workflow(async_client, linear_definition_data)

        response = await async_client.get(f"{API}/wf-linear")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["workflow_id"] == "wf-linear"

    @pytest.mark.asyncio
    async def test_get_workflow_not_found(self, async_client: AsyncClient):
        """Unknown ids yield 404 with the error envelope."""
        response = await async_client.get(f"{API}/missing")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        data = response.json()
        assert data["error_code"] == "RESOURCE_NOT_FOUND"
        assert data["details"] == {"resource_type": "workflow", "resource_id": "missing"}

    @pytest.mark.asyncio
    async def test_list_with_filters_and_pagination(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """Filters and pagination apply to the list."""
        for index in range(3):
            definition = {**linear_definition_data, "workflow_id": f"wf-{index}"}
            await store_workflow(
                async_client, definition, category="even" if index % 2 == 0 else "odd"
            )

        page = (await async_client.get(f"{API}/", params={"limit": 2})).json()
        assert page["total"] == 3
        assert len(page["items"]) == 2
        assert page["pages"] == 2

        even = (await async_client.get(f"{API}/", params={"category": "even"})).json()
        assert {w["workflow_id"] for w in even["items"]} == {"wf-0", "wf-2"}

    @pytest.mark.asyncio
    async def test_update_workflow(self, async_client: AsyncClient, linear_definition_data):
        """PATCH applies partial updates."""
        await store_workflow(async_client, linear_definition_data)

        response = await async_client.patch(
            f"{API}/wf-linear", json={"description": "Updated", "is_active": False}
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["description"] == "Updated"
        assert data["is_active"] is False
        assert data["name"] == "Test workflow"

    @pytest.mark.asyncio
    async def test_update_changing_workflow_id(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """A replacement definition must keep the workflow id."""
        await store_workflow(async_client, linear_definition_data)
        other = {**linear_definition_data, "workflow_id": "wf-other"}

        response = await async_client.patch(f"{API}/wf-linear", json={"definition": other})
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "INVALID_RESOURCE_STATE"

    @pytest.mark.asyncio
    async def test_delete_workflow(self, async_client: AsyncClient, linear_definition_data):
        """Deleted workflows are gone from the API."""
        await store_workflow(async_client, linear_definition_data)

        response = await async_client.delete(f"{API}/wf-linear")
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = await async_client.get(f"{API}/wf-linear")
        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Execute Endpoint Tests
# =============================================================================


class TestExecuteEndpoints:
    """Tests for the inline and stored execute endpoints."""

    @pytest.mark.asyncio
    async def test_execute_inline_and_wait(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """wait=true returns the run result; the job id is the execution id."""
        response = await async_client.post(
            f"{API}/execute", json={"definition": linear_definition_data, "input": {"q": 1}}
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "completed"
        assert data["output"] == {"message": "hello"}
        assert data["job_id"] == data["execution_id"]
        assert data["execution_id"].startswith("exec_")
        assert list(data["node_results"]) == ["input", "transform", "output"]
        assert data["node_results"]["output"]["status"] == "completed"
        assert data["error"] is None

        execution = await async_client.get(f"/api/v1/executions/{data['execution_id']}")
        assert execution.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_execute_invalid_definition(self, async_client: AsyncClient, node, edge):
        """Invalid definitions are rejected with 422 before any run starts."""
        definition = {
            "workflow_id": "wf-bad",
            "name": "Bad",
            "nodes": [node("a", "input.static", config={"data": 1}), node("b", "nope.missing")],
            "edges": [edge("a", "b")],
        }
        response = await async_client.post(f"{API}/execute", json={"definition": definition})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        data = response.json()
        assert data["error_code"] == "VALIDATION_ERROR"
        assert [e["code"] for e in data["details"]["errors"]] == ["UNKNOWN_BLOCK_TYPE"]

        listing = await async_client.get("/api/v1/executions/")
        assert listing.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_execute_failed_run(self, async_client: AsyncClient, node, edge):
        """A failing critical node returns a FAILED run, not an HTTP error."""
        definition = {
            "workflow_id": "wf-fail",
            "name": "Fail",
            "nodes": [
                node("in", "input.static", config={"data": {"a": 1}}),
                node("log", "output.logger", config={"level": "loud"}, critical=True),
            ],
            "edges": [edge("in", "log")],
        }
        response = await async_client.post(f"{API}/execute", json={"definition": definition})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "failed"
        assert data["output"] is None
        assert data["error"]["kind"] == "NODE_EXECUTION_FAILED"
        assert data["error"]["details"]["node_id"] == "log"
        assert data["metadata"]["failed_nodes"] == ["log"]

        job = (await async_client.get(f"/api/v1/jobs/{data['job_id']}")).json()
        assert job["status"] == "failed"

    @pytest.mark.asyncio
    async def test_execute_in_background(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """wait=false schedules a job and returns immediately."""
        response = await async_client.post(
            f"{API}/execute", json={"definition": linear_definition_data, "wait": False}
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "pending"
        assert data["workflow_id"] == "wf-linear"

        job = await wait_for_job(async_client, data["job_id"])
        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["summary"]["completed_nodes"] == 3

        execution = (await async_client.get(f"/api/v1/executions/{data['execution_id']}")).json()
        assert execution["status"] == "completed"
        assert execution["output_data"] == {"message": "hello"}

    @pytest.mark.asyncio
    async def test_execute_stored_workflow(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """Stored runs update the workflow counters."""
        await store_workflow(async_client, linear_definition_data)

        response = await async_client.post(f"{API}/wf-linear/execute", json={"input": None})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "completed"

        workflow = (await async_client.get(f"{API}/wf-linear")).json()
        assert workflow["total_executions"] == 1
        assert workflow["successful_executions"] == 1

    @pytest.mark.asyncio
    async def test_execute_inactive_workflow(
        self, async_client: AsyncClient, linear_definition_data
    ):
        """Inactive workflows cannot be executed."""
        await store_workflow(async_client, linear_definition_data, is_active=False)

        response = await async_client.post(f"{API}/wf-linear/execute", json={})
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "INVALID_RESOURCE_STATE"

    @pytest.mark.asyncio
    async def test_execute_missing_workflow(self, async_client: AsyncClient):
        """Unknown workflows yield 404."""
        response = await async_client.post(f"{API}/missing/execute", json={})
        assert response.status_code == status.HTTP_404_NOT_FOUND
