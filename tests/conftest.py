"""pytest configuration and fixtures.

This module provides async database fixtures (SQLite in-memory), the engine
services wired to that database, an HTTP client for the FastAPI app and
factories for workflow definitions and custom test blocks.
"""

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from blockflow.api.deps import get_session_factory
from blockflow.db.session import get_db
from blockflow.main import app
from blockflow.models import Base
from blockflow.schemas.workflow import WorkflowDefinition
from blockflow.services.execution_tracking import ExecutionTrackingService
from blockflow.services.job_processor import JobProcessor, get_job_processor
from blockflow.services.workflow.blocks import BlockExecutor, BlockRegistry
from blockflow.services.workflow.orchestrator import WorkflowOrchestrator
from blockflow.services.workflow_runner import WorkflowRunner

# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "asyncio: marks tests as async (pytest-asyncio)",
    )


# =============================================================================
# DATABASE FIXTURES (SQLite In-Memory)
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async SQLite in-memory engine with all tables.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """A session on the test database; rolled back after the test."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# =============================================================================
# ENGINE FIXTURES
# =============================================================================


class FlakyBlock(BlockExecutor):
    """Fails ``config.failures`` times per instance, then echoes its input."""

    block_type = "test.flaky"
    calls: dict[str, int] = {}

    async def execute(self, config, input_data, context):
        key = config.get("key", "default")
        FlakyBlock.calls[key] = FlakyBlock.calls.get(key, 0) + 1
        if FlakyBlock.calls[key] <= config.get("failures", 0):
            raise RuntimeError(config.get("message", "temporary failure"))
        return self.success(input_data)


class SleepBlock(BlockExecutor):
    """Sleeps ``config.seconds`` and returns ``config.data`` (or its input)."""

    block_type = "test.sleep"

    async def execute(self, config, input_data, context):
        await asyncio.sleep(config.get("seconds", 0))
        return self.success(config.get("data", input_data))


class FailBlock(BlockExecutor):
    """Always raises ``config.message``."""

    block_type = "test.fail"

    async def execute(self, config, input_data, context):
        raise ValueError(config.get("message", "boom"))


class RecordingBlock(BlockExecutor):
    """Appends its node tag to a shared log and returns ``config.data``."""

    block_type = "test.record"
    log: list[str] = []

    async def execute(self, config, input_data, context):
        RecordingBlock.log.append(config.get("tag", "?"))
        return self.success(config.get("data", input_data))


class CancelBlock(BlockExecutor):
    """Requests cancellation of the run, then completes."""

    block_type = "test.cancel"

    async def execute(self, config, input_data, context):
        context.request_cancel()
        return self.success(config.get("data", {"cancelled_by": "test.cancel"}))


class RawValueBlock(BlockExecutor):
    """Returns ``config.value`` without wrapping it in a node result."""

    block_type = "test.raw"

    async def execute(self, config, input_data, context):
        return config.get("value")


TEST_BLOCKS: tuple[type[BlockExecutor], ...] = (
    FlakyBlock,
    SleepBlock,
    FailBlock,
    RecordingBlock,
    CancelBlock,
    RawValueBlock,
)


@pytest.fixture
def registry() -> BlockRegistry:
    """A fresh registry with the built-in and the test blocks."""
    FlakyBlock.calls = {}
    RecordingBlock.log = []
    reg = BlockRegistry()
    for block_class in TEST_BLOCKS:
        reg.register(block_class.block_type, block_class)
    return reg


@pytest.fixture
def recorded(registry: BlockRegistry) -> list[str]:
    """Tags appended by ``test.record`` nodes, in execution order."""
    return RecordingBlock.log


@pytest.fixture
def flaky_calls(registry: BlockRegistry) -> dict[str, int]:
    """Attempts per ``config.key`` made by ``test.flaky`` nodes."""
    return FlakyBlock.calls


@pytest.fixture
def orchestrator(registry: BlockRegistry) -> WorkflowOrchestrator:
    """Orchestrator with short default node timeouts."""
    return WorkflowOrchestrator(registry, max_parallel_nodes=4, default_node_timeout=5.0)


@pytest.fixture
def tracker(session_factory: async_sessionmaker[AsyncSession]) -> ExecutionTrackingService:
    """Tracking service on the test database."""
    return ExecutionTrackingService(session_factory)


@pytest.fixture
def job_processor() -> JobProcessor:
    """An isolated job processor."""
    return JobProcessor(max_jobs=50, max_age_hours=1)


@pytest.fixture
def runner(
    session_factory: async_sessionmaker[AsyncSession],
    orchestrator: WorkflowOrchestrator,
    tracker: ExecutionTrackingService,
) -> WorkflowRunner:
    """Workflow runner wired to the test database and registry."""
    return WorkflowRunner(session_factory, orchestrator=orchestrator, tracker=tracker)


# =============================================================================
# DEFINITION FACTORIES
# =============================================================================


def _node(node_id: str, block_type: str = "transform.passThrough", **fields: Any) -> dict:
    return {"id": node_id, "type": block_type, **fields}


def _edge(source: str, target: str, edge_id: str | None = None) -> dict:
    return {"id": edge_id or f"{source}->{target}", "source": source, "target": target}


@pytest.fixture
def node() -> Callable[..., dict]:
    """Factory for node dicts: ``node("a", "input.static", config={...})``."""
    return _node


@pytest.fixture
def edge() -> Callable[..., dict]:
    """Factory for edge dicts: ``edge("a", "b")``."""
    return _edge


@pytest.fixture
def make_definition() -> Callable[..., WorkflowDefinition]:
    """Factory for workflow definitions from node and edge dicts."""

    def factory(
        nodes: list[dict],
        edges: list[dict] | None = None,
        workflow_id: str = "wf-test",
        **fields: Any,
    ) -> WorkflowDefinition:
        return WorkflowDefinition.model_validate(
            {
                "workflow_id": workflow_id,
                "name": fields.pop("name", "Test workflow"),
                "nodes": nodes,
                "edges": edges or [],
                **fields,
            }
        )

    return factory


@pytest.fixture
def linear_definition(make_definition) -> WorkflowDefinition:
    """input.static -> transform.passThrough -> output.logger."""
    return make_definition(
        [
            _node("input", "input.static", config={"data": {"message": "hello"}}),
            _node("transform", "transform.passThrough"),
            _node("output", "output.logger", config={"message": "done"}),
        ],
        [_edge("input", "transform"), _edge("transform", "output")],
        workflow_id="wf-linear",
        globals={"timeout": 30},
    )


@pytest.fixture
def linear_definition_data(linear_definition: WorkflowDefinition) -> dict:
    """The linear definition as a JSON-ready dict."""
    return linear_definition.model_dump(mode="json")


# =============================================================================
# HTTP CLIENT FIXTURES
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    job_processor: JobProcessor,
) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for the FastAPI app on the test database.

    The lifespan is not run; tables come from ``async_engine``.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_job_processor] = lambda: job_processor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
