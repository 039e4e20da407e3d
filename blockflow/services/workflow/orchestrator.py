"""Level-based workflow orchestration.

This module provides the WorkflowOrchestrator, which runs the nodes of a
workflow definition in topological levels, feeding each node the
smart-merged outputs of its predecessors.

Execution rules:
- Nodes of one level run concurrently, bounded by a semaphore.
- A failed node skips its transitive downstream nodes; independent
  branches continue. A failed critical node stops the run after its level.
- Each node attempt runs under ``asyncio.timeout_at`` with the earlier of
  the node deadline and the run deadline, and is retried with exponential
  backoff according to its retry policy.
- A node result whose metadata names ``routed_to`` and ``targets`` (the
  branch block) skips the targets that were not selected, together with
  the nodes reachable only through them.
- Cancellation is checked before every level and before every node.
- Progress is reported after every node (capped at 99) and once with 100
  when the run terminates.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from jinja2 import TemplateError

from blockflow.core.config import settings
from blockflow.core.logging import get_logger
from blockflow.models.enums import ExecutionStatus
from blockflow.schemas.workflow import NodeDefinition, RetryPolicy
from blockflow.services.workflow.algorithms import GraphAlgorithms
from blockflow.services.workflow.adapters import apply_adapter
from blockflow.services.workflow.blocks.base import BlockExecutor
from blockflow.services.workflow.blocks.registry import get_registry
from blockflow.services.workflow.context import interpolate
from blockflow.services.workflow.exceptions import (
    CycleDetectedError,
    ErrorKind,
    ExecutionCancelledError,
    NodeTimeoutError,
    UnknownBlockTypeError,
)
from blockflow.services.workflow.graph import Graph
from blockflow.services.workflow.merge import merge_all
from blockflow.services.workflow.results import (
    NodeError,
    NodeExecutionResult,
    WorkflowRunResult,
)

if TYPE_CHECKING:
    from blockflow.schemas.workflow import WorkflowDefinition
    from blockflow.services.workflow.blocks.registry import BlockRegistry
    from blockflow.services.workflow.context import ExecutionContext

logger = get_logger(__name__)

type NodeCompleteCallback = Callable[[NodeExecutionResult], Awaitable[None] | None]

BLOCKED_REASON = "Blocked by upstream node failure"
CANCELLED_REASON = "Execution cancelled"
RUN_TIMEOUT_REASON = "Workflow timeout exceeded"
BRANCH_NOT_TAKEN_REASON = "Branch not taken"
DEFAULT_TARGET_PORT = "in"

_NODE_EVENTS = {
    ExecutionStatus.COMPLETED: "node_completed",
    ExecutionStatus.FAILED: "node_failed",
    ExecutionStatus.SKIPPED: "node_skipped",
}
_RUN_EVENTS = {
    ExecutionStatus.COMPLETED: "workflow_completed",
    ExecutionStatus.FAILED: "workflow_failed",
    ExecutionStatus.CANCELLED: "workflow_cancelled",
}


def progress_event(
    event: str,
    *,
    node_id: str | None = None,
    block_type: str | None = None,
    status: ExecutionStatus | str | None = None,
    details: dict[str, Any] | None = None,
    error: NodeError | None = None,
) -> dict[str, Any]:
    """Build a progress event payload."""
    return {
        "event": event,
        "node_id": node_id,
        "block_type": block_type,
        "status": str(status) if status is not None else None,
        "details": details or {},
        "error": error.to_dict() if error else None,
    }


@dataclass
class _RunState:
    """Mutable bookkeeping of one run, owned by ``execute``."""

    definition: WorkflowDefinition
    graph: Graph[str]
    context: ExecutionContext
    input_data: Any
    budget: float | None
    deadline: float | None
    on_node_complete: NodeCompleteCallback | None
    nodes: dict[str, NodeDefinition] = field(default_factory=dict)
    results: dict[str, NodeExecutionResult] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    blocked: set[str] = field(default_factory=set)
    errors: list[dict[str, Any]] = field(default_factory=list)
    failed_nodes: list[str] = field(default_factory=list)
    critical_failure: str | None = None
    timed_out: bool = False
    cancelled: bool = False
    processed: int = 0

    @property
    def total(self) -> int:
        return len(self.nodes)

    @property
    def percentage(self) -> float:
        if not self.total:
            return 0.0
        return min(99.0, round(self.processed / self.total * 100, 2))

    def remaining(self) -> float | None:
        """Seconds left in the run budget, or None without a budget."""
        if self.deadline is None:
            return None
        return self.deadline - asyncio.get_running_loop().time()

    def budget_exhausted(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def is_settled(self, node_id: str) -> bool:
        return node_id in self.results or node_id in self.blocked


class WorkflowOrchestrator:
    """Runs workflow definitions level by level.

    Attributes:
        registry: Block registry used to create executors.
        max_parallel_nodes: Default bound for concurrent nodes in a level.
        default_node_timeout: Timeout for nodes without their own.

    Example:
        >>> orchestrator = WorkflowOrchestrator()
        >>> context = ContextFactory.create(workflow_id=definition.workflow_id)
        >>> result = await orchestrator.execute(definition, context, {"q": 1})
        >>> result.status
        <ExecutionStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        registry: BlockRegistry | None = None,
        max_parallel_nodes: int | None = None,
        default_node_timeout: float | None = None,
    ) -> None:
        self.registry = registry if registry is not None else get_registry()
        self.max_parallel_nodes = max_parallel_nodes or settings.WORKFLOW_MAX_PARALLEL_NODES
        self.default_node_timeout = (
            default_node_timeout or settings.WORKFLOW_DEFAULT_NODE_TIMEOUT
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def execute(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        input_data: Any = None,
        *,
        timeout: float | None = None,
        on_node_complete: NodeCompleteCallback | None = None,
    ) -> WorkflowRunResult:
        """Execute a workflow definition.

        Structural problems, node failures, timeouts and cancellation are
        reported in the returned result. Only unexpected orchestration
        errors propagate.

        Args:
            definition: The workflow to run; never mutated.
            context: Run context (progress callback, cancellation, secrets).
            input_data: Input handed to every entry node.
            timeout: Run budget in seconds; defaults to ``globals.timeout``.
            on_node_complete: Called with every recorded node result.

        Returns:
            WorkflowRunResult with status COMPLETED, FAILED or CANCELLED.
        """
        started = time.monotonic()
        budget = timeout or (definition.globals.timeout if definition.globals else None)
        deadline = asyncio.get_running_loop().time() + budget if budget else None

        state = _RunState(
            definition=definition,
            graph=Graph.from_definition(definition),
            context=context,
            input_data=input_data,
            budget=budget,
            deadline=deadline,
            on_node_complete=on_node_complete,
            nodes={node.id: node for node in definition.nodes},
        )

        context.logger.info(
            "Workflow execution started",
            extra={"context": {"nodes": len(definition.nodes), "timeout": budget}},
        )

        try:
            preflight_error, levels = self._preflight(state)
            if preflight_error is not None:
                return await self._finish(
                    state,
                    ExecutionStatus.FAILED,
                    preflight_error,
                    started,
                    skip_unsettled=False,
                )

            await context.report_progress(
                0.0,
                progress_event(
                    "workflow_started",
                    status=ExecutionStatus.RUNNING,
                    details={"total_nodes": state.total, "levels": len(levels)},
                ),
            )

            await self._run_levels(state, levels)
            status, error = self._resolve_outcome(state)
            return await self._finish(state, status, error, started)

        except Exception as e:
            logger.exception(
                "Workflow orchestration failed",
                extra={
                    "context": {
                        "workflow_id": definition.workflow_id,
                        "execution_id": context.execution_id,
                    }
                },
            )
            await context.report_progress(
                100.0,
                progress_event(
                    "workflow_failed",
                    status=ExecutionStatus.FAILED,
                    error=NodeError(ErrorKind.INTERNAL_ERROR, str(e) or type(e).__name__),
                ),
            )
            raise

    async def execute_block(
        self,
        block_type: str,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
        timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> NodeExecutionResult:
        """Run a single block in isolation.

        Used for testing blocks without a workflow. Unknown block types
        yield a failed result instead of raising.
        """
        node = NodeDefinition(
            id=f"test_{block_type}",
            type=block_type,
            config=config,
            timeout=timeout,
            retry_policy=retry_policy,
        )
        if not self.registry.has(block_type):
            error = UnknownBlockTypeError(block_type, node.id)
            now = datetime.now(UTC)
            return NodeExecutionResult(
                node_id=node.id,
                status=ExecutionStatus.FAILED,
                input=input_data,
                error=NodeError(ErrorKind.UNKNOWN_BLOCK_TYPE, error.message, error.details),
                start_time=now,
                end_time=now,
                block_type=block_type,
            )
        return await self._execute_node(node, input_data, context, deadline=None, node_outputs={})

    # =========================================================================
    # Pre-flight
    # =========================================================================

    def _preflight(
        self, state: _RunState
    ) -> tuple[NodeError | None, list[list[str]]]:
        """Structural checks repeated at run time; no block runs on failure."""
        definition = state.definition

        if not definition.nodes:
            return NodeError(ErrorKind.VALIDATION_ERROR, "Workflow has no nodes"), []

        if len(state.nodes) != len(definition.nodes):
            return (
                NodeError(
                    ErrorKind.VALIDATION_ERROR,
                    "Workflow contains duplicate node ids",
                ),
                [],
            )

        dangling = [
            edge.id
            for edge in definition.edges
            if edge.source not in state.nodes or edge.target not in state.nodes
        ]
        if dangling:
            return (
                NodeError(
                    ErrorKind.VALIDATION_ERROR,
                    f"Edges reference unknown nodes: {', '.join(dangling)}",
                    {"edge_ids": dangling},
                ),
                [],
            )

        levels = GraphAlgorithms.topological_sort_levels(state.graph)
        if levels is None:
            cycle = GraphAlgorithms.detect_cycle(state.graph) or []
            error = CycleDetectedError(cycle)
            return NodeError(ErrorKind.CYCLE_DETECTED, error.message, error.details), []

        unknown = [node for node in definition.nodes if not self.registry.has(node.type)]
        if unknown:
            first = UnknownBlockTypeError(unknown[0].type, unknown[0].id)
            return (
                NodeError(
                    ErrorKind.UNKNOWN_BLOCK_TYPE,
                    first.message,
                    {
                        "node_ids": [node.id for node in unknown],
                        "block_types": sorted({node.type for node in unknown}),
                    },
                ),
                [],
            )

        return None, levels

    # =========================================================================
    # Level execution
    # =========================================================================

    async def _run_levels(self, state: _RunState, levels: list[list[str]]) -> None:
        context = state.context

        for index, level in enumerate(levels):
            if state.critical_failure is not None or state.timed_out or state.cancelled:
                break
            if context.is_cancelled:
                state.cancelled = True
                break
            if state.budget_exhausted():
                state.timed_out = True
                break

            runnable = [node_id for node_id in level if not state.is_settled(node_id)]
            if not runnable:
                continue

            context.logger.debug(
                "Executing level",
                extra={"context": {"level": index, "nodes": runnable}},
            )
            await self._run_level(state, runnable)

    async def _run_level(self, state: _RunState, node_ids: list[str]) -> None:
        limit = self.max_parallel_nodes
        if state.definition.globals and state.definition.globals.max_parallel_nodes:
            limit = state.definition.globals.max_parallel_nodes
        semaphore = asyncio.Semaphore(limit)

        async def run_bounded(node_id: str) -> None:
            async with semaphore:
                await self._run_node(state, node_id)

        try:
            async with asyncio.TaskGroup() as tg:
                for node_id in node_ids:
                    tg.create_task(run_bounded(node_id))
        except ExceptionGroup as eg:
            # Node failures are results; anything raised here is an internal error
            raise eg.exceptions[0] from eg

    async def _run_node(self, state: _RunState, node_id: str) -> None:
        node = state.nodes[node_id]
        context = state.context

        if context.is_cancelled:
            state.cancelled = True
            await self._record(
                state,
                NodeExecutionResult.skipped(
                    node_id,
                    CANCELLED_REASON,
                    block_type=node.type,
                    kind=ErrorKind.CANCELLATION_REQUESTED,
                ),
            )
            return
        if state.budget_exhausted():
            state.timed_out = True
            await self._record(
                state,
                NodeExecutionResult.skipped(
                    node_id,
                    RUN_TIMEOUT_REASON,
                    block_type=node.type,
                    kind=ErrorKind.TIMEOUT,
                ),
            )
            return

        try:
            input_data = self._gather_input(state, node_id)
        except TemplateError as e:
            result = replace(
                self._failed(
                    ErrorKind.VALIDATION_ERROR,
                    f"Edge adapter failed: {e}",
                    {"exception_type": type(e).__name__},
                ),
                node_id=node_id,
                block_type=node.type,
            )
            await self._record(state, result)
            await self._handle_failure(state, node, result)
            return

        await context.report_progress(
            state.percentage,
            progress_event(
                "node_started",
                node_id=node_id,
                block_type=node.type,
                status=ExecutionStatus.RUNNING,
            ),
        )

        result = await self._execute_node(
            node,
            input_data,
            context,
            deadline=state.deadline,
            node_outputs=state.outputs,
            default_policy=self._default_retry_policy(state.definition),
        )
        await self._record(state, result)

        if result.status == ExecutionStatus.FAILED:
            await self._handle_failure(state, node, result)
        elif result.status == ExecutionStatus.SKIPPED:
            await self._skip_downstream(state, node_id)
        elif "routed_to" in result.metadata:
            await self._skip_unrouted(state, node_id, result.metadata)

    def _gather_input(self, state: _RunState, node_id: str) -> Any:
        """Workflow input for entry nodes, else the merged predecessor outputs.

        Predecessors are merged in edge-list order, never completion order.
        An edge adapter reshapes its source output first, and an edge into a
        port other than ``in`` contributes ``{target_port: output}``.
        Predecessors without an output (skipped branches) are left out.

        Raises:
            jinja2.TemplateError: When an adapter template fails.
        """
        incoming = [edge for edge in state.definition.edges if edge.target == node_id]
        if not incoming:
            return copy.deepcopy(state.input_data)

        parts: list[Any] = []
        seen: set[tuple[str, str]] = set()
        for edge in incoming:
            if edge.source not in state.outputs or (edge.source, edge.target_port) in seen:
                continue
            seen.add((edge.source, edge.target_port))
            value = apply_adapter(edge.adapter, state.outputs[edge.source])
            if edge.target_port != DEFAULT_TARGET_PORT:
                value = {edge.target_port: value}
            parts.append(value)
        return merge_all(parts)

    async def _handle_failure(
        self,
        state: _RunState,
        node: NodeDefinition,
        result: NodeExecutionResult,
    ) -> None:
        error = result.error or NodeError(
            ErrorKind.NODE_EXECUTION_FAILED, "Block reported failure"
        )
        state.failed_nodes.append(node.id)
        state.errors.append(
            {
                "node_id": node.id,
                "block_type": node.type,
                "kind": str(error.kind),
                "message": error.message,
            }
        )
        if error.kind == ErrorKind.TIMEOUT and state.budget_exhausted():
            state.timed_out = True

        state.context.logger.warning(
            "Node failed",
            extra={
                "context": {
                    "node_id": node.id,
                    "kind": str(error.kind),
                    "error": error.message,
                    "critical": node.critical,
                }
            },
        )

        if node.critical:
            state.critical_failure = state.critical_failure or node.id
            return
        await self._skip_downstream(state, node.id)

    async def _skip_downstream(self, state: _RunState, node_id: str) -> None:
        """Mark every transitive successor of ``node_id`` as skipped."""
        blocked = [
            downstream
            for downstream in GraphAlgorithms.collect_downstream(state.graph, node_id)
            if not state.is_settled(downstream)
        ]
        # Claimed before any await so concurrent failures never skip a node twice
        state.blocked.update(blocked)
        for downstream in blocked:
            await self._record(
                state,
                NodeExecutionResult.skipped(
                    downstream,
                    BLOCKED_REASON,
                    block_type=state.nodes[downstream].type,
                    kind=ErrorKind.NODE_EXECUTION_FAILED,
                    details={"blocked_by": node_id},
                ),
            )

    async def _skip_unrouted(
        self, state: _RunState, node_id: str, metadata: dict[str, Any]
    ) -> None:
        """Skip branch targets that were not selected.

        A downstream node is skipped too once every one of its predecessors
        is skipped this way, so joins fed by the selected path still run.
        """
        routed_to = metadata.get("routed_to")
        unselected = {
            target
            for target in metadata.get("targets") or []
            if target != routed_to and state.graph.has_edge(node_id, target)
        }
        if not unselected:
            return

        downstream = GraphAlgorithms.collect_downstream(state.graph, node_id)
        dropped: set[str] = set()
        changed = True
        while changed:
            changed = False
            for candidate in downstream:
                if candidate in dropped or state.is_settled(candidate):
                    continue
                predecessors = state.graph.get_predecessors(candidate)
                if all(
                    p in dropped or (p == node_id and candidate in unselected)
                    for p in predecessors
                ):
                    dropped.add(candidate)
                    changed = True

        ordered = [node.id for node in state.definition.nodes if node.id in dropped]
        state.blocked.update(ordered)
        for skipped_id in ordered:
            await self._record(
                state,
                NodeExecutionResult.skipped(
                    skipped_id,
                    BRANCH_NOT_TAKEN_REASON,
                    block_type=state.nodes[skipped_id].type,
                    details={"branch_node": node_id},
                ),
            )

    async def _record(self, state: _RunState, result: NodeExecutionResult) -> None:
        """Store a node result, report progress and notify the observer."""
        state.results[result.node_id] = result
        if result.succeeded:
            state.outputs[result.node_id] = result.output
        state.processed += 1

        details: dict[str, Any] = {
            "execution_time_ms": result.execution_time_ms,
            "retry_count": result.retry_count,
        }
        if "skip_reason" in result.metadata:
            details["skip_reason"] = result.metadata["skip_reason"]

        await state.context.report_progress(
            state.percentage,
            progress_event(
                _NODE_EVENTS.get(result.status, "node_completed"),
                node_id=result.node_id,
                block_type=result.block_type,
                status=result.status,
                details=details,
                error=result.error,
            ),
        )

        if state.on_node_complete is None:
            return
        try:
            outcome = state.on_node_complete(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(
                "Node completion callback failed",
                extra={
                    "context": {
                        "execution_id": state.context.execution_id,
                        "node_id": result.node_id,
                    }
                },
            )

    # =========================================================================
    # Node execution
    # =========================================================================

    def _default_retry_policy(self, definition: WorkflowDefinition) -> RetryPolicy:
        if definition.globals and definition.globals.retry_policy:
            return definition.globals.retry_policy
        return RetryPolicy(
            initial_delay=settings.WORKFLOW_DEFAULT_RETRY_DELAY,
            max_delay=settings.WORKFLOW_MAX_RETRY_DELAY,
        )

    async def _execute_node(
        self,
        node: NodeDefinition,
        input_data: Any,
        context: ExecutionContext,
        *,
        deadline: float | None,
        node_outputs: dict[str, Any],
        default_policy: RetryPolicy | None = None,
    ) -> NodeExecutionResult:
        """Execute one node with schema checks, timeout and retries."""
        start_time = datetime.now(UTC)
        started = time.monotonic()

        def finalize(result: NodeExecutionResult, retry_count: int = 0) -> NodeExecutionResult:
            return replace(
                result,
                node_id=node.id,
                block_type=node.type,
                input=input_data,
                retry_count=retry_count,
                start_time=start_time,
                end_time=datetime.now(UTC),
                execution_time_ms=round((time.monotonic() - started) * 1000, 3),
            )

        if node.input_schema:
            problems = BlockExecutor.validate_data(input_data, node.input_schema)
            if problems:
                return finalize(
                    self._failed(
                        ErrorKind.VALIDATION_ERROR,
                        f"Input validation failed: {'; '.join(problems)}",
                        {"errors": problems},
                    )
                )

        executor = self.registry.create(node.type)
        if executor is None:
            error = UnknownBlockTypeError(node.type, node.id)
            return finalize(
                self._failed(ErrorKind.UNKNOWN_BLOCK_TYPE, error.message, error.details)
            )

        try:
            config = interpolate(node.config, context, input_data, node_outputs)
        except TemplateError as e:
            return finalize(
                self._failed(
                    ErrorKind.VALIDATION_ERROR,
                    f"Config template failed: {e}",
                    {"exception_type": type(e).__name__},
                )
            )
        policy = node.retry_policy or default_policy or RetryPolicy()
        node_timeout = node.timeout or self.default_node_timeout
        retries = 0

        while True:
            result = await self._attempt(
                executor, node, config, input_data, context, node_timeout, deadline
            )
            if result.succeeded or retries >= policy.max_retries:
                break
            error = result.error or NodeError(ErrorKind.NODE_EXECUTION_FAILED, "")
            if not policy.is_retryable(str(error.kind), error.message):
                break
            if context.is_cancelled:
                break

            delay = policy.delay_for(retries)
            loop_time = asyncio.get_running_loop().time()
            if deadline is not None and loop_time + delay >= deadline:
                break

            context.logger.warning(
                "Retrying node",
                extra={
                    "context": {
                        "node_id": node.id,
                        "attempt": retries + 1,
                        "max_retries": policy.max_retries,
                        "delay": delay,
                        "error": error.message,
                    }
                },
            )
            await asyncio.sleep(delay)
            retries += 1

        if result.succeeded and node.output_schema:
            problems = BlockExecutor.validate_data(result.output, node.output_schema)
            if problems:
                result = replace(
                    result,
                    status=ExecutionStatus.FAILED,
                    error=NodeError(
                        ErrorKind.VALIDATION_ERROR,
                        f"Output validation failed: {'; '.join(problems)}",
                        {"errors": problems},
                    ),
                )

        return finalize(result, retries)

    async def _attempt(
        self,
        executor: BlockExecutor,
        node: NodeDefinition,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
        node_timeout: float,
        deadline: float | None,
    ) -> NodeExecutionResult:
        loop_time = asyncio.get_running_loop().time()
        node_deadline = loop_time + node_timeout
        effective_deadline = min(node_deadline, deadline) if deadline is not None else node_deadline
        if effective_deadline <= loop_time:
            return self._failed(ErrorKind.TIMEOUT, RUN_TIMEOUT_REASON)

        try:
            async with asyncio.timeout_at(effective_deadline):
                outcome = await executor.execute(config, input_data, context)
        except TimeoutError:
            error = NodeTimeoutError(node.id, round(effective_deadline - loop_time, 3))
            return self._failed(ErrorKind.TIMEOUT, error.message, error.details)
        except Exception as e:
            context.logger.error(
                "Block raised an exception",
                exc_info=True,
                extra={"context": {"node_id": node.id, "block_type": node.type}},
            )
            return self._failed(
                ErrorKind.NODE_EXECUTION_FAILED,
                str(e) or type(e).__name__,
                {"exception_type": type(e).__name__},
            )

        if isinstance(outcome, NodeExecutionResult):
            if outcome.status == ExecutionStatus.FAILED and outcome.error is None:
                return replace(
                    outcome,
                    error=NodeError(ErrorKind.NODE_EXECUTION_FAILED, "Block reported failure"),
                )
            return outcome
        return NodeExecutionResult(
            node_id=node.id, status=ExecutionStatus.COMPLETED, output=outcome
        )

    @staticmethod
    def _failed(
        kind: ErrorKind, message: str, details: dict[str, Any] | None = None
    ) -> NodeExecutionResult:
        return NodeExecutionResult(
            node_id="",
            status=ExecutionStatus.FAILED,
            error=NodeError(kind, message, dict(details or {})),
        )

    # =========================================================================
    # Termination
    # =========================================================================

    @staticmethod
    def _resolve_outcome(state: _RunState) -> tuple[ExecutionStatus, NodeError | None]:
        if state.cancelled:
            error = ExecutionCancelledError(state.context.execution_id)
            return ExecutionStatus.CANCELLED, NodeError(
                ErrorKind.CANCELLATION_REQUESTED, error.message, error.details
            )

        if state.critical_failure is not None:
            node_result = state.results[state.critical_failure]
            node_error = node_result.error
            message = node_error.message if node_error else "Block reported failure"
            return ExecutionStatus.FAILED, NodeError(
                ErrorKind.NODE_EXECUTION_FAILED,
                f"Critical node '{state.critical_failure}' failed: {message}",
                {
                    "node_id": state.critical_failure,
                    "error": node_error.to_dict() if node_error else None,
                },
            )

        if state.timed_out:
            return ExecutionStatus.FAILED, NodeError(
                ErrorKind.TIMEOUT,
                f"Workflow exceeded its timeout of {state.budget:g}s",
                {"timeout_seconds": state.budget},
            )

        return ExecutionStatus.COMPLETED, None

    async def _finish(
        self,
        state: _RunState,
        status: ExecutionStatus,
        error: NodeError | None,
        started: float,
        *,
        skip_unsettled: bool = True,
    ) -> WorkflowRunResult:
        """Skip unsettled nodes, build the result and report 100 once.

        Pre-flight failures pass ``skip_unsettled=False``: no node ran, so
        no node results are recorded.
        """
        context = state.context

        if skip_unsettled:
            reason, kind = self._skip_reason(state, status)
            for node in state.definition.nodes:
                if node.id in state.results:
                    continue
                await self._record(
                    state,
                    NodeExecutionResult.skipped(
                        node.id, reason, block_type=node.type, kind=kind
                    ),
                )

        node_results = {
            node.id: state.results[node.id]
            for node in state.definition.nodes
            if node.id in state.results
        }
        terminal = GraphAlgorithms.find_terminal_nodes(state.graph)
        output = (
            merge_all(state.outputs[node_id] for node_id in terminal if node_id in state.outputs)
            if status == ExecutionStatus.COMPLETED
            else None
        )
        skipped = [
            node_id
            for node_id, result in node_results.items()
            if result.status == ExecutionStatus.SKIPPED
        ]
        if not node_results:
            skipped = [node.id for node in state.definition.nodes]

        execution_time_ms = round((time.monotonic() - started) * 1000, 3)
        result = WorkflowRunResult(
            execution_id=context.execution_id,
            workflow_id=state.definition.workflow_id,
            status=status,
            output=output,
            error=error,
            node_results=node_results,
            metadata={
                "errors": list(state.errors),
                "failed_nodes": list(state.failed_nodes),
                "skipped_nodes": skipped,
                "completed_nodes": sum(1 for r in node_results.values() if r.succeeded),
                "total_nodes": len(state.definition.nodes),
            },
            execution_time_ms=execution_time_ms,
        )

        await context.report_progress(
            100.0,
            progress_event(
                _RUN_EVENTS[status],
                status=status,
                details={
                    "execution_time_ms": execution_time_ms,
                    "failed_nodes": list(state.failed_nodes),
                },
                error=error,
            ),
        )

        log = context.logger.info if status == ExecutionStatus.COMPLETED else context.logger.warning
        log(
            "Workflow execution finished",
            extra={
                "context": {
                    "status": str(status),
                    "error_kind": str(error.kind) if error else None,
                    "execution_time_ms": execution_time_ms,
                    "failed_nodes": state.failed_nodes,
                }
            },
        )
        return result

    @staticmethod
    def _skip_reason(
        state: _RunState, status: ExecutionStatus
    ) -> tuple[str, ErrorKind | None]:
        if status == ExecutionStatus.CANCELLED:
            return CANCELLED_REASON, ErrorKind.CANCELLATION_REQUESTED
        if state.critical_failure is not None:
            return (
                f"Critical node '{state.critical_failure}' failed",
                ErrorKind.NODE_EXECUTION_FAILED,
            )
        if state.timed_out:
            return RUN_TIMEOUT_REASON, ErrorKind.TIMEOUT
        return "Node was not executed", None


__all__ = [
    "BLOCKED_REASON",
    "BRANCH_NOT_TAKEN_REASON",
    "NodeCompleteCallback",
    "WorkflowOrchestrator",
    "progress_event",
]
