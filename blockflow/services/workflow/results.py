"""Result types produced by block executions and workflow runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from blockflow.models.enums import ExecutionStatus
from blockflow.services.workflow.exceptions import ErrorKind


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class NodeError:
    """Structured failure of a node or a run.

    Attributes:
        kind: Machine-checkable error kind.
        message: Human-readable message.
        details: Additional error context.
    """

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON payloads."""
        return {"kind": str(self.kind), "message": self.message, "details": self.details}


@dataclass
class NodeExecutionResult:
    """Outcome of one node in one run.

    Attributes:
        node_id: Node id within the definition.
        status: Final node status.
        input: Input the node received.
        output: Output the node produced.
        error: Failure, when status is FAILED or SKIPPED.
        execution_time_ms: Wall time spent in the block, retries included.
        retry_count: Number of retries performed.
        start_time: When the node started.
        end_time: When the node finished.
        block_type: Registered block type of the node.
        metadata: Block or orchestrator supplied extras (e.g. skip reason).
        logs: Log lines a block chose to attach to its result.
    """

    node_id: str
    status: ExecutionStatus
    input: Any = None
    output: Any = None
    error: NodeError | None = None
    execution_time_ms: float = 0.0
    retry_count: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    block_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    logs: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """True when the node completed."""
        return self.status == ExecutionStatus.COMPLETED

    @classmethod
    def skipped(
        cls,
        node_id: str,
        reason: str,
        *,
        block_type: str | None = None,
        kind: ErrorKind | None = None,
        details: dict[str, Any] | None = None,
    ) -> NodeExecutionResult:
        """Build the result of a node that never ran."""
        now = datetime.now(UTC)
        return cls(
            node_id=node_id,
            status=ExecutionStatus.SKIPPED,
            error=NodeError(kind, reason, dict(details or {})) if kind else None,
            start_time=now,
            end_time=now,
            block_type=block_type,
            metadata={"skip_reason": reason, **(details or {})},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON payloads."""
        return {
            "node_id": self.node_id,
            "status": str(self.status),
            "input": self.input,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "execution_time_ms": self.execution_time_ms,
            "retry_count": self.retry_count,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "block_type": self.block_type,
            "metadata": self.metadata,
            "logs": list(self.logs),
        }


@dataclass
class WorkflowRunResult:
    """Outcome of a workflow run.

    Attributes:
        execution_id: Run identifier.
        workflow_id: Executed workflow.
        status: COMPLETED, FAILED or CANCELLED.
        output: Smart-merge of the completed terminal nodes' outputs.
        error: Run-level failure (same shape as a node error).
        node_results: Per-node results in definition order.
        metadata: ``errors``, ``failed_nodes``, ``skipped_nodes`` and counters.
        execution_time_ms: Wall time of the run.
    """

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    output: Any = None
    error: NodeError | None = None
    node_results: dict[str, NodeExecutionResult] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    execution_time_ms: float = 0.0

    @property
    def error_kind(self) -> ErrorKind | None:
        """Kind of the run-level error, if any."""
        return self.error.kind if self.error else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON payloads."""
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "status": str(self.status),
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "node_results": {
                node_id: result.to_dict()
                for node_id, result in self.node_results.items()
            },
            "metadata": self.metadata,
            "execution_time_ms": self.execution_time_ms,
        }


__all__ = ["NodeError", "NodeExecutionResult", "WorkflowRunResult"]
