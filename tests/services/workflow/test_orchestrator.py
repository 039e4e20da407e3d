"""Tests for WorkflowOrchestrator.

Covers ordering, input merging, progress reporting, pre-flight failures,
the failure policy, retries, timeouts and cancellation.
"""

from typing import Any

import pytest

from blockflow.models.enums import ExecutionStatus
from blockflow.services.workflow.blocks import BlockRegistry
from blockflow.services.workflow.context import ContextFactory, ExecutionContext
from blockflow.services.workflow.exceptions import ErrorKind
from blockflow.services.workflow.orchestrator import (
    BLOCKED_REASON,
    BRANCH_NOT_TAKEN_REASON,
    WorkflowOrchestrator,
    progress_event,
)


class ProgressRecorder:
    """Collects (percentage, event) pairs reported by a run."""

    def __init__(self) -> None:
        self.events: list[tuple[float, dict[str, Any]]] = []

    def __call__(self, percentage: float, event: dict[str, Any]) -> None:
        self.events.append((percentage, event))

    @property
    def names(self) -> list[str]:
        return [event["event"] for _, event in self.events]

    @property
    def percentages(self) -> list[float]:
        return [pct for pct, _ in self.events]

    def started_nodes(self) -> list[str]:
        return [e["node_id"] for _, e in self.events if e["event"] == "node_started"]


@pytest.fixture
def recorder() -> ProgressRecorder:
    return ProgressRecorder()


def make_context(
    workflow_id: str, recorder: ProgressRecorder | None = None, **kwargs
) -> ExecutionContext:
    return ContextFactory.create(workflow_id, progress=recorder, **kwargs)


def record(node, node_id: str, data: Any = None, **fields) -> dict:
    """A test.record node tagged with its own id."""
    config: dict[str, Any] = {"tag": node_id}
    if data is not None:
        config["data"] = data
    return node(node_id, "test.record", config=config, **fields)


# =============================================================================
# Ordering and data flow
# =============================================================================


class TestLinearExecution:
    """Tests for a simple input -> transform -> output run."""

    @pytest.mark.asyncio
    async def test_linear_workflow_completes_in_order(
        self, orchestrator, linear_definition, recorder
    ) -> None:
        """Nodes run in dependency order and the output flows through."""
        context = make_context(linear_definition.workflow_id, recorder)
        result = await orchestrator.execute(linear_definition, context)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.error is None
        assert result.output == {"message": "hello"}
        assert list(result.node_results) == ["input", "transform", "output"]
        assert recorder.started_nodes() == ["input", "transform", "output"]
        assert result.metadata["completed_nodes"] == 3
        assert result.metadata["failed_nodes"] == []

    @pytest.mark.asyncio
    async def test_progress_hits_100_exactly_once(
        self, orchestrator, linear_definition, recorder
    ) -> None:
        """Node progress is capped at 99; 100 is the final event."""
        await orchestrator.execute(
            linear_definition, make_context(linear_definition.workflow_id, recorder)
        )

        percentages = recorder.percentages
        assert percentages.count(100.0) == 1
        assert percentages[-1] == 100.0
        assert all(pct <= 99.0 for pct in percentages[:-1])
        assert percentages == sorted(percentages)
        assert recorder.names[0] == "workflow_started"
        assert recorder.names[-1] == "workflow_completed"
        assert recorder.names.count("node_completed") == 3

    @pytest.mark.asyncio
    async def test_event_shape(self, orchestrator, linear_definition, recorder) -> None:
        """Every event carries the same keys."""
        await orchestrator.execute(
            linear_definition, make_context(linear_definition.workflow_id, recorder)
        )
        keys = {"event", "node_id", "block_type", "status", "details", "error"}
        assert all(set(event) == keys for _, event in recorder.events)

        completed = next(e for _, e in recorder.events if e["event"] == "node_completed")
        assert completed["status"] == "completed"
        assert completed["block_type"] == "input.static"
        assert "execution_time_ms" in completed["details"]

    @pytest.mark.asyncio
    async def test_topological_order_respects_every_edge(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """Each node starts only after all its predecessors."""
        edges = [
            edge("a", "c"),
            edge("b", "c"),
            edge("c", "e"),
            edge("d", "e"),
            edge("a", "d"),
        ]
        definition = make_definition(
            [record(node, node_id) for node_id in ("e", "d", "c", "b", "a")], edges
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.status == ExecutionStatus.COMPLETED
        position = {tag: index for index, tag in enumerate(recorded)}
        for item in edges:
            assert position[item["source"]] < position[item["target"]]

    @pytest.mark.asyncio
    async def test_entry_nodes_receive_workflow_input(
        self, orchestrator, make_definition, node
    ) -> None:
        """Nodes without incoming edges get the run input."""
        definition = make_definition([node("only")])
        result = await orchestrator.execute(definition, make_context("wf"), {"x": 1})
        assert result.output == {"x": 1}
        assert result.node_results["only"].input == {"x": 1}

    @pytest.mark.asyncio
    async def test_inputs_merge_in_edge_order(
        self, orchestrator, make_definition, node, edge
    ) -> None:
        """Predecessor outputs merge in edge-list order, not completion order."""
        definition = make_definition(
            [
                node("start"),
                node("slow", "test.sleep", config={"seconds": 0.05, "data": {"v": "slow", "a": 1}}),
                node("fast", "test.sleep", config={"seconds": 0, "data": {"v": "fast", "b": 2}}),
                node("join"),
            ],
            [
                edge("start", "slow"),
                edge("start", "fast"),
                edge("slow", "join"),
                edge("fast", "join"),
            ],
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.node_results["join"].input == {"v": "fast", "a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_output_merges_terminal_nodes(
        self, orchestrator, make_definition, node, edge
    ) -> None:
        """The run output merges every completed terminal node."""
        definition = make_definition(
            [
                node("src", "input.static", config={"data": {"rows": [{"id": 1}]}}),
                node("left", "test.raw", config={"value": {"rows": [{"id": 1, "l": True}]}}),
                node("right", "test.raw", config={"value": {"rows": [{"id": 2}]}}),
            ],
            [edge("src", "left"), edge("src", "right")],
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.output == {"rows": [{"id": 1, "l": True}, {"id": 2}]}

    @pytest.mark.asyncio
    async def test_config_placeholders_are_resolved(
        self, orchestrator, make_definition, node, edge
    ) -> None:
        """Node config sees variables and upstream outputs."""
        definition = make_definition(
            [
                node("src", "input.static", config={"data": {"name": "Ana"}}),
                node(
                    "greet",
                    "test.raw",
                    config={"value": "{{variables.greeting}} {{nodes.src.name}}"},
                ),
            ],
            [edge("src", "greet")],
        )
        context = make_context("wf", variables={"greeting": "Hello"})
        result = await orchestrator.execute(definition, context)
        assert result.output == "Hello Ana"
        assert definition.nodes[1].config["value"].startswith("{{")

    @pytest.mark.asyncio
    async def test_config_templates_support_filters(
        self, orchestrator, make_definition, node
    ) -> None:
        """Config templates may use Jinja filters."""
        definition = make_definition(
            [node("shout", "test.raw", config={"value": "{{ input.name | upper }}!"})]
        )
        result = await orchestrator.execute(definition, make_context("wf"), {"name": "ana"})
        assert result.output == "ANA!"

    @pytest.mark.asyncio
    async def test_broken_config_template_fails_node(
        self, orchestrator, make_definition, node, recorded
    ) -> None:
        """A template that does not compile fails the node before it runs."""
        definition = make_definition(
            [node("bad", "test.record", config={"tag": "bad", "data": "{{ input.( }}"})]
        )
        result = await orchestrator.execute(definition, make_context("wf"), {})

        node_result = result.node_results["bad"]
        assert node_result.status == ExecutionStatus.FAILED
        assert node_result.error.kind == ErrorKind.VALIDATION_ERROR
        assert node_result.error.message.startswith("Config template failed")
        assert recorded == []


class TestEdgeRouting:
    """Tests for target ports and edge adapters."""

    @pytest.mark.asyncio
    async def test_target_port_nests_output(
        self, orchestrator, make_definition, node, edge
    ) -> None:
        """An edge into a named port places the output under the port name."""
        port_edge = {**edge("lookup", "join"), "target_port": "customer"}
        definition = make_definition(
            [
                node("order", "input.static", config={"data": {"order_id": 7}}),
                node("lookup", "input.static", config={"data": {"name": "Ana"}}),
                node("join"),
            ],
            [edge("order", "join"), port_edge],
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.node_results["join"].input == {
            "order_id": 7,
            "customer": {"name": "Ana"},
        }

    @pytest.mark.asyncio
    async def test_map_adapter(self, orchestrator, make_definition, node, edge) -> None:
        """A map adapter picks paths and renders templates from the source."""
        mapped = {
            **edge("src", "dst"),
            "adapter": {
                "type": "map",
                "mapping": {
                    "email": "contact.email",
                    "first_tag": "tags.0",
                    "label": "{{ contact.name }} <{{ output.contact.email }}>",
                },
            },
        }
        data = {"contact": {"name": "Ana", "email": "ana@example.test"}, "tags": ["vip"]}
        definition = make_definition(
            [node("src", "input.static", config={"data": data}), node("dst")],
            [mapped],
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.output == {
            "email": "ana@example.test",
            "first_tag": "vip",
            "label": "Ana <ana@example.test>",
        }

    @pytest.mark.asyncio
    async def test_template_adapter(self, orchestrator, make_definition, node, edge) -> None:
        """A template adapter keeps raw values for whole placeholders."""
        templated = {
            **edge("src", "dst"),
            "adapter": {
                "type": "template",
                "template": {
                    "rows": "{{ output.rows }}",
                    "count": "{{ rows | length }}",
                    "fetched_at": "{{ now }}",
                },
            },
        }
        definition = make_definition(
            [
                node("src", "input.static", config={"data": {"rows": [1, 2, 3]}}),
                node("dst"),
            ],
            [templated],
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.output["rows"] == [1, 2, 3]
        assert result.output["count"] == 3
        assert "T" in result.output["fetched_at"]

    @pytest.mark.asyncio
    async def test_failing_adapter_fails_target(
        self, orchestrator, make_definition, node, edge
    ) -> None:
        """A broken adapter template fails the target and skips its downstream."""
        broken = {
            **edge("src", "dst"),
            "adapter": {"type": "template", "template": {"x": "{{ output.( }}"}},
        }
        definition = make_definition(
            [node("src", "input.static", config={"data": {}}), node("dst"), node("after")],
            [broken, edge("dst", "after")],
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.node_results["dst"].status == ExecutionStatus.FAILED
        assert result.node_results["dst"].error.kind == ErrorKind.VALIDATION_ERROR
        assert result.node_results["after"].status == ExecutionStatus.SKIPPED
        assert result.metadata["failed_nodes"] == ["dst"]


class TestBranching:
    """Tests for routing through the branch block."""

    @staticmethod
    def branch_definition(make_definition, node, edge, score: int):
        return make_definition(
            [
                node("src", "input.static", config={"data": {"score": score}}),
                node(
                    "check",
                    "branch",
                    config={
                        "condition": {"field": "score", "operator": "greater_than", "value": 50},
                        "branches": {"true": "approve", "false": "review"},
                    },
                ),
                record(node, "approve"),
                record(node, "review"),
                record(node, "review_note"),
                node("audit"),
            ],
            [
                edge("src", "check"),
                edge("check", "approve"),
                edge("check", "review"),
                edge("review", "review_note"),
                edge("approve", "audit"),
                edge("review_note", "audit"),
            ],
        )

    @pytest.mark.asyncio
    async def test_unselected_branch_is_skipped(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """Only the selected side runs; the join still runs."""
        definition = self.branch_definition(make_definition, node, edge, score=80)
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.status == ExecutionStatus.COMPLETED
        assert recorded == ["approve"]
        for node_id in ("review", "review_note"):
            skipped = result.node_results[node_id]
            assert skipped.status == ExecutionStatus.SKIPPED
            assert skipped.metadata["skip_reason"] == BRANCH_NOT_TAKEN_REASON
            assert skipped.metadata["branch_node"] == "check"
        assert result.node_results["audit"].status == ExecutionStatus.COMPLETED
        assert result.output == {"score": 80, "_branch": "true", "_routed_to": "approve"}
        assert result.metadata["failed_nodes"] == []

    @pytest.mark.asyncio
    async def test_false_branch(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """A failing condition runs the false side and its downstream."""
        definition = self.branch_definition(make_definition, node, edge, score=10)
        result = await orchestrator.execute(definition, make_context("wf"))

        assert recorded == ["review", "review_note"]
        assert result.node_results["approve"].status == ExecutionStatus.SKIPPED
        assert result.output["_branch"] == "false"


# =============================================================================
# Pre-flight failures
# =============================================================================


class TestPreflight:
    """Tests for structural failures detected before any block runs."""

    @pytest.mark.asyncio
    async def test_cycle_runs_no_block(
        self, orchestrator, make_definition, node, edge, recorder, recorded
    ) -> None:
        """A cyclic definition fails with CYCLE_DETECTED."""
        definition = make_definition(
            [record(node, "a"), record(node, "b"), record(node, "c")],
            [edge("a", "b"), edge("b", "c"), edge("c", "b")],
        )
        result = await orchestrator.execute(definition, make_context("wf", recorder))

        assert result.status == ExecutionStatus.FAILED
        assert result.error_kind == ErrorKind.CYCLE_DETECTED
        assert recorded == []
        assert result.node_results == {}
        assert recorder.names == ["workflow_failed"]
        assert recorder.percentages == [100.0]

    @pytest.mark.asyncio
    async def test_unknown_block_type_runs_no_block(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """An unregistered type fails the run before any node starts."""
        definition = make_definition(
            [record(node, "first"), node("mystery", "nope.missing"), record(node, "last")],
            [edge("first", "mystery"), edge("mystery", "last")],
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.status == ExecutionStatus.FAILED
        assert result.error_kind == ErrorKind.UNKNOWN_BLOCK_TYPE
        assert result.error.details["node_ids"] == ["mystery"]
        assert recorded == []
        assert result.metadata["skipped_nodes"] == ["first", "mystery", "last"]

    @pytest.mark.asyncio
    async def test_dangling_edge(self, orchestrator, make_definition, node, edge) -> None:
        """Edges to unknown nodes are validation errors."""
        definition = make_definition([node("a")], [edge("a", "ghost")])
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.error_kind == ErrorKind.VALIDATION_ERROR


# =============================================================================
# Failure policy
# =============================================================================


class TestFailurePolicy:
    """Tests for non-critical and critical node failures."""

    @pytest.mark.asyncio
    async def test_branch_failure_skips_downstream_only(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """A failed node blocks its descendants; other branches complete."""
        definition = make_definition(
            [
                node("src", "input.static", config={"data": {"ok": True}}),
                node("bad", "test.fail", config={"message": "bad row"}),
                record(node, "after_bad"),
                record(node, "good"),
            ],
            [edge("src", "bad"), edge("bad", "after_bad"), edge("src", "good")],
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.status == ExecutionStatus.COMPLETED
        assert result.output == {"ok": True}
        assert recorded == ["good"]

        bad = result.node_results["bad"]
        assert bad.status == ExecutionStatus.FAILED
        assert bad.error.kind == ErrorKind.NODE_EXECUTION_FAILED
        assert bad.error.message == "bad row"
        assert bad.error.details == {"exception_type": "ValueError"}

        skipped = result.node_results["after_bad"]
        assert skipped.status == ExecutionStatus.SKIPPED
        assert skipped.metadata == {"skip_reason": BLOCKED_REASON, "blocked_by": "bad"}

        assert result.metadata["failed_nodes"] == ["bad"]
        assert result.metadata["skipped_nodes"] == ["after_bad"]
        assert result.metadata["errors"][0]["message"] == "bad row"

    @pytest.mark.asyncio
    async def test_critical_failure_stops_run(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """A critical failure fails the run and skips the remaining nodes."""
        definition = make_definition(
            [
                node("src"),
                node("vital", "test.fail", critical=True),
                record(node, "sibling"),
                record(node, "later"),
            ],
            [edge("src", "vital"), edge("src", "sibling"), edge("sibling", "later")],
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        assert result.status == ExecutionStatus.FAILED
        assert result.error_kind == ErrorKind.NODE_EXECUTION_FAILED
        assert result.error.details["node_id"] == "vital"
        assert result.output is None
        assert result.node_results["sibling"].status == ExecutionStatus.COMPLETED
        assert result.node_results["later"].status == ExecutionStatus.SKIPPED
        assert recorded == ["sibling"]

    @pytest.mark.asyncio
    async def test_raw_return_values_are_wrapped(
        self, orchestrator, make_definition, node
    ) -> None:
        """Blocks may return plain values."""
        definition = make_definition([node("raw", "test.raw", config={"value": [1, 2]})])
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.node_results["raw"].status == ExecutionStatus.COMPLETED
        assert result.output == [1, 2]

    @pytest.mark.asyncio
    async def test_schema_violations_fail_node(
        self, orchestrator, make_definition, node
    ) -> None:
        """Input and output schemas are enforced."""
        definition = make_definition(
            [
                node("in_check", input_schema={"type": "object", "required": ["id"]}),
                node("out_check", "test.raw", config={"value": "text"}, output_schema={"type": "array"}),
            ]
        )
        result = await orchestrator.execute(definition, make_context("wf"), {"name": "x"})

        for node_id in ("in_check", "out_check"):
            node_result = result.node_results[node_id]
            assert node_result.status == ExecutionStatus.FAILED
            assert node_result.error.kind == ErrorKind.VALIDATION_ERROR


# =============================================================================
# Retries and timeouts
# =============================================================================


class TestRetries:
    """Tests for retry policies."""

    @pytest.mark.asyncio
    async def test_retries_until_success(
        self, orchestrator, make_definition, node, flaky_calls
    ) -> None:
        """A flaky node succeeds within its retry budget."""
        definition = make_definition(
            [
                node(
                    "flaky",
                    "test.flaky",
                    config={"key": "k1", "failures": 2},
                    retry_policy={"max_retries": 3, "initial_delay": 0.01},
                )
            ]
        )
        result = await orchestrator.execute(definition, make_context("wf"), {"v": 1})

        node_result = result.node_results["flaky"]
        assert node_result.status == ExecutionStatus.COMPLETED
        assert node_result.retry_count == 2
        assert flaky_calls["k1"] == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(
        self, orchestrator, make_definition, node, flaky_calls
    ) -> None:
        """The last failure is reported once retries run out."""
        definition = make_definition(
            [
                node(
                    "flaky",
                    "test.flaky",
                    config={"key": "k2", "failures": 5},
                    retry_policy={"max_retries": 1, "initial_delay": 0.01},
                )
            ]
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        node_result = result.node_results["flaky"]
        assert node_result.status == ExecutionStatus.FAILED
        assert node_result.retry_count == 1
        assert flaky_calls["k2"] == 2

    @pytest.mark.asyncio
    async def test_non_retryable_errors(
        self, orchestrator, make_definition, node, flaky_calls
    ) -> None:
        """Only failures matching retryable_errors are retried."""
        definition = make_definition(
            [
                node(
                    "flaky",
                    "test.flaky",
                    config={"key": "k3", "failures": 1, "message": "Invalid credentials"},
                    retry_policy={
                        "max_retries": 3,
                        "initial_delay": 0.01,
                        "retryable_errors": ["timeout", "RATE LIMIT"],
                    },
                )
            ]
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.node_results["flaky"].status == ExecutionStatus.FAILED
        assert flaky_calls["k3"] == 1

    @pytest.mark.asyncio
    async def test_globals_retry_policy_applies(
        self, orchestrator, make_definition, node
    ) -> None:
        """Nodes without a policy use the workflow default."""
        definition = make_definition(
            [node("flaky", "test.flaky", config={"key": "k4", "failures": 1})],
            globals={"retry_policy": {"max_retries": 1, "initial_delay": 0.01}},
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.node_results["flaky"].retry_count == 1
        assert result.status == ExecutionStatus.COMPLETED


class TestTimeouts:
    """Tests for node and run timeouts."""

    @pytest.mark.asyncio
    async def test_node_timeout_keeps_siblings(
        self, orchestrator, make_definition, node, edge
    ) -> None:
        """A timed out node fails with TIMEOUT while its sibling completes."""
        definition = make_definition(
            [
                node("src", "input.static", config={"data": {"n": 1}}),
                node("slow", "test.sleep", config={"seconds": 2}, timeout=0.05),
                node("fast"),
            ],
            [edge("src", "slow"), edge("src", "fast")],
        )
        result = await orchestrator.execute(definition, make_context("wf"))

        slow = result.node_results["slow"]
        assert slow.status == ExecutionStatus.FAILED
        assert slow.error.kind == ErrorKind.TIMEOUT
        assert result.node_results["fast"].status == ExecutionStatus.COMPLETED
        assert result.output == {"n": 1}

    @pytest.mark.asyncio
    async def test_critical_node_timeout_fails_run(
        self, orchestrator, make_definition, node
    ) -> None:
        """A critical node that times out fails the run."""
        definition = make_definition(
            [node("slow", "test.sleep", config={"seconds": 2}, timeout=0.05, critical=True)]
        )
        result = await orchestrator.execute(definition, make_context("wf"))
        assert result.status == ExecutionStatus.FAILED
        assert result.error.details["error"]["kind"] == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_run_timeout_skips_remaining(
        self, orchestrator, make_definition, node, edge, recorded
    ) -> None:
        """An exhausted run budget fails the run with TIMEOUT."""
        definition = make_definition(
            [node("slow", "test.sleep", config={"seconds": 2}), record(node, "next")],
            [edge("slow", "next")],
        )
        result = await orchestrator.execute(definition, make_context("wf"), timeout=0.1)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_kind == ErrorKind.TIMEOUT
        assert result.node_results["slow"].error.kind == ErrorKind.TIMEOUT
        assert result.node_results["next"].status == ExecutionStatus.SKIPPED
        assert recorded == []


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_node(
        self, orchestrator, make_definition, node, edge, recorder, recorded
    ) -> None:
        """Node 1 keeps its result; nodes 2 and 3 never start."""
        definition = make_definition(
            [node("one", "test.cancel"), record(node, "two"), record(node, "three")],
            [edge("one", "two"), edge("two", "three")],
        )
        result = await orchestrator.execute(definition, make_context("wf", recorder))

        assert result.status == ExecutionStatus.CANCELLED
        assert result.error_kind == ErrorKind.CANCELLATION_REQUESTED
        assert result.node_results["one"].status == ExecutionStatus.COMPLETED
        assert result.node_results["one"].output == {"cancelled_by": "test.cancel"}
        for node_id in ("two", "three"):
            assert result.node_results[node_id].status == ExecutionStatus.SKIPPED
        assert recorded == []
        assert recorder.started_nodes() == ["one"]
        assert recorder.names[-1] == "workflow_cancelled"
        assert recorder.percentages.count(100.0) == 1

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, orchestrator, linear_definition) -> None:
        """A run cancelled up front starts no node."""
        context = make_context(linear_definition.workflow_id)
        context.request_cancel()
        result = await orchestrator.execute(linear_definition, context)

        assert result.status == ExecutionStatus.CANCELLED
        assert all(
            r.status == ExecutionStatus.SKIPPED for r in result.node_results.values()
        )


# =============================================================================
# Observers and internal errors
# =============================================================================


class TestObservers:
    """Tests for node completion callbacks and internal errors."""

    @pytest.mark.asyncio
    async def test_on_node_complete_sees_every_node(
        self, orchestrator, linear_definition
    ) -> None:
        """The observer gets each result once, async callbacks included."""
        seen: list[str] = []

        async def on_node_complete(result) -> None:
            seen.append(result.node_id)

        await orchestrator.execute(
            linear_definition,
            make_context(linear_definition.workflow_id),
            on_node_complete=on_node_complete,
        )
        assert seen == ["input", "transform", "output"]

    @pytest.mark.asyncio
    async def test_observer_errors_are_contained(self, orchestrator, linear_definition) -> None:
        """A failing observer does not fail the run."""

        def broken(result) -> None:
            raise RuntimeError("observer down")

        result = await orchestrator.execute(
            linear_definition,
            make_context(linear_definition.workflow_id),
            on_node_complete=broken,
        )
        assert result.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_internal_errors_are_reported_and_raised(
        self, make_definition, node, recorder
    ) -> None:
        """Unexpected orchestration errors emit a final event and propagate."""

        class BrokenRegistry(BlockRegistry):
            def create(self, block_type, *args, **kwargs):
                raise RuntimeError("registry exploded")

        orchestrator = WorkflowOrchestrator(BrokenRegistry())
        definition = make_definition([node("a")])

        with pytest.raises(RuntimeError, match="registry exploded"):
            await orchestrator.execute(definition, make_context("wf", recorder))

        assert recorder.names[-1] == "workflow_failed"
        assert recorder.events[-1][1]["error"]["kind"] == "INTERNAL_ERROR"
        assert recorder.percentages[-1] == 100.0


class TestExecuteBlock:
    """Tests for single-block execution."""

    @pytest.mark.asyncio
    async def test_runs_block_in_isolation(self, orchestrator) -> None:
        """A block runs without a workflow."""
        result = await orchestrator.execute_block(
            "transform.fieldMapping",
            {"operations": [{"type": "rename", "field": "a", "target_field": "b"}]},
            {"a": 1},
            ContextFactory.create_test(),
        )
        assert result.status == ExecutionStatus.COMPLETED
        assert result.output == {"b": 1}
        assert result.node_id == "test_transform.fieldMapping"

    @pytest.mark.asyncio
    async def test_unknown_block(self, orchestrator) -> None:
        """Unknown types yield a failed result."""
        result = await orchestrator.execute_block(
            "nope.missing", {}, None, ContextFactory.create_test()
        )
        assert result.status == ExecutionStatus.FAILED
        assert result.error.kind == ErrorKind.UNKNOWN_BLOCK_TYPE


def test_progress_event_defaults() -> None:
    """progress_event fills empty details and no error."""
    assert progress_event("workflow_started") == {
        "event": "workflow_started",
        "node_id": None,
        "block_type": None,
        "status": None,
        "details": {},
        "error": None,
    }
