"""Tests for ExecutionContext, ContextFactory and placeholder interpolation."""

import asyncio
import logging
import re

import pytest
from jinja2 import TemplateSyntaxError

from blockflow.models.enums import ExecutionMode
from blockflow.services.workflow.context import (
    ContextFactory,
    ExecutionContext,
    get_path,
    interpolate,
    render,
)


class TestContextFactory:
    """Tests for context creation."""

    def test_generated_execution_id_format(self) -> None:
        """Generated ids look like exec_<ms>_<9 chars>."""
        execution_id = ContextFactory.generate_execution_id()
        assert re.fullmatch(r"exec_\d+_[a-z0-9]{9}", execution_id)
        assert execution_id != ContextFactory.generate_execution_id()

    def test_create_defaults(self) -> None:
        """A new context is in production mode and not cancelled."""
        context = ContextFactory.create("wf-1")
        assert context.workflow_id == "wf-1"
        assert context.execution_id.startswith("exec_")
        assert context.mode == ExecutionMode.PRODUCTION
        assert not context.is_cancelled
        assert not context.is_mock_mode

    def test_create_test_and_demo_modes(self) -> None:
        """Factory shortcuts set the mode."""
        assert ContextFactory.create_test().mode == ExecutionMode.TEST
        assert ContextFactory.create_demo().is_mock_mode

    def test_variables_are_copied_and_read_only(self) -> None:
        """Later changes to the source dict do not leak into the context."""
        source = {"region": "eu"}
        context = ContextFactory.create("wf", variables=source)
        source["region"] = "us"

        assert context.get_variable("region") == "eu"
        assert context.get_variable("missing", "fallback") == "fallback"
        with pytest.raises(TypeError):
            context.variables["region"] = "us"  # type: ignore[index]

    def test_shared_cancel_event(self) -> None:
        """A supplied cancel event is observed by the context."""
        event = asyncio.Event()
        context = ContextFactory.create("wf", cancel_event=event)
        event.set()
        assert context.is_cancelled

    def test_request_cancel(self) -> None:
        """request_cancel sets the cancellation flag."""
        context = ContextFactory.create("wf")
        context.request_cancel()
        assert context.is_cancelled

    def test_elapsed_ms_grows(self) -> None:
        """elapsed_ms is measured from context creation."""
        context = ContextFactory.create("wf")
        first = context.elapsed_ms
        assert first >= 0
        assert context.elapsed_ms >= first


class TestReportProgress:
    """Tests for progress forwarding."""

    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self) -> None:
        """Both plain and coroutine callbacks receive events."""
        received: list[tuple[float, str]] = []

        def sync_callback(pct: float, event: dict) -> None:
            received.append((pct, event["event"]))

        async def async_callback(pct: float, event: dict) -> None:
            received.append((pct, event["event"]))

        await ContextFactory.create("wf", progress=sync_callback).report_progress(
            10, {"event": "sync"}
        )
        await ContextFactory.create("wf", progress=async_callback).report_progress(
            20, {"event": "async"}
        )
        assert received == [(10, "sync"), (20, "async")]

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_propagate(self) -> None:
        """A failing callback is logged and swallowed."""

        def broken(pct: float, event: dict) -> None:
            raise RuntimeError("listener down")

        context = ContextFactory.create("wf", progress=broken)
        await context.report_progress(50, {"event": "node_completed"})


class TestSecretMasking:
    """Tests for secret redaction in run logs."""

    def test_secret_values_are_masked(self, caplog: pytest.LogCaptureFixture) -> None:
        """Secrets never appear in logged messages or context."""
        context = ContextFactory.create("wf", secrets={"api_key": "s3cr3t-value"})

        with caplog.at_level(logging.INFO, logger="blockflow.execution"):
            context.logger.info(
                "calling with s3cr3t-value",
                extra={"context": {"header": "Bearer s3cr3t-value"}},
            )

        record = caplog.records[-1]
        assert "s3cr3t-value" not in record.getMessage()
        assert "[REDACTED]" in record.getMessage()
        assert record.context["header"] == "Bearer [REDACTED]"
        assert record.context["execution_id"] == context.execution_id

    def test_get_secret(self) -> None:
        """Secrets remain readable by blocks."""
        context = ContextFactory.create("wf", secrets={"token": "abc"})
        assert context.get_secret("token") == "abc"
        assert context.get_secret("missing") is None


class TestInterpolation:
    """Tests for {{...}} placeholder resolution."""

    @pytest.fixture
    def context(self) -> ExecutionContext:
        return ContextFactory.create(
            "wf-interp",
            execution_id="exec_1_abcdefghi",
            variables={"env": "prod", "limits": {"max": 5}},
            secrets={"token": "t0k"},
        )

    def test_whole_placeholder_keeps_raw_value(self, context: ExecutionContext) -> None:
        """A string that is one placeholder resolves to the raw value."""
        assert interpolate("{{input.items}}", context, {"items": [1, 2]}) == [1, 2]
        assert interpolate("{{variables.limits.max}}", context) == 5

    def test_embedded_placeholders_are_stringified(self, context: ExecutionContext) -> None:
        """Embedded placeholders become text."""
        value = interpolate(
            "Hi {{input.name}} in {{var.env}} ({{workflow.id}}/{{execution.id}})",
            context,
            {"name": "Ana"},
        )
        assert value == "Hi Ana in prod (wf-interp/exec_1_abcdefghi)"

    def test_node_outputs_and_secrets(self, context: ExecutionContext) -> None:
        """Node outputs and secrets are addressable."""
        config = {
            "auth": "Bearer {{secrets.token}}",
            "count": "{{nodes.fetch.total}}",
            "nested": ["{{nodes.fetch.rows.0.id}}"],
        }
        resolved = interpolate(
            config, context, None, {"fetch": {"total": 2, "rows": [{"id": "r1"}]}}
        )
        assert resolved == {"auth": "Bearer t0k", "count": 2, "nested": ["r1"]}

    def test_unknown_paths(self, context: ExecutionContext) -> None:
        """Unknown paths are None when whole, empty when embedded."""
        assert interpolate("{{input.missing}}", context, {}) is None
        assert interpolate("x={{nodes.ghost.value}}", context) == "x="

    def test_non_string_values_untouched(self, context: ExecutionContext) -> None:
        """Numbers and booleans pass through."""
        assert interpolate({"n": 1, "b": True, "z": None}, context) == {
            "n": 1,
            "b": True,
            "z": None,
        }

    def test_filters_and_bare_names(self, context: ExecutionContext) -> None:
        """Jinja filters apply and bare names read from a dict input."""
        data = {"name": "ana", "tags": ["a", "b"]}
        assert interpolate("{{ input.name | upper }}", context, data) == "ANA"
        assert interpolate("{{ tags | length }}", context, data) == 2
        assert interpolate("{{ name }}-{{ var.env }}", context, data) == "ana-prod"

    def test_mapping_keys_win_over_methods(self, context: ExecutionContext) -> None:
        """Keys named like dict methods resolve to the key."""
        data = {"items": "listed", "keys": 3}
        assert interpolate("{{ input.items }}/{{ input.keys }}", context, data) == "listed/3"
        assert interpolate("{{ input.values }}", context, data) is None
        assert interpolate("{{ input.__class__ }}", context, data) is None

    def test_embedded_structures_become_json(self, context: ExecutionContext) -> None:
        """Embedded dicts and lists render as JSON; strings stay strings."""
        data = {"filter": {"a": 1}, "ids": [1, 2], "code": "007"}
        assert interpolate("q={{ input.filter }}", context, data) == 'q={"a": 1}'
        assert interpolate("ids={{ input.ids }}", context, data) == "ids=[1, 2]"
        assert interpolate("{{ input.code }}", context, data) == "007"

    def test_invalid_template_raises(self, context: ExecutionContext) -> None:
        """Syntax errors surface as Jinja template errors."""
        with pytest.raises(TemplateSyntaxError):
            interpolate("{{ input.( }}", context, {})

    def test_render_without_markup_is_identity(self) -> None:
        """Strings without template syntax are returned untouched."""
        assert render("plain {text}", {}) == "plain {text}"
        assert render(["a", {"b": "{{ x }}"}], {"x": 1}) == ["a", {"b": 1}]

    def test_get_path(self) -> None:
        """Dotted paths walk dicts and list indexes."""
        data = {"a": [{"b": 1}]}
        assert get_path(data, "a.0.b") == 1
        assert get_path(data, "a.1.b") is None
        assert get_path(data, ["a"]) == [{"b": 1}]
