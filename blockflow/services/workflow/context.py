"""Execution context handed to every block of a workflow run.

This module provides ``ExecutionContext`` (per-run variables, secrets,
logger, progress callback and cancellation signal), the ``ContextFactory``
that builds it, and ``interpolate`` which renders Jinja2 ``{{...}}``
placeholders in node configuration.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import re
import secrets as secrets_module
import string
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from jinja2 import ChainableUndefined, Template, Undefined
from jinja2.sandbox import SandboxedEnvironment

from blockflow.core.logging import ExecutionLoggerAdapter, get_logger
from blockflow.models.enums import ExecutionMode

logger = get_logger(__name__)

type ProgressCallback = Callable[[float, dict[str, Any]], Awaitable[None] | None]

_ID_ALPHABET = string.ascii_lowercase + string.digits
_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class ExecutionContext:
    """Per-run context shared by all block executions of one run.

    Variables and secrets are exposed as read-only mappings. Secrets are
    masked in everything logged through ``logger``. The context holds no
    reference to global state and may be shared by concurrently running
    blocks of the same run.

    Attributes:
        workflow_id: Identifier of the running workflow.
        execution_id: Identifier of this run.
        mode: Execution mode (production, test, demo).
        variables: Read-only run variables.
        secrets: Read-only secret values.
        logger: Logger adapter carrying the run identifiers.
        progress: Optional callback receiving ``(percentage, event)``.
        cancel_event: Cooperative cancellation signal.
        started_at: When the context was created.
        metadata: Free-form run metadata (user id, job id).
    """

    def __init__(
        self,
        workflow_id: str,
        execution_id: str,
        mode: ExecutionMode = ExecutionMode.PRODUCTION,
        variables: Mapping[str, Any] | None = None,
        secrets: Mapping[str, str] | None = None,
        logger: ExecutionLoggerAdapter | None = None,
        progress: ProgressCallback | None = None,
        metadata: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.mode = ExecutionMode(mode)
        self.variables: Mapping[str, Any] = MappingProxyType(dict(variables or {}))
        self.secrets: Mapping[str, str] = MappingProxyType(dict(secrets or {}))
        self.logger = logger or ExecutionLoggerAdapter(
            get_logger("blockflow.execution"),
            {
                "workflow_id": workflow_id,
                "execution_id": execution_id,
                "mode": str(self.mode),
            },
            secrets=self.secrets.values(),
        )
        self.progress = progress
        self.cancel_event = cancel_event or asyncio.Event()
        self.started_at = datetime.now(UTC)
        self._started_monotonic = time.monotonic()
        self.metadata: dict[str, Any] = dict(metadata or {})

    def get_variable(self, key: str, default: Any = None) -> Any:
        """Get a run variable."""
        return self.variables.get(key, default)

    def get_secret(self, key: str) -> str | None:
        """Get a secret value; never log the result."""
        return self.secrets.get(key)

    @property
    def is_cancelled(self) -> bool:
        """True once cancellation was requested."""
        return self.cancel_event.is_set()

    def request_cancel(self) -> None:
        """Ask the run to stop at the next node boundary."""
        self.cancel_event.set()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the context was created."""
        return (time.monotonic() - self._started_monotonic) * 1000

    @property
    def is_mock_mode(self) -> bool:
        """True in test and demo mode, where blocks may return mocked data."""
        return self.mode in (ExecutionMode.TEST, ExecutionMode.DEMO)

    async def report_progress(self, percentage: float, event: dict[str, Any]) -> None:
        """Forward a progress event to the callback.

        Callback failures are logged and never reach the caller.
        """
        if self.progress is None:
            return
        try:
            outcome = self.progress(percentage, event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(
                "Progress callback failed",
                extra={
                    "context": {
                        "execution_id": self.execution_id,
                        "event": event.get("event"),
                    }
                },
            )

    def __repr__(self) -> str:
        """Return string representation of the context."""
        return (
            f"ExecutionContext(workflow_id={self.workflow_id!r}, "
            f"execution_id={self.execution_id!r}, mode={self.mode})"
        )


class ContextFactory:
    """Builds self-contained execution contexts."""

    @staticmethod
    def generate_execution_id() -> str:
        """Return a new run id of the form ``exec_<epoch ms>_<9 chars>``."""
        suffix = "".join(secrets_module.choice(_ID_ALPHABET) for _ in range(9))
        return f"exec_{int(time.time() * 1000)}_{suffix}"

    @classmethod
    def create(
        cls,
        workflow_id: str,
        execution_id: str | None = None,
        mode: ExecutionMode | str = ExecutionMode.PRODUCTION,
        variables: Mapping[str, Any] | None = None,
        secrets: Mapping[str, str] | None = None,
        logger: ExecutionLoggerAdapter | None = None,
        progress: ProgressCallback | None = None,
        metadata: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionContext:
        """Create a context for one run.

        Args:
            workflow_id: Identifier of the workflow to run.
            execution_id: Run id; generated when omitted.
            mode: Execution mode, production by default.
            variables: Run variables (copied).
            secrets: Secret values (copied, masked in logs).
            logger: Logger adapter; a run-scoped one is created when omitted.
            progress: Optional progress callback (sync or async).
            metadata: Free-form run metadata.
            cancel_event: Shared cancellation signal; a fresh one by default.

        Returns:
            A new ExecutionContext.
        """
        return ExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution_id or cls.generate_execution_id(),
            mode=ExecutionMode(mode),
            variables=variables,
            secrets=secrets,
            logger=logger,
            progress=progress,
            metadata=metadata,
            cancel_event=cancel_event,
        )

    @classmethod
    def create_test(cls, workflow_id: str = "test-workflow", **kwargs: Any) -> ExecutionContext:
        """Create a context in test mode."""
        kwargs["mode"] = ExecutionMode.TEST
        return cls.create(workflow_id, **kwargs)

    @classmethod
    def create_demo(cls, workflow_id: str = "demo-workflow", **kwargs: Any) -> ExecutionContext:
        """Create a context in demo mode."""
        kwargs["mode"] = ExecutionMode.DEMO
        return cls.create(workflow_id, **kwargs)


# =============================================================================
# Placeholder interpolation
# =============================================================================


def get_path(data: Any, path: list[str] | str) -> Any:
    """Walk a dotted path through dicts and lists.

    Returns:
        The value at the path, or None when any segment is missing.
    """
    parts = path.split(".") if isinstance(path, str) else path
    current = data
    for part in parts:
        if part == "":
            continue
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


class _TemplateEnvironment(SandboxedEnvironment):
    """Sandbox where ``a.b`` on a mapping reads the ``b`` key first.

    Keys such as ``items`` or ``keys`` would otherwise resolve to dict
    methods.
    """

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            if attribute in obj:
                return obj[attribute]
            return self.undefined(obj=obj, name=attribute)
        return super().getattr(obj, attribute)


def _finalize(value: Any) -> Any:
    if value is None or isinstance(value, Undefined):
        return ""
    if isinstance(value, Mapping):
        return json.dumps(dict(value), default=str)
    if isinstance(value, list):
        return json.dumps(value, default=str)
    return value


_env = _TemplateEnvironment(
    undefined=ChainableUndefined,
    finalize=_finalize,
    keep_trailing_newline=True,
)


@lru_cache(maxsize=512)
def _compile_expression(source: str) -> Callable[..., Any]:
    return _env.compile_expression(source, undefined_to_none=True)


@lru_cache(maxsize=512)
def _compile_template(source: str) -> Template:
    return _env.from_string(source)


def render(value: Any, namespace: Mapping[str, Any]) -> Any:
    """Render Jinja2 placeholders in a value against a namespace.

    A string that is exactly one ``{{ expression }}`` evaluates to the raw
    result (lists stay lists, numbers stay numbers); undefined results are
    None. Any other string containing template syntax renders to text, with
    None and undefined values as empty strings and dicts/lists as JSON.
    Dicts and lists are walked recursively; other values are returned as is.

    Raises:
        jinja2.TemplateError: For syntax errors and sandbox violations.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value)
        if whole:
            return _compile_expression(whole.group(1))(namespace)
        if "{{" in value or "{%" in value:
            return _compile_template(value).render(namespace)
        return value
    if isinstance(value, dict):
        return {key: render(item, namespace) for key, item in value.items()}
    if isinstance(value, list):
        return [render(item, namespace) for item in value]
    return value


def template_namespace(
    context: ExecutionContext,
    input_data: Any = None,
    node_outputs: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Names visible to node configuration templates.

    Keys of a dict input are exposed as bare names; the fixed roots win on
    collisions.
    """
    namespace: dict[str, Any] = {}
    if isinstance(input_data, Mapping):
        namespace.update((k, v) for k, v in input_data.items() if isinstance(k, str))
    namespace.update(
        input=input_data,
        variables=context.variables,
        var=context.variables,
        secrets=context.secrets,
        nodes=dict(node_outputs or {}),
        workflow={
            "id": context.workflow_id,
            "execution_id": context.execution_id,
            "mode": str(context.mode),
        },
        execution={"id": context.execution_id},
    )
    return namespace


def interpolate(
    value: Any,
    context: ExecutionContext,
    input_data: Any = None,
    node_outputs: Mapping[str, Any] | None = None,
) -> Any:
    """Resolve ``{{...}}`` placeholders in a configuration value.

    Templates are Jinja2 expressions evaluated in a sandbox. Supported roots
    are ``input``, ``variables`` (alias ``var``), ``secrets``,
    ``nodes.<id>``, ``workflow`` and ``execution``; a bare name reads from
    the input. Filters work as usual (``{{ input.name | upper }}``).

    Args:
        value: Configuration value (walked recursively through dicts/lists).
        context: The run context.
        input_data: The node input.
        node_outputs: Outputs of nodes completed so far.

    Returns:
        A new value with placeholders resolved.

    Raises:
        jinja2.TemplateError: When a template cannot be compiled or rendered.

    Example:
        >>> interpolate({"greeting": "Hi {{input.name}}"}, ctx, {"name": "Ana"})
        {'greeting': 'Hi Ana'}
    """
    return render(value, template_namespace(context, input_data, node_outputs))


__all__ = [
    "ContextFactory",
    "ExecutionContext",
    "ProgressCallback",
    "get_path",
    "interpolate",
    "render",
    "template_namespace",
]
