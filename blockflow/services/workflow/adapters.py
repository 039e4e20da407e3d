"""Edge adapters reshaping a node output on its way to the next node."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from blockflow.services.workflow.context import get_path, render

if TYPE_CHECKING:
    from blockflow.schemas.workflow import EdgeAdapter


def adapter_namespace(output: Any) -> dict[str, Any]:
    """Template names for an adapter: the output keys, ``output`` and ``now``."""
    namespace: dict[str, Any] = {}
    if isinstance(output, Mapping):
        namespace.update((k, v) for k, v in output.items() if isinstance(k, str))
    namespace["output"] = output
    namespace["now"] = datetime.now(UTC).isoformat()
    return namespace


def apply_adapter(adapter: EdgeAdapter | None, output: Any) -> Any:
    """Reshape a source output according to an edge adapter.

    Without an adapter the output is returned unchanged. In a ``map``
    adapter each mapping value is either a dotted path into the output or,
    when it contains ``{{``, a template.

    Raises:
        jinja2.TemplateError: When a template cannot be compiled or rendered.
    """
    if adapter is None:
        return output

    namespace = adapter_namespace(output)
    if adapter.type == "map":
        return {
            target: render(source, namespace) if "{{" in source else get_path(output, source)
            for target, source in (adapter.mapping or {}).items()
        }
    return render(adapter.template or {}, namespace)


__all__ = ["adapter_namespace", "apply_adapter"]
