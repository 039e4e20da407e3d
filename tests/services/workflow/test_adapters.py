"""Tests for edge adapters."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from blockflow.schemas.workflow import EdgeAdapter, EdgeDefinition
from blockflow.services.workflow.adapters import adapter_namespace, apply_adapter


class TestEdgeAdapterSchema:
    """Tests for adapter parsing."""

    def test_map_requires_mapping(self) -> None:
        """A map adapter without a mapping is rejected."""
        with pytest.raises(ValidationError, match="requires 'mapping'"):
            EdgeAdapter(type="map")

    def test_template_requires_template(self) -> None:
        """A template adapter without a template is rejected."""
        with pytest.raises(ValidationError, match="requires 'template'"):
            EdgeAdapter(type="template", mapping={"a": "b"})

    def test_unknown_type(self) -> None:
        """Only map and template adapters exist."""
        with pytest.raises(ValidationError):
            EdgeAdapter(type="function", mapping={})

    def test_edge_defaults(self) -> None:
        """Edges default to the in port and no adapter."""
        edge = EdgeDefinition(id="e1", source="a", target="b")
        assert edge.target_port == "in"
        assert edge.adapter is None


class TestApplyAdapter:
    """Tests for reshaping source outputs."""

    OUTPUT = {"user": {"name": "Ana", "emails": ["a@x.test"]}, "total": 2}

    def test_no_adapter_passes_through(self) -> None:
        """Without an adapter the output is unchanged."""
        assert apply_adapter(None, self.OUTPUT) is self.OUTPUT

    def test_map_paths_and_templates(self) -> None:
        """Plain values are paths; values with placeholders are templates."""
        adapter = EdgeAdapter(
            type="map",
            mapping={
                "name": "user.name",
                "email": "user.emails.0",
                "missing": "user.phone",
                "summary": "{{ user.name }} has {{ total }} orders",
                "count": "{{ output.total }}",
            },
        )
        assert apply_adapter(adapter, self.OUTPUT) == {
            "name": "Ana",
            "email": "a@x.test",
            "missing": None,
            "summary": "Ana has 2 orders",
            "count": 2,
        }

    def test_template_on_non_object_output(self) -> None:
        """List outputs are reachable through ``output``."""
        adapter = EdgeAdapter(
            type="template",
            template={"first": "{{ output[0] }}", "size": "{{ output | length }}"},
        )
        assert apply_adapter(adapter, [4, 5]) == {"first": 4, "size": 2}

    def test_namespace_has_timestamp(self) -> None:
        """``now`` is an ISO-8601 timestamp with a UTC offset."""
        namespace = adapter_namespace({"now": "shadowed"})
        assert datetime.fromisoformat(namespace["now"]).tzinfo is not None
        assert namespace["output"] == {"now": "shadowed"}
