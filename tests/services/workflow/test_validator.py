"""Tests for WorkflowValidator.

Covers structural, graph, schema, semantic and configuration checks, plus
idempotency of the report.
"""

import pytest

from blockflow.schemas.validation import ValidationOptions
from blockflow.services.workflow.exceptions import WorkflowValidationError
from blockflow.services.workflow.validator import WorkflowValidator


@pytest.fixture
def validator(registry) -> WorkflowValidator:
    return WorkflowValidator(registry)


class TestValidDefinitions:
    """Tests for definitions without errors."""

    def test_linear_workflow_is_valid(self, validator, linear_definition) -> None:
        """The linear fixture passes with only the retry-policy warning."""
        result = validator.validate(linear_definition)
        assert result.valid
        assert result.errors == []
        assert result.warning_codes == ["NO_RETRY_POLICY"]

    def test_validation_is_idempotent(self, validator, make_definition, node, edge) -> None:
        """Validating twice yields equal reports and leaves the definition alone."""
        definition = make_definition(
            [node("a", "input.static", config={"data": 1}), node("b"), node("b")],
            [edge("a", "b"), edge("b", "a")],
        )
        before = definition.model_dump()

        first = validator.validate(definition)
        second = validator.validate(definition)

        assert first == second
        assert definition.model_dump() == before

    def test_single_node_workflow(self, validator, make_definition, node) -> None:
        """One node is both entry and terminal."""
        result = validator.validate(
            make_definition([node("only", "input.static", config={"data": 1})])
        )
        assert result.valid
        assert "NO_OUTPUT_BLOCK" in result.warning_codes


class TestStructuralChecks:
    """Tests for ids and edge references."""

    def test_empty_workflow(self, validator, make_definition) -> None:
        """No nodes is an error on its own."""
        result = validator.validate(make_definition([]))
        assert not result.valid
        assert result.error_codes == ["EMPTY_WORKFLOW"]

    def test_duplicate_ids(self, validator, make_definition, node, edge) -> None:
        """Duplicate node and edge ids are reported once each."""
        definition = make_definition(
            [node("a"), node("a"), node("b")],
            [edge("a", "b", "e1"), edge("a", "b", "e1")],
        )
        result = validator.validate(definition)
        assert "DUPLICATE_NODE_ID" in result.error_codes
        assert "DUPLICATE_EDGE_ID" in result.error_codes

    def test_invalid_edge_reference(self, validator, make_definition, node, edge) -> None:
        """Edges to unknown nodes name the missing endpoint."""
        result = validator.validate(make_definition([node("a")], [edge("a", "ghost")]))
        issue = next(i for i in result.errors if i.code == "INVALID_EDGE_REFERENCE")
        assert issue.node_ids == ["ghost"]
        assert issue.edge_id == "a->ghost"

    def test_self_loop(self, validator, make_definition, node, edge) -> None:
        """Self loops are reported without a cycle error."""
        definition = make_definition([node("a"), node("b")], [edge("a", "b"), edge("b", "b")])
        result = validator.validate(definition)
        assert "SELF_LOOP_DETECTED" in result.error_codes
        assert "CYCLE_DETECTED" not in result.error_codes


class TestGraphChecks:
    """Tests for cycles, entry/terminal nodes and connectivity."""

    def test_cycle_detected(self, validator, make_definition, node, edge) -> None:
        """A back edge yields CYCLE_DETECTED naming the cycle nodes."""
        definition = make_definition(
            [node("start"), node("a"), node("b"), node("c"), node("end")],
            [
                edge("start", "a"),
                edge("a", "b"),
                edge("b", "c"),
                edge("c", "a"),
                edge("c", "end"),
            ],
        )
        result = validator.validate(definition)
        assert not result.valid
        issue = next(i for i in result.errors if i.code == "CYCLE_DETECTED")
        assert issue.node_ids == ["a", "b", "c"]
        assert issue.details["cycle_path"] == ["a", "b", "c", "a"]

    def test_full_cycle_has_no_entry_or_terminal(
        self, validator, make_definition, node, edge
    ) -> None:
        """A ring has neither entry nor terminal nodes."""
        definition = make_definition([node("a"), node("b")], [edge("a", "b"), edge("b", "a")])
        codes = validator.validate(definition).error_codes
        assert {"CYCLE_DETECTED", "NO_ENTRY_NODE", "NO_TERMINAL_NODE"} <= set(codes)

    def test_unreachable_nodes(self, validator, make_definition, node, edge) -> None:
        """Nodes only reachable through a cycle are unreachable."""
        definition = make_definition(
            [node("a"), node("b"), node("x"), node("y")],
            [edge("a", "b"), edge("x", "y"), edge("y", "x")],
        )
        result = validator.validate(definition)
        unreachable = [i.node_id for i in result.errors if i.code == "UNREACHABLE_NODE"]
        assert unreachable == ["x", "y"]

    def test_orphan_nodes(self, validator, make_definition, node, edge) -> None:
        """Unconnected nodes are orphans unless optional."""
        definition = make_definition(
            [node("a"), node("b"), node("lonely"), node("spare", optional=True)],
            [edge("a", "b")],
        )
        result = validator.validate(definition)
        orphans = [i.node_id for i in result.errors if i.code == "ORPHAN_NODE"]
        assert orphans == ["lonely"]


class TestSchemaChecks:
    """Tests for node input/output schemas."""

    def test_invalid_schema_type(self, validator, make_definition, node) -> None:
        """Schemas must pass the JSON-schema metaschema."""
        definition = make_definition(
            [
                node(
                    "a",
                    input_schema={"type": "object"},
                    output_schema={"type": "blob"},
                )
            ]
        )
        result = validator.validate(definition)
        issue = next(i for i in result.errors if i.code == "INVALID_SCHEMA")
        assert issue.node_id == "a"
        assert issue.details == {"field": "output_schema", "path": "$.type"}
        assert len([i for i in result.errors if i.code == "INVALID_SCHEMA"]) == 1

    def test_union_and_untyped_schemas_are_valid(
        self, validator, make_definition, node
    ) -> None:
        """Type lists and schemas without a type keyword are accepted."""
        definition = make_definition(
            [
                node(
                    "a",
                    input_schema={"type": ["object", "null"]},
                    output_schema={"properties": {"x": {"type": "integer"}}},
                )
            ]
        )
        result = validator.validate(definition)
        assert "INVALID_SCHEMA" not in result.error_codes


class TestSemanticChecks:
    """Tests for registry-aware checks."""

    def test_unknown_block_type(self, validator, make_definition, node, edge) -> None:
        """Unregistered types are errors."""
        definition = make_definition(
            [node("in", "input.static", config={"data": 1}), node("x", "nope.missing")],
            [edge("in", "x")],
        )
        result = validator.validate(definition)
        assert result.error_codes == ["UNKNOWN_BLOCK_TYPE"]
        assert result.errors[0].node_id == "x"

    def test_check_blocks_disabled(self, validator, make_definition, node) -> None:
        """Block checks can be turned off."""
        result = validator.validate(
            make_definition([node("x", "nope.missing")]),
            ValidationOptions(check_blocks=False),
        )
        assert result.valid

    def test_missing_io_blocks_warn_or_escalate(self, validator, make_definition, node) -> None:
        """Missing input/output blocks are warnings unless escalated."""
        definition = make_definition([node("a")])

        relaxed = validator.validate(definition)
        assert relaxed.valid
        assert {"NO_INPUT_BLOCK", "NO_OUTPUT_BLOCK"} <= set(relaxed.warning_codes)

        strict = validator.validate(definition, ValidationOptions(escalate_warnings=True))
        assert not strict.valid
        assert strict.error_codes == ["NO_INPUT_BLOCK", "NO_OUTPUT_BLOCK"]

    def test_multiple_input_blocks(self, validator, make_definition, node, edge) -> None:
        """More than one input node is a best-practice warning."""
        definition = make_definition(
            [
                node("in1", "input.static", config={"data": 1}),
                node("in2", "input.static", config={"data": 2}),
                node("out", "output.logger"),
            ],
            [edge("in1", "out"), edge("in2", "out")],
        )
        result = validator.validate(definition)
        issue = next(i for i in result.warnings if i.code == "MULTIPLE_INPUT_BLOCKS")
        assert issue.node_ids == ["in1", "in2"]

    def test_warnings_can_be_omitted(self, validator, make_definition, node) -> None:
        """include_warnings=False drops warnings."""
        result = validator.validate(
            make_definition([node("a")]), ValidationOptions(include_warnings=False)
        )
        assert result.warnings == []


class TestConfigChecks:
    """Tests for global configuration warnings."""

    def test_timeout_and_retry_warnings(self, validator, make_definition, node) -> None:
        """No timeout and no retry policy are reported."""
        result = validator.validate(make_definition([node("a")]))
        assert {"NO_GLOBAL_TIMEOUT", "NO_RETRY_POLICY"} <= set(result.warning_codes)

    def test_node_retry_policy_counts(self, validator, make_definition, node) -> None:
        """A node-level retry policy silences the retry warning."""
        definition = make_definition(
            [node("a", retry_policy={"max_retries": 2})], globals={"timeout": 10}
        )
        codes = validator.validate(definition).warning_codes
        assert "NO_RETRY_POLICY" not in codes
        assert "NO_GLOBAL_TIMEOUT" not in codes


class TestValidateOrRaise:
    """Tests for validate_or_raise."""

    def test_raises_with_report(self, validator, make_definition) -> None:
        """Errors raise WorkflowValidationError carrying the report."""
        with pytest.raises(WorkflowValidationError) as exc_info:
            validator.validate_or_raise(make_definition([]))
        assert exc_info.value.error_code == "VALIDATION_ERROR"
        assert exc_info.value.result.error_codes == ["EMPTY_WORKFLOW"]

    def test_returns_result_when_valid(self, validator, linear_definition) -> None:
        """Valid definitions return the report."""
        assert validator.validate_or_raise(linear_definition).valid
