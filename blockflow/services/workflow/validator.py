"""Workflow definition validation.

This module provides the WorkflowValidator, which checks a workflow
definition for structural problems (duplicate ids, dangling edges), graph
problems (cycles, unreachable and orphan nodes), node schema problems and,
optionally, block types unknown to the registry.

Validation is read-only: it never executes node logic and never mutates the
definition, so validating the same definition twice yields equal reports.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from blockflow.core.logging import get_logger
from blockflow.schemas.validation import (
    IssueType,
    ValidationCode,
    ValidationIssue,
    ValidationOptions,
    ValidationResult,
)
from blockflow.services.workflow.algorithms import GraphAlgorithms
from blockflow.services.workflow.blocks.registry import get_registry
from blockflow.services.workflow.exceptions import WorkflowValidationError
from blockflow.services.workflow.graph import Graph

if TYPE_CHECKING:
    from blockflow.schemas.workflow import WorkflowDefinition
    from blockflow.services.workflow.blocks.registry import BlockRegistry

logger = get_logger(__name__)

INPUT_NAMESPACE = "input"
OUTPUT_NAMESPACE = "output"


def _in_namespace(block_type: str, namespace: str) -> bool:
    return block_type == namespace or block_type.startswith(f"{namespace}.")


class WorkflowValidator:
    """Validates workflow definitions.

    The registry is only consulted when ``options.check_blocks`` is set.

    Example:
        >>> validator = WorkflowValidator()
        >>> result = validator.validate(definition)
        >>> if not result.valid:
        ...     print(result.error_codes)
    """

    def __init__(self, registry: BlockRegistry | None = None) -> None:
        """Initialize the validator.

        Args:
            registry: Block registry snapshot to check block types against.
                Defaults to the process-wide registry.
        """
        self.registry = registry if registry is not None else get_registry()

    def validate(
        self,
        definition: WorkflowDefinition,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        """Validate a workflow definition.

        Args:
            definition: The definition to check.
            options: Which checks to run; defaults to all checks with
                warnings reported but not escalated.

        Returns:
            ValidationResult whose ``valid`` flag is True when no errors
            were found.
        """
        options = options or ValidationOptions()
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if not definition.nodes:
            errors.append(
                ValidationIssue(
                    type=IssueType.SCHEMA,
                    code=ValidationCode.EMPTY_WORKFLOW,
                    message="Workflow has no nodes",
                )
            )
            return ValidationResult(valid=False, errors=errors)

        errors.extend(self._check_structure(definition))
        graph = self._build_graph(definition)
        errors.extend(self._check_graph(definition, graph))
        errors.extend(self._check_schemas(definition))

        if options.check_blocks:
            block_errors, block_warnings = self._check_blocks(definition, options)
            errors.extend(block_errors)
            warnings.extend(block_warnings)

        warnings.extend(self._check_config(definition))

        if not options.include_warnings:
            warnings = []

        result = ValidationResult(valid=not errors, errors=errors, warnings=warnings)
        logger.debug(
            "Workflow validated",
            extra={
                "context": {
                    "workflow_id": definition.workflow_id,
                    "valid": result.valid,
                    "errors": result.error_codes,
                    "warnings": result.warning_codes,
                }
            },
        )
        return result

    def validate_or_raise(
        self,
        definition: WorkflowDefinition,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        """Validate and raise when the definition has errors.

        Raises:
            WorkflowValidationError: If the report contains errors.
        """
        result = self.validate(definition, options)
        if not result.valid:
            raise WorkflowValidationError(result)
        return result

    # =========================================================================
    # Structural checks
    # =========================================================================

    @staticmethod
    def _check_structure(definition: WorkflowDefinition) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        node_counts = Counter(node.id for node in definition.nodes)
        for node_id, count in node_counts.items():
            if count > 1:
                issues.append(
                    ValidationIssue(
                        type=IssueType.SCHEMA,
                        code=ValidationCode.DUPLICATE_NODE_ID,
                        message=f"Node id '{node_id}' is used {count} times",
                        node_id=node_id,
                        details={"count": count},
                    )
                )

        edge_counts = Counter(edge.id for edge in definition.edges)
        for edge_id, count in edge_counts.items():
            if count > 1:
                issues.append(
                    ValidationIssue(
                        type=IssueType.SCHEMA,
                        code=ValidationCode.DUPLICATE_EDGE_ID,
                        message=f"Edge id '{edge_id}' is used {count} times",
                        edge_id=edge_id,
                        details={"count": count},
                    )
                )

        for edge in definition.edges:
            missing = [
                endpoint
                for endpoint in (edge.source, edge.target)
                if endpoint not in node_counts
            ]
            if missing:
                issues.append(
                    ValidationIssue(
                        type=IssueType.CONNECTION,
                        code=ValidationCode.INVALID_EDGE_REFERENCE,
                        message=(
                            f"Edge '{edge.id}' references unknown node(s): "
                            f"{', '.join(missing)}"
                        ),
                        edge_id=edge.id,
                        node_ids=missing,
                        details={"source": edge.source, "target": edge.target},
                    )
                )
            elif edge.source == edge.target:
                issues.append(
                    ValidationIssue(
                        type=IssueType.DAG,
                        code=ValidationCode.SELF_LOOP_DETECTED,
                        message=f"Node '{edge.source}' has an edge to itself",
                        node_id=edge.source,
                        edge_id=edge.id,
                        node_ids=[edge.source],
                    )
                )

        return issues

    @staticmethod
    def _build_graph(definition: WorkflowDefinition) -> Graph[str]:
        """Graph of declared nodes; dangling edges and self loops are left out.

        Both are reported by the structural checks already.
        """
        graph: Graph[str] = Graph()
        for node in definition.nodes:
            graph.add_node(node.id)
        for edge in definition.edges:
            if edge.source == edge.target:
                continue
            if edge.source in graph and edge.target in graph:
                graph.add_edge(edge.source, edge.target)
        return graph

    # =========================================================================
    # Graph checks
    # =========================================================================

    @staticmethod
    def _check_graph(
        definition: WorkflowDefinition,
        graph: Graph[str],
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        cycle = GraphAlgorithms.detect_cycle(graph)
        if cycle:
            issues.append(
                ValidationIssue(
                    type=IssueType.DAG,
                    code=ValidationCode.CYCLE_DETECTED,
                    message=f"Cycle detected: {' -> '.join(cycle)}",
                    node_ids=list(dict.fromkeys(cycle)),
                    details={"cycle_path": cycle},
                )
            )

        entry_nodes = GraphAlgorithms.find_entry_nodes(graph)
        if not entry_nodes:
            issues.append(
                ValidationIssue(
                    type=IssueType.DAG,
                    code=ValidationCode.NO_ENTRY_NODE,
                    message="Workflow has no entry node (every node has an incoming edge)",
                )
            )
        if not GraphAlgorithms.find_terminal_nodes(graph):
            issues.append(
                ValidationIssue(
                    type=IssueType.DAG,
                    code=ValidationCode.NO_TERMINAL_NODE,
                    message="Workflow has no terminal node (every node has an outgoing edge)",
                )
            )

        if entry_nodes:
            for node_id in GraphAlgorithms.find_unreachable_from(graph, entry_nodes):
                issues.append(
                    ValidationIssue(
                        type=IssueType.CONNECTION,
                        code=ValidationCode.UNREACHABLE_NODE,
                        message=f"Node '{node_id}' is not reachable from any entry node",
                        node_id=node_id,
                    )
                )

        optional = {node.id for node in definition.nodes if node.optional}
        for node_id in GraphAlgorithms.find_orphan_nodes(graph):
            if node_id in optional:
                continue
            issues.append(
                ValidationIssue(
                    type=IssueType.CONNECTION,
                    code=ValidationCode.ORPHAN_NODE,
                    message=f"Node '{node_id}' has no connections",
                    node_id=node_id,
                )
            )

        return issues

    # =========================================================================
    # Schema checks
    # =========================================================================

    @staticmethod
    def _check_schemas(definition: WorkflowDefinition) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for node in definition.nodes:
            for field_name in ("input_schema", "output_schema"):
                schema = getattr(node, field_name)
                if schema is None:
                    continue
                try:
                    Draft202012Validator.check_schema(schema)
                except SchemaError as e:
                    issues.append(
                        ValidationIssue(
                            type=IssueType.SCHEMA,
                            code=ValidationCode.INVALID_SCHEMA,
                            message=(
                                f"Node '{node.id}' {field_name} is not a valid "
                                f"JSON schema: {e.message}"
                            ),
                            node_id=node.id,
                            details={"field": field_name, "path": e.json_path},
                        )
                    )
        return issues

    # =========================================================================
    # Semantic checks
    # =========================================================================

    def _check_blocks(
        self,
        definition: WorkflowDefinition,
        options: ValidationOptions,
    ) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        for node in definition.nodes:
            if not self.registry.has(node.type):
                errors.append(
                    ValidationIssue(
                        type=IssueType.CONFIG,
                        code=ValidationCode.UNKNOWN_BLOCK_TYPE,
                        message=f"Node '{node.id}' uses unknown block type '{node.type}'",
                        node_id=node.id,
                        details={"block_type": node.type},
                    )
                )

        input_nodes = [
            node.id for node in definition.nodes if _in_namespace(node.type, INPUT_NAMESPACE)
        ]
        has_output = any(
            _in_namespace(node.type, OUTPUT_NAMESPACE) for node in definition.nodes
        )
        escalatable = errors if options.escalate_warnings else warnings

        if not input_nodes:
            escalatable.append(
                ValidationIssue(
                    type=IssueType.BEST_PRACTICE,
                    code=ValidationCode.NO_INPUT_BLOCK,
                    message="Workflow has no input block",
                )
            )
        if not has_output:
            escalatable.append(
                ValidationIssue(
                    type=IssueType.BEST_PRACTICE,
                    code=ValidationCode.NO_OUTPUT_BLOCK,
                    message="Workflow has no output block",
                )
            )
        if len(input_nodes) > 1:
            warnings.append(
                ValidationIssue(
                    type=IssueType.BEST_PRACTICE,
                    code=ValidationCode.MULTIPLE_INPUT_BLOCKS,
                    message=f"Workflow has {len(input_nodes)} input blocks",
                    node_ids=input_nodes,
                )
            )

        return errors, warnings

    @staticmethod
    def _check_config(definition: WorkflowDefinition) -> list[ValidationIssue]:
        warnings: list[ValidationIssue] = []
        workflow_globals = definition.globals

        if workflow_globals is None or workflow_globals.timeout is None:
            warnings.append(
                ValidationIssue(
                    type=IssueType.CONFIG,
                    code=ValidationCode.NO_GLOBAL_TIMEOUT,
                    message="Workflow has no global timeout",
                )
            )

        has_retry = (
            workflow_globals is not None and workflow_globals.retry_policy is not None
        ) or any(node.retry_policy is not None for node in definition.nodes)
        if not has_retry:
            warnings.append(
                ValidationIssue(
                    type=IssueType.CONFIG,
                    code=ValidationCode.NO_RETRY_POLICY,
                    message="Workflow defines no retry policy",
                )
            )

        return warnings


__all__ = ["WorkflowValidator"]
