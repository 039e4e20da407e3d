"""Workflow validation and execution package.

Components:
- Graph / GraphAlgorithms: ordered directed graph and DAG algorithms
- WorkflowValidator: definition checks (structure, graph, schemas, blocks)
- WorkflowOrchestrator: level-based execution with retries and timeouts
- ExecutionContext / ContextFactory: per-run context
- BlockExecutor / BlockRegistry: block contract and catalog
- smart_merge / merge_all: deterministic input merging

Example:
    >>> from blockflow.services.workflow import (
    ...     ContextFactory,
    ...     WorkflowOrchestrator,
    ...     WorkflowValidator,
    ... )
    >>> WorkflowValidator().validate(definition).valid
    True
    >>> context = ContextFactory.create(workflow_id=definition.workflow_id)
    >>> result = await WorkflowOrchestrator().execute(definition, context, {})
"""

from blockflow.services.workflow.algorithms import GraphAlgorithms
from blockflow.services.workflow.blocks import (
    BlockExecutor,
    BlockMetadata,
    BlockRegistry,
    get_registry,
)
from blockflow.services.workflow.context import (
    ContextFactory,
    ExecutionContext,
    interpolate,
)
from blockflow.services.workflow.exceptions import (
    CycleDetectedError,
    DuplicateRegistrationError,
    ErrorKind,
    ExecutionCancelledError,
    JobAlreadyProcessingError,
    JobNotFoundError,
    NodeExecutionError,
    NodeTimeoutError,
    UnknownBlockTypeError,
    WorkflowError,
    WorkflowValidationError,
)
from blockflow.services.workflow.graph import Graph
from blockflow.services.workflow.merge import merge_all, smart_merge
from blockflow.services.workflow.orchestrator import WorkflowOrchestrator
from blockflow.services.workflow.results import (
    NodeError,
    NodeExecutionResult,
    WorkflowRunResult,
)
from blockflow.services.workflow.validator import WorkflowValidator

__all__ = [
    # Graph
    "Graph",
    "GraphAlgorithms",
    # Blocks
    "BlockExecutor",
    "BlockMetadata",
    "BlockRegistry",
    "get_registry",
    # Context
    "ContextFactory",
    "ExecutionContext",
    "interpolate",
    # Engine
    "WorkflowOrchestrator",
    "WorkflowValidator",
    "merge_all",
    "smart_merge",
    # Results
    "NodeError",
    "NodeExecutionResult",
    "WorkflowRunResult",
    # Exceptions
    "CycleDetectedError",
    "DuplicateRegistrationError",
    "ErrorKind",
    "ExecutionCancelledError",
    "JobAlreadyProcessingError",
    "JobNotFoundError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "UnknownBlockTypeError",
    "WorkflowError",
    "WorkflowValidationError",
]
