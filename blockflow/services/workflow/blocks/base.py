"""Block executor contract and catalog metadata.

A block is the executable unit of a workflow node. Executors implement
``execute(config, input_data, context)`` and report expected failures as a
``NodeExecutionResult`` with status FAILED instead of raising.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from blockflow.models.enums import BlockCategory, ExecutionStatus
from blockflow.services.workflow.exceptions import ErrorKind
from blockflow.services.workflow.results import NodeError, NodeExecutionResult

if TYPE_CHECKING:
    from blockflow.services.workflow.context import ExecutionContext

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class BlockMetadata:
    """Registry entry describing a block type.

    Attributes:
        type: Dotted block type (e.g. ``input.static``).
        name: Display name; defaults to the type.
        description: Human description.
        category: Catalog category.
        version: Block version.
        icon: Optional icon name for UIs.
        config_schema: JSON schema of the block config.
        input_schema: JSON schema of the block input.
        output_schema: JSON schema of the block output.
        tags: Catalog tags.
        executor_class: Factory producing new executor instances.
    """

    type: str
    name: str = ""
    description: str = ""
    category: BlockCategory = BlockCategory.CUSTOM
    version: str = "1.0.0"
    icon: str | None = None
    config_schema: dict[str, Any] | None = None
    input_schema: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None
    tags: list[str] = field(default_factory=list)
    executor_class: type[BlockExecutor] | None = None

    def __post_init__(self) -> None:
        self.name = self.name or self.type
        self.category = BlockCategory(self.category)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the block catalog (the factory is omitted)."""
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "category": str(self.category),
            "version": self.version,
            "icon": self.icon,
            "config_schema": self.config_schema,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
            "tags": list(self.tags),
        }


class BlockExecutor(ABC):
    """Abstract base class for all block executors.

    Subclasses set ``block_type`` and implement ``execute``. Unexpected
    exceptions may escape ``execute``; the orchestrator converts them into
    a failed result.

    Example:
        class UppercaseBlock(BlockExecutor):
            block_type = "transform.uppercase"

            async def execute(self, config, input_data, context):
                return self.success({"text": input_data["text"].upper()})
    """

    block_type: ClassVar[str] = ""

    def get_type(self) -> str:
        """Registered type string of this executor."""
        return self.block_type or type(self).__name__

    @classmethod
    def metadata(cls) -> BlockMetadata:
        """Catalog metadata declared by the class.

        The default uses the first docstring line as description.
        """
        doc = (cls.__doc__ or "").strip()
        return BlockMetadata(
            type=cls.block_type,
            description=doc.splitlines()[0] if doc else "",
        )

    @abstractmethod
    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        """Run the block.

        Args:
            config: Node configuration with placeholders resolved.
            input_data: Merged upstream output (or the workflow input).
            context: The run context.

        Returns:
            The node result; the orchestrator fills in node id and timings.
        """

    # =========================================================================
    # Helpers
    # =========================================================================

    def success(
        self,
        output: Any,
        *,
        metadata: dict[str, Any] | None = None,
        logs: list[str] | None = None,
    ) -> NodeExecutionResult:
        """Build a completed result."""
        now = datetime.now(UTC)
        return NodeExecutionResult(
            node_id="",
            status=ExecutionStatus.COMPLETED,
            output=output,
            block_type=self.get_type(),
            start_time=now,
            end_time=now,
            metadata=dict(metadata or {}),
            logs=list(logs or []),
        )

    def failure(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.NODE_EXECUTION_FAILED,
        details: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> NodeExecutionResult:
        """Build a failed result carrying a structured error."""
        now = datetime.now(UTC)
        return NodeExecutionResult(
            node_id="",
            status=ExecutionStatus.FAILED,
            error=NodeError(kind=kind, message=message, details=dict(details or {})),
            block_type=self.get_type(),
            start_time=now,
            end_time=now,
            metadata=dict(metadata or {}),
        )

    def log(
        self,
        context: ExecutionContext,
        level: str,
        message: str,
        **data: Any,
    ) -> None:
        """Log through the run logger with the block type attached."""
        context.logger.log(
            _LEVELS.get(level.lower(), logging.INFO),
            message,
            extra={"context": {"block_type": self.get_type(), **data}},
        )

    @staticmethod
    def validate_data(data: Any, schema: dict[str, Any] | None) -> list[str]:
        """Check data against a JSON schema (draft 2020-12).

        Returns:
            Error messages prefixed with the JSON path of the offending
            value; empty when the data matches or no schema is given.
        """
        if not schema:
            return []
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            return [f"invalid schema: {e.message}"]

        validator = Draft202012Validator(schema)
        errors = sorted(validator.iter_errors(data), key=lambda error: error.json_path)
        return [f"{error.json_path}: {error.message}" for error in errors]


__all__ = ["BlockExecutor", "BlockMetadata"]
