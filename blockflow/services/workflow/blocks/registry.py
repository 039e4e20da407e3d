"""Block registry.

Maps block type strings to executor classes and catalog metadata. The
process-wide instance returned by ``get_registry`` is seeded with the
built-in blocks on first use.

Registration is a startup concern: mutating the registry while runs are
looking blocks up is not guarded.
"""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Any

from blockflow.core.logging import get_logger
from blockflow.models.enums import BlockCategory
from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata
from blockflow.services.workflow.exceptions import DuplicateRegistrationError

logger = get_logger(__name__)

_METADATA_FIELDS = {f.name for f in fields(BlockMetadata)} - {"type", "executor_class"}


class BlockRegistry:
    """Registry for block lookup and instantiation.

    Iteration order is registration order.

    Example:
        registry = BlockRegistry()
        registry.register("custom.echo", EchoBlock, {"category": "custom"})
        executor = registry.create("custom.echo")
    """

    def __init__(self, *, with_builtins: bool = True) -> None:
        """Initialize the registry.

        Args:
            with_builtins: Register the built-in blocks.
        """
        self._entries: dict[str, BlockMetadata] = {}
        if with_builtins:
            self._register_defaults()

    def _register_defaults(self) -> None:
        """Register the built-in block types."""
        # Import here to avoid circular dependencies
        from blockflow.services.workflow.blocks.branch import BranchBlock
        from blockflow.services.workflow.blocks.filter import FilterBlock
        from blockflow.services.workflow.blocks.input import StaticInputBlock
        from blockflow.services.workflow.blocks.output import LoggerOutputBlock
        from blockflow.services.workflow.blocks.transform import (
            FieldMappingBlock,
            PassThroughBlock,
        )

        for block_class in (
            StaticInputBlock,
            LoggerOutputBlock,
            PassThroughBlock,
            FieldMappingBlock,
            FilterBlock,
            BranchBlock,
        ):
            self.register(block_class.block_type, block_class, block_class.metadata())

    def register(
        self,
        block_type: str,
        executor_class: type[BlockExecutor],
        metadata: BlockMetadata | dict[str, Any] | None = None,
        *,
        override: bool = False,
    ) -> None:
        """Register an executor class for a block type.

        Args:
            block_type: Dotted type string (e.g. ``transform.passThrough``).
            executor_class: Executor class, instantiated per node run.
            metadata: Full or partial catalog metadata; defaults to the
                metadata declared by the executor class.
            override: Replace an existing registration instead of failing.

        Raises:
            DuplicateRegistrationError: If the type exists and override is False.
        """
        if block_type in self._entries and not override:
            raise DuplicateRegistrationError(block_type)

        if metadata is None:
            metadata = executor_class.metadata()
        if isinstance(metadata, BlockMetadata):
            entry = replace(metadata, type=block_type, executor_class=executor_class)
        else:
            partial = {
                key: value
                for key, value in (metadata or {}).items()
                if key in _METADATA_FIELDS
            }
            entry = BlockMetadata(
                type=block_type, executor_class=executor_class, **partial
            )

        if block_type in self._entries:
            logger.warning(
                "Block type re-registered",
                extra={"context": {"block_type": block_type}},
            )
        self._entries[block_type] = entry

    def unregister(self, block_type: str) -> bool:
        """Remove a block type.

        Returns:
            True if the type was registered.
        """
        return self._entries.pop(block_type, None) is not None

    def clear(self) -> None:
        """Remove every registration."""
        self._entries.clear()

    def has(self, block_type: str) -> bool:
        """Check if a block type is registered."""
        return block_type in self._entries

    def create(self, block_type: str, *args: Any, **kwargs: Any) -> BlockExecutor | None:
        """Create a new executor instance.

        Args:
            block_type: Registered type string.
            *args: Positional constructor arguments.
            **kwargs: Keyword constructor arguments.

        Returns:
            The executor, or None when the type is unknown.
        """
        entry = self._entries.get(block_type)
        if entry is None or entry.executor_class is None:
            return None
        return entry.executor_class(*args, **kwargs)

    def get_metadata(self, block_type: str) -> BlockMetadata | None:
        """Metadata for a block type, or None."""
        return self._entries.get(block_type)

    def get_all_metadata(self) -> list[BlockMetadata]:
        """Metadata of every registered type."""
        return list(self._entries.values())

    def get_by_category(self, category: BlockCategory | str) -> list[BlockMetadata]:
        """Metadata of every type in a category."""
        wanted = BlockCategory(category)
        return [entry for entry in self._entries.values() if entry.category == wanted]

    def list(self) -> list[str]:
        """All registered type strings."""
        return list(self._entries)

    def __contains__(self, block_type: object) -> bool:
        """Check if a block type is registered."""
        return block_type in self._entries

    def __len__(self) -> int:
        """Number of registered types."""
        return len(self._entries)


# Module-level singleton for convenience
_registry: BlockRegistry | None = None


def get_registry() -> BlockRegistry:
    """Get the global block registry singleton.

    Returns:
        The global BlockRegistry instance (creates on first call)
    """
    global _registry
    if _registry is None:
        _registry = BlockRegistry()
    return _registry


__all__ = ["BlockRegistry", "get_registry"]
