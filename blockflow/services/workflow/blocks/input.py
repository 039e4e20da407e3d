"""Input blocks."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from blockflow.models.enums import BlockCategory
from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata

if TYPE_CHECKING:
    from blockflow.services.workflow.context import ExecutionContext
    from blockflow.services.workflow.results import NodeExecutionResult


class StaticInputBlock(BlockExecutor):
    """Returns the static data defined in ``config["data"]``."""

    block_type = "input.static"

    @classmethod
    def metadata(cls) -> BlockMetadata:
        return BlockMetadata(
            type=cls.block_type,
            name="Static Input",
            description="Returns static data from the block configuration",
            category=BlockCategory.INPUT,
            icon="database",
            config_schema={
                "type": "object",
                "required": ["data"],
                "properties": {"data": {}},
            },
            tags=["input", "testing"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        if "data" not in config:
            self.log(context, "error", "Static input block requires config.data")
            return self.failure("Static input block requires config.data")

        self.log(context, "debug", "Returning static data")
        return self.success(copy.deepcopy(config["data"]))


__all__ = ["StaticInputBlock"]
