"""Output blocks."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from blockflow.models.enums import BlockCategory
from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata

if TYPE_CHECKING:
    from blockflow.services.workflow.context import ExecutionContext
    from blockflow.services.workflow.results import NodeExecutionResult

_ALLOWED_LEVELS = ("debug", "info", "warning", "error")


class LoggerOutputBlock(BlockExecutor):
    """Logs its input through the run logger and passes it through.

    Config:
        message: Log message (default ``"Workflow output"``).
        level: ``debug``, ``info`` (default), ``warning`` or ``error``.
    """

    block_type = "output.logger"

    @classmethod
    def metadata(cls) -> BlockMetadata:
        return BlockMetadata(
            type=cls.block_type,
            name="Logger Output",
            description="Logs the received data and passes it through",
            category=BlockCategory.OUTPUT,
            icon="terminal",
            config_schema={
                "type": "object",
                "properties": {
                    "message": {"type": "string"},
                    "level": {"type": "string", "enum": list(_ALLOWED_LEVELS)},
                },
            },
            tags=["output", "debugging"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        level = str(config.get("level", "info")).lower()
        if level not in _ALLOWED_LEVELS:
            return self.failure(
                f"Unsupported log level '{level}'",
                details={"allowed": list(_ALLOWED_LEVELS)},
            )

        message = config.get("message") or "Workflow output"
        payload = json.dumps(input_data, default=str)
        self.log(context, level, str(message), output=payload)
        return self.success(input_data, metadata={"logged_bytes": len(payload)})


__all__ = ["LoggerOutputBlock"]
