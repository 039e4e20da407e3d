"""Branch block."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from blockflow.models.enums import BlockCategory
from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata
from blockflow.services.workflow.blocks.filter import evaluate_condition

if TYPE_CHECKING:
    from blockflow.services.workflow.context import ExecutionContext
    from blockflow.services.workflow.results import NodeExecutionResult


class BranchBlock(BlockExecutor):
    """Routes the input to one of two downstream nodes.

    Config:
        condition: One ``{"field", "operator", "value"}`` condition, or an
            ``and``/``or`` group with nested ``conditions``.
        branches: ``{"true": <node id>, "false": <node id>}``; either side
            may be omitted.

    The output is the input object with ``_branch`` (``"true"`` or
    ``"false"``) and ``_routed_to`` added; a non-object input is placed under
    ``data``. The result metadata carries ``routed_to`` and ``targets``, which
    the orchestrator uses to skip the branch that was not taken.
    """

    block_type = "branch"

    @classmethod
    def metadata(cls) -> BlockMetadata:
        return BlockMetadata(
            type=cls.block_type,
            name="Branch",
            description="Routes data to one of two nodes based on a condition",
            category=BlockCategory.BRANCH,
            icon="git-branch",
            config_schema={
                "type": "object",
                "required": ["condition"],
                "properties": {
                    "condition": {"type": "object"},
                    "branches": {
                        "type": "object",
                        "properties": {
                            "true": {"type": "string"},
                            "false": {"type": "string"},
                        },
                    },
                },
            },
            tags=["branch", "condition", "routing"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        condition = config.get("condition")
        if not isinstance(condition, dict):
            return self.failure("Branch condition is required")
        branches = config.get("branches") or {}
        if not isinstance(branches, dict):
            return self.failure("Branch 'branches' must be an object")

        try:
            matched = evaluate_condition(condition, input_data)
        except ValueError as e:
            return self.failure(str(e))

        branch = "true" if matched else "false"
        routed_to = branches.get(branch)
        output = dict(input_data) if isinstance(input_data, dict) else {"data": input_data}
        output["_branch"] = branch
        output["_routed_to"] = routed_to

        self.log(context, "info", "Branch evaluated", branch=branch, routed_to=routed_to)
        return self.success(
            output,
            metadata={
                "branch_result": matched,
                "routed_to": routed_to,
                "targets": [target for target in branches.values() if target],
            },
        )


__all__ = ["BranchBlock"]
