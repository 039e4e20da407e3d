"""Filter block."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from blockflow.models.enums import BlockCategory
from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata
from blockflow.services.workflow.context import get_path

if TYPE_CHECKING:
    from blockflow.services.workflow.context import ExecutionContext
    from blockflow.services.workflow.results import NodeExecutionResult

OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "greater_than",
    "less_than",
    "exists",
    "not_exists",
    "in",
    "not_in",
    "regex",
    "and",
    "or",
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(condition: dict[str, Any], data: Any) -> bool:
    """Evaluate one condition (possibly a nested ``and``/``or`` group).

    Raises:
        ValueError: For an unknown operator.
    """
    operator = condition.get("operator", "equals")
    if operator in ("and", "or"):
        nested = condition.get("conditions") or []
        results = (evaluate_condition(c, data) for c in nested)
        return all(results) if operator == "and" else any(results)

    value = condition.get("value")
    actual = get_path(data, condition.get("field") or "")

    match operator:
        case "exists":
            return actual is not None
        case "not_exists":
            return actual is None
        case "equals":
            return actual == value
        case "not_equals":
            return actual != value
        case "contains":
            return isinstance(actual, (str, list)) and value in actual
        case "not_contains":
            return not (isinstance(actual, (str, list)) and value in actual)
        case "greater_than":
            return _is_number(actual) and _is_number(value) and actual > value
        case "less_than":
            return _is_number(actual) and _is_number(value) and actual < value
        case "in":
            return isinstance(value, list) and actual in value
        case "not_in":
            return not (isinstance(value, list) and actual in value)
        case "regex":
            return isinstance(actual, str) and re.search(str(value), actual) is not None
        case _:
            raise ValueError(f"Unknown filter operator '{operator}'")


def evaluate_conditions(conditions: list[dict[str, Any]], data: Any) -> bool:
    """AND of all conditions; an empty list passes everything."""
    return all(evaluate_condition(condition, data) for condition in conditions)


class FilterBlock(BlockExecutor):
    """Keeps the input items that satisfy every condition.

    Config:
        conditions: List of ``{"field", "operator", "value"}`` conditions;
            ``and``/``or`` operators take nested ``conditions``.
        on_fail: ``skip`` (default) drops failing items, ``error`` fails the
            node on the first failing item.

    A single object that fails the conditions yields None.
    """

    block_type = "filter"

    @classmethod
    def metadata(cls) -> BlockMetadata:
        return BlockMetadata(
            type=cls.block_type,
            name="Filter",
            description="Filters items by field conditions",
            category=BlockCategory.FILTER,
            icon="filter",
            config_schema={
                "type": "object",
                "properties": {
                    "conditions": {"type": "array"},
                    "on_fail": {"type": "string", "enum": ["skip", "error"]},
                },
            },
            tags=["filter"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        conditions = config.get("conditions") or []
        on_fail = config.get("on_fail", "skip")
        if on_fail not in ("skip", "error"):
            return self.failure(f"Unsupported on_fail mode '{on_fail}'")

        try:
            if isinstance(input_data, list):
                kept: list[Any] = []
                for index, item in enumerate(input_data):
                    if evaluate_conditions(conditions, item):
                        kept.append(item)
                    elif on_fail == "error":
                        return self.failure(
                            f"Item at index {index} failed filter conditions",
                            details={"index": index},
                        )
                self.log(
                    context,
                    "info",
                    "Filter completed",
                    input_count=len(input_data),
                    output_count=len(kept),
                )
                return self.success(
                    kept,
                    metadata={
                        "input_count": len(input_data),
                        "output_count": len(kept),
                        "filtered_out": len(input_data) - len(kept),
                    },
                )

            passes = evaluate_conditions(conditions, input_data)
        except ValueError as e:
            return self.failure(str(e))

        if not passes and on_fail == "error":
            return self.failure("Input failed filter conditions")
        return self.success(input_data if passes else None, metadata={"passes": passes})


__all__ = ["OPERATORS", "FilterBlock", "evaluate_condition", "evaluate_conditions"]
