"""Transform blocks."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from blockflow.models.enums import BlockCategory
from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata
from blockflow.services.workflow.context import get_path

if TYPE_CHECKING:
    from blockflow.services.workflow.context import ExecutionContext
    from blockflow.services.workflow.results import NodeExecutionResult


class PassThroughBlock(BlockExecutor):
    """Returns its input unchanged."""

    block_type = "transform.passThrough"

    @classmethod
    def metadata(cls) -> BlockMetadata:
        return BlockMetadata(
            type=cls.block_type,
            name="Pass Through",
            description="Forwards the input unchanged",
            category=BlockCategory.TRANSFORM,
            tags=["transform", "utility"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        return self.success(input_data)


class FieldMappingBlock(BlockExecutor):
    """Applies ordered field operations to an object or a list of objects.

    Config:
        operations: List of operations, applied in order:

            - ``{"type": "map", "field": "a.b", "target_field": "x"}``
              copies a (dotted) field into ``target_field``
            - ``{"type": "rename", "field": "old", "target_field": "new"}``
            - ``{"type": "calculate", "target_field": "x", "operation": op}``
              where ``op`` is ``concat`` (``fields`` plus optional
              ``separator``), ``upper``, ``lower`` or ``length`` (``field``)
            - ``{"type": "deduplicate", "field": "id"}`` for lists

    Unknown operation types are logged and skipped.
    """

    block_type = "transform.fieldMapping"

    @classmethod
    def metadata(cls) -> BlockMetadata:
        return BlockMetadata(
            type=cls.block_type,
            name="Field Mapping",
            description="Maps, renames, calculates and deduplicates fields",
            category=BlockCategory.TRANSFORM,
            icon="shuffle",
            config_schema={
                "type": "object",
                "required": ["operations"],
                "properties": {"operations": {"type": "array"}},
            },
            tags=["transform", "mapping"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        input_data: Any,
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        operations = config.get("operations") or []
        if not isinstance(operations, list):
            return self.failure("config.operations must be a list")
        if not _is_records(input_data):
            return self.failure(
                "Field mapping expects an object or a list of objects",
                details={"input_type": type(input_data).__name__},
            )

        data = copy.deepcopy(input_data)
        applied = 0
        for operation in operations:
            op_type = operation.get("type") if isinstance(operation, dict) else None
            match op_type:
                case "map":
                    data = _each(data, lambda item, op=operation: _map(item, op))
                case "rename":
                    data = _each(data, lambda item, op=operation: _rename(item, op))
                case "calculate":
                    try:
                        data = _each(
                            data, lambda item, op=operation: _calculate(item, op)
                        )
                    except ValueError as e:
                        return self.failure(str(e), details={"operation": operation})
                case "deduplicate":
                    data = _deduplicate(data, operation.get("field") or "id")
                case _:
                    self.log(
                        context,
                        "warning",
                        "Unknown field mapping operation skipped",
                        operation=op_type,
                    )
                    continue
            applied += 1

        return self.success(data, metadata={"operations_applied": applied})


def _is_records(data: Any) -> bool:
    if isinstance(data, dict):
        return True
    return isinstance(data, list) and all(isinstance(item, dict) for item in data)


def _each(data: Any, apply: Any) -> Any:
    if isinstance(data, list):
        return [apply(item) for item in data]
    return apply(data)


def _map(item: dict[str, Any], operation: dict[str, Any]) -> dict[str, Any]:
    source, target = operation.get("field"), operation.get("target_field")
    if not source or not target:
        return item
    item[target] = get_path(item, source)
    return item


def _rename(item: dict[str, Any], operation: dict[str, Any]) -> dict[str, Any]:
    source, target = operation.get("field"), operation.get("target_field")
    if not source or not target or source not in item:
        return item
    item[target] = item.pop(source)
    return item


def _calculate(item: dict[str, Any], operation: dict[str, Any]) -> dict[str, Any]:
    target = operation.get("target_field")
    if not target:
        return item

    match operation.get("operation"):
        case "concat":
            values = [get_path(item, name) for name in operation.get("fields") or []]
            separator = operation.get("separator", "")
            item[target] = separator.join("" if v is None else str(v) for v in values)
        case "upper":
            value = get_path(item, operation.get("field") or "")
            item[target] = value.upper() if isinstance(value, str) else value
        case "lower":
            value = get_path(item, operation.get("field") or "")
            item[target] = value.lower() if isinstance(value, str) else value
        case "length":
            value = get_path(item, operation.get("field") or "")
            item[target] = len(value) if isinstance(value, (str, list, dict)) else 0
        case other:
            raise ValueError(f"Unsupported calculate operation '{other}'")
    return item


def _deduplicate(data: Any, key: str) -> Any:
    if not isinstance(data, list):
        return data
    seen: list[Any] = []
    unique: list[Any] = []
    for item in data:
        value = get_path(item, key)
        # Values may be unhashable (dicts, lists)
        if value in seen:
            continue
        seen.append(value)
        unique.append(item)
    return unique


__all__ = ["FieldMappingBlock", "PassThroughBlock"]
