"""Smart merge of node outputs.

Upstream outputs feeding one node are combined with ``smart_merge``:

- dicts merge recursively, the later value wins for scalars
- lists holding records with an identifier (``id``, ``_id`` or ``uuid``)
  merge record-by-record: equal identifiers are deep-merged, new
  identifiers are appended, records without an identifier are appended
- any other lists are concatenated, earlier list first

Neither argument is mutated; the result shares no containers with them.
"""

from __future__ import annotations

import copy
from collections.abc import Hashable, Iterable
from typing import Any

IDENTIFIER_KEYS: tuple[str, ...] = ("id", "_id", "uuid")

_MISSING = object()


def _identity(item: Any) -> Hashable | None:
    """Identifier of a record, or None when it has none."""
    if not isinstance(item, dict):
        return None
    for key in IDENTIFIER_KEYS:
        value = item.get(key, _MISSING)
        if value is _MISSING or value is None:
            continue
        if isinstance(value, Hashable):
            return value
        return None
    return None


def has_identifiers(items: Iterable[Any]) -> bool:
    """True if any item is a dict carrying an identifier key."""
    return any(_identity(item) is not None for item in items)


def _merge_lists(target: list[Any], source: list[Any]) -> list[Any]:
    if not has_identifiers([*target, *source]):
        return copy.deepcopy(target) + copy.deepcopy(source)

    merged = [copy.deepcopy(item) for item in target]
    positions: dict[Hashable, int] = {}
    for index, item in enumerate(merged):
        identity = _identity(item)
        if identity is not None:
            positions.setdefault(identity, index)

    for item in source:
        identity = _identity(item)
        if identity is None:
            merged.append(copy.deepcopy(item))
        elif identity in positions:
            index = positions[identity]
            merged[index] = smart_merge(merged[index], item)
        else:
            positions[identity] = len(merged)
            merged.append(copy.deepcopy(item))

    return merged


def smart_merge(target: Any, source: Any) -> Any:
    """Merge ``source`` into a copy of ``target``.

    Args:
        target: Earlier value (e.g. output of the first upstream edge).
        source: Later value; wins for scalars and type mismatches.

    Returns:
        A new merged value.

    Example:
        >>> smart_merge(
        ...     {"contacts": [{"id": 1, "a": 1}]},
        ...     {"contacts": [{"id": 1, "b": 2}, {"id": 2, "c": 3}]},
        ... )
        {'contacts': [{'id': 1, 'a': 1, 'b': 2}, {'id': 2, 'c': 3}]}
    """
    if isinstance(target, dict) and isinstance(source, dict):
        merged = {key: copy.deepcopy(value) for key, value in target.items()}
        for key, value in source.items():
            if key in merged:
                merged[key] = smart_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    if isinstance(target, list) and isinstance(source, list):
        return _merge_lists(target, source)

    return copy.deepcopy(source)


def merge_all(values: Iterable[Any]) -> Any:
    """Left fold of ``smart_merge`` over values, ignoring None.

    Returns:
        The merged value, or None when no value was given.
    """
    result: Any = None
    seen = False
    for value in values:
        if value is None:
            continue
        result = smart_merge(result, value) if seen else copy.deepcopy(value)
        seen = True
    return result


__all__ = ["IDENTIFIER_KEYS", "has_identifiers", "merge_all", "smart_merge"]
