"""
Filter matching and ordering shared by the document store backends.

Both backends load candidate documents and evaluate filters in Python, so
a query behaves identically whichever backend is configured.

Supported filter syntax:
    {"field": value}                  equality; array fields match on membership
    {"a.b": value}                    dotted paths into nested mappings
    {"field": {"$op": operand, ...}}  $eq $ne $gt $gte $lt $lte $in $nin
                                      $exists $regex (+ $options) $elemMatch
    {"$and": [...]} {"$or": [...]} {"$nor": [...]}

Invariants:
    - Comparisons between incompatible types never match (no TypeError)
    - A missing field equals None
    - Sorting is stable and orders missing < None < bool < number < text < other
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .base import DESCENDING, Document, DuplicateKeyError, Query, SortSpec

_MISSING = object()


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path; returns the _MISSING sentinel when absent."""
    current: Any = document
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _is_operator_block(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and len(condition) > 0
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_equals(item, expected) for item in value)
    if isinstance(value, bool) != isinstance(expected, bool):
        return False
    return value == expected


def _compare(value: Any, operand: Any, op: str) -> bool:
    if value is _MISSING or value is None or operand is None:
        return False
    if isinstance(value, list):
        return any(_compare(item, operand, op) for item in value)
    if isinstance(value, bool) != isinstance(operand, bool):
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        return value <= operand
    except TypeError:
        return False


def _compile_regex(pattern: Any, options: Any) -> re.Pattern:
    if not isinstance(pattern, str) or not isinstance(options, str):
        raise ValueError("$regex and $options must be strings")
    flags = 0
    if "i" in options:
        flags |= re.IGNORECASE
    if "m" in options:
        flags |= re.MULTILINE
    if "s" in options:
        flags |= re.DOTALL
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise ValueError(f"Invalid $regex {pattern!r}: {e}") from None


def _regex(value: Any, regex: re.Pattern) -> bool:
    if isinstance(value, list):
        return any(_regex(item, regex) for item in value)
    if not isinstance(value, str):
        return False
    return regex.search(value) is not None


def _operand_list(op: str, operand: Any) -> list[Any]:
    if not isinstance(operand, (list, tuple)):
        raise ValueError(f"{op} requires a list, got {type(operand).__name__}")
    return list(operand)


def _subqueries(op: str, operand: Any) -> list[Mapping[str, Any]]:
    subs = _operand_list(op, operand)
    if not all(isinstance(sub, Mapping) for sub in subs):
        raise ValueError(f"{op} requires a list of objects")
    return subs


def _match_operators(value: Any, condition: Mapping[str, Any]) -> bool:
    for op, operand in condition.items():
        if op == "$eq":
            ok = _equals(value, operand)
        elif op == "$ne":
            ok = not _equals(value, operand)
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(value, operand, op)
        elif op == "$in":
            ok = any(_equals(value, candidate) for candidate in _operand_list(op, operand))
        elif op == "$nin":
            ok = not any(
                _equals(value, candidate) for candidate in _operand_list(op, operand)
            )
        elif op == "$exists":
            ok = (value is not _MISSING) == bool(operand)
        elif op == "$regex":
            ok = _regex(value, _compile_regex(operand, condition.get("$options", "")))
        elif op == "$options":
            continue
        elif op == "$elemMatch":
            if not isinstance(operand, Mapping):
                raise ValueError("$elemMatch requires an object")
            ok = isinstance(value, list) and any(
                isinstance(item, Mapping) and matches(item, operand) for item in value
            )
        else:
            raise ValueError(f"Unsupported query operator: {op}")
        if not ok:
            return False
    return True


def matches(document: Mapping[str, Any], query: Query | None) -> bool:
    """Evaluate a filter against a document.

    Raises:
        ValueError: If the filter uses an unsupported operator or a
            malformed operand
    """
    if not query:
        return True
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in _subqueries(key, condition)):
                return False
        elif key == "$or":
            if not any(matches(document, sub) for sub in _subqueries(key, condition)):
                return False
        elif key == "$nor":
            if any(matches(document, sub) for sub in _subqueries(key, condition)):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unsupported query operator: {key}")
        else:
            value = get_path(document, key)
            if _is_operator_block(condition):
                if not _match_operators(value, condition):
                    return False
            elif not _equals(value, condition):
                return False
    return True


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is _MISSING:
        return (0, 0)
    if value is None:
        return (1, 0)
    if isinstance(value, bool):
        return (2, value)
    if isinstance(value, (int, float)):
        return (3, value)
    if isinstance(value, str):
        return (4, value)
    return (5, repr(value))


def sort_documents(documents: Iterable[Document], sort: SortSpec | None) -> list[Document]:
    """Order documents by one or more keys, stable for ties."""
    ordered = list(documents)
    for path, direction in reversed(list(sort or ())):
        ordered.sort(
            key=lambda doc: _sort_key(get_path(doc, path)),
            reverse=direction == DESCENDING,
        )
    return ordered


def window(documents: Sequence[Document], skip: int = 0, limit: int | None = None) -> list[Document]:
    """Apply skip/limit to an ordered sequence."""
    start = max(skip, 0)
    if limit is None:
        return list(documents[start:])
    return list(documents[start:start + max(limit, 0)])


def check_unique(
    collection: str,
    candidate: Mapping[str, Any],
    others: Iterable[Mapping[str, Any]],
    unique_fields: Sequence[str],
) -> None:
    """Ensure ``candidate`` does not duplicate a unique value held by ``others``.

    None and missing values are never considered duplicates.

    Raises:
        DuplicateKeyError: On the first collision
    """
    if not unique_fields:
        return
    others = list(others)
    for path in unique_fields:
        value = get_path(candidate, path)
        if value is _MISSING or value is None:
            continue
        for other in others:
            existing = get_path(other, path)
            if isinstance(existing, bool) == isinstance(value, bool) and existing == value:
                raise DuplicateKeyError(collection, path, value)


def apply_set(document: Mapping[str, Any], values: Mapping[str, Any]) -> Document:
    """Return a copy of ``document`` with top-level ``values`` merged in."""
    updated = dict(document)
    updated.update(values)
    return updated
