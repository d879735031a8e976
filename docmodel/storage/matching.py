"""
Filter matching, update modifiers and sort ordering for the datastore.

This module implements the small query language the datastore accepts:
- Field equality, with dotted paths into nested objects
- Comparison operators ($eq, $ne, $gt, $gte, $lt, $lte, $in, $nin,
  $exists, $regex)
- Logical operators ($and, $or, $not)
- Update modifiers ($set, $unset, $inc, $push) or whole-document replacement
- Multi-key sort specs ({"field": 1 | -1})

Invariants:
    - A list-valued document field matches a scalar condition when any
      element matches
    - Comparisons between incompatible types never match
    - Unknown operators raise StorageError
"""

from __future__ import annotations

import copy
import datetime
import functools
import re
from collections.abc import Mapping
from typing import Any

from ..errors import StorageError
from .codec import normalize_datetime

COMPARISON_OPERATORS = frozenset(
    {"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$exists", "$regex"}
)
LOGICAL_OPERATORS = frozenset({"$and", "$or", "$not"})
UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc", "$push"})

_MISSING = object()


def get_path(doc: Mapping[str, Any], dotted_key: str) -> Any:
    """Read a possibly dotted key; returns _MISSING when absent."""
    cur: Any = doc
    for part in dotted_key.split("."):
        if isinstance(cur, Mapping) and part in cur:
            cur = cur[part]
        else:
            return _MISSING
    return cur


def _set_path(doc: dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    cur = doc
    for part in parts[:-1]:
        if not isinstance(cur.get(part), dict):
            cur[part] = {}
        cur = cur[part]
    cur[parts[-1]] = value


def _unset_path(doc: dict[str, Any], dotted_key: str) -> None:
    parts = dotted_key.split(".")
    cur = doc
    for part in parts[:-1]:
        if not isinstance(cur.get(part), dict):
            return
        cur = cur[part]
    cur.pop(parts[-1], None)


def matches(doc: Mapping[str, Any], query: Mapping[str, Any] | None) -> bool:
    """Whether a document satisfies a filter. An empty filter matches all."""
    if not query:
        return True
    if not isinstance(query, Mapping):
        raise StorageError(f"Filter must be a mapping, got {type(query).__name__}", operation="find")

    for key, cond in query.items():
        if key in LOGICAL_OPERATORS:
            if not _eval_logical(doc, key, cond):
                return False
        elif key.startswith("$"):
            raise StorageError(f"Unknown logical operator: {key}", operation="find")
        elif not _eval_field(get_path(doc, key), cond):
            return False
    return True


def _eval_logical(doc: Mapping[str, Any], op: str, clauses: Any) -> bool:
    if op == "$not":
        if not isinstance(clauses, Mapping):
            raise StorageError("$not requires a single filter object", operation="find")
        return not matches(doc, clauses)

    if not isinstance(clauses, list):
        raise StorageError(f"{op} requires a list of filters", operation="find")
    results = (matches(doc, clause) for clause in clauses)
    return all(results) if op == "$and" else any(results)


def _is_operator_doc(cond: Any) -> bool:
    return isinstance(cond, Mapping) and bool(cond) and all(k.startswith("$") for k in cond)


def _eval_field(value: Any, cond: Any) -> bool:
    if not _is_operator_doc(cond):
        return _equals(value, cond)

    for op, arg in cond.items():
        if op not in COMPARISON_OPERATORS:
            raise StorageError(f"Unknown comparison operator: {op}", operation="find")
        if not _eval_op(value, op, arg):
            return False
    return True


def _normalize_operand(arg: Any) -> Any:
    """Bring filter dates to the form stored dates are read back in."""
    if isinstance(arg, datetime.datetime):
        return normalize_datetime(arg)
    if isinstance(arg, list):
        return [_normalize_operand(item) for item in arg]
    if isinstance(arg, Mapping):
        return {key: _normalize_operand(item) for key, item in arg.items()}
    return arg


def _equals(value: Any, expected: Any) -> bool:
    expected = _normalize_operand(expected)
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return any(item == expected for item in value)
    return value == expected


def _compare(value: Any, op: str, arg: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, list):
        return any(_compare(item, op, arg) for item in value)
    arg = _normalize_operand(arg)
    try:
        if op == "$gt":
            return value > arg
        if op == "$gte":
            return value >= arg
        if op == "$lt":
            return value < arg
        return value <= arg
    except TypeError:
        return False


def _eval_op(value: Any, op: str, arg: Any) -> bool:
    if op == "$eq":
        return _equals(value, arg)
    if op == "$ne":
        return not _equals(value, arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        return _compare(value, op, arg)
    if op in ("$in", "$nin"):
        if not isinstance(arg, (list, tuple, set, frozenset)):
            raise StorageError(f"{op} requires a list", operation="find")
        found = any(_equals(value, candidate) for candidate in arg)
        return found if op == "$in" else not found
    if op == "$exists":
        present = value is not _MISSING
        return present if arg else not present
    # $regex
    if isinstance(arg, re.Pattern):
        pattern = arg
    else:
        try:
            pattern = re.compile(arg)
        except (re.error, TypeError) as e:
            raise StorageError(f"Invalid $regex pattern {arg!r}: {e}", operation="find") from e
    if not isinstance(value, str):
        return False
    return pattern.search(value) is not None


def apply_modifier(doc: Mapping[str, Any], modifier: Mapping[str, Any]) -> dict[str, Any]:
    """Apply an update modifier, returning a new document.

    A modifier without operator keys replaces the whole document. The
    ``_id`` of the original document is always kept.

    Raises:
        StorageError: On unknown operators, mixed operator/field keys, or an
            attempt to change ``_id``
    """
    keys = list(modifier.keys())
    operator_keys = [k for k in keys if k.startswith("$")]

    if not operator_keys:
        if "_id" in modifier and modifier["_id"] != doc.get("_id"):
            raise StorageError("Cannot change a document's _id", operation="update")
        new_doc = copy.deepcopy(dict(modifier))
        new_doc["_id"] = doc.get("_id")
        return new_doc

    if len(operator_keys) != len(keys):
        raise StorageError("Cannot mix modifiers and plain fields", operation="update")

    new_doc = copy.deepcopy(dict(doc))
    for op, changes in modifier.items():
        if op not in UPDATE_OPERATORS:
            raise StorageError(f"Unknown modifier: {op}", operation="update")
        if not isinstance(changes, Mapping):
            raise StorageError(f"{op} requires an object", operation="update")
        if "_id" in changes:
            raise StorageError("Cannot change a document's _id", operation="update")

        for key, value in changes.items():
            if op == "$set":
                _set_path(new_doc, key, value)
            elif op == "$unset":
                _unset_path(new_doc, key)
            elif op == "$inc":
                current = get_path(new_doc, key)
                if current is _MISSING:
                    current = 0
                if not _is_number(current) or not _is_number(value):
                    raise StorageError(f"$inc requires numeric values: {key}", operation="update")
                _set_path(new_doc, key, current + value)
            else:
                current = get_path(new_doc, key)
                if current is _MISSING:
                    current = []
                if not isinstance(current, list):
                    raise StorageError(f"$push requires an array field: {key}", operation="update")
                if isinstance(value, Mapping) and "$each" in value:
                    current.extend(value["$each"])
                else:
                    current.append(value)
                _set_path(new_doc, key, current)
    return new_doc


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type_rank(value: Any) -> int:
    if value is _MISSING or value is None:
        return 0
    if _is_number(value):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, bool):
        return 3
    if isinstance(value, datetime.datetime):
        return 4
    if isinstance(value, list):
        return 5
    return 6


def compare_values(a: Any, b: Any) -> int:
    """Total order over stored values; mixed types are ordered by kind."""
    rank_a, rank_b = _type_rank(a), _type_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    if rank_a == 0:
        return 0
    if rank_a == 5:
        for x, y in zip(a, b):
            result = compare_values(x, y)
            if result:
                return result
        return (len(a) > len(b)) - (len(a) < len(b))
    if rank_a == 6:
        return 0
    return (a > b) - (a < b)


def sort_documents(docs: list[dict[str, Any]], spec: Mapping[str, int]) -> list[dict[str, Any]]:
    """Sort documents by a multi-key spec; stable for ties."""
    if not spec:
        return docs

    for direction in spec.values():
        if direction not in (1, -1):
            raise StorageError(f"Sort direction must be 1 or -1, got {direction!r}", operation="find")

    def _cmp(left: dict[str, Any], right: dict[str, Any]) -> int:
        for key, direction in spec.items():
            result = compare_values(get_path(left, key), get_path(right, key))
            if result:
                return result * direction
        return 0

    return sorted(docs, key=functools.cmp_to_key(_cmp))
