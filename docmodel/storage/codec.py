"""
JSON codec for stored documents.

Dates have no JSON representation, so they are written as
``{"$$date": <epoch ms>}`` and read back as timezone-aware UTC datetimes.
"""

from __future__ import annotations

import datetime
import json
from typing import Any

DATE_KEY = "$$date"


def _to_millis(value: datetime.datetime) -> int:
    # Naive datetimes are local time
    return int(value.timestamp() * 1000)


def _from_millis(ms: int) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)


def normalize_datetime(value: datetime.datetime) -> datetime.datetime:
    """The datetime a stored value reads back as: aware UTC, millisecond precision."""
    return _from_millis(_to_millis(value))


def _default(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        return {DATE_KEY: _to_millis(value)}
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and DATE_KEY in obj:
        return _from_millis(obj[DATE_KEY])
    return obj


def encode(doc: dict[str, Any]) -> str:
    """Serialize a document to its stored form."""
    return json.dumps(doc, default=_default, separators=(",", ":"))


def decode(raw: str) -> dict[str, Any]:
    """Deserialize a stored document."""
    return json.loads(raw, object_hook=_object_hook)
