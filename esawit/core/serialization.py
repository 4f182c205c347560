from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import inspect


def json_default(value: Any) -> Any:
    # Encode the scalar types that ORM rows carry but json does not know about.
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any, **kwargs: Any) -> str:
    return json.dumps(value, default=json_default, **kwargs)


def stable_json(value: Any) -> str:
    # Deterministic compact JSON used for cache key suffixes.
    return json.dumps(value, default=json_default, sort_keys=True, separators=(",", ":"))


def to_jsonable(value: Any) -> Any:
    """Round-trip through JSON so payloads hold only JSON-native types."""
    return json.loads(dumps(value))


def row_to_dict(row: Any, *, exclude: set[str] | frozenset[str] = frozenset()) -> dict[str, Any]:
    # Convert an ORM instance into a dict keyed by mapped attribute name.
    mapper = inspect(row).mapper
    return {
        attr.key: getattr(row, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in exclude
    }
