"""JSON encoding helpers for log records and token records."""

from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    Fallback serializer for json.dumps(default=...).

    - datetime/date -> ISO 8601 string
    - timedelta -> seconds as float
    - Enum -> value
    - Path -> string
    - Everything else -> str(), so tokens render through their
      secret-hiding __repr__

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    return str(obj)


__all__ = ["json_serializer"]
