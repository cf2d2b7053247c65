from __future__ import annotations

from datetime import UTC, datetime


def serialize_datetime(value: datetime) -> str:
    """ISO 8601 text; naive values are stored as UTC and labelled so."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC).isoformat()
    return value.isoformat()
