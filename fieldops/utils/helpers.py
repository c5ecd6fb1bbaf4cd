"""Shared utility functions used by models, services and blueprints."""

import uuid
from datetime import date, datetime, timezone


def new_id() -> str:
    """Return a fresh UUID4 primary key as a string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value):
    """Serialise a date/datetime for JSON output; ``None`` stays ``None``."""
    return value.isoformat() if value else None


def parse_datetime_input(value):
    """Parse an ISO-8601 datetime string, raising ValueError on bad input.

    Accepts a trailing ``Z`` and bare dates (``YYYY-MM-DD`` → midnight UTC).
    Naive values are treated as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError("Invalid datetime format. Use ISO-8601, e.g. 2026-05-01T08:00:00Z.") from exc
    else:
        raise ValueError("Datetime must be an ISO-8601 string")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
