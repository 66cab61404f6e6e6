from __future__ import annotations

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Tuple

from tripdesk.core.errors import ValidationFailedError


def extract(record: Any, key: str, default: Any | None = None) -> Any:
    """Read ``key`` from a Prisma model or a plain dict."""
    if record is None:
        return default
    if isinstance(record, dict):
        value = record.get(key, default)
    else:
        value = getattr(record, key, default)
    return default if value is None else value


def as_dict(record: Any) -> Dict[str, Any]:
    if record is None:
        return {}
    if isinstance(record, dict):
        return dict(record)
    dump = getattr(record, "model_dump", None)
    if callable(dump):
        return dump()
    return dict(vars(record))


def to_number(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def optional_number(value: Any) -> float | None:
    if value is None:
        return None
    return to_number(value)


def full_name(person: Any, fallback: str = "Unknown") -> str:
    if not person:
        return fallback
    first = extract(person, "first_name", "")
    last = extract(person, "last_name", "")
    name = " ".join(part for part in (first, last) if part).strip()
    return name or fallback


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def as_datetime(value: date | datetime | None) -> datetime | None:
    """Promote a calendar date to midnight UTC; datetimes are made aware."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def start_of_today() -> datetime:
    now = utcnow()
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


def iso(value: Any) -> str | None:
    if isinstance(value, datetime):
        return ensure_aware(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def iso_date(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def total_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return math.ceil(total / page_size)


def page_window(page: int, page_size: int) -> Tuple[int, int]:
    """Return ``(skip, take)`` for a 1-based page."""
    page = max(page, 1)
    return (page - 1) * page_size, page_size


def insensitive(term: str) -> Dict[str, Any]:
    return {"contains": term, "mode": "insensitive"}


def normalise_code(code: str) -> str:
    return "_".join(code.strip().upper().split())


def parse_month(month: str) -> Tuple[datetime, datetime]:
    """Return the ``[start, end)`` UTC bounds of a ``YYYY-MM`` month."""
    try:
        start = datetime.strptime(month, "%Y-%m").replace(tzinfo=timezone.utc)
    except (TypeError, ValueError) as exc:
        raise ValidationFailedError("Month must use the YYYY-MM format") from exc
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def month_key(value: datetime) -> str:
    return ensure_aware(value).strftime("%Y-%m")


def display_month(month: str) -> str:
    start, _ = parse_month(month)
    return start.strftime("%B %Y")
