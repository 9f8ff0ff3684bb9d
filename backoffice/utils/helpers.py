"""Shared utility functions for services and blueprints.

parse_date:   returns None on bad input
parse_bool:   query-string booleans ("true"/"1"/"yes")
paginate:     count + page slice for a select() statement
"""
import math
from datetime import date, datetime, time, timezone

from sqlalchemy import func, select

from backoffice.models import db

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def day_start(value):
    """Timezone-aware datetime at 00:00 UTC for a date-ish value, or None."""
    d = parse_date(value)
    return datetime.combine(d, time.min, tzinfo=timezone.utc) if d else None


def day_end(value):
    """Timezone-aware datetime at 23:59:59.999999 UTC for a date-ish value, or None."""
    d = parse_date(value)
    return datetime.combine(d, time.max, tzinfo=timezone.utc) if d else None


def parse_bool(value):
    """Query-string boolean. Returns None when the value is absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def paginate(stmt, page=1, limit=DEFAULT_PAGE_SIZE):
    """Run ``stmt`` for one page and count the full result.

    Returns ``(items, pagination)`` where pagination carries
    ``total_count``, ``total_pages``, ``current_page`` and ``limit``.
    """
    try:
        page = max(int(page or 1), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE

    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    items = db.session.execute(
        stmt.offset((page - 1) * limit).limit(limit)
    ).scalars().all()

    return items, {
        "total_count": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "limit": limit,
    }
