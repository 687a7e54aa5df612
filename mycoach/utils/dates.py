"""Calendar-date helpers shared by the store, migrations, and statistics."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Older documents stored whatever the browser locale produced.
_LEGACY_DATE_FORMATS = ('%m/%d/%Y', '%d.%m.%Y', '%Y/%m/%d')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the configured timezone, defaulting to UTC for unknown names."""

    if not name or name.upper() == 'UTC':
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning('Unknown timezone %r; using UTC for calendar dates', name)
        return timezone.utc


def local_today(clock: Clock, tz: tzinfo) -> date:
    """Calendar date of ``clock()`` as seen from ``tz``."""

    now = clock()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz).date()


def parse_calendar_date(value: Any) -> Optional[date]:
    """Coerce ISO or legacy locale date strings into a ``date``.

    Returns ``None`` when the value cannot be interpreted.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    for fmt in _LEGACY_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def previous_day(day: date) -> date:
    return day - timedelta(days=1)
