from __future__ import annotations

import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_iso_date(value) -> bool:
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_iso_date(value: str) -> date:
    if not is_iso_date(value):
        raise ValueError(f"Not a YYYY-MM-DD date: {value!r}")
    return date.fromisoformat(value)


def to_iso_date(value: date) -> str:
    return value.isoformat()


def today_iso_date(tz_name: str | None = None) -> str:
    """Calendar date "now" in the given timezone (settings.timezone by default)."""
    if tz_name is None:
        from recurrence_core.config import settings

        tz_name = settings.timezone
    return datetime.now(ZoneInfo(tz_name)).date().isoformat()
