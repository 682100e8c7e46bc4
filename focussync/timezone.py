"""
focussync/timezone.py
Calendar-day helpers in a user's IANA timezone.

Day bounds run from local midnight to the next local midnight, so on DST
transition days a "day" is 23 or 25 hours long. Never compute the end as
start + 86400.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def is_valid_timezone(name: str) -> bool:
    if not isinstance(name, str) or not name.strip():
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def today_in_tz(tz: str, now: Optional[datetime] = None) -> str:
    """Today's date (YYYY-MM-DD) as seen in tz. `now` must be aware if given."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(tz)).date().isoformat()


def parse_iso_date(value: str) -> Optional[date]:
    """Strict YYYY-MM-DD → date, or None for a bad shape / impossible date."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def date_bounds_epoch(day: str, tz: str) -> Tuple[float, float]:
    """
    Epoch seconds of [local midnight, next local midnight) for `day` in tz.

    Raises:
        ValueError: day is not a valid YYYY-MM-DD date.
    """
    d = parse_iso_date(day)
    if d is None:
        raise ValueError(f"Invalid date: {day!r}")
    zone = ZoneInfo(tz)
    start = datetime(d.year, d.month, d.day, tzinfo=zone)
    nxt = d + timedelta(days=1)
    end = datetime(nxt.year, nxt.month, nxt.day, tzinfo=zone)
    return start.timestamp(), end.timestamp()


def epoch_to_date_str(epoch: float, tz: str) -> str:
    return datetime.fromtimestamp(epoch, ZoneInfo(tz)).date().isoformat()
