"""Organisational civil-time helpers.

Every "day" in the engine is a calendar date in the organisation's fixed
UTC offset (``settings.ORG_UTC_OFFSET_MINUTES``), never the host's local
zone. Instants are persisted in UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from timekeeper.config import settings

ORG_TZ = settings.org_timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise an instant to aware UTC. Naive values are taken as UTC
    (SQLite hands timestamps back without an offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_org(value: datetime) -> datetime:
    """Express an instant in the organisation offset."""
    return as_utc(value).astimezone(ORG_TZ)


def org_date(value: datetime) -> date:
    """Civil date of an instant in the organisation offset."""
    return to_org(value).date()


def org_today(now: Optional[datetime] = None) -> date:
    return org_date(now or utcnow())


def at_org_time(day: date, wall_clock: time) -> datetime:
    """Instant of *wall_clock* on civil *day* in the organisation offset."""
    return datetime.combine(day, wall_clock.replace(tzinfo=None), tzinfo=ORG_TZ)


def day_start(day: date) -> datetime:
    """Start-of-day instant for a civil date, as exposed at the API boundary."""
    return at_org_time(day, time(0, 0))


def parse_instant(raw: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are organisation-local.

    Raises ``ValueError`` on malformed input.
    """
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ORG_TZ)
    return parsed.astimezone(timezone.utc)


def parse_org_date(raw: str) -> date:
    """Parse a civil date given as ``YYYY-MM-DD`` or as a start-of-day instant."""
    text = raw.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return org_date(parse_instant(text))


def iter_dates(start: date, end: date):
    """Yield each civil date in [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def is_weekly_off(day: date) -> bool:
    return day.weekday() == settings.WEEKLY_OFF_DAY
