"""Quiet-hours window arithmetic for outbound parent notifications.

Windows are configured as wall-clock ``HH:MM`` strings in the academy's civil
timezone and may wrap past midnight (``21:00``-``08:00``). A window whose start
equals its end has zero length and is never quiet.

``now`` is always passed in so the functions stay pure. A naive ``now`` is read
as UTC.
"""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from academy.core.settings import settings
from academy.db.base import as_utc


def parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":", 1)
    return time(int(hours), int(minutes))


def _zone(tz: Optional[str]) -> ZoneInfo:
    return ZoneInfo(tz or settings.academy_timezone)


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def is_in_quiet_hours(start: str, end: str, now: datetime, *, tz: Optional[str] = None) -> bool:
    """Return True if ``now`` falls inside the [start, end) window in local time."""
    local_now = as_utc(now).astimezone(_zone(tz))
    current = local_now.hour * 60 + local_now.minute
    start_minutes = _minutes(parse_hhmm(start))
    end_minutes = _minutes(parse_hhmm(end))

    if start_minutes == end_minutes:
        return False
    if start_minutes < end_minutes:
        return start_minutes <= current < end_minutes
    # Window crosses midnight.
    return current >= start_minutes or current < end_minutes


def next_quiet_hours_end(end: str, now: datetime, *, tz: Optional[str] = None) -> datetime:
    """Return the next UTC instant (strictly after ``now``) at which the local clock reads ``end``."""
    zone = _zone(tz)
    now = as_utc(now)
    end_time = parse_hhmm(end)
    local_date = now.astimezone(zone).date()

    candidate = datetime.combine(local_date, end_time, tzinfo=zone)
    if candidate <= now:
        candidate = datetime.combine(local_date + timedelta(days=1), end_time, tzinfo=zone)
    return candidate.astimezone(timezone.utc)


def resolve_scheduled_at(
    *,
    quiet_hours_enabled: bool,
    start: str,
    end: str,
    now: datetime,
    tz: Optional[str] = None,
) -> datetime:
    now = as_utc(now)
    if quiet_hours_enabled and is_in_quiet_hours(start, end, now, tz=tz):
        return next_quiet_hours_end(end, now, tz=tz)
    return now
