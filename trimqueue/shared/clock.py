"""
Time source and display helpers

All instants handled by the scheduling core are naive UTC datetimes, the
same convention the database columns use. The canonical shop timezone is
applied only when rendering times or deciding which calendar day an
instant falls on.
"""

import math
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from ..config import SHOP_TIMEZONE

SHOP_ZONE = ZoneInfo(SHOP_TIMEZONE)


def utc_now() -> datetime:
    """Current instant as naive UTC. Capture once per request and pass it down."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def minutes(value: int) -> timedelta:
    return timedelta(minutes=value)


def to_local(instant: datetime) -> datetime:
    """Convert a naive UTC instant to the shop timezone"""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(SHOP_ZONE)


def from_local(local: datetime) -> datetime:
    """Convert a shop-local wall time (naive or aware) back to a naive UTC instant"""
    if local.tzinfo is None:
        local = local.replace(tzinfo=SHOP_ZONE)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_date(instant: datetime) -> date:
    return to_local(instant).date()


def local_day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC instants [start, end) covering one calendar day in the shop timezone"""
    start = from_local(datetime(day.year, day.month, day.day))
    return start, from_local(datetime(day.year, day.month, day.day) + timedelta(days=1))


def minutes_until(target: datetime, now: datetime) -> int:
    """Whole minutes from now until target, rounded up, never negative"""
    seconds = (target - now).total_seconds()
    return max(0, math.ceil(seconds / 60))


def format_24h(instant: datetime) -> str:
    return to_local(instant).strftime("%Y-%m-%d %H:%M:%S")


def format_12h(instant: datetime) -> str:
    return to_local(instant).strftime("%b %d, %Y - %I:%M %p")


def format_clock(instant: datetime) -> str:
    """Short 12-hour time, e.g. 10:05 AM"""
    return to_local(instant).strftime("%I:%M %p")


def format_hhmm(instant: datetime) -> str:
    return to_local(instant).strftime("%H:%M")


def format_timestamp(instant: datetime) -> str:
    return to_local(instant).strftime("%Y-%m-%d %H:%M:%S %Z")


def display_times(join_time: datetime, end_time: datetime) -> dict:
    return {
        "join_time": format_24h(join_time),
        "end_time": format_24h(end_time),
        "join_time_display": format_12h(join_time),
        "end_time_display": format_12h(end_time),
    }
