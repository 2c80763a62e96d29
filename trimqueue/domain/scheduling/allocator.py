"""
Slot allocation for a new booking

First-fit over one employee's active timeline: the first gap (in time
order) that fits the requested duration plus the buffer wins, even when a
later gap would pack tighter. With no gap the booking is appended after
the last active booking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from ...models import BookingStatus
from .timeline import TimelineEntry, ensure_not_before_floor, ensure_slot_free

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    join_time: datetime
    end_time: datetime
    initial_status: BookingStatus


def earliest_start(timeline: list[TimelineEntry], now: datetime, buffer: timedelta) -> datetime:
    """Start of the search: now + buffer, pushed past an in-progress service"""
    cursor = now + buffer
    if timeline and timeline[0].status == BookingStatus.IN_SERVICE:
        cursor = max(cursor, timeline[0].end_time + buffer)
    return cursor


def allocate_slot(
    timeline: list[TimelineEntry],
    duration_minutes: int,
    now: datetime,
    buffer: timedelta,
) -> Allocation:
    """
    Compute the earliest feasible interval for a booking of `duration_minutes`.

    `timeline` must be the employee's active bookings ordered by join_time.
    Pure function of its inputs: the same snapshot and `now` always give
    the same interval.
    """
    duration = timedelta(minutes=duration_minutes)
    cursor = earliest_start(timeline, now, buffer)

    join_time = None
    for entry in timeline:
        if cursor + duration + buffer <= entry.join_time:
            join_time = cursor
            break
        # Never move the cursor backwards (an overdue entry may end before now)
        cursor = max(cursor, entry.end_time + buffer)

    if join_time is None:
        join_time = cursor

    end_time = join_time + duration
    ensure_not_before_floor(join_time, now, buffer)
    ensure_slot_free(timeline, join_time, end_time, buffer)

    initial_status = BookingStatus.IN_SERVICE if join_time <= now else BookingStatus.BOOKED
    logger.debug(
        f"Allocated {duration_minutes} min at {join_time.isoformat()} "
        f"against {len(timeline)} active bookings"
    )
    return Allocation(join_time=join_time, end_time=end_time, initial_status=initial_status)
