"""Employee timeline snapshot and the invariants every writer must keep"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ...exceptions import InvariantViolation
from ...models import ACTIVE_STATUSES, BookingStatus


@dataclass(frozen=True)
class TimelineEntry:
    """Immutable view of one booking as seen by the scheduling algorithms"""

    booking_id: int
    join_time: datetime
    end_time: datetime
    duration_minutes: int
    status: BookingStatus
    customer_id: Optional[int] = None

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @classmethod
    def from_booking(cls, booking) -> "TimelineEntry":
        return cls(
            booking_id=booking.id,
            join_time=booking.join_time,
            end_time=booking.end_time,
            duration_minutes=booking.service_duration_minutes,
            status=BookingStatus(booking.status),
            customer_id=booking.customer_id,
        )


def build_timeline(entries: Iterable[TimelineEntry]) -> list[TimelineEntry]:
    """Active entries ordered by start time (id breaks ties deterministically)"""
    active = [e for e in entries if e.status in ACTIVE_STATUSES]
    return sorted(active, key=lambda e: (e.join_time, e.booking_id))


def ensure_slot_free(
    timeline: list[TimelineEntry],
    join_time: datetime,
    end_time: datetime,
    buffer: timedelta,
    ignore_ids: Iterable[int] = (),
) -> None:
    """Raise if [join_time, end_time) overlaps an active entry or breaks the buffer"""
    ignored = set(ignore_ids)
    for entry in timeline:
        if entry.booking_id in ignored:
            continue
        # Intervals must be separated by at least the buffer on both sides
        if join_time < entry.end_time + buffer and entry.join_time < end_time + buffer:
            raise InvariantViolation(
                f"interval {join_time:%H:%M}-{end_time:%H:%M} collides with booking "
                f"{entry.booking_id} ({entry.join_time:%H:%M}-{entry.end_time:%H:%M})"
            )


def ensure_not_before_floor(join_time: datetime, now: datetime, buffer: timedelta) -> None:
    if join_time < now + buffer:
        raise InvariantViolation(
            f"join time {join_time.isoformat()} is earlier than now + buffer ({(now + buffer).isoformat()})"
        )
