"""
Read-only queue estimates for display

Forward-simulates an employee's active bookings from `now` to predict when
each one will really start and when the queue drains. Nothing here writes
to the database, so it can run over many employees of many shops at once.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ...models import BookingStatus
from ...shared.clock import minutes_until
from .timeline import TimelineEntry

AVAILABLE = "Available"
READY_FOR_NEXT = "Ready for next customer"


@dataclass(frozen=True)
class SimulatedSlot:
    booking_id: int
    customer_id: Optional[int]
    status: BookingStatus
    position: int
    estimated_start: datetime
    estimated_end: datetime


@dataclass
class QueueEstimate:
    queue_length: int
    current_status: str
    estimated_wait_minutes: int
    queue_end: datetime
    slots: list[SimulatedSlot] = field(default_factory=list)
    customer_position: Optional[int] = None
    customer_booking_id: Optional[int] = None

    @property
    def next_position(self) -> int:
        """Position a newly joining customer would take"""
        return self.queue_length + 1

    @property
    def estimated_wait_display(self) -> str:
        return f"{self.estimated_wait_minutes} mins" if self.estimated_wait_minutes > 0 else "No wait"


def simulate(timeline: list[TimelineEntry], now: datetime, buffer: timedelta) -> tuple[list[SimulatedSlot], datetime]:
    cursor = now
    slots = []
    for position, entry in enumerate(timeline, start=1):
        if entry.status == BookingStatus.IN_SERVICE:
            start = entry.join_time
            end = entry.end_time
            cursor = max(cursor, entry.end_time + buffer)
        else:
            start = max(entry.join_time, cursor)
            end = start + entry.duration
            cursor = end + buffer
        slots.append(
            SimulatedSlot(
                booking_id=entry.booking_id,
                customer_id=entry.customer_id,
                status=entry.status,
                position=position,
                estimated_start=start,
                estimated_end=end,
            )
        )
    return slots, cursor


def estimate_queue(
    timeline: list[TimelineEntry],
    now: datetime,
    buffer: timedelta,
    serving_name: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> QueueEstimate:
    """
    Estimate the queue of one employee.

    `timeline` is the employee's active bookings ordered by join_time;
    `serving_name` is the display name of the customer currently in service.
    """
    slots, queue_end = simulate(timeline, now, buffer)

    in_service = next((e for e in timeline if e.status == BookingStatus.IN_SERVICE), None)
    if in_service is not None:
        current_status = f"Serving {serving_name or 'Walk-in Customer'}"
    elif timeline:
        current_status = READY_FOR_NEXT
    else:
        current_status = AVAILABLE

    estimate = QueueEstimate(
        queue_length=len(timeline),
        current_status=current_status,
        estimated_wait_minutes=minutes_until(queue_end, now),
        queue_end=queue_end,
        slots=slots,
    )

    if customer_id is not None:
        mine = next((s for s in slots if s.customer_id == customer_id), None)
        if mine is not None:
            estimate.customer_position = mine.position
            estimate.customer_booking_id = mine.booking_id

    return estimate
