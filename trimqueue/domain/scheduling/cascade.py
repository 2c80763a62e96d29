"""
Cascading reschedules of an employee's downstream bookings

When a booking is cancelled its minutes are handed to everyone queued
behind it: each later booking moves earlier by at most the freed duration,
but never before now + buffer and never closer than the buffer to the
booking before it. When a service runs long, later bookings are pushed back
only as far as needed to keep the buffer.

Planning is pure; CascadeRescheduler applies a plan to locked rows inside
the caller's transaction and queues customer/shop notifications.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...config import (
    BOOKING_BUFFER_MINUTES,
    RESCHEDULE_NOTIFY_MIN_IMPROVEMENT_MINUTES,
    WAIT_CRITICAL_THRESHOLD_MINUTES,
)
from ...models import Booking, BookingStatus
from ...services.notification_service import NotificationTrigger
from ...shared.clock import format_clock, minutes_until
from .repository import BookingRepository
from .timeline import TimelineEntry, ensure_not_before_floor

logger = logging.getLogger(__name__)

TIME_SHIFT = "time_shift"
WAIT_TIME_CRITICAL = "wait_time_critical"


@dataclass(frozen=True)
class Reschedule:
    booking_id: int
    customer_id: Optional[int]
    old_join_time: datetime
    old_end_time: datetime
    new_join_time: datetime
    new_end_time: datetime

    @property
    def changed(self) -> bool:
        return self.new_join_time != self.old_join_time or self.new_end_time != self.old_end_time

    @property
    def shift_minutes(self) -> int:
        """Positive when the booking moved earlier"""
        return int((self.old_join_time - self.new_join_time).total_seconds() // 60)


def plan_cancel_cascade(
    downstream: list[TimelineEntry],
    anchor_end: Optional[datetime],
    freed_minutes: int,
    now: datetime,
    buffer: timedelta,
) -> list[Reschedule]:
    """
    Plan the moves caused by cancelling a booking of `freed_minutes`.

    `downstream` holds the employee's active bookings starting at or after
    the cancelled booking's end, ordered by join_time. `anchor_end` is the
    end of the latest active/completed booking finishing before it (None
    when there is none, in which case `now` anchors the cascade).
    """
    freed = timedelta(minutes=freed_minutes)
    cursor = max((anchor_end or now) + buffer, now + buffer)

    plan = []
    for entry in downstream:
        if entry.status == BookingStatus.IN_SERVICE:
            # A started service is never moved; the queue resumes after it
            cursor = max(cursor, entry.end_time + buffer)
            continue

        # Only ever earlier; an overdue booking waiting for check-in keeps its slot
        new_join = min(entry.join_time, max(entry.join_time - freed, cursor))
        new_end = new_join + entry.duration
        move = Reschedule(
            booking_id=entry.booking_id,
            customer_id=entry.customer_id,
            old_join_time=entry.join_time,
            old_end_time=entry.end_time,
            new_join_time=new_join,
            new_end_time=new_end,
        )
        if move.changed:
            ensure_not_before_floor(new_join, now, buffer)
            plan.append(move)
        cursor = new_end + buffer

    return plan


def plan_overrun_shift(
    downstream: list[TimelineEntry],
    extended_end: datetime,
    buffer: timedelta,
) -> list[Reschedule]:
    """Push later bookings back just enough to clear an extended service plus the buffer"""
    cursor = extended_end + buffer
    plan = []
    for entry in downstream:
        if entry.status == BookingStatus.IN_SERVICE:
            cursor = max(cursor, entry.end_time + buffer)
            continue
        new_join = max(entry.join_time, cursor)
        new_end = new_join + entry.duration
        move = Reschedule(
            booking_id=entry.booking_id,
            customer_id=entry.customer_id,
            old_join_time=entry.join_time,
            old_end_time=entry.end_time,
            new_join_time=new_join,
            new_end_time=new_end,
        )
        if move.changed:
            plan.append(move)
        cursor = new_end + buffer
    return plan


def wait_change_notification(
    old_join_time: datetime,
    new_join_time: datetime,
    now: datetime,
    min_improvement: int = RESCHEDULE_NOTIFY_MIN_IMPROVEMENT_MINUTES,
    critical_threshold: int = WAIT_CRITICAL_THRESHOLD_MINUTES,
) -> Optional[str]:
    """
    Decide which customer notification (if any) a reschedule deserves.

    Crossing below the critical threshold wins over a plain improvement.
    """
    old_wait = minutes_until(old_join_time, now)
    new_wait = minutes_until(new_join_time, now)

    if old_wait > critical_threshold and new_wait <= critical_threshold:
        return WAIT_TIME_CRITICAL
    if old_wait - new_wait >= min_improvement:
        return TIME_SHIFT
    return None


class CascadeRescheduler:
    """Applies cascade plans to locked booking rows of one employee"""

    def __init__(
        self,
        db: Session,
        notifier: NotificationTrigger,
        buffer_minutes: int = BOOKING_BUFFER_MINUTES,
    ):
        self.db = db
        self.notifier = notifier
        self.buffer = timedelta(minutes=buffer_minutes)
        self.repo = BookingRepository()

    def on_cancel(self, cancelled: Booking, now: datetime) -> list[Reschedule]:
        """
        Move the cancelled booking's followers earlier.

        Must run in the same transaction that marked `cancelled` as
        cancelled, with the employee row already locked.
        """
        downstream_rows = self.repo.get_active_starting_from(
            self.db, cancelled.employee_id, cancelled.end_time, lock=True
        )
        if not downstream_rows:
            return []

        anchor = self.repo.get_anchor_before(self.db, cancelled.employee_id, cancelled.end_time)
        plan = plan_cancel_cascade(
            [TimelineEntry.from_booking(b) for b in downstream_rows],
            anchor.end_time if anchor else None,
            cancelled.service_duration_minutes,
            now,
            self.buffer,
        )
        self._apply(plan, downstream_rows, now, delayed=False)
        return plan

    def on_overrun(self, extended: Booking, original_end: datetime, now: datetime) -> list[Reschedule]:
        """Push followers of a service that is running long"""
        downstream_rows = [
            b
            for b in self.repo.get_active_starting_from(
                self.db, extended.employee_id, original_end, lock=True
            )
            if b.id != extended.id
        ]
        if not downstream_rows:
            return []

        plan = plan_overrun_shift(
            [TimelineEntry.from_booking(b) for b in downstream_rows],
            extended.end_time,
            self.buffer,
        )
        self._apply(plan, downstream_rows, now, delayed=True)
        return plan

    def _apply(self, plan: list[Reschedule], rows: list[Booking], now: datetime, delayed: bool) -> None:
        by_id = {b.id: b for b in rows}
        for move in plan:
            booking = by_id[move.booking_id]
            booking.join_time = move.new_join_time
            booking.end_time = move.new_end_time
            logger.info(
                f"🔁 Booking {booking.id} moved {format_clock(move.old_join_time)} → "
                f"{format_clock(move.new_join_time)}"
            )
            if delayed:
                self._notify_delayed(booking, move)
            else:
                self._notify_moved_earlier(booking, move, now)
        self.db.flush()

    def _notify_moved_earlier(self, booking: Booking, move: Reschedule, now: datetime) -> None:
        if booking.customer_id:
            kind = wait_change_notification(move.old_join_time, move.new_join_time, now)
            if kind == WAIT_TIME_CRITICAL:
                self.notifier.notify_customer(
                    booking.customer_id,
                    title="Get Ready Soon!",
                    body=(
                        f"Your estimated wait time for booking (ID: {booking.id}) is now "
                        f"less than {WAIT_CRITICAL_THRESHOLD_MINUTES} minutes."
                    ),
                    booking_id=booking.id,
                    type=WAIT_TIME_CRITICAL,
                )
            elif kind == TIME_SHIFT:
                self.notifier.notify_customer(
                    booking.customer_id,
                    title="Booking Time Shifted!",
                    body=(
                        f"Your booking (ID: {booking.id}) is now scheduled "
                        f"{move.shift_minutes} minutes earlier. "
                        f"New start time: {format_clock(move.new_join_time)}."
                    ),
                    booking_id=booking.id,
                    type=TIME_SHIFT,
                )
        self._notify_shop_queue(booking, move, "shifted")

    def _notify_delayed(self, booking: Booking, move: Reschedule) -> None:
        delay = -move.shift_minutes
        if booking.customer_id:
            self.notifier.notify_customer(
                booking.customer_id,
                title="Booking Delayed!",
                body=(
                    f"Your booking (ID: {booking.id}) has been delayed by {delay} minutes. "
                    f"New start time: {format_clock(move.new_join_time)}."
                ),
                booking_id=booking.id,
                type="time_delayed",
            )
        self._notify_shop_queue(booking, move, "delayed")

    def _notify_shop_queue(self, booking: Booking, move: Reschedule, verb: str) -> None:
        employee_name = booking.employee.name if booking.employee else "an employee"
        self.notifier.notify_shop(
            booking.shop_id,
            title="Queue Updated!",
            body=(
                f"Booking (ID: {booking.id}) for {booking.customer_name} with {employee_name} "
                f"has been {verb}. New start time: {format_clock(move.new_join_time)}."
            ),
            booking_id=booking.id,
            type="shop_queue_update",
        )
