"""
Automated status transitions for bookings
Handles booked → in_service → completed as wall-clock time passes, and
booked → cancelled for missed appointments under the check-in policy.

All predicates compare absolute timestamps, so a skipped tick is simply
caught up by the next one and running a tick twice for the same `now`
changes nothing the second time.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import (
    MISSED_BOOKING_POLICY,
    MISSED_GRACE_MINUTES,
    STATUS_TICK_INTERVAL_SECONDS,
)
from ..database import SessionLocal
from ..domain.scheduling.cascade import CascadeRescheduler
from ..domain.scheduling.repository import BookingRepository
from ..exceptions import InvariantViolation
from ..models import Booking, BookingStatus, CancelledBy
from ..shared.clock import utc_now
from ..shared.transactions import run_in_transaction
from .notification_service import NotificationTrigger, PushSender

logger = logging.getLogger(__name__)

AUTO_START = "auto_start"
CHECK_IN = "check_in"
POLICIES = (AUTO_START, CHECK_IN)

MISSED = "missed"


def next_status(
    status: BookingStatus,
    join_time: datetime,
    end_time: datetime,
    now: datetime,
    has_customer: bool,
    policy: str = AUTO_START,
    grace: timedelta = timedelta(minutes=MISSED_GRACE_MINUTES),
) -> Optional[BookingStatus]:
    """
    The single transition a booking takes at `now`, or None.

    Under the check-in policy a registered customer's booking is never
    auto-started: it waits for CheckIn and is cancelled as missed once the
    grace window has passed. Walk-ins always auto-start.
    """
    if status == BookingStatus.BOOKED:
        if policy == CHECK_IN and has_customer:
            return BookingStatus.CANCELLED if join_time + grace <= now else None
        return BookingStatus.IN_SERVICE if join_time <= now else None
    elif status == BookingStatus.IN_SERVICE:
        return BookingStatus.COMPLETED if end_time <= now else None
    elif status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
        return None
    raise InvariantViolation(f"unknown booking status {status!r}")


class StatusReconciler:
    """Moves booking statuses forward; never touches join_time/end_time"""

    def __init__(
        self,
        db: Session,
        notifier: NotificationTrigger,
        policy: str = MISSED_BOOKING_POLICY,
        grace_minutes: int = MISSED_GRACE_MINUTES,
    ):
        if policy not in POLICIES:
            raise ValueError(f"Unknown missed-booking policy: {policy}")
        self.db = db
        self.notifier = notifier
        self.policy = policy
        self.grace = timedelta(minutes=grace_minutes)
        # Cancelled as missed in this pass; the caller cascades their followers
        self.missed: list[Booking] = []

    def reconcile(self, now: datetime, employee_id: Optional[int] = None) -> dict:
        """
        Apply every due transition (optionally for one employee) and flush.

        A booking that is both due to start and due to finish passes through
        in_service to completed in the same pass.
        """
        summary = {
            "booked_to_in_service": 0,
            "in_service_to_completed": 0,
            "booked_to_missed": 0,
            "total_updated": 0,
        }

        candidates = self._candidates(now, employee_id)
        for booking in candidates:
            while True:
                target = next_status(
                    BookingStatus(booking.status),
                    booking.join_time,
                    booking.end_time,
                    now,
                    booking.customer_id is not None,
                    self.policy,
                    self.grace,
                )
                if target is None:
                    break
                self._transition(booking, target, summary)

        summary["total_updated"] = (
            summary["booked_to_in_service"]
            + summary["in_service_to_completed"]
            + summary["booked_to_missed"]
        )
        if summary["total_updated"]:
            self.db.flush()
            logger.info(f"📊 Booking status reconciliation summary: {summary}")
        else:
            logger.debug("ℹ️ No booking status updates needed")
        return summary

    def _candidates(self, now: datetime, employee_id: Optional[int]) -> list[Booking]:
        repo = BookingRepository()
        due = repo.get_due_to_start(self.db, now, employee_id) + repo.get_due_to_complete(
            self.db, now, employee_id
        )
        return sorted(due, key=lambda b: (b.join_time, b.id))

    def _transition(self, booking: Booking, target: BookingStatus, summary: dict) -> None:
        previous = BookingStatus(booking.status)
        booking.status = target
        employee_name = booking.employee.name if booking.employee else "an employee"

        if target == BookingStatus.IN_SERVICE:
            summary["booked_to_in_service"] += 1
            logger.info(f"✅ Booking {booking.id} transitioned: booked → in_service")
            self.notifier.notify_customer(
                booking.customer_id,
                title="Your Service Has Started!",
                body=f"Your booking (ID: {booking.id}) is now in service.",
                booking_id=booking.id,
                type="status_in_service",
            )
            self.notifier.notify_shop(
                booking.shop_id,
                title="Booking Started!",
                body=f"Booking (ID: {booking.id}) with {employee_name} is now in service.",
                booking_id=booking.id,
                type="shop_booking_started",
            )
        elif target == BookingStatus.COMPLETED:
            summary["in_service_to_completed"] += 1
            logger.info(f"✅ Booking {booking.id} transitioned: in_service → completed")
            self.notifier.notify_customer(
                booking.customer_id,
                title="Service Completed!",
                body=f"Your service for booking (ID: {booking.id}) has been completed.",
                booking_id=booking.id,
                type="status_completed",
            )
            self.notifier.notify_shop(
                booking.shop_id,
                title="Booking Completed!",
                body=f"Booking (ID: {booking.id}) with {employee_name} has been completed.",
                booking_id=booking.id,
                type="shop_booking_completed",
            )
        elif target == BookingStatus.CANCELLED:
            booking.cancelled_by = CancelledBy.SYSTEM
            booking.cancellation_reason = MISSED
            summary["booked_to_missed"] += 1
            self.missed.append(booking)
            logger.info(f"✅ Booking {booking.id} transitioned: booked → cancelled (missed)")
            self.notifier.notify_customer(
                booking.customer_id,
                title="Appointment Missed",
                body=(
                    f"Your booking (ID: {booking.id}) at {booking.shop.name if booking.shop else 'the shop'} "
                    f"was cancelled as you missed your appointment."
                ),
                booking_id=booking.id,
                type="status_missed",
            )
            self.notifier.notify_shop(
                booking.shop_id,
                title="Booking Missed!",
                body=f"Booking (ID: {booking.id}) with {employee_name} was missed by the customer.",
                booking_id=booking.id,
                type="shop_booking_missed",
            )
        else:
            raise InvariantViolation(f"illegal transition {previous.value} → {target.value}")


def update_booking_statuses(
    db: Session,
    now: datetime,
    notifier: NotificationTrigger,
    policy: str = MISSED_BOOKING_POLICY,
) -> dict:
    """
    Run one reconciliation tick over all employees and commit.

    Bookings cancelled as missed then hand their minutes to the bookings
    queued behind them, see reclaim_missed_slots.

    Returns:
        dict: Summary of status changes made
    """

    def tick():
        notifier.discard()
        reconciler = StatusReconciler(db, notifier, policy=policy)
        summary = reconciler.reconcile(now)
        missed_ids = [b.id for b in reconciler.missed]
        db.commit()
        return summary, missed_ids

    try:
        summary, missed_ids = run_in_transaction(db, tick, "Status reconciliation")
    except Exception as e:
        notifier.discard()
        logger.error(f"❌ Error updating booking statuses: {str(e)}")
        raise

    summary["rescheduled_after_missed"] = reclaim_missed_slots(db, missed_ids, now, notifier)
    return summary


def reclaim_missed_slots(
    db: Session, booking_ids: list[int], now: datetime, notifier: NotificationTrigger
) -> int:
    """
    Cascade the followers of bookings cancelled as missed.

    Runs after the reconciliation commit, one transaction per booking. Each
    locks the employee row before any booking row, the same order every
    booking write uses.

    Returns:
        int: Number of bookings moved earlier
    """
    repo = BookingRepository()
    moved = 0
    for booking_id in booking_ids:
        attempt = NotificationTrigger(notifier.sender)

        def cascade(booking_id=booking_id):
            attempt.discard()
            booking = repo.get_booking(db, booking_id)
            repo.lock_employee(db, booking.employee_id)
            booking = repo.get_booking(db, booking_id, lock=True)
            plan = CascadeRescheduler(db, attempt).on_cancel(booking, now)
            db.commit()
            return plan

        try:
            plan = run_in_transaction(db, cascade, f"Missed booking {booking_id} cascade")
        except Exception as e:
            # The cancellation itself is committed; the followers keep their slots
            logger.error(f"❌ Could not reclaim the slot of missed booking {booking_id}: {e}")
            continue
        notifier.pending.extend(attempt.pending)
        moved += len(plan)

    if moved:
        logger.info(f"🔁 {moved} bookings moved earlier after missed appointments")
    return moved


async def run_status_tick(session_factory=SessionLocal, sender: Optional[PushSender] = None) -> dict:
    """One tick with its own session; notifications go out after commit"""
    db = session_factory()
    try:
        notifier = NotificationTrigger(sender)
        summary = await asyncio.to_thread(update_booking_statuses, db, utc_now(), notifier)
        await notifier.dispatch(db)
        return summary
    finally:
        db.close()


class StatusTicker:
    """Periodic reconciliation owned by the application lifespan"""

    def __init__(self, interval_seconds: int = STATUS_TICK_INTERVAL_SECONDS, tick=run_status_tick):
        self.interval_seconds = interval_seconds
        self.tick = tick
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="booking-status-ticker")
        logger.info(f"⏱️ Booking status ticker started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("⏱️ Booking status ticker stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # The next tick catches up; predicates use absolute timestamps
                logger.error(f"❌ Status tick failed: {e}")
            await asyncio.sleep(self.interval_seconds)
