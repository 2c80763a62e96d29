"""Booking service - Business logic for the appointment queue

Every write runs as one transaction that first locks the employee row, so
two writers of the same employee's timeline never interleave. Statuses are
reconciled inside that transaction before the timeline is read.
Notifications are only queued here; the router schedules their delivery
for after the response.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...config import BOOKING_BUFFER_MINUTES, MISSED_BOOKING_POLICY
from ...exceptions import ConflictError, NotFoundError, ValidationError
from ...models import Booking, BookingStatus, CancelledBy, Employee, Shop
from ...services.notification_service import NotificationTrigger, PushSender
from ...services.status_automation import StatusReconciler, reclaim_missed_slots
from ...shared.clock import format_clock, local_date, local_day_bounds, minutes_until
from ...shared.transactions import run_in_transaction
from ...shared.validators import (
    normalize_customer_id,
    validate_positive_id,
    validate_positive_minutes,
    validate_service_ids,
)
from ..directory.repository import DirectoryRepository
from .allocator import allocate_slot
from .cascade import CascadeRescheduler, Reschedule
from .estimator import QueueEstimate, estimate_queue
from .repository import BookingRepository
from .timeline import TimelineEntry, build_timeline

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    booking: Booking
    queue_position: int
    estimated_wait_minutes: int

    @property
    def estimated_wait_time(self) -> str:
        if self.estimated_wait_minutes > 0:
            return f"{self.estimated_wait_minutes} minutes"
        return "Service starting now"


@dataclass
class RescheduleResult:
    booking: Booking
    rescheduled: list[Reschedule] = field(default_factory=list)


@dataclass
class EmployeeQueueResult:
    employee: Employee
    bookings: list[Booking]
    estimate: QueueEstimate


@dataclass
class QueueResult:
    shop: Shop
    employees: list[EmployeeQueueResult]
    now: datetime


@dataclass
class BookingPage:
    bookings: list[Booking]
    total: int
    limit: int
    offset: int
    status_breakdown: dict
    now: datetime

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


class BookingService:
    """Service layer for booking business logic"""

    def __init__(
        self,
        db: Session,
        sender: Optional[PushSender] = None,
        buffer_minutes: int = BOOKING_BUFFER_MINUTES,
        missed_policy: str = MISSED_BOOKING_POLICY,
    ):
        self.db = db
        self.missed_policy = missed_policy
        self.repo = BookingRepository()
        self.directory = DirectoryRepository()
        self.notifier = NotificationTrigger(sender)
        self.buffer_minutes = buffer_minutes
        self.buffer = timedelta(minutes=buffer_minutes)

    def _reconciler(self) -> StatusReconciler:
        return StatusReconciler(self.db, self.notifier, policy=self.missed_policy)

    def _reconcile_employee(self, employee_id: int, now: datetime) -> None:
        """Bring one employee's statuses up to `now`, inside the caller's transaction"""
        self.repo.lock_employee(self.db, employee_id)
        reconciler = self._reconciler()
        reconciler.reconcile(now, employee_id)
        for booking in reconciler.missed:
            self._cascade().on_cancel(booking, now)

    def _cascade(self) -> CascadeRescheduler:
        return CascadeRescheduler(self.db, self.notifier, self.buffer_minutes)

    def _transaction(self, operation, label: str):
        try:
            return run_in_transaction(self.db, operation, label)
        except Exception:
            # Nothing queued by a rolled-back attempt may be delivered
            self.notifier.discard()
            raise

    # ------------------------------------------------------------------
    # CreateBooking
    # ------------------------------------------------------------------

    def create_booking(
        self,
        shop_id: int,
        employee_id: int,
        customer_id: Optional[int],
        service_ids: list[int],
        now: datetime,
    ) -> BookingResult:
        """Allocate the earliest feasible slot with the employee and persist the booking"""
        validate_positive_id(shop_id, "shop_id")
        validate_positive_id(employee_id, "employee_id")
        customer_id = normalize_customer_id(customer_id)
        service_ids = validate_service_ids(service_ids)

        logger.info(
            f"📥 Creating booking: shop={shop_id} employee={employee_id} "
            f"customer={customer_id or 'walk-in'} services={service_ids}"
        )

        def operation() -> BookingResult:
            self.notifier.discard()

            employee = self.repo.lock_employee(self.db, employee_id)
            shop = self.directory.get_shop(self.db, shop_id)
            if not shop:
                raise NotFoundError("Shop not found")
            if not employee or employee.shop_id != shop_id:
                raise NotFoundError("Employee not found or does not belong to this shop")
            if not shop.is_active:
                raise ConflictError("Shop is not currently accepting bookings")
            if not employee.is_active:
                raise ConflictError("Employee is not currently available")

            customer = None
            if customer_id is not None:
                customer = self.directory.get_customer(self.db, customer_id)
                if not customer:
                    raise NotFoundError("Customer not found")

            self._reconcile_employee(employee_id, now)

            if customer is not None:
                day_start, day_end = local_day_bounds(local_date(now))
                if self.repo.has_active_booking_between(
                    self.db, employee_id, customer_id, day_start, day_end
                ):
                    raise ConflictError(
                        "You already have an active booking with this employee today"
                    )

            services = self.directory.get_services(self.db, service_ids)
            if len(services) != len(service_ids) or any(s.shop_id != shop_id for s in services):
                raise ValidationError("One or more service IDs are invalid")
            offered = self.directory.get_offered_service_ids(self.db, employee_id, service_ids)
            if offered != set(service_ids):
                raise ConflictError("Employee does not provide all of the requested services")

            by_id = {s.id: s for s in services}
            ordered = [by_id[sid] for sid in service_ids]
            total_minutes = sum(s.duration_minutes for s in ordered)
            validate_positive_minutes(total_minutes, "service_duration_minutes")

            timeline = build_timeline(
                TimelineEntry.from_booking(b)
                for b in self.repo.get_active_timeline(self.db, employee_id, lock=True)
            )
            allocation = allocate_slot(timeline, total_minutes, now, self.buffer)

            booking = self.repo.create_booking(
                self.db,
                shop_id=shop_id,
                employee_id=employee_id,
                customer_id=customer_id,
                services=[
                    {"id": s.id, "name": s.name, "duration_minutes": s.duration_minutes}
                    for s in ordered
                ],
                service_duration_minutes=total_minutes,
                join_time=allocation.join_time,
                end_time=allocation.end_time,
                status=allocation.initial_status,
            )

            position = 1 + sum(
                1 for e in timeline if (e.join_time, e.booking_id) < (booking.join_time, booking.id)
            )
            self._notify_created(booking, shop, employee, position)

            self.db.commit()
            self.db.refresh(booking)
            return BookingResult(
                booking=booking,
                queue_position=position,
                estimated_wait_minutes=minutes_until(booking.join_time, now),
            )

        result = self._transaction(operation, "Create booking")
        logger.info(
            f"✅ Booking {result.booking.id} created: {format_clock(result.booking.join_time)}"
            f"-{format_clock(result.booking.end_time)} (position {result.queue_position})"
        )
        return result

    def _notify_created(self, booking: Booking, shop: Shop, employee: Employee, position: int) -> None:
        self.notifier.notify_customer(
            booking.customer_id,
            title="Booking Confirmed!",
            body=(
                f"Your booking at {shop.name} with {employee.name} is confirmed for "
                f"{format_clock(booking.join_time)}. Queue position: {position}."
            ),
            booking_id=booking.id,
            type="new_booking_customer",
        )
        self.notifier.notify_shop(
            booking.shop_id,
            title="New Booking Received!",
            body=(
                f"New booking (ID: {booking.id}) for {booking.customer_name} with "
                f"{employee.name} at {format_clock(booking.join_time)}."
            ),
            booking_id=booking.id,
            type="new_booking_shop",
        )

    # ------------------------------------------------------------------
    # CancelBooking
    # ------------------------------------------------------------------

    def cancel_booking(
        self,
        booking_id: int,
        now: datetime,
        customer_id: Optional[int] = None,
        shop_id: Optional[int] = None,
    ) -> RescheduleResult:
        """
        Cancel a booking on behalf of its customer or its shop and cascade the
        freed time to later bookings of the same employee.

        Exactly one of `customer_id` / `shop_id` identifies the requester.
        """
        validate_positive_id(booking_id, "booking_id")
        if (customer_id is None) == (shop_id is None):
            raise ValidationError("Exactly one of customer_id or shop_id is required")
        if customer_id is not None:
            validate_positive_id(customer_id, "customer_id")
            requested_by = CancelledBy.CUSTOMER
        else:
            validate_positive_id(shop_id, "shop_id")
            requested_by = CancelledBy.SHOP

        def operation() -> RescheduleResult:
            self.notifier.discard()

            booking = self._get_owned_booking(booking_id, customer_id=customer_id, shop_id=shop_id)
            self._reconcile_employee(booking.employee_id, now)
            booking = self.repo.get_booking(self.db, booking_id, lock=True)

            status = BookingStatus(booking.status)
            if status.is_terminal:
                raise ConflictError(f"Booking is already {status.value} and cannot be cancelled")

            booking.status = BookingStatus.CANCELLED
            booking.cancelled_by = requested_by
            booking.cancellation_reason = f"{requested_by.value}_cancelled"
            self.db.flush()
            logger.info(f"🚫 Booking {booking.id} cancelled by {requested_by.value}")

            rescheduled = self._cascade().on_cancel(booking, now)
            self._notify_cancelled(booking, requested_by)

            self.db.commit()
            self.db.refresh(booking)
            return RescheduleResult(booking=booking, rescheduled=rescheduled)

        result = self._transaction(operation, "Cancel booking")
        if result.rescheduled:
            logger.info(
                f"🔁 Cancellation of booking {booking_id} moved {len(result.rescheduled)} later bookings"
            )
        return result

    def _get_owned_booking(
        self, booking_id: int, customer_id: Optional[int] = None, shop_id: Optional[int] = None
    ) -> Booking:
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if customer_id is not None and booking.customer_id != customer_id:
            raise NotFoundError("Booking not found or does not belong to this customer")
        if shop_id is not None and booking.shop_id != shop_id:
            raise NotFoundError("Booking not found or does not belong to this shop")
        return booking

    def _notify_cancelled(self, booking: Booking, requested_by: CancelledBy) -> None:
        employee_name = booking.employee.name if booking.employee else "an employee"
        when = format_clock(booking.join_time)
        if requested_by == CancelledBy.CUSTOMER:
            self.notifier.notify_shop(
                booking.shop_id,
                title="Booking Cancelled by Customer!",
                body=(
                    f"Booking (ID: {booking.id}) by {booking.customer_name} with "
                    f"{employee_name} at {when} has been cancelled by the customer."
                ),
                booking_id=booking.id,
                type="shop_booking_customer_cancelled",
            )
        else:
            shop_name = booking.shop.name if booking.shop else "the shop"
            self.notifier.notify_customer(
                booking.customer_id,
                title="Booking Cancelled by Shop!",
                body=f"Your booking (ID: {booking.id}) at {shop_name} for {when} has been cancelled by the shop.",
                booking_id=booking.id,
                type="booking_cancelled_by_shop",
            )
            self.notifier.notify_shop(
                booking.shop_id,
                title="Booking Successfully Cancelled!",
                body=(
                    f"You successfully cancelled booking (ID: {booking.id}) for "
                    f"{booking.customer_name} with {employee_name} at {when}."
                ),
                booking_id=booking.id,
                type="shop_booking_self_cancelled",
            )

    # ------------------------------------------------------------------
    # ExtendBooking / CheckInBooking
    # ------------------------------------------------------------------

    def extend_booking(self, booking_id: int, shop_id: int, delay_minutes: int, now: datetime) -> RescheduleResult:
        """A service is running long: extend it and push later bookings back as needed"""
        validate_positive_id(booking_id, "booking_id")
        validate_positive_id(shop_id, "shop_id")
        validate_positive_minutes(delay_minutes, "delay_minutes")

        def operation() -> RescheduleResult:
            self.notifier.discard()

            booking = self._get_owned_booking(booking_id, shop_id=shop_id)
            self._reconcile_employee(booking.employee_id, now)
            booking = self.repo.get_booking(self.db, booking_id, lock=True)

            status = BookingStatus(booking.status)
            if not status.is_active:
                raise ConflictError(f"Booking is already {status.value} and cannot be extended")

            original_end = booking.end_time
            booking.service_duration_minutes += delay_minutes
            booking.end_time = booking.join_time + timedelta(minutes=booking.service_duration_minutes)
            self.db.flush()
            logger.info(f"⏳ Booking {booking.id} extended by {delay_minutes} min")

            rescheduled = self._cascade().on_overrun(booking, original_end, now)
            self.db.commit()
            self.db.refresh(booking)
            return RescheduleResult(booking=booking, rescheduled=rescheduled)

        return self._transaction(operation, "Extend booking")

    def check_in_booking(self, booking_id: int, shop_id: int, now: datetime) -> Booking:
        """Shop confirms the customer is in the chair"""
        validate_positive_id(booking_id, "booking_id")
        validate_positive_id(shop_id, "shop_id")

        def operation() -> Booking:
            self.notifier.discard()

            booking = self._get_owned_booking(booking_id, shop_id=shop_id)
            self._reconcile_employee(booking.employee_id, now)
            booking = self.repo.get_booking(self.db, booking_id, lock=True)

            status = BookingStatus(booking.status)
            if status != BookingStatus.BOOKED:
                raise ConflictError(f"Booking is {status.value}; only booked bookings can be checked in")
            if booking.join_time > now + self.buffer:
                raise ConflictError(
                    f"Booking starts at {format_clock(booking.join_time)} and cannot be checked in yet"
                )
            serving = [
                b
                for b in self.repo.get_active_timeline(self.db, booking.employee_id)
                if b.id != booking.id and b.status == BookingStatus.IN_SERVICE
            ]
            if serving:
                raise ConflictError("Employee is still serving another booking")

            booking.status = BookingStatus.IN_SERVICE
            self.notifier.notify_customer(
                booking.customer_id,
                title="Your Service Has Started!",
                body=f"Your booking (ID: {booking.id}) is now in service.",
                booking_id=booking.id,
                type="status_in_service",
            )
            self.db.commit()
            self.db.refresh(booking)
            logger.info(f"✅ Booking {booking.id} checked in")
            return booking

        return self._transaction(operation, "Check in booking")

    # ------------------------------------------------------------------
    # ListQueue
    # ------------------------------------------------------------------

    def list_queue(
        self,
        now: datetime,
        shop_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        customer_id: Optional[int] = None,
    ) -> QueueResult:
        """Queue estimates for every employee of a shop, or for a single employee"""
        if (shop_id is None) == (employee_id is None):
            raise ValidationError("Exactly one of shop_id or employee_id is required")
        if shop_id is not None:
            validate_positive_id(shop_id, "shop_id")
        else:
            validate_positive_id(employee_id, "employee_id")
        customer_id = normalize_customer_id(customer_id)

        def operation() -> QueueResult:
            self.notifier.discard()

            if employee_id is not None:
                employee = self.directory.get_employee(self.db, employee_id)
                if not employee:
                    raise NotFoundError("Employee not found")
                shop = employee.shop
                employees = [employee]
            else:
                shop = self.directory.get_shop(self.db, shop_id)
                if not shop:
                    raise NotFoundError("Shop not found")
                employees = self.directory.get_shop_employees(self.db, shop_id)

            for employee in employees:
                self._reconcile_employee(employee.id, now)
            self.db.commit()

            rows = self.repo.get_active_for_employees(self.db, [e.id for e in employees])
            by_employee: dict[int, list[Booking]] = {e.id: [] for e in employees}
            for booking in rows:
                by_employee[booking.employee_id].append(booking)

            queues = []
            for employee in employees:
                bookings = by_employee[employee.id]
                serving = next((b for b in bookings if b.status == BookingStatus.IN_SERVICE), None)
                estimate = estimate_queue(
                    build_timeline(TimelineEntry.from_booking(b) for b in bookings),
                    now,
                    self.buffer,
                    serving_name=serving.customer_name if serving else None,
                    customer_id=customer_id,
                )
                queues.append(EmployeeQueueResult(employee=employee, bookings=bookings, estimate=estimate))
            return QueueResult(shop=shop, employees=queues, now=now)

        return self._transaction(operation, "List queue")

    # ------------------------------------------------------------------
    # Booking listings
    # ------------------------------------------------------------------

    def list_bookings(
        self,
        now: datetime,
        customer_id: Optional[int] = None,
        shop_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        status: Optional[str] = None,
        on_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "join_time",
        descending: bool = True,
    ) -> BookingPage:
        """Paginated bookings of a customer or a shop, after a status reconciliation pass"""
        if customer_id is None and shop_id is None:
            raise ValidationError("customer_id or shop_id is required")
        if customer_id is not None:
            validate_positive_id(customer_id, "customer_id")
        if shop_id is not None:
            validate_positive_id(shop_id, "shop_id")
        if employee_id is not None:
            validate_positive_id(employee_id, "employee_id")

        filters = {
            "customer_id": customer_id,
            "shop_id": shop_id,
            "employee_id": employee_id,
            "status": BookingStatus(status) if status else None,
            "window": local_day_bounds(on_date) if on_date else None,
        }

        def operation() -> BookingPage:
            self.notifier.discard()
            if customer_id is not None and not self.directory.get_customer(self.db, customer_id):
                raise NotFoundError("Customer not found")
            if shop_id is not None and not self.directory.get_shop(self.db, shop_id):
                raise NotFoundError("Shop not found")

            reconciler = self._reconciler()
            reconciler.reconcile(now)
            missed_ids = [b.id for b in reconciler.missed]
            self.db.commit()
            reclaim_missed_slots(self.db, missed_ids, now, self.notifier)

            rows, total = self.repo.list_bookings(
                self.db, limit, offset, sort_by=sort_by, descending=descending, **filters
            )
            breakdown = self.repo.status_breakdown(self.db, **filters)
            return BookingPage(
                bookings=rows,
                total=total,
                limit=limit,
                offset=offset,
                status_breakdown=breakdown,
                now=now,
            )

        return self._transaction(operation, "List bookings")
