"""Booking repository - Database operations for bookings"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...models import ACTIVE_STATUSES, Booking, BookingStatus, Employee

SORTABLE_FIELDS = {
    "join_time": Booking.join_time,
    "end_time": Booking.end_time,
    "status": Booking.status,
}


class BookingRepository:
    """Repository for booking database operations

    Methods taking `lock=True` issue SELECT ... FOR UPDATE; callers must be
    inside the transaction that will write the rows.
    """

    @staticmethod
    def lock_employee(db: Session, employee_id: int) -> Optional[Employee]:
        """Lock the employee row; serialises every writer of this employee's timeline"""
        return db.query(Employee).filter(Employee.id == employee_id).with_for_update().first()

    @staticmethod
    def get_booking(db: Session, booking_id: int, lock: bool = False) -> Optional[Booking]:
        query = db.query(Booking).filter(Booking.id == booking_id)
        if lock:
            # Re-read under the lock even if the row is already in the session
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def get_active_timeline(db: Session, employee_id: int, lock: bool = False) -> list[Booking]:
        """Active bookings of one employee ordered by start time"""
        query = (
            db.query(Booking)
            .filter(Booking.employee_id == employee_id, Booking.status.in_(ACTIVE_STATUSES))
            .order_by(Booking.join_time.asc(), Booking.id.asc())
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    @staticmethod
    def get_active_for_employees(db: Session, employee_ids: list[int]) -> list[Booking]:
        if not employee_ids:
            return []
        return (
            db.query(Booking)
            .options(joinedload(Booking.customer))
            .filter(Booking.employee_id.in_(employee_ids), Booking.status.in_(ACTIVE_STATUSES))
            .order_by(Booking.join_time.asc(), Booking.id.asc())
            .all()
        )

    @staticmethod
    def get_active_starting_from(
        db: Session, employee_id: int, start: datetime, lock: bool = False
    ) -> list[Booking]:
        query = (
            db.query(Booking)
            .filter(
                Booking.employee_id == employee_id,
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.join_time >= start,
            )
            .order_by(Booking.join_time.asc(), Booking.id.asc())
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    @staticmethod
    def get_anchor_before(db: Session, employee_id: int, end_time: datetime) -> Optional[Booking]:
        """Latest active or completed booking ending strictly before `end_time`"""
        return (
            db.query(Booking)
            .filter(
                Booking.employee_id == employee_id,
                Booking.status.in_(ACTIVE_STATUSES + (BookingStatus.COMPLETED,)),
                Booking.end_time < end_time,
            )
            .order_by(Booking.end_time.desc())
            .first()
        )

    @staticmethod
    def has_active_booking_between(
        db: Session, employee_id: int, customer_id: int, start: datetime, end: datetime
    ) -> bool:
        """Whether the customer holds an active booking with this employee starting in [start, end)"""
        count = (
            db.query(func.count(Booking.id))
            .filter(
                Booking.employee_id == employee_id,
                Booking.customer_id == customer_id,
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.join_time >= start,
                Booking.join_time < end,
            )
            .scalar()
        )
        return count > 0

    @staticmethod
    def create_booking(db: Session, **booking_data) -> Booking:
        """Insert a booking; the caller commits"""
        booking = Booking(**booking_data)
        db.add(booking)
        db.flush()
        return booking

    # Status reconciliation queries
    @staticmethod
    def get_due_to_start(db: Session, now: datetime, employee_id: Optional[int] = None) -> list[Booking]:
        query = db.query(Booking).filter(
            Booking.status == BookingStatus.BOOKED, Booking.join_time <= now
        )
        if employee_id is not None:
            query = query.filter(Booking.employee_id == employee_id)
        return query.order_by(Booking.join_time.asc()).with_for_update().all()

    @staticmethod
    def get_due_to_complete(db: Session, now: datetime, employee_id: Optional[int] = None) -> list[Booking]:
        query = db.query(Booking).filter(
            Booking.status == BookingStatus.IN_SERVICE, Booking.end_time <= now
        )
        if employee_id is not None:
            query = query.filter(Booking.employee_id == employee_id)
        return query.order_by(Booking.end_time.asc()).with_for_update().all()

    # Listings
    @staticmethod
    def _filtered(
        db: Session,
        customer_id: Optional[int] = None,
        shop_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        window: Optional[tuple[datetime, datetime]] = None,
    ):
        query = db.query(Booking)
        if customer_id is not None:
            query = query.filter(Booking.customer_id == customer_id)
        if shop_id is not None:
            query = query.filter(Booking.shop_id == shop_id)
        if employee_id is not None:
            query = query.filter(Booking.employee_id == employee_id)
        if status is not None:
            query = query.filter(Booking.status == status)
        if window is not None:
            query = query.filter(Booking.join_time >= window[0], Booking.join_time < window[1])
        return query

    @staticmethod
    def list_bookings(
        db: Session,
        limit: int,
        offset: int,
        sort_by: str = "join_time",
        descending: bool = True,
        **filters,
    ) -> tuple[list[Booking], int]:
        query = BookingRepository._filtered(db, **filters)
        total = query.count()
        column = SORTABLE_FIELDS.get(sort_by, Booking.join_time)
        order = column.desc() if descending else column.asc()
        rows = (
            query.options(
                joinedload(Booking.customer), joinedload(Booking.employee), joinedload(Booking.shop)
            )
            .order_by(order, Booking.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total

    @staticmethod
    def status_breakdown(db: Session, **filters) -> dict[str, int]:
        query = BookingRepository._filtered(db, **filters)
        rows = (
            query.with_entities(Booking.status, func.count(Booking.id))
            .group_by(Booking.status)
            .all()
        )
        summary = {status.value: 0 for status in BookingStatus}
        for status, count in rows:
            summary[BookingStatus(status).value] = count
        return summary
