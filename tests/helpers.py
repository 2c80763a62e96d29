"""Shared builders for scheduling tests. All wall-clock times are IST."""

from datetime import datetime, timedelta
from types import SimpleNamespace

from trimqueue.domain.scheduling.timeline import TimelineEntry
from trimqueue.exceptions import NotificationDeliveryError
from trimqueue.models import (
    ACTIVE_STATUSES,
    Booking,
    BookingStatus,
    Customer,
    Employee,
    PushSubscription,
    NotificationTarget,
    Service,
    Shop,
)
from trimqueue.shared.clock import from_local

DAY = (2025, 6, 2)
BUFFER = timedelta(minutes=5)


def ist(hour: int, minute: int = 0, second: int = 0) -> datetime:
    """Naive UTC instant for an IST wall time on the test day"""
    return from_local(datetime(*DAY, hour, minute, second))


def entry(booking_id, start, end, status=BookingStatus.BOOKED, customer_id=None) -> TimelineEntry:
    return TimelineEntry(
        booking_id=booking_id,
        join_time=start,
        end_time=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        status=status,
        customer_id=customer_id,
    )


def seed_shop(db) -> SimpleNamespace:
    """One shop with two barbers, three services and three customers"""
    shop = Shop(name="Sharp Cuts", address="MG Road", is_active=True)
    other_shop = Shop(name="Fade Factory", is_active=True)
    db.add_all([shop, other_shop])
    db.flush()

    haircut = Service(shop_id=shop.id, name="Haircut", duration_minutes=30)
    beard = Service(shop_id=shop.id, name="Beard Trim", duration_minutes=15)
    shave = Service(shop_id=shop.id, name="Shave", duration_minutes=20)
    db.add_all([haircut, beard, shave])
    db.flush()

    ravi = Employee(shop_id=shop.id, name="Ravi", is_active=True, services=[haircut, beard, shave])
    karan = Employee(shop_id=shop.id, name="Karan", is_active=True, services=[haircut])
    outsider = Employee(shop_id=other_shop.id, name="Dev", is_active=True, services=[])
    asha = Customer(name="Asha", phone="9000000001")
    vikram = Customer(name="Vikram", phone="9000000002")
    meera = Customer(name="Meera", phone="9000000003")
    db.add_all([ravi, karan, outsider, asha, vikram, meera])
    db.commit()

    return SimpleNamespace(
        shop=shop,
        other_shop=other_shop,
        haircut=haircut,
        beard=beard,
        shave=shave,
        ravi=ravi,
        karan=karan,
        outsider=outsider,
        asha=asha,
        vikram=vikram,
        meera=meera,
    )


def add_booking(db, seed, start, minutes, status=BookingStatus.BOOKED, customer=None, employee=None):
    """Insert a booking row directly, bypassing allocation"""
    booking = Booking(
        shop_id=seed.shop.id,
        employee_id=(employee or seed.ravi).id,
        customer_id=customer.id if customer else None,
        services=[{"id": seed.haircut.id, "name": "Haircut", "duration_minutes": minutes}],
        service_duration_minutes=minutes,
        join_time=start,
        end_time=start + timedelta(minutes=minutes),
        status=status,
    )
    db.add(booking)
    db.commit()
    return booking


def subscribe(db, target: NotificationTarget, target_id: int, endpoint: str) -> PushSubscription:
    record = PushSubscription(
        target_kind=target,
        target_id=target_id,
        endpoint=endpoint,
        subscription_data={"endpoint": endpoint, "keys": {"p256dh": "key", "auth": "secret"}},
    )
    db.add(record)
    db.commit()
    return record


def active_bookings(db, employee_id):
    return (
        db.query(Booking)
        .filter(Booking.employee_id == employee_id, Booking.status.in_(ACTIVE_STATUSES))
        .order_by(Booking.join_time.asc())
        .all()
    )


def assert_timeline_consistent(db, employee_id):
    bookings = active_bookings(db, employee_id)
    for booking in bookings:
        assert booking.end_time == booking.join_time + timedelta(minutes=booking.service_duration_minutes)
    for earlier, later in zip(bookings, bookings[1:]):
        assert earlier.end_time + BUFFER <= later.join_time, (
            f"bookings {earlier.id} and {later.id} are closer than the buffer"
        )


class RecordingSender:
    """Push sender double that records deliveries or fails on demand"""

    def __init__(self, fail_with: Exception = None):
        self.sent = []
        self.fail_with = fail_with

    async def send(self, subscription: dict, payload: dict) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((subscription["endpoint"], payload))

    def types(self) -> list[str]:
        return [payload["type"] for _, payload in self.sent]


def gone_sender() -> RecordingSender:
    return RecordingSender(NotificationDeliveryError("gone", status_code=410))
