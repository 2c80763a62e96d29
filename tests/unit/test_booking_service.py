from datetime import date, timedelta

import pytest

from trimqueue.domain.scheduling.service import BookingService
from trimqueue.exceptions import ConflictError, NotFoundError, ValidationError
from trimqueue.models import Booking, BookingStatus, CancelledBy
from trimqueue.services.status_automation import CHECK_IN

from ..helpers import RecordingSender, active_bookings, add_booking, assert_timeline_consistent, ist


@pytest.fixture
def service(db):
    return BookingService(db, RecordingSender())


def book(service, seed, customer, now, services=None, employee=None):
    return service.create_booking(
        seed.shop.id,
        (employee or seed.ravi).id,
        customer.id if customer else 0,
        [s.id for s in (services or [seed.haircut])],
        now,
    )


# CreateBooking


def test_first_booking_of_the_day_starts_after_buffer(service, seed):
    result = book(service, seed, seed.asha, ist(10, 0))

    booking = result.booking
    assert (booking.join_time, booking.end_time) == (ist(10, 5), ist(10, 35))
    assert booking.status == BookingStatus.BOOKED
    assert booking.service_duration_minutes == 30
    assert result.queue_position == 1
    assert result.estimated_wait_time == "5 minutes"
    assert [n.payload["type"] for n in service.notifier.pending] == [
        "new_booking_customer",
        "new_booking_shop",
    ]


def test_multiple_services_sum_their_durations(service, seed):
    result = book(service, seed, seed.asha, ist(10, 0), services=[seed.haircut, seed.beard])

    assert result.booking.service_duration_minutes == 45
    assert [s["name"] for s in result.booking.services] == ["Haircut", "Beard Trim"]


def test_second_booking_waits_for_service_in_progress(service, seed):
    book(service, seed, seed.asha, ist(10, 0))

    result = book(service, seed, seed.vikram, ist(10, 10), services=[seed.shave])

    assert (result.booking.join_time, result.booking.end_time) == (ist(10, 40), ist(11, 0))
    assert result.queue_position == 2
    first = active_bookings(service.db, seed.ravi.id)[0]
    assert first.status == BookingStatus.IN_SERVICE


def test_walk_ins_can_book_repeatedly(service, seed):
    first = book(service, seed, None, ist(10, 0))
    second = book(service, seed, None, ist(10, 0))

    assert first.booking.customer_id is None
    assert first.booking.customer_name == "Walk-in Customer"
    assert second.booking.join_time == ist(10, 40)


def test_same_day_booking_with_same_employee_is_rejected(service, seed):
    book(service, seed, seed.asha, ist(10, 0))

    with pytest.raises(ConflictError):
        book(service, seed, seed.asha, ist(10, 1))

    other = book(service, seed, seed.asha, ist(10, 1), employee=seed.karan)
    assert other.booking.employee_id == seed.karan.id


def test_customer_may_rebook_after_cancelling(service, seed):
    first = book(service, seed, seed.asha, ist(10, 0))
    service.cancel_booking(first.booking.id, ist(10, 1), customer_id=seed.asha.id)

    again = book(service, seed, seed.asha, ist(10, 2))

    assert again.booking.status == BookingStatus.BOOKED


@pytest.mark.parametrize(
    "shop_id, employee_id, customer_id, service_ids",
    [
        (0, 1, 1, [1]),
        (1, -3, 1, [1]),
        (1, 1, -1, [1]),
        (1, 1, 1, []),
        (1, 1, 1, [1, 1]),
        (1, 1, 1, ["haircut"]),
    ],
)
def test_malformed_requests_are_rejected_before_any_write(service, seed, shop_id, employee_id, customer_id, service_ids):
    with pytest.raises(ValidationError):
        service.create_booking(shop_id, employee_id, customer_id, service_ids, ist(10, 0))

    assert service.db.query(Booking).count() == 0


def test_unknown_service_is_a_validation_error(service, seed):
    with pytest.raises(ValidationError):
        service.create_booking(seed.shop.id, seed.ravi.id, seed.asha.id, [999], ist(10, 0))


def test_service_not_offered_by_employee_conflicts(service, seed):
    with pytest.raises(ConflictError):
        book(service, seed, seed.asha, ist(10, 0), services=[seed.beard], employee=seed.karan)

    assert service.db.query(Booking).count() == 0


def test_inactive_employee_conflicts(service, seed):
    seed.ravi.is_active = False
    service.db.commit()

    with pytest.raises(ConflictError):
        book(service, seed, seed.asha, ist(10, 0))


def test_inactive_shop_conflicts(service, seed):
    seed.shop.is_active = False
    service.db.commit()

    with pytest.raises(ConflictError):
        book(service, seed, seed.asha, ist(10, 0))


def test_employee_of_another_shop_is_not_found(service, seed):
    with pytest.raises(NotFoundError):
        book(service, seed, seed.asha, ist(10, 0), employee=seed.outsider)


def test_unknown_customer_is_not_found(service, seed):
    with pytest.raises(NotFoundError):
        service.create_booking(seed.shop.id, seed.ravi.id, 4242, [seed.haircut.id], ist(10, 0))


def test_failed_booking_discards_queued_notifications(service, seed):
    book(service, seed, seed.asha, ist(10, 0))
    service.notifier.pending.clear()

    with pytest.raises(ConflictError):
        book(service, seed, seed.asha, ist(10, 1))

    assert service.notifier.pending == []


# CancelBooking


def test_cancel_shifts_follower_to_buffer_floor(service, seed):
    first = book(service, seed, seed.asha, ist(10, 0)).booking
    second = book(service, seed, seed.vikram, ist(10, 0), services=[seed.shave]).booking
    assert second.join_time == ist(10, 40)

    result = service.cancel_booking(first.id, ist(10, 6), customer_id=seed.asha.id)

    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancelled_by == CancelledBy.CUSTOMER
    service.db.refresh(second)
    assert (second.join_time, second.end_time) == (ist(10, 11), ist(10, 31))
    assert [(m.booking_id, m.new_join_time) for m in result.rescheduled] == [(second.id, ist(10, 11))]
    types = [n.payload["type"] for n in service.notifier.pending]
    assert "wait_time_critical" in types
    assert "shop_booking_customer_cancelled" in types


def test_shop_cancel_notifies_customer_and_shop(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking
    service.notifier.pending.clear()

    result = service.cancel_booking(booking.id, ist(10, 1), shop_id=seed.shop.id)

    assert result.booking.cancelled_by == CancelledBy.SHOP
    assert result.booking.cancellation_reason == "shop_cancelled"
    assert [n.payload["type"] for n in service.notifier.pending] == [
        "booking_cancelled_by_shop",
        "shop_booking_self_cancelled",
    ]


def test_cancel_by_someone_else_is_not_found(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking

    with pytest.raises(NotFoundError):
        service.cancel_booking(booking.id, ist(10, 1), customer_id=seed.vikram.id)
    with pytest.raises(NotFoundError):
        service.cancel_booking(booking.id, ist(10, 1), shop_id=seed.other_shop.id)
    with pytest.raises(NotFoundError):
        service.cancel_booking(9999, ist(10, 1), customer_id=seed.asha.id)


def test_cancelling_a_terminal_booking_conflicts(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking
    service.cancel_booking(booking.id, ist(10, 1), customer_id=seed.asha.id)

    with pytest.raises(ConflictError):
        service.cancel_booking(booking.id, ist(10, 2), customer_id=seed.asha.id)


def test_cancelling_after_completion_conflicts(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking

    with pytest.raises(ConflictError):
        service.cancel_booking(booking.id, ist(10, 40), customer_id=seed.asha.id)

    service.db.refresh(booking)
    assert booking.status != BookingStatus.CANCELLED


def test_shop_can_cancel_a_service_in_progress(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking
    service.list_queue(ist(10, 10), employee_id=seed.ravi.id)
    service.db.refresh(booking)
    assert booking.status == BookingStatus.IN_SERVICE

    result = service.cancel_booking(booking.id, ist(10, 12), shop_id=seed.shop.id)

    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.cancelled_by == CancelledBy.SHOP


def test_missed_booking_is_cascaded_before_a_new_booking_is_placed(db, seed):
    service = BookingService(db, RecordingSender(), missed_policy=CHECK_IN)
    missed = add_booking(db, seed, ist(10, 5), 30, customer=seed.asha)
    follower = add_booking(db, seed, ist(10, 40), 20, customer=seed.vikram)

    result = book(service, seed, seed.meera, ist(10, 16))

    db.refresh(missed)
    db.refresh(follower)
    assert missed.status == BookingStatus.CANCELLED
    assert (follower.join_time, follower.end_time) == (ist(10, 21), ist(10, 41))
    assert (result.booking.join_time, result.booking.end_time) == (ist(10, 46), ist(11, 16))
    assert_timeline_consistent(db, seed.ravi.id)


def test_cancel_requires_exactly_one_requester(service, seed):
    with pytest.raises(ValidationError):
        service.cancel_booking(1, ist(10, 0))
    with pytest.raises(ValidationError):
        service.cancel_booking(1, ist(10, 0), customer_id=1, shop_id=1)


def test_timeline_stays_consistent_through_mixed_operations(service, seed):
    customers = [seed.asha, seed.vikram, seed.meera, None, None]
    bookings = [
        book(service, seed, c, ist(10, 0), services=[seed.shave]).booking for c in customers
    ]
    assert_timeline_consistent(service.db, seed.ravi.id)

    service.cancel_booking(bookings[1].id, ist(10, 3), customer_id=seed.vikram.id)
    assert_timeline_consistent(service.db, seed.ravi.id)

    service.cancel_booking(bookings[3].id, ist(10, 20), shop_id=seed.shop.id)
    assert_timeline_consistent(service.db, seed.ravi.id)

    book(service, seed, None, ist(10, 21), services=[seed.haircut, seed.beard])
    assert_timeline_consistent(service.db, seed.ravi.id)

    for booking in active_bookings(service.db, seed.ravi.id):
        if booking.status == BookingStatus.BOOKED:
            assert booking.join_time >= ist(10, 5)


# ExtendBooking


def test_extend_pushes_later_bookings_back(service, seed):
    first = book(service, seed, seed.asha, ist(10, 0)).booking
    second = book(service, seed, seed.vikram, ist(10, 0), services=[seed.shave]).booking

    result = service.extend_booking(first.id, seed.shop.id, 15, ist(10, 30))

    assert result.booking.end_time == ist(10, 50)
    assert result.booking.service_duration_minutes == 45
    service.db.refresh(second)
    assert (second.join_time, second.end_time) == (ist(10, 55), ist(11, 15))
    assert "time_delayed" in [n.payload["type"] for n in service.notifier.pending]
    assert_timeline_consistent(service.db, seed.ravi.id)


def test_extend_rejects_non_positive_delay(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking

    with pytest.raises(ValidationError):
        service.extend_booking(booking.id, seed.shop.id, 0, ist(10, 10))


def test_extend_of_finished_booking_conflicts(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking

    with pytest.raises(ConflictError):
        service.extend_booking(booking.id, seed.shop.id, 10, ist(11, 0))


# CheckInBooking


def test_check_in_starts_a_due_booking(service, seed):
    booking = book(service, seed, seed.asha, ist(10, 0)).booking

    checked_in = service.check_in_booking(booking.id, seed.shop.id, ist(10, 2))

    assert checked_in.status == BookingStatus.IN_SERVICE
    assert checked_in.join_time == ist(10, 5)


def test_check_in_too_early_conflicts(service, seed):
    book(service, seed, seed.asha, ist(10, 0))
    later = book(service, seed, seed.vikram, ist(10, 0)).booking

    with pytest.raises(ConflictError):
        service.check_in_booking(later.id, seed.shop.id, ist(10, 2))


def test_check_in_while_employee_busy_conflicts(service, seed):
    add_booking(service.db, seed, ist(9, 50), 30, BookingStatus.IN_SERVICE)
    booking = add_booking(service.db, seed, ist(10, 12), 20, customer=seed.asha)

    with pytest.raises(ConflictError):
        service.check_in_booking(booking.id, seed.shop.id, ist(10, 10))


# ListQueue


def test_shop_queue_covers_every_employee(service, seed):
    book(service, seed, seed.asha, ist(10, 0))
    book(service, seed, seed.vikram, ist(10, 0))

    result = service.list_queue(ist(10, 10), shop_id=seed.shop.id, customer_id=seed.vikram.id)

    queues = {q.employee.name: q for q in result.employees}
    assert set(queues) == {"Ravi", "Karan"}
    ravi = queues["Ravi"].estimate
    assert ravi.current_status == "Serving Asha"
    assert ravi.queue_length == 2
    assert ravi.customer_position == 2
    assert ravi.estimated_wait_minutes == 65
    assert queues["Karan"].estimate.current_status == "Available"


def test_employee_queue_requires_known_employee(service, seed):
    with pytest.raises(NotFoundError):
        service.list_queue(ist(10, 0), employee_id=777)


def test_queue_requires_exactly_one_scope(service, seed):
    with pytest.raises(ValidationError):
        service.list_queue(ist(10, 0))


# Listings


def test_customer_listing_paginates_and_breaks_down_by_status(service, seed):
    first = book(service, seed, seed.asha, ist(10, 0)).booking
    book(service, seed, seed.asha, ist(10, 0), employee=seed.karan)
    service.cancel_booking(first.id, ist(10, 1), customer_id=seed.asha.id)

    page = service.list_bookings(ist(10, 2), customer_id=seed.asha.id, limit=1, offset=0)

    assert page.total == 2
    assert len(page.bookings) == 1
    assert page.has_more
    assert page.status_breakdown == {"booked": 1, "in_service": 0, "completed": 0, "cancelled": 1}

    booked_only = service.list_bookings(ist(10, 2), customer_id=seed.asha.id, status="booked")
    assert [b.employee_id for b in booked_only.bookings] == [seed.karan.id]


def test_shop_listing_filters_by_civil_date(service, seed):
    book(service, seed, seed.asha, ist(10, 0))
    add_booking(service.db, seed, ist(10, 0) - timedelta(days=1), 30, BookingStatus.COMPLETED)

    today = service.list_bookings(ist(10, 1), shop_id=seed.shop.id, on_date=date(2025, 6, 2))

    assert today.total == 1
