from datetime import timedelta

import pytest

from trimqueue.domain.scheduling.allocator import allocate_slot, earliest_start
from trimqueue.domain.scheduling.timeline import build_timeline, ensure_slot_free
from trimqueue.exceptions import InvariantViolation
from trimqueue.models import BookingStatus

from ..helpers import BUFFER, entry, ist


def test_empty_timeline_allocates_at_now_plus_buffer():
    allocation = allocate_slot([], 30, ist(10, 0), BUFFER)

    assert allocation.join_time == ist(10, 5)
    assert allocation.end_time == ist(10, 35)
    assert allocation.initial_status == BookingStatus.BOOKED


def test_in_service_booking_anchors_next_start():
    timeline = [entry(1, ist(10, 5), ist(10, 35), BookingStatus.IN_SERVICE)]

    allocation = allocate_slot(timeline, 20, ist(10, 10), BUFFER)

    assert allocation.join_time == ist(10, 40)
    assert allocation.end_time == ist(11, 0)


def test_first_fitting_gap_in_time_order_wins():
    timeline = [
        entry(1, ist(10, 5), ist(10, 35)),
        entry(2, ist(11, 20), ist(11, 30)),
        entry(3, ist(11, 55), ist(12, 15)),
    ]

    allocation = allocate_slot(timeline, 20, ist(10, 0), BUFFER)

    assert allocation.join_time == ist(10, 40)


def test_gap_must_leave_buffer_before_next_booking():
    timeline = [
        entry(1, ist(10, 5), ist(10, 35)),
        entry(2, ist(11, 15), ist(11, 45)),
    ]

    fits = allocate_slot(timeline, 30, ist(10, 0), BUFFER)
    too_long = allocate_slot(timeline, 31, ist(10, 0), BUFFER)

    assert fits.join_time == ist(10, 40)
    assert fits.end_time == ist(11, 10)
    assert too_long.join_time == ist(11, 50)


def test_appends_after_last_booking_when_no_gap_fits():
    timeline = [
        entry(1, ist(10, 5), ist(10, 35)),
        entry(2, ist(10, 40), ist(11, 0)),
    ]

    allocation = allocate_slot(timeline, 45, ist(10, 0), BUFFER)

    assert allocation.join_time == ist(11, 5)
    assert allocation.end_time == ist(11, 50)


def test_overdue_booking_never_moves_cursor_backwards():
    timeline = [entry(1, ist(9, 0), ist(9, 30))]

    allocation = allocate_slot(timeline, 15, ist(10, 0), BUFFER)

    assert allocation.join_time == ist(10, 5)


def test_allocation_is_deterministic():
    timeline = build_timeline(
        [entry(2, ist(11, 0), ist(11, 30)), entry(1, ist(10, 5), ist(10, 35))]
    )

    first = allocate_slot(timeline, 15, ist(10, 0), BUFFER)
    second = allocate_slot(timeline, 15, ist(10, 0), BUFFER)

    assert first == second


def test_zero_buffer_slot_due_now_starts_in_service():
    allocation = allocate_slot([], 30, ist(10, 0), timedelta(0))

    assert allocation.join_time == ist(10, 0)
    assert allocation.initial_status == BookingStatus.IN_SERVICE


def test_earliest_start_ignores_booked_first_entry():
    timeline = [entry(1, ist(10, 30), ist(11, 0))]

    assert earliest_start(timeline, ist(10, 0), BUFFER) == ist(10, 5)


def test_build_timeline_drops_inactive_and_orders_by_start():
    timeline = build_timeline(
        [
            entry(3, ist(11, 0), ist(11, 30)),
            entry(2, ist(10, 0), ist(10, 30), BookingStatus.CANCELLED),
            entry(1, ist(10, 40), ist(10, 50), BookingStatus.IN_SERVICE),
        ]
    )

    assert [e.booking_id for e in timeline] == [1, 3]


def test_ensure_slot_free_rejects_intervals_inside_the_buffer():
    timeline = [entry(1, ist(10, 5), ist(10, 35))]

    with pytest.raises(InvariantViolation):
        ensure_slot_free(timeline, ist(10, 38), ist(11, 0), BUFFER)

    ensure_slot_free(timeline, ist(10, 40), ist(11, 0), BUFFER)
