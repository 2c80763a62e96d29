from trimqueue.domain.scheduling.estimator import AVAILABLE, READY_FOR_NEXT, estimate_queue
from trimqueue.models import BookingStatus

from ..helpers import BUFFER, entry, ist


def test_empty_queue_is_available():
    estimate = estimate_queue([], ist(10, 0), BUFFER)

    assert estimate.current_status == AVAILABLE
    assert estimate.queue_length == 0
    assert estimate.estimated_wait_minutes == 0
    assert estimate.estimated_wait_display == "No wait"
    assert estimate.next_position == 1


def test_serving_customer_and_queue_end():
    timeline = [
        entry(1, ist(9, 50), ist(10, 20), BookingStatus.IN_SERVICE, customer_id=7),
        entry(2, ist(10, 25), ist(10, 55), customer_id=8),
    ]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER, serving_name="Asha")

    assert estimate.current_status == "Serving Asha"
    assert estimate.queue_length == 2
    assert estimate.queue_end == ist(11, 0)
    assert estimate.estimated_wait_minutes == 60
    assert estimate.estimated_wait_display == "60 mins"
    assert estimate.slots[1].estimated_start == ist(10, 25)


def test_walk_in_being_served_is_labelled():
    timeline = [entry(1, ist(9, 50), ist(10, 20), BookingStatus.IN_SERVICE)]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER)

    assert estimate.current_status == "Serving Walk-in Customer"


def test_only_booked_entries_are_ready_for_next():
    timeline = [entry(1, ist(10, 30), ist(11, 0))]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER)

    assert estimate.current_status == READY_FOR_NEXT
    assert estimate.estimated_wait_minutes == 65


def test_overrunning_service_pushes_simulated_starts():
    timeline = [
        entry(1, ist(9, 30), ist(9, 58), BookingStatus.IN_SERVICE),
        entry(2, ist(10, 3), ist(10, 23)),
    ]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER)

    # cursor is max(now, 09:58 + 5) = 10:03, so booking 2 keeps its slot
    assert estimate.slots[1].estimated_start == ist(10, 3)
    assert estimate.slots[1].estimated_end == ist(10, 23)


def test_late_queue_catches_up_to_now():
    timeline = [entry(1, ist(9, 40), ist(9, 50)), entry(2, ist(9, 55), ist(10, 5))]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER)

    assert estimate.slots[0].estimated_start == ist(10, 0)
    assert estimate.slots[1].estimated_start == ist(10, 15)


def test_customer_position_is_one_based():
    timeline = [
        entry(1, ist(10, 5), ist(10, 35), customer_id=11),
        entry(2, ist(10, 40), ist(11, 0), customer_id=12),
    ]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER, customer_id=12)

    assert estimate.customer_position == 2
    assert estimate.customer_booking_id == 2


def test_unknown_customer_has_no_position():
    timeline = [entry(1, ist(10, 5), ist(10, 35), customer_id=11)]

    estimate = estimate_queue(timeline, ist(10, 0), BUFFER, customer_id=99)

    assert estimate.customer_position is None


def test_wait_rounds_partial_minutes_up():
    estimate = estimate_queue([entry(1, ist(10, 5), ist(10, 35))], ist(10, 0, 30), BUFFER)

    # queue ends 10:40, 39.5 minutes away
    assert estimate.estimated_wait_minutes == 40
