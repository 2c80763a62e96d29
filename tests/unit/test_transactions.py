import pytest
from sqlalchemy.exc import OperationalError

from trimqueue.exceptions import ConflictError, TransientStoreError
from trimqueue.shared.transactions import run_in_transaction


class FakeSession:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


def lock_timeout():
    return OperationalError("SELECT ... FOR UPDATE", {}, Exception("lock timeout"))


def test_transient_errors_are_retried_from_scratch():
    db = FakeSession()
    attempts = []

    def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise lock_timeout()
        return "booked"

    assert run_in_transaction(db, operation, "Create booking", attempts=3) == "booked"
    assert db.rollbacks == 2


def test_persistent_contention_surfaces_as_transient_store_error():
    db = FakeSession()

    def operation():
        raise lock_timeout()

    with pytest.raises(TransientStoreError):
        run_in_transaction(db, operation, "Cancel booking", attempts=2)
    assert db.rollbacks == 2


def test_domain_errors_roll_back_without_retry():
    db = FakeSession()
    attempts = []

    def operation():
        attempts.append(1)
        raise ConflictError("Booking is already cancelled")

    with pytest.raises(ConflictError):
        run_in_transaction(db, operation, "Cancel booking")
    assert len(attempts) == 1
    assert db.rollbacks == 1
