"""Transaction helpers for read-then-write scheduling operations"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..config import TRANSIENT_RETRY_ATTEMPTS
from ..exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_transaction(
    db: Session,
    operation: Callable[[], T],
    label: str,
    attempts: int = TRANSIENT_RETRY_ATTEMPTS,
) -> T:
    """
    Run a unit of work that commits on success.

    Any failure rolls the session back. Lock timeouts and deadlocks
    (OperationalError) re-run the whole operation from scratch, since it
    re-reads current state; after `attempts` tries they surface as
    TransientStoreError.
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except OperationalError as e:
            db.rollback()
            last_error = e
            logger.warning(f"⚠️ {label}: transient store error on attempt {attempt}/{attempts}: {e}")
        except Exception:
            db.rollback()
            raise

    logger.error(f"❌ {label}: giving up after {attempts} attempts")
    raise TransientStoreError(f"{label} could not complete, please retry") from last_error
