"""Error taxonomy for the scheduling core

Every scheduling error carries the HTTP status it maps to and a short
category name, so the transport layer can render them uniformly.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for errors raised by the scheduling core"""

    status_code = 500
    category = "scheduling_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(SchedulingError):
    """Malformed input, rejected before any transaction opens"""

    status_code = 400
    category = "validation_error"


class NotFoundError(SchedulingError):
    """Unknown id, or the entity does not belong to the claimed owner"""

    status_code = 404
    category = "not_found"


class ConflictError(SchedulingError):
    """The entity exists but its current state forbids the operation"""

    status_code = 409
    category = "conflict"


class TransientStoreError(SchedulingError):
    """Lock contention or timeout; the whole operation may be retried"""

    status_code = 503
    category = "transient_store_error"


class InvariantViolation(SchedulingError):
    """A timeline invariant broke mid-algorithm; the transaction must abort"""

    status_code = 500
    category = "invariant_violation"


class NotificationDeliveryError(Exception):
    """Push delivery failed; always swallowed at the notification boundary"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_gone(self) -> bool:
        """The push service reports the subscription no longer exists"""
        return self.status_code in (404, 410)
