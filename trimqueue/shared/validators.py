"""Shared validation utilities"""

from typing import Optional

from ..exceptions import ValidationError


def validate_positive_id(value, field: str) -> int:
    """
    Validate that an identifier is a positive integer.

    Raises:
        ValidationError: If the value is missing, not an int, or <= 0
    """
    # bool is an int subclass; True must not pass as id 1
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def normalize_customer_id(value) -> Optional[int]:
    """Walk-ins arrive as None or 0 and are stored without a customer"""
    if value is None or value == 0:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            "customer_id must be a non-negative integer (0 allowed for walk-in customers)"
        )
    return value


def validate_service_ids(service_ids) -> list[int]:
    if not isinstance(service_ids, (list, tuple)) or not service_ids:
        raise ValidationError("service_ids must be a non-empty list")
    for service_id in service_ids:
        validate_positive_id(service_id, "service_ids[]")
    if len(set(service_ids)) != len(service_ids):
        raise ValidationError("service_ids must not contain duplicates")
    return list(service_ids)


def validate_positive_minutes(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive number of minutes")
    return value
