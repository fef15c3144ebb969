"""Shared validation utilities"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional


def validate_uuid(value: str) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to naive UTC, the storage convention for every
    timestamp column. Naive inputs are assumed to already be UTC.
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_amount(value) -> Decimal:
    """
    Parse a money amount into a Decimal rounded to cents.

    Raises:
        ValueError: If the value is not a finite number
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value}")
    return amount.quantize(Decimal("0.01"))
