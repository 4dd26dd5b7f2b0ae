# clinic_booking/core/errors.py
"""
Error taxonomy for the booking core.

Validation and conflict errors are user-facing and recoverable; transient
errors are surfaced after the read-side retry budget is spent. A failed
patient link after a committed booking is never an exception: it is
reported on the booking result as a reconciliation warning.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ConflictReason(str, Enum):
    EXPIRED = "expired"
    ALREADY_BOOKED = "already_booked"
    UNAVAILABLE = "unavailable"


class BookingError(Exception):
    """Base class for every error raised by the booking core."""

    status_code: int = 500
    error_code: str = "booking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class BookingValidationError(BookingError):
    """Malformed input rejected before any write."""

    status_code = 422
    error_code = "validation_error"

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "field": self.field, "reason": self.reason}


class SlotConflictError(BookingError):
    """The requested slot can no longer be booked; re-fetch availability."""

    status_code = 409
    error_code = "conflict"

    def __init__(self, reason: ConflictReason, detail: Optional[str] = None):
        reason = ConflictReason(reason)
        super().__init__(detail or _CONFLICT_MESSAGES[reason])
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "reason": self.reason.value, "message": self.message}


_CONFLICT_MESSAGES = {
    ConflictReason.EXPIRED: "This slot is no longer available for booking. Please pick a later time.",
    ConflictReason.ALREADY_BOOKED: "This slot was just booked by someone else. Please choose another time.",
    ConflictReason.UNAVAILABLE: "This slot is not offered on the selected date.",
}


class UniquenessViolation(BookingError):
    """Persistence layer rejected a write that collides on (clinic_id, date, time)."""

    status_code = 409
    error_code = "uniqueness_violation"


class TransientError(BookingError):
    """I/O failure unrelated to uniqueness."""

    status_code = 503
    error_code = "transient_error"


class NotFoundError(BookingError):
    status_code = 404
    error_code = "not_found"
