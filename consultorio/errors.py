"""
Domain errors for the booking engine.

Services raise these; ``main.py`` renders them as JSON responses with the
status code carried by the exception. Notification and queue delivery
errors are recorded and logged, never surfaced to a booking caller.
"""

from typing import Optional


class BookingEngineError(Exception):
    """Base class for errors that map to an HTTP response"""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BookingEngineError):
    """Malformed or incomplete input. Not retryable."""

    status_code = 400


class PermissionDeniedError(BookingEngineError):
    status_code = 403


class NotFoundError(BookingEngineError):
    """A referenced entity (patient, doctor, role user, billing record) is missing"""

    status_code = 404


class ConflictError(BookingEngineError):
    """The requested slot overlaps an active appointment. Retry with another slot."""

    status_code = 409


class InvalidTransitionError(ConflictError):
    """A status change that the state machine does not allow"""


class TransientDependencyError(BookingEngineError):
    """Datastore or rate service failure. The caller may retry."""

    status_code = 503


class DeliveryError(BookingEngineError):
    """Email provider failure. Only raised inside delivery code paths."""

    status_code = 502
