# app/services/scheduling/exceptions.py
"""Errors raised by the scheduling core"""
from typing import Dict, Optional


class SchedulingError(Exception):
    """Base class for scheduling errors"""


class InvalidInterval(SchedulingError, ValueError):
    """Interval constructed with start >= end"""


class AvailabilityValidationError(SchedulingError):
    """Rejected input, reported per field"""

    def __init__(self, fields: Dict[str, str]):
        self.fields = fields
        super().__init__("; ".join(f"{name}: {msg}" for name, msg in fields.items()))


class AccountNotFound(SchedulingError):
    pass


class AppointmentTypeNotFound(SchedulingError):
    pass


class AppointmentNotFound(SchedulingError):
    pass


class BookingConflict(SchedulingError):
    """Requested slot is no longer free"""

    def __init__(self, message: str = "This time slot is no longer available. Please select another time."):
        super().__init__(message)


class InvalidStateTransition(SchedulingError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Appointment is {current}; cannot change it to {requested}")


class CalendarUnavailable(SchedulingError):
    """External calendar could not be read (timeout, auth, provider error)"""

    def __init__(self, message: str, provider: Optional[str] = None, retryable: bool = True):
        self.provider = provider
        self.retryable = retryable
        super().__init__(message)
