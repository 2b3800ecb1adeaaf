# app/models/__init__.py
from .base import Base
from .business import Business
from .appointment_type import AppointmentType
from .appointment import Appointment, AppointmentStatus
from .calendar_integration import CalendarIntegration
from .availability import AvailabilityRule, AvailabilityOverride

__all__ = [
    "Base",
    "Business",
    "AppointmentType",
    "Appointment",
    "AppointmentStatus",
    "CalendarIntegration",
    "AvailabilityRule",
    "AvailabilityOverride",
]
