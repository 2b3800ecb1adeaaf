# app/services/cache/keys.py
"""
Structured availability cache keys, one type per cache domain.

Each key knows the account it belongs to, so account-wide invalidation
compares fields instead of searching key strings.
"""
from dataclasses import dataclass
from datetime import date
from typing import ClassVar, Optional, Union
from uuid import UUID


@dataclass(frozen=True)
class DatesKey:
    """Available dates for a type, starting at `start_day` for `days_ahead` days"""
    kind: ClassVar[str] = "dates"

    account_id: UUID
    appointment_type_id: UUID
    start_day: date
    days_ahead: int

    def to_string(self) -> str:
        return f"{self.kind}:{self.account_id}:{self.appointment_type_id}:{self.start_day.isoformat()}:{self.days_ahead}"


@dataclass(frozen=True)
class SlotsKey:
    """Bookable slots for a type on one day"""
    kind: ClassVar[str] = "slots"

    account_id: UUID
    appointment_type_id: UUID
    day: date

    def to_string(self) -> str:
        return f"{self.kind}:{self.account_id}:{self.appointment_type_id}:{self.day.isoformat()}"


@dataclass(frozen=True)
class CalendarEventsKey:
    """Raw external busy intervals for an account on one day"""
    kind: ClassVar[str] = "calendar"

    account_id: UUID
    day: date

    appointment_type_id: ClassVar[Optional[UUID]] = None

    def to_string(self) -> str:
        return f"{self.kind}:{self.account_id}:{self.day.isoformat()}"


CacheKey = Union[DatesKey, SlotsKey, CalendarEventsKey]
