# app/schemas/availability.py
"""Pydantic schemas for availability reads and availability settings"""
import re
from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_hhmm(value: str) -> time:
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValueError("must be a time in HH:MM format")
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


# ============================================================================
# Read responses
# ============================================================================

class AppointmentTypeSummary(BaseModel):
    id: UUID
    name: str
    duration: int


class AvailableDatesResponse(BaseModel):
    dates: List[date]
    timezone: str
    appointment_type: AppointmentTypeSummary
    cached: bool = False
    degraded: bool = Field(False, description="Computed without external calendar busy time")


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    start_local: str
    end_local: str


class AvailableSlotsResponse(BaseModel):
    date: date
    timezone: str
    appointment_type: AppointmentTypeSummary
    slots: List[SlotResponse]
    cached: bool = False
    degraded: bool = False


class PrewarmRequest(BaseModel):
    account_id: Optional[UUID] = None
    widget_id: Optional[str] = None
    appointment_type_id: Optional[UUID] = None
    days_to_prewarm: Optional[int] = Field(None, ge=1, le=31)


class PrewarmResponse(BaseModel):
    success: bool = True
    message: str


# ============================================================================
# Settings writes
# ============================================================================

class AvailabilityRuleInput(BaseModel):
    """One weekly rule. day_of_week: 0=Sunday ... 6=Saturday"""
    day_of_week: int
    start_time: str
    end_time: str
    is_available: bool = True


class AvailabilityRulesUpdate(BaseModel):
    rules: List[AvailabilityRuleInput]


class AvailabilityRuleResponse(BaseModel):
    id: UUID
    day_of_week: int
    start_time: str
    end_time: str
    is_available: bool


class DateOverrideInput(BaseModel):
    date: date
    is_available: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)


class DateOverrideResponse(BaseModel):
    id: UUID
    date: date
    is_available: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None


class AppointmentTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    duration_minutes: Optional[int] = Field(None, ge=5, le=24 * 60)
    buffer_before_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)
    buffer_after_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def not_empty(self):
        if not self.model_fields_set:
            raise ValueError("at least one field is required")
        return self

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v
