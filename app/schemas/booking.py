# app/schemas/booking.py
"""Pydantic schemas for booking, cancelling and updating appointments"""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


class VisitorInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=40)
    timezone: Optional[str] = Field(None, max_length=50, description="Visitor display timezone")
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v


class BookingRequest(BaseModel):
    account_id: Optional[UUID] = None
    widget_id: Optional[str] = None
    appointment_type_id: UUID
    start: datetime
    end: Optional[datetime] = None
    visitor: VisitorInfo

    @model_validator(mode="after")
    def account_reference(self):
        if self.account_id is None and not self.widget_id:
            raise ValueError("account_id or widget_id is required")
        return self

    @field_validator("start", "end")
    @classmethod
    def timezone_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            raise ValueError("must include a timezone offset")
        return v


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    appointment_type_id: UUID
    start_time: datetime
    end_time: datetime
    status: str
    timezone: Optional[str] = None
    visitor_name: str
    visitor_email: str
    calendar_event_id: Optional[str] = None


class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    cancellation_token: str


class AppointmentUpdate(BaseModel):
    status: Optional[Literal["confirmed", "cancelled", "completed"]] = None
    notes: Optional[str] = Field(None, max_length=2000)
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class CancelByTokenRequest(BaseModel):
    cancellation_token: str = Field(..., min_length=1, max_length=128)
    reason: Optional[str] = Field(None, max_length=500)


class CancelResponse(BaseModel):
    success: bool = True
    message: str = "Appointment cancelled successfully"
