# app/models/business.py
"""
Business Model - the account that all scheduling data is scoped to.
Team members share one business; calendar integrations hang off it.
"""
import secrets
import uuid

from sqlalchemy import Column, String, Boolean, Integer, Uuid
from sqlalchemy.orm import relationship

from app.models.base import Base, UTCDateTime, utcnow


def generate_widget_id() -> str:
    return secrets.token_urlsafe(12)


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    owner_email = Column(String(255), nullable=True)  # booking notifications

    # Public embed identifier used by the booking widget
    widget_id = Column(String(32), nullable=False, unique=True, default=generate_widget_id)

    # System configuration
    timezone = Column(String(50), default="UTC", nullable=False)

    # Scheduling overrides (NULL = use the global setting)
    min_booking_lead_minutes = Column(Integer, nullable=True)
    calendar_degrade_on_read = Column(Boolean, nullable=True)

    # Technical fields
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
    is_active = Column(Boolean, default=True, nullable=False)

    availability_rules = relationship("AvailabilityRule", back_populates="business")
    calendar_integrations = relationship("CalendarIntegration", back_populates="business")

    def __repr__(self):
        return f"<Business(id={self.id}, name={self.name})>"

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": str(self.id),
            "name": self.name,
            "widget_id": self.widget_id,
            "timezone": self.timezone,
            "min_booking_lead_minutes": self.min_booking_lead_minutes,
            "calendar_degrade_on_read": self.calendar_degrade_on_read,
            "is_active": self.is_active,
        }
