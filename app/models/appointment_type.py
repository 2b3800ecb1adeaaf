# app/models/appointment_type.py
"""
AppointmentType Model - bookable meeting definitions.
duration + buffer_before + buffer_after is the window an appointment
of this type occupies on the calendar.
"""
from sqlalchemy import Column, String, Numeric, Integer, ForeignKey, Boolean, Text, Uuid
from sqlalchemy.orm import relationship
import uuid
from app.models.base import Base, UTCDateTime, utcnow


class AppointmentType(Base):
    __tablename__ = "appointment_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(
        Uuid,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Core details
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    # Duration and buffers in minutes
    duration_minutes = Column(Integer, nullable=False, default=30)
    buffer_before_minutes = Column(Integer, nullable=False, default=0)
    buffer_after_minutes = Column(Integer, nullable=False, default=0)

    # Payment (collected by the billing service, read-only here)
    price = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    requires_payment = Column(Boolean, default=False, nullable=False)

    # Only active types are schedulable
    is_active = Column(Boolean, default=True, index=True, nullable=False)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    appointments = relationship("Appointment", back_populates="appointment_type")

    def __repr__(self):
        return f"<AppointmentType(id={self.id}, name={self.name}, duration={self.duration_minutes})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "duration": self.duration_minutes,
            "buffer_before": self.buffer_before_minutes,
            "buffer_after": self.buffer_after_minutes,
            "is_active": self.is_active,
        }
