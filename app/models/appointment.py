from sqlalchemy import Column, String, Text, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship
from .base import Base, UTCDateTime, utcnow
import enum
import secrets
import uuid


class AppointmentStatus(str, enum.Enum):
    """Lifecycle of a booked appointment."""
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Transitions allowed once an appointment exists
ALLOWED_TRANSITIONS = {
    AppointmentStatus.CONFIRMED: {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED},
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.COMPLETED: set(),
}


def generate_cancellation_token() -> str:
    return secrets.token_hex(64)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Final double-booking net: one live appointment per account start instant
        Index(
            "uq_appointments_business_start_active",
            "business_id",
            "start_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_appointments_business_range", "business_id", "start_time", "end_time"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # References
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    appointment_type_id = Column(Uuid, ForeignKey("appointment_types.id"), nullable=False)
    calendar_integration_id = Column(Uuid, ForeignKey("calendar_integrations.id"), nullable=True)

    # Visitor info
    visitor_name = Column(String, nullable=False)
    visitor_email = Column(String, nullable=False)
    visitor_phone = Column(String, nullable=True)
    timezone = Column(String(50), nullable=True)  # visitor's display timezone
    notes = Column(Text, nullable=True)

    # Appointment window (UTC)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)

    # Status tracking
    status = Column(String(20), nullable=False, default=AppointmentStatus.CONFIRMED.value)
    cancellation_token = Column(String(128), nullable=False, unique=True, default=generate_cancellation_token)

    # Calendar sync
    calendar_event_id = Column(String, nullable=True)
    sync_status = Column(String, default="pending")  # pending, synced, failed, sync_disabled
    last_sync_error = Column(Text, nullable=True)

    # Notifications
    confirmation_sent_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    appointment_type = relationship("AppointmentType", back_populates="appointments")

    def to_dict(self):
        return {
            "id": str(self.id),
            "appointment_type_id": str(self.appointment_type_id),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "timezone": self.timezone,
            "status": self.status,
            "visitor_name": self.visitor_name,
            "visitor_email": self.visitor_email,
            "calendar_event_id": self.calendar_event_id,
        }
