# ===== app/models/calendar_integration.py =====
from sqlalchemy import Column, String, Boolean, LargeBinary, ForeignKey, JSON, Text, Uuid
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow
import uuid


class CalendarIntegration(Base):
    """A connected external calendar. Team accounts have one per member."""
    __tablename__ = "calendar_integrations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    member_email = Column(String(255), nullable=True)  # team member who connected it

    provider = Column(String, nullable=False)  # 'google', 'outlook'
    is_active = Column(Boolean, default=True, nullable=False)
    is_primary = Column(Boolean, default=False)  # receives created events

    # OAuth tokens, Fernet-encrypted (app/utils/encryption.py)
    access_token_encrypted = Column(LargeBinary)
    refresh_token_encrypted = Column(LargeBinary)
    token_expires_at = Column(UTCDateTime)

    # Provider-specific config (stored as JSON for flexibility)
    provider_config = Column(JSON, default=dict)  # selected_calendar_id, etc.

    # Sync settings
    sync_direction = Column(String, default="bidirectional")  # 'read_only', 'write_only', 'bidirectional'
    last_sync_at = Column(UTCDateTime)
    last_sync_status = Column(String)  # 'success', 'failed'
    last_sync_error = Column(Text)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    business = relationship("Business", back_populates="calendar_integrations")

    @property
    def calendar_id(self) -> str:
        return (self.provider_config or {}).get("selected_calendar_id", "primary")

    @property
    def reads_busy_time(self) -> bool:
        return self.sync_direction != "write_only"

    @property
    def writes_events(self) -> bool:
        return self.sync_direction != "read_only"
