# app/services/calendar/base.py
"""Provider interface shared by the Google and Outlook integrations"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.models.calendar_integration import CalendarIntegration
from app.services.scheduling.intervals import Interval

# Access tokens this close to expiry are refreshed before use
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


@dataclass
class CalendarEventData:
    """An appointment as pushed to an external calendar"""
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    timezone: str = "UTC"
    attendees: List[str] = field(default_factory=list)


def token_needs_refresh(integration: CalendarIntegration, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    if integration.token_expires_at is None:
        return True
    return integration.token_expires_at <= now + TOKEN_REFRESH_MARGIN


class CalendarProvider(ABC):
    name = "abstract"

    @abstractmethod
    async def get_busy_intervals(
            self,
            integration: CalendarIntegration,
            start: datetime,
            end: datetime,
    ) -> List[Interval]:
        """Busy time on the integration's selected calendar within [start, end)."""
        ...

    @abstractmethod
    async def create_event(self, integration: CalendarIntegration, event: CalendarEventData) -> dict:
        """Returns {'event_id': ..., 'event_url': ...}"""
        ...

    @abstractmethod
    async def delete_event(self, integration: CalendarIntegration, event_id: str) -> bool:
        ...
