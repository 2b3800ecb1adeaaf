# app/services/calendar/google_calendar_service.py
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.config.settings import get_settings
from app.models import CalendarIntegration
from app.services.calendar.base import CalendarEventData, CalendarProvider, token_needs_refresh
from app.services.scheduling.exceptions import CalendarUnavailable
from app.services.scheduling.intervals import Interval
from app.utils.encryption import decrypt_token, encrypt_token

settings = get_settings()

logger = logging.getLogger(__name__)


def _parse_event_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def events_to_busy(events: List[dict]) -> List[Interval]:
    """Timed, non-cancelled, opaque events as busy intervals"""
    busy = []
    for event in events:
        if event.get("status") == "cancelled":
            continue
        if event.get("transparency") == "transparent":
            continue
        start = event.get("start", {}).get("dateTime")
        end = event.get("end", {}).get("dateTime")
        if not start or not end:
            # All-day events carry only a date
            continue
        start_at, end_at = _parse_event_time(start), _parse_event_time(end)
        if start_at < end_at:
            busy.append(Interval(start_at, end_at))
    return busy


class GoogleCalendarService(CalendarProvider):
    """Google Calendar via google-api-python-client.

    The client library is blocking, so every call runs in a worker thread.
    Token refreshes are applied to the integration on the event loop and
    persisted by the caller's session.
    """

    name = "google"
    SCOPES = ['https://www.googleapis.com/auth/calendar']
    TOKEN_URI = "https://oauth2.googleapis.com/token"

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET

    def _credentials(self, integration: CalendarIntegration) -> Tuple[Credentials, bool]:
        """Valid credentials for the integration, refreshing if necessary. Blocking."""
        refresh_token = decrypt_token(integration.refresh_token_encrypted)
        if token_needs_refresh(integration):
            credentials = Credentials(
                token=None,
                refresh_token=refresh_token,
                token_uri=self.TOKEN_URI,
                client_id=self.client_id,
                client_secret=self.client_secret,
            )
            credentials.refresh(Request())
            return credentials, True

        return Credentials(
            token=decrypt_token(integration.access_token_encrypted),
            refresh_token=refresh_token,
            token_uri=self.TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
        ), False

    @staticmethod
    def _store_refreshed(integration: CalendarIntegration, credentials: Credentials) -> None:
        integration.access_token_encrypted = encrypt_token(credentials.token)
        expiry = credentials.expiry
        if expiry is not None and expiry.tzinfo is None:
            # google-auth reports expiry as naive UTC
            expiry = expiry.replace(tzinfo=timezone.utc)
        integration.token_expires_at = expiry
        logger.info(f"Refreshed Google access token for integration {integration.id}")

    def _list_events(self, integration: CalendarIntegration, start: datetime, end: datetime):
        credentials, refreshed = self._credentials(integration)
        service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)

        events = []
        page_token = None
        while True:
            response = service.events().list(
                calendarId=integration.calendar_id,
                timeMin=start.astimezone(timezone.utc).isoformat(),
                timeMax=end.astimezone(timezone.utc).isoformat(),
                singleEvents=True,
                orderBy='startTime',
                pageToken=page_token,
            ).execute()
            events.extend(response.get('items', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                break

        return events, (credentials if refreshed else None)

    async def get_busy_intervals(
            self,
            integration: CalendarIntegration,
            start: datetime,
            end: datetime,
    ) -> List[Interval]:
        try:
            events, refreshed = await asyncio.to_thread(self._list_events, integration, start, end)
        except RefreshError as e:
            raise CalendarUnavailable(f"Google token refresh failed: {e}", provider=self.name)
        except HttpError as e:
            raise CalendarUnavailable(f"Google Calendar API error: {e}", provider=self.name)

        if refreshed is not None:
            self._store_refreshed(integration, refreshed)

        busy = events_to_busy(events)
        logger.debug(f"Google integration {integration.id}: {len(busy)} busy intervals")
        return busy

    def _insert_event(self, integration: CalendarIntegration, body: dict):
        credentials, refreshed = self._credentials(integration)
        service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        created = service.events().insert(
            calendarId=integration.calendar_id,
            body=body,
            sendUpdates='all',
        ).execute()
        return created, (credentials if refreshed else None)

    async def create_event(self, integration: CalendarIntegration, event: CalendarEventData) -> dict:
        body = {
            'summary': event.summary,
            'description': event.description,
            'start': {'dateTime': event.start.isoformat(), 'timeZone': event.timezone},
            'end': {'dateTime': event.end.isoformat(), 'timeZone': event.timezone},
            'attendees': [{'email': email} for email in event.attendees],
        }
        created, refreshed = await asyncio.to_thread(self._insert_event, integration, body)
        if refreshed is not None:
            self._store_refreshed(integration, refreshed)

        return {
            'event_id': created['id'],
            'event_url': created.get('htmlLink'),
        }

    def _remove_event(self, integration: CalendarIntegration, event_id: str):
        credentials, refreshed = self._credentials(integration)
        service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        service.events().delete(
            calendarId=integration.calendar_id,
            eventId=event_id,
            sendUpdates='all',
        ).execute()
        return credentials if refreshed else None

    async def delete_event(self, integration: CalendarIntegration, event_id: str) -> bool:
        try:
            refreshed = await asyncio.to_thread(self._remove_event, integration, event_id)
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.info(f"Google event {event_id} already gone")
                return True
            raise
        if refreshed is not None:
            self._store_refreshed(integration, refreshed)
        return True
