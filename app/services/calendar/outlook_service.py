# app/services/calendar/outlook_service.py
import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx
import msal

from app.config.settings import get_settings
from app.models import CalendarIntegration
from app.services.calendar.base import CalendarEventData, CalendarProvider, token_needs_refresh
from app.services.scheduling.exceptions import CalendarUnavailable
from app.services.scheduling.intervals import Interval
from app.utils.encryption import decrypt_token, encrypt_token

settings = get_settings()

logger = logging.getLogger(__name__)


def _parse_graph_time(value: str) -> datetime:
    # Graph returns UTC without an offset when Prefer: outlook.timezone="UTC",
    # with seven fractional digits
    value = re.sub(r"(\.\d{6})\d+", r"\1", value)
    if not value.endswith('Z') and '+' not in value[10:]:
        value += 'Z'
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return parsed.astimezone(timezone.utc)


def graph_events_to_busy(events: List[dict]) -> List[Interval]:
    busy = []
    for event in events:
        if event.get('isCancelled') or event.get('isAllDay'):
            continue
        if event.get('showAs') == 'free':
            continue
        if event.get('responseStatus', {}).get('response') == 'declined':
            continue
        start = _parse_graph_time(event['start']['dateTime'])
        end = _parse_graph_time(event['end']['dateTime'])
        if start < end:
            busy.append(Interval(start, end))
    return busy


class OutlookCalendarService(CalendarProvider):
    """Outlook calendars through Microsoft Graph"""

    name = "outlook"
    SCOPES = ['Calendars.ReadWrite']
    AUTHORITY = 'https://login.microsoftonline.com/common'
    GRAPH_ENDPOINT = 'https://graph.microsoft.com/v1.0'

    def __init__(
            self,
            client_id: Optional[str] = None,
            client_secret: Optional[str] = None,
            http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id or settings.MICROSOFT_CLIENT_ID
        self.client_secret = client_secret or settings.MICROSOFT_CLIENT_SECRET
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.GRAPH_ENDPOINT,
                timeout=settings.CALENDAR_FETCH_TIMEOUT_SECONDS,
            )
        return self._http_client

    def _acquire_by_refresh_token(self, refresh_token: str) -> dict:
        app = msal.ConfidentialClientApplication(
            self.client_id,
            authority=self.AUTHORITY,
            client_credential=self.client_secret
        )
        return app.acquire_token_by_refresh_token(
            refresh_token=refresh_token,
            scopes=self.SCOPES
        )

    async def refresh_access_token(self, integration: CalendarIntegration) -> None:
        """Refresh expired access token"""
        refresh_token = decrypt_token(integration.refresh_token_encrypted)
        result = await asyncio.to_thread(self._acquire_by_refresh_token, refresh_token)

        if "error" in result:
            raise CalendarUnavailable(
                f"Outlook token refresh failed: {result.get('error_description')}",
                provider=self.name,
            )

        integration.access_token_encrypted = encrypt_token(result['access_token'])
        if result.get('refresh_token'):
            integration.refresh_token_encrypted = encrypt_token(result['refresh_token'])
        integration.token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=result['expires_in'])
        logger.info(f"Refreshed Outlook access token for integration {integration.id}")

    async def _headers(self, integration: CalendarIntegration) -> dict:
        if token_needs_refresh(integration):
            await self.refresh_access_token(integration)
        return {
            'Authorization': f"Bearer {decrypt_token(integration.access_token_encrypted)}",
            'Prefer': 'outlook.timezone="UTC"',
        }

    def _calendar_path(self, integration: CalendarIntegration) -> str:
        calendar_id = (integration.provider_config or {}).get('selected_calendar_id')
        if not calendar_id or calendar_id == 'primary':
            return "/me/calendar"
        return f"/me/calendars/{calendar_id}"

    async def get_busy_intervals(
            self,
            integration: CalendarIntegration,
            start: datetime,
            end: datetime,
    ) -> List[Interval]:
        headers = await self._headers(integration)
        params = {
            'startDateTime': start.astimezone(timezone.utc).isoformat(),
            'endDateTime': end.astimezone(timezone.utc).isoformat(),
            '$select': 'start,end,showAs,isCancelled,isAllDay,responseStatus',
            '$top': 250,
        }

        events: List[dict] = []
        url = f"{self._calendar_path(integration)}/calendarView"
        try:
            while url:
                response = await self._client().get(url, headers=headers, params=params)
                if response.status_code != 200:
                    logger.error(f"Microsoft Graph API error: {response.text}")
                    raise CalendarUnavailable(
                        f"Failed to fetch calendar events ({response.status_code})",
                        provider=self.name,
                        retryable=response.status_code >= 500 or response.status_code == 429,
                    )
                payload = response.json()
                events.extend(payload.get('value', []))
                # nextLink already carries the query string
                url = payload.get('@odata.nextLink')
                params = None
        except httpx.HTTPError as e:
            raise CalendarUnavailable(f"Microsoft Graph unreachable: {e}", provider=self.name)

        busy = graph_events_to_busy(events)
        logger.debug(f"Outlook integration {integration.id}: {len(busy)} busy intervals")
        return busy

    async def create_event(self, integration: CalendarIntegration, event: CalendarEventData) -> dict:
        """Create a calendar event in Outlook"""
        headers = await self._headers(integration)
        payload = {
            'subject': event.summary,
            'body': {
                'contentType': 'HTML',
                'content': event.description,
            },
            'start': {
                'dateTime': event.start.astimezone(timezone.utc).isoformat(),
                'timeZone': 'UTC'
            },
            'end': {
                'dateTime': event.end.astimezone(timezone.utc).isoformat(),
                'timeZone': 'UTC'
            },
            'attendees': [
                {
                    'emailAddress': {'address': email},
                    'type': 'required'
                }
                for email in event.attendees
            ],
        }

        response = await self._client().post(
            f"{self._calendar_path(integration)}/events",
            headers=headers,
            json=payload
        )
        if response.status_code not in (200, 201):
            raise CalendarUnavailable(f"Failed to create event: {response.text}", provider=self.name)

        created = response.json()
        return {
            'event_id': created['id'],
            'event_url': created.get('webLink'),
        }

    async def delete_event(self, integration: CalendarIntegration, event_id: str) -> bool:
        """Delete a calendar event"""
        headers = await self._headers(integration)
        response = await self._client().delete(f"/me/events/{event_id}", headers=headers)
        if response.status_code == 404:
            logger.info(f"Outlook event {event_id} already gone")
            return True
        if response.status_code != 204:
            raise CalendarUnavailable(f"Failed to delete event: {response.text}", provider=self.name)
        return True

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
