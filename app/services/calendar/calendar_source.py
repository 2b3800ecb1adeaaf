# app/services/calendar/calendar_source.py
"""
Busy time from the external calendars connected to an account.

A team account has one integration per connected member; the account is
busy whenever any of them is. Any integration failing makes the whole
read fail with CalendarUnavailable, since a partial answer could hide a
conflict. Callers decide whether to degrade.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import get_settings
from app.models.calendar_integration import CalendarIntegration
from app.services.calendar.base import CalendarProvider
from app.services.scheduling.exceptions import CalendarUnavailable
from app.services.scheduling.intervals import Interval, merge

logger = logging.getLogger(__name__)
settings = get_settings()


def default_providers() -> Dict[str, CalendarProvider]:
    from app.services.calendar.google_calendar_service import GoogleCalendarService
    from app.services.calendar.outlook_service import OutlookCalendarService

    return {
        "google": GoogleCalendarService(),
        "outlook": OutlookCalendarService(),
    }


class CalendarEventSource:
    def __init__(
            self,
            db: AsyncSession,
            providers: Optional[Dict[str, CalendarProvider]] = None,
            timeout_seconds: Optional[float] = None,
    ):
        self.db = db
        self.providers = providers if providers is not None else default_providers()
        self.timeout_seconds = timeout_seconds or settings.CALENDAR_FETCH_TIMEOUT_SECONDS

    def provider_for(self, integration: CalendarIntegration) -> CalendarProvider:
        provider = self.providers.get(integration.provider)
        if provider is None:
            raise CalendarUnavailable(
                f"Unsupported calendar provider: {integration.provider}",
                provider=integration.provider,
                retryable=False,
            )
        return provider

    async def get_active_integrations(self, business_id: UUID) -> List[CalendarIntegration]:
        result = await self.db.execute(
            select(CalendarIntegration)
            .where(
                CalendarIntegration.business_id == business_id,
                CalendarIntegration.is_active.is_(True),
            )
            .order_by(CalendarIntegration.created_at, CalendarIntegration.id)
        )
        return [i for i in result.scalars().all() if i.reads_busy_time]

    async def primary_integration(self, business_id: UUID) -> Optional[CalendarIntegration]:
        """The integration created events are written to."""
        result = await self.db.execute(
            select(CalendarIntegration)
            .where(
                CalendarIntegration.business_id == business_id,
                CalendarIntegration.is_active.is_(True),
            )
            .order_by(CalendarIntegration.is_primary.desc(), CalendarIntegration.created_at)
        )
        for integration in result.scalars().all():
            if integration.writes_events:
                return integration
        return None

    async def _fetch_one(self, integration: CalendarIntegration, start: datetime, end: datetime) -> List[Interval]:
        provider = self.provider_for(integration)
        try:
            return await asyncio.wait_for(
                provider.get_busy_intervals(integration, start, end),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise CalendarUnavailable(
                f"{integration.provider} calendar timed out after {self.timeout_seconds}s",
                provider=integration.provider,
            )
        except CalendarUnavailable:
            raise
        except Exception as e:
            # Provider SDKs raise their own transport and auth errors
            raise CalendarUnavailable(
                f"{integration.provider} calendar error: {e}",
                provider=integration.provider,
            ) from e

    async def fetch_busy(
            self,
            integrations: List[CalendarIntegration],
            start: datetime,
            end: datetime,
    ) -> List[Interval]:
        """Merged busy intervals for already loaded integrations. No database access."""
        if not integrations:
            return []

        results = await asyncio.gather(
            *(self._fetch_one(i, start, end) for i in integrations),
            return_exceptions=True,
        )

        busy: List[Interval] = []
        for integration, result in zip(integrations, results):
            if isinstance(result, CalendarUnavailable):
                logger.warning(
                    f"Calendar fetch failed for business {integration.business_id} "
                    f"integration {integration.id}: {result}"
                )
                raise result
            if isinstance(result, BaseException):
                # Cancellation
                raise result
            busy.extend(result)

        return merge(busy)

    async def get_busy_intervals(self, business_id: UUID, start: datetime, end: datetime) -> List[Interval]:
        """Merged busy intervals across every active integration of the account."""
        integrations = await self.get_active_integrations(business_id)
        return await self.fetch_busy(integrations, start, end)
