# app/services/availability/availability_service.py
"""
Read path for availability: available dates and available slots.

Cache first; on a miss, rules + overrides + calendar busy time + existing
appointments go through the slot generator and the result is cached.
Results computed without external calendar data (degraded reads) are
returned but never cached.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import get_settings
from app.models.appointment_type import AppointmentType
from app.models.business import Business
from app.schemas.availability import (
    AppointmentTypeSummary,
    AvailableDatesResponse,
    AvailableSlotsResponse,
    SlotResponse,
)
from app.schemas.outcomes import NotFound, Ok, Outcome, UpstreamUnavailable, ValidationFailed
from app.services.availability.rule_resolver import (
    AvailabilityRuleResolver,
    AvailabilitySchedule,
    day_bounds,
    get_timezone,
)
from app.services.availability.slot_generator import SlotGenerator, min_lead_time
from app.services.cache.availability_cache import AvailabilityCache
from app.services.cache.backends import Clock, utc_clock
from app.services.cache.keys import CalendarEventsKey, DatesKey, SlotsKey
from app.services.calendar.base import CalendarProvider
from app.services.calendar.calendar_source import CalendarEventSource
from app.services.scheduling.exceptions import AccountNotFound, AppointmentTypeNotFound, CalendarUnavailable
from app.services.scheduling.intervals import Interval

logger = logging.getLogger(__name__)
settings = get_settings()


def format_local(instant: datetime, tz: ZoneInfo) -> str:
    """e.g. '9:30 AM' in the account timezone"""
    return instant.astimezone(tz).strftime("%I:%M %p").lstrip("0")


def degrade_on_read(business: Business) -> bool:
    if business.calendar_degrade_on_read is not None:
        return business.calendar_degrade_on_read
    return settings.CALENDAR_DEGRADE_ON_READ


async def get_business(db: AsyncSession, account_id: Optional[UUID] = None, widget_id: Optional[str] = None) -> Business:
    """Active account by id or by public widget id"""
    if account_id is not None:
        query = select(Business).where(Business.id == account_id)
    elif widget_id:
        query = select(Business).where(Business.widget_id == widget_id)
    else:
        raise AccountNotFound("accountId or widgetId is required")

    business = (await db.execute(query)).scalar_one_or_none()
    if business is None or not business.is_active:
        raise AccountNotFound("Account not found")
    return business


async def get_appointment_type(db: AsyncSession, business_id: UUID, appointment_type_id: UUID) -> AppointmentType:
    """Active appointment type owned by the account"""
    appointment_type = (await db.execute(
        select(AppointmentType).where(
            AppointmentType.id == appointment_type_id,
            AppointmentType.business_id == business_id,
            AppointmentType.is_active.is_(True),
        )
    )).scalar_one_or_none()
    if appointment_type is None:
        raise AppointmentTypeNotFound("Appointment type not found or inactive")
    return appointment_type


class AvailabilityService:
    def __init__(
            self,
            db: AsyncSession,
            calendar_source: CalendarEventSource,
            cache: AvailabilityCache,
            clock: Clock = utc_clock,
    ):
        self.db = db
        self.calendar_source = calendar_source
        self.cache = cache
        self.clock = clock
        self.resolver = AvailabilityRuleResolver(db)
        self.generator = SlotGenerator(db, calendar_source, cache=cache, clock=clock)

    def today(self, business: Business) -> date:
        return self.clock().astimezone(get_timezone(business.timezone)).date()

    async def _persist_token_refreshes(self) -> None:
        # Providers update integration tokens in place when they refresh them
        if self.db.dirty:
            await self.db.commit()

    async def _slots_for_day(
            self,
            business: Business,
            appointment_type: AppointmentType,
            day: date,
            schedule: AvailabilitySchedule,
    ) -> Tuple[List[Interval], bool]:
        """(slots, degraded)"""
        try:
            return await self.generator.generate(business, appointment_type, day, schedule), False
        except CalendarUnavailable:
            if not degrade_on_read(business):
                raise
            logger.warning(
                f"Calendar unavailable for business {business.id} on {day}; "
                f"serving availability without external busy time"
            )
            slots = await self.generator.generate(
                business, appointment_type, day, schedule, include_calendar=False
            )
            return slots, True

    async def _day_slots(
            self,
            business: Business,
            appointment_type: AppointmentType,
            day: date,
    ) -> Tuple[List[Interval], bool, bool]:
        """
        (slots, cached, degraded) for one day.

        Cached lists were cut off at "now + lead time" when computed, so the
        cut-off is applied again against the current clock.
        """
        key = SlotsKey(account_id=business.id, appointment_type_id=appointment_type.id, day=day)
        cached = await self.cache.get_slots(key)
        if cached is not None:
            not_before = self.clock() + min_lead_time(business)
            return [slot for slot in cached if slot.start >= not_before], True, False

        schedule_tz = business.timezone or settings.DEFAULT_TIMEZONE
        schedule = await self.resolver.load_schedule(business.id, schedule_tz, day, day)
        slots, degraded = await self._slots_for_day(business, appointment_type, day, schedule)
        if not degraded:
            await self.cache.set_slots(key, slots)
        await self._persist_token_refreshes()
        return slots, False, degraded

    # ------------------------------------------------------------------
    # Core reads (raise domain exceptions)
    # ------------------------------------------------------------------

    async def available_slots(
            self,
            business: Business,
            appointment_type: AppointmentType,
            day: date,
    ) -> AvailableSlotsResponse:
        schedule_tz = business.timezone or settings.DEFAULT_TIMEZONE
        slots, cached, degraded = await self._day_slots(business, appointment_type, day)

        tz = get_timezone(schedule_tz)
        return AvailableSlotsResponse(
            date=day,
            timezone=schedule_tz,
            appointment_type=AppointmentTypeSummary(
                id=appointment_type.id,
                name=appointment_type.name,
                duration=appointment_type.duration_minutes,
            ),
            slots=[
                SlotResponse(
                    start=slot.start,
                    end=slot.end,
                    start_local=format_local(slot.start, tz),
                    end_local=format_local(slot.end, tz),
                )
                for slot in slots
            ],
            cached=cached,
            degraded=degraded,
        )

    async def available_dates(
            self,
            business: Business,
            appointment_type: AppointmentType,
            days_ahead: int,
    ) -> AvailableDatesResponse:
        schedule_tz = business.timezone or settings.DEFAULT_TIMEZONE
        start_day = self.today(business)
        key = DatesKey(
            account_id=business.id,
            appointment_type_id=appointment_type.id,
            start_day=start_day,
            days_ahead=days_ahead,
        )

        cached = await self.cache.get_dates(key)
        degraded = False
        if cached is not None:
            dates = cached
            if dates and dates[0] == start_day:
                # Today's remaining slots may have passed since the list was cached
                today_slots, _, degraded = await self._day_slots(business, appointment_type, start_day)
                if not today_slots:
                    dates = dates[1:]
        else:
            end_day = start_day + timedelta(days=days_ahead)
            schedule = await self.resolver.load_schedule(business.id, schedule_tz, start_day, end_day)

            dates = []
            day = start_day
            while day <= end_day:
                if schedule.has_open_time(day):
                    slots, day_degraded = await self._slots_for_day(business, appointment_type, day, schedule)
                    degraded = degraded or day_degraded
                    if slots:
                        dates.append(day)
                day += timedelta(days=1)

            if not degraded:
                await self.cache.set_dates(key, dates)
            await self._persist_token_refreshes()

        return AvailableDatesResponse(
            dates=dates,
            timezone=schedule_tz,
            appointment_type=AppointmentTypeSummary(
                id=appointment_type.id,
                name=appointment_type.name,
                duration=appointment_type.duration_minutes,
            ),
            cached=cached is not None,
            degraded=degraded,
        )

    async def prewarm(self, business: Business, days: int) -> int:
        """
        Fill the calendar sub-cache for the next `days` open days.
        Returns the number of days fetched. Per-day failures are logged.
        """
        schedule_tz = business.timezone or settings.DEFAULT_TIMEZONE
        start_day = self.today(business)
        schedule = await self.resolver.load_schedule(
            business.id, schedule_tz, start_day, start_day + timedelta(days=days)
        )

        open_days = []
        day = start_day
        while day <= start_day + timedelta(days=days) and len(open_days) < days:
            if schedule.has_open_time(day):
                open_days.append(day)
            day += timedelta(days=1)

        integrations = await self.calendar_source.get_active_integrations(business.id)
        if not integrations:
            logger.info(f"[Prewarm] Business {business.id} has no calendar integrations, nothing to do")
            return 0

        async def warm(target: date) -> bool:
            key = CalendarEventsKey(account_id=business.id, day=target)
            if await self.cache.get_busy(key) is not None:
                logger.debug(f"[Prewarm] {target} already cached, skipping")
                return False
            window = day_bounds(target, schedule.timezone)
            try:
                busy = await self.calendar_source.fetch_busy(integrations, window.start, window.end)
            except CalendarUnavailable as e:
                logger.warning(f"[Prewarm] Failed to cache {target} for business {business.id}: {e}")
                return False
            await self.cache.set_busy(key, busy)
            return True

        started = self.clock()
        results = await asyncio.gather(*(warm(d) for d in open_days))
        warmed = sum(1 for r in results if r)
        await self._persist_token_refreshes()

        elapsed = (self.clock() - started).total_seconds()
        logger.info(
            f"[Prewarm] Cached calendar events for {warmed}/{len(open_days)} days "
            f"for business {business.id} in {elapsed:.2f}s"
        )
        return warmed

    # ------------------------------------------------------------------
    # Outcome façades used by the routers
    # ------------------------------------------------------------------

    async def get_available_dates(
            self,
            appointment_type_id: Optional[UUID],
            days_ahead: Optional[int] = None,
            account_id: Optional[UUID] = None,
            widget_id: Optional[str] = None,
    ) -> Outcome:
        if appointment_type_id is None:
            return ValidationFailed({"appointmentTypeId": "is required"})
        days_ahead = settings.DEFAULT_DAYS_AHEAD if days_ahead is None else days_ahead
        if days_ahead < 0 or days_ahead > settings.MAX_DAYS_AHEAD:
            return ValidationFailed({"daysAhead": f"must be between 0 and {settings.MAX_DAYS_AHEAD}"})

        try:
            business = await get_business(self.db, account_id, widget_id)
            appointment_type = await get_appointment_type(self.db, business.id, appointment_type_id)
            return Ok(await self.available_dates(business, appointment_type, days_ahead))
        except (AccountNotFound, AppointmentTypeNotFound) as e:
            return NotFound(str(e))
        except CalendarUnavailable as e:
            logger.error(f"Available dates failed, calendar unavailable: {e}")
            return UpstreamUnavailable(
                "Calendar provider is unavailable. Please try again shortly.",
                retryable=e.retryable,
            )

    async def get_available_slots(
            self,
            appointment_type_id: Optional[UUID],
            day: Optional[date],
            account_id: Optional[UUID] = None,
            widget_id: Optional[str] = None,
    ) -> Outcome:
        fields = {}
        if appointment_type_id is None:
            fields["appointmentTypeId"] = "is required"
        if day is None:
            fields["date"] = "is required"
        if fields:
            return ValidationFailed(fields)

        try:
            business = await get_business(self.db, account_id, widget_id)
            appointment_type = await get_appointment_type(self.db, business.id, appointment_type_id)
            return Ok(await self.available_slots(business, appointment_type, day))
        except (AccountNotFound, AppointmentTypeNotFound) as e:
            return NotFound(str(e))
        except CalendarUnavailable as e:
            logger.error(f"Available slots failed, calendar unavailable: {e}")
            return UpstreamUnavailable(
                "Calendar provider is unavailable. Please try again shortly.",
                retryable=e.retryable,
            )


async def run_prewarm(
        session_factory: async_sessionmaker,
        cache: AvailabilityCache,
        business_id: UUID,
        days: int,
        providers: Optional[Dict[str, CalendarProvider]] = None,
) -> None:
    """Background entry point: owns its session, never raises."""
    try:
        async with session_factory() as db:
            source = CalendarEventSource(db, providers=providers)
            service = AvailabilityService(db, source, cache)
            business = await get_business(db, account_id=business_id)
            await service.prewarm(business, days)
    except Exception as e:
        logger.error(f"[Prewarm] Failed for business {business_id}: {e}", exc_info=True)
