# app/services/availability/slot_generator.py
"""
Bookable slots for one appointment type on one day.

open intervals (rules/overrides)
  minus busy (external calendars + live appointments padded by their buffers)
  stepped by the appointment duration.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config.settings import get_settings
from app.models.appointment import Appointment, AppointmentStatus
from app.models.appointment_type import AppointmentType
from app.models.business import Business
from app.services.availability.rule_resolver import AvailabilitySchedule, day_bounds
from app.services.cache.availability_cache import AvailabilityCache
from app.services.cache.backends import Clock, utc_clock
from app.services.cache.keys import CalendarEventsKey
from app.services.calendar.calendar_source import CalendarEventSource
from app.services.scheduling.intervals import Interval, merge, subtract

logger = logging.getLogger(__name__)
settings = get_settings()

# Upper bound on appointment buffers when querying neighbouring appointments
BUFFER_SEARCH_MARGIN = timedelta(days=1)


def generate_slots(
        open_intervals: Iterable[Interval],
        busy: Iterable[Interval],
        duration: timedelta,
        not_before: Optional[datetime] = None,
) -> List[Interval]:
    """Pure slot stepping. Ordered by start, identical inputs give identical output."""
    if duration <= timedelta(0):
        raise ValueError("Appointment duration must be positive")

    slots: List[Interval] = []
    for window in subtract(open_intervals, busy):
        cursor = window.start
        while cursor + duration <= window.end:
            if not_before is None or cursor >= not_before:
                slots.append(Interval(cursor, cursor + duration))
            cursor += duration
    return slots


def appointment_busy(appointment: Appointment) -> Interval:
    """The calendar space an appointment occupies, buffers included."""
    appointment_type = appointment.appointment_type
    before = timedelta(minutes=appointment_type.buffer_before_minutes or 0) if appointment_type else timedelta(0)
    after = timedelta(minutes=appointment_type.buffer_after_minutes or 0) if appointment_type else timedelta(0)
    return Interval(appointment.start_time, appointment.end_time).padded(before, after)


def min_lead_time(business: Business) -> timedelta:
    minutes = business.min_booking_lead_minutes
    if minutes is None:
        minutes = settings.BOOKING_MIN_LEAD_MINUTES
    return timedelta(minutes=max(0, minutes))


class SlotGenerator:
    def __init__(
            self,
            db: AsyncSession,
            calendar_source: CalendarEventSource,
            cache: Optional[AvailabilityCache] = None,
            clock: Clock = utc_clock,
    ):
        self.db = db
        self.calendar_source = calendar_source
        self.cache = cache
        self.clock = clock

    async def appointment_busy_intervals(self, business_id: UUID, window: Interval) -> List[Interval]:
        """Non-cancelled appointments near the window, padded with their type's buffers."""
        result = await self.db.execute(
            select(Appointment)
            .options(selectinload(Appointment.appointment_type))
            .where(
                Appointment.business_id == business_id,
                Appointment.status != AppointmentStatus.CANCELLED.value,
                Appointment.start_time < window.end + BUFFER_SEARCH_MARGIN,
                Appointment.end_time > window.start - BUFFER_SEARCH_MARGIN,
            )
            .order_by(Appointment.start_time, Appointment.id)
            .execution_options(populate_existing=True)
        )
        return merge(appointment_busy(a) for a in result.scalars().all())

    async def calendar_busy_intervals(
            self,
            business: Business,
            day: date,
            window: Interval,
            use_cache: bool = True,
    ) -> List[Interval]:
        """
        External busy time for the day. Raises CalendarUnavailable.

        use_cache=False always asks the providers (booking path).
        """
        key = CalendarEventsKey(account_id=business.id, day=day)
        if use_cache and self.cache is not None:
            cached = await self.cache.get_busy(key)
            if cached is not None:
                return cached

        busy = await self.calendar_source.get_busy_intervals(business.id, window.start, window.end)

        if self.cache is not None:
            await self.cache.set_busy(key, busy)
        return busy

    async def generate(
            self,
            business: Business,
            appointment_type: AppointmentType,
            day: date,
            schedule: AvailabilitySchedule,
            use_cache: bool = True,
            include_calendar: bool = True,
    ) -> List[Interval]:
        open_intervals = schedule.open_intervals(day)
        if not open_intervals:
            return []

        window = day_bounds(day, schedule.timezone)
        busy: List[Interval] = []
        if include_calendar:
            busy.extend(await self.calendar_busy_intervals(business, day, window, use_cache=use_cache))
        busy.extend(await self.appointment_busy_intervals(business.id, window))

        slots = generate_slots(
            open_intervals,
            busy,
            timedelta(minutes=appointment_type.duration_minutes),
            not_before=self.clock() + min_lead_time(business),
        )
        logger.debug(
            f"Generated {len(slots)} slots for business {business.id} "
            f"type {appointment_type.id} on {day}"
        )
        return slots
