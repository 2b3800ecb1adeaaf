"""
Tests for the availability read path: caching, degraded reads and prewarming.
"""
import uuid
from datetime import timedelta
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from app.models import AvailabilityOverride
from app.schemas.outcomes import NotFound, Ok, UpstreamUnavailable, ValidationFailed
from app.services.availability import availability_service
from app.services.availability.availability_service import AvailabilityService, format_local, run_prewarm
from app.services.cache.keys import CalendarEventsKey, SlotsKey
from app.services.scheduling.exceptions import CalendarUnavailable
from app.services.scheduling.intervals import Interval
from conftest import MONDAY, TUESDAY, add_integration, create_business, utc


@pytest.fixture
def service(db, calendar_source, cache, clock):
    return AvailabilityService(db, calendar_source, cache, clock)


class TestAvailableSlots:

    async def test_computes_then_serves_from_cache(self, service, business, appointment_type):
        first = await service.available_slots(business, appointment_type, MONDAY)
        second = await service.available_slots(business, appointment_type, MONDAY)

        assert len(first.slots) == 16
        assert not first.cached
        assert second.cached
        assert [s.start for s in second.slots] == [s.start for s in first.slots]

    async def test_local_labels(self, db, calendar_source, cache, clock, session_factory):
        business, appointment_type = await create_business(session_factory, timezone="America/New_York")
        service = AvailabilityService(db, calendar_source, cache, clock)

        result = await service.available_slots(business, appointment_type, MONDAY)

        assert result.timezone == "America/New_York"
        assert result.slots[0].start == utc(MONDAY, 14)
        assert result.slots[0].start_local == "9:00 AM"
        assert result.slots[-1].end_local == "5:00 PM"

    async def test_stale_cache_entry_is_recomputed_after_ttl(self, service, cache, clock, business, appointment_type):
        key = SlotsKey(account_id=business.id, appointment_type_id=appointment_type.id, day=MONDAY)
        await cache.set_slots(key, [Interval(utc(MONDAY, 9), utc(MONDAY, 9, 30))])

        assert len((await service.available_slots(business, appointment_type, MONDAY)).slots) == 1

        clock.advance(timedelta(minutes=61))
        result = await service.available_slots(business, appointment_type, MONDAY)

        assert not result.cached
        assert len(result.slots) == 16

    async def test_cached_slots_that_have_passed_are_dropped(self, service, clock, business, appointment_type):
        clock.now = utc(MONDAY, 8, 55)
        first = await service.available_slots(business, appointment_type, MONDAY)

        clock.now = utc(MONDAY, 9, 45)
        second = await service.available_slots(business, appointment_type, MONDAY)

        assert first.slots[0].start == utc(MONDAY, 9)
        assert second.cached
        assert second.slots[0].start == utc(MONDAY, 10)
        assert len(second.slots) == 14

    async def test_lead_time_applies_to_cached_slots(self, service, clock, business, appointment_type):
        clock.now = utc(MONDAY, 8)
        await service.available_slots(business, appointment_type, MONDAY)

        business.min_booking_lead_minutes = 90
        result = await service.available_slots(business, appointment_type, MONDAY)

        assert result.cached
        assert result.slots[0].start == utc(MONDAY, 9, 30)

    async def test_calendar_failure_without_degrade_raises(self, session_factory, google, service, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        with pytest.raises(CalendarUnavailable):
            await service.available_slots(business, appointment_type, MONDAY)

    async def test_degraded_read_is_served_but_not_cached(self, session_factory, db, calendar_source, cache, clock, google):
        business, appointment_type = await create_business(session_factory, calendar_degrade_on_read=True)
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")
        service = AvailabilityService(db, calendar_source, cache, clock)

        result = await service.available_slots(business, appointment_type, MONDAY)

        assert result.degraded
        assert len(result.slots) == 16
        key = SlotsKey(account_id=business.id, appointment_type_id=appointment_type.id, day=MONDAY)
        assert await cache.get_slots(key) is None

    async def test_global_degrade_setting_applies_when_account_is_unset(self, session_factory, google, service, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        with patch.object(availability_service.settings, "CALENDAR_DEGRADE_ON_READ", True):
            result = await service.available_slots(business, appointment_type, MONDAY)

        assert result.degraded


class TestAvailableDates:

    async def test_dates_within_window(self, service, business, appointment_type):
        # Today is Sunday 2030-01-06; the window runs through Sunday the 13th
        result = await service.available_dates(business, appointment_type, 7)

        assert result.dates == [MONDAY + timedelta(days=i) for i in range(5)]
        assert not result.cached

    async def test_zero_days_ahead_is_today_only(self, service, business, appointment_type):
        result = await service.available_dates(business, appointment_type, 0)
        assert result.dates == []

    async def test_closed_override_drops_the_date(self, session_factory, service, business, appointment_type):
        async with session_factory() as session:
            session.add(AvailabilityOverride(business_id=business.id, date=TUESDAY, is_available=False))
            await session.commit()

        result = await service.available_dates(business, appointment_type, 7)

        assert TUESDAY not in result.dates
        assert MONDAY in result.dates

    async def test_fully_booked_day_is_dropped(self, session_factory, google, service, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.busy = [Interval(utc(MONDAY, 0), utc(TUESDAY, 0))]

        result = await service.available_dates(business, appointment_type, 7)

        assert MONDAY not in result.dates
        assert TUESDAY in result.dates

    async def test_second_call_is_cached(self, service, business, appointment_type):
        await service.available_dates(business, appointment_type, 7)
        assert (await service.available_dates(business, appointment_type, 7)).cached

    async def test_dates_follow_the_clock(self, service, clock, business, appointment_type):
        await service.available_dates(business, appointment_type, 7)

        clock.advance(timedelta(days=1))
        result = await service.available_dates(business, appointment_type, 7)

        assert not result.cached

    async def test_cached_today_is_dropped_once_its_slots_pass(self, service, clock, business, appointment_type):
        clock.now = utc(MONDAY, 8)
        morning = await service.available_dates(business, appointment_type, 7)

        clock.now = utc(MONDAY, 16, 45)
        evening = await service.available_dates(business, appointment_type, 7)

        assert morning.dates[0] == MONDAY
        assert evening.cached
        assert evening.dates[0] == TUESDAY


class TestOutcomes:

    async def test_missing_appointment_type(self, service, business):
        outcome = await service.get_available_dates(None, account_id=business.id)
        assert isinstance(outcome, ValidationFailed)
        assert "appointmentTypeId" in outcome.fields

    async def test_days_ahead_bounds(self, service, business, appointment_type):
        outcome = await service.get_available_dates(appointment_type.id, days_ahead=-1, account_id=business.id)
        assert isinstance(outcome, ValidationFailed)
        assert "daysAhead" in outcome.fields

    async def test_missing_slot_parameters(self, service):
        outcome = await service.get_available_slots(None, None, account_id=uuid.uuid4())
        assert isinstance(outcome, ValidationFailed)
        assert set(outcome.fields) == {"appointmentTypeId", "date"}

    async def test_unknown_account(self, service, appointment_type):
        outcome = await service.get_available_slots(appointment_type.id, MONDAY, account_id=uuid.uuid4())
        assert isinstance(outcome, NotFound)

    async def test_by_widget_id(self, service, business, appointment_type):
        outcome = await service.get_available_slots(appointment_type.id, MONDAY, widget_id=business.widget_id)
        assert isinstance(outcome, Ok)
        assert len(outcome.value.slots) == 16

    async def test_upstream_unavailable(self, session_factory, google, service, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        outcome = await service.get_available_dates(appointment_type.id, 7, account_id=business.id)

        assert isinstance(outcome, UpstreamUnavailable)
        assert outcome.retry_after_seconds > 0


class TestPrewarm:

    async def test_warms_open_days(self, session_factory, google, cache, service, business):
        await add_integration(session_factory, business, "google")

        warmed = await service.prewarm(business, 3)

        assert warmed == 3
        assert len(google.calls) == 3
        assert await cache.get_busy(CalendarEventsKey(account_id=business.id, day=MONDAY)) == []

    async def test_skips_days_already_cached(self, session_factory, google, cache, service, business):
        await add_integration(session_factory, business, "google")
        await cache.set_busy(CalendarEventsKey(account_id=business.id, day=MONDAY), [])

        warmed = await service.prewarm(business, 3)

        assert warmed == 2
        assert len(google.calls) == 2

    async def test_without_integrations_does_nothing(self, google, service, business):
        assert await service.prewarm(business, 3) == 0
        assert google.calls == []

    async def test_failed_days_are_not_cached(self, session_factory, google, cache, service, business):
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        assert await service.prewarm(business, 2) == 0
        assert await cache.get_busy(CalendarEventsKey(account_id=business.id, day=MONDAY)) is None

    async def test_warmed_busy_time_is_used_by_reads(self, session_factory, google, service, business, appointment_type):
        await add_integration(session_factory, business, "google")
        await service.prewarm(business, 1)

        await service.available_slots(business, appointment_type, MONDAY)

        assert len(google.calls) == 1

    async def test_run_prewarm_never_raises(self, session_factory, cache, providers, google):
        await run_prewarm(session_factory, cache, uuid.uuid4(), 3, providers)
        assert google.calls == []

    async def test_run_prewarm_owns_its_session(self, session_factory, cache, providers, google, business):
        await add_integration(session_factory, business, "google")

        await run_prewarm(session_factory, cache, business.id, 2, providers)

        assert len(google.calls) == 2


class TestFormatLocal:

    def test_twelve_hour_clock_without_leading_zero(self):
        assert format_local(utc(MONDAY, 14, 5), ZoneInfo("UTC")) == "2:05 PM"
        assert format_local(utc(MONDAY, 0), ZoneInfo("UTC")) == "12:00 AM"
