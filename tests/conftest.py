"""
Shared fixtures: a file-backed SQLite database per test, a seeded account,
fake calendar providers, a recording dispatcher and a controllable clock.
"""
import asyncio
import os
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("BOOKING_MIN_LEAD_MINUTES", "0")
os.environ.setdefault("CALENDAR_DEGRADE_ON_READ", "false")

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models import AppointmentType, AvailabilityRule, Base, Business, CalendarIntegration
from app.services.cache.availability_cache import AvailabilityCache
from app.services.cache.backends import InMemoryCacheBackend
from app.services.calendar.base import CalendarEventData, CalendarProvider
from app.services.calendar.calendar_source import CalendarEventSource
from app.services.notification.dispatcher import NotificationDispatcher
from app.services.scheduling.intervals import Interval, overlaps

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
SATURDAY = date(2030, 1, 12)

# Sunday noon UTC, before any of the test days open
FIXED_NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)


def utc(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeCalendarProvider(CalendarProvider):
    name = "fake"

    def __init__(self, busy: Optional[List[Interval]] = None, error: Optional[Exception] = None, delay: float = 0):
        self.busy = list(busy or [])
        self.error = error
        self.delay = delay
        self.calls = []
        self.created = []
        self.deleted = []

    async def get_busy_intervals(self, integration, start, end):
        self.calls.append((integration.id, start, end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        window = Interval(start, end)
        return [b for b in self.busy if overlaps(b, window)]

    async def create_event(self, integration, event: CalendarEventData) -> dict:
        self.created.append(event)
        return {"event_id": f"evt-{len(self.created)}", "event_url": None}

    async def delete_event(self, integration, event_id: str) -> bool:
        self.deleted.append(event_id)
        return True


class RecordingDispatcher(NotificationDispatcher):
    """Records enqueued side effects instead of sending them to Celery."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.enqueued = []

    def _enqueue(self, task_name: str, *args) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.enqueued.append((task_name, args))

    def names(self) -> List[str]:
        return [name for name, _ in self.enqueued]


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")

    # SQLite has no SELECT ... FOR UPDATE; BEGIN IMMEDIATE serializes writers instead
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Seed data
# ============================================================================

async def create_business(session_factory, **overrides):
    """Account open Monday-Friday 09:00-17:00 with a 30 minute appointment type."""
    async with session_factory() as session:
        business = Business(
            name=overrides.pop("name", "Acme Dental"),
            timezone=overrides.pop("timezone", "UTC"),
            **overrides,
        )
        session.add(business)
        await session.flush()

        for day_of_week in range(1, 6):
            session.add(AvailabilityRule(
                business_id=business.id,
                day_of_week=day_of_week,
                start_time=time(9, 0),
                end_time=time(17, 0),
                is_available=True,
            ))

        appointment_type = AppointmentType(
            business_id=business.id,
            name="Consultation",
            duration_minutes=30,
            buffer_before_minutes=0,
            buffer_after_minutes=0,
            is_active=True,
        )
        session.add(appointment_type)
        await session.commit()

        return business, appointment_type


async def add_integration(session_factory, business: Business, provider: str = "google", **fields) -> CalendarIntegration:
    async with session_factory() as session:
        integration = CalendarIntegration(
            business_id=business.id,
            provider=provider,
            is_active=fields.pop("is_active", True),
            is_primary=fields.pop("is_primary", True),
            sync_direction=fields.pop("sync_direction", "bidirectional"),
            provider_config={},
            **fields,
        )
        session.add(integration)
        await session.commit()
        return integration


@pytest.fixture
async def seeded(session_factory):
    return await create_business(session_factory)


@pytest.fixture
def business(seeded):
    return seeded[0]


@pytest.fixture
def appointment_type(seeded):
    return seeded[1]


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def cache(clock):
    return AvailabilityCache(
        InMemoryCacheBackend(clock=clock),
        derived_ttl=timedelta(minutes=60),
        calendar_ttl=timedelta(minutes=15),
    )


@pytest.fixture
def google():
    return FakeCalendarProvider()


@pytest.fixture
def outlook():
    return FakeCalendarProvider()


@pytest.fixture
def providers(google, outlook) -> Dict[str, CalendarProvider]:
    return {"google": google, "outlook": outlook}


@pytest.fixture
def calendar_source(db, providers):
    return CalendarEventSource(db, providers=providers, timeout_seconds=0.5)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
