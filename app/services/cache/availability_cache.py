# app/services/cache/availability_cache.py
"""
Availability cache.

Two TTL classes share one backend:
  - derived results (available dates, available slots), 60 minutes by default
  - raw external calendar busy intervals, 15 minutes by default

Derived entries are explicitly invalidated on every local mutation; the
calendar sub-cache bounds staleness from changes made outside the system.
A miss is always safe: callers recompute.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Any, List, Optional
from uuid import UUID

import redis.asyncio as redis

from app.config.redis import get_redis_pool
from app.config.settings import Settings, get_settings
from app.services.cache.backends import (
    CacheBackend,
    Clock,
    InMemoryCacheBackend,
    RedisCacheBackend,
    utc_clock,
)
from app.services.cache.keys import CacheKey, CalendarEventsKey, DatesKey, SlotsKey
from app.services.scheduling.intervals import Interval

logger = logging.getLogger(__name__)


def _encode_intervals(intervals: List[Interval]) -> List[dict]:
    return [i.to_dict() for i in intervals]


def _decode_intervals(raw: Any) -> List[Interval]:
    return [
        Interval(datetime.fromisoformat(item["start"]), datetime.fromisoformat(item["end"]))
        for item in raw
    ]


class AvailabilityCache:
    """Typed get/set over a CacheBackend"""

    def __init__(
            self,
            backend: CacheBackend,
            derived_ttl: timedelta = timedelta(minutes=60),
            calendar_ttl: timedelta = timedelta(minutes=15),
    ):
        self.backend = backend
        self.derived_ttl = derived_ttl
        self.calendar_ttl = calendar_ttl

    async def _read(self, key: CacheKey, decode) -> Optional[Any]:
        raw = await self.backend.get(key)
        if raw is None:
            logger.debug(f"[Cache] miss {key.to_string()}")
            return None
        try:
            value = decode(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[Cache] Corrupt entry {key.to_string()}, treating as miss: {e}")
            await self.backend.delete(key)
            return None
        logger.debug(f"[Cache] hit {key.to_string()}")
        return value

    # ---- available dates ----

    async def get_dates(self, key: DatesKey) -> Optional[List[date]]:
        return await self._read(key, lambda raw: [date.fromisoformat(d) for d in raw])

    async def set_dates(self, key: DatesKey, dates: List[date]) -> None:
        await self.backend.set(key, [d.isoformat() for d in dates], self.derived_ttl)

    # ---- available slots ----

    async def get_slots(self, key: SlotsKey) -> Optional[List[Interval]]:
        return await self._read(key, _decode_intervals)

    async def set_slots(self, key: SlotsKey, slots: List[Interval]) -> None:
        await self.backend.set(key, _encode_intervals(slots), self.derived_ttl)

    # ---- external calendar busy intervals ----

    async def get_busy(self, key: CalendarEventsKey) -> Optional[List[Interval]]:
        return await self._read(key, _decode_intervals)

    async def set_busy(self, key: CalendarEventsKey, busy: List[Interval]) -> None:
        await self.backend.set(key, _encode_intervals(busy), self.calendar_ttl)

    # ---- invalidation ----

    async def invalidate_account(self, account_id: UUID) -> int:
        """Drop every entry for the account. Used after bookings, cancellations and settings changes."""
        removed = await self.backend.invalidate_account(account_id)
        logger.info(f"[Cache] Invalidated {removed} entries for account {account_id}")
        return removed

    async def invalidate_appointment_type(self, account_id: UUID, appointment_type_id: UUID) -> int:
        removed = await self.backend.invalidate_account(account_id, appointment_type_id)
        logger.info(
            f"[Cache] Invalidated {removed} entries for account {account_id} "
            f"appointment type {appointment_type_id}"
        )
        return removed

    async def sweep(self) -> int:
        removed = await self.backend.sweep()
        if removed:
            logger.info(f"[Cache] Swept {removed} expired entries")
        return removed

    async def stats(self) -> dict:
        return {
            "backend": self.backend.name,
            "size": await self.backend.size(),
            "derived_ttl_minutes": int(self.derived_ttl.total_seconds() // 60),
            "calendar_ttl_minutes": int(self.calendar_ttl.total_seconds() // 60),
        }

    async def close(self) -> None:
        await self.backend.close()


class CacheSweeper:
    """Runs AvailabilityCache.sweep on a fixed interval, independent of traffic."""

    def __init__(self, cache: AvailabilityCache, interval: timedelta):
        self.cache = cache
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="availability-cache-sweeper")
        logger.info(f"[Cache] Sweeper started (every {self.interval})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[Cache] Sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval.total_seconds())
            try:
                await self.cache.sweep()
            except Exception as e:
                logger.error(f"[Cache] Sweep failed: {e}", exc_info=True)


def build_availability_cache(settings: Optional[Settings] = None, clock: Clock = utc_clock) -> AvailabilityCache:
    """Create the cache described by CACHE_BACKEND."""
    settings = settings or get_settings()

    if settings.CACHE_BACKEND == "redis":
        backend: CacheBackend = RedisCacheBackend(redis.Redis(connection_pool=get_redis_pool()), clock=clock)
    elif settings.CACHE_BACKEND == "memory":
        backend = InMemoryCacheBackend(clock=clock)
    else:
        raise ValueError(f"Unknown CACHE_BACKEND: {settings.CACHE_BACKEND}")

    logger.info(f"[Cache] Using {backend.name} availability cache")
    return AvailabilityCache(
        backend,
        derived_ttl=timedelta(minutes=settings.AVAILABILITY_CACHE_TTL_MINUTES),
        calendar_ttl=timedelta(minutes=settings.CALENDAR_CACHE_TTL_MINUTES),
    )
