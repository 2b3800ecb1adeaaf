# app/services/availability/rule_resolver.py
"""
Turns weekly rules and date overrides into open intervals for a day.

An override for a date fully replaces the weekly rules for that date.
Times are wall-clock times in the business timezone.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import get_settings
from app.models.availability import AvailabilityRule, AvailabilityOverride
from app.services.scheduling.intervals import Interval, merge

logger = logging.getLogger(__name__)
settings = get_settings()


def get_timezone(name: Optional[str]) -> ZoneInfo:
    """ZoneInfo for a stored timezone name, falling back to DEFAULT_TIMEZONE."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r}, using {settings.DEFAULT_TIMEZONE}")
    return ZoneInfo(settings.DEFAULT_TIMEZONE)


def day_of_week(day: date) -> int:
    """0=Sunday ... 6=Saturday"""
    return (day.weekday() + 1) % 7


def project(day: date, start: time, end: time, tz: ZoneInfo) -> Optional[Interval]:
    """
    Wall-clock times on `day` in `tz` as a UTC interval.

    None when a clock change leaves no time between them, e.g. 02:00-03:00
    on a spring-forward day.
    """
    start_utc = datetime.combine(day, start, tzinfo=tz).astimezone(timezone.utc)
    end_utc = datetime.combine(day, end, tzinfo=tz).astimezone(timezone.utc)
    if start_utc >= end_utc:
        return None
    return Interval(start_utc, end_utc)


def day_bounds(day: date, tz: ZoneInfo) -> Interval:
    """The whole calendar day in `tz`, as UTC."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return Interval(start.astimezone(timezone.utc), end.astimezone(timezone.utc))


def resolve_open_intervals(
        day: date,
        rules: Iterable[AvailabilityRule],
        override: Optional[AvailabilityOverride],
        tz: ZoneInfo,
) -> List[Interval]:
    """Open intervals for one day, ordered and merged. Empty when closed."""
    if override is not None:
        if not override.is_available or override.start_time is None or override.end_time is None:
            return []
        window = project(day, override.start_time, override.end_time, tz)
        return [window] if window is not None else []

    weekday = day_of_week(day)
    windows = (
        project(day, rule.start_time, rule.end_time, tz)
        for rule in rules
        if rule.day_of_week == weekday and rule.is_available
    )
    return merge(w for w in windows if w is not None)


@dataclass
class AvailabilitySchedule:
    """Rules and overrides loaded once for a date range."""
    timezone: ZoneInfo
    rules: List[AvailabilityRule] = field(default_factory=list)
    overrides: Dict[date, AvailabilityOverride] = field(default_factory=dict)

    def open_intervals(self, day: date) -> List[Interval]:
        return resolve_open_intervals(day, self.rules, self.overrides.get(day), self.timezone)

    def has_open_time(self, day: date) -> bool:
        return bool(self.open_intervals(day))


class AvailabilityRuleResolver:
    """Loads availability settings for a business"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_schedule(
            self,
            business_id: UUID,
            timezone_name: Optional[str],
            start_day: date,
            end_day: date,
    ) -> AvailabilitySchedule:
        rules = (await self.db.execute(
            select(AvailabilityRule).where(
                AvailabilityRule.business_id == business_id,
                AvailabilityRule.is_available.is_(True),
            )
        )).scalars().all()

        overrides = (await self.db.execute(
            select(AvailabilityOverride).where(
                AvailabilityOverride.business_id == business_id,
                AvailabilityOverride.date >= start_day,
                AvailabilityOverride.date <= end_day,
            )
        )).scalars().all()

        return AvailabilitySchedule(
            timezone=get_timezone(timezone_name),
            rules=list(rules),
            overrides={o.date: o for o in overrides},
        )

    async def resolve_open_intervals(
            self,
            business_id: UUID,
            timezone_name: Optional[str],
            day: date,
    ) -> List[Interval]:
        schedule = await self.load_schedule(business_id, timezone_name, day, day)
        return schedule.open_intervals(day)
