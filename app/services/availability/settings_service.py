# app/services/availability/settings_service.py
"""
Owner-side writes to availability settings.

Every change is validated before anything is written, and every successful
write drops the cached availability it could have affected.
"""
import logging
from datetime import date, time
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointment_type import AppointmentType
from app.models.availability import AvailabilityOverride, AvailabilityRule
from app.schemas.availability import (
    AppointmentTypeUpdate,
    AvailabilityRuleInput,
    DateOverrideInput,
    parse_hhmm,
)
from app.schemas.outcomes import NotFound, Ok, Outcome, ValidationFailed
from app.services.cache.availability_cache import AvailabilityCache
from app.services.scheduling.exceptions import AppointmentTypeNotFound, AvailabilityValidationError

logger = logging.getLogger(__name__)

BUFFER_FIELDS = ("buffer_before_minutes", "buffer_after_minutes")


def format_hhmm(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def _parse_window(prefix: str, start: Optional[str], end: Optional[str], errors: Dict[str, str]) -> Tuple[Optional[time], Optional[time]]:
    parsed = []
    for name, raw in (("start_time", start), ("end_time", end)):
        try:
            parsed.append(parse_hhmm(raw))
        except ValueError as e:
            errors[f"{prefix}{name}"] = str(e)
            parsed.append(None)

    start_at, end_at = parsed
    if start_at is not None and end_at is not None and start_at >= end_at:
        errors[f"{prefix}end_time"] = "must be after start_time"
    return start_at, end_at


def validate_rules(rules: List[AvailabilityRuleInput]) -> List[Tuple[int, time, time, bool]]:
    errors: Dict[str, str] = {}
    parsed = []
    for i, rule in enumerate(rules):
        prefix = f"rules[{i}]."
        if not 0 <= rule.day_of_week <= 6:
            errors[f"{prefix}day_of_week"] = "must be between 0 (Sunday) and 6 (Saturday)"
        start_at, end_at = _parse_window(prefix, rule.start_time, rule.end_time, errors)
        parsed.append((rule.day_of_week, start_at, end_at, rule.is_available))

    if errors:
        raise AvailabilityValidationError(errors)
    return parsed


def validate_override(override: DateOverrideInput) -> Tuple[Optional[time], Optional[time]]:
    errors: Dict[str, str] = {}
    start_at = end_at = None

    if override.is_available:
        if override.start_time is None:
            errors["start_time"] = "is required when is_available is true"
        if override.end_time is None:
            errors["end_time"] = "is required when is_available is true"
        if not errors:
            start_at, end_at = _parse_window("", override.start_time, override.end_time, errors)

    if errors:
        raise AvailabilityValidationError(errors)
    return start_at, end_at


class AvailabilitySettingsService:
    def __init__(self, db: AsyncSession, cache: AvailabilityCache):
        self.db = db
        self.cache = cache

    async def list_rules(self, business_id: UUID) -> List[AvailabilityRule]:
        result = await self.db.execute(
            select(AvailabilityRule)
            .where(AvailabilityRule.business_id == business_id)
            .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
        )
        return list(result.scalars().all())

    async def replace_rules(self, business_id: UUID, rules: List[AvailabilityRuleInput]) -> List[AvailabilityRule]:
        """Replace the weekly schedule wholesale."""
        parsed = validate_rules(rules)

        await self.db.execute(delete(AvailabilityRule).where(AvailabilityRule.business_id == business_id))
        for day_of_week, start_at, end_at, is_available in parsed:
            self.db.add(AvailabilityRule(
                business_id=business_id,
                day_of_week=day_of_week,
                start_time=start_at,
                end_time=end_at,
                is_available=is_available,
            ))
        await self.db.commit()

        logger.info(f"Replaced availability rules for business {business_id} ({len(parsed)} rules)")
        await self.cache.invalidate_account(business_id)
        return await self.list_rules(business_id)

    async def list_overrides(self, business_id: UUID, start: Optional[date] = None) -> List[AvailabilityOverride]:
        query = select(AvailabilityOverride).where(AvailabilityOverride.business_id == business_id)
        if start is not None:
            query = query.where(AvailabilityOverride.date >= start)
        result = await self.db.execute(query.order_by(AvailabilityOverride.date))
        return list(result.scalars().all())

    async def upsert_override(self, business_id: UUID, data: DateOverrideInput) -> AvailabilityOverride:
        start_at, end_at = validate_override(data)

        override = (await self.db.execute(
            select(AvailabilityOverride).where(
                AvailabilityOverride.business_id == business_id,
                AvailabilityOverride.date == data.date,
            )
        )).scalar_one_or_none()
        if override is None:
            override = AvailabilityOverride(business_id=business_id, date=data.date)
            self.db.add(override)

        override.is_available = data.is_available
        override.start_time = start_at
        override.end_time = end_at
        override.reason = data.reason
        await self.db.commit()

        logger.info(f"Saved availability override for business {business_id} on {data.date}")
        await self.cache.invalidate_account(business_id)
        return override

    async def delete_override(self, business_id: UUID, override_id: UUID) -> bool:
        override = (await self.db.execute(
            select(AvailabilityOverride).where(
                AvailabilityOverride.id == override_id,
                AvailabilityOverride.business_id == business_id,
            )
        )).scalar_one_or_none()
        if override is None:
            return False

        await self.db.delete(override)
        await self.db.commit()
        await self.cache.invalidate_account(business_id)
        return True

    async def update_appointment_type(
            self,
            business_id: UUID,
            appointment_type_id: UUID,
            data: AppointmentTypeUpdate,
    ) -> AppointmentType:
        """
        Edit or (de)activate a type. Only that type's cached results are
        dropped, unless its buffers changed: booked appointments of this type
        block time for every type on the account.
        """
        appointment_type = (await self.db.execute(
            select(AppointmentType).where(
                AppointmentType.id == appointment_type_id,
                AppointmentType.business_id == business_id,
            )
        )).scalar_one_or_none()
        if appointment_type is None:
            raise AppointmentTypeNotFound("Appointment type not found")

        buffers_changed = False
        for field_name, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            if field_name in BUFFER_FIELDS and getattr(appointment_type, field_name) != value:
                buffers_changed = True
            setattr(appointment_type, field_name, value)
        await self.db.commit()

        if buffers_changed:
            await self.cache.invalidate_account(business_id)
        else:
            await self.cache.invalidate_appointment_type(business_id, appointment_type.id)
        return appointment_type

    # ------------------------------------------------------------------
    # Outcome façades
    # ------------------------------------------------------------------

    async def save_rules(self, business_id: UUID, rules: List[AvailabilityRuleInput]) -> Outcome:
        try:
            return Ok(await self.replace_rules(business_id, rules))
        except AvailabilityValidationError as e:
            return ValidationFailed(e.fields)

    async def save_override(self, business_id: UUID, data: DateOverrideInput) -> Outcome:
        try:
            return Ok(await self.upsert_override(business_id, data))
        except AvailabilityValidationError as e:
            return ValidationFailed(e.fields)

    async def remove_override(self, business_id: UUID, override_id: UUID) -> Outcome:
        if await self.delete_override(business_id, override_id):
            return Ok(None)
        return NotFound("Override not found")

    async def save_appointment_type(
            self,
            business_id: UUID,
            appointment_type_id: UUID,
            data: AppointmentTypeUpdate,
    ) -> Outcome:
        try:
            return Ok(await self.update_appointment_type(business_id, appointment_type_id, data))
        except AppointmentTypeNotFound as e:
            return NotFound(str(e))
