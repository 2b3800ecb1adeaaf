# ============================================================================
# FILE: app/api/v1/dashboard/availability.py
# Owner endpoints for weekly hours, date overrides and appointment types
# ============================================================================
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status

from app.api.dependencies import get_current_business_id, get_settings_service
from app.api.responses import unwrap
from app.models.availability import AvailabilityOverride, AvailabilityRule
from app.schemas.availability import (
    AvailabilityRuleResponse,
    AvailabilityRulesUpdate,
    DateOverrideInput,
    DateOverrideResponse,
    AppointmentTypeUpdate,
)
from app.services.availability.settings_service import AvailabilitySettingsService, format_hhmm

router = APIRouter(tags=["dashboard-availability"])


def _rule_response(rule: AvailabilityRule) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        id=rule.id,
        day_of_week=rule.day_of_week,
        start_time=format_hhmm(rule.start_time),
        end_time=format_hhmm(rule.end_time),
        is_available=rule.is_available,
    )


def _override_response(override: AvailabilityOverride) -> DateOverrideResponse:
    return DateOverrideResponse(
        id=override.id,
        date=override.date,
        is_available=override.is_available,
        start_time=format_hhmm(override.start_time),
        end_time=format_hhmm(override.end_time),
        reason=override.reason,
    )


# ========== WEEKLY RULES ==========

@router.get("/availability/rules", response_model=List[AvailabilityRuleResponse])
async def list_rules(
        business_id: UUID = Depends(get_current_business_id),
        service: AvailabilitySettingsService = Depends(get_settings_service)
):
    """Weekly schedule, ordered by day (0=Sunday) and start time."""
    return [_rule_response(rule) for rule in await service.list_rules(business_id)]


@router.put("/availability/rules", response_model=List[AvailabilityRuleResponse])
async def replace_rules(
        update: AvailabilityRulesUpdate,
        business_id: UUID = Depends(get_current_business_id),
        service: AvailabilitySettingsService = Depends(get_settings_service)
):
    """
    Replace the weekly schedule. An empty list closes every day
    (date overrides still apply).
    """
    rules = unwrap(await service.save_rules(business_id, update.rules))
    return [_rule_response(rule) for rule in rules]


# ========== DATE OVERRIDES ==========

@router.get("/availability/overrides", response_model=List[DateOverrideResponse])
async def list_overrides(
        start_date: Optional[date] = Query(None, description="Only overrides on or after this date"),
        business_id: UUID = Depends(get_current_business_id),
        service: AvailabilitySettingsService = Depends(get_settings_service)
):
    overrides = await service.list_overrides(business_id, start_date)
    return [_override_response(override) for override in overrides]


@router.put("/availability/overrides", response_model=DateOverrideResponse)
async def save_override(
        override: DateOverrideInput,
        business_id: UUID = Depends(get_current_business_id),
        service: AvailabilitySettingsService = Depends(get_settings_service)
):
    """Create or replace the override for one date."""
    saved = unwrap(await service.save_override(business_id, override))
    return _override_response(saved)


@router.delete("/availability/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_override(
        override_id: UUID = Path(..., description="The override ID"),
        business_id: UUID = Depends(get_current_business_id),
        service: AvailabilitySettingsService = Depends(get_settings_service)
):
    unwrap(await service.remove_override(business_id, override_id))


# ========== APPOINTMENT TYPES ==========

@router.patch("/appointment-types/{appointment_type_id}")
async def update_appointment_type(
        update: AppointmentTypeUpdate,
        appointment_type_id: UUID = Path(..., description="The appointment type ID"),
        business_id: UUID = Depends(get_current_business_id),
        service: AvailabilitySettingsService = Depends(get_settings_service)
):
    """Edit or deactivate an appointment type."""
    appointment_type = unwrap(await service.save_appointment_type(business_id, appointment_type_id, update))
    return appointment_type.to_dict()
