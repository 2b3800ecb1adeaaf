# ============================================================================
# FILE: app/api/v1/public/availability.py
# Public booking widget endpoints - thin HTTP layer
# ============================================================================
import logging
from datetime import date
from typing import Dict, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.dependencies import (
    get_availability_cache,
    get_availability_service,
    get_booking_service,
    get_calendar_providers,
    get_session_factory,
)
from app.api.responses import unwrap
from app.config.database import get_db
from app.config.settings import settings
from app.schemas.availability import (
    AvailableDatesResponse,
    AvailableSlotsResponse,
    PrewarmRequest,
    PrewarmResponse,
)
from app.schemas.booking import (
    AppointmentResponse,
    BookingRequest,
    BookingResponse,
    CancelByTokenRequest,
    CancelResponse,
)
from app.services.appointment.appointment_service import BookingService
from app.services.availability.availability_service import (
    AvailabilityService,
    get_appointment_type,
    get_business,
    run_prewarm,
)
from app.services.cache.availability_cache import AvailabilityCache
from app.services.calendar.base import CalendarProvider
from app.services.scheduling.exceptions import AccountNotFound, AppointmentTypeNotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["public-booking"])


@router.get("/available-dates", response_model=AvailableDatesResponse)
async def available_dates(
        account_id: Optional[UUID] = Query(None, alias="accountId"),
        widget_id: Optional[str] = Query(None, alias="widgetId"),
        appointment_type_id: Optional[UUID] = Query(None, alias="appointmentTypeId"),
        days_ahead: Optional[int] = Query(None, alias="daysAhead"),
        service: AvailabilityService = Depends(get_availability_service)
):
    """
    Dates in [today, today + daysAhead] (account timezone) with at least one open slot.
    """
    outcome = await service.get_available_dates(
        appointment_type_id,
        days_ahead=days_ahead,
        account_id=account_id,
        widget_id=widget_id,
    )
    return unwrap(outcome)


@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def available_slots(
        account_id: Optional[UUID] = Query(None, alias="accountId"),
        widget_id: Optional[str] = Query(None, alias="widgetId"),
        appointment_type_id: Optional[UUID] = Query(None, alias="appointmentTypeId"),
        day: Optional[date] = Query(None, alias="date", description="YYYY-MM-DD in the account timezone"),
        service: AvailabilityService = Depends(get_availability_service)
):
    """
    Bookable slots for one day.
    """
    outcome = await service.get_available_slots(
        appointment_type_id,
        day,
        account_id=account_id,
        widget_id=widget_id,
    )
    return unwrap(outcome)


@router.post("/book", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book(
        request: BookingRequest,
        service: BookingService = Depends(get_booking_service)
):
    """
    Book a slot. 409 if it was taken in the meantime, 503 if the connected
    calendars could not be checked.
    """
    appointment = unwrap(await service.book_slot(
        request.appointment_type_id,
        request.start,
        request.end,
        request.visitor,
        account_id=request.account_id,
        widget_id=request.widget_id,
    ))

    return BookingResponse(
        appointment=AppointmentResponse.model_validate(appointment),
        cancellation_token=appointment.cancellation_token,
    )


@router.post("/cancel", response_model=CancelResponse)
async def cancel_by_token(
        request: CancelByTokenRequest,
        service: BookingService = Depends(get_booking_service)
):
    """
    Visitor cancellation via the token from the confirmation email.
    """
    unwrap(await service.cancel_with_token(request.cancellation_token, request.reason))
    return CancelResponse()


@router.post("/prewarm", response_model=PrewarmResponse, status_code=status.HTTP_202_ACCEPTED)
async def prewarm(
        request: PrewarmRequest,
        background_tasks: BackgroundTasks,
        db: AsyncSession = Depends(get_db),
        cache: AvailabilityCache = Depends(get_availability_cache),
        providers: Dict[str, CalendarProvider] = Depends(get_calendar_providers),
        session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    Fetch and cache calendar busy time for the next days in the background.
    Called when the widget opens; failures are only logged.
    """
    try:
        business = await get_business(db, request.account_id, request.widget_id)
        if request.appointment_type_id is not None:
            await get_appointment_type(db, business.id, request.appointment_type_id)
    except (AccountNotFound, AppointmentTypeNotFound) as e:
        raise HTTPException(status_code=404, detail={"error": "not_found", "message": str(e)})

    days = request.days_to_prewarm or settings.DEFAULT_PREWARM_DAYS
    background_tasks.add_task(run_prewarm, session_factory, cache, business.id, days, providers)
    logger.info(f"[Prewarm] Scheduled {days} days for business {business.id}")

    return PrewarmResponse(message=f"Prewarming availability for the next {days} days")
