# ============================================================================
# FILE: app/api/v1/dashboard/appointments.py
# Owner endpoints for existing appointments - thin HTTP layer
# ============================================================================
from fastapi import APIRouter, Depends, Path, status
from uuid import UUID

from app.api.dependencies import get_booking_service, get_current_business_id
from app.api.responses import unwrap
from app.schemas.booking import AppointmentResponse, AppointmentUpdate
from app.services.appointment.appointment_service import BookingService

router = APIRouter(prefix="/appointments", tags=["dashboard-appointments"])


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
        update: AppointmentUpdate,
        appointment_id: UUID = Path(..., description="The appointment ID"),
        business_id: UUID = Depends(get_current_business_id),
        service: BookingService = Depends(get_booking_service)
):
    """
    Update notes or status (cancel / complete) of an appointment.
    Cancelling frees the slot and removes the external calendar event.
    """
    appointment = unwrap(await service.update_appointment(
        business_id,
        appointment_id,
        status=update.status,
        notes=update.notes,
        cancellation_reason=update.cancellation_reason,
    ))
    return AppointmentResponse.model_validate(appointment)


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
        appointment_id: UUID = Path(..., description="The appointment ID"),
        business_id: UUID = Depends(get_current_business_id),
        service: BookingService = Depends(get_booking_service)
):
    """
    Permanently delete an appointment.
    """
    unwrap(await service.delete_appointment(business_id, appointment_id))
