# ===== app/tasks/email_tasks.py =====
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.config.celery_config import celery_app
from app.config.database import task_session
from app.models.appointment import Appointment
from app.models.business import Business
from app.services.availability.rule_resolver import get_timezone
from app.services.email.email_service import EmailService

logger = logging.getLogger(__name__)


def _start_local(appointment: Appointment, tz_name: str) -> str:
    return appointment.start_time.astimezone(get_timezone(tz_name)).strftime("%A, %B %d, %Y at %I:%M %p")


async def _load(appointment_id: str):
    async with task_session() as db:
        appointment = (await db.execute(
            select(Appointment)
            .options(selectinload(Appointment.appointment_type))
            .where(Appointment.id == UUID(appointment_id))
        )).scalar_one_or_none()
        if appointment is None:
            return None, None
        business = await db.get(Business, appointment.business_id)
        return appointment, business


async def _mark_confirmation_sent(appointment_id: str) -> None:
    async with task_session() as db:
        appointment = await db.get(Appointment, UUID(appointment_id))
        if appointment is not None:
            appointment.confirmation_sent_at = datetime.now(timezone.utc)
            await db.commit()


@celery_app.task(bind=True, max_retries=3)
def send_booking_confirmation(self, appointment_id: str):
    """
    Send the visitor their booking confirmation

    Args:
        appointment_id: Confirmed appointment
    """
    try:
        appointment, business = asyncio.run(_load(appointment_id))
        if appointment is None:
            logger.error(f"Appointment {appointment_id} not found, confirmation not sent")
            return {"status": "failed", "reason": "appointment_not_found"}

        tz_name = appointment.timezone or business.timezone
        EmailService.send_booking_confirmation(
            to_email=appointment.visitor_email,
            visitor_name=appointment.visitor_name,
            business_name=business.name,
            appointment_type_name=appointment.appointment_type.name,
            start_local=_start_local(appointment, tz_name),
            timezone=tz_name,
            cancellation_token=appointment.cancellation_token,
        )
        asyncio.run(_mark_confirmation_sent(appointment_id))

        logger.info(f"Confirmation sent for appointment {appointment_id}")
        return {"status": "success", "appointment_id": appointment_id}

    except Exception as exc:
        logger.error(f"Failed to send confirmation for appointment {appointment_id}: {exc}")

        # Retry with exponential backoff: 1min, 2min, 4min
        raise self.retry(
            exc=exc,
            countdown=60 * (2 ** self.request.retries)
        )


@celery_app.task(bind=True, max_retries=3)
def send_cancellation_notice(self, appointment_id: str, reason: Optional[str] = None):
    """
    Tell the visitor their appointment was cancelled

    Args:
        appointment_id: Cancelled appointment
        reason: Optional reason shown in the email
    """
    try:
        appointment, business = asyncio.run(_load(appointment_id))
        if appointment is None:
            logger.error(f"Appointment {appointment_id} not found, cancellation notice not sent")
            return {"status": "failed", "reason": "appointment_not_found"}

        tz_name = appointment.timezone or business.timezone
        EmailService.send_cancellation_notice(
            to_email=appointment.visitor_email,
            visitor_name=appointment.visitor_name,
            business_name=business.name,
            appointment_type_name=appointment.appointment_type.name,
            start_local=_start_local(appointment, tz_name),
            timezone=tz_name,
            reason=reason,
        )

        logger.info(f"Cancellation notice sent for appointment {appointment_id}")
        return {"status": "success", "appointment_id": appointment_id}

    except Exception as exc:
        logger.error(f"Failed to send cancellation notice for appointment {appointment_id}: {exc}")

        raise self.retry(
            exc=exc,
            countdown=60 * (2 ** self.request.retries)
        )
