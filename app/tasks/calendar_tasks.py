# ===== app/tasks/calendar_tasks.py =====
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.config.celery_config import celery_app
from app.config.database import task_session
from app.models.appointment import Appointment, AppointmentStatus
from app.models.business import Business
from app.models.calendar_integration import CalendarIntegration
from app.services.calendar.base import CalendarEventData
from app.services.calendar.calendar_source import CalendarEventSource

logger = logging.getLogger(__name__)


async def _create_calendar_event(appointment_id: str) -> dict:
    async with task_session() as db:
        appointment = (await db.execute(
            select(Appointment)
            .options(selectinload(Appointment.appointment_type))
            .where(Appointment.id == UUID(appointment_id))
        )).scalar_one_or_none()
        if not appointment:
            logger.error(f"Appointment {appointment_id} not found")
            return {"status": "failed", "reason": "appointment_not_found"}

        if appointment.status == AppointmentStatus.CANCELLED.value:
            return {"status": "skipped", "reason": "appointment_cancelled"}
        if appointment.calendar_event_id:
            return {"status": "skipped", "reason": "already_synced"}

        source = CalendarEventSource(db)
        integration = await source.primary_integration(appointment.business_id)
        if not integration:
            appointment.sync_status = "sync_disabled"
            await db.commit()
            return {"status": "skipped", "reason": "no_integration_or_read_only"}

        business = await db.get(Business, appointment.business_id)
        type_name = appointment.appointment_type.name if appointment.appointment_type else "Appointment"
        event = CalendarEventData(
            summary=f"{type_name} - {appointment.visitor_name}",
            description=appointment.notes or "",
            start=appointment.start_time,
            end=appointment.end_time,
            timezone=business.timezone if business else "UTC",
            attendees=[appointment.visitor_email] if appointment.visitor_email else [],
        )

        try:
            created = await source.provider_for(integration).create_event(integration, event)
        except Exception as exc:
            appointment.sync_status = "failed"
            appointment.last_sync_error = str(exc)
            await db.commit()
            raise

        appointment.calendar_event_id = created['event_id']
        appointment.calendar_integration_id = integration.id
        appointment.sync_status = "synced"
        appointment.last_sync_error = None
        await db.commit()

        return {"status": "synced", "event_id": created['event_id'], "provider": integration.provider}


async def _delete_calendar_event(integration_id: str, event_id: str) -> dict:
    async with task_session() as db:
        integration = await db.get(CalendarIntegration, UUID(integration_id))
        if not integration or not integration.is_active:
            return {"status": "skipped", "reason": "integration_not_found_or_inactive"}

        source = CalendarEventSource(db)
        await source.provider_for(integration).delete_event(integration, event_id)

        integration.last_sync_at = datetime.now(timezone.utc)
        await db.commit()
        return {"status": "deleted", "event_id": event_id}


@celery_app.task(bind=True, max_retries=3)
def create_calendar_event(self, appointment_id: str):
    """Push a confirmed appointment to the account's primary calendar"""
    try:
        result = asyncio.run(_create_calendar_event(appointment_id))
        logger.info(f"Calendar event for appointment {appointment_id}: {result['status']}")
        return result

    except Exception as exc:
        logger.error(f"Calendar event creation failed for {appointment_id}: {exc}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))


@celery_app.task(bind=True, max_retries=3)
def delete_calendar_event(self, integration_id: Optional[str], event_id: Optional[str]):
    """Remove the external event of a cancelled or deleted appointment"""
    if not integration_id or not event_id:
        return {"status": "skipped", "reason": "no_event"}

    try:
        result = asyncio.run(_delete_calendar_event(integration_id, event_id))
        logger.info(f"Calendar event {event_id}: {result['status']}")
        return result

    except Exception as exc:
        logger.error(f"Calendar event deletion failed for {event_id}: {exc}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))
