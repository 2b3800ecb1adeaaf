# app/services/notification/dispatcher.py
"""
Side effects after a booking is committed: calendar event create/delete
and visitor emails, enqueued as Celery tasks.

Everything here is best-effort. Enqueue failures are logged and never
reach the caller; the appointment row is already authoritative.
"""
import logging
from typing import Optional

from app.models.appointment import Appointment

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Base dispatcher; subclasses implement _enqueue."""

    def _enqueue(self, task_name: str, *args) -> None:
        raise NotImplementedError

    def _safe_enqueue(self, task_name: str, *args) -> bool:
        try:
            self._enqueue(task_name, *args)
            return True
        except Exception as e:
            logger.warning(f"Failed to enqueue {task_name}{args}: {e}", exc_info=True)
            return False

    def booking_confirmed(self, appointment: Appointment) -> None:
        appointment_id = str(appointment.id)
        self._safe_enqueue("create_calendar_event", appointment_id)
        self._safe_enqueue("send_booking_confirmation", appointment_id)

    def booking_cancelled(self, appointment: Appointment, reason: Optional[str] = None) -> None:
        if appointment.calendar_event_id and appointment.calendar_integration_id:
            self._safe_enqueue(
                "delete_calendar_event",
                str(appointment.calendar_integration_id),
                appointment.calendar_event_id,
            )
        self._safe_enqueue("send_cancellation_notice", str(appointment.id), reason)

    def appointment_deleted(self, calendar_integration_id: Optional[str], calendar_event_id: Optional[str]) -> None:
        if calendar_event_id and calendar_integration_id:
            self._safe_enqueue("delete_calendar_event", calendar_integration_id, calendar_event_id)


class CeleryDispatcher(NotificationDispatcher):
    def _enqueue(self, task_name: str, *args) -> None:
        # Task modules import the Celery app; keep them out of module import
        from app.tasks import calendar_tasks, email_tasks

        tasks = {
            "create_calendar_event": calendar_tasks.create_calendar_event,
            "delete_calendar_event": calendar_tasks.delete_calendar_event,
            "send_booking_confirmation": email_tasks.send_booking_confirmation,
            "send_cancellation_notice": email_tasks.send_cancellation_notice,
        }
        tasks[task_name].delay(*args)
        logger.debug(f"Enqueued {task_name} for {args[0] if args else '-'}")
