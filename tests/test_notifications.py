"""
Tests for post-commit side effects dispatch.
"""
import uuid
from unittest.mock import patch

from app.models import Appointment
from app.services.email.email_service import EmailService
from app.services.notification.dispatcher import CeleryDispatcher
from conftest import RecordingDispatcher


def appointment(**fields):
    return Appointment(id=uuid.uuid4(), business_id=uuid.uuid4(), **fields)


class TestNotificationDispatcher:

    def test_confirmation_enqueues_calendar_and_email(self):
        dispatcher = RecordingDispatcher()
        booked = appointment()

        dispatcher.booking_confirmed(booked)

        assert dispatcher.enqueued == [
            ("create_calendar_event", (str(booked.id),)),
            ("send_booking_confirmation", (str(booked.id),)),
        ]

    def test_cancellation_without_synced_event_only_emails(self):
        dispatcher = RecordingDispatcher()

        dispatcher.booking_cancelled(appointment(), "Visitor request")

        assert dispatcher.names() == ["send_cancellation_notice"]

    def test_cancellation_with_synced_event_deletes_it(self):
        dispatcher = RecordingDispatcher()
        integration_id = uuid.uuid4()
        cancelled = appointment(calendar_event_id="evt-1", calendar_integration_id=integration_id)

        dispatcher.booking_cancelled(cancelled)

        assert dispatcher.enqueued[0] == ("delete_calendar_event", (str(integration_id), "evt-1"))
        assert dispatcher.enqueued[1] == ("send_cancellation_notice", (str(cancelled.id), None))

    def test_deletion_without_event_is_silent(self):
        dispatcher = RecordingDispatcher()
        dispatcher.appointment_deleted(None, None)
        assert dispatcher.enqueued == []

    def test_enqueue_failures_are_swallowed(self):
        dispatcher = RecordingDispatcher(fail=True)

        assert not dispatcher._safe_enqueue("send_booking_confirmation", "x")
        dispatcher.booking_confirmed(appointment())


class TestCeleryDispatcher:

    def test_enqueues_the_named_task(self):
        booked = appointment()

        with patch("app.tasks.calendar_tasks.create_calendar_event.delay") as create_event, \
                patch("app.tasks.email_tasks.send_booking_confirmation.delay") as confirm:
            CeleryDispatcher().booking_confirmed(booked)

        create_event.assert_called_once_with(str(booked.id))
        confirm.assert_called_once_with(str(booked.id))

    def test_broker_down_does_not_raise(self):
        with patch("app.tasks.email_tasks.send_cancellation_notice.delay", side_effect=ConnectionError("down")):
            CeleryDispatcher().booking_cancelled(appointment())


class TestEmailService:

    def test_confirmation_carries_cancellation_link(self):
        with patch("app.services.email.email_service.smtplib.SMTP") as smtp:
            sent = EmailService.send_booking_confirmation(
                to_email="jamie@example.com",
                visitor_name="Jamie",
                business_name="Acme Dental",
                appointment_type_name="Consultation",
                start_local="Monday, January 07, 2030 at 10:00 AM",
                timezone="UTC",
                cancellation_token="abc123",
            )

        assert sent
        server = smtp.return_value
        from_address, recipients, message = server.sendmail.call_args.args
        assert recipients == ["jamie@example.com"]
        assert "token=abc123" in message
        server.quit.assert_called_once()
