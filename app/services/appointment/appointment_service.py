# ============================================================================
# app/services/appointment/appointment_service.py
# ============================================================================
"""
Booking write path.

book():
  1. lock the account row for the rest of the transaction
  2. regenerate slots for the requested day from current state, reading
     external calendars fresh (no cache) and failing closed if they can't be read
  3. insert the appointment; the partial unique index rejects a concurrent
     duplicate that slipped past (2)
  4. commit, then invalidate the account's cache entries
  5. enqueue calendar event + confirmation email (best-effort)

Cancellation and deletion mirror it: commit, invalidate, enqueue.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointment import ALLOWED_TRANSITIONS, Appointment, AppointmentStatus
from app.models.business import Business
from app.schemas.booking import VisitorInfo
from app.schemas.outcomes import Conflict, NotFound, Ok, Outcome, UpstreamUnavailable, ValidationFailed
from app.services.availability.availability_service import get_appointment_type, get_business
from app.services.availability.rule_resolver import AvailabilityRuleResolver, get_timezone
from app.services.availability.slot_generator import SlotGenerator
from app.services.cache.availability_cache import AvailabilityCache
from app.services.cache.backends import Clock, utc_clock
from app.services.calendar.calendar_source import CalendarEventSource
from app.services.notification.dispatcher import NotificationDispatcher
from app.services.scheduling.exceptions import (
    AccountNotFound,
    AppointmentNotFound,
    AppointmentTypeNotFound,
    AvailabilityValidationError,
    BookingConflict,
    CalendarUnavailable,
    InvalidStateTransition,
)
from app.services.scheduling.intervals import Interval

logger = logging.getLogger(__name__)


class BookingService:
    """Handles appointment operations"""

    def __init__(
            self,
            db: AsyncSession,
            calendar_source: CalendarEventSource,
            cache: AvailabilityCache,
            dispatcher: NotificationDispatcher,
            clock: Clock = utc_clock,
    ):
        self.db = db
        self.calendar_source = calendar_source
        self.cache = cache
        self.dispatcher = dispatcher
        self.clock = clock
        self.resolver = AvailabilityRuleResolver(db)
        # No cache: the write path never trusts memoized calendar state
        self.generator = SlotGenerator(db, calendar_source, cache=None, clock=clock)

    async def _lock_business(self, business_id: UUID) -> Business:
        business = (await self.db.execute(
            select(Business)
            .where(Business.id == business_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if business is None or not business.is_active:
            raise AccountNotFound("Account not found")
        return business

    async def _get_appointment(self, business_id: UUID, appointment_id: UUID) -> Appointment:
        appointment = (await self.db.execute(
            select(Appointment).where(
                Appointment.id == appointment_id,
                Appointment.business_id == business_id,
            )
        )).scalar_one_or_none()
        if appointment is None:
            raise AppointmentNotFound("Appointment not found")
        return appointment

    async def book(
            self,
            business_id: UUID,
            appointment_type_id: UUID,
            start: datetime,
            end: Optional[datetime],
            visitor: VisitorInfo,
    ) -> Appointment:
        if start.tzinfo is None:
            raise AvailabilityValidationError({"start": "must include a timezone offset"})
        start = start.astimezone(timezone.utc)

        try:
            business = await self._lock_business(business_id)
            appointment_type = await get_appointment_type(self.db, business.id, appointment_type_id)

            requested = Interval(start, start + timedelta(minutes=appointment_type.duration_minutes))
            if end is not None and end.astimezone(timezone.utc) != requested.end:
                raise AvailabilityValidationError({
                    "end": f"must be {appointment_type.duration_minutes} minutes after start"
                })

            day = start.astimezone(get_timezone(business.timezone)).date()
            schedule = await self.resolver.load_schedule(business.id, business.timezone, day, day)
            try:
                slots = await self.generator.generate(business, appointment_type, day, schedule, use_cache=False)
            except CalendarUnavailable as e:
                logger.warning(f"Rejecting booking for business {business.id}: calendar unverifiable ({e})")
                raise

            if requested not in slots:
                logger.info(f"Slot {requested.start.isoformat()} no longer available for business {business.id}")
                raise BookingConflict()

            appointment = Appointment(
                business_id=business.id,
                appointment_type_id=appointment_type.id,
                visitor_name=visitor.name,
                visitor_email=str(visitor.email),
                visitor_phone=visitor.phone,
                timezone=visitor.timezone or business.timezone,
                notes=visitor.notes,
                start_time=requested.start,
                end_time=requested.end,
                status=AppointmentStatus.CONFIRMED.value,
            )
            self.db.add(appointment)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Concurrent booking won the slot {start.isoformat()} for business {business_id}")
            raise BookingConflict()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Booked appointment {appointment.id} for business {business_id}")
        await self.cache.invalidate_account(business_id)
        self.dispatcher.booking_confirmed(appointment)
        return appointment

    async def _change_status(self, appointment: Appointment, status: AppointmentStatus, reason: Optional[str] = None):
        current = AppointmentStatus(appointment.status)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateTransition(current.value, status.value)

        appointment.status = status.value
        if status == AppointmentStatus.CANCELLED:
            appointment.cancelled_at = self.clock()
            appointment.cancellation_reason = reason

    async def _after_status_change(self, appointment: Appointment, previous: str, reason: Optional[str]) -> None:
        await self.cache.invalidate_account(appointment.business_id)
        if appointment.status == AppointmentStatus.CANCELLED.value and previous != appointment.status:
            self.dispatcher.booking_cancelled(appointment, reason)

    async def cancel(self, business_id: UUID, appointment_id: UUID, reason: Optional[str] = None) -> Appointment:
        appointment = await self._get_appointment(business_id, appointment_id)
        previous = appointment.status
        await self._change_status(appointment, AppointmentStatus.CANCELLED, reason)
        await self.db.commit()

        logger.info(f"Cancelled appointment {appointment.id}")
        await self._after_status_change(appointment, previous, reason)
        return appointment

    async def cancel_by_token(self, token: str, reason: Optional[str] = None) -> Appointment:
        appointment = (await self.db.execute(
            select(Appointment).where(Appointment.cancellation_token == token)
        )).scalar_one_or_none()
        if appointment is None:
            raise AppointmentNotFound("Appointment not found")
        return await self.cancel(appointment.business_id, appointment.id, reason)

    async def update(
            self,
            business_id: UUID,
            appointment_id: UUID,
            status: Optional[str] = None,
            notes: Optional[str] = None,
            cancellation_reason: Optional[str] = None,
    ) -> Appointment:
        appointment = await self._get_appointment(business_id, appointment_id)
        previous = appointment.status

        if notes is not None:
            appointment.notes = notes
        if status is not None and status != appointment.status:
            await self._change_status(appointment, AppointmentStatus(status), cancellation_reason)

        await self.db.commit()

        if appointment.status != previous:
            logger.info(f"Appointment {appointment.id}: {previous} -> {appointment.status}")
            await self._after_status_change(appointment, previous, cancellation_reason)
        return appointment

    async def delete(self, business_id: UUID, appointment_id: UUID) -> None:
        appointment = await self._get_appointment(business_id, appointment_id)
        integration_id = str(appointment.calendar_integration_id) if appointment.calendar_integration_id else None
        event_id = appointment.calendar_event_id

        await self.db.delete(appointment)
        await self.db.commit()

        logger.info(f"Deleted appointment {appointment_id}")
        await self.cache.invalidate_account(business_id)
        self.dispatcher.appointment_deleted(integration_id, event_id)

    # ------------------------------------------------------------------
    # Outcome façades used by the routers
    # ------------------------------------------------------------------

    async def book_slot(
            self,
            appointment_type_id: UUID,
            start: datetime,
            end: Optional[datetime],
            visitor: VisitorInfo,
            account_id: Optional[UUID] = None,
            widget_id: Optional[str] = None,
    ) -> Outcome:
        try:
            business = await get_business(self.db, account_id, widget_id)
            return Ok(await self.book(business.id, appointment_type_id, start, end, visitor))
        except (AccountNotFound, AppointmentTypeNotFound) as e:
            return NotFound(str(e))
        except AvailabilityValidationError as e:
            return ValidationFailed(e.fields)
        except BookingConflict as e:
            return Conflict(str(e))
        except CalendarUnavailable as e:
            return UpstreamUnavailable(
                "Could not verify calendar availability. Please try again shortly.",
                retryable=e.retryable,
            )

    async def cancel_appointment(self, business_id: UUID, appointment_id: UUID, reason: Optional[str] = None) -> Outcome:
        try:
            return Ok(await self.cancel(business_id, appointment_id, reason))
        except AppointmentNotFound as e:
            return NotFound(str(e))
        except InvalidStateTransition as e:
            await self.db.rollback()
            return ValidationFailed({"status": str(e)})

    async def cancel_with_token(self, token: str, reason: Optional[str] = None) -> Outcome:
        try:
            return Ok(await self.cancel_by_token(token, reason))
        except AppointmentNotFound as e:
            return NotFound(str(e))
        except InvalidStateTransition as e:
            await self.db.rollback()
            return ValidationFailed({"status": str(e)})

    async def update_appointment(
            self,
            business_id: UUID,
            appointment_id: UUID,
            status: Optional[str] = None,
            notes: Optional[str] = None,
            cancellation_reason: Optional[str] = None,
    ) -> Outcome:
        try:
            return Ok(await self.update(business_id, appointment_id, status, notes, cancellation_reason))
        except AppointmentNotFound as e:
            return NotFound(str(e))
        except InvalidStateTransition as e:
            await self.db.rollback()
            return ValidationFailed({"status": str(e)})

    async def delete_appointment(self, business_id: UUID, appointment_id: UUID) -> Outcome:
        try:
            await self.delete(business_id, appointment_id)
            return Ok(None)
        except AppointmentNotFound as e:
            return NotFound(str(e))
