"""
Tests for the HTTP layer: status codes, error bodies and auth.
"""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from jose import jwt
from sqlalchemy import select

from app.api.dependencies import get_clock, get_dispatcher, get_session_factory
from app.config.database import get_db
from app.config.settings import settings
from app.main import create_app
from app.models import Appointment
from app.schemas.booking import AppointmentResponse
from app.services.scheduling.intervals import Interval
from conftest import MONDAY, add_integration, create_business, utc

BOOKING_PATH = "/api/v1/public/booking"


def parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def access_token(business, token_type="access") -> str:
    """Signed like the identity service's dashboard tokens"""
    claims = {
        "sub": "owner@example.com",
        "business_id": str(business.id),
        "type": token_type,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth(business) -> dict:
    token = access_token(business)
    return {"Authorization": f"Bearer {token}"}


def booking_body(business, appointment_type, start="2030-01-07T10:00:00Z", **extra) -> dict:
    body = {
        "account_id": str(business.id),
        "appointment_type_id": str(appointment_type.id),
        "start": start,
        "visitor": {"name": "Jamie Rivera", "email": "jamie@example.com"},
    }
    body.update(extra)
    return body


@pytest.fixture
async def client(session_factory, cache, providers, dispatcher, clock):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    # The lifespan does not run under ASGITransport
    app.state.availability_cache = cache
    app.state.calendar_providers = providers

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestAppointmentResponse:

    def test_built_from_orm_row(self):
        appointment = Appointment(
            id=uuid.uuid4(),
            business_id=uuid.uuid4(),
            appointment_type_id=uuid.uuid4(),
            visitor_name="Jamie Rivera",
            visitor_email="jamie@example.com",
            start_time=utc(MONDAY, 10),
            end_time=utc(MONDAY, 10, 30),
            status="confirmed",
        )

        response = AppointmentResponse.model_validate(appointment)

        assert AppointmentResponse.model_config["from_attributes"]
        assert response.id == appointment.id
        assert response.start_time == utc(MONDAY, 10)
        assert response.status == "confirmed"


class TestHealth:

    async def test_basic(self, client):
        response = await client.get("/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Correlation-ID" in response.headers

    async def test_detailed(self, client):
        body = (await client.get("/health/detailed")).json()

        assert body["database"] == "healthy"
        assert body["redis"] == "not_configured"
        assert body["cache"]["backend"] == "memory"
        assert body["overall"] == "healthy"


class TestAvailabilityEndpoints:

    async def test_available_dates(self, client, business, appointment_type):
        response = await client.get(f"{BOOKING_PATH}/available-dates", params={
            "accountId": str(business.id),
            "appointmentTypeId": str(appointment_type.id),
            "daysAhead": 7,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["dates"][0] == "2030-01-07"
        assert len(body["dates"]) == 5
        assert body["appointment_type"]["duration"] == 30

    async def test_available_slots_by_widget(self, client, business, appointment_type):
        params = {"widgetId": business.widget_id, "appointmentTypeId": str(appointment_type.id), "date": "2030-01-07"}

        first = (await client.get(f"{BOOKING_PATH}/available-slots", params=params)).json()
        second = (await client.get(f"{BOOKING_PATH}/available-slots", params=params)).json()

        assert len(first["slots"]) == 16
        assert first["slots"][0]["start_local"] == "9:00 AM"
        assert parse(first["slots"][0]["start"]) == utc(MONDAY, 9)
        assert not first["cached"]
        assert second["cached"]

    async def test_missing_parameters(self, client, business):
        response = await client.get(f"{BOOKING_PATH}/available-slots", params={"accountId": str(business.id)})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "validation_failed"
        assert set(detail["fields"]) == {"appointmentTypeId", "date"}

    async def test_unknown_account(self, client, appointment_type):
        response = await client.get(f"{BOOKING_PATH}/available-dates", params={
            "accountId": str(uuid.uuid4()),
            "appointmentTypeId": str(appointment_type.id),
        })

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    async def test_calendar_down_is_503_with_retry_after(self, session_factory, client, google, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        response = await client.get(f"{BOOKING_PATH}/available-slots", params={
            "accountId": str(business.id),
            "appointmentTypeId": str(appointment_type.id),
            "date": "2030-01-07",
        })

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["detail"]["retryable"] is True

    async def test_degraded_account_still_answers(self, session_factory, client, google):
        business, appointment_type = await create_business(session_factory, calendar_degrade_on_read=True)
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        response = await client.get(f"{BOOKING_PATH}/available-slots", params={
            "accountId": str(business.id),
            "appointmentTypeId": str(appointment_type.id),
            "date": "2030-01-07",
        })

        assert response.status_code == 200
        assert response.json()["degraded"] is True


class TestBookingEndpoints:

    async def test_book(self, client, dispatcher, business, appointment_type):
        response = await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))

        assert response.status_code == 201
        body = response.json()
        assert parse(body["appointment"]["start_time"]) == utc(MONDAY, 10)
        assert body["appointment"]["status"] == "confirmed"
        assert len(body["cancellation_token"]) == 128
        assert dispatcher.names() == ["create_calendar_event", "send_booking_confirmation"]

    async def test_booked_slot_disappears_from_availability(self, client, business, appointment_type):
        params = {"accountId": str(business.id), "appointmentTypeId": str(appointment_type.id), "date": "2030-01-07"}
        await client.get(f"{BOOKING_PATH}/available-slots", params=params)

        await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))
        body = (await client.get(f"{BOOKING_PATH}/available-slots", params=params)).json()

        assert not body["cached"]
        assert len(body["slots"]) == 15

    async def test_double_booking_is_409(self, client, business, appointment_type):
        await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))

        response = await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "conflict"

    async def test_wrong_end_is_422(self, client, business, appointment_type):
        response = await client.post(
            f"{BOOKING_PATH}/book",
            json=booking_body(business, appointment_type, end="2030-01-07T11:00:00Z"),
        )

        assert response.status_code == 422
        assert "end" in response.json()["detail"]["fields"]

    async def test_account_reference_required(self, client, business, appointment_type):
        body = booking_body(business, appointment_type)
        del body["account_id"]

        response = await client.post(f"{BOOKING_PATH}/book", json=body)

        assert response.status_code == 422

    async def test_unverifiable_calendar_is_503(self, session_factory, client, google, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.error = RuntimeError("boom")

        response = await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))

        assert response.status_code == 503
        assert "Retry-After" in response.headers

    async def test_external_busy_time_is_409(self, session_factory, client, google, business, appointment_type):
        await add_integration(session_factory, business, "google")
        google.busy = [Interval(utc(MONDAY, 10), utc(MONDAY, 11))]

        response = await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))

        assert response.status_code == 409

    async def test_cancel_by_token(self, client, business, appointment_type):
        booked = (await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))).json()
        token = booked["cancellation_token"]

        first = await client.post(f"{BOOKING_PATH}/cancel", json={"cancellation_token": token})
        second = await client.post(f"{BOOKING_PATH}/cancel", json={"cancellation_token": token})
        unknown = await client.post(f"{BOOKING_PATH}/cancel", json={"cancellation_token": "nope"})

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert second.status_code == 422
        assert unknown.status_code == 404


class TestPrewarmEndpoint:

    async def test_schedules_background_prewarm(self, client, session_factory, cache, providers, business):
        with patch("app.api.v1.public.availability.run_prewarm", new_callable=AsyncMock) as run_prewarm:
            response = await client.post(f"{BOOKING_PATH}/prewarm", json={
                "account_id": str(business.id),
                "days_to_prewarm": 3,
            })

        assert response.status_code == 202
        run_prewarm.assert_awaited_once_with(session_factory, cache, business.id, 3, providers)

    async def test_default_days(self, client, business):
        with patch("app.api.v1.public.availability.run_prewarm", new_callable=AsyncMock) as run_prewarm:
            response = await client.post(f"{BOOKING_PATH}/prewarm", json={"widget_id": business.widget_id})

        assert response.status_code == 202
        assert run_prewarm.await_args.args[3] == 5

    async def test_unknown_widget_is_404(self, client):
        response = await client.post(f"{BOOKING_PATH}/prewarm", json={"widget_id": "missing"})
        assert response.status_code == 404


class TestDashboardAppointments:

    async def _book(self, client, business, appointment_type):
        response = await client.post(f"{BOOKING_PATH}/book", json=booking_body(business, appointment_type))
        return response.json()["appointment"]["id"]

    async def test_requires_token(self, client):
        response = await client.patch(f"/api/v1/dashboard/appointments/{uuid.uuid4()}", json={"status": "completed"})
        assert response.status_code in (401, 403)

    async def test_rejects_bad_token(self, client):
        response = await client.patch(
            f"/api/v1/dashboard/appointments/{uuid.uuid4()}",
            json={"status": "completed"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    async def test_rejects_non_access_token(self, client, business):
        response = await client.patch(
            f"/api/v1/dashboard/appointments/{uuid.uuid4()}",
            json={"status": "completed"},
            headers={"Authorization": f"Bearer {access_token(business, token_type='refresh')}"},
        )
        assert response.status_code == 401

    async def test_complete(self, client, business, appointment_type):
        appointment_id = await self._book(client, business, appointment_type)

        response = await client.patch(
            f"/api/v1/dashboard/appointments/{appointment_id}",
            json={"status": "completed", "notes": "Went well"},
            headers=auth(business),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    async def test_invalid_transition_is_422(self, client, business, appointment_type):
        appointment_id = await self._book(client, business, appointment_type)
        path = f"/api/v1/dashboard/appointments/{appointment_id}"

        await client.patch(path, json={"status": "cancelled"}, headers=auth(business))
        response = await client.patch(path, json={"status": "completed"}, headers=auth(business))

        assert response.status_code == 422
        assert "status" in response.json()["detail"]["fields"]

    async def test_other_account_gets_404(self, session_factory, client, business, appointment_type):
        other, _ = await create_business(session_factory, name="Other Co")
        appointment_id = await self._book(client, business, appointment_type)

        response = await client.patch(
            f"/api/v1/dashboard/appointments/{appointment_id}",
            json={"status": "cancelled"},
            headers=auth(other),
        )

        assert response.status_code == 404

    async def test_delete(self, session_factory, client, business, appointment_type):
        appointment_id = await self._book(client, business, appointment_type)

        response = await client.delete(f"/api/v1/dashboard/appointments/{appointment_id}", headers=auth(business))

        assert response.status_code == 204
        async with session_factory() as session:
            remaining = (await session.execute(
                select(Appointment).where(Appointment.id == uuid.UUID(appointment_id))
            )).scalar_one_or_none()
        assert remaining is None


class TestDashboardAvailability:

    async def test_rules_round_trip(self, client, business):
        response = await client.put("/api/v1/dashboard/availability/rules", headers=auth(business), json={
            "rules": [{"day_of_week": 1, "start_time": "10:00", "end_time": "12:00"}],
        })
        listed = await client.get("/api/v1/dashboard/availability/rules", headers=auth(business))

        assert response.status_code == 200
        assert listed.json() == response.json()
        assert listed.json()[0]["start_time"] == "10:00"

    async def test_invalid_rules_are_422_per_field(self, client, business):
        response = await client.put("/api/v1/dashboard/availability/rules", headers=auth(business), json={
            "rules": [{"day_of_week": 1, "start_time": "12:00", "end_time": "10:00"}],
        })

        assert response.status_code == 422
        assert response.json()["detail"]["fields"] == {"rules[0].end_time": "must be after start_time"}

    async def test_rule_change_invalidates_cached_slots(self, client, business, appointment_type):
        params = {"accountId": str(business.id), "appointmentTypeId": str(appointment_type.id), "date": "2030-01-07"}
        await client.get(f"{BOOKING_PATH}/available-slots", params=params)

        await client.put("/api/v1/dashboard/availability/overrides", headers=auth(business), json={
            "date": "2030-01-07", "is_available": False, "reason": "Holiday",
        })
        body = (await client.get(f"{BOOKING_PATH}/available-slots", params=params)).json()

        assert not body["cached"]
        assert body["slots"] == []

    async def test_overrides(self, client, business):
        saved = await client.put("/api/v1/dashboard/availability/overrides", headers=auth(business), json={
            "date": "2030-01-12", "is_available": True, "start_time": "10:00", "end_time": "13:00",
        })
        override_id = saved.json()["id"]

        listed = await client.get(
            "/api/v1/dashboard/availability/overrides",
            params={"start_date": "2030-01-10"},
            headers=auth(business),
        )
        deleted = await client.delete(f"/api/v1/dashboard/availability/overrides/{override_id}", headers=auth(business))
        missing = await client.delete(f"/api/v1/dashboard/availability/overrides/{override_id}", headers=auth(business))

        assert saved.status_code == 200
        assert [o["id"] for o in listed.json()] == [override_id]
        assert deleted.status_code == 204
        assert missing.status_code == 404

    async def test_update_appointment_type(self, client, business, appointment_type):
        response = await client.patch(
            f"/api/v1/dashboard/appointment-types/{appointment_type.id}",
            headers=auth(business),
            json={"duration_minutes": 45},
        )

        assert response.status_code == 200
        assert response.json()["duration"] == 45

    async def test_empty_appointment_type_update_rejected(self, client, business, appointment_type):
        response = await client.patch(
            f"/api/v1/dashboard/appointment-types/{appointment_type.id}",
            headers=auth(business),
            json={},
        )
        assert response.status_code == 422
