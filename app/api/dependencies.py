# ============================================================================
# FILE: app/api/dependencies.py
# Shared dependencies: DB session, cache, calendar providers, services, JWT
# ============================================================================
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Dict, Optional
from jose import JWTError, jwt
from uuid import UUID

from app.config.database import get_db, SessionLocal
from app.config.settings import settings
from app.services.appointment.appointment_service import BookingService
from app.services.availability.availability_service import AvailabilityService
from app.services.availability.settings_service import AvailabilitySettingsService
from app.services.cache.availability_cache import AvailabilityCache
from app.services.cache.backends import Clock, utc_clock
from app.services.calendar.base import CalendarProvider
from app.services.calendar.calendar_source import CalendarEventSource
from app.services.notification.dispatcher import CeleryDispatcher, NotificationDispatcher

# ============================================================================
# Security Schemes
# ============================================================================

# JWT security for dashboard (account owner) routes
jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Enter your JWT access token"
)


# ============================================================================
# JWT Token Functions
# ============================================================================

def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


# ============================================================================
# JWT Authentication Dependencies
# ============================================================================

async def get_current_business_id(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
) -> UUID:
    """
    Dependency resolving the account the caller manages from its access token.

    Usage in routes:
        @router.patch("/appointments/{appointment_id}")
        async def update(business_id: UUID = Depends(get_current_business_id)):
            ...

    Raises:
        HTTPException 401: If token is invalid or carries no account
    """
    payload = verify_access_token(credentials.credentials)

    business_id_str: Optional[str] = payload.get("business_id")
    if not payload.get("sub") or not business_id_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(business_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid business ID in token",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ============================================================================
# Infrastructure Dependencies
# ============================================================================

def get_availability_cache(request: Request) -> AvailabilityCache:
    """Process-wide cache created in the app lifespan."""
    return request.app.state.availability_cache


def get_calendar_providers(request: Request) -> Dict[str, CalendarProvider]:
    return request.app.state.calendar_providers


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that outlives the request (background tasks)."""
    return SessionLocal


def get_dispatcher() -> NotificationDispatcher:
    return CeleryDispatcher()


def get_clock() -> Clock:
    return utc_clock


async def get_calendar_source(
        db: AsyncSession = Depends(get_db),
        providers: Dict[str, CalendarProvider] = Depends(get_calendar_providers),
) -> CalendarEventSource:
    return CalendarEventSource(db, providers=providers)


# ============================================================================
# Service Dependencies
# ============================================================================

async def get_availability_service(
        db: AsyncSession = Depends(get_db),
        calendar_source: CalendarEventSource = Depends(get_calendar_source),
        cache: AvailabilityCache = Depends(get_availability_cache),
        clock: Clock = Depends(get_clock),
) -> AvailabilityService:
    return AvailabilityService(db, calendar_source, cache, clock)


async def get_booking_service(
        db: AsyncSession = Depends(get_db),
        calendar_source: CalendarEventSource = Depends(get_calendar_source),
        cache: AvailabilityCache = Depends(get_availability_cache),
        dispatcher: NotificationDispatcher = Depends(get_dispatcher),
        clock: Clock = Depends(get_clock),
) -> BookingService:
    return BookingService(db, calendar_source, cache, dispatcher, clock)


async def get_settings_service(
        db: AsyncSession = Depends(get_db),
        cache: AvailabilityCache = Depends(get_availability_cache),
) -> AvailabilitySettingsService:
    return AvailabilitySettingsService(db, cache)
