"""
API v1 router setup
Organized into: public (booking widget) and dashboard (JWT) routes
"""
from fastapi import APIRouter

from app.api.v1.dashboard import appointments, availability as dashboard_availability
from app.api.v1.public import availability

api_v1_router = APIRouter()

# ============================================================================
# PUBLIC ROUTES (No authentication required, account resolved by widgetId/accountId)
# ============================================================================
api_v1_router.include_router(
    availability.router,
    prefix="/public/booking",
    tags=["Public"]
)

# ============================================================================
# DASHBOARD ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    appointments.router,
    prefix="/dashboard",
    tags=["Dashboard"]
)

api_v1_router.include_router(
    dashboard_availability.router,
    prefix="/dashboard",
    tags=["Dashboard"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """
    API information and available endpoints.
    """
    return {
        "version": "1.0",
        "authentication": {
            "public": "No authentication required",
            "dashboard": "JWT Bearer token required (account owner)"
        }
    }
