"""Health checks and monitoring endpoints"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.database import get_db
from app.config.redis import get_redis
from app.config.settings import get_settings

health_router = APIRouter()
settings = get_settings()


@health_router.get("/")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "scheduling-api"}


@health_router.get("/detailed")
async def detailed_health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Detailed health check with dependencies"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "not_configured",
        "overall": "unknown"
    }

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Check Redis (only when the cache lives there)
    if settings.CACHE_BACKEND == "redis":
        try:
            redis_client = await get_redis()
            await redis_client.ping()
            checks["redis"] = "healthy"
        except Exception as e:
            checks["redis"] = f"unhealthy: {str(e)}"

    # Availability cache
    cache = getattr(request.app.state, "availability_cache", None)
    if cache is not None:
        try:
            checks["cache"] = await cache.stats()
        except Exception as e:
            checks["cache"] = {"status": f"unhealthy: {str(e)}"}

    # Overall status
    statuses = [checks["database"], checks["redis"]]
    if all(s in ("healthy", "not_configured") for s in statuses):
        checks["overall"] = "healthy"
    else:
        checks["overall"] = "degraded"

    return checks
