"""Database configuration and connection setup"""
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config.settings import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


# Create database engine with connection pooling
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_options(settings.DATABASE_URL),
)

SessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def get_db():
    """Database dependency for FastAPI"""
    async with SessionLocal() as db:
        yield db


@asynccontextmanager
async def task_session():
    """
    Session for Celery tasks. Each task runs its own event loop via
    asyncio.run, so connections must not outlive it.
    """
    task_engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        async with async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)() as db:
            yield db
    finally:
        await task_engine.dispose()


async def create_tables():
    """Create all database tables (development helper; production uses Alembic)"""
    from app.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    print("✅ Database tables created successfully!")


if __name__ == "__main__":
    import asyncio

    asyncio.run(create_tables())
