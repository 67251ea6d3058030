from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from config.settings import settings, IS_PRODUCTION

SQLITE_DEFAULT_URL = "sqlite+aiosqlite:///./sql_app.db"

# Subscription records must survive restarts and be shared across workers
if IS_PRODUCTION:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL must be set in production.")
    if settings.database_url.lower().startswith("sqlite"):
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")


def to_async_url(url: str) -> str:
    """Point bare Postgres URLs (postgres:// or postgresql://) at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


DATABASE_URL = to_async_url(settings.database_url or SQLITE_DEFAULT_URL)

engine_options = {"echo": False}
if not DATABASE_URL.startswith("sqlite"):
    # Hosted Postgres drops idle connections
    engine_options["pool_pre_ping"] = True

engine = create_async_engine(DATABASE_URL, **engine_options)

Base = declarative_base()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db():
    """Create the subscription tables if they do not exist yet (run on startup)."""
    async with engine.begin() as conn:
        from database_models import UserSubscription  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Repository methods commit their own writes; anything left pending when
    the handler returns is committed here, and rolled back if it raised.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
