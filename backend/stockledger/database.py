"""
SQLAlchemy Async Database Configuration.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from stockledger.config import get_settings
from stockledger.models import Base  # noqa: F401  (registers all tables)

settings = get_settings()

engine_options = {
    "echo": settings.DEBUG,
    "future": True,
    "pool_pre_ping": True,
}
if not settings.DATABASE_URL.startswith("sqlite"):
    engine_options.update(
        pool_size=20,
        max_overflow=80,
        pool_timeout=10,       # Fail fast instead of blocking for 30s
        pool_recycle=900,
    )

engine = create_async_engine(settings.DATABASE_URL, **engine_options)

# Async Session Factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """Dependency for FastAPI routes to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
