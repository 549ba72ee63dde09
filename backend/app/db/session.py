"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Request handlers get a session per request through get_db; work that runs
outside a request (webhook processing after the 200 is sent, the expiry
sweep) opens its own session from AsyncSessionLocal.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.core.config import settings


# Create async engine
# WHY: pool_pre_ping recycles stale connections between the long gaps
# of low-traffic admin and webhook requests.
engine = create_async_engine(
    settings.async_database_url,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

# Create session factory
# WHY: expire_on_commit=False prevents lazy-loading issues after commit
# when a handler serializes the user it just updated.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: Each request gets its own session; commit on success, rollback on
    any error so a failed request never leaves a partial mutation.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """
    Dependency returning the session factory itself.

    WHY: Background work scheduled from a request (webhook processing) must
    not reuse the request session, which is closed once the response is
    sent. Tests override this to point at their own engine.
    """
    return AsyncSessionLocal
