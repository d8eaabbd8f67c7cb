"""
Async SQLAlchemy engine and session factory.
Provides the get_db dependency (one transaction per request) and the
bounded write-conflict retry used by the comment store.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from talesy.core.config import settings
from talesy.core.exceptions import WriteConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Engine ────────────────────────────────────────────────────────────────────
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    pool_recycle=3600,
)

# ── Session factory ───────────────────────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.
    Everything a request writes is committed together when the request
    completes, or rolled back if it raised.
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


async def run_with_conflict_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    label: str = "store write",
) -> T:
    """
    Run a store write, retrying on transient write conflicts
    (deadlocks, serialization failures, lock timeouts).

    A failed attempt leaves the transaction aborted, so it is rolled back
    before the operation is re-run from scratch. The operation must therefore
    be the first write of the unit of work. Domain errors are never retried.
    """
    max_attempts = attempts or settings.STORE_CONFLICT_RETRIES
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except OperationalError as exc:
            await db.rollback()
            if attempt == max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s", label, attempt, exc.orig
                )
                raise WriteConflictError() from exc
            logger.warning(
                "%s hit a write conflict (attempt %d/%d): %s",
                label,
                attempt,
                max_attempts,
                exc.orig,
            )
    raise WriteConflictError()
