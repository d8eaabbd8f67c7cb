"""
Test configuration and shared fixtures.
Uses an in-memory SQLite database for fast, isolated tests.
"""
from __future__ import annotations

import os

# Must be set before talesy reads its settings.
os.environ.setdefault("RATE_LIMIT_COMMENT", "10000/minute")

import uuid  # noqa: E402
from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import talesy.models  # noqa: E402,F401
from talesy.core.security import create_access_token  # noqa: E402
from talesy.db.base import Base  # noqa: E402
from talesy.db.session import get_db  # noqa: E402
from talesy.main import app  # noqa: E402
from talesy.models.post import Post  # noqa: E402
from talesy.models.user import User  # noqa: E402

# ── Test database ─────────────────────────────────────────────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="session", autouse=True)
async def create_tables():
    """Create all tables once per test session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Provide a transactional test database session that rolls back after each test."""
    async with TestSessionLocal() as session:
        try:
            yield session
            await session.rollback()
        finally:
            await session.close()


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP test client with the test DB injected."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Helper fixtures ───────────────────────────────────────────────────────────

def auth_headers_for(user: User) -> dict[str, str]:
    """Authorization headers carrying a token issued for the given user."""
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest_asyncio.fixture
async def make_user(db: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory inserting users directly via the DB."""

    async def _make(username: str | None = None, **kwargs) -> User:
        name = username or f"user_{uuid.uuid4().hex[:10]}"
        user = User(username=name, display_name=name.title(), **kwargs)
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    return _make


@pytest_asyncio.fixture
async def author(make_user) -> User:
    """The user who wrote the post."""
    return await make_user()


@pytest_asyncio.fixture
async def reader(make_user) -> User:
    """A second user commenting on someone else's post."""
    return await make_user()


@pytest_asyncio.fixture
async def post(db: AsyncSession, author: User) -> Post:
    story = Post(title="The Lighthouse Keeper", author_id=author.id)
    db.add(story)
    await db.flush()
    await db.refresh(story)
    return story


@pytest_asyncio.fixture
async def author_headers(author: User) -> dict[str, str]:
    return auth_headers_for(author)


@pytest_asyncio.fixture
async def reader_headers(reader: User) -> dict[str, str]:
    return auth_headers_for(reader)


@pytest_asyncio.fixture
async def committed_db() -> AsyncGenerator[AsyncSession, None]:
    """
    A session whose setup data is committed, so it survives the rollback a
    write-conflict retry performs. Every table is emptied afterwards.
    """
    async with TestSessionLocal() as session:
        try:
            yield session
            await session.rollback()
        finally:
            await session.close()
    async with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
