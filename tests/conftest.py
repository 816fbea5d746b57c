"""Shared test fixtures."""

from __future__ import annotations

import os

os.environ["LUX_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LUX_REDIS_URL"] = ""
os.environ["LUX_JWT_ALGORITHM"] = "HS256"
os.environ["LUX_JWT_SECRET"] = "luxicle-test-secret-0123456789abcdef0123456789"
os.environ["LUX_EMAIL_PROVIDER"] = "log"
os.environ["LUX_LOG_FORMAT"] = "console"

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from luxicle.auth.jwt import reset_keys  # noqa: E402
from luxicle.auth.service import register_user  # noqa: E402
from luxicle.config import get_settings  # noqa: E402
from luxicle.database import build_engine, build_session_factory, get_session  # noqa: E402
from luxicle.db import models  # noqa: E402, F401
from luxicle.db.base import Base  # noqa: E402
from luxicle.db.models import User  # noqa: E402
from luxicle.email.service import BaseEmailProvider, EmailService, reset_email_service  # noqa: E402
from luxicle.main import create_app  # noqa: E402

PASSWORD = "CorrectHorse1"


class RecordingProvider(BaseEmailProvider):
    """Keeps every message instead of delivering it."""

    name = "recording"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:  # noqa: ARG002
        self.sent.append((to_email, subject, text_body))
        return True


@pytest.fixture(autouse=True)
def _fresh_settings() -> Any:  # noqa: ANN401
    """Every test starts from env-derived settings, fresh JWT keys and a fresh email service."""
    get_settings.cache_clear()
    reset_keys()
    reset_email_service()
    yield
    get_settings.cache_clear()
    reset_keys()
    reset_email_service()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema."""
    eng = build_engine("sqlite+aiosqlite://")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Application wired to the test database."""
    application = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_session] = _session
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Register a user with a known password and commit."""

    async def _make(username: str, email: str | None = None, password: str = PASSWORD) -> User:
        user = await register_user(db_session, email or f"{username}@luxicle.io", password, username)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def alice(make_user: Callable[..., Awaitable[User]]) -> User:
    return await make_user("alice")


@pytest_asyncio.fixture
async def bob(make_user: Callable[..., Awaitable[User]]) -> User:
    return await make_user("bob")


@pytest.fixture
def outbox() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def email_service(outbox: RecordingProvider) -> EmailService:
    return EmailService(provider=outbox)
