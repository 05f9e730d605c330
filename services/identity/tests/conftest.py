import os
from collections.abc import AsyncGenerator

# Limits are per client IP and every test request shares one
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_mailer
from app.auth.models import User
from app.config import Settings, get_settings
from app.database import create_tables, dispose_db, init_db
from app.main import create_app
from app.rate_limit import limiter
from shared.database.postgres import AsyncSessionFactory


class RecordingMailer:
    """Captures outgoing tokens instead of scheduling email delivery."""

    def __init__(self) -> None:
        self.verification_tokens: list[tuple[str, str]] = []
        self.reset_tokens: list[tuple[str, str]] = []

    def send_email_verification(self, user: User, token: str) -> None:
        self.verification_tokens.append((user.email, token))

    def send_password_reset(self, user: User, token: str) -> None:
        self.reset_tokens.append((user.email, token))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}",
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        require_email_verification=False,
    )


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncGenerator[AsyncSessionFactory, None]:
    # A file database so concurrent sessions get separate connections
    factory = init_db(settings.database_url)
    await create_tables()
    yield factory
    await dispose_db()


@pytest_asyncio.fixture
async def db_session(session_factory: AsyncSessionFactory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def identity_app(settings: Settings, mailer: RecordingMailer, session_factory) -> FastAPI:
    limiter.enabled = False
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_mailer] = lambda: mailer
    return application


@pytest_asyncio.fixture
async def client(identity_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=identity_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
