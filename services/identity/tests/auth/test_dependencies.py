from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from app.auth.dependencies import (
    get_current_user,
    get_optional_user,
    require_roles,
    require_verified_user,
)
from app.auth.models import User
from app.auth.tokens import issue_token_pair
from app.auth.utils import hash_password
from app.config import get_settings
from shared.constants import Role
from shared.middleware.error_handler import register_error_handlers


@pytest_asyncio.fixture
async def gate_client(settings, session_factory):
    app = FastAPI()
    register_error_handlers(app)
    app.dependency_overrides[get_settings] = lambda: settings

    @app.get("/private")
    async def private(user: User = Depends(get_current_user)) -> dict:
        return {"id": str(user.id)}

    @app.get("/maybe")
    async def maybe(user: User | None = Depends(get_optional_user)) -> dict:
        return {"anonymous": user is None}

    @app.get("/verified")
    async def verified(user: User = Depends(require_verified_user)) -> dict:
        return {"ok": True}

    @app.get("/teach")
    async def teach(user: User = Depends(require_roles(Role.INSTRUCTOR, Role.ADMIN))) -> dict:
        return {"ok": True}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _user(session_factory, **overrides) -> User:
    fields = dict(
        username="gate",
        email="gate@x.com",
        password_hash=hash_password("Abc12345!"),
        first_name="Gate",
        last_name="Keeper",
    )
    fields.update(overrides)
    async with session_factory() as session:
        user = User(**fields)
        session.add(user)
        await session.commit()
        return user


def _bearer(user: User, settings, **kwargs) -> dict:
    pair = issue_token_pair(user, settings, **kwargs)
    return {"Authorization": f"Bearer {pair.access_token}"}


@pytest.mark.asyncio
async def test_missing_and_malformed_token(gate_client) -> None:
    resp = await gate_client.get("/private")
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"
    assert resp.headers["WWW-Authenticate"] == "Bearer"

    resp = await gate_client.get("/private", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_valid_token(gate_client, session_factory, settings) -> None:
    user = await _user(session_factory)
    resp = await gate_client.get("/private", headers=_bearer(user, settings))
    assert resp.status_code == 200
    assert resp.json() == {"id": str(user.id)}


@pytest.mark.asyncio
async def test_expired_token(gate_client, session_factory, settings) -> None:
    user = await _user(session_factory)
    old = datetime.now(timezone.utc) - timedelta(hours=2)
    resp = await gate_client.get("/private", headers=_bearer(user, settings, now=old))
    assert resp.status_code == 401
    assert resp.json()["code"] == "TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_revoked_token(gate_client, session_factory, settings) -> None:
    user = await _user(session_factory)
    headers = _bearer(user, settings)
    async with session_factory() as session:
        stored = await session.get(User, user.id)
        stored.token_version += 1
        await session.commit()

    resp = await gate_client.get("/private", headers=headers)
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("flags", "code"),
    [({"is_locked": True}, "ACCOUNT_LOCKED"), ({"is_active": False}, "ACCOUNT_INACTIVE")],
)
async def test_blocked_accounts_are_forbidden(gate_client, session_factory, settings, flags, code) -> None:
    user = await _user(session_factory, **flags)
    resp = await gate_client.get("/private", headers=_bearer(user, settings))
    assert resp.status_code == 403
    assert resp.json()["code"] == code


@pytest.mark.asyncio
async def test_optional_user_falls_back_to_anonymous(gate_client, session_factory, settings) -> None:
    locked = await _user(session_factory, is_locked=True)

    assert (await gate_client.get("/maybe")).json() == {"anonymous": True}
    garbage = await gate_client.get("/maybe", headers={"Authorization": "Bearer nope"})
    assert garbage.json() == {"anonymous": True}
    blocked = await gate_client.get("/maybe", headers=_bearer(locked, settings))
    assert blocked.status_code == 200
    assert blocked.json() == {"anonymous": True}


@pytest.mark.asyncio
async def test_optional_user_attaches_identity(gate_client, session_factory, settings) -> None:
    user = await _user(session_factory)
    resp = await gate_client.get("/maybe", headers=_bearer(user, settings))
    assert resp.json() == {"anonymous": False}


@pytest.mark.asyncio
async def test_verified_required(gate_client, session_factory, settings) -> None:
    unverified = await _user(session_factory)
    verified = await _user(session_factory, username="v", email="v@x.com", is_verified=True)

    resp = await gate_client.get("/verified", headers=_bearer(unverified, settings))
    assert resp.status_code == 403
    assert resp.json()["code"] == "EMAIL_NOT_VERIFIED"
    resp = await gate_client.get("/verified", headers=_bearer(verified, settings))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_role_required(gate_client, session_factory, settings) -> None:
    learner = await _user(session_factory)
    instructor = await _user(
        session_factory, username="prof", email="prof@x.com", role=Role.INSTRUCTOR
    )

    resp = await gate_client.get("/teach", headers=_bearer(learner, settings))
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"
    resp = await gate_client.get("/teach", headers=_bearer(instructor, settings))
    assert resp.status_code == 200
