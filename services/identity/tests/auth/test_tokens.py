import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from app.auth.models import User
from app.auth.tokens import (
    decode_access_token,
    decode_refresh_token,
    issue_token_pair,
    refresh_token_pair,
)
from app.auth.utils import hash_password
from app.exceptions import (
    AccountLocked,
    InvalidToken,
    TokenExpired,
    UserNotFound,
)
from shared.constants import Role


def _user(**overrides) -> User:
    fields = dict(
        id=uuid.uuid4(),
        username="alice",
        email="alice@x.com",
        password_hash="not-used",
        first_name="Alice",
        last_name="Liddell",
        role=Role.INSTRUCTOR,
        token_version=0,
        is_active=True,
        is_locked=False,
        is_verified=True,
    )
    fields.update(overrides)
    return User(**fields)


def test_issue_token_pair_claims(settings) -> None:
    user = _user()
    pair = issue_token_pair(user, settings)

    assert pair.expires_in == 3600
    access = jwt.get_unverified_claims(pair.access_token)
    refresh = jwt.get_unverified_claims(pair.refresh_token)
    assert access["sub"] == str(user.id)
    assert access["email"] == "alice@x.com"
    assert access["role"] == "instructor"
    assert access["type"] == "access"
    assert access["exp"] - access["iat"] == 3600
    # Refresh token identifies the user only
    assert refresh["sub"] == str(user.id)
    assert "email" not in refresh and "role" not in refresh
    assert refresh["type"] == "refresh"
    assert refresh["exp"] - refresh["iat"] == 7 * 86_400


def test_access_and_refresh_use_distinct_secrets(settings) -> None:
    pair = issue_token_pair(_user(), settings)

    claims = decode_access_token(pair.access_token, settings)
    assert claims.role is Role.INSTRUCTOR
    assert decode_refresh_token(pair.refresh_token, settings).version == 0

    # A refresh token is never accepted as an access token and vice versa
    with pytest.raises(InvalidToken):
        decode_access_token(pair.refresh_token, settings)
    with pytest.raises(InvalidToken):
        decode_refresh_token(pair.access_token, settings)


def test_decode_rejects_tampered_and_garbage(settings) -> None:
    pair = issue_token_pair(_user(), settings)
    with pytest.raises(InvalidToken):
        decode_access_token(pair.access_token[:-2] + "xx", settings)
    with pytest.raises(InvalidToken):
        decode_access_token("not-a-jwt", settings)


def test_decode_expired_token(settings) -> None:
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    pair = issue_token_pair(_user(), settings, now=issued)
    with pytest.raises(TokenExpired):
        decode_access_token(pair.access_token, settings)


@pytest.mark.asyncio
async def test_refresh_token_pair_rotates(db_session, settings) -> None:
    user = _user(password_hash=hash_password("Abc12345!"))
    db_session.add(user)
    await db_session.flush()

    pair = issue_token_pair(user, settings)
    refreshed_user, new_pair = await refresh_token_pair(db_session, pair.refresh_token, settings)

    assert refreshed_user.id == user.id
    assert new_pair.refresh_token != pair.refresh_token
    assert decode_access_token(new_pair.access_token, settings).user_id == user.id


@pytest.mark.asyncio
async def test_refresh_rejects_revoked_version(db_session, settings) -> None:
    user = _user()
    db_session.add(user)
    await db_session.flush()
    pair = issue_token_pair(user, settings)

    user.token_version += 1
    await db_session.flush()

    with pytest.raises(InvalidToken):
        await refresh_token_pair(db_session, pair.refresh_token, settings)


@pytest.mark.asyncio
async def test_refresh_unknown_user(db_session, settings) -> None:
    pair = issue_token_pair(_user(), settings)
    with pytest.raises(UserNotFound):
        await refresh_token_pair(db_session, pair.refresh_token, settings)


@pytest.mark.asyncio
async def test_refresh_locked_account(db_session, settings) -> None:
    user = _user(is_locked=True)
    db_session.add(user)
    await db_session.flush()
    pair = issue_token_pair(user, settings)
    with pytest.raises(AccountLocked):
        await refresh_token_pair(db_session, pair.refresh_token, settings)
