import asyncio
import re
from datetime import datetime, timedelta, timezone

import pytest

from app.auth.constants import SingleUseTokenKind
from app.auth.models import User
from app.auth.single_use import consume_single_use_token, create_single_use_token
from app.exceptions import AlreadyUsed, InvalidLinkToken, LinkTokenExpired

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


async def _make_user(session, email: str = "bob@x.com") -> User:
    user = User(
        username=email.split("@")[0],
        email=email,
        password_hash="x",
        first_name="Bob",
        last_name="Builder",
    )
    session.add(user)
    await session.flush()
    return user


@pytest.mark.asyncio
async def test_token_value_and_expiry(db_session) -> None:
    user = await _make_user(db_session)

    verify = await create_single_use_token(
        db_session, user, SingleUseTokenKind.EMAIL_VERIFICATION, now=T0
    )
    reset = await create_single_use_token(
        db_session, user, SingleUseTokenKind.PASSWORD_RESET, now=T0
    )

    assert re.fullmatch(r"[0-9a-f]{64}", verify.token)
    assert verify.token != reset.token
    assert verify.expires_at == T0 + timedelta(hours=24)
    assert reset.expires_at == T0 + timedelta(hours=1)
    assert verify.is_valid(T0)


@pytest.mark.asyncio
async def test_consume_marks_used_once(db_session) -> None:
    user = await _make_user(db_session)
    token = await create_single_use_token(db_session, user, SingleUseTokenKind.PASSWORD_RESET)

    owner = await consume_single_use_token(
        db_session, token.token, SingleUseTokenKind.PASSWORD_RESET
    )
    assert owner.id == user.id

    with pytest.raises(AlreadyUsed):
        await consume_single_use_token(
            db_session, token.token, SingleUseTokenKind.PASSWORD_RESET
        )


@pytest.mark.asyncio
async def test_consume_unknown_or_wrong_kind(db_session) -> None:
    user = await _make_user(db_session)
    token = await create_single_use_token(
        db_session, user, SingleUseTokenKind.EMAIL_VERIFICATION
    )

    with pytest.raises(InvalidLinkToken):
        await consume_single_use_token(db_session, "f" * 64, SingleUseTokenKind.EMAIL_VERIFICATION)
    # A verification token cannot reset a password
    with pytest.raises(InvalidLinkToken):
        await consume_single_use_token(db_session, token.token, SingleUseTokenKind.PASSWORD_RESET)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("kind", "lifetime"),
    [
        (SingleUseTokenKind.EMAIL_VERIFICATION, timedelta(hours=24)),
        (SingleUseTokenKind.PASSWORD_RESET, timedelta(hours=1)),
    ],
)
async def test_expiry_boundary(db_session, kind, lifetime) -> None:
    user = await _make_user(db_session)
    late = await create_single_use_token(db_session, user, kind, now=T0)
    on_time = await create_single_use_token(db_session, user, kind, now=T0)
    one_ms = timedelta(milliseconds=1)

    with pytest.raises(LinkTokenExpired):
        await consume_single_use_token(db_session, late.token, kind, now=T0 + lifetime + one_ms)

    owner = await consume_single_use_token(
        db_session, on_time.token, kind, now=T0 + lifetime - one_ms
    )
    assert owner.id == user.id


@pytest.mark.asyncio
async def test_concurrent_consumers_exactly_one_wins(session_factory) -> None:
    async with session_factory() as session:
        user = await _make_user(session, "race@x.com")
        token = await create_single_use_token(session, user, SingleUseTokenKind.PASSWORD_RESET)
        await session.commit()
        value = token.token

    async def attempt() -> str:
        async with session_factory() as session:
            try:
                await consume_single_use_token(session, value, SingleUseTokenKind.PASSWORD_RESET)
                await session.commit()
                return "ok"
            except (AlreadyUsed, InvalidLinkToken):
                await session.rollback()
                return "rejected"

    results = await asyncio.gather(*(attempt() for _ in range(5)))
    assert results.count("ok") == 1
    assert results.count("rejected") == 4
