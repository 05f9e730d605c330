"""
Identity service — single-use token store (email verification, password reset).

Tokens are opaque 256-bit hex strings persisted one row per token.  A token
is valid iff it is unused and ``now <= expires_at``; consumption flips
``is_used`` with a single conditional UPDATE so that of N concurrent
attempts with the same value exactly one succeeds.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.constants import SINGLE_USE_TOKEN_BYTES, SingleUseTokenKind
from app.auth.models import SingleUseToken, User
from app.exceptions import AlreadyUsed, InvalidLinkToken, LinkTokenExpired

logger = logging.getLogger(__name__)


def generate_token_value() -> str:
    return secrets.token_hex(SINGLE_USE_TOKEN_BYTES)


async def create_single_use_token(
    session: AsyncSession,
    user: User,
    kind: SingleUseTokenKind,
    *,
    now: datetime | None = None,
) -> SingleUseToken:
    """
    Persist a fresh token for ``user``; expiry is 24h (verification) or 1h (reset).

    Earlier tokens of the same kind are left untouched and stay valid until
    they expire or are consumed.
    """
    now = now or datetime.now(timezone.utc)
    token = SingleUseToken(
        token=generate_token_value(),
        kind=kind,
        user_id=user.id,
        created_at=now,
        expires_at=now + timedelta(seconds=kind.lifetime_seconds),
        is_used=False,
    )
    session.add(token)
    await session.flush()
    return token


async def get_single_use_token(
    session: AsyncSession, value: str, kind: SingleUseTokenKind
) -> SingleUseToken | None:
    # populate_existing: the conditional UPDATE below bypasses the identity map
    result = await session.execute(
        select(SingleUseToken)
        .where(
            SingleUseToken.token == value,
            SingleUseToken.kind == kind,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def consume_single_use_token(
    session: AsyncSession,
    value: str,
    kind: SingleUseTokenKind,
    *,
    now: datetime | None = None,
) -> User:
    """
    Atomically mark the token used and return its owner.

    The check and the mark are one statement; a concurrent consumer either
    sees the row already flipped (zero rows updated) or blocks on the row lock
    until the winner commits and then re-evaluates the WHERE clause.

    Raises:
      InvalidLinkToken  — no token with this value and kind
      AlreadyUsed       — token was consumed before
      LinkTokenExpired  — past expires_at
    """
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        update(SingleUseToken)
        .where(
            SingleUseToken.token == value,
            SingleUseToken.kind == kind,
            SingleUseToken.is_used.is_(False),
            SingleUseToken.expires_at >= now,
        )
        .values(is_used=True)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        # Lost the race or the token was never valid; classify for the caller
        token = await get_single_use_token(session, value, kind)
        if token is None:
            raise InvalidLinkToken()
        if token.is_used:
            raise AlreadyUsed()
        raise LinkTokenExpired()

    token = await get_single_use_token(session, value, kind)
    user = await session.get(User, token.user_id)
    logger.info("Consumed %s token for user %s", kind.value, user.id)
    return user
