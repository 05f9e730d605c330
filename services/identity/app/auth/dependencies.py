"""
Identity service — authorization gate (auth-specific FastAPI dependencies).

Every protected route depends on get_current_user, which verifies the bearer
access token, loads the user and re-checks account state on every request so
that locks, deactivation and revocation (token_version bump) take effect
immediately rather than at token expiry.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.auth.dependencies import get_bearer_token
from shared.constants import Role

from app.auth import service as auth_service
from app.auth.models import User
from app.auth.tokens import decode_access_token
from app.config import Settings, get_settings
from app.database import get_db
from app.email.send import BackgroundMailer, Mailer
from app.exceptions import (
    EmailNotVerified,
    Forbidden,
    IdentityError,
    InvalidToken,
    TokenExpired,
    Unauthorized,
)

logger = logging.getLogger(__name__)


# ── Base user dependencies ────────────────────────────────────────────────────

async def _resolve_user(
    token: str | None, session: AsyncSession, settings: Settings
) -> User:
    if not token:
        raise Unauthorized()
    try:
        claims = decode_access_token(token, settings)
    except TokenExpired:
        raise
    except InvalidToken:
        raise Unauthorized("Invalid token")

    user = await auth_service.get_user_by_id(session, claims.user_id)
    if user is None or user.token_version != claims.version:
        # Deleted user or token revoked by logout / password reset
        raise Unauthorized("Invalid token")
    auth_service.assert_account_usable(user)
    return user


async def get_current_user(
    token: str | None = Depends(get_bearer_token),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """Require a valid access token.  401 when absent/invalid/expired, 403 on account state."""
    return await _resolve_user(token, session, settings)


async def get_optional_user(
    token: str | None = Depends(get_bearer_token),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User | None:
    """Same checks as get_current_user, but any failure means anonymous."""
    if not token:
        return None
    try:
        return await _resolve_user(token, session, settings)
    except IdentityError as exc:
        logger.debug("Optional auth fell back to anonymous: %s", exc.code)
        return None


# ── Verification / role guards ────────────────────────────────────────────────

async def require_verified_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Raise 403 unless the authenticated user has verified their email."""
    if not current_user.is_verified:
        raise EmailNotVerified()
    return current_user


def require_roles(*roles: Role) -> Callable[..., Awaitable[User]]:
    """
    Build a dependency that admits only the given roles.

    Usage:  ``Depends(require_roles(Role.INSTRUCTOR, Role.ADMIN))``
    """
    allowed = frozenset(Role(r) for r in roles)

    async def _require_roles(current_user: User = Depends(get_current_user)) -> User:
        if Role(current_user.role) not in allowed:
            raise Forbidden()
        return current_user

    return _require_roles


# ── Side-effect dependencies ──────────────────────────────────────────────────

def get_mailer(
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
) -> Mailer:
    return BackgroundMailer(background_tasks, settings)
