"""
Identity service — token issuer.

Access tokens carry {sub, email, role} and are signed with JWT_SECRET;
refresh tokens carry only {sub} and are signed with the distinct
JWT_REFRESH_SECRET.  Both embed the user's ``token_version`` as ``ver`` so a
version bump (logout, password reset) revokes every outstanding token.

Stateless apart from the signing secrets: refresh rotation re-issues a full
pair without persisting anything.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role

from app.auth.constants import TokenType
from app.auth.models import User
from app.auth.service import assert_account_usable, get_user_by_id
from app.config import Settings
from app.exceptions import InvalidToken, TokenExpired, UserNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in whole seconds


@dataclass(frozen=True, slots=True)
class AccessClaims:
    user_id: uuid.UUID
    email: str
    role: Role
    version: int


@dataclass(frozen=True, slots=True)
class RefreshClaims:
    user_id: uuid.UUID
    version: int


# ── Encoding ──────────────────────────────────────────────────────────────────

def _encode(
    claims: dict,
    *,
    token_type: TokenType,
    secret: str,
    expire_seconds: int,
    settings: Settings,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        **claims,
        "type": token_type.value,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    user: User, settings: Settings, *, now: datetime | None = None
) -> str:
    return _encode(
        {
            "sub": str(user.id),
            "email": user.email,
            "role": Role(user.role).value,
            "ver": user.token_version,
        },
        token_type=TokenType.ACCESS,
        secret=settings.jwt_secret,
        expire_seconds=settings.jwt_expire_seconds,
        settings=settings,
        now=now,
    )


def create_refresh_token(
    user: User, settings: Settings, *, now: datetime | None = None
) -> str:
    return _encode(
        {"sub": str(user.id), "ver": user.token_version},
        token_type=TokenType.REFRESH,
        secret=settings.jwt_refresh_secret,
        expire_seconds=settings.jwt_refresh_expire_seconds,
        settings=settings,
        now=now,
    )


def issue_token_pair(
    user: User, settings: Settings, *, now: datetime | None = None
) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(user, settings, now=now),
        refresh_token=create_refresh_token(user, settings, now=now),
        expires_in=int(settings.jwt_expire_seconds),
    )


# ── Decoding ──────────────────────────────────────────────────────────────────

def _decode(token: str, *, secret: str, token_type: TokenType, settings: Settings) -> dict:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise InvalidToken()

    if payload.get("type") != token_type.value:
        raise InvalidToken()
    return payload


def _parse_subject(payload: dict) -> tuple[uuid.UUID, int]:
    try:
        return uuid.UUID(payload["sub"]), int(payload.get("ver", 0))
    except (KeyError, TypeError, ValueError):
        raise InvalidToken()


def decode_access_token(token: str, settings: Settings) -> AccessClaims:
    payload = _decode(
        token,
        secret=settings.jwt_secret,
        token_type=TokenType.ACCESS,
        settings=settings,
    )
    user_id, version = _parse_subject(payload)
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise InvalidToken()
    return AccessClaims(
        user_id=user_id,
        email=payload.get("email") or "",
        role=role,
        version=version,
    )


def decode_refresh_token(token: str, settings: Settings) -> RefreshClaims:
    payload = _decode(
        token,
        secret=settings.jwt_refresh_secret,
        token_type=TokenType.REFRESH,
        settings=settings,
    )
    user_id, version = _parse_subject(payload)
    return RefreshClaims(user_id=user_id, version=version)


# ── Rotation ──────────────────────────────────────────────────────────────────

async def refresh_token_pair(
    session: AsyncSession,
    refresh_token: str,
    settings: Settings,
) -> tuple[User, TokenPair]:
    """
    Verify a refresh token and re-issue a complete new pair.

    Raises:
      InvalidToken  — malformed, wrong signature/type, or revoked (stale ver)
      TokenExpired  — past expiry
      UserNotFound  — the referenced user no longer exists
      AccountLocked / AccountInactive — account blocked since issuance
    """
    claims = decode_refresh_token(refresh_token, settings)
    user = await get_user_by_id(session, claims.user_id)
    if user is None:
        raise UserNotFound()
    if claims.version != user.token_version:
        logger.info("Rejected revoked refresh token for user %s", user.id)
        raise InvalidToken()
    assert_account_usable(user)
    return user, issue_token_pair(user, settings)
