"""
Identity service — credential service (pure business logic).

Rules:
  - Zero FastAPI imports.
  - Zero direct DB driver calls — only SQLAlchemy async session.
  - All I/O functions are async def.
  - Side effects beyond the session go through the injected Mailer only.
"""
from __future__ import annotations

import logging
import re
import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.constants import SingleUseTokenKind, SocialProvider
from app.auth.models import SingleUseToken, SocialAccount, User
from app.auth.single_use import consume_single_use_token, create_single_use_token
from app.auth.social import SocialProfile
from app.auth.utils import (
    hash_password_async,
    validate_password_strength,
    verify_password_async,
)
from app.email.send import Mailer
from app.exceptions import (
    AccountInactive,
    AccountLocked,
    DuplicateEmail,
    DuplicateUsername,
    EmailNotVerified,
    InvalidCredentials,
    InvalidSocialProfile,
    PasswordMismatch,
    UserNotFound,
)

logger = logging.getLogger(__name__)


# ── User queries ──────────────────────────────────────────────────────────────

async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    # Case-insensitive so links and logins work regardless of how the address was typed
    result = await session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(
        select(User).where(func.lower(User.username) == username.strip().lower())
    )
    return result.scalar_one_or_none()


async def get_user_by_id(
    session: AsyncSession, user_id: uuid.UUID
) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


# ── Guard: ensure account is usable ──────────────────────────────────────────

def assert_account_usable(user: User) -> None:
    """
    Raise the appropriate 403 for any account-level block.

    Called after every successful credential check, on token refresh and by
    the authorization gate, so that locks take effect immediately.
    """
    if user.is_locked:
        raise AccountLocked()
    if not user.is_active:
        raise AccountInactive()


# ── Registration (email + password) ──────────────────────────────────────────

async def register_user(
    session: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    mailer: Mailer,
) -> tuple[User, SingleUseToken]:
    """
    Create an unverified account, issue its verification token and mail it.

    Guard clauses (uniqueness checks, password policy) run before any write.
    Returns (user, verification_token); the caller issues the token pair.
    """
    if await get_user_by_email(session, email) is not None:
        raise DuplicateEmail()
    if await get_user_by_username(session, username) is not None:
        raise DuplicateUsername()
    validate_password_strength(password)

    user = User(
        username=username.strip(),
        email=email.strip().lower(),
        password_hash=await hash_password_async(password),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        is_verified=False,
    )
    session.add(user)
    await session.flush()

    token = await create_single_use_token(
        session, user, SingleUseTokenKind.EMAIL_VERIFICATION
    )
    mailer.send_email_verification(user, token.token)
    logger.info("Registered user %s", user.id)
    return user, token


# ── Authentication (email + password) ────────────────────────────────────────

async def authenticate_user(
    session: AsyncSession,
    email: str,
    password: str,
    *,
    require_verification: bool = False,
) -> User:
    """
    Verify credentials and return the User with last_login_at stamped.

    Unknown email and wrong password raise the same InvalidCredentials (and
    cost the same hash verification) to prevent user enumeration.  Account
    state is checked only after the password matched.
    """
    user = await get_user_by_email(session, email)
    password_ok = await verify_password_async(
        password, user.password_hash if user is not None else None
    )
    if user is None or not password_ok:
        raise InvalidCredentials()

    assert_account_usable(user)
    if require_verification and not user.is_verified:
        raise EmailNotVerified()

    await record_login(session, user)
    return user


async def record_login(session: AsyncSession, user: User) -> None:
    """Stamp last_login_at without ending the transaction."""
    user.last_login_at = datetime.now(timezone.utc)
    await session.flush()


# ── Email verification ────────────────────────────────────────────────────────

async def verify_email(session: AsyncSession, token: str) -> User:
    user = await consume_single_use_token(
        session, token, SingleUseTokenKind.EMAIL_VERIFICATION
    )
    user.is_verified = True
    await session.flush()
    logger.info("Verified email for user %s", user.id)
    return user


async def resend_verification(
    session: AsyncSession, email: str, mailer: Mailer
) -> None:
    """
    Issue and mail a new verification token if the account exists and is unverified.

    Returns nothing either way so the caller replies uniformly.  Earlier
    tokens are not invalidated.
    """
    user = await get_user_by_email(session, email)
    if user is None or user.is_verified:
        return
    token = await create_single_use_token(
        session, user, SingleUseTokenKind.EMAIL_VERIFICATION
    )
    mailer.send_email_verification(user, token.token)


# ── Password reset ────────────────────────────────────────────────────────────

async def forgot_password(
    session: AsyncSession, email: str, mailer: Mailer
) -> None:
    """Issue and mail a reset token when the email exists; silent otherwise."""
    user = await get_user_by_email(session, email)
    if user is None:
        return
    token = await create_single_use_token(
        session, user, SingleUseTokenKind.PASSWORD_RESET
    )
    mailer.send_password_reset(user, token.token)
    logger.info("Issued password reset token for user %s", user.id)


async def reset_password(
    session: AsyncSession,
    *,
    token: str,
    password: str,
    confirm_password: str,
) -> User:
    """
    Consume a reset token and replace the password hash.

    Input checks run first so a rejected password never burns the token.
    Outstanding sessions are revoked (forces re-login on every device).
    """
    if password != confirm_password:
        raise PasswordMismatch()
    validate_password_strength(password)

    user = await consume_single_use_token(
        session, token, SingleUseTokenKind.PASSWORD_RESET
    )
    user.password_hash = await hash_password_async(password)
    await session.flush()
    await revoke_sessions(session, user)
    logger.info("Password reset for user %s", user.id)
    return user


async def change_password(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    current_password: str,
    new_password: str,
    confirm_password: str,
) -> None:
    user = await get_user_by_id(session, user_id)
    if user is None:
        raise UserNotFound()
    if not await verify_password_async(current_password, user.password_hash):
        raise InvalidCredentials("Current password is incorrect.")
    if new_password != confirm_password:
        raise PasswordMismatch()
    validate_password_strength(new_password)

    user.password_hash = await hash_password_async(new_password)
    await session.flush()
    logger.info("Password changed for user %s", user.id)


# ── Session revocation ────────────────────────────────────────────────────────

async def revoke_sessions(session: AsyncSession, user: User) -> None:
    """Bump token_version; every token issued before now stops validating."""
    await session.execute(
        update(User)
        .where(User.id == user.id)
        .values(token_version=User.token_version + 1)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(user, ["token_version"])


# ── Social sign-in ────────────────────────────────────────────────────────────

_USERNAME_UNSAFE = re.compile(r"[^a-z0-9_]")


async def _generate_username(session: AsyncSession, email: str) -> str:
    base = _USERNAME_UNSAFE.sub("", email.split("@")[0].lower())[:40] or "user"
    for _ in range(5):
        candidate = f"{base}{secrets.randbelow(10_000):04d}"
        if await get_user_by_username(session, candidate) is None:
            return candidate
    return f"{base}{uuid.uuid4().hex[:8]}"


async def get_social_account(
    session: AsyncSession, provider: SocialProvider, subject_id: str
) -> SocialAccount | None:
    result = await session.execute(
        select(SocialAccount).where(
            SocialAccount.provider == provider,
            SocialAccount.provider_subject_id == subject_id,
        )
    )
    return result.scalar_one_or_none()


async def _link_or_create_user(
    session: AsyncSession,
    *,
    provider: SocialProvider,
    external_token: str,
    profile: SocialProfile,
) -> tuple[User, SocialAccount, bool]:
    if not profile.email:
        raise InvalidSocialProfile()

    is_new_user = False
    user = await get_user_by_email(session, profile.email)
    if user is None:
        user = User(
            username=await _generate_username(session, profile.email),
            email=profile.email.lower(),
            # Random secret the user never sees; they can set one via reset
            password_hash=await hash_password_async(secrets.token_urlsafe(32)),
            first_name=profile.first_name,
            last_name=profile.last_name,
            # The provider has already verified this address
            is_verified=True,
        )
        session.add(user)
        await session.flush()
        is_new_user = True

    link = SocialAccount(
        provider=provider,
        provider_subject_id=profile.subject_id,
        user_id=user.id,
        access_token=external_token,
        profile=profile.raw,
    )
    session.add(link)
    await session.flush()
    return user, link, is_new_user


async def social_auth(
    session: AsyncSession,
    *,
    provider: SocialProvider,
    external_token: str,
    profile: SocialProfile,
) -> tuple[User, bool]:
    """
    Resolve an external account to a local user, creating or linking as needed.

    Lookup order: existing link → user with the same email (linked now) →
    new verified user.  Returns (user, is_new_user).  Two concurrent first
    sign-ins for the same external account collapse onto one link through
    the (provider, provider_subject_id) unique constraint.
    """
    link = await get_social_account(session, provider, profile.subject_id)
    is_new_user = False

    if link is None:
        try:
            async with session.begin_nested():
                user, link, is_new_user = await _link_or_create_user(
                    session,
                    provider=provider,
                    external_token=external_token,
                    profile=profile,
                )
        except IntegrityError:
            # Another request linked this account (or claimed the email) first
            link = await get_social_account(session, provider, profile.subject_id)
            if link is None:
                raise
            is_new_user = False
        else:
            logger.info(
                "Linked %s account to user %s (new=%s)", provider.value, user.id, is_new_user
            )

    user = await get_user_by_id(session, link.user_id)
    if user is None:
        raise UserNotFound()
    assert_account_usable(user)

    link.access_token = external_token
    link.profile = profile.raw
    await record_login(session, user)
    return user, is_new_user
