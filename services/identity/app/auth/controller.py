"""
Identity service — auth controller (request orchestration layer).

Responsibilities:
  - Receive validated input from the router.
  - Call service functions (which own business logic).
  - Issue tokens and compose the response model.

No framework validation logic here — that belongs in schemas.py.
No business logic here — that belongs in service.py.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import service
from app.auth.constants import (
    FORGOT_PASSWORD_MESSAGE,
    RESEND_VERIFICATION_MESSAGE,
    SocialProvider,
)
from app.auth.models import User
from app.auth.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SocialAuthRequest,
    SocialAuthResponse,
    TokenResponse,
    UserResponse,
    VerifyEmailRequest,
)
from app.auth.social import fetch_profile, parse_profile
from app.auth.tokens import TokenPair, issue_token_pair, refresh_token_pair
from app.config import Settings
from app.email.send import Mailer
from app.exceptions import InvalidSocialProfile

logger = logging.getLogger(__name__)


# ── Helper ────────────────────────────────────────────────────────────────────

def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


def _auth_response(user: User, settings: Settings) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.model_validate(user),
        tokens=_token_response(issue_token_pair(user, settings)),
    )


# ── Register / Login ──────────────────────────────────────────────────────────

async def register(
    session: AsyncSession,
    body: RegisterRequest,
    settings: Settings,
    mailer: Mailer,
) -> AuthResponse:
    # Tokens are issued before verification; REQUIRE_EMAIL_VERIFICATION gates login only
    user, _ = await service.register_user(
        session,
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        mailer=mailer,
    )
    return _auth_response(user, settings)


async def login(
    session: AsyncSession,
    body: LoginRequest,
    settings: Settings,
) -> AuthResponse:
    user = await service.authenticate_user(
        session,
        body.email,
        body.password,
        require_verification=settings.require_email_verification,
    )
    logger.info("User %s logged in", user.id)
    return _auth_response(user, settings)


# ── Token management ──────────────────────────────────────────────────────────

async def refresh_token(
    session: AsyncSession,
    body: RefreshRequest,
    settings: Settings,
) -> TokenResponse:
    user, pair = await refresh_token_pair(session, body.refresh_token, settings)
    logger.info("Refreshed tokens for user %s", user.id)
    return _token_response(pair)


async def logout(session: AsyncSession, user: User) -> MessageResponse:
    await service.revoke_sessions(session, user)
    logger.info("User %s logged out", user.id)
    return MessageResponse(message="Logout successful")


# ── Email verification ────────────────────────────────────────────────────────

async def verify_email(session: AsyncSession, body: VerifyEmailRequest) -> MessageResponse:
    await service.verify_email(session, body.token)
    return MessageResponse(message="Email verified successfully")


async def resend_verification(
    session: AsyncSession, body: EmailRequest, mailer: Mailer
) -> MessageResponse:
    await service.resend_verification(session, body.email, mailer)
    return MessageResponse(message=RESEND_VERIFICATION_MESSAGE)


# ── Password management ───────────────────────────────────────────────────────

async def forgot_password(
    session: AsyncSession, body: EmailRequest, mailer: Mailer
) -> MessageResponse:
    await service.forgot_password(session, body.email, mailer)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


async def reset_password(
    session: AsyncSession, body: ResetPasswordRequest
) -> MessageResponse:
    await service.reset_password(
        session,
        token=body.token,
        password=body.password,
        confirm_password=body.confirm_password,
    )
    return MessageResponse(message="Password has been reset successfully")


async def change_password(
    session: AsyncSession, body: ChangePasswordRequest, user: User
) -> MessageResponse:
    await service.change_password(
        session,
        user_id=user.id,
        current_password=body.current_password,
        new_password=body.new_password,
        confirm_password=body.confirm_password,
    )
    return MessageResponse(message="Password changed successfully")


# ── Social sign-in ────────────────────────────────────────────────────────────

async def social_auth(
    session: AsyncSession,
    provider: SocialProvider,
    body: SocialAuthRequest,
    settings: Settings,
) -> SocialAuthResponse:
    # The provider account behind the token is authoritative; a profile sent
    # by the client may only repeat it
    profile = await fetch_profile(
        provider, body.token, timeout=settings.social_userinfo_timeout
    )
    if body.profile is not None:
        claimed = parse_profile(body.profile)
        if claimed.subject_id != profile.subject_id or (
            claimed.email is not None and claimed.email != profile.email
        ):
            logger.warning(
                "Rejected %s sign-in: submitted profile does not match token",
                provider.value,
            )
            raise InvalidSocialProfile("Profile does not match the provider account.")

    user, is_new_user = await service.social_auth(
        session,
        provider=provider,
        external_token=body.token,
        profile=profile,
    )
    return SocialAuthResponse(
        user=UserResponse.model_validate(user),
        tokens=_token_response(issue_token_pair(user, settings)),
        is_new_user=is_new_user,
    )
