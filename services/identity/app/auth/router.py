"""
Identity service — auth router.

Only HTTP concerns live here:
  - Route declarations, HTTP methods, status codes, response_model
  - Dependency injection (session, settings, mailer, current user)
  - Forwarding to the controller

Zero business logic. Zero DB queries.
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.rate_limit import limiter
from app.auth.constants import SocialProvider
from app.auth.controller import (
    change_password as change_password_controller,
    forgot_password as forgot_password_controller,
    login as login_controller,
    logout as logout_controller,
    refresh_token as refresh_token_controller,
    register as register_controller,
    resend_verification as resend_verification_controller,
    reset_password as reset_password_controller,
    social_auth as social_auth_controller,
    verify_email as verify_email_controller,
)
from app.auth.dependencies import get_current_user, get_mailer
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
from app.config import Settings, get_settings
from app.database import get_db
from app.email.send import Mailer

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Email + Password ──────────────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account (email + password)",
)
@limiter.limit("5/hour")
async def register(
    request: Request,
    body: RegisterRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
) -> AuthResponse:
    return await register_controller(session, body, settings, mailer)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email + password",
    description=(
        "Unknown email and wrong password both return 401 `Invalid credentials`. "
        "Locked, inactive and (when required) unverified accounts return 403."
    ),
)
@limiter.limit("5/15minutes")
async def login(
    request: Request,
    body: LoginRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    return await login_controller(session, body, settings)


# ── Token management ──────────────────────────────────────────────────────────

@router.post(
    "/refresh-token",
    response_model=TokenResponse,
    summary="Exchange a refresh token for a new access + refresh pair",
)
@limiter.limit("30/minute")
async def refresh_token(
    request: Request,
    body: RefreshRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> TokenResponse:
    return await refresh_token_controller(session, body, settings)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke every outstanding token of the current user",
)
async def logout(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    return await logout_controller(session, current_user)


# ── Email verification ────────────────────────────────────────────────────────

@router.post(
    "/verify-email",
    response_model=MessageResponse,
    summary="Consume an email-verification token",
)
@limiter.limit("10/minute")
async def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    session: AsyncSession = Depends(get_db),
) -> MessageResponse:
    return await verify_email_controller(session, body)


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    summary="Send a fresh verification email",
    description="Always returns 200 with the same message (prevents enumeration).",
)
@limiter.limit("3/hour")
async def resend_verification(
    request: Request,
    body: EmailRequest,
    session: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
) -> MessageResponse:
    return await resend_verification_controller(session, body, mailer)


# ── Password management ───────────────────────────────────────────────────────

@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset link via email",
    description=(
        "Always returns 200 even if the email is not registered (prevents enumeration). "
        "The link expires in 1 hour."
    ),
)
@limiter.limit("3/hour")
async def forgot_password(
    request: Request,
    body: EmailRequest,
    session: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
) -> MessageResponse:
    return await forgot_password_controller(session, body, mailer)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Set a new password with a reset token",
)
@limiter.limit("10/hour")
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    session: AsyncSession = Depends(get_db),
) -> MessageResponse:
    return await reset_password_controller(session, body)


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change password (requires current password)",
)
async def change_password(
    body: ChangePasswordRequest,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    return await change_password_controller(session, body, current_user)


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Return the authenticated user",
)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)


# ── Social sign-in ────────────────────────────────────────────────────────────

@router.post(
    "/social/{provider}",
    response_model=SocialAuthResponse,
    summary="Sign in with an external provider (creates or links the account)",
)
@limiter.limit("10/minute")
async def social_auth(
    request: Request,
    provider: SocialProvider,
    body: SocialAuthRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> SocialAuthResponse:
    return await social_auth_controller(session, provider, body, settings)
