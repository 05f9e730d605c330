"""
Identity service — Pydantic V2 request/response schemas for the auth domain.

Separation of concerns:
  - *Request  models:  input from the client (strict extra="forbid")
  - *Response models:  output to the client (no write-only fields exposed)

JSON field names are camelCase on the wire (``firstName``, ``accessToken``)
and snake_case in Python; both spellings are accepted on input.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from shared.constants import Role

from app.auth.constants import PASSWORD_MAX_LENGTH


# ── Shared bases ──────────────────────────────────────────────────────────────

class _Base(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class _Response(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# Strength is enforced by the service (WEAK_PASSWORD); only the hard cap here
_Password = Field(max_length=PASSWORD_MAX_LENGTH)
# Single-use tokens are 64 hex chars; anything shorter than 10 is noise
_LinkToken = Field(min_length=10, max_length=128)


# ── Email + Password flow ─────────────────────────────────────────────────────

class RegisterRequest(_Base):
    """Body for POST /auth/register."""

    username: str = Field(min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = _Password
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class LoginRequest(_Base):
    """Body for POST /auth/login."""

    email: EmailStr
    password: str = Field(max_length=PASSWORD_MAX_LENGTH)


# ── Token management ──────────────────────────────────────────────────────────

class RefreshRequest(_Base):
    """Body for POST /auth/refresh-token."""

    refresh_token: str = Field(min_length=1)


# ── Email verification ────────────────────────────────────────────────────────

class VerifyEmailRequest(_Base):
    token: str = _LinkToken


class EmailRequest(_Base):
    """Body for POST /auth/resend-verification and /auth/forgot-password."""

    email: EmailStr


# ── Password management ───────────────────────────────────────────────────────

class ResetPasswordRequest(_Base):
    token: str = _LinkToken
    password: str = _Password
    confirm_password: str = _Password


class ChangePasswordRequest(_Base):
    current_password: str = Field(max_length=PASSWORD_MAX_LENGTH)
    new_password: str = _Password
    confirm_password: str = _Password


# ── Social sign-in ────────────────────────────────────────────────────────────

class SocialAuthRequest(_Base):
    """
    Body for POST /auth/social/{provider}.

    The server always looks the account up with ``token``.  ``profile`` is
    the provider payload the client already holds; when sent it must match
    that account or the request is rejected.
    """

    token: str = Field(min_length=1)
    profile: dict[str, Any] | None = None


# ── Response models ───────────────────────────────────────────────────────────

class TokenResponse(_Response):
    """Returned on successful register / login / refresh / social sign-in."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"


class UserResponse(_Response):
    """Public user profile.  The password hash has no field here."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: uuid.UUID
    username: str
    email: str
    first_name: str
    last_name: str
    role: Role
    is_verified: bool
    is_active: bool
    is_locked: bool
    last_login_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AuthResponse(_Response):
    """Combined response for POST /auth/register and /auth/login."""

    user: UserResponse
    tokens: TokenResponse


class SocialAuthResponse(AuthResponse):
    is_new_user: bool


class MessageResponse(_Response):
    """Generic acknowledgement for informational 200 endpoints."""

    success: bool = True
    message: str
