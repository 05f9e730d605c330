"""
Identity service — domain-specific HTTP exceptions.

All exceptions use preset status codes, detail messages and a machine-readable
``code`` so that callers never need to specify these at the call site.  The
shared http_exception_handler renders them as ``{code, message, request_id}``.

Status mapping:
  401  credential and token failures
  403  account state (locked / inactive / unverified) and role checks
  400  validation, duplicates and single-use token failures
"""
from fastapi import HTTPException, status


class IdentityError(HTTPException):
    code: str = "IDENTITY_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        headers = (
            {"WWW-Authenticate": "Bearer"}
            if self.status_code == status.HTTP_401_UNAUTHORIZED
            else None
        )
        super().__init__(
            status_code=self.status_code,
            detail=message or self.message,
            headers=headers,
        )


# ── Authentication ────────────────────────────────────────────────────────────

class InvalidCredentials(IdentityError):
    code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid credentials"


class Unauthorized(IdentityError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Not authenticated"


class InvalidToken(IdentityError):
    code = "INVALID_TOKEN"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Token is invalid."


class TokenExpired(IdentityError):
    code = "TOKEN_EXPIRED"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Token has expired."


class UserNotFound(IdentityError):
    """The identity referenced by a token no longer exists (401, not 404)."""

    code = "USER_NOT_FOUND"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "User not found."


class InvalidSocialProfile(IdentityError):
    code = "INVALID_SOCIAL_PROFILE"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid social profile data."


# ── Single-use tokens (verification / reset links) ───────────────────────────
# Same codes as the bearer-token errors, but a bad link is a client error (400)
# rather than an authentication failure.

class InvalidLinkToken(InvalidToken):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid or unknown token."


class LinkTokenExpired(TokenExpired):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "This link has expired. Please request a new one."


class AlreadyUsed(IdentityError):
    code = "ALREADY_USED"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "This link has already been used."


# ── Registration / validation ─────────────────────────────────────────────────

class DuplicateEmail(IdentityError):
    code = "DUPLICATE_EMAIL"
    message = "A user with this email already exists."


class DuplicateUsername(IdentityError):
    code = "DUPLICATE_USERNAME"
    message = "This username is already taken."


class PasswordMismatch(IdentityError):
    code = "PASSWORD_MISMATCH"
    message = "Passwords do not match."


class WeakPassword(IdentityError):
    code = "WEAK_PASSWORD"
    message = (
        "Password must be at least 8 characters and contain upper-case, "
        "lower-case, digit and symbol characters."
    )


# ── Account state ─────────────────────────────────────────────────────────────

class Forbidden(IdentityError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    message = "You do not have permission to perform this action."


class AccountLocked(Forbidden):
    code = "ACCOUNT_LOCKED"
    message = "Your account has been locked. Please contact support."


class AccountInactive(Forbidden):
    code = "ACCOUNT_INACTIVE"
    message = "Your account is inactive. Please contact support."


class EmailNotVerified(Forbidden):
    code = "EMAIL_NOT_VERIFIED"
    message = "Please verify your email before continuing."
