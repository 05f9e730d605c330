"""
Client-side error taxonomy for the identity API.

Every failure the SessionManager surfaces is an AuthClientError carrying a
stable ``type`` name, the HTTP ``status`` (None for transport failures) and
the server's machine ``code`` when one was sent.
"""
from __future__ import annotations

from typing import Any

import httpx


class AuthClientError(Exception):
    type: str = "UnknownError"
    default_message: str = "An unexpected authentication error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.status = status
        self.code = code
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status!r}, code={self.code!r}, message={self.message!r})"


class Unauthorized(AuthClientError):
    type = "Unauthorized"
    default_message = "Not authenticated"


class InvalidCredentials(Unauthorized):
    type = "InvalidCredentials"
    default_message = "Invalid credentials"


class AccountLocked(AuthClientError):
    type = "AccountLocked"
    default_message = "Your account is not allowed to sign in"


class EmailNotVerified(AuthClientError):
    type = "EmailNotVerified"
    default_message = "Please verify your email before continuing"


class InvalidToken(AuthClientError):
    type = "InvalidToken"
    default_message = "Token is invalid"


class TokenExpired(AuthClientError):
    type = "TokenExpired"
    default_message = "Token has expired"


class SessionExpired(TokenExpired):
    """The session could not be refreshed and has been cleared."""

    default_message = "Your session has expired. Please sign in again."


class NetworkError(AuthClientError):
    type = "NetworkError"
    default_message = "Unable to connect to the server. Please check your internet connection."


class ServerError(AuthClientError):
    type = "ServerError"
    default_message = "The server encountered an error"


class UnknownError(AuthClientError):
    pass


# Server ``code`` → client error class
_BY_CODE: dict[str, type[AuthClientError]] = {
    "INVALID_CREDENTIALS": InvalidCredentials,
    "ACCOUNT_LOCKED": AccountLocked,
    "ACCOUNT_INACTIVE": AccountLocked,
    "EMAIL_NOT_VERIFIED": EmailNotVerified,
    "INVALID_TOKEN": InvalidToken,
    "TOKEN_EXPIRED": TokenExpired,
    "UNAUTHORIZED": Unauthorized,
    "USER_NOT_FOUND": Unauthorized,
}


def _extract_message(data: Any) -> str | None:
    if isinstance(data, str):
        return data or None
    if not isinstance(data, dict):
        return None
    for key in ("message", "error", "detail"):
        if isinstance(data.get(key), str):
            return data[key]
    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        return first.get("message") if isinstance(first, dict) else str(first)
    return None


def error_from_response(response: httpx.Response) -> AuthClientError:
    """Map an error response to the most specific AuthClientError."""
    try:
        data = response.json()
    except ValueError:
        data = response.text

    code = data.get("code") if isinstance(data, dict) else None
    message = _extract_message(data)
    status = response.status_code

    cls = _BY_CODE.get(code or "")
    if cls is None:
        if status == 401:
            cls = Unauthorized
        elif status == 403:
            cls = AccountLocked
        elif status >= 500:
            cls = ServerError
        else:
            cls = UnknownError
    return cls(message, status=status, code=code)


def error_from_transport(exc: httpx.HTTPError) -> NetworkError:
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError("Connection timed out. Please check your internet connection.")
    return NetworkError(str(exc) or None)
