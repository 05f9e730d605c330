"""
Client-side session manager for the identity API.

SessionManager owns the token pair of one signed-in client: it attaches the
access token to every request, refreshes it reactively (on 401) and
proactively (at 75% of its lifetime), and clears everything on logout or
when a refresh fails.

At most one refresh is in flight at a time.  Concurrent callers that need a
new token all await the same task; a caller whose token was already rotated
by someone else just replays with the current one.  Every clear (logout,
failed refresh, new login) bumps a generation counter so that a refresh
finishing afterwards is discarded instead of resurrecting the session.

Usage::

    async with SessionManager("https://api.example.com/api/v1", store=FileTokenStore(path)) as sm:
        sm.subscribe(on_session_event)
        await sm.login("alice@example.com", "Abc12345!")
        resp = await sm.request("GET", "/courses")
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from shared.client.errors import (
    AuthClientError,
    ServerError,
    SessionExpired,
    error_from_response,
    error_from_transport,
)
from shared.client.storage import MemoryTokenStore, StoredTokens, TokenStore

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0  # seconds
DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


# ── Endpoints (relative to the API base URL) ─────────────────────────────────

class AuthEndpoints:
    LOGIN = "/auth/login"
    REGISTER = "/auth/register"
    LOGOUT = "/auth/logout"
    REFRESH_TOKEN = "/auth/refresh-token"
    VERIFY_EMAIL = "/auth/verify-email"
    RESEND_VERIFICATION = "/auth/resend-verification"
    FORGOT_PASSWORD = "/auth/forgot-password"
    RESET_PASSWORD = "/auth/reset-password"
    CHANGE_PASSWORD = "/auth/change-password"
    ME = "/auth/me"

    @staticmethod
    def social(provider: str) -> str:
        return f"/auth/social/{provider}"


class SessionState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class SessionEvent(str, enum.Enum):
    REFRESHED = "refreshed"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


SessionListener = Callable[[SessionEvent], None]

# 401 codes that mean "this bearer token is no good"; any other 401 (e.g. a
# wrong current password) is an answer to the request itself
REFRESHABLE_CODES = frozenset(
    {"TOKEN_EXPIRED", "INVALID_TOKEN", "UNAUTHORIZED", "USER_NOT_FOUND"}
)


def _needs_refresh(response: httpx.Response) -> bool:
    if response.status_code != 401:
        return False
    try:
        data = response.json()
    except ValueError:
        return True
    code = data.get("code") if isinstance(data, dict) else None
    return code is None or code in REFRESHABLE_CODES


def _read_pair(response: httpx.Response) -> dict:
    """Validate a token-pair body; a malformed one counts as a server failure."""
    try:
        pair = response.json()
        if not pair["accessToken"]:
            raise ValueError("empty access token")
        int(pair["expiresIn"])
    except (ValueError, KeyError, TypeError) as exc:
        raise ServerError(
            "The server returned an invalid token response", status=response.status_code
        ) from exc
    return pair


class SessionManager:
    def __init__(
        self,
        base_url: str = "",
        *,
        store: TokenStore | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
        refresh_ratio: float = 0.75,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=DEFAULT_HEADERS, timeout=timeout
        )
        self._store = store if store is not None else MemoryTokenStore()
        self._clock = clock
        self._refresh_ratio = refresh_ratio

        self._tokens: StoredTokens | None = None
        self._generation = 0
        self._refresh_task: asyncio.Task[str] | None = None
        self._timer: asyncio.Task[None] | None = None
        self._listeners: list[SessionListener] = []

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def __aenter__(self) -> SessionManager:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def start(self) -> None:
        """
        Restore a persisted session.

        A pair still within its lifetime gets a proactive timer for the time
        remaining; an expired one gets a single immediate refresh and is
        cleared if that fails or no refresh token is stored.
        """
        tokens = self._store.load()
        if tokens is None:
            return
        self._tokens = tokens

        remaining = (tokens.token_expiry - self._now_ms()) / 1000
        if remaining > 0:
            self._schedule_refresh(remaining * self._refresh_ratio)
            return

        if not tokens.refresh_token:
            self._clear()
            return
        try:
            await self.refresh()
        except AuthClientError as exc:
            logger.warning("Stored session could not be refreshed: %s", exc.message)

    async def aclose(self) -> None:
        """Stop background work and release the HTTP client.  Stored tokens are kept."""
        self._cancel_timer()
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._refresh_task = None
        if self._owns_client:
            await self._client.aclose()

    # ── Observer API ──────────────────────────────────────────────────────────

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %s", event.value)

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        if self._refresh_task is not None and not self._refresh_task.done():
            return SessionState.REFRESHING
        if self.is_authenticated:
            return SessionState.AUTHENTICATED
        return SessionState.ANONYMOUS

    @property
    def is_authenticated(self) -> bool:
        return self._tokens is not None and bool(self._tokens.access_token)

    @property
    def access_token(self) -> str | None:
        return self._tokens.access_token if self._tokens else None

    @property
    def tokens(self) -> StoredTokens | None:
        return self._tokens

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _store_pair(self, pair: dict) -> None:
        expires_in = int(pair["expiresIn"])
        tokens = StoredTokens(
            access_token=pair["accessToken"],
            refresh_token=pair.get("refreshToken"),
            token_expiry=self._now_ms() + expires_in * 1000,
        )
        self._store.save(tokens)
        self._tokens = tokens
        self._schedule_refresh(expires_in * self._refresh_ratio)

    def _start_session(self, pair: dict) -> None:
        # A new sign-in supersedes any refresh still running for the old pair
        self._generation += 1
        self._store_pair(pair)

    def _clear(self) -> None:
        self._generation += 1
        self._cancel_timer()
        self._tokens = None
        self._store.clear()

    def _expire(self) -> None:
        self._clear()
        self._emit(SessionEvent.EXPIRED)

    # ── Proactive refresh timer ──────────────────────────────────────────────

    def _schedule_refresh(self, delay: float) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(
            self._run_timer(max(delay, 0.0), self._generation)
        )

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        # The timer reschedules itself through refresh(); never cancel the running task
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _run_timer(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if self._timer is asyncio.current_task():
            # Past the sleep: rescheduling from here on must not cancel this task
            self._timer = None
        if generation != self._generation or self._tokens is None:
            return
        try:
            await self.refresh()
        except AuthClientError as exc:
            logger.warning("Proactive token refresh failed: %s", exc.message)

    # ── Refresh ───────────────────────────────────────────────────────────────

    async def refresh(self) -> str:
        """
        Rotate the token pair and return the new access token.

        Coalesced: while a refresh is in flight every caller awaits that same
        task.  On failure the session is cleared, EXPIRED is emitted once and
        SessionExpired is raised to every waiting caller.
        """
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(
                self._do_refresh(self._generation)
            )
            self._refresh_task = task
        # shield: one caller being cancelled must not cancel the shared refresh
        return await asyncio.shield(task)

    async def _do_refresh(self, generation: int) -> str:
        tokens = self._tokens
        if tokens is None or not tokens.refresh_token:
            self._expire()
            raise SessionExpired("No refresh token available")

        error: AuthClientError | None = None
        try:
            response = await self._client.post(
                AuthEndpoints.REFRESH_TOKEN,
                json={"refreshToken": tokens.refresh_token},
            )
        except httpx.HTTPError as exc:
            error = error_from_transport(exc)
        else:
            if response.is_error:
                error = error_from_response(response)

        if generation != self._generation:
            # Logged out (or signed in again) while the call was in flight
            raise SessionExpired("Session was cleared during refresh")

        pair: dict | None = None
        if error is None:
            try:
                pair = _read_pair(response)
            except ServerError as exc:
                error = exc

        if error is not None:
            logger.warning("Token refresh failed (%s): %s", error.type, error.message)
            self._expire()
            raise SessionExpired(error.message, status=error.status, code=error.code) from error

        self._store_pair(pair)
        self._emit(SessionEvent.REFRESHED)
        return self._tokens.access_token

    # ── Requests ──────────────────────────────────────────────────────────────

    async def _send(
        self, method: str, url: str, token: str | None, **kwargs: Any
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise error_from_transport(exc) from exc

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send an authenticated request; on a token 401 refresh once and replay it once.

        Non-auth error responses are returned unmodified.  Raises
        SessionExpired if the token could not be refreshed; the old token is
        never sent again after that.
        """
        token = self.access_token
        response = await self._send(method, url, token, **kwargs)
        if token is None or not _needs_refresh(response):
            return response

        current = self._tokens
        if current is None:
            # Cleared by a concurrent failed refresh or logout
            raise SessionExpired()
        if current.access_token != token:
            # Someone else already rotated the pair
            new_token = current.access_token
        else:
            try:
                new_token = await self.refresh()
            except SessionExpired:
                # A sign-in during the refresh installs its own pair; only a
                # cleared session is fatal
                current = self._tokens
                if current is None or current.access_token == token:
                    raise
                new_token = current.access_token
        return await self._send(method, url, new_token, **kwargs)

    async def _call(
        self, method: str, url: str, *, authenticated: bool = False, **kwargs: Any
    ) -> dict:
        if authenticated:
            response = await self.request(method, url, **kwargs)
        else:
            response = await self._send(method, url, None, **kwargs)
        if response.is_error:
            raise error_from_response(response)
        return response.json()

    # ── Sign-in ───────────────────────────────────────────────────────────────

    async def login(self, email: str, password: str) -> dict:
        data = await self._call(
            "POST", AuthEndpoints.LOGIN, json={"email": email, "password": password}
        )
        self._start_session(data["tokens"])
        return data

    async def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> dict:
        data = await self._call(
            "POST",
            AuthEndpoints.REGISTER,
            json={
                "username": username,
                "email": email,
                "password": password,
                "firstName": first_name,
                "lastName": last_name,
            },
        )
        self._start_session(data["tokens"])
        return data

    async def social_auth(
        self, provider: str, token: str, profile: dict | None = None
    ) -> dict:
        body: dict[str, Any] = {"token": token}
        if profile is not None:
            body["profile"] = profile
        data = await self._call("POST", AuthEndpoints.social(provider), json=body)
        self._start_session(data["tokens"])
        return data

    async def logout(self) -> None:
        """Best-effort server logout, then unconditional local teardown."""
        token = self.access_token
        try:
            if token is not None:
                response = await self._send("POST", AuthEndpoints.LOGOUT, token)
                if response.is_error:
                    logger.warning("Logout call returned %s", response.status_code)
        except AuthClientError as exc:
            logger.warning("Logout call failed: %s", exc.message)
        finally:
            self._clear()
            self._emit(SessionEvent.LOGGED_OUT)

    # ── Account endpoints ─────────────────────────────────────────────────────

    async def verify_email(self, token: str) -> dict:
        return await self._call("POST", AuthEndpoints.VERIFY_EMAIL, json={"token": token})

    async def resend_verification(self, email: str) -> dict:
        return await self._call(
            "POST", AuthEndpoints.RESEND_VERIFICATION, json={"email": email}
        )

    async def forgot_password(self, email: str) -> dict:
        return await self._call("POST", AuthEndpoints.FORGOT_PASSWORD, json={"email": email})

    async def reset_password(self, token: str, password: str, confirm_password: str) -> dict:
        return await self._call(
            "POST",
            AuthEndpoints.RESET_PASSWORD,
            json={"token": token, "password": password, "confirmPassword": confirm_password},
        )

    async def change_password(
        self, current_password: str, new_password: str, confirm_password: str
    ) -> dict:
        return await self._call(
            "POST",
            AuthEndpoints.CHANGE_PASSWORD,
            authenticated=True,
            json={
                "currentPassword": current_password,
                "newPassword": new_password,
                "confirmPassword": confirm_password,
            },
        )

    async def me(self) -> dict:
        return await self._call("GET", AuthEndpoints.ME, authenticated=True)
