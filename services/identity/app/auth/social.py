"""
Identity service — social provider profile lookup (Google, Facebook, GitHub).

The frontend completes the provider's OAuth flow itself and posts the
resulting access token (optionally with the profile it already fetched).
When no profile is supplied, this module fetches it from the provider's
user-info endpoint with httpx and normalizes it into a SocialProfile.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.auth.constants import SocialProvider
from app.exceptions import InvalidSocialProfile

logger = logging.getLogger(__name__)


# ── Normalized profile shared by all providers ───────────────────────────────

@dataclass(frozen=True, slots=True)
class SocialProfile:
    subject_id: str         # Unique ID from the provider (sub / id)
    email: str | None
    first_name: str
    last_name: str
    raw: dict[str, Any] = field(default_factory=dict)


def _split_name(name: str | None) -> tuple[str, str]:
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def parse_profile(raw: dict[str, Any]) -> SocialProfile:
    """
    Normalize a provider (or client-supplied) profile payload.

    Accepts the field spellings of every supported provider:
    ``id``/``sub`` for the subject, ``firstName``/``given_name``/``first_name``
    and their last-name counterparts, falling back to splitting ``name``.
    """
    subject = raw.get("id") or raw.get("sub")
    if subject is None or str(subject).strip() == "":
        raise InvalidSocialProfile()

    name_first, name_last = _split_name(raw.get("name"))
    first_name = (
        raw.get("firstName") or raw.get("given_name") or raw.get("first_name")
        or name_first or "User"
    )
    last_name = (
        raw.get("lastName") or raw.get("family_name") or raw.get("last_name")
        or name_last
    )
    email = raw.get("email") or None
    return SocialProfile(
        subject_id=str(subject),
        email=email.strip().lower() if isinstance(email, str) else None,
        first_name=str(first_name)[:100],
        last_name=str(last_name)[:100],
        raw=dict(raw),
    )


# ── Provider user-info endpoints ─────────────────────────────────────────────

_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
_FACEBOOK_ME_URL = "https://graph.facebook.com/me"
_GITHUB_USER_URL = "https://api.github.com/user"
_GITHUB_EMAILS_URL = "https://api.github.com/user/emails"


async def _get_json(
    client: httpx.AsyncClient, url: str, token: str, **kwargs: Any
) -> Any:
    try:
        resp = await client.get(
            url, headers={"Authorization": f"Bearer {token}"}, **kwargs
        )
    except httpx.HTTPError as exc:
        logger.warning("Provider lookup %s failed: %s", url, exc)
        raise InvalidSocialProfile()
    if resp.status_code != 200:
        logger.info("Provider lookup %s returned %s", url, resp.status_code)
        raise InvalidSocialProfile()
    return resp.json()


async def _github_primary_email(client: httpx.AsyncClient, token: str) -> str | None:
    # Private GitHub addresses are only listed under /user/emails
    emails = await _get_json(client, _GITHUB_EMAILS_URL, token)
    for entry in emails or []:
        if entry.get("primary") and entry.get("verified"):
            return entry.get("email")
    return None


async def fetch_profile(
    provider: SocialProvider,
    access_token: str,
    *,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SocialProfile:
    """
    Fetch and normalize the profile behind ``access_token``.

    Raises InvalidSocialProfile on any failure (rejected token, network
    error, missing subject) so the caller doesn't need provider-specific
    error handling.  ``transport`` is injectable for tests.
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        if provider is SocialProvider.GOOGLE:
            raw = await _get_json(client, _GOOGLE_USERINFO_URL, access_token)
        elif provider is SocialProvider.FACEBOOK:
            raw = await _get_json(
                client,
                _FACEBOOK_ME_URL,
                access_token,
                params={"fields": "id,email,first_name,last_name,name"},
            )
        else:
            raw = await _get_json(client, _GITHUB_USER_URL, access_token)
            if isinstance(raw, dict) and not raw.get("email"):
                raw["email"] = await _github_primary_email(client, access_token)

    if not isinstance(raw, dict):
        raise InvalidSocialProfile()
    return parse_profile(raw)
