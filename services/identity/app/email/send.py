"""
Email delivery orchestrator.

The credential service never sends mail itself: it calls a Mailer, whose
send_* methods only enqueue work.  BackgroundMailer schedules the async
deliver_* functions below on FastAPI BackgroundTasks so they run after the
response is sent.

Outbound transport is not wired in this service; _deliver renders the
message and logs its envelope.
"""
from __future__ import annotations

import logging
from typing import Protocol

from fastapi import BackgroundTasks

from app.auth.models import User
from app.config import Settings

logger = logging.getLogger(__name__)


# ── Mailer interface ─────────────────────────────────────────────────────────


class Mailer(Protocol):
    def send_email_verification(self, user: User, token: str) -> None: ...

    def send_password_reset(self, user: User, token: str) -> None: ...


class BackgroundMailer:
    """Mailer that defers delivery to FastAPI BackgroundTasks."""

    def __init__(self, background_tasks: BackgroundTasks, settings: Settings) -> None:
        self._tasks = background_tasks
        self._settings = settings

    def send_email_verification(self, user: User, token: str) -> None:
        self._tasks.add_task(
            deliver_email_verification,
            user.email,
            user.full_name,
            build_link(self._settings, "verify-email", token),
            self._settings,
        )

    def send_password_reset(self, user: User, token: str) -> None:
        self._tasks.add_task(
            deliver_password_reset,
            user.email,
            user.full_name,
            build_link(self._settings, "reset-password", token),
            self._settings,
        )


def build_link(settings: Settings, path: str, token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/{path}?token={token}"


# ── Delivery core ────────────────────────────────────────────────────────────


async def _deliver(
    to_email: str,
    to_name: str,
    subject: str,
    html: str,
    settings: Settings,
) -> None:
    """Hand the rendered message to the transport (log only)."""
    logger.info(
        "Email queued for %s <%s>: %r (%d bytes, env=%s)",
        to_name, to_email, subject, len(html), settings.env_name,
    )


# ── Public deliver_* functions ───────────────────────────────────────────────


async def deliver_email_verification(
    to_email: str, full_name: str, verification_url: str, settings: Settings
) -> None:
    await _deliver(
        to_email, full_name,
        "Verify your email address",
        f"<p>Hi {full_name},</p>"
        "<p>Welcome! Please verify your email address by clicking the button below.</p>"
        f"<p style='text-align:center;margin:32px 0'>"
        f"<a href='{verification_url}' "
        f"style='background:#2563eb;color:#fff;padding:14px 28px;border-radius:6px;"
        f"text-decoration:none;font-weight:bold'>Verify Email Address</a></p>"
        "<p>Or copy and paste this link into your browser:</p>"
        f"<p style='word-break:break-all;color:#6b7280'>{verification_url}</p>"
        "<p>This link expires in <strong>24 hours</strong>. "
        "If you did not create an account, you can safely ignore this email.</p>",
        settings,
    )


async def deliver_password_reset(
    to_email: str, full_name: str, reset_url: str, settings: Settings
) -> None:
    await _deliver(
        to_email, full_name,
        "Reset your password",
        f"<p>Hi {full_name},</p>"
        "<p>We received a request to reset your password.</p>"
        f"<p style='text-align:center;margin:32px 0'>"
        f"<a href='{reset_url}' "
        f"style='background:#2563eb;color:#fff;padding:14px 28px;border-radius:6px;"
        f"text-decoration:none;font-weight:bold'>Reset My Password</a></p>"
        "<p>Or copy this link into your browser:</p>"
        f"<p style='word-break:break-all;color:#6b7280'>{reset_url}</p>"
        "<p>The reset link expires in <strong>1 hour</strong>.</p>"
        "<p style='color:#6b7280;font-size:13px;margin-top:32px'>"
        "If you did not request a password reset, you can safely ignore this email. "
        "Your password will not change.</p>",
        settings,
    )
