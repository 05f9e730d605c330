import logging

import pytest
from fastapi import BackgroundTasks

from app.auth.models import User
from app.email.send import (
    BackgroundMailer,
    build_link,
    deliver_email_verification,
    deliver_password_reset,
)


def _user() -> User:
    return User(username="alice", email="alice@x.com", first_name="Alice", last_name="Liddell")


def test_build_link_strips_trailing_slash(settings) -> None:
    settings.app_base_url = "https://courses.example.com/"
    assert build_link(settings, "verify-email", "abc") == "https://courses.example.com/verify-email?token=abc"


def test_background_mailer_schedules_delivery(settings) -> None:
    tasks = BackgroundTasks()
    mailer = BackgroundMailer(tasks, settings)

    mailer.send_email_verification(_user(), "v-token")
    mailer.send_password_reset(_user(), "r-token")

    verify, reset = tasks.tasks
    assert verify.func is deliver_email_verification
    assert verify.args[:3] == ("alice@x.com", "Alice Liddell", f"{settings.app_base_url}/verify-email?token=v-token")
    assert reset.func is deliver_password_reset
    assert reset.args[2].endswith("/reset-password?token=r-token")


@pytest.mark.asyncio
async def test_delivery_logs_envelope_without_link(settings, caplog) -> None:
    url = build_link(settings, "reset-password", "secret-token")
    with caplog.at_level(logging.INFO, logger="app.email.send"):
        await deliver_password_reset("alice@x.com", "Alice Liddell", url, settings)

    assert "alice@x.com" in caplog.text
    assert "Reset your password" in caplog.text
    assert "secret-token" not in caplog.text
