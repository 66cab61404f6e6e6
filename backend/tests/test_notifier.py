from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from tripdesk.core import notifier


@pytest.fixture(autouse=True)
def _reset_sender():
    notifier.set_email_sender(None)
    yield
    notifier.set_email_sender(None)


def test_send_email_uses_aiosmtplib(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    async def fake_send(*args: Any, **kwargs: Any) -> None:
        captured["args"] = args
        captured["kwargs"] = kwargs

    monkeypatch.setattr(notifier.aiosmtplib, "send", fake_send)
    monkeypatch.setattr(notifier.settings.smtp, "host", "smtp.example.com")
    monkeypatch.setattr(notifier.settings.smtp, "port", 2525)
    monkeypatch.setattr(notifier.settings.smtp, "username", "smtp-user")
    monkeypatch.setattr(notifier.settings.smtp, "password", "smtp-pass")
    monkeypatch.setattr(notifier.settings.smtp, "from_address", "trips@example.com")

    asyncio.run(notifier.send_email("user@example.com", "Trip approved", "Hello!"))

    msg = captured["args"][0]
    assert msg["To"] == "user@example.com"
    assert msg["From"] == "trips@example.com"
    assert msg["Subject"] == "Trip approved"
    assert msg.get_content().strip() == "Hello!"

    kwargs = captured["kwargs"]
    assert kwargs["hostname"] == "smtp.example.com"
    assert kwargs["port"] == 2525
    assert kwargs["username"] == "smtp-user"
    assert kwargs["password"] == "smtp-pass"
    assert kwargs["start_tls"] is True


def test_unconfigured_smtp_falls_back_to_console(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifier.settings.smtp, "host", None)

    assert isinstance(notifier.get_email_sender(), notifier.ConsoleEmailSender)


def test_notify_user_reads_email_from_records(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, str, str]] = []

    async def fake_send_email(to_email: str, subject: str, body: str) -> None:
        calls.append((to_email, subject, body))

    monkeypatch.setattr(notifier, "send_email", fake_send_email)

    assert asyncio.run(notifier.notify_user({"email": "a@example.com"}, "Greetings", "Body"))
    assert asyncio.run(notifier.notify_user(SimpleNamespace(email="b@example.com"), "Hi", "Text"))
    assert not asyncio.run(notifier.notify_user({"email": None}, "Skip", "Nobody"))

    assert calls == [("a@example.com", "Greetings", "Body"), ("b@example.com", "Hi", "Text")]


def test_notify_user_swallows_delivery_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    class BrokenSender:
        async def send(self, to_email: str, subject: str, body: str) -> None:
            raise ConnectionError("smtp down")

    notifier.set_email_sender(BrokenSender())

    assert asyncio.run(notifier.notify_user({"email": "a@example.com"}, "Subject", "Body")) is False
