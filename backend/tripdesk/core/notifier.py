# backend/tripdesk/core/notifier.py

## Email notifications for requesters and approvers.
# Mail goes out through aiosmtplib when SMTP is configured; otherwise the
# console sender logs the message so local runs and tests never hit a server.
from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Any, Protocol

import aiosmtplib

from tripdesk.core.config import SMTPSettings, settings

logger = logging.getLogger(__name__)

__all__ = [
    "send_email",
    "notify_user",
    "get_email_sender",
    "set_email_sender",
    "SMTPEmailSender",
    "ConsoleEmailSender",
]


class EmailSender(Protocol):
    """Protocol describing an async email transport."""

    async def send(self, to_email: str, subject: str, body: str) -> None:  # pragma: no cover - protocol
        """Deliver ``body`` to ``to_email``."""


class ConsoleEmailSender:
    """Fallback sender that logs emails for debugging."""

    async def send(self, to_email: str, subject: str, body: str) -> None:
        logger.info("Email to %s [%s]: %s", to_email, subject, body)


class SMTPEmailSender:
    def __init__(self, smtp: SMTPSettings) -> None:
        self._smtp = smtp

    async def send(self, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self._smtp.from_address
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)

        await aiosmtplib.send(
            msg,
            hostname=self._smtp.host,
            port=self._smtp.port,
            username=self._smtp.username,
            password=self._smtp.password,
            start_tls=True,
        )


_email_sender: EmailSender | None = None


def set_email_sender(sender: EmailSender | None) -> None:
    """Override the global sender used by :func:`send_email`."""

    global _email_sender
    _email_sender = sender


def get_email_sender() -> EmailSender:
    global _email_sender
    if _email_sender is None:
        if settings.smtp.is_configured:
            _email_sender = SMTPEmailSender(settings.smtp)
        else:
            logger.warning("SMTP is not configured; falling back to console email sender.")
            _email_sender = ConsoleEmailSender()
    return _email_sender


async def send_email(to_email: str, subject: str, body: str) -> None:
    await get_email_sender().send(to_email, subject, body)


async def notify_user(user: Any, subject: str, body: str) -> bool:
    """Email ``user`` if it has an address. Delivery failures are logged, not raised."""

    if isinstance(user, dict):
        email = user.get("email")
    else:
        email = getattr(user, "email", None)
    if not email:
        return False

    try:
        await send_email(email, subject, body)
    except Exception:
        logger.exception("Failed to deliver notification to %s", email)
        return False
    return True
