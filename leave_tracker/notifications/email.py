"""Outbound email transports.

``SmtpEmailSender`` talks to a real relay; ``LoggingEmailSender`` only logs
and is used whenever SMTP is not configured (local development, CI).
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from leave_tracker.config import Settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Blocking transport. Raises on delivery failure."""

    def send(self, to_addr: str, subject: str, body: str) -> None: ...


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        from_addr: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.from_addr = from_addr
        self.username = username
        self.password = password
        self.timeout = timeout

    def send(self, to_addr: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.from_addr
        msg["To"] = to_addr
        msg["Subject"] = subject
        msg.set_content(body)

        logger.debug("Sending email to %s with subject %s", to_addr, subject)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
            s.starttls()
            if self.username:
                s.login(self.username, self.password or "")
            s.send_message(msg)


class LoggingEmailSender:
    """Records messages instead of sending them."""

    def __init__(self) -> None:
        self.outbox: list[tuple[str, str, str]] = []

    def send(self, to_addr: str, subject: str, body: str) -> None:
        self.outbox.append((to_addr, subject, body))
        logger.info("Email (not sent, SMTP disabled) to %s: %s", to_addr, subject)


def build_sender(settings: Settings) -> EmailSender:
    if not settings.SMTP_HOST:
        return LoggingEmailSender()
    return SmtpEmailSender(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        from_addr=settings.EMAIL_FROM,
        username=settings.SMTP_USERNAME or None,
        password=settings.SMTP_PASSWORD or None,
    )
