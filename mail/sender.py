"""
mail/sender.py -- Outbound email collaborator.

EmailSender is the port the engine depends on: send(to_address, subject, body).
A failed delivery raises core.errors.EmailDeliveryError; a normal return means
the message was handed to the transport.

Implementations:
  SMTPEmailSender   -- stdlib smtplib, STARTTLS on 587 or implicit TLS on 465.
  MemoryEmailSender -- keeps messages in a list. Dev mode and tests.

Neither implementation retries. Retrying a failed code email is the caller's
decision (the engine surfaces the failure and commits nothing).
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings
from core.errors import EmailDeliveryError


def mask_email(address: str) -> str:
    """Return a log-safe form of an address: a***@e***."""
    if "@" not in address:
        return (address[:1] + "***") if address else ""
    user, domain = address.split("@", 1)
    return f"{user[:1]}***@{domain[:1]}***"


class EmailSender(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None: ...


@dataclass(frozen=True)
class SentEmail:
    to_address: str
    subject: str
    body: str


class MemoryEmailSender:
    """Collects messages instead of sending them.

    Set fail=True to simulate an unreachable mail server.
    """

    def __init__(self, fail: bool = False) -> None:
        self.outbox: list[SentEmail] = []
        self.fail = fail

    def send(self, to_address: str, subject: str, body: str) -> None:
        if self.fail:
            raise EmailDeliveryError()
        self.outbox.append(SentEmail(to_address=to_address, subject=subject, body=body))


class SMTPEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        mail_from: str,
        logger: logging.Logger,
        username: str = "",
        password: str = "",
        use_ssl: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.mail_from = mail_from
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout
        self._log = logger

    def send(self, to_address: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.mail_from
        msg["To"] = to_address
        msg["Subject"] = subject
        msg.set_content(body)

        ctx = ssl.create_default_context()
        try:
            if self.use_ssl:
                with smtplib.SMTP_SSL(self.host, self.port, context=ctx, timeout=self.timeout) as s:
                    self._deliver(s, msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
                    s.ehlo()
                    if s.has_extn("starttls"):
                        s.starttls(context=ctx)
                        s.ehlo()
                    self._deliver(s, msg)
        except (smtplib.SMTPException, OSError) as exc:
            self._log.error("SMTP delivery to %s via %s:%d failed: %r", mask_email(to_address), self.host, self.port, exc)
            raise EmailDeliveryError() from exc
        self._log.info("Sent mail to %s via %s:%d", mask_email(to_address), self.host, self.port)

    def _deliver(self, s: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.username and self.password:
            s.login(self.username, self.password)
        s.send_message(msg)


def build_sender(settings: Settings, logger: logging.Logger) -> EmailSender:
    """Return the sender selected by EMAIL_BACKEND."""
    if settings.email_backend == "memory":
        return MemoryEmailSender()
    return SMTPEmailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        mail_from=settings.mail_from,
        logger=logger,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_ssl=settings.smtp_use_ssl,
        timeout=settings.smtp_timeout_seconds,
    )
