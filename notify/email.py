"""
notify/email.py -- Email transport.

EmailSender is the collaborator interface the rest of the app depends on:
a single send(message) that either returns or raises EmailDeliveryError.

  SmtpEmailSender -- smtplib over STARTTLS (port 587) or implicit TLS (465).
  LogEmailSender  -- development fallback used when SMTP_HOST is empty. Logs
                     a redacted recipient and the subject instead of sending.

build_sender() picks one from Settings.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("authkit.notify.email")

_SMTP_TIMEOUT = 30


class EmailDeliveryError(Exception):
    """Raised when a message could not be handed to the mail server."""


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html_body: str
    text_body: str


class EmailSender(Protocol):
    def send(self, message: EmailMessage) -> None: ...


def redact_email(email: str) -> str:
    """Return a log-safe form of an address: first two chars of the local part."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpEmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str,
        from_name: str = "AuthKit",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name

    def _build(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        mime["Subject"] = message.subject
        mime["From"] = f"{self.from_name} <{self.from_email}>"
        mime["To"] = message.to
        mime.set_content(message.text_body)
        mime.add_alternative(message.html_body, subtype="html")
        return mime

    def send(self, message: EmailMessage) -> None:
        mime = self._build(message)
        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=_SMTP_TIMEOUT) as server:
                    server.starttls(context=context)
                    if self.username and self.password:
                        server.login(self.username, self.password)
                    server.send_message(mime)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=_SMTP_TIMEOUT) as server:
                    if self.username and self.password:
                        server.login(self.username, self.password)
                    server.send_message(mime)
        except (smtplib.SMTPException, OSError) as exc:
            # ssl.SSLError and TimeoutError are OSError subclasses.
            raise EmailDeliveryError(f"SMTP delivery via {self.host}:{self.port} failed: {exc}") from exc
        logger.info("Email sent to %s (%s)", redact_email(message.to), message.subject)


class LogEmailSender:
    """Dev-mode sender: records the message in the log instead of sending it."""

    def send(self, message: EmailMessage) -> None:
        logger.info(
            "SMTP not configured; email to %s not sent (subject=%r)",
            redact_email(message.to),
            message.subject,
        )


def build_sender(settings: Settings) -> EmailSender:
    """Return an SMTP sender when SMTP_HOST is set, otherwise the log sender."""
    from_email = settings.mail_from or settings.smtp_user
    if settings.smtp_host and from_email:
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=from_email,
            from_name=settings.mail_from_name,
        )
    logger.warning("SMTP_HOST or MAIL_FROM not set -- emails will be logged, not sent")
    return LogEmailSender()
