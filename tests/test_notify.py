"""
tests/test_notify.py -- Unit tests for notify/ (content, email transport, dispatcher).

No test talks to a real SMTP server: smtplib.SMTP / SMTP_SSL are replaced with
MagicMock, and dispatcher tests use in-process fake senders.
"""

from __future__ import annotations

import smtplib
import threading
from unittest.mock import MagicMock, patch

import pytest

from core.config import Settings
from notify.content import password_reset_email, reset_url
from notify.dispatcher import NotificationDispatcher
from notify.email import (
    EmailDeliveryError,
    EmailMessage,
    LogEmailSender,
    SmtpEmailSender,
    build_sender,
    redact_email,
)

_MESSAGE = EmailMessage(to="ada@example.com", subject="Hi", html_body="<p>Hi</p>", text_body="Hi")


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class TestContent:
    def test_reset_url_joins_cleanly(self):
        assert reset_url("https://app.example.com/", "abc") == "https://app.example.com/reset-password?token=abc"
        assert reset_url("https://app.example.com", "abc") == "https://app.example.com/reset-password?token=abc"

    def test_reset_email_carries_link_and_expiry(self):
        url = "https://app.example.com/reset-password?token=abc"
        message = password_reset_email("ada@example.com", "Ada", url, 15)
        assert message.to == "ada@example.com"
        assert message.subject == "Reset your password"
        assert url in message.text_body
        assert "15 minutes" in message.text_body
        assert "15 minutes" in message.html_body
        assert 'href="https://app.example.com/reset-password?token=abc"' in message.html_body

    def test_name_is_html_escaped(self):
        message = password_reset_email("x@example.com", "<script>alert(1)</script>", "https://a/b", 15)
        assert "<script>" not in message.html_body
        assert "&lt;script&gt;" in message.html_body


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def test_redact_email():
    assert redact_email("ada.lovelace@example.com") == "ad***@example.com"
    assert redact_email("not-an-email") == "redacted"


class TestSmtpSender:
    def _sender(self, **overrides) -> SmtpEmailSender:
        params = dict(host="smtp.example.com", port=587, username="u", password="p", from_email="no-reply@example.com")
        params.update(overrides)
        return SmtpEmailSender(**params)

    def test_starttls_login_and_send(self):
        with patch("notify.email.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            self._sender().send(_MESSAGE)
        smtp_cls.assert_called_once()
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "ada@example.com"
        assert sent["From"] == "AuthKit <no-reply@example.com>"
        assert sent["Subject"] == "Hi"

    def test_implicit_tls_uses_smtp_ssl(self):
        with patch("notify.email.smtplib.SMTP_SSL") as ssl_cls:
            server = ssl_cls.return_value.__enter__.return_value
            self._sender(port=465, use_tls=False).send(_MESSAGE)
        server.send_message.assert_called_once()

    def test_no_login_without_credentials(self):
        with patch("notify.email.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            self._sender(username="", password="").send(_MESSAGE)
        server.login.assert_not_called()

    @pytest.mark.parametrize("error", [smtplib.SMTPAuthenticationError(535, b"bad"), ConnectionRefusedError()])
    def test_failures_become_delivery_errors(self, error):
        with patch("notify.email.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.side_effect = error
            with pytest.raises(EmailDeliveryError):
                self._sender().send(_MESSAGE)


class TestBuildSender:
    def test_log_sender_without_smtp_host(self):
        assert isinstance(build_sender(Settings(debug=True, smtp_host="")), LogEmailSender)

    def test_smtp_sender_when_configured(self):
        sender = build_sender(Settings(debug=True, smtp_host="smtp.example.com", mail_from="no-reply@example.com"))
        assert isinstance(sender, SmtpEmailSender)
        assert sender.host == "smtp.example.com"
        assert sender.from_email == "no-reply@example.com"

    def test_log_sender_does_not_raise(self):
        LogEmailSender().send(_MESSAGE)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class _FlakySender:
    """Fails the first `failures` sends with EmailDeliveryError."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0
        self.lock = threading.Lock()

    def send(self, message: EmailMessage) -> None:
        with self.lock:
            self.calls += 1
            if self.calls <= self.failures:
                raise EmailDeliveryError("temporary failure")


class TestDispatcher:
    def test_delivers_in_background(self):
        sender = _FlakySender(failures=0)
        dispatcher = NotificationDispatcher(sender, retry_delay=0)
        try:
            assert dispatcher.dispatch(_MESSAGE).result(timeout=5) is True
        finally:
            dispatcher.shutdown()
        assert sender.calls == 1

    def test_retries_until_success(self):
        sender = _FlakySender(failures=2)
        dispatcher = NotificationDispatcher(sender, max_attempts=3, retry_delay=0)
        try:
            assert dispatcher.dispatch(_MESSAGE).result(timeout=5) is True
        finally:
            dispatcher.shutdown()
        assert sender.calls == 3

    def test_backoff_grows_linearly(self, monkeypatch):
        delays = []
        monkeypatch.setattr("notify.dispatcher.time.sleep", delays.append)
        sender = _FlakySender(failures=2)
        dispatcher = NotificationDispatcher(sender, max_attempts=3, retry_delay=0.5)
        try:
            assert dispatcher.dispatch(_MESSAGE).result(timeout=5) is True
        finally:
            dispatcher.shutdown()
        assert delays == [0.5, 1.0]


    def test_gives_up_after_max_attempts(self, caplog):
        sender = _FlakySender(failures=10)
        dispatcher = NotificationDispatcher(sender, max_attempts=2, retry_delay=0)
        try:
            with caplog.at_level("ERROR", logger="authkit.notify.dispatcher"):
                assert dispatcher.dispatch(_MESSAGE).result(timeout=5) is False
        finally:
            dispatcher.shutdown()
        assert sender.calls == 2
        assert "Giving up" in caplog.text
        assert "ada@example.com" not in caplog.text

    def test_unexpected_error_stays_in_future(self):
        sender = MagicMock()
        sender.send.side_effect = RuntimeError("boom")
        dispatcher = NotificationDispatcher(sender, retry_delay=0)
        try:
            future = dispatcher.dispatch(_MESSAGE)
            with pytest.raises(RuntimeError):
                future.result(timeout=5)
        finally:
            dispatcher.shutdown()
        sender.send.assert_called_once()

    def test_shutdown_is_idempotent(self):
        dispatcher = NotificationDispatcher(_FlakySender(failures=0))
        dispatcher.shutdown()
        dispatcher.shutdown(wait=False)
