"""
notify/content.py -- Rendered email content.

Only one message exists today: the password reset email. Bodies are plain
markup with no layout or styling.
User-supplied values (the account name) are HTML-escaped before they reach
the HTML body.
"""

from __future__ import annotations

import html
from urllib.parse import urlencode

from notify.email import EmailMessage

_APP_NAME = "AuthKit"


def reset_url(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


def password_reset_email(to: str, name: str, url: str, expire_minutes: int) -> EmailMessage:
    """Build the password reset message for one recipient."""
    subject = "Reset your password"
    display_name = name or "there"

    html_body = (
        f"<p>Hello {html.escape(display_name)},</p>\n"
        "<p>We received a request to reset your password.</p>\n"
        f'<p><a href="{html.escape(url, quote=True)}">Reset password</a></p>\n'
        f"<p>This link expires in {expire_minutes} minutes. "
        "If you did not request a reset, you can ignore this email.</p>\n"
    )
    text_body = (
        f"Hello {display_name},\n\n"
        "We received a request to reset your password.\n\n"
        f"Open this link to choose a new one:\n{url}\n\n"
        f"This link expires in {expire_minutes} minutes. "
        "If you did not request a reset, you can ignore this email.\n\n"
        f"The {_APP_NAME} team\n"
    )
    return EmailMessage(to=to, subject=subject, html_body=html_body, text_body=text_body)
