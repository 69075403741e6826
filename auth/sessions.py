"""
auth/sessions.py -- Login, registration, refresh rotation and password reset.

SessionManager holds no per-user state between calls. Everything lives in the
AccountStore and is re-read on every call, so any number of request threads can
share one instance.

Flow summary:
  login                   email lookup (disabled included) -> gate -> password
  register                duplicate check -> create USER -> same as login
  refresh                 lookup -> consume (delete) -> expiry -> gate -> new pair
  request_password_reset  lookup -> store hashed token (+15 min) -> hand off email
  reset_password          lookup by hash -> expiry -> new hash, token cleared

Security:
  login runs bcrypt against DUMMY_HASH when the email is unknown so the
  response time does not reveal whether the account exists.
  Unknown email and wrong password raise the same InvalidCredentialsError.
  request_password_reset DOES reveal unknown emails (404). That asymmetry is
  kept on purpose; see DESIGN.md.
  A presented refresh token is deleted before any other check, so it is spent
  whether the refresh then succeeds or fails.

Layer rule: no imports from api/. notify/ is used only through the dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.gate import ensure_can_authenticate, password_matches
from auth.models import Account, RefreshToken, Role
from auth.tokens import DUMMY_HASH, create_access_token, generate_secure_token, hash_password, hash_token
from core.config import Settings, get_settings
from core.errors import (
    DuplicateEmailError,
    EmailNotFoundError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidTokenError,
)
from notify.content import password_reset_email, reset_url

if TYPE_CHECKING:
    from auth.store import AccountStore
    from notify.dispatcher import NotificationDispatcher

logger = logging.getLogger("authkit.auth.sessions")

RESET_REQUESTED_MESSAGE = "Password reset email sent successfully"


@dataclass(frozen=True)
class AuthResult:
    """Everything a successful login/register/refresh hands back to the client."""

    access_token: str
    refresh_token: str
    expires_in: int
    account: Account


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_past(iso_timestamp: str | None) -> bool:
    """True if the timestamp is missing or not in the future. Reads the clock every call."""
    if not iso_timestamp:
        return True
    return datetime.fromisoformat(iso_timestamp) <= _utcnow()


class SessionManager:
    def __init__(
        self,
        store: AccountStore,
        dispatcher: NotificationDispatcher,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Login / register
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        account = self.store.get_by_email(email, include_disabled=True)
        if account is None:
            # Equalize timing -- do NOT return before running bcrypt
            password_matches(password, DUMMY_HASH)
            logger.warning("Login failed: unknown email")
            raise InvalidCredentialsError()

        ensure_can_authenticate(account)

        if not password_matches(password, account.password_hash):
            logger.warning("Login failed: bad password for account %d", account.id)
            raise InvalidCredentialsError()

        logger.info("Account %d logged in", account.id)
        return self._issue(account)

    def register(self, name: str, last_name: str, email: str, password: str) -> AuthResult:
        if self.store.get_by_email(email) is not None:
            raise DuplicateEmailError(email)

        account = Account(
            name=name,
            last_name=last_name,
            email=email,
            password_hash=hash_password(password),
            role=Role.USER,
            is_enabled=True,
            is_banned=False,
        )
        try:
            account.id = self.store.create_account(account)
        except IntegrityError as exc:
            # A concurrent registration won the race for this email.
            raise DuplicateEmailError(email) from exc

        logger.info("Account %d registered", account.id)
        return self._issue(self.store.get_by_id(account.id) or account)

    # ------------------------------------------------------------------
    # Refresh rotation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> AuthResult:
        record = self.store.get_refresh_token(hash_token(refresh_token))
        if record is None:
            raise InvalidRefreshTokenError()

        # Consume first: the token is spent whatever happens next.
        if not self.store.delete_refresh_token(record.id):
            logger.warning("Refresh token %d consumed concurrently", record.id)
            raise InvalidRefreshTokenError()

        if _is_past(record.expires_at):
            raise InvalidRefreshTokenError("Refresh token has expired. Please login again.")

        account = self.store.get_by_id_any_status(record.account_id)
        if account is None:
            raise InvalidRefreshTokenError()
        ensure_can_authenticate(account)

        return self._issue(account)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str:
        account = self.store.get_by_email(email)
        if account is None:
            raise EmailNotFoundError(email)

        token = generate_secure_token()
        ttl = self.settings.password_reset_expire_minutes
        expires_at = (_utcnow() + timedelta(minutes=ttl)).isoformat()
        self.store.set_reset_token(account.id, hash_token(token), expires_at)

        message = password_reset_email(
            to=account.email,
            name=account.name,
            url=reset_url(self.settings.frontend_url, token),
            expire_minutes=ttl,
        )
        self.dispatcher.dispatch(message)
        logger.info("Password reset requested for account %d", account.id)
        return RESET_REQUESTED_MESSAGE

    def reset_password(self, reset_token: str, new_password: str) -> None:
        account = self.store.get_by_reset_token(hash_token(reset_token))
        if account is None:
            raise InvalidTokenError("Invalid or expired password reset token.")
        if _is_past(account.reset_token_expires_at):
            raise InvalidTokenError("Password reset token has expired. Please request a new one.")

        self.store.complete_password_reset(account.id, hash_password(new_password))
        revoked = self.store.delete_refresh_tokens_for(account.id)
        logger.info("Password reset for account %d (%d refresh token(s) revoked)", account.id, revoked)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, account: Account) -> AuthResult:
        expires_in = self.settings.access_token_expire_seconds
        access_token = create_access_token(account.id, account.email, account.role, expires_in=expires_in)

        raw_refresh = generate_secure_token()
        expires_at = (_utcnow() + timedelta(days=self.settings.refresh_token_expire_days)).isoformat()
        self.store.save_refresh_token(
            RefreshToken(account_id=account.id, token_hash=hash_token(raw_refresh), expires_at=expires_at)
        )
        return AuthResult(
            access_token=access_token,
            refresh_token=raw_refresh,
            expires_in=expires_in,
            account=account,
        )
