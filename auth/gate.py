"""
auth/gate.py -- Account state checks shared by login, refresh and every request.

Two entry points use the same fixed check order (disabled, then banned):

  ensure_can_authenticate() -- session flows (login, refresh). Raises typed
      errors that the API boundary maps to 403.

  authenticate_bearer() -- the per-request gate. Returns a GateResult instead
      of raising because the HTTP middleware renders the rejection itself
      (middleware exceptions do not reach FastAPI's exception handlers).

The per-request re-check against the live account is what makes ban and
disable take effect immediately: a cryptographically valid access token for a
disabled account is rejected on its next use, with no revocation list.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from auth.models import Account, Principal
from auth.tokens import decode_access_token, verify_password
from core.errors import AccountBannedError, AccountDisabledError

if TYPE_CHECKING:
    from auth.store import AccountStore

logger = logging.getLogger("authkit.auth.gate")

_BEARER_PREFIX = "Bearer "

INVALID_TOKEN_MESSAGE = "The provided token is not valid."
DISABLED_ACCOUNT_MESSAGE = "The user associated with the token does not exist."
BANNED_ACCOUNT_MESSAGE = "The user is temporarily disabled."


class AccountStatus(str, Enum):
    ALLOWED = "allowed"
    DISABLED = "disabled"
    BANNED = "banned"


def check_account(account: Account) -> AccountStatus:
    """Classify an account. Disabled wins over banned when both are set."""
    if not account.is_enabled:
        return AccountStatus.DISABLED
    if account.is_banned:
        return AccountStatus.BANNED
    return AccountStatus.ALLOWED


def ensure_can_authenticate(account: Account) -> None:
    """Raise AccountDisabledError / AccountBannedError unless the account is allowed."""
    status = check_account(account)
    if status is AccountStatus.DISABLED:
        raise AccountDisabledError()
    if status is AccountStatus.BANNED:
        raise AccountBannedError()


def password_matches(plain: str, stored_hash: str | None) -> bool:
    """Compare a password with its stored bcrypt hash. Constant time is bcrypt's job."""
    if not stored_hash:
        return False
    return verify_password(plain, stored_hash)


# ---------------------------------------------------------------------------
# Per-request gate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GateResult:
    """Outcome of authenticate_bearer().

    principal is set when the caller is authenticated. status_code/message are
    set when the request must be rejected. Both None means "no credential
    presented" -- the route policy decides whether that is acceptable.
    """

    principal: Principal | None = None
    status_code: int | None = None
    message: str | None = None

    @property
    def rejected(self) -> bool:
        return self.status_code is not None


_ANONYMOUS = GateResult()


def authenticate_bearer(authorization: str | None, store: AccountStore) -> GateResult:
    """Resolve an Authorization header to a Principal or a rejection.

    Steps, in order:
      1. No "Bearer " header -> anonymous.
      2. Token fails verification -> 401 generic.
      3. Account (any status) missing -> 401 generic.
      4. Account disabled -> 401 "does not exist".
      5. Account banned -> 403.
      6. Otherwise -> Principal with the live role.
    """
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return _ANONYMOUS

    claims = decode_access_token(authorization[len(_BEARER_PREFIX) :].strip())
    if claims is None:
        return GateResult(status_code=401, message=INVALID_TOKEN_MESSAGE)

    account = store.get_by_id_any_status(claims.account_id)
    if account is None:
        logger.warning("Token subject %d has no account record", claims.account_id)
        return GateResult(status_code=401, message=INVALID_TOKEN_MESSAGE)

    status = check_account(account)
    if status is AccountStatus.DISABLED:
        logger.warning("Rejected token for disabled account %d", account.id)
        return GateResult(status_code=401, message=DISABLED_ACCOUNT_MESSAGE)
    if status is AccountStatus.BANNED:
        logger.warning("Rejected token for banned account %d", account.id)
        return GateResult(status_code=403, message=BANNED_ACCOUNT_MESSAGE)

    return GateResult(principal=Principal(account_id=account.id, email=account.email, role=account.role))
