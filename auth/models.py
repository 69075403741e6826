"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
session manager do the work; these only own the domain shape.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Account roles. Privilege is a total order: MASTER > ADMIN > USER."""

    USER = "USER"
    ADMIN = "ADMIN"
    MASTER = "MASTER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {Role.USER: 1, Role.ADMIN: 2, Role.MASTER: 3}


@dataclass
class Account:
    """An identity record.

    is_enabled=False doubles as the soft-delete marker: disabled accounts are
    hidden from default lookups but stay addressable by id so the request gate
    can tell "disabled" apart from "never existed".

    reset_token_hash / reset_token_expires_at hold at most one pending password
    reset. Only the HMAC of the reset token is stored (see auth.tokens.hash_token).

    created_by is None for self-registered accounts.
    """

    email: str
    name: str
    last_name: str
    role: Role = Role.USER
    id: int | None = None
    password_hash: str | None = None
    is_enabled: bool = True
    is_banned: bool = False
    reset_token_hash: str | None = None
    reset_token_expires_at: str | None = None  # ISO 8601 UTC
    created_by: int | None = None
    updated_by: int | None = None
    deleted_by: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted, single-use refresh credential.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is handed
    to the client once and never stored, same as an API key.
    """

    account_id: int
    token_hash: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of an access token."""

    account_id: int
    email: str
    role: Role


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, attached to request.state by the request gate.

    role comes from the live account record, not from the token claims, so a
    role change takes effect on the next request.
    """

    account_id: int
    email: str
    role: Role
