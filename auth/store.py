"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account / _row_to_refresh_token are
the mappers. Session, gate and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced among enabled accounts only, by a partial
  unique index. A soft-deleted account therefore does not block its email
  from being registered again, while two live accounts can never share one.

  Refresh and reset tokens are stored as HMAC hashes (see auth.tokens.hash_token).

Default lookups (get_by_email, get_by_id) hide disabled (soft-deleted) rows.
The *_any_status variants include them; the request gate and hierarchy checks
need to see a disabled account to report it as disabled.

DB path: auth/authkit.db unless Settings.database_url is set.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, ForeignKey, Index, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Account, RefreshToken, Role

logger = logging.getLogger("authkit.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'authkit.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default=Role.USER.value),
    Column("is_enabled", Integer, nullable=False, server_default="1"),
    Column("is_banned", Integer, nullable=False, server_default="0"),
    Column("reset_token_hash", String(64), unique=True),
    Column("reset_token_expires_at", String(32)),
    Column("created_by", Integer),
    Column("updated_by", Integer),
    Column("deleted_by", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

Index(
    "ux_accounts_email_enabled",
    _accounts.c.email,
    unique=True,
    sqlite_where=_accounts.c.is_enabled == 1,
    postgresql_where=_accounts.c.is_enabled == 1,
)
Index("ix_accounts_created_by", _accounts.c.created_by)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON makes the refresh_tokens
    ON DELETE CASCADE effective.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_ACCOUNT_FIELDS = {
    "name",
    "last_name",
    "password_hash",
    "role",
    "is_enabled",
    "is_banned",
    "updated_by",
    "deleted_by",
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and RefreshToken entities.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="a@x.com", name="A", last_name="B",
                                                  password_hash=hash_password("secret123")))
        account = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        db_url = db_url or _DEFAULT_DB_URL  # empty DATABASE_URL means the default file
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if an enabled account already
        uses the email. Callers treat that as a concurrent registration.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    name=account.name,
                    last_name=account.last_name,
                    email=account.email,
                    password_hash=account.password_hash,
                    role=Role(account.role).value,
                    is_enabled=1 if account.is_enabled else 0,
                    is_banned=1 if account.is_banned else 0,
                    created_by=account.created_by,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str, include_disabled: bool = False) -> Account | None:
        """Look up an account by exact email (case-sensitive).

        With include_disabled=True an enabled account still wins; otherwise the
        most recently created disabled account with that email is returned.
        """
        query = _accounts.select().where(_accounts.c.email == email)
        if not include_disabled:
            query = query.where(_accounts.c.is_enabled == 1)
        query = query.order_by(_accounts.c.is_enabled.desc(), _accounts.c.id.desc()).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an enabled account by primary key."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.id == account_id) & (_accounts.c.is_enabled == 1))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id_any_status(self, account_id: int) -> Account | None:
        """Look up an account by primary key, including disabled ones."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str) -> Account | None:
        """Look up the enabled account holding a pending reset token. O(1) via UNIQUE index.

        A token issued before the account was disabled no longer matches.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.reset_token_hash == token_hash) & (_accounts.c.is_enabled == 1))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def list_created_by(self, creator_id: int) -> list[Account]:
        """Return every account (any status) created by creator_id, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _accounts.select().where(_accounts.c.created_by == creator_id).order_by(_accounts.c.id)
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: name, last_name, password_hash, role, is_enabled,
        is_banned, updated_by, deleted_by. Booleans are converted to 0/1.
        Unknown keys raise ValueError.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        for flag in ("is_enabled", "is_banned"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def set_reset_token(self, account_id: int, token_hash: str, expires_at: str) -> None:
        """Store a pending reset token, replacing any previous one."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(reset_token_hash=token_hash, reset_token_expires_at=expires_at, updated_at=_now_iso())
            )
            conn.commit()

    def complete_password_reset(self, account_id: int, password_hash: str) -> None:
        """Set a new password hash and clear the reset token in one statement."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    password_hash=password_hash,
                    reset_token_hash=None,
                    reset_token_expires_at=None,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()

    def soft_delete(self, account_id: int, deleted_by: int | None = None) -> bool:
        """Disable an account. Returns True if an enabled account was disabled."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.is_enabled == 1))
                .values(is_enabled=0, deleted_by=deleted_by, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def purge_account(self, account_id: int) -> bool:
        """Permanently delete an account and its refresh tokens. Irreversible.

        Tokens are deleted explicitly in the same transaction so the purge does
        not depend on the backend enforcing ON DELETE CASCADE.
        """
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.account_id == account_id))
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh token queries
    # ------------------------------------------------------------------

    def save_refresh_token(self, token: RefreshToken) -> int:
        """Insert a refresh token record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    token_hash=token.token_hash,
                    account_id=token.account_id,
                    expires_at=token.expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_refresh_token(self, token_hash: str) -> RefreshToken | None:
        """Look up a refresh token by its HMAC hash. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token_id: int) -> bool:
        """Delete a refresh token. Returns True only for the caller that removed the row.

        Two concurrent refreshes presenting the same token both reach this
        point; the row-level delete lets exactly one of them see True.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.id == token_id))
            conn.commit()
        return result.rowcount > 0

    def delete_refresh_tokens_for(self, account_id: int) -> int:
        """Revoke every refresh token owned by an account. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.account_id == account_id))
            conn.commit()
        return result.rowcount

    def purge_expired_refresh_tokens(self) -> int:
        """Delete refresh tokens whose expiry has passed. Returns rows removed.

        ISO 8601 UTC strings with a fixed offset sort chronologically, so a
        string comparison is a time comparison here.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < _now_iso()))
            conn.commit()
        return result.rowcount

    def ping(self) -> bool:
        """Return True if the database answers a trivial query, False on any database error."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except SQLAlchemyError as exc:
            logger.warning("Database ping failed: %s", exc)
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        last_name=row.last_name,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_enabled=bool(row.is_enabled),
        is_banned=bool(row.is_banned),
        reset_token_hash=row.reset_token_hash,
        reset_token_expires_at=row.reset_token_expires_at,
        created_by=row.created_by,
        updated_by=row.updated_by,
        deleted_by=row.deleted_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        account_id=row.account_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
