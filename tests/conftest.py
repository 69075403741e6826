"""
tests/conftest.py -- Shared test fixtures for AuthKit unit and integration tests.

This module provides:
  - make_store(): an isolated in-memory AccountStore per call
  - RecordingDispatcher: stands in for NotificationDispatcher, keeps messages
  - account_factory: creates accounts with unique emails and known passwords
  - sessions: a SessionManager over a fresh store and a RecordingDispatcher
  - api: TestClient over the real app with a patched lifespan
  - bearer(): Authorization header for an account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers and the request gate in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from concurrent.futures import Future
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Account, Role
from auth.sessions import SessionManager
from auth.store import AccountStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings
from notify.email import EmailMessage

# Rate limits are exercised by one dedicated test that re-enables the limiter.
limiter.enabled = False

DEFAULT_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Store and collaborator helpers
# ---------------------------------------------------------------------------


def make_store(name: str = "auth") -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    The uuid suffix keeps every store private even when tests share a name.
    """
    return AccountStore(f"sqlite:///file:test_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


class RecordingDispatcher:
    """NotificationDispatcher stand-in: records messages, delivers nothing."""

    def __init__(self) -> None:
        self.messages: list[EmailMessage] = []

    def dispatch(self, message: EmailMessage) -> Future:
        self.messages.append(message)
        future: Future = Future()
        future.set_result(True)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def bearer(account: Account) -> dict[str, str]:
    """Authorization header carrying a fresh access token for the account."""
    token = create_access_token(account.id, account.email, account.role)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> Generator[AccountStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def sessions(store: AccountStore, dispatcher: RecordingDispatcher) -> SessionManager:
    return SessionManager(store, dispatcher, get_settings())


def _factory_for(store: AccountStore) -> Callable[..., Account]:
    def create(
        role: Role = Role.USER,
        *,
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        created_by: int | None = None,
        enabled: bool = True,
        banned: bool = False,
        name: str = "Test",
        last_name: str = "Account",
    ) -> Account:
        account = Account(
            email=email or unique_email(role.value.lower()),
            name=name,
            last_name=last_name,
            role=role,
            password_hash=hash_password(password),
            is_enabled=enabled,
            is_banned=banned,
            created_by=created_by,
        )
        account_id = store.create_account(account)
        return store.get_by_id_any_status(account_id)

    return create


@pytest.fixture()
def account_factory(store: AccountStore) -> Callable[..., Account]:
    """Create accounts in the function-scoped store. Password is DEFAULT_PASSWORD."""
    return _factory_for(store)


# ---------------------------------------------------------------------------
# Integration fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: AccountStore
    dispatcher: RecordingDispatcher
    create_account: Callable[..., Account]


def _patch_lifespan(store: AccountStore, dispatcher: RecordingDispatcher):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a RecordingDispatcher into app.state so routes
    see an isolated DB and no email leaves the process.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.dispatcher = dispatcher
        app.state.sessions = SessionManager(store, dispatcher, get_settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around the real FastAPI app.

    Tests hit real middleware, route handlers and exception handlers; only
    the lifespan is replaced.
    """
    test_store = make_store("api")
    test_dispatcher = RecordingDispatcher()
    app.router.lifespan_context = _patch_lifespan(test_store, test_dispatcher)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            store=test_store,
            dispatcher=test_dispatcher,
            create_account=_factory_for(test_store),
        )

    test_store.close()
