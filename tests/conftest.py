"""
tests/conftest.py -- Shared test fixtures for the Tasklane auth engine and API.

This module provides:
  - FakeClock: a settable clock injected into the limiter and email-OTP manager
  - store / sender / engine: a fresh in-memory engine per test
  - make_user: factory that inserts a user with a known password
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - api_client: TestClient plus the store and outbox behind it

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The env vars below must be set before any core/auth/api import so
get_settings() generates token secrets in dev mode, never tries SMTP, and the
per-IP login limit does not trip during a test module.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Callable

# CRITICAL: Set env before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("EMAIL_BACKEND", "memory")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.engine import AuthEngine, build_engine
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings
from mail.sender import MemoryEmailSender

PASSWORD = "correct-horse-battery"

# bcrypt at default cost is slow; hash once and reuse for every fixture user.
_PASSWORD_HASH = hash_password(PASSWORD)


class FakeClock:
    """Callable clock. Starts at a fixed epoch and only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_store(prefix: str = "test_auth") -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    A uuid suffix keeps every store separate, so tests never see each other's
    users, codes or counters.
    """
    return UserStore(db_url=_memory_url(prefix))


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def password() -> str:
    """The plaintext password every fixture user is created with."""
    return PASSWORD


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("tasklane.test")


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = _make_test_store()
    yield user_store
    user_store.close()


@pytest.fixture
def sender() -> MemoryEmailSender:
    return MemoryEmailSender()


@pytest.fixture
def engine(store: UserStore, sender: MemoryEmailSender, clock: FakeClock, logger: logging.Logger) -> AuthEngine:
    return build_engine(get_settings(), store, sender, logger=logger, clock=clock)


@pytest.fixture
def make_user(store: UserStore) -> Callable[..., User]:
    """Return a factory: make_user(email, role=..., **fields) -> stored User."""

    def _make(email: str = "alice@example.com", **fields) -> User:
        user = User(email=email, hashed_password=_PASSWORD_HASH, **fields)
        user_id = store.create_user(user)
        return store.get_by_id(user_id)

    return _make


@pytest.fixture
def last_code() -> Callable[[MemoryEmailSender], str]:
    """Return a helper that pulls the code out of the most recent captured email."""

    def _extract(outbox_sender: MemoryEmailSender) -> str:
        body = outbox_sender.outbox[-1].body
        return body.split("Your verification code is: ", 1)[1].split()[0]

    return _extract


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, email_sender: MemoryEmailSender):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated test DB and a capturing mail sender rather than production ones.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.email_sender = email_sender
        app.state.engine = build_engine(get_settings(), user_store, email_sender, logger=logging.getLogger("tasklane.test"))
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore, MemoryEmailSender], None, None]:
    """Yield (client, store, sender) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, exception handlers and middleware but use an
    isolated in-memory store. One client per test module for speed; tests use
    distinct email addresses so they do not interfere.
    """
    user_store = _make_test_store("test_api")
    email_sender = MemoryEmailSender()

    app.router.lifespan_context = _patch_lifespan(user_store, email_sender)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, email_sender

    user_store.close()


@pytest.fixture
def api_user(api_client) -> Callable[..., User]:
    """Factory that inserts a user into the api_client store: api_user(email, **fields)."""
    _, user_store, _ = api_client

    def _make(email: str, **fields) -> User:
        user_id = user_store.create_user(User(email=email, hashed_password=_PASSWORD_HASH, **fields))
        return user_store.get_by_id(user_id)

    return _make
