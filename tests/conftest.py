"""
tests/conftest.py -- Shared test fixtures for rolegate unit and integration tests.

This module provides:
  - FakeClock: a settable clock for TokenCodec expiry tests
  - store / seeded_store: a CredentialStore on a fresh SQLite file per test
  - codec / service: TokenCodec and AuthService wired to the seeded store
  - api_client: TestClient with an admin JWT for API integration tests

Design: the API fixture uses named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true              -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4         -- the minimum bcrypt cost keeps the API suite fast
  RATE_LIMIT_ENABLED=false -- tests log in far more often than 10/minute
  ALLOWED_HOSTS=["*"]     -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any auth/core import -- settings are read once.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_app_state
from auth.authorities import AuthorityResolver
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenCodec
from core.config import get_settings

TEST_SECRET = "rolegate-test-signing-key-0123456789abcdef"
ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"
# The auth layer takes bcrypt cost as an argument; 4 is the minimum bcrypt allows.
TEST_ROUNDS = 4


class FakeClock:
    """Callable clock for TokenCodec. advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-level fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path) -> Generator[CredentialStore, None, None]:
    """Empty CredentialStore backed by a SQLite file in tmp_path."""
    s = CredentialStore(f"sqlite:///{tmp_path / 'rolegate.db'}")
    yield s
    s.close()


@pytest.fixture
def seeded_store(store: CredentialStore) -> CredentialStore:
    """CredentialStore holding the USER and ADMIN bootstrap roles."""
    store.ensure_role("USER", "Default role for registered accounts")
    store.ensure_role("ADMIN", "Administrators")
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def service(seeded_store: CredentialStore, codec: TokenCodec) -> AuthService:
    return AuthService(seeded_store, codec, AuthorityResolver(seeded_store), bcrypt_rounds=TEST_ROUNDS)


# ---------------------------------------------------------------------------
# Integration fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state through the same
    init_app_state() the real lifespan uses, so route handlers see an
    isolated database but otherwise production wiring.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_app_state(app, store, get_settings())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The admin account is registered through the live AuthService after the
    client starts, and the token is issued by the app's own codec. The token
    carries no authorities claim: ROLE_ADMIN comes from fresh resolution.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = CredentialStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        admin = client.app.state.auth_service.register(
            ADMIN_USERNAME,
            "admin@example.com",
            ADMIN_PASSWORD,
            role_names=["ADMIN"],
        )
        token = client.app.state.codec.issue_access_token(admin.username, [])
        yield client, token, admin.id

    store.close()
