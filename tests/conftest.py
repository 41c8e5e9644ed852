"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - FakeClock: an injectable clock the expiry tests move by hand
  - RecordingNotifier: a Notifier that records messages instead of sending
  - stores / lifecycle: isolated in-memory stores and an orchestrator on top
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with a seeded admin for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the account store and the secret store open separate engines, and
TestClient runs handlers on another thread. Plain :memory: DBs are
per-connection and would present a blank schema to each of them. The named
URI format (file:name?mode=memory&cache=shared&uri=true) shares one in-memory
instance across all connections in the same process.

The DEBUG env var must be set before any api/ import so get_settings() (read
by the rate limiter) auto-generates signing keys instead of raising.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/ import so get_settings() can
# auto-generate signing keys in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import NotificationError
from auth.hashing import SecretHasher
from auth.lifecycle import CredentialLifecycleOrchestrator
from auth.models import Account, Role
from auth.secret_store import SecretStore
from auth.store import AccountStore
from core.config import Settings

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n!password"
USER_PASSWORD = "Us3r!password"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock pinned to a fixed instant until advance() is called."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, instant: datetime) -> None:
        self.now = instant


@dataclass
class SentMessage:
    kind: str
    email: str
    data: dict = field(default_factory=dict)


class RecordingNotifier:
    """Notifier that keeps every message in memory.

    Add a kind ("otp", "reset", "changed", "temporary") to `failing` to make
    that send raise NotificationError.
    """

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.failing: set[str] = set()

    def _record(self, kind: str, email: str, **data) -> None:
        if kind in self.failing:
            raise NotificationError("simulated transport failure")
        self.sent.append(SentMessage(kind, email, data))

    def send_otp(self, email: str, code: str, name: str) -> None:
        self._record("otp", email, code=code, name=name)

    def send_password_reset(self, email: str, token: str, name: str) -> None:
        self._record("reset", email, token=token, name=name)

    def send_password_changed(self, email: str, name: str) -> None:
        self._record("changed", email, name=name)

    def send_temporary_password(self, email: str, name: str, password: str, issued_by: str) -> None:
        self._record("temporary", email, password=password, name=name, issued_by=issued_by)

    def of_kind(self, kind: str, email: str | None = None) -> list[SentMessage]:
        return [m for m in self.sent if m.kind == kind and (email is None or m.email == email)]

    def last(self, kind: str, email: str | None = None) -> SentMessage:
        matches = self.of_kind(kind, email)
        assert matches, f"no {kind!r} message sent to {email or 'anyone'}"
        return matches[-1]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def memory_url(prefix: str = "gatehouse") -> str:
    """Unique named shared-memory SQLite URL."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": "access-" + "a" * 40,
        "refresh_secret_key": "refresh-" + "b" * 40,
        "digest_pepper": "pepper-" + "c" * 40,
        "bcrypt_rounds": 4,
        "database_url": memory_url(),
    }
    values.update(overrides)
    return Settings(**values)


def seed_account(
    lifecycle: CredentialLifecycleOrchestrator,
    email: str,
    password: str = USER_PASSWORD,
    *,
    full_name: str = "Test User",
    role: str = Role.user.value,
    must_change_password: bool = False,
    is_active: bool = True,
) -> int:
    """Insert an account directly through the store and return its id."""
    return lifecycle.accounts.create_account(
        Account(
            email=email,
            full_name=full_name,
            role=role,
            must_change_password=must_change_password,
            is_active=is_active,
        ),
        lifecycle.hasher.hash(password),
    )


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh stores per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def hasher() -> SecretHasher:
    return SecretHasher(rounds=4, pepper="test-pepper")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def stores(clock) -> Generator[tuple[AccountStore, SecretStore], None, None]:
    url = memory_url("unit")
    accounts = AccountStore(url, clock=clock)
    secrets = SecretStore(url)
    yield accounts, secrets
    secrets.close()
    accounts.close()


@pytest.fixture
def account_store(stores) -> AccountStore:
    return stores[0]


@pytest.fixture
def secret_store(stores) -> SecretStore:
    return stores[1]


@pytest.fixture
def lifecycle(settings, stores, notifier, clock) -> CredentialLifecycleOrchestrator:
    accounts, secrets = stores
    return CredentialLifecycleOrchestrator.from_settings(
        settings,
        accounts=accounts,
        secrets=secrets,
        notifier=notifier,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(accounts: AccountStore, secrets: SecretStore, lifecycle: CredentialLifecycleOrchestrator):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = accounts
        app.state.secret_store = secrets
        app.state.lifecycle = lifecycle
        app.state.token_issuer = lifecycle.issuer
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    notifier: RecordingNotifier
    lifecycle: CredentialLifecycleOrchestrator
    admin_id: int
    admin_token: str

    def auth(self, token: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token or self.admin_token}"}


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use isolated in-memory stores and a recording
    notifier. An admin account is seeded and an access token minted for it.
    """
    settings = make_settings()
    accounts = AccountStore(settings.database_url)
    secrets = SecretStore(settings.database_url)
    notifier = RecordingNotifier()
    lifecycle = CredentialLifecycleOrchestrator.from_settings(
        settings, accounts=accounts, secrets=secrets, notifier=notifier
    )
    admin_id = seed_account(lifecycle, ADMIN_EMAIL, ADMIN_PASSWORD, full_name="Ada Admin", role=Role.admin.value)
    admin_token = lifecycle.issuer.issue_pair(admin_id, ADMIN_EMAIL, Role.admin.value).access_token

    app.router.lifespan_context = _patch_lifespan(accounts, secrets, lifecycle)

    # TrustedHostMiddleware only admits localhost names.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiContext(client, notifier, lifecycle, admin_id, admin_token)

    secrets.close()
    accounts.close()


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Rate-limit counters are process-wide; start every test from zero."""
    limiter.reset()
    yield
