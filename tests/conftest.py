"""
tests/conftest.py -- Shared test fixtures for credgate.

This module provides:
  - memory_url(): named shared-memory SQLite URLs for isolated stores
  - FakeClock / RecordingNotifier: deterministic collaborators
  - store / otp_cache / tokens / notifier / service: unit-level fixtures
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the credential service runs store calls in worker threads, and
TestClient runs the app on its own event-loop thread. Plain :memory: DBs are
per-connection and would present a blank schema to each thread. The named
URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

SECRET_KEY must be in the environment before api.main is imported -- the
module reads Settings at import time and refuses to start without it.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-credgate-0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DEFAULT_RATE_LIMIT", "10000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:credgate_test_api?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, shutdown_components, wire_components
from auth.service import CredentialService
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cache.otp import OTPCache
from core.config import get_settings

TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"

_CODE_RE = re.compile(r">(\d{6})<")


def memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Notifier that keeps every message instead of delivering it."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail
        self.delay = delay

    async def send(self, recipient: str, subject: str, body_html: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("mail API unreachable")
        self.sent.append((recipient, subject, body_html))

    def codes_for(self, recipient: str) -> list[str]:
        return [_CODE_RE.search(body).group(1) for to, _subject, body in self.sent if to == recipient]

    def wait_for_code(self, recipient: str, count: int = 1, timeout: float = 5.0) -> str:
        """Block until `count` codes were sent to recipient; return the newest.

        Delivery is a background task on the app's event loop, which runs in
        TestClient's portal thread -- polling here lets it finish.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            codes = self.codes_for(recipient)
            if len(codes) >= count:
                return codes[-1]
            time.sleep(0.01)
        raise AssertionError(f"expected {count} OTP email(s) to {recipient}, got {self.codes_for(recipient)}")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    """Connected AccountStore over a fresh shared-memory database."""
    s = AccountStore(memory_url("store"))
    s.connect()
    yield s
    s.close()


@pytest.fixture
def otp_cache(clock: FakeClock) -> OTPCache:
    return OTPCache(length=6, expire_seconds=600, clock=clock)


@pytest.fixture
def tokens() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, expire_seconds=3600)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(
    store: AccountStore, otp_cache: OTPCache, tokens: TokenIssuer, notifier: RecordingNotifier
) -> CredentialService:
    return CredentialService(store, otp_cache, tokens, notifier, bcrypt_rounds=4, store_timeout=5.0)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the real components with a recording notifier, connects the store
    once up front instead of starting the supervisor loop, and parks the sweep
    task on a long sleep (a real asyncio.Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_components(app, get_settings(), notifier=notifier)
        await app.state.supervisor.attempt()
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        await shutdown_components(app)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and the real credential service.
    """
    notifier = RecordingNotifier()
    app.router.lifespan_context = _patch_lifespan(notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier
