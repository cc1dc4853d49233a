"""
tests/conftest.py -- Shared fixtures for CODEGEN account and session tests.

This module provides:
  - clock: a FrozenClock every component shares, so tests move time explicitly
  - directory / issuer / provider: the local provider over an in-memory directory
  - session_store: tab + persistent scopes, both in-memory key-value stores
  - facade: an initialised AuthFacade with the validator not started
  - registration: factory for RegisterData with valid defaults

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Generator

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
import pytest_asyncio

from auth.facade import AuthFacade, Notification
from auth.models import RegisterData
from auth.providers.local import LocalAuthProvider
from auth.store import AccountDirectory
from auth.tokens import TokenIssuer
from core.clock import FrozenClock
from storage.kv import KeyValueStorage
from storage.store import SessionStore

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
TOKEN_VALIDITY = 7 * 24 * 60 * 60
STRONG_PASSWORD = "Abcdef1!"


def register_data(**overrides) -> RegisterData:
    values = dict(
        full_name="Alice Doe",
        username="alice",
        email="alice@x.io",
        password=STRONG_PASSWORD,
        user_type="student",
        organization="Acme University",
    )
    values.update(overrides)
    return RegisterData(**values)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def directory(clock) -> Generator[AccountDirectory, None, None]:
    d = AccountDirectory("sqlite:///:memory:", clock=clock)
    yield d
    d.close()


@pytest.fixture
def issuer(clock) -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, TOKEN_VALIDITY, clock=clock)


@pytest.fixture
def provider(directory, issuer, clock) -> LocalAuthProvider:
    return LocalAuthProvider(directory, issuer, clock=clock)


@pytest.fixture
def session_store() -> Generator[SessionStore, None, None]:
    store = SessionStore(tab=KeyValueStorage(), persistent=KeyValueStorage())
    yield store
    store.close()


@pytest.fixture
def notifications() -> list[Notification]:
    return []


@pytest_asyncio.fixture
async def facade(provider, session_store, clock, notifications) -> AsyncGenerator[AuthFacade, None]:
    """An initialised facade with nothing stored. The validator is not running."""
    f = AuthFacade(provider, session_store, clock, check_interval=3600, notify=notifications.append)
    await f.init(start_validator=False)
    yield f
    await f.dispose()


@pytest.fixture
def registration():
    """Factory for RegisterData with valid defaults; keyword arguments override."""
    return register_data
