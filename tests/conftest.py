"""Pytest configuration shared across the suite."""

from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover - fallback for rootdir-relative imports
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from account_connect.clients.oauth_state import OAuthStateEncoder
from account_connect.clients.sqlite_store import SQLiteStore
from account_connect.core.config import AppSettings, OAuthSettings, get_settings
from account_connect.services.pending_states import PendingStateStore
from account_connect.services.provider_registry import ProviderRegistry
from account_connect.services.token_cipher import TokenCipherService
from account_connect.services.token_store import TokenStore


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def settings() -> AppSettings:
    return get_settings()


@pytest.fixture
def registry(settings: AppSettings) -> ProviderRegistry:
    return ProviderRegistry(settings)


@pytest.fixture
def sqlite_backend(tmp_path) -> SQLiteStore:
    return SQLiteStore(str(tmp_path / "connections.db"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(secret="unit-test-secret")


@pytest.fixture
def token_store(sqlite_backend: SQLiteStore, cipher: TokenCipherService) -> TokenStore:
    return TokenStore(sqlite_backend, cipher)


@pytest.fixture
def pending_states(sqlite_backend: SQLiteStore) -> PendingStateStore:
    return PendingStateStore(sqlite_backend)


@pytest.fixture
def state_encoder() -> OAuthStateEncoder:
    return OAuthStateEncoder(secret_key="unit-test-state-secret")


@pytest.fixture
def oauth_settings() -> OAuthSettings:
    return OAuthSettings()
