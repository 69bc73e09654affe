"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from account_connect.clients import (
    DynamoDBClient,
    OAuthProviderClient,
    OAuthStateEncoder,
    SQLiteStore,
)
from account_connect.core.config import get_settings
from account_connect.services import (
    ConnectionStatusReporter,
    PendingStateStore,
    ProviderRegistry,
    RecordBackend,
    TokenCipherService,
    TokenLifecycleManager,
    TokenStore,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_provider_registry() -> ProviderRegistry:
    """Provide the registry of supported OAuth providers."""
    return ProviderRegistry(_settings())


@lru_cache()
def get_provider_client() -> OAuthProviderClient:
    """Create a singleton client for provider token endpoints."""
    settings = _settings()
    return OAuthProviderClient(timeout=settings.oauth.http_timeout_seconds)


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder keyed by the dedicated state secret."""
    settings = _settings()
    return OAuthStateEncoder(secret_key=settings.security.oauth_state_secret)


@lru_cache()
def get_record_backend() -> RecordBackend:
    """Provide the configured item store (SQLite by default, DynamoDB when selected)."""
    storage = _settings().storage
    if storage.backend == "dynamodb":
        return DynamoDBClient(storage)
    return SQLiteStore(storage.sqlite_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    return TokenCipherService(secret=settings.security.token_encryption_secret)


@lru_cache()
def get_token_store() -> TokenStore:
    return TokenStore(get_record_backend(), get_token_cipher_service())


@lru_cache()
def get_pending_state_store() -> PendingStateStore:
    return PendingStateStore(
        get_record_backend(), ttl_seconds=_settings().oauth.state_ttl_seconds
    )


@lru_cache()
def get_token_lifecycle_manager() -> TokenLifecycleManager:
    """Provide the process-wide lifecycle manager (and its per-key locks)."""
    settings = _settings()
    return TokenLifecycleManager(
        registry=get_provider_registry(),
        provider_client=get_provider_client(),
        token_store=get_token_store(),
        pending_states=get_pending_state_store(),
        state_encoder=get_oauth_state_encoder(),
        oauth_settings=settings.oauth,
    )


def get_connection_status_reporter() -> ConnectionStatusReporter:
    """Build a status reporter on top of the shared lifecycle manager."""
    settings = _settings()
    return ConnectionStatusReporter(
        get_token_lifecycle_manager(),
        get_provider_registry(),
        refresh_expired=settings.oauth.refresh_on_status,
    )


__all__ = [
    "get_connection_status_reporter",
    "get_oauth_state_encoder",
    "get_pending_state_store",
    "get_provider_client",
    "get_provider_registry",
    "get_record_backend",
    "get_token_cipher_service",
    "get_token_lifecycle_manager",
    "get_token_store",
]
