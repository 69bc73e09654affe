"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_connection_status_reporter,
    get_oauth_state_encoder,
    get_pending_state_store,
    get_provider_client,
    get_provider_registry,
    get_record_backend,
    get_token_cipher_service,
    get_token_lifecycle_manager,
    get_token_store,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
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
