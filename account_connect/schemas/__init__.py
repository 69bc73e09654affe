"""Public schema exports."""

from .auth import OAuthCallbackPayload
from .connection import (
    AuthorizationResponse,
    CallbackResult,
    ConnectionStatus,
    DisconnectResponse,
    ErrorResponse,
    ProviderInfo,
)

__all__ = [
    "AuthorizationResponse",
    "CallbackResult",
    "ConnectionStatus",
    "DisconnectResponse",
    "ErrorResponse",
    "OAuthCallbackPayload",
    "ProviderInfo",
]
