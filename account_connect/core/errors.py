"""
Error taxonomy for the connection lifecycle.

Each error carries a stable machine-readable ``kind`` and the HTTP status the
route layer answers with. Messages are written for end users; provider
response bodies never end up in them.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Iterable


class ConnectorError(Exception):
    """Base class for every error surfaced by the connection service."""

    kind = "connector_error"
    http_status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"error": self.kind, "message": self.message}


class UnknownProviderError(ConnectorError):
    """Raised when a provider id is not registered."""

    kind = "unknown_provider"
    http_status = HTTPStatus.BAD_REQUEST

    def __init__(self, provider_id: str, supported: Iterable[str] = ()) -> None:
        supported = sorted(supported)
        message = f"Provider '{provider_id}' is not supported."
        if supported:
            message += f" Choose one of: {', '.join(supported)}."
        super().__init__(message)
        self.provider_id = provider_id


class MisconfiguredProviderError(ConnectorError):
    """Raised when deployment configuration for a provider is incomplete."""

    kind = "misconfigured_provider"

    def __init__(self, provider_id: str, missing: Iterable[str]) -> None:
        self.provider_id = provider_id
        self.missing = tuple(missing)
        super().__init__(
            f"Provider '{provider_id}' is not configured on this server "
            f"(missing: {', '.join(self.missing)})."
        )


class MissingParameterError(ConnectorError):
    kind = "missing_parameter"
    http_status = HTTPStatus.BAD_REQUEST

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} parameter is required")
        self.name = name


class InvalidRequestError(ConnectorError):
    """Caller input failed validation before reaching the lifecycle."""

    kind = "invalid_request"
    http_status = HTTPStatus.BAD_REQUEST


class AuthorizationDeniedError(ConnectorError):
    """The provider redirected back with an ``error`` instead of a code."""

    kind = "authorization_denied"
    http_status = HTTPStatus.BAD_REQUEST


class StateMismatchError(ConnectorError):
    """The callback state was not issued by us, was already used, or expired."""

    kind = "state_mismatch"
    http_status = HTTPStatus.BAD_REQUEST


class NotConnectedError(ConnectorError):
    kind = "not_connected"
    http_status = HTTPStatus.BAD_REQUEST


class ExchangeFailedError(ConnectorError):
    """The provider rejected the authorization code."""

    kind = "exchange_failed"


class ProviderTimeoutError(ExchangeFailedError):
    kind = "provider_timeout"


class RefreshFailedError(ConnectorError):
    """The provider rejected a refresh.

    ``permanent`` distinguishes a revoked or missing refresh token (the user
    must reconnect) from a transient failure such as a 5xx response.
    """

    kind = "refresh_failed"

    def __init__(self, message: str, *, permanent: bool = True) -> None:
        super().__init__(message)
        self.permanent = permanent


class RefreshTimeoutError(RefreshFailedError):
    kind = "provider_timeout"

    def __init__(self, message: str) -> None:
        super().__init__(message, permanent=False)


class StorageUnavailableError(ConnectorError):
    """The token store could not be reached; callers may retry."""

    kind = "storage_unavailable"


__all__ = [
    "AuthorizationDeniedError",
    "ConnectorError",
    "ExchangeFailedError",
    "InvalidRequestError",
    "MisconfiguredProviderError",
    "MissingParameterError",
    "NotConnectedError",
    "ProviderTimeoutError",
    "RefreshFailedError",
    "RefreshTimeoutError",
    "StateMismatchError",
    "StorageUnavailableError",
    "UnknownProviderError",
]
