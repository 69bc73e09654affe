"""
Domain models for OAuth providers and persisted connections.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderConfig(BaseModel):
    """Everything needed to run the authorization-code flow for one provider."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    display_name: str
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    scopes: tuple[str, ...]
    authorize_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    revoke_endpoint: Optional[str] = None
    supports_refresh: bool = True
    scope_separator: str = " "
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)


ConnectionState = Literal["active", "reauth_required"]


class TokenRecord(BaseModel):
    """One connection between a user and a provider.

    Instances are always detached copies; mutating one never touches storage.
    """

    user_id: str
    provider_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: tuple[str, ...] = ()
    email: Optional[str] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    status: ConnectionState = "active"
    error_message: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Tokens without an expiry never expire."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    @property
    def needs_reauthentication(self) -> bool:
        if self.status == "reauth_required":
            return True
        # An expiring token without a refresh token cannot be renewed offline.
        return not self.refresh_token and self.expires_at is not None


class ConnectionValidity(BaseModel):
    """Outcome of a validity check, with the record it was derived from."""

    connected: bool
    valid: bool
    needs_reauthentication: bool
    record: Optional[TokenRecord] = None


class AuthorizationRequest(BaseModel):
    authorization_url: str
    state: str


class PendingState(BaseModel):
    """Server-side half of an issued OAuth state."""

    nonce: str
    provider_id: str
    user_id: str
    redirect_to: Optional[str] = None
    issued_at: datetime = Field(default_factory=utcnow)

    def expires_at(self, ttl_seconds: int) -> int:
        """Epoch second after which the state can no longer be redeemed."""
        return int((self.issued_at + timedelta(seconds=ttl_seconds)).timestamp())

    def to_item(self, ttl_seconds: int) -> Dict[str, Any]:
        # ``expires_at`` is a number so it can back a DynamoDB TTL attribute.
        return {
            "pk": f"state#{self.nonce}",
            "sk": f"oauth#{self.provider_id}",
            **self.model_dump(mode="json"),
            "expires_at": self.expires_at(ttl_seconds),
        }


__all__ = [
    "AuthorizationRequest",
    "ConnectionValidity",
    "PendingState",
    "ProviderConfig",
    "TokenRecord",
    "utcnow",
]
