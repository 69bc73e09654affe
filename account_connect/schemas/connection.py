"""Response schemas for connection endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ConnectionStatus(BaseModel):
    """Stable status shape returned to the UI."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str
    connected: bool
    valid: bool
    needs_reauthentication: bool = Field(..., alias="needsReauthentication")
    email: Optional[str] = None
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")


class AuthorizationResponse(BaseModel):
    authorization_url: str
    state: str


class CallbackResult(BaseModel):
    status: str = "connected"
    provider: str
    email: Optional[str] = None
    redirect_to: Optional[str] = None


class DisconnectResponse(BaseModel):
    success: bool = True
    message: str


class ProviderInfo(BaseModel):
    provider: str
    display_name: str
    configured: bool


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Stable machine-readable error kind.")
    message: str


__all__ = [
    "AuthorizationResponse",
    "CallbackResult",
    "ConnectionStatus",
    "DisconnectResponse",
    "ErrorResponse",
    "ProviderInfo",
]
