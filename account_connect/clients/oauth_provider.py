"""
OAuth provider client.

Builds authorization URLs and talks to each provider's token, profile and
revocation endpoints. Every request runs on an ``httpx.AsyncClient`` with a
bounded timeout and is attempted exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from account_connect.core.errors import (
    ExchangeFailedError,
    ProviderTimeoutError,
    RefreshFailedError,
    RefreshTimeoutError,
)
from account_connect.models.oauth import ProviderConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TokenGrant:
    """Normalized token endpoint response."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]
    scopes: tuple[str, ...]
    account_id: Optional[str] = None
    profile_token: Optional[str] = None


@dataclass(slots=True)
class AccountProfile:
    account_id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None


def build_authorization_url(config: ProviderConfig, state: str) -> str:
    """Construct the provider consent URL."""
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": config.scope_separator.join(config.scopes),
    }
    if config.supports_refresh:
        # Without prompt=consent a returning user gets no new refresh token.
        params["access_type"] = "offline"
        params["prompt"] = "consent"
    params.update(config.extra_authorize_params)
    params["state"] = state
    return f"{config.authorize_endpoint}?{urlencode(params)}"


def _split_granted(raw: Any, config: ProviderConfig) -> tuple[str, ...]:
    if not raw:
        return tuple(config.scopes)
    if isinstance(raw, (list, tuple)):
        return tuple(raw)
    normalized = str(raw).replace(",", " ")
    return tuple(scope for scope in normalized.split() if scope)


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"http_{response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"http_{response.status_code}"


class OAuthProviderClient:
    """Runs the token-endpoint side of the authorization-code flow."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def build_authorization_url(self, config: ProviderConfig, state: str) -> str:
        return build_authorization_url(config, state)

    async def exchange_authorization_code(self, config: ProviderConfig, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        payload = {
            "code": code,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "redirect_uri": config.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    config.token_endpoint,
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"{config.display_name} did not respond in time. Please try connecting again."
            ) from exc
        except httpx.HTTPError as exc:
            raise ExchangeFailedError(
                f"Could not reach {config.display_name}. Please try connecting again."
            ) from exc

        if response.status_code != httpx.codes.OK:
            logger.warning(
                "Code exchange rejected by %s: %s", config.provider_id, _error_code(response)
            )
            raise ExchangeFailedError(
                f"{config.display_name} rejected the authorization code. Please reconnect."
            )

        token_payload = self._unwrap(config, _json_or_none(response))
        if token_payload is None:
            raise ExchangeFailedError(
                f"{config.display_name} rejected the authorization code. Please reconnect."
            )

        grant = self._to_grant(config, token_payload)
        if not grant.access_token:
            raise ExchangeFailedError(
                f"Incomplete token payload returned from {config.display_name}."
            )
        if config.supports_refresh and not grant.refresh_token:
            raise ExchangeFailedError(
                f"{config.display_name} did not grant offline access; reconnect and approve all requested permissions."
            )
        return grant

    async def refresh_token(self, config: ProviderConfig, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    config.token_endpoint,
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise RefreshTimeoutError(
                f"{config.display_name} did not respond in time while refreshing access."
            ) from exc
        except httpx.HTTPError as exc:
            raise RefreshFailedError(
                f"Could not reach {config.display_name} to refresh access.", permanent=False
            ) from exc

        if response.status_code >= httpx.codes.INTERNAL_SERVER_ERROR:
            raise RefreshFailedError(
                f"{config.display_name} is temporarily unavailable.", permanent=False
            )
        if response.status_code != httpx.codes.OK:
            logger.warning(
                "Refresh rejected by %s: %s", config.provider_id, _error_code(response)
            )
            raise RefreshFailedError(
                f"{config.display_name} access was revoked or expired. Please reconnect."
            )

        token_payload = self._unwrap(config, _json_or_none(response))
        if token_payload is None or not token_payload.get("access_token"):
            raise RefreshFailedError(
                f"{config.display_name} access was revoked or expired. Please reconnect."
            )
        grant = self._to_grant(config, token_payload)
        # Providers that do not rotate refresh tokens omit them on refresh.
        if not grant.refresh_token:
            grant.refresh_token = refresh_token
        return grant

    async def fetch_profile(self, config: ProviderConfig, grant: TokenGrant) -> AccountProfile:
        """Look up the connected account; returns an empty profile on failure."""
        if not config.userinfo_endpoint:
            return AccountProfile(account_id=grant.account_id)
        token = grant.profile_token or grant.access_token
        params: Dict[str, str] = {}
        if config.provider_id == "slack" and grant.account_id:
            params["user"] = grant.account_id
        try:
            async with self._client() as client:
                response = await client.get(
                    config.userinfo_endpoint,
                    params=params or None,
                    headers={"Authorization": f"Bearer {token}"},
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Profile lookup failed for %s: %s", config.provider_id, exc)
            return AccountProfile(account_id=grant.account_id)
        return self._to_profile(config, data, grant)

    async def revoke_token(
        self,
        config: ProviderConfig,
        *,
        access_token: str,
        refresh_token: Optional[str] = None,
    ) -> bool:
        """Revoke a connection at the provider. Returns False when unsupported or rejected.

        Revoking the refresh token also invalidates its access tokens at Google
        and Discord; Slack only revokes the token used to authenticate the call.
        """
        if not config.revoke_endpoint:
            return False
        token = access_token if config.provider_id == "slack" else refresh_token or access_token
        if not token:
            return False
        request: Dict[str, Any]
        if config.provider_id == "slack":
            request = {"headers": {"Authorization": f"Bearer {token}"}}
        elif config.provider_id == "discord":
            request = {
                "data": {
                    "token": token,
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                }
            }
        else:
            request = {"data": {"token": token}}
        try:
            async with self._client() as client:
                response = await client.post(config.revoke_endpoint, **request)
        except httpx.HTTPError as exc:
            logger.warning("Token revocation failed for %s: %s", config.provider_id, exc)
            return False
        return response.status_code == httpx.codes.OK

    @staticmethod
    def _unwrap(config: ProviderConfig, body: Any) -> Optional[Dict[str, Any]]:
        """Return the token payload, or None when the provider reports an error."""
        if not isinstance(body, dict):
            return None
        if config.provider_id == "slack":
            if not body.get("ok"):
                logger.warning("Slack OAuth error: %s", body.get("error", "unknown"))
                return None
            authed_user = body.get("authed_user") or {}
            flattened = dict(body)
            if not flattened.get("access_token"):
                # User-token-only installs carry everything under authed_user.
                for key in ("access_token", "refresh_token", "expires_in", "scope"):
                    if authed_user.get(key) is not None:
                        flattened[key] = authed_user[key]
            flattened["_account_id"] = authed_user.get("id")
            flattened["_profile_token"] = authed_user.get("access_token")
            return flattened
        if body.get("error"):
            logger.warning("%s OAuth error: %s", config.display_name, body.get("error"))
            return None
        return body

    @staticmethod
    def _to_grant(config: ProviderConfig, payload: Dict[str, Any]) -> TokenGrant:
        expires_in = payload.get("expires_in")
        return TokenGrant(
            access_token=payload.get("access_token") or "",
            refresh_token=payload.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in else None,
            scopes=_split_granted(payload.get("scope"), config),
            account_id=payload.get("_account_id"),
            profile_token=payload.get("_profile_token"),
        )

    @staticmethod
    def _to_profile(config: ProviderConfig, data: Dict[str, Any], grant: TokenGrant) -> AccountProfile:
        if config.provider_id == "slack":
            user = data.get("user") or {}
            profile = user.get("profile") or {}
            return AccountProfile(
                account_id=user.get("id") or grant.account_id,
                email=profile.get("email"),
                display_name=user.get("real_name") or user.get("name"),
            )
        if config.provider_id == "discord":
            return AccountProfile(
                account_id=data.get("id"),
                email=data.get("email"),
                display_name=data.get("global_name") or data.get("username"),
            )
        return AccountProfile(
            account_id=data.get("id") or data.get("sub"),
            email=data.get("email"),
            display_name=data.get("name"),
        )


__all__ = [
    "AccountProfile",
    "OAuthProviderClient",
    "TokenGrant",
    "build_authorization_url",
]
