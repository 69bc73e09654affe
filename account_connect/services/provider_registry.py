"""
Provider registry: maps provider ids to their OAuth configuration.

Endpoints are fixed per provider; credentials, redirect URIs and scopes come
from the settings object the registry is constructed with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from account_connect.core.config import AppSettings
from account_connect.core.errors import MisconfiguredProviderError, UnknownProviderError
from account_connect.models.oauth import ProviderConfig


@dataclass(frozen=True, slots=True)
class _ProviderSpec:
    provider_id: str
    display_name: str
    env_prefix: str
    settings_attr: str
    authorize_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    revoke_endpoint: Optional[str] = None
    scope_separator: str = " "
    fixed_params: Dict[str, str] = field(default_factory=dict)


_SPECS: Dict[str, _ProviderSpec] = {
    "gmail": _ProviderSpec(
        provider_id="gmail",
        display_name="Gmail",
        env_prefix="GOOGLE",
        settings_attr="google",
        authorize_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
        token_endpoint="https://oauth2.googleapis.com/token",
        userinfo_endpoint="https://www.googleapis.com/oauth2/v2/userinfo",
        revoke_endpoint="https://oauth2.googleapis.com/revoke",
        fixed_params={"include_granted_scopes": "true"},
    ),
    "discord": _ProviderSpec(
        provider_id="discord",
        display_name="Discord",
        env_prefix="DISCORD",
        settings_attr="discord",
        authorize_endpoint="https://discord.com/oauth2/authorize",
        token_endpoint="https://discord.com/api/oauth2/token",
        userinfo_endpoint="https://discord.com/api/users/@me",
        revoke_endpoint="https://discord.com/api/oauth2/token/revoke",
    ),
    "slack": _ProviderSpec(
        provider_id="slack",
        display_name="Slack",
        env_prefix="SLACK",
        settings_attr="slack",
        authorize_endpoint="https://slack.com/oauth/v2/authorize",
        token_endpoint="https://slack.com/api/oauth.v2.access",
        userinfo_endpoint="https://slack.com/api/users.info",
        revoke_endpoint="https://slack.com/api/auth.revoke",
        scope_separator=",",
    ),
}


class ProviderRegistry:
    """Resolve provider ids to validated :class:`ProviderConfig` objects."""

    def __init__(self, settings: AppSettings) -> None:
        self._settings = settings

    def supported_providers(self) -> List[str]:
        return list(_SPECS)

    def get_config(self, provider_id: str) -> ProviderConfig:
        spec = _SPECS.get(provider_id)
        if spec is None:
            raise UnknownProviderError(provider_id, _SPECS)
        return self._build(spec)

    def display_name(self, provider_id: str) -> str:
        spec = _SPECS.get(provider_id)
        if spec is None:
            raise UnknownProviderError(provider_id, _SPECS)
        return spec.display_name

    def is_configured(self, provider_id: str) -> bool:
        try:
            self.get_config(provider_id)
        except MisconfiguredProviderError:
            return False
        return True

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all known providers."""
        return [
            {
                "provider": spec.provider_id,
                "display_name": spec.display_name,
                "configured": self.is_configured(spec.provider_id),
            }
            for spec in _SPECS.values()
        ]

    def _redirect_uri(self, spec: _ProviderSpec, explicit: Optional[object]) -> Optional[str]:
        if explicit:
            return str(explicit)
        base = self._settings.app_base_url
        if base:
            return f"{base}/api/callback/{spec.provider_id}"
        return None

    def _build(self, spec: _ProviderSpec) -> ProviderConfig:
        block = getattr(self._settings, spec.settings_attr)
        redirect_uri = self._redirect_uri(spec, block.redirect_uri)

        missing = []
        if not block.client_id:
            missing.append(f"{spec.env_prefix}_CLIENT_ID")
        if not block.client_secret:
            missing.append(f"{spec.env_prefix}_CLIENT_SECRET")
        if not redirect_uri:
            missing.append(f"{spec.env_prefix}_REDIRECT_URI or APP_BASE_URL")
        if not block.scopes:
            missing.append(f"{spec.env_prefix}_SCOPES")
        if missing:
            raise MisconfiguredProviderError(spec.provider_id, missing)

        extra = dict(spec.fixed_params)
        supports_refresh = True
        if spec.provider_id == "slack":
            supports_refresh = block.token_rotation
            if block.user_scopes:
                extra["user_scope"] = spec.scope_separator.join(block.user_scopes)

        return ProviderConfig(
            provider_id=spec.provider_id,
            display_name=spec.display_name,
            client_id=block.client_id,
            client_secret=block.client_secret,
            redirect_uri=redirect_uri,
            scopes=tuple(block.scopes),
            authorize_endpoint=spec.authorize_endpoint,
            token_endpoint=spec.token_endpoint,
            userinfo_endpoint=spec.userinfo_endpoint,
            revoke_endpoint=spec.revoke_endpoint,
            supports_refresh=supports_refresh,
            scope_separator=spec.scope_separator,
            extra_authorize_params=extra,
        )


__all__ = ["ProviderRegistry"]
