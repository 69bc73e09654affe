"""
Application configuration models and helpers.

Settings are read once per process into an immutable ``AppSettings`` object
which is handed to the provider registry and the storage layer, so nothing
downstream consults the environment at request time.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_scopes(value: object) -> tuple[str, ...]:
    """Support providing scopes as a comma-separated string."""
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    if value is None:
        return ()
    return tuple(scope.strip() for scope in str(value).split(",") if scope.strip())


ScopeList = Annotated[tuple[str, ...], NoDecode]


class _ProviderSettings(BaseSettings):
    """Fields shared by every OAuth provider block.

    Credentials are optional here: a missing value only disables the provider
    and is reported as a misconfiguration when a flow is started for it.
    """

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[AnyHttpUrl] = None
    scopes: ScopeList = ()

    @field_validator("scopes", mode="before")
    @classmethod
    def _parse_scopes(cls, value: object) -> tuple[str, ...]:
        return _split_scopes(value)


class GoogleSettings(_ProviderSettings):
    """Configuration for the Gmail connection."""

    client_id: Optional[str] = Field(None, validation_alias="GOOGLE_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(None, validation_alias="GOOGLE_REDIRECT_URI")
    scopes: ScopeList = Field(
        (
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/userinfo.profile",
            "https://www.googleapis.com/auth/gmail.send",
        ),
        validation_alias="GOOGLE_SCOPES",
    )


class DiscordSettings(_ProviderSettings):
    """Configuration for the Discord connection."""

    client_id: Optional[str] = Field(None, validation_alias="DISCORD_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="DISCORD_CLIENT_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(None, validation_alias="DISCORD_REDIRECT_URI")
    scopes: ScopeList = Field(("identify", "email"), validation_alias="DISCORD_SCOPES")


class SlackSettings(_ProviderSettings):
    """Configuration for the Slack connection.

    ``scopes`` are bot scopes, ``user_scopes`` are requested on behalf of the
    installing user. Refresh tokens are only issued when token rotation is
    enabled on the Slack app.
    """

    client_id: Optional[str] = Field(None, validation_alias="SLACK_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="SLACK_CLIENT_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(None, validation_alias="SLACK_REDIRECT_URI")
    scopes: ScopeList = Field(("chat:write",), validation_alias="SLACK_SCOPES")
    user_scopes: ScopeList = Field(
        ("users:read", "users:read.email", "users.profile:read"),
        validation_alias="SLACK_USER_SCOPES",
    )
    token_rotation: bool = Field(False, validation_alias="SLACK_TOKEN_ROTATION")

    @field_validator("user_scopes", mode="before")
    @classmethod
    def _parse_user_scopes(cls, value: object) -> tuple[str, ...]:
        return _split_scopes(value)


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    http_timeout_seconds: float = Field(10.0, validation_alias="OAUTH_HTTP_TIMEOUT")
    refresh_on_status: bool = Field(
        True,
        validation_alias="OAUTH_REFRESH_ON_STATUS",
        description="Attempt one lazy refresh when a status check finds an expired token.",
    )


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    oauth_state_secret: str = Field(
        ...,
        validation_alias="OAUTH_STATE_SECRET",
        description="HMAC key used to sign OAuth state values.",
    )
    token_encryption_secret: str = Field(
        ...,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class StorageSettings(BaseSettings):
    """Where token records and pending OAuth states are persisted."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    backend: Literal["sqlite", "dynamodb"] = Field("sqlite", validation_alias="TOKEN_STORE_BACKEND")
    sqlite_path: str = Field("data/connections.db", validation_alias="SQLITE_DB_PATH")
    region_name: str = Field("us-east-1", validation_alias="AWS_REGION")
    dynamodb_table_name: Optional[str] = Field(None, validation_alias="DYNAMODB_TABLE_NAME")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    app_base_url: Optional[str] = Field(
        None,
        validation_alias="APP_BASE_URL",
        description="Public base URL used to derive provider callback URLs.",
    )
    frontend_base_url: Optional[AnyHttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)

    @field_validator("app_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.rstrip("/") or None


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "DiscordSettings",
    "GoogleSettings",
    "OAuthSettings",
    "SecuritySettings",
    "SlackSettings",
    "StorageSettings",
    "get_settings",
]
