try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from typing import Optional
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from account_connect import dependencies
from account_connect.clients.oauth_provider import (
    AccountProfile,
    TokenGrant,
    build_authorization_url,
)
from account_connect.core.errors import ExchangeFailedError
from account_connect.main import app
from account_connect.services.connection_status import ConnectionStatusReporter
from account_connect.services.provider_registry import ProviderRegistry
from account_connect.services.token_lifecycle import TokenLifecycleManager


class DummyProviderClient:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.codes: list[str] = []
        self.revoked: list[str] = []
        self.exchange_error: Optional[Exception] = None

    def build_authorization_url(self, config, state: str) -> str:
        self.states.append(state)
        return build_authorization_url(config, state)

    async def exchange_authorization_code(self, config, code: str) -> TokenGrant:
        self.codes.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return TokenGrant(
            access_token="access-token",
            refresh_token="refresh-token",
            expires_in=3600,
            scopes=config.scopes,
        )

    async def fetch_profile(self, config, grant: TokenGrant) -> AccountProfile:
        return AccountProfile(account_id="acct", email="ada@example.com")

    async def refresh_token(self, config, refresh_token: str) -> TokenGrant:
        raise AssertionError("refresh is not expected in route tests")

    async def revoke_token(self, config, *, access_token: str, refresh_token=None) -> bool:
        self.revoked.append(config.provider_id)
        return True


def _wire(settings, provider_client, token_store, pending_states, state_encoder, oauth_settings):
    registry = ProviderRegistry(settings)
    lifecycle = TokenLifecycleManager(
        registry=registry,
        provider_client=provider_client,
        token_store=token_store,
        pending_states=pending_states,
        state_encoder=state_encoder,
        oauth_settings=oauth_settings,
    )
    app.dependency_overrides.update(
        {
            dependencies.get_provider_registry: lambda: registry,
            dependencies.get_token_lifecycle_manager: lambda: lifecycle,
            dependencies.get_oauth_state_encoder: lambda: state_encoder,
            dependencies.get_connection_status_reporter: lambda: ConnectionStatusReporter(
                lifecycle, registry
            ),
            dependencies.get_app_settings: lambda: settings,
        }
    )


@pytest.fixture()
def route_overrides(settings, token_store, pending_states, state_encoder, oauth_settings):
    provider_client = DummyProviderClient()
    base_settings = settings.model_copy(update={"frontend_base_url": None})
    _wire(base_settings, provider_client, token_store, pending_states, state_encoder, oauth_settings)

    def use_settings(new_settings) -> None:
        _wire(new_settings, provider_client, token_store, pending_states, state_encoder, oauth_settings)

    yield provider_client, base_settings, use_settings

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


async def _start(client: httpx.AsyncClient, provider: str = "gmail", **params) -> str:
    response = await client.get(
        f"/api/connect/{provider}",
        params={"userId": "user-1", "redirect": "false", **params},
    )
    assert response.status_code == 200
    return response.json()["state"]


@pytest.mark.anyio
async def test_health() -> None:
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_providers_listing(route_overrides) -> None:
    async with _client() as client:
        response = await client.get("/api/providers")

    assert response.status_code == 200
    assert [entry["provider"] for entry in response.json()] == ["gmail", "discord", "slack"]


@pytest.mark.anyio
async def test_connect_redirects_to_consent_screen_by_default(route_overrides) -> None:
    dummy_client, _, _ = route_overrides

    async with _client() as client:
        response = await client.get("/api/connect/gmail", params={"userId": "user-1"})

    assert response.status_code == 307
    location = urlsplit(response.headers["location"])
    assert location.netloc == "accounts.google.com"
    assert parse_qs(location.query)["state"] == [dummy_client.states[-1]]


@pytest.mark.anyio
async def test_connect_returns_json_when_redirect_disabled(route_overrides) -> None:
    async with _client() as client:
        response = await client.get(
            "/api/connect/slack", params={"userId": "user-1", "redirect": "false"}
        )

    data = response.json()
    assert response.status_code == 200
    assert data["authorization_url"].startswith("https://slack.com/oauth/v2/authorize?")
    assert data["state"]


@pytest.mark.anyio
async def test_connect_requires_user_id(route_overrides) -> None:
    async with _client() as client:
        response = await client.get("/api/connect/gmail")

    assert response.status_code == 400
    assert response.json() == {
        "error": "missing_parameter",
        "message": "userId parameter is required",
    }


@pytest.mark.anyio
async def test_connect_unknown_provider(route_overrides) -> None:
    async with _client() as client:
        response = await client.get("/api/connect/myspace", params={"userId": "user-1"})

    assert response.status_code == 400
    assert response.json()["error"] == "unknown_provider"


@pytest.mark.anyio
async def test_connect_misconfigured_provider(route_overrides) -> None:
    _, settings, use_settings = route_overrides
    use_settings(
        settings.model_copy(
            update={"discord": settings.discord.model_copy(update={"client_id": None})}
        )
    )

    async with _client() as client:
        response = await client.get("/api/connect/discord", params={"userId": "user-1"})

    assert response.status_code == 500
    assert response.json()["error"] == "misconfigured_provider"


@pytest.mark.anyio
async def test_full_connect_status_disconnect_flow(route_overrides) -> None:
    dummy_client, _, _ = route_overrides

    async with _client() as client:
        state = await _start(client)
        callback = await client.get(
            "/api/callback/gmail", params={"state": state, "code": "oauth-code"}
        )
        status = await client.get("/api/status/gmail", params={"userId": "user-1"})
        removed = await client.delete("/api/disconnect/gmail", params={"userId": "user-1"})
        after = await client.get("/api/status/gmail", params={"userId": "user-1"})

    assert callback.status_code == 200
    assert callback.json() == {
        "status": "connected",
        "provider": "gmail",
        "email": "ada@example.com",
        "redirect_to": None,
    }
    assert dummy_client.codes == ["oauth-code"]

    body = status.json()
    assert body["connected"] is True
    assert body["valid"] is True
    assert body["needsReauthentication"] is False
    assert body["email"] == "ada@example.com"
    assert body["expiresAt"]

    assert removed.json() == {
        "success": True,
        "message": "Gmail connection removed for user-1",
    }
    assert dummy_client.revoked == ["gmail"]
    assert after.json()["connected"] is False
    assert after.json()["needsReauthentication"] is True


@pytest.mark.anyio
async def test_disconnect_via_post_is_idempotent(route_overrides) -> None:
    async with _client() as client:
        first = await client.post("/api/disconnect/slack", params={"userId": "user-1"})
        second = await client.post("/api/disconnect/slack", params={"userId": "user-1"})

    assert first.status_code == second.status_code == 200
    assert second.json()["success"] is True


@pytest.mark.anyio
async def test_post_callback_accepts_json_payload(route_overrides) -> None:
    async with _client() as client:
        state = await _start(client, "discord")
        response = await client.post(
            "/api/callback/discord", json={"state": state, "code": "oauth-code"}
        )

    assert response.status_code == 200
    assert response.json()["provider"] == "discord"


@pytest.mark.anyio
async def test_callback_with_forged_state_is_rejected(route_overrides) -> None:
    dummy_client, _, _ = route_overrides

    async with _client() as client:
        response = await client.get(
            "/api/callback/gmail", params={"state": "Zm9yZ2Vk", "code": "oauth-code"}
        )

    assert response.status_code == 400
    assert response.json()["error"] == "state_mismatch"
    assert dummy_client.codes == []


@pytest.mark.anyio
async def test_callback_replay_is_rejected(route_overrides) -> None:
    async with _client() as client:
        state = await _start(client)
        await client.get("/api/callback/gmail", params={"state": state, "code": "c1"})
        replay = await client.get("/api/callback/gmail", params={"state": state, "code": "c2"})

    assert replay.status_code == 400
    assert replay.json()["error"] == "state_mismatch"


@pytest.mark.anyio
async def test_callback_denied_consent(route_overrides) -> None:
    async with _client() as client:
        response = await client.get(
            "/api/callback/gmail", params={"error": "access_denied", "state": "x"}
        )

    assert response.status_code == 400
    assert response.json()["error"] == "authorization_denied"


@pytest.mark.anyio
async def test_callback_exchange_failure_is_500(route_overrides) -> None:
    dummy_client, _, _ = route_overrides
    dummy_client.exchange_error = ExchangeFailedError("Gmail rejected the authorization code.")

    async with _client() as client:
        state = await _start(client)
        response = await client.get(
            "/api/callback/gmail", params={"state": state, "code": "oauth-code"}
        )
        status = await client.get("/api/status/gmail", params={"userId": "user-1"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "exchange_failed",
        "message": "Gmail rejected the authorization code.",
    }
    assert status.json()["connected"] is False


@pytest.mark.anyio
async def test_browser_callback_redirects_to_requested_page(route_overrides) -> None:
    _, settings, use_settings = route_overrides
    use_settings(settings.model_copy(update={"frontend_base_url": "https://app.example.com/"}))

    async with _client() as client:
        state = await _start(client, redirect_to="https://app.example.com/settings?tab=apps")
        response = await client.get(
            "/api/callback/gmail",
            params={"state": state, "code": "oauth-code"},
            headers={"accept": "text/html"},
        )

    assert response.status_code == 307
    location = urlsplit(response.headers["location"])
    assert location.netloc == "app.example.com"
    assert parse_qs(location.query) == {
        "tab": ["apps"],
        "connected": ["gmail"],
        "email": ["ada@example.com"],
    }


@pytest.mark.anyio
async def test_browser_callback_failure_redirects_to_frontend(route_overrides) -> None:
    _, settings, use_settings = route_overrides
    use_settings(
        settings.model_copy(update={"frontend_base_url": "https://app.example.com/oauth"})
    )

    async with _client() as client:
        response = await client.get(
            "/api/callback/slack",
            params={"error": "access_denied", "redirect": "true"},
        )

    assert response.status_code == 307
    location = urlsplit(response.headers["location"])
    assert f"{location.netloc}{location.path}" == "app.example.com/oauth"
    assert parse_qs(location.query)["error"] == ["authorization_denied"]


@pytest.mark.anyio
async def test_callback_without_frontend_returns_json_for_browsers(route_overrides) -> None:
    async with _client() as client:
        state = await _start(client)
        response = await client.get(
            "/api/callback/gmail",
            params={"state": state, "code": "oauth-code"},
            headers={"accept": "text/html"},
        )

    assert response.status_code == 200
    assert response.json()["status"] == "connected"


@pytest.mark.anyio
async def test_status_requires_user_id(route_overrides) -> None:
    async with _client() as client:
        response = await client.get("/api/status/gmail")

    assert response.status_code == 400
    assert response.json()["error"] == "missing_parameter"


@pytest.mark.anyio
async def test_connections_lists_every_provider(route_overrides) -> None:
    async with _client() as client:
        state = await _start(client, "discord")
        await client.get("/api/callback/discord", params={"state": state, "code": "c"})
        response = await client.get("/api/connections", params={"userId": "user-1"})

    by_provider = {entry["provider"]: entry for entry in response.json()}
    assert set(by_provider) == {"gmail", "discord", "slack"}
    assert by_provider["discord"]["connected"] is True
    assert by_provider["gmail"]["connected"] is False


@pytest.mark.anyio
async def test_connect_rejects_redirect_outside_frontend(route_overrides) -> None:
    dummy_client, settings, use_settings = route_overrides
    use_settings(settings.model_copy(update={"frontend_base_url": "https://app.example.com/"}))

    async with _client() as client:
        response = await client.get(
            "/api/connect/gmail",
            params={"userId": "user-1", "redirect_to": "https://evil.example.net/steal"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert dummy_client.states == []


@pytest.mark.anyio
async def test_connect_rejects_redirect_without_frontend(route_overrides) -> None:
    async with _client() as client:
        response = await client.get(
            "/api/connect/gmail",
            params={"userId": "user-1", "redirect_to": "https://app.example.com/settings"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


@pytest.mark.anyio
async def test_malformed_callback_body_uses_error_shape(route_overrides) -> None:
    dummy_client, _, _ = route_overrides

    async with _client() as client:
        response = await client.post("/api/callback/gmail", json={"code": "", "state": "x"})

    assert response.status_code == 400
    body = response.json()
    assert set(body) == {"error", "message"}
    assert body["error"] == "invalid_request"
    assert "code" in body["message"]
    assert dummy_client.codes == []


@pytest.mark.anyio
async def test_malformed_query_flag_uses_error_shape(route_overrides) -> None:
    async with _client() as client:
        response = await client.get(
            "/api/connect/gmail", params={"userId": "user-1", "redirect": "notabool"}
        )

    assert response.status_code == 400
    assert response.json() == {
        "error": "invalid_request",
        "message": "Invalid value for: redirect.",
    }
    assert "notabool" not in response.text


def test_error_responses_are_documented() -> None:
    responses = app.openapi()["paths"]["/api/status/{provider}"]["get"]["responses"]

    for status_code in ("400", "500"):
        schema = responses[status_code]["content"]["application/json"]["schema"]
        assert schema["$ref"].endswith("/ErrorResponse")
