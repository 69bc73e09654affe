"""
Token lifecycle manager, the single place where connection state changes.

    Disconnected -> Pending -> Connected(valid) -> Connected(expired) -> Disconnected

``initiate`` issues a signed, single-use state; ``complete_exchange`` turns the
callback code into a stored record; ``check_validity`` and
``get_active_token`` refresh lazily when a token has expired; ``refresh``
performs its read-modify-write inside a per-(user, provider) critical section
and writes back with a version compare-and-set; ``disconnect`` deletes.

No call here retries: each exchange or refresh is one provider request with a
terminal outcome for the caller.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Optional

from account_connect.clients.oauth_provider import OAuthProviderClient
from account_connect.clients.oauth_state import OAuthStateEncoder
from account_connect.core.config import OAuthSettings
from account_connect.core.errors import (
    MisconfiguredProviderError,
    NotConnectedError,
    RefreshFailedError,
    StateMismatchError,
    UnknownProviderError,
)
from account_connect.models.oauth import (
    AuthorizationRequest,
    ConnectionValidity,
    PendingState,
    TokenRecord,
    utcnow,
)
from account_connect.services.pending_states import PendingStateStore
from account_connect.services.provider_registry import ProviderRegistry
from account_connect.services.token_store import TokenStore
from account_connect.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Orchestrates connect, exchange, validity checks, refresh and disconnect."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        provider_client: OAuthProviderClient,
        token_store: TokenStore,
        pending_states: PendingStateStore,
        state_encoder: OAuthStateEncoder,
        oauth_settings: OAuthSettings,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._registry = registry
        self._provider = provider_client
        self._store = token_store
        self._pending = pending_states
        self._state_encoder = state_encoder
        self._settings = oauth_settings
        self._locks = locks or KeyedLock()

    # -- connect ------------------------------------------------------------

    async def initiate(
        self, provider_id: str, user_id: str, *, redirect_to: Optional[str] = None
    ) -> AuthorizationRequest:
        """Issue a state for ``user_id`` and build the consent URL."""
        config = self._registry.get_config(provider_id)
        pending = PendingState(
            nonce=uuid.uuid4().hex,
            provider_id=provider_id,
            user_id=user_id,
            redirect_to=redirect_to,
        )
        state = self._state_encoder.encode(
            {
                "nonce": pending.nonce,
                "provider": provider_id,
                "user_id": user_id,
                "redirect_to": redirect_to,
                "issued_at": pending.issued_at.isoformat(),
            }
        )
        self._pending.save(pending)
        logger.info("Starting %s connection for user %s", provider_id, user_id)
        return AuthorizationRequest(
            authorization_url=self._provider.build_authorization_url(config, state),
            state=state,
        )

    def _consume_state(self, provider_id: str, returned_state: str) -> PendingState:
        payload = self._state_encoder.decode(returned_state)
        if payload.get("provider") != provider_id:
            raise StateMismatchError("OAuth state was issued for a different provider.")
        nonce = payload.get("nonce")
        if not nonce:
            raise StateMismatchError("OAuth state is malformed.")

        pending = self._pending.consume(nonce, provider_id)
        if pending is None:
            raise StateMismatchError("OAuth state is unknown or was already used.")
        if pending.user_id != payload.get("user_id"):
            raise StateMismatchError("OAuth state does not match the issued request.")
        if utcnow() - pending.issued_at > timedelta(seconds=self._settings.state_ttl_seconds):
            raise StateMismatchError("OAuth state token has expired.")
        return pending

    async def complete_exchange(
        self, provider_id: str, code: str, returned_state: str
    ) -> TokenRecord:
        """Validate the callback state, exchange the code and store the record."""
        pending = self._consume_state(provider_id, returned_state)
        config = self._registry.get_config(provider_id)

        grant = await self._provider.exchange_authorization_code(config, code)
        profile = await self._provider.fetch_profile(config, grant)

        user_id = pending.user_id
        async with self._locks.hold((user_id, provider_id)):
            existing = self._store.get(user_id, provider_id)
            now = utcnow()
            record = TokenRecord(
                user_id=user_id,
                provider_id=provider_id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=now + timedelta(seconds=grant.expires_in) if grant.expires_in else None,
                scopes=grant.scopes,
                email=profile.email,
                account_id=profile.account_id,
                account_name=profile.display_name,
                version=existing.version + 1 if existing else 1,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._store.put(record)

        logger.info(
            "Connected %s for user %s (account=%s)",
            provider_id,
            user_id,
            profile.email or profile.account_id or "unknown",
        )
        return record

    # -- status -------------------------------------------------------------

    def _ensure_supported(self, provider_id: str) -> None:
        supported = self._registry.supported_providers()
        if provider_id not in supported:
            raise UnknownProviderError(provider_id, supported)

    @staticmethod
    def _evaluate(record: Optional[TokenRecord]) -> ConnectionValidity:
        if record is None:
            return ConnectionValidity(connected=False, valid=False, needs_reauthentication=True)
        connected = record.status != "reauth_required"
        return ConnectionValidity(
            connected=connected,
            valid=connected and not record.is_expired(),
            needs_reauthentication=record.needs_reauthentication,
            record=record,
        )

    async def check_validity(
        self, user_id: str, provider_id: str, *, refresh_expired: bool = True
    ) -> ConnectionValidity:
        """Report connection state, attempting at most one refresh if expired."""
        self._ensure_supported(provider_id)
        record = self._store.get(user_id, provider_id)
        if (
            refresh_expired
            and record is not None
            and record.status == "active"
            and record.refresh_token
            and record.is_expired()
        ):
            try:
                record = await self.refresh(user_id, provider_id)
            except NotConnectedError:
                record = None
            except RefreshFailedError as exc:
                logger.warning(
                    "Lazy refresh of %s for user %s failed (%s)", provider_id, user_id, exc.kind
                )
                record = self._store.get(user_id, provider_id)
        return self._evaluate(record)

    # -- refresh ------------------------------------------------------------

    def _flag_reauth(self, record: TokenRecord, message: str) -> None:
        flagged = record.model_copy(
            update={
                "status": "reauth_required",
                "error_message": message,
                "version": record.version + 1,
                "updated_at": utcnow(),
            }
        )
        if self._store.compare_and_put(flagged, expected_version=record.version):
            logger.warning(
                "%s connection for user %s requires re-authentication: %s",
                record.provider_id,
                record.user_id,
                message,
            )

    async def refresh(
        self, user_id: str, provider_id: str, *, force: bool = False
    ) -> TokenRecord:
        """Renew the access token of an expired connection."""
        config = self._registry.get_config(provider_id)
        async with self._locks.hold((user_id, provider_id)):
            record = self._store.get(user_id, provider_id)
            if record is None:
                raise NotConnectedError(f"{config.display_name} is not connected for this user.")
            if record.status == "reauth_required":
                raise RefreshFailedError(
                    f"{config.display_name} access was revoked or expired. Please reconnect."
                )
            # Another request may have refreshed while we waited for the lock.
            if not force and not record.is_expired():
                return record
            if not record.refresh_token:
                message = f"{config.display_name} did not grant a refresh token. Please reconnect."
                self._flag_reauth(record, message)
                raise RefreshFailedError(message)

            try:
                grant = await self._provider.refresh_token(config, record.refresh_token)
            except RefreshFailedError as exc:
                if exc.permanent:
                    self._flag_reauth(record, exc.message)
                raise

            now = utcnow()
            updated = record.model_copy(
                update={
                    "access_token": grant.access_token,
                    "refresh_token": grant.refresh_token or record.refresh_token,
                    "expires_at": now + timedelta(seconds=grant.expires_in)
                    if grant.expires_in
                    else None,
                    "status": "active",
                    "error_message": None,
                    "version": record.version + 1,
                    "updated_at": now,
                }
            )
            if not self._store.compare_and_put(updated, expected_version=record.version):
                # Lost a race with a writer in another process; theirs is newer.
                current = self._store.get(user_id, provider_id)
                if current is None:
                    raise NotConnectedError(
                        f"{config.display_name} was disconnected during refresh."
                    )
                return current

        logger.info("Refreshed %s token for user %s", provider_id, user_id)
        return updated

    async def get_active_token(self, user_id: str, provider_id: str) -> str:
        """Return a usable access token, refreshing once if it has expired."""
        self._ensure_supported(provider_id)
        record = self._store.get(user_id, provider_id)
        if record is None:
            raise NotConnectedError(f"{provider_id} is not connected for this user.")
        if record.status == "reauth_required":
            raise RefreshFailedError(f"{provider_id} access must be re-authorized.")
        if record.is_expired():
            record = await self.refresh(user_id, provider_id)
        return record.access_token

    # -- disconnect ---------------------------------------------------------

    async def disconnect(self, user_id: str, provider_id: str) -> None:
        """Delete the connection. Deleting a missing connection is not an error."""
        self._ensure_supported(provider_id)
        async with self._locks.hold((user_id, provider_id)):
            record = self._store.get(user_id, provider_id)
            self._store.delete(user_id, provider_id)
        logger.info("Disconnected %s for user %s", provider_id, user_id)

        if record is not None and (record.refresh_token or record.access_token):
            await self._revoke(record)

    async def _revoke(self, record: TokenRecord) -> None:
        try:
            config = self._registry.get_config(record.provider_id)
        except MisconfiguredProviderError:
            logger.warning(
                "Skipping %s token revocation: provider is not configured", record.provider_id
            )
            return
        revoked = await self._provider.revoke_token(
            config,
            access_token=record.access_token,
            refresh_token=record.refresh_token,
        )
        if not revoked:
            logger.warning(
                "%s did not confirm token revocation for user %s",
                record.provider_id,
                record.user_id,
            )


__all__ = ["TokenLifecycleManager"]
