"""Read-side summary of a user's connections."""

from __future__ import annotations

from typing import List

from account_connect.models.oauth import ConnectionValidity
from account_connect.services.provider_registry import ProviderRegistry
from account_connect.services.token_lifecycle import TokenLifecycleManager
from account_connect.schemas.connection import ConnectionStatus


class ConnectionStatusReporter:
    """Turns lifecycle validity checks into :class:`ConnectionStatus` payloads.

    The reporter performs no writes; any lazy refresh triggered by an expired
    token is carried out (and persisted) by the lifecycle manager.
    """

    def __init__(
        self,
        lifecycle: TokenLifecycleManager,
        registry: ProviderRegistry,
        *,
        refresh_expired: bool = True,
    ) -> None:
        self._lifecycle = lifecycle
        self._registry = registry
        self._refresh_expired = refresh_expired

    async def report(self, user_id: str, provider_id: str) -> ConnectionStatus:
        validity = await self._lifecycle.check_validity(
            user_id, provider_id, refresh_expired=self._refresh_expired
        )
        return self._to_status(user_id, provider_id, validity)

    async def report_all(self, user_id: str) -> List[ConnectionStatus]:
        return [
            await self.report(user_id, provider_id)
            for provider_id in self._registry.supported_providers()
        ]

    @staticmethod
    def _to_status(
        user_id: str, provider_id: str, validity: ConnectionValidity
    ) -> ConnectionStatus:
        record = validity.record
        return ConnectionStatus(
            provider=provider_id,
            connected=validity.connected,
            valid=validity.valid,
            needs_reauthentication=validity.needs_reauthentication,
            email=(record.email or user_id) if record else None,
            expires_at=record.expires_at if record else None,
        )


__all__ = ["ConnectionStatusReporter"]
