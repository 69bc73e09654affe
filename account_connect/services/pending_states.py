"""Single-use server-side records for OAuth states we have issued."""

from __future__ import annotations

import logging
from typing import Optional

from account_connect.models.oauth import PendingState, utcnow
from account_connect.services.token_store import RecordBackend

logger = logging.getLogger(__name__)

STATE_PARTITION_PREFIX = "state#"


class PendingStateStore:
    """Remembers issued states until their callback consumes them.

    Every row carries an epoch ``expires_at``. Abandoned flows are swept from
    SQLite on each save; on DynamoDB the table's TTL setting on ``expires_at``
    removes them.
    """

    def __init__(self, backend: RecordBackend, *, ttl_seconds: int = 900) -> None:
        self._backend = backend
        self._ttl_seconds = ttl_seconds

    def save(self, pending: PendingState) -> None:
        self._backend.put_item(pending.to_item(self._ttl_seconds))
        self.purge_expired()

    def purge_expired(self) -> int:
        removed = self._backend.purge_expired(
            partition_prefix=STATE_PARTITION_PREFIX,
            now_epoch=int(utcnow().timestamp()),
        )
        if removed:
            logger.debug("Purged %d expired OAuth state(s)", removed)
        return removed

    def consume(self, nonce: str, provider_id: str) -> Optional[PendingState]:
        """Remove and return the pending state; a second call returns None."""
        item = self._backend.pop_item(
            partition_key=f"{STATE_PARTITION_PREFIX}{nonce}",
            sort_key=f"oauth#{provider_id}",
        )
        if not item:
            return None
        return PendingState.model_validate(
            {key: value for key, value in item.items() if key not in ("pk", "sk", "expires_at")}
        )


__all__ = ["PendingStateStore"]
