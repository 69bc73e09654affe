"""
Token store: persists one encrypted token record per (user, provider).

Records are serialized to plain items keyed ``user#<user_id>`` /
``oauth#<provider>`` and re-hydrated on every read, so callers always hold
their own copy.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from account_connect.models.oauth import TokenRecord, utcnow
from account_connect.services.token_cipher import TokenCipherService, TokenDecryptionError

logger = logging.getLogger(__name__)


class RecordBackend(Protocol):
    """Item interface shared by :class:`SQLiteStore` and :class:`DynamoDBClient`."""

    def put_item(self, item: Dict[str, Any]) -> None: ...

    def put_item_if_version(self, item: Dict[str, Any], *, expected_version: int) -> bool: ...

    def get_item(self, *, partition_key: str, sort_key: str) -> Optional[Dict[str, Any]]: ...

    def delete_item(self, *, partition_key: str, sort_key: str) -> None: ...

    def pop_item(self, *, partition_key: str, sort_key: str) -> Optional[Dict[str, Any]]: ...

    def purge_expired(self, *, partition_prefix: str, now_epoch: int) -> int: ...


def _record_key(user_id: str, provider_id: str) -> tuple[str, str]:
    return f"user#{user_id}", f"oauth#{provider_id}"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TokenStore:
    """Owns persisted :class:`TokenRecord` objects."""

    def __init__(self, backend: RecordBackend, cipher: TokenCipherService) -> None:
        self._backend = backend
        self._cipher = cipher

    def get(self, user_id: str, provider_id: str) -> Optional[TokenRecord]:
        partition_key, sort_key = _record_key(user_id, provider_id)
        item = self._backend.get_item(partition_key=partition_key, sort_key=sort_key)
        if not item:
            return None
        return self._from_item(item)

    def put(self, record: TokenRecord) -> None:
        """Insert or wholly replace the record for its (user, provider)."""
        self._backend.put_item(self._to_item(record))

    def compare_and_put(self, record: TokenRecord, *, expected_version: int) -> bool:
        """Replace the stored record only if nobody wrote it since ``expected_version``."""
        return self._backend.put_item_if_version(
            self._to_item(record), expected_version=expected_version
        )

    def delete(self, user_id: str, provider_id: str) -> None:
        partition_key, sort_key = _record_key(user_id, provider_id)
        self._backend.delete_item(partition_key=partition_key, sort_key=sort_key)

    def _to_item(self, record: TokenRecord) -> Dict[str, Any]:
        partition_key, sort_key = _record_key(record.user_id, record.provider_id)
        return {
            "pk": partition_key,
            "sk": sort_key,
            "user_id": record.user_id,
            "provider": record.provider_id,
            "access_token_encrypted": self._cipher.encrypt(record.access_token),
            "refresh_token_encrypted": self._cipher.encrypt_optional(record.refresh_token),
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            "scopes": list(record.scopes),
            "email": record.email,
            "account_id": record.account_id,
            "account_name": record.account_name,
            "status": record.status,
            "error_message": record.error_message,
            "version": record.version,
            "created_at": record.created_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
        }

    def _from_item(self, item: Dict[str, Any]) -> TokenRecord:
        status = item.get("status") or "active"
        error_message = item.get("error_message")
        try:
            access_token = self._cipher.decrypt(item["access_token_encrypted"])
            refresh_token = self._cipher.decrypt_optional(item.get("refresh_token_encrypted"))
        except (KeyError, TokenDecryptionError):
            logger.error(
                "Stored %s credentials for user %s could not be decrypted; "
                "was TOKEN_ENCRYPTION_SECRET rotated?",
                item.get("provider"),
                item.get("user_id"),
            )
            access_token, refresh_token = "", None
            status = "reauth_required"
            error_message = "Stored credentials could not be decrypted."

        return TokenRecord(
            user_id=item["user_id"],
            provider_id=item["provider"],
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_parse_datetime(item.get("expires_at")),
            scopes=tuple(item.get("scopes") or ()),
            email=item.get("email"),
            account_id=item.get("account_id"),
            account_name=item.get("account_name"),
            status=status,
            error_message=error_message,
            version=int(item.get("version", 1)),
            created_at=_parse_datetime(item.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(item.get("updated_at")) or utcnow(),
        )


__all__ = ["RecordBackend", "TokenStore"]
