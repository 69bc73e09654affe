"""
DynamoDB record storage for token records and pending OAuth states.

Exposes the same item interface as :class:`SQLiteStore` so the token store can
run against either backend.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from account_connect.core.config import StorageSettings
from account_connect.core.errors import StorageUnavailableError


class DynamoDBClient:
    """CRUD operations on a single (pk, sk) table."""

    def __init__(self, settings: StorageSettings, *, table: Any = None) -> None:
        self._settings = settings
        if table is None:
            if not settings.dynamodb_table_name:
                raise ValueError("DYNAMODB_TABLE_NAME must be set for the dynamodb backend.")
            resource = boto3.resource("dynamodb", region_name=settings.region_name)
            table = resource.Table(settings.dynamodb_table_name)
        self._table = table

    def put_item(self, item: Dict[str, Any]) -> None:
        """Put an item in the DynamoDB table."""
        try:
            self._table.put_item(Item=item)
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc

    def put_item_if_version(self, item: Dict[str, Any], *, expected_version: int) -> bool:
        """Conditional put; returns False when another writer got there first."""
        try:
            self._table.put_item(
                Item=item,
                ConditionExpression=Attr("version").eq(expected_version),
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise StorageUnavailableError("Token storage is unavailable.") from exc
        except BotoCoreError as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc
        return True

    def get_item(self, *, partition_key: str, sort_key: str) -> Optional[Dict[str, Any]]:
        """Retrieve an item using its key."""
        try:
            response = self._table.get_item(
                Key={"pk": partition_key, "sk": sort_key},
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc
        return response.get("Item")

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        try:
            self._table.delete_item(Key={"pk": partition_key, "sk": sort_key})
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc

    def pop_item(self, *, partition_key: str, sort_key: str) -> Optional[Dict[str, Any]]:
        """Delete an item and return what was there, atomically."""
        try:
            response = self._table.delete_item(
                Key={"pk": partition_key, "sk": sort_key},
                ReturnValues="ALL_OLD",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc
        return response.get("Attributes")

    def purge_expired(self, *, partition_prefix: str, now_epoch: int) -> int:
        """Expired rows are removed by the table's TTL on ``expires_at``."""
        return 0


__all__ = ["DynamoDBClient"]
