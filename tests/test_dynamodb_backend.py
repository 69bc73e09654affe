from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from account_connect.clients.dynamodb import DynamoDBClient
from account_connect.core.config import StorageSettings
from account_connect.core.errors import StorageUnavailableError
from account_connect.models.oauth import PendingState, TokenRecord
from account_connect.services.pending_states import PendingStateStore
from account_connect.services.token_cipher import TokenCipherService
from account_connect.services.token_store import TokenStore


class FakeTable:
    """Just enough of a boto3 Table to exercise the client."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict] = {}
        self.fail_with: Optional[Exception] = None

    def _check(self) -> None:
        if self.fail_with:
            raise self.fail_with

    def put_item(self, *, Item: dict, ConditionExpression: Any = None) -> dict:
        self._check()
        key = (Item["pk"], Item["sk"])
        if ConditionExpression is not None:
            expected = ConditionExpression.get_expression()["values"][1]
            current = self.items.get(key)
            if current is None or current.get("version") != expected:
                raise ClientError(
                    {"Error": {"Code": "ConditionalCheckFailedException", "Message": "no"}},
                    "PutItem",
                )
        self.items[key] = dict(Item)
        return {}

    def get_item(self, *, Key: dict, ConsistentRead: bool = False) -> dict:
        self._check()
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": dict(item)} if item else {}

    def delete_item(self, *, Key: dict, ReturnValues: str = "NONE") -> dict:
        self._check()
        item = self.items.pop((Key["pk"], Key["sk"]), None)
        if ReturnValues == "ALL_OLD" and item:
            return {"Attributes": item}
        return {}


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def client(table: FakeTable) -> DynamoDBClient:
    return DynamoDBClient(StorageSettings(TOKEN_STORE_BACKEND="dynamodb"), table=table)


def test_conditional_put_reports_lost_race(client: DynamoDBClient) -> None:
    client.put_item({"pk": "user#1", "sk": "oauth#gmail", "version": 2})

    assert client.put_item_if_version(
        {"pk": "user#1", "sk": "oauth#gmail", "version": 3}, expected_version=1
    ) is False
    assert client.put_item_if_version(
        {"pk": "user#1", "sk": "oauth#gmail", "version": 3}, expected_version=2
    ) is True
    assert client.get_item(partition_key="user#1", sort_key="oauth#gmail")["version"] == 3


def test_pop_item_returns_value_once(client: DynamoDBClient) -> None:
    client.put_item({"pk": "state#n", "sk": "oauth#slack", "user_id": "u"})

    assert client.pop_item(partition_key="state#n", sort_key="oauth#slack")["user_id"] == "u"
    assert client.pop_item(partition_key="state#n", sort_key="oauth#slack") is None


def test_aws_errors_become_storage_unavailable(client: DynamoDBClient, table: FakeTable) -> None:
    table.fail_with = EndpointConnectionError(endpoint_url="https://dynamodb.example")

    with pytest.raises(StorageUnavailableError):
        client.get_item(partition_key="user#1", sort_key="oauth#gmail")

    table.fail_with = ClientError(
        {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
        "PutItem",
    )
    with pytest.raises(StorageUnavailableError):
        client.put_item_if_version({"pk": "a", "sk": "b", "version": 1}, expected_version=0)


def test_token_store_runs_on_dynamodb(client: DynamoDBClient) -> None:
    store = TokenStore(client, TokenCipherService(secret="k"))
    record = TokenRecord(user_id="u", provider_id="discord", access_token="at", refresh_token="rt")

    store.put(record)

    assert store.get("u", "discord") == record


def test_table_name_is_required_without_injected_table() -> None:
    with pytest.raises(ValueError):
        DynamoDBClient(StorageSettings(TOKEN_STORE_BACKEND="dynamodb"))


def test_pending_state_item_has_numeric_ttl_attribute(
    client: DynamoDBClient, table: FakeTable
) -> None:
    pending = PendingState(nonce="n", provider_id="slack", user_id="u")

    PendingStateStore(client, ttl_seconds=600).save(pending)

    item = table.items[("state#n", "oauth#slack")]
    assert isinstance(item["expires_at"], int)
    assert item["expires_at"] == int((pending.issued_at + timedelta(seconds=600)).timestamp())
