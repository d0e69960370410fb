"""DynamoDB item store built on boto3."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterator

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from loguru import logger

from dynassoc.config import DynassocConfig
from dynassoc.errors import StorageBackendError, StoreReadFailure, StoreWriteFailure
from dynassoc.storage import TableSchema


def _to_dynamo_value(value: Any) -> Any:
    # TypeSerializer rejects float; DynamoDB numbers travel as Decimal.
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo_value(v) for v in value]
    return value


def _from_dynamo_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_dynamo_value(v) for v in value]
    return value


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


class DynamoDBStore:
    """Item store backed by one DynamoDB table per entity type."""

    def __init__(
        self,
        *,
        config: DynassocConfig | None = None,
        client: Any | None = None,
    ) -> None:
        self._config = config or DynassocConfig()
        if client is None:
            session = boto3.Session(region_name=self._config.dynamodb_region)
            client = session.client(
                "dynamodb",
                region_name=self._config.dynamodb_region,
                endpoint_url=self._config.dynamodb_endpoint_url,
                config=BotoConfig(
                    connect_timeout=self._config.dynamodb_request_timeout_s,
                    read_timeout=self._config.dynamodb_request_timeout_s,
                    retries={"max_attempts": self._config.dynamodb_max_attempts, "mode": "standard"},
                ),
            )
        self._client: Any = client
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()

    # --- (de)serialization ---

    def _to_item(self, item: dict[str, Any]) -> dict[str, Any]:
        return {
            name: self._serializer.serialize(_to_dynamo_value(value))
            for name, value in item.items()
            if value is not None
        }

    def _from_item(self, item: dict[str, Any]) -> dict[str, Any]:
        return {
            name: _from_dynamo_value(self._deserializer.deserialize(value))
            for name, value in item.items()
        }

    def _to_key(self, table: TableSchema, key: dict[str, Any]) -> dict[str, Any]:
        if key.get(table.hash_key) is None:
            raise StorageBackendError("key", f"missing hash key '{table.hash_key}' for {table.name}")
        out = {table.hash_key: self._serializer.serialize(key[table.hash_key])}
        if table.range_key is not None:
            if key.get(table.range_key) is None:
                raise StorageBackendError(
                    "key", f"missing range key '{table.range_key}' for {table.name}"
                )
            out[table.range_key] = self._serializer.serialize(key[table.range_key])
        return out

    # --- ItemStore ---

    def query(
        self,
        table: TableSchema,
        hash_value: str,
        *,
        range_gte: str,
        batch_size: int,
    ) -> Iterator[list[dict[str, Any]]]:
        if table.range_key is None:
            raise StorageBackendError("query", f"table {table.name} has no range key")

        req: dict[str, Any] = {
            "TableName": table.name,
            "KeyConditionExpression": "#h = :h AND #r >= :r",
            "ExpressionAttributeNames": {"#h": table.hash_key, "#r": table.range_key},
            "ExpressionAttributeValues": {
                ":h": self._serializer.serialize(hash_value),
                ":r": self._serializer.serialize(range_gte),
            },
            "ScanIndexForward": True,
            "ConsistentRead": self._config.dynamodb_consistent_read,
            "Limit": batch_size,
        }
        while True:
            try:
                resp = self._client.query(**req)
            except ClientError as err:
                raise StoreReadFailure("query", f"{table.name}/{hash_value}: {err}") from err
            items = resp.get("Items", [])
            logger.debug(f"dynamodb query {table.name}/{hash_value}: page of {len(items)}")
            if items:
                yield [self._from_item(item) for item in items]
            last = resp.get("LastEvaluatedKey")
            if not last:
                return
            req["ExclusiveStartKey"] = last

    def get_item(self, table: TableSchema, key: dict[str, Any]) -> dict[str, Any] | None:
        try:
            resp = self._client.get_item(
                TableName=table.name,
                Key=self._to_key(table, key),
                ConsistentRead=self._config.dynamodb_consistent_read,
            )
        except ClientError as err:
            raise StoreReadFailure("get_item", f"{table.name} {key}: {err}") from err
        item = resp.get("Item")
        if not item:
            return None
        return self._from_item(item)

    def put_item(self, table: TableSchema, item: dict[str, Any]) -> None:
        dynamodb_item = self._to_item(item)
        self._to_key(table, item)
        try:
            self._client.put_item(TableName=table.name, Item=dynamodb_item)
        except ClientError as err:
            raise StoreWriteFailure("put_item", f"{table.name} {table.key_of(item)}: {err}") from err

    def delete_item(self, table: TableSchema, key: dict[str, Any]) -> None:
        # DeleteItem on an absent key succeeds.
        try:
            self._client.delete_item(TableName=table.name, Key=self._to_key(table, key))
        except ClientError as err:
            raise StoreWriteFailure("delete_item", f"{table.name} {key}: {err}") from err

    def ensure_table(self, table: TableSchema) -> None:
        try:
            self._client.describe_table(TableName=table.name)
            return
        except ClientError as err:
            if _error_code(err) != "ResourceNotFoundException":
                raise StorageBackendError("describe_table", f"{table.name}: {err}") from err

        attributes = [{"AttributeName": table.hash_key, "AttributeType": "S"}]
        key_schema = [{"AttributeName": table.hash_key, "KeyType": "HASH"}]
        if table.range_key is not None:
            attributes.append({"AttributeName": table.range_key, "AttributeType": "S"})
            key_schema.append({"AttributeName": table.range_key, "KeyType": "RANGE"})

        logger.info(f"Creating DynamoDB table {table.name}")
        try:
            self._client.create_table(
                TableName=table.name,
                AttributeDefinitions=attributes,
                KeySchema=key_schema,
                BillingMode=self._config.dynamodb_billing_mode,
            )
        except ClientError as err:
            if _error_code(err) == "ResourceInUseException":
                logger.info(f"Table {table.name} already exists")
                return
            raise StorageBackendError("create_table", f"{table.name}: {err}") from err
        self._client.get_waiter("table_exists").wait(TableName=table.name)
