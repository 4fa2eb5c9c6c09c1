"""DynamoDB access for rules, bookings, payment transactions and guest sessions.

Single-item reads and writes go through the boto3 resource API. Writes that
must land together (booking + reference, payment + booking, default-rule
swaps) are built as low-level ``TransactWriteItems`` entries with ``put_op``
and ``update_op`` and committed with ``transact_write``.

Conditional writes report a failed condition as a return value (False/None)
so callers can map it to a domain conflict; every other client error
propagates.
"""

import datetime as dt
import os
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from pydantic import BaseModel

from ..utils.logging import get_logger

logger = get_logger(__name__)

_service: "DynamoDBService | None" = None
_serializer = TypeSerializer()

CONDITION_FAILED = "ConditionalCheckFailedException"
TRANSACTION_CANCELLED = "TransactionCanceledException"


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Shared service; ``environment`` only matters on the first call."""
    global _service
    if _service is None:
        _service = DynamoDBService(environment)
    return _service


def reset_dynamodb_service() -> None:
    """Drop the shared service so the next call builds one inside mock_aws."""
    global _service
    _service = None


def to_attribute(value: Any) -> Any:
    """Convert one Python value to its stored form."""
    if isinstance(value, BaseModel):
        return to_item(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    # bool before int: bool is an int subclass
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_attribute(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_attribute(v) for v in value]
    return value


def to_item(data: BaseModel | dict[str, Any]) -> dict[str, Any]:
    """Stored form of a model or dict, without None attributes.

    GSI key attributes may be absent but never NULL, so None is dropped rather
    than written.
    """
    raw = data.model_dump() if isinstance(data, BaseModel) else data
    return {k: to_attribute(v) for k, v in raw.items() if v is not None}


def serialize(values: dict[str, Any]) -> dict[str, Any]:
    """Low-level AttributeValue maps for client calls."""
    return {k: _serializer.serialize(to_attribute(v)) for k, v in values.items()}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _expression_args(
    condition: str | None,
    names: dict[str, str] | None,
    values: dict[str, Any] | None,
    encode: Callable[[dict[str, Any]], dict[str, Any]],
) -> dict[str, Any]:
    args: dict[str, Any] = {}
    if condition:
        args["ConditionExpression"] = condition
    if names:
        args["ExpressionAttributeNames"] = names
    if values:
        args["ExpressionAttributeValues"] = encode(values)
    return args


def _plain(values: dict[str, Any]) -> dict[str, Any]:
    return {k: to_attribute(v) for k, v in values.items()}


class DynamoDBService:
    """Table access with environment-prefixed names.

    Table names are ``<prefix>-<table>``; the prefix comes from
    DYNAMODB_TABLE_PREFIX and defaults to ``staybroker-<environment>``.
    """

    def __init__(self, environment: str | None = None) -> None:
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        self.name_prefix = os.getenv("DYNAMODB_TABLE_PREFIX", f"staybroker-{self.environment}")
        self._resource = boto3.resource("dynamodb")
        self._client = boto3.client("dynamodb")

    def _table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        return self._resource.Table(self._table_name(table))

    # Single-item operations

    def get_item(
        self, table: str, key: dict[str, Any], consistent_read: bool = True
    ) -> dict[str, Any] | None:
        response = self._table(table).get_item(Key=key, ConsistentRead=consistent_read)
        item: dict[str, Any] | None = response.get("Item")
        return item

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> bool:
        """Write a whole item.

        Returns:
            False if the condition failed
        """
        args = _expression_args(
            condition_expression,
            expression_attribute_names,
            expression_attribute_values,
            _plain,
        )
        try:
            self._table(table).put_item(Item=item, **args)
        except ClientError as e:
            if _error_code(e) == CONDITION_FAILED:
                return False
            raise
        return True

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression.

        Returns:
            The item after the update, or None if the condition failed
        """
        args = _expression_args(
            condition_expression,
            expression_attribute_names,
            expression_attribute_values,
            _plain,
        )
        try:
            response = self._table(table).update_item(
                Key=key,
                UpdateExpression=update_expression,
                ReturnValues="ALL_NEW",
                **args,
            )
        except ClientError as e:
            if _error_code(e) == CONDITION_FAILED:
                return None
            raise
        attrs: dict[str, Any] | None = response.get("Attributes")
        return attrs

    # Multi-item reads

    def _collect(self, read: Callable[..., dict[str, Any]], **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            page = read(**kwargs)
            items.extend(page.get("Items", []))
            if "LastEvaluatedKey" not in page:
                return items
            kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]

    def query_by_gsi(
        self,
        table: str,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
    ) -> list[dict[str, Any]]:
        """All items of one GSI partition, following pagination."""
        return self._collect(
            self._table(table).query,
            IndexName=index_name,
            KeyConditionExpression=Key(partition_key_name).eq(partition_key_value),
        )

    def scan(self, table: str, filter_expression: Any | None = None) -> list[dict[str, Any]]:
        """Consistent scan of a small table, such as the markup rules."""
        kwargs: dict[str, Any] = {"ConsistentRead": True}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        return self._collect(self._table(table).scan, **kwargs)

    # Transactions

    def transact_write(self, items: list[dict[str, Any]]) -> bool:
        """Commit ``put_op``/``update_op`` entries atomically.

        Returns:
            False if any condition failed or the transaction conflicted
        """
        try:
            self._client.transact_write_items(TransactItems=items)  # type: ignore[arg-type]
        except ClientError as e:
            if _error_code(e) != TRANSACTION_CANCELLED:
                raise
            reasons = [r.get("Code", "None") for r in e.response.get("CancellationReasons", [])]
            logger.warning("Transaction of %d items cancelled: %s", len(items), reasons)
            return False
        return True

    def put_op(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        op: dict[str, Any] = {"TableName": self._table_name(table), "Item": serialize(item)}
        op.update(
            _expression_args(
                condition_expression,
                expression_attribute_names,
                expression_attribute_values,
                serialize,
            )
        )
        return {"Put": op}

    def update_op(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any] | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        op: dict[str, Any] = {
            "TableName": self._table_name(table),
            "Key": serialize(key),
            "UpdateExpression": update_expression,
        }
        op.update(
            _expression_args(
                condition_expression,
                expression_attribute_names,
                expression_attribute_values,
                serialize,
            )
        )
        return {"Update": op}
