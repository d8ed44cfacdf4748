"""
DynamoDB implementation of the engine port.

Wraps one shared low-level boto3 client. boto3 clients are thread-safe
and blocking, so each call runs in a worker thread via `asyncio.to_thread`;
no state is kept between calls other than the client itself.

Typed conditions are compiled into expression strings with `#n`/`:v`
placeholders so attribute names never collide with reserved words.
"""

import asyncio
import logging
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from tablestore.core.errors import (
    ConditionFailedError,
    EngineError,
    TableStoreError,
    TransactionConflictError,
    TransientEngineError,
    ValidationError,
)
from tablestore.db.engine import (
    BatchGetResponse,
    BatchWriteResponse,
    Item,
    QueryPage,
    QueryRequest,
    TransactConditionCheck,
    TransactDelete,
    TransactOperation,
    TransactPut,
    TransactUpdate,
)
from tablestore.domain.conditions import Condition, IfNotExists, ItemChanges, Op, SortCondition
from tablestore.domain.keys import StoreKey

logger = logging.getLogger(__name__)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()

# Error codes that are safe to retry with backoff
TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
        "TransactionConflictException",
        "TransactionInProgressException",
    }
)

# Transaction cancellation reasons that mean "retry later"
_TRANSIENT_CANCELLATION_REASONS = frozenset(
    {"TransactionConflict", "ThrottlingError", "ProvisionedThroughputExceeded"}
)


# ============================================================================
# Value conversion
# ============================================================================


def _to_dynamo(value: Any) -> Any:
    """Convert Python values into types TypeSerializer accepts (floats become Decimal)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    if isinstance(value, set):
        return {_from_dynamo(v) for v in value}
    return value


def serialize_item(item: Item) -> dict[str, Any]:
    return {name: _serializer.serialize(_to_dynamo(value)) for name, value in item.items()}


def deserialize_item(item: dict[str, Any]) -> Item:
    return {name: _from_dynamo(_deserializer.deserialize(value)) for name, value in item.items()}


def serialize_key(key: StoreKey) -> dict[str, Any]:
    return serialize_item(key.to_item())


# ============================================================================
# Expressions
# ============================================================================


class ExpressionBuilder:
    """Accumulates attribute name/value placeholders for one request."""

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}
        self._placeholders: dict[str, str] = {}

    def name(self, attribute: str) -> str:
        if attribute not in self._placeholders:
            placeholder = f"#n{len(self._placeholders)}"
            self._placeholders[attribute] = placeholder
            self.names[placeholder] = attribute
        return self._placeholders[attribute]

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = _serializer.serialize(_to_dynamo(value))
        return placeholder

    def _compare(self, name: str, op: Op, values: tuple[Any, ...]) -> str:
        if op is Op.EXISTS:
            return f"attribute_exists({name})"
        if op is Op.NOT_EXISTS:
            return f"attribute_not_exists({name})"
        if op is Op.BEGINS_WITH:
            return f"begins_with({name}, {self.value(values[0])})"
        if op is Op.BETWEEN:
            return f"{name} BETWEEN {self.value(values[0])} AND {self.value(values[1])}"
        return f"{name} {op.value} {self.value(values[0])}"

    def condition(self, conditions: Sequence[Condition]) -> str | None:
        if not conditions:
            return None
        return " AND ".join(
            self._compare(self.name(cond.attribute), cond.op, cond.values) for cond in conditions
        )

    def key_condition(
        self,
        partition_attr: str,
        partition_value: str,
        sort_attr: str | None,
        sort_condition: SortCondition | None,
    ) -> str:
        expression = f"{self.name(partition_attr)} = {self.value(partition_value)}"
        if sort_condition is not None:
            if sort_attr is None:
                raise ValidationError("Sort condition given for an index without a sort key")
            sort_name = self.name(sort_attr)
            sort_expr = self._compare(sort_name, sort_condition.op, sort_condition.values)
            expression = f"{expression} AND {sort_expr}"
        return expression

    def update(self, changes: ItemChanges) -> str:
        if changes.is_empty():
            raise ValidationError("Update must change at least one attribute")
        clauses = []
        if changes.set:
            parts = []
            for attribute, value in changes.set.items():
                name = self.name(attribute)
                if isinstance(value, IfNotExists):
                    parts.append(f"{name} = if_not_exists({name}, {self.value(value.value)})")
                else:
                    parts.append(f"{name} = {self.value(value)}")
            clauses.append("SET " + ", ".join(parts))
        if changes.remove:
            clauses.append("REMOVE " + ", ".join(self.name(a) for a in changes.remove))
        if changes.add:
            clauses.append(
                "ADD "
                + ", ".join(f"{self.name(a)} {self.value(d)}" for a, d in changes.add.items())
            )
        return " ".join(clauses)

    def apply(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            params["ExpressionAttributeNames"] = self.names
        if self.values:
            params["ExpressionAttributeValues"] = self.values
        return params


# ============================================================================
# Error translation
# ============================================================================


def translate_client_error(error: ClientError, operation: str) -> TableStoreError:
    """Map a botocore ClientError onto the package's error taxonomy."""
    err = error.response.get("Error", {})
    code = err.get("Code", "")
    message = err.get("Message") or str(error)
    details = {"operation": operation, "code": code}

    if code == "ConditionalCheckFailedException":
        old_item = error.response.get("Item")
        return ConditionFailedError(
            message, details=details, item=deserialize_item(old_item) if old_item else None
        )

    if code == "TransactionCanceledException":
        reasons = [
            reason.get("Code") if reason.get("Code") not in (None, "None") else None
            for reason in error.response.get("CancellationReasons", [])
        ]
        if "ConditionalCheckFailed" in reasons:
            return TransactionConflictError(message, reasons=reasons, details=details)
        if "ValidationError" in reasons:
            return ValidationError(message, details={**details, "reasons": reasons})
        if any(reason in _TRANSIENT_CANCELLATION_REASONS for reason in reasons):
            return TransientEngineError(message, details={**details, "reasons": reasons})
        return EngineError(message, details={**details, "reasons": reasons})

    if code in TRANSIENT_ERROR_CODES:
        return TransientEngineError(message, details=details)
    if code == "ValidationException":
        return ValidationError(message, details=details)
    return EngineError(message, details=details)


class DynamoDBEngine:
    """
    Engine backed by a DynamoDB table.

    Args:
        client: boto3 DynamoDB client (shared, process-wide)
        table_name: Physical table name
    """

    def __init__(self, client: Any, table_name: str):
        self._client = client
        self.table_name = table_name

    async def _call(self, operation: str, **params: Any) -> dict[str, Any]:
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, **params)
        except ClientError as e:
            translated = translate_client_error(e, operation)
            if type(translated) is EngineError:
                logger.error(
                    f"DynamoDB {operation} failed: {translated.message}",
                    extra={"operation": operation, "code": translated.details.get("code")},
                )
            raise translated from e
        except (BotoConnectionError, HTTPClientError) as e:
            raise TransientEngineError(
                f"DynamoDB {operation} could not reach the endpoint",
                details={"operation": operation, "error": str(e)},
            ) from e
        except BotoCoreError as e:
            logger.error(f"DynamoDB {operation} failed: {e}", exc_info=True)
            raise EngineError(
                f"DynamoDB {operation} failed", details={"operation": operation, "error": str(e)}
            ) from e

    # -------------------------------------------------------------------
    # Single-item operations
    # -------------------------------------------------------------------

    async def get_item(self, key: StoreKey, projection: Sequence[str] | None = None) -> Item | None:
        params: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": serialize_key(key),
            "ConsistentRead": True,
        }
        if projection:
            builder = ExpressionBuilder()
            params["ProjectionExpression"] = ", ".join(builder.name(a) for a in projection)
            builder.apply(params)
        response = await self._call("get_item", **params)
        item = response.get("Item")
        return deserialize_item(item) if item else None

    async def put_item(self, item: Item, condition: Sequence[Condition] = ()) -> None:
        params: dict[str, Any] = {"TableName": self.table_name, "Item": serialize_item(item)}
        self._add_condition(params, condition)
        await self._call("put_item", **params)

    async def update_item(
        self, key: StoreKey, changes: ItemChanges, condition: Sequence[Condition] = ()
    ) -> Item:
        builder = ExpressionBuilder()
        params: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": serialize_key(key),
            "UpdateExpression": builder.update(changes),
            "ReturnValues": "ALL_NEW",
        }
        self._add_condition(params, condition, builder)
        response = await self._call("update_item", **params)
        return deserialize_item(response.get("Attributes", {}))

    async def delete_item(self, key: StoreKey, condition: Sequence[Condition] = ()) -> None:
        params: dict[str, Any] = {"TableName": self.table_name, "Key": serialize_key(key)}
        self._add_condition(params, condition)
        await self._call("delete_item", **params)

    # -------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------

    async def query(self, request: QueryRequest) -> QueryPage:
        builder = ExpressionBuilder()
        params: dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": builder.key_condition(
                request.partition_attr,
                request.partition_value,
                request.sort_attr,
                request.sort_condition,
            ),
            "ScanIndexForward": request.ascending,
        }
        if request.index_name:
            params["IndexName"] = request.index_name
        else:
            params["ConsistentRead"] = True
        filter_expression = builder.condition(request.filters)
        if filter_expression:
            params["FilterExpression"] = filter_expression
        if request.limit is not None:
            params["Limit"] = request.limit
        if request.exclusive_start_key:
            params["ExclusiveStartKey"] = serialize_item(request.exclusive_start_key)
        if request.select_count:
            params["Select"] = "COUNT"
        builder.apply(params)

        response = await self._call("query", **params)
        last_key = response.get("LastEvaluatedKey")
        return QueryPage(
            items=[deserialize_item(item) for item in response.get("Items", [])],
            count=response.get("Count", 0),
            scanned_count=response.get("ScannedCount", 0),
            last_evaluated_key=deserialize_item(last_key) if last_key else None,
        )

    # -------------------------------------------------------------------
    # Batch operations
    # -------------------------------------------------------------------

    async def batch_get_item(self, keys: Sequence[StoreKey]) -> BatchGetResponse:
        response = await self._call(
            "batch_get_item",
            RequestItems={
                self.table_name: {
                    "Keys": [serialize_key(key) for key in keys],
                    "ConsistentRead": True,
                }
            },
        )
        items = response.get("Responses", {}).get(self.table_name, [])
        unprocessed = response.get("UnprocessedKeys", {}).get(self.table_name, {}).get("Keys", [])
        return BatchGetResponse(
            items=[deserialize_item(item) for item in items],
            unprocessed_keys=[StoreKey.from_item(deserialize_item(key)) for key in unprocessed],
        )

    async def batch_write_item(self, items: Sequence[Item]) -> BatchWriteResponse:
        response = await self._call(
            "batch_write_item",
            RequestItems={
                self.table_name: [{"PutRequest": {"Item": serialize_item(item)}} for item in items]
            },
        )
        unprocessed = response.get("UnprocessedItems", {}).get(self.table_name, [])
        return BatchWriteResponse(
            unprocessed_items=[
                deserialize_item(request["PutRequest"]["Item"])
                for request in unprocessed
                if "PutRequest" in request
            ]
        )

    async def transact_write_items(self, operations: Sequence[TransactOperation]) -> None:
        await self._call(
            "transact_write_items",
            TransactItems=[self._transact_item(op) for op in operations],
        )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _add_condition(
        self,
        params: dict[str, Any],
        condition: Sequence[Condition],
        builder: ExpressionBuilder | None = None,
    ) -> dict[str, Any]:
        builder = builder or ExpressionBuilder()
        expression = builder.condition(condition)
        if expression:
            params["ConditionExpression"] = expression
            params["ReturnValuesOnConditionCheckFailure"] = "ALL_OLD"
        return builder.apply(params)

    def _transact_item(self, op: TransactOperation) -> dict[str, Any]:
        params: dict[str, Any] = {"TableName": self.table_name}
        if isinstance(op, TransactPut):
            params["Item"] = serialize_item(op.item)
            return {"Put": self._add_condition(params, op.condition)}
        params["Key"] = serialize_key(op.key)
        if isinstance(op, TransactUpdate):
            builder = ExpressionBuilder()
            params["UpdateExpression"] = builder.update(op.changes)
            return {"Update": self._add_condition(params, op.condition, builder)}
        if isinstance(op, TransactDelete):
            return {"Delete": self._add_condition(params, op.condition)}
        if isinstance(op, TransactConditionCheck):
            if not op.condition:
                raise ValidationError("Condition check requires a condition")
            return {"ConditionCheck": self._add_condition(params, op.condition)}
        raise ValidationError(f"Unsupported transaction operation: {type(op).__name__}")
