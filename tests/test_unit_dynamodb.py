"""Tests for the DynamoDB engine: request building and error translation."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from tablestore.core.errors import (
    ConditionFailedError,
    EngineError,
    TransactionConflictError,
    TransientEngineError,
    ValidationError,
)
from tablestore.db.dynamodb import (
    DynamoDBEngine,
    ExpressionBuilder,
    deserialize_item,
    serialize_item,
    translate_client_error,
)
from tablestore.db.engine import QueryRequest, TransactConditionCheck, TransactPut, TransactUpdate
from tablestore.domain.conditions import (
    IfNotExists,
    ItemChanges,
    attribute_not_exists,
    eq,
    gte,
    sort_begins_with,
)
from tablestore.domain.keys import StoreKey

TABLE = "app-table"
KEY = StoreKey("USER#u1", "USER#u1")


def _client_error(code: str, operation: str = "PutItem", **extra) -> ClientError:
    response = {"Error": {"Code": code, "Message": f"{code} happened"}, **extra}
    return ClientError(response, operation)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def dynamo(client: MagicMock) -> DynamoDBEngine:
    return DynamoDBEngine(client, TABLE)


class TestSerialization:
    def test_numbers_round_trip_as_int_and_float(self):
        item = {"PK": "p", "balance": 10, "score": 0.25, "flag": True, "tags": ["a", 1]}
        serialized = serialize_item(item)
        assert serialized["balance"] == {"N": "10"}
        assert serialized["score"] == {"N": "0.25"}
        assert serialized["flag"] == {"BOOL": True}
        assert deserialize_item(serialized) == item

    def test_decimal_integral_values_become_int(self):
        assert deserialize_item({"n": {"N": "3"}}) == {"n": 3}
        assert isinstance(deserialize_item({"n": {"N": "3.5"}})["n"], float)
        assert serialize_item({"d": Decimal("1.5")}) == {"d": {"N": "1.5"}}


class TestExpressionBuilder:
    def test_update_expression_with_all_clauses(self):
        builder = ExpressionBuilder()
        changes = ItemChanges(
            set={"email": "a@example.com", "createdAt": IfNotExists("2024")},
            remove=["clkkTag"],
            add={"balance": 5},
        )

        expression = builder.update(changes)

        assert expression == (
            "SET #n0 = :v0, #n1 = if_not_exists(#n1, :v1) REMOVE #n2 ADD #n3 :v2"
        )
        assert builder.names == {
            "#n0": "email",
            "#n1": "createdAt",
            "#n2": "clkkTag",
            "#n3": "balance",
        }
        assert builder.values[":v2"] == {"N": "5"}

    def test_empty_update_is_rejected(self):
        with pytest.raises(ValidationError):
            ExpressionBuilder().update(ItemChanges())

    def test_conditions_are_conjoined(self):
        builder = ExpressionBuilder()
        expression = builder.condition([attribute_not_exists("PK"), gte("balance", 10)])
        assert expression == "attribute_not_exists(#n0) AND #n1 >= :v0"

    def test_key_condition_with_sort(self):
        builder = ExpressionBuilder()
        expression = builder.key_condition("PK", "USER#u1", "SK", sort_begins_with("WALLET#"))
        assert expression == "#n0 = :v0 AND begins_with(#n1, :v1)"


class TestErrorTranslation:
    def test_condition_failure_carries_old_item(self):
        error = _client_error("ConditionalCheckFailedException", Item=serialize_item({"PK": "p"}))
        translated = translate_client_error(error, "put_item")
        assert isinstance(translated, ConditionFailedError)
        assert translated.item == {"PK": "p"}

    def test_transaction_condition_failure(self):
        error = _client_error(
            "TransactionCanceledException",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        )
        translated = translate_client_error(error, "transact_write_items")
        assert isinstance(translated, TransactionConflictError)
        assert translated.reasons == [None, "ConditionalCheckFailed"]

    def test_transaction_throttled_is_transient(self):
        error = _client_error(
            "TransactionCanceledException", CancellationReasons=[{"Code": "ThrottlingError"}]
        )
        assert isinstance(translate_client_error(error, "x"), TransientEngineError)

    @pytest.mark.parametrize(
        "code", ["ProvisionedThroughputExceededException", "ThrottlingException"]
    )
    def test_throttling_is_transient(self, code):
        assert isinstance(translate_client_error(_client_error(code), "x"), TransientEngineError)

    def test_validation_exception(self):
        translated = translate_client_error(_client_error("ValidationException"), "x")
        assert isinstance(translated, ValidationError)

    def test_unknown_code_is_engine_error(self):
        translated = translate_client_error(_client_error("ResourceNotFoundException"), "x")
        assert type(translated) is EngineError
        assert translated.details["code"] == "ResourceNotFoundException"


class TestEngineCalls:
    @pytest.mark.anyio
    async def test_get_item_is_consistent_and_projects(self, dynamo, client):
        client.get_item.return_value = {"Item": serialize_item({"PK": "USER#u1"})}

        item = await dynamo.get_item(KEY, projection=("PK", "entityType"))

        assert item == {"PK": "USER#u1"}
        params = client.get_item.call_args.kwargs
        assert params["TableName"] == TABLE
        assert params["ConsistentRead"] is True
        assert params["ProjectionExpression"] == "#n0, #n1"
        assert params["ExpressionAttributeNames"] == {"#n0": "PK", "#n1": "entityType"}

    @pytest.mark.anyio
    async def test_get_item_absent(self, dynamo, client):
        client.get_item.return_value = {}
        assert await dynamo.get_item(KEY) is None

    @pytest.mark.anyio
    async def test_put_with_condition(self, dynamo, client):
        await dynamo.put_item({"PK": "p", "SK": "s"}, condition=(attribute_not_exists("PK"),))
        params = client.put_item.call_args.kwargs
        assert params["ConditionExpression"] == "attribute_not_exists(#n0)"
        assert params["ReturnValuesOnConditionCheckFailure"] == "ALL_OLD"

    @pytest.mark.anyio
    async def test_put_condition_failure_is_translated(self, dynamo, client):
        client.put_item.side_effect = _client_error("ConditionalCheckFailedException")
        with pytest.raises(ConditionFailedError):
            await dynamo.put_item({"PK": "p"}, condition=(attribute_not_exists("PK"),))

    @pytest.mark.anyio
    async def test_connection_failure_is_transient(self, dynamo, client):
        client.get_item.side_effect = EndpointConnectionError(endpoint_url="http://localhost:8000")
        with pytest.raises(TransientEngineError):
            await dynamo.get_item(KEY)

    @pytest.mark.anyio
    async def test_update_returns_new_item(self, dynamo, client):
        client.update_item.return_value = {"Attributes": serialize_item({"PK": "p", "n": 2})}

        item = await dynamo.update_item(
            KEY, ItemChanges(set={"n": 2}), condition=(eq("entityType", "USER"),)
        )

        assert item == {"PK": "p", "n": 2}
        params = client.update_item.call_args.kwargs
        assert params["ReturnValues"] == "ALL_NEW"
        assert params["UpdateExpression"] == "SET #n0 = :v0"
        assert params["ConditionExpression"] == "#n1 = :v1"

    @pytest.mark.anyio
    async def test_query_on_secondary_index(self, dynamo, client):
        marker = {"PK": "USER#u1", "SK": "USER#u1", "EmailKey": "EMAIL#a@example.com"}
        client.query.return_value = {
            "Items": [serialize_item({"PK": "USER#u1"})],
            "Count": 1,
            "ScannedCount": 1,
            "LastEvaluatedKey": serialize_item(marker),
        }

        page = await dynamo.query(
            QueryRequest(
                partition_attr="EmailKey",
                partition_value="EMAIL#a@example.com",
                index_name="EmailIndex",
                filters=(eq("entityType", "USER"),),
                limit=1,
                exclusive_start_key=marker,
            )
        )

        assert page.items == [{"PK": "USER#u1"}]
        assert page.last_evaluated_key == marker
        params = client.query.call_args.kwargs
        assert params["IndexName"] == "EmailIndex"
        assert "ConsistentRead" not in params
        assert params["ScanIndexForward"] is False
        assert params["Limit"] == 1
        assert params["FilterExpression"] == "#n1 = :v1"
        assert params["ExclusiveStartKey"] == serialize_item(marker)

    @pytest.mark.anyio
    async def test_count_query_on_table(self, dynamo, client):
        client.query.return_value = {"Count": 4, "ScannedCount": 4}
        page = await dynamo.query(
            QueryRequest(partition_attr="PK", partition_value="USER#u1", select_count=True)
        )
        assert page.count == 4
        params = client.query.call_args.kwargs
        assert params["Select"] == "COUNT"
        assert params["ConsistentRead"] is True

    @pytest.mark.anyio
    async def test_batch_get_reports_unprocessed_keys(self, dynamo, client):
        other = StoreKey("USER#u2", "USER#u2")
        client.batch_get_item.return_value = {
            "Responses": {TABLE: [serialize_item({"PK": "USER#u1", "SK": "USER#u1"})]},
            "UnprocessedKeys": {TABLE: {"Keys": [serialize_item(other.to_item())]}},
        }

        response = await dynamo.batch_get_item([KEY, other])

        assert response.items == [{"PK": "USER#u1", "SK": "USER#u1"}]
        assert response.unprocessed_keys == [other]

    @pytest.mark.anyio
    async def test_batch_write_reports_unprocessed_items(self, dynamo, client):
        item = {"PK": "USER#u2", "SK": "USER#u2"}
        client.batch_write_item.return_value = {
            "UnprocessedItems": {TABLE: [{"PutRequest": {"Item": serialize_item(item)}}]}
        }

        response = await dynamo.batch_write_item([{"PK": "USER#u1", "SK": "USER#u1"}, item])

        assert response.unprocessed_items == [item]
        requests = client.batch_write_item.call_args.kwargs["RequestItems"][TABLE]
        assert len(requests) == 2

    @pytest.mark.anyio
    async def test_transact_items(self, dynamo, client):
        await dynamo.transact_write_items(
            [
                TransactPut(item={"PK": "p1"}, condition=(attribute_not_exists("PK"),)),
                TransactUpdate(key=StoreKey("p2"), changes=ItemChanges(add={"balance": -5})),
                TransactConditionCheck(key=StoreKey("p3"), condition=(eq("status", "ACTIVE"),)),
            ]
        )

        items = client.transact_write_items.call_args.kwargs["TransactItems"]
        assert list(items[0]) == ["Put"]
        assert items[0]["Put"]["ConditionExpression"] == "attribute_not_exists(#n0)"
        assert items[1]["Update"]["UpdateExpression"] == "ADD #n0 :v0"
        assert items[2]["ConditionCheck"]["Key"] == {"PK": {"S": "p3"}}

    @pytest.mark.anyio
    async def test_transaction_cancellation_is_translated(self, dynamo, client):
        client.transact_write_items.side_effect = _client_error(
            "TransactionCanceledException",
            CancellationReasons=[{"Code": "ConditionalCheckFailed"}],
        )
        with pytest.raises(TransactionConflictError):
            await dynamo.transact_write_items([TransactPut(item={"PK": "p1"})])
