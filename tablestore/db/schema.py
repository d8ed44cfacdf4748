"""
Table definition for the single-table layout.

`table_definition()` returns keyword arguments for the DynamoDB
`create_table` call: PK/SK primary key, five global secondary indexes with
full projections, on-demand billing and a change stream.
"""

from collections.abc import Mapping
from typing import Any

from tablestore.domain.keys import PARTITION_KEY, SECONDARY_INDEXES, SORT_KEY, IndexSpec


def _key_schema(partition_attr: str, sort_attr: str | None) -> list[dict[str, str]]:
    schema = [{"AttributeName": partition_attr, "KeyType": "HASH"}]
    if sort_attr:
        schema.append({"AttributeName": sort_attr, "KeyType": "RANGE"})
    return schema


def _index_definition(index: IndexSpec, physical_name: str) -> dict[str, Any]:
    return {
        "IndexName": physical_name,
        "KeySchema": _key_schema(index.partition_attr, index.sort_attr),
        "Projection": {"ProjectionType": "ALL"},
    }


def table_definition(
    table_name: str, index_names: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """
    Build the create_table request for the application table.

    Args:
        table_name: Physical table name
        index_names: Logical index name -> physical index name overrides

    Returns:
        Keyword arguments for `client.create_table(**definition)`
    """
    index_names = index_names or {}

    key_attrs = [PARTITION_KEY, SORT_KEY]
    for index in SECONDARY_INDEXES:
        for attr in (index.partition_attr, index.sort_attr):
            if attr and attr not in key_attrs:
                key_attrs.append(attr)

    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": attr, "AttributeType": "S"} for attr in key_attrs
        ],
        "KeySchema": _key_schema(PARTITION_KEY, SORT_KEY),
        "GlobalSecondaryIndexes": [
            _index_definition(index, index_names.get(index.name, index.name))
            for index in SECONDARY_INDEXES
        ],
        "StreamSpecification": {
            "StreamEnabled": True,
            "StreamViewType": "NEW_AND_OLD_IMAGES",
        },
    }
