"""
Table setup commands.

Creates the application table (and its secondary indexes) from the
current settings, typically against DynamoDB Local.

Usage:
    uv run table-setup            # Create the table if missing
    uv run table-setup --reset    # Drop and recreate the table
"""

from __future__ import annotations

import sys

from botocore.exceptions import ClientError

from tablestore.core.dependencies import create_dynamodb_client, get_settings
from tablestore.core.observability import configure_structured_logging
from tablestore.db.schema import table_definition

_ALLOWED_FLAGS = {"--reset", "--help", "-h"}


def _parse_flags(raw_args: list[str]) -> set[str]:
    flags = set()
    for token in raw_args:
        if token not in _ALLOWED_FLAGS:
            allowed = " ".join(sorted(_ALLOWED_FLAGS))
            raise SystemExit(f"Unsupported argument '{token}' for table-setup. Allowed: {allowed}")
        flags.add(token)
    return flags


def main() -> None:
    flags = _parse_flags(sys.argv[1:])
    if flags & {"--help", "-h"}:
        print(__doc__)
        return

    settings = get_settings()
    configure_structured_logging(settings.app_log_level, settings.observability_structured_logs)
    client = create_dynamodb_client(settings)
    table_name = settings.table_name

    if "--reset" in flags:
        try:
            client.delete_table(TableName=table_name)
            client.get_waiter("table_not_exists").wait(TableName=table_name)
            print(f"Dropped table {table_name}")
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise

    try:
        client.create_table(**table_definition(table_name, settings.index_names))
    except ClientError as e:
        if e.response["Error"]["Code"] != "ResourceInUseException":
            raise
        print(f"Table {table_name} already exists")
        return

    client.get_waiter("table_exists").wait(TableName=table_name)
    print(f"Created table {table_name}")
