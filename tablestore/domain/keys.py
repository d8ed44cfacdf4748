"""
Key space for the single-table layout.

Every storage key and secondary-index key is derived here by a pure
function. Nothing in this module performs I/O, reads the clock or
raises: callers validate identifiers before asking for keys.

Changing any existing function changes the keys of rows already written
with it, so new access patterns get new functions instead.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from tablestore.core.timeutil import format_timestamp

# Primary key attributes
PARTITION_KEY = "PK"
SORT_KEY = "SK"

# Secondary index key attributes
EXTERNAL_ID_KEY = "ExternalIdKey"
EMAIL_KEY = "EmailKey"
TAG_KEY = "ClkkTagKey"
TIME_SORT_KEY = "TimeSortKey"
TYPE_STATUS_KEY = "TypeStatusKey"

# Shared entity attributes
ENTITY_TYPE = "entityType"
CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"

KEY_ATTRIBUTES = frozenset(
    {PARTITION_KEY, SORT_KEY, EXTERNAL_ID_KEY, EMAIL_KEY, TAG_KEY, TIME_SORT_KEY, TYPE_STATUS_KEY}
)

# Entity / category prefixes
USER_PREFIX = "USER"
WALLET_PREFIX = "WALLET"
TRANSACTION_PREFIX = "TXN"
EMAIL_PREFIX = "EMAIL"
TAG_PREFIX = "TAG"
DATE_PREFIX = "DATE"
KYC_PREFIX = "KYC"


@dataclass(frozen=True)
class StoreKey:
    """Primary key of one row: partition component plus optional sort component."""

    partition: str
    sort: str | None = None

    def to_item(self) -> dict[str, str]:
        key = {PARTITION_KEY: self.partition}
        if self.sort is not None:
            key[SORT_KEY] = self.sort
        return key

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "StoreKey":
        return cls(partition=item[PARTITION_KEY], sort=item.get(SORT_KEY))


@dataclass(frozen=True)
class IndexSpec:
    """
    A (partition, sort) projection over the table.

    `name` is the logical name; the physical name comes from TableConfig.
    `sort_attr` is None for hash-only indexes.
    """

    name: str
    partition_attr: str
    sort_attr: str | None = None
    is_primary: bool = False

    @property
    def key_attributes(self) -> frozenset[str]:
        """Attributes that make up a resume position on this index."""
        attrs = {PARTITION_KEY, SORT_KEY, self.partition_attr}
        if self.sort_attr:
            attrs.add(self.sort_attr)
        return frozenset(attrs)


PRIMARY_INDEX = IndexSpec("PRIMARY", PARTITION_KEY, SORT_KEY, is_primary=True)
EXTERNAL_ID_INDEX = IndexSpec("ExternalIdIndex", EXTERNAL_ID_KEY, SORT_KEY)
EMAIL_INDEX = IndexSpec("EmailIndex", EMAIL_KEY)
TAG_INDEX = IndexSpec("ClkkTagIndex", TAG_KEY)
TIME_SORT_INDEX = IndexSpec("TimeSortIndex", PARTITION_KEY, TIME_SORT_KEY)
TYPE_STATUS_INDEX = IndexSpec("TypeStatusIndex", TYPE_STATUS_KEY, TIME_SORT_KEY)

SECONDARY_INDEXES = (
    EXTERNAL_ID_INDEX,
    EMAIL_INDEX,
    TAG_INDEX,
    TIME_SORT_INDEX,
    TYPE_STATUS_INDEX,
)


# ============================================================================
# User keys
# ============================================================================


def user_partition(user_id: str) -> str:
    return f"{USER_PREFIX}#{user_id}"


def user_key(user_id: str) -> StoreKey:
    return StoreKey(user_partition(user_id), f"{USER_PREFIX}#{user_id}")


def user_external_id_key(provider: str, external_id: str) -> str:
    # External ids are case-sensitive; only the provider tag is normalized.
    return f"{provider.upper()}#{external_id}"


def user_email_key(email: str) -> str:
    return f"{EMAIL_PREFIX}#{email.lower()}"


def user_tag_key(tag: str) -> str:
    return f"{TAG_PREFIX}#{tag.lower()}"


def user_kyc_status_key(kyc_status: str) -> str:
    return f"{USER_PREFIX}#{KYC_PREFIX}#{kyc_status}"


def user_time_sort_key(created_at: datetime) -> str:
    return f"{USER_PREFIX}#{format_timestamp(created_at)}"


# ============================================================================
# Wallet keys
# ============================================================================


def wallet_sort_prefix() -> str:
    return f"{WALLET_PREFIX}#"


def wallet_key(user_id: str, wallet_id: str) -> StoreKey:
    return StoreKey(user_partition(user_id), f"{WALLET_PREFIX}#{wallet_id}")


def wallet_status_key(status: str) -> str:
    return f"{WALLET_PREFIX}#{status}"


def wallet_time_sort_key(created_at: datetime) -> str:
    return f"{WALLET_PREFIX}#{format_timestamp(created_at)}"


# ============================================================================
# Transaction keys
# ============================================================================


def transaction_sort_prefix() -> str:
    return f"{TRANSACTION_PREFIX}#"


def transaction_key(user_id: str, occurred_at: datetime, transaction_id: str) -> StoreKey:
    return StoreKey(
        user_partition(user_id),
        f"{TRANSACTION_PREFIX}#{format_timestamp(occurred_at)}#{transaction_id}",
    )


def transaction_time_sort_key(occurred_at: datetime) -> str:
    return f"{DATE_PREFIX}#{format_timestamp(occurred_at)}"


def transaction_date_prefix(day: str) -> str:
    """Time-sort prefix for all transactions on a day or month ("2024-01-15", "2024-01")."""
    return f"{DATE_PREFIX}#{day}"


def transaction_status_key(status: str) -> str:
    return f"{TRANSACTION_PREFIX}#{status}"
