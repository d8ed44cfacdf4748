"""
Domain enums stored as attribute values.

The string values are written to the table verbatim and some of them are
embedded in secondary-index keys, so they must never be renamed.
"""

from enum import Enum


class EntityType(str, Enum):
    """Discriminator written to every item as `entityType`."""

    USER = "USER"
    WALLET = "WALLET"
    TRANSACTION = "TRANSACTION"


class KycStatus(str, Enum):
    """KYC lifecycle of a user."""

    NOT_STARTED = "NOT_STARTED"
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ExternalProvider(str, Enum):
    """Identity providers a user can be linked to."""

    CLERK = "CLERK"
    CYBRID = "CYBRID"


class WalletStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CLOSED = "CLOSED"


class WalletType(str, Enum):
    PERSONAL = "PERSONAL"
    SAVINGS = "SAVINGS"
    BUSINESS = "BUSINESS"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REVERSED = "REVERSED"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    FEE = "FEE"
    REFUND = "REFUND"


class SortOrder(str, Enum):
    """Order of items along an index's sort component."""

    ASCENDING = "ASC"
    DESCENDING = "DESC"
