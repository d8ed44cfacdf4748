"""
Repository layer for Transaction data access.

Transactions live in their user's partition, sorted by the instant they
occurred. Recording a transaction writes the row and moves the wallet
balance in one all-or-nothing engine transaction.
"""

import logging
from datetime import datetime

from tablestore.core.deadline import Deadline
from tablestore.core.errors import TransactionConflictError, ValidationError
from tablestore.db.models import Transaction, Wallet
from tablestore.domain.conditions import (
    KeyCondition,
    gte,
    key_equals,
    sort_begins_with,
    sort_between,
)
from tablestore.domain.enums import SortOrder, TransactionStatus
from tablestore.domain.keys import (
    PRIMARY_INDEX,
    TIME_SORT_INDEX,
    TYPE_STATUS_INDEX,
    transaction_date_prefix,
    transaction_key,
    transaction_sort_prefix,
    transaction_status_key,
    transaction_time_sort_key,
    user_partition,
    wallet_key,
)
from tablestore.repos.store import CountResult, QueryResult, Store

logger = logging.getLogger(__name__)


class TransactionRepository:
    """
    Data access for transactions.

    Args:
        store: Store bound to the Transaction entity
        wallets: Store bound to the Wallet entity, used for balance moves
    """

    def __init__(self, store: Store[Transaction], wallets: Store[Wallet]):
        self.store = store
        self.wallets = wallets

    async def get(
        self,
        user_id: str,
        occurred_at: datetime,
        transaction_id: str,
        deadline: Deadline | None = None,
    ) -> Transaction | None:
        key = transaction_key(user_id, occurred_at, transaction_id)
        return await self.store.get(key, deadline=deadline)

    async def list_for_user(
        self,
        user_id: str,
        limit: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryResult[Transaction]:
        """A user's transactions, newest first."""
        return await self.store.query_by_index(
            PRIMARY_INDEX,
            KeyCondition(user_partition(user_id), sort_begins_with(transaction_sort_prefix())),
            order=SortOrder.DESCENDING,
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def list_between(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        token: str | None = None,
        order: SortOrder = SortOrder.DESCENDING,
        deadline: Deadline | None = None,
    ) -> QueryResult[Transaction]:
        """Transactions that occurred within [start, end], inclusive."""
        if end < start:
            raise ValidationError(
                "end must not be before start",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        condition = sort_between(transaction_time_sort_key(start), transaction_time_sort_key(end))
        return await self.store.query_by_index(
            TIME_SORT_INDEX,
            KeyCondition(user_partition(user_id), condition),
            order=order,
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def list_on(
        self,
        user_id: str,
        day: str,
        limit: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryResult[Transaction]:
        """Transactions on a calendar day or month, given as "2024-01-15" or "2024-01"."""
        return await self.store.query_by_index(
            TIME_SORT_INDEX,
            KeyCondition(user_partition(user_id), sort_begins_with(transaction_date_prefix(day))),
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def list_by_status(
        self,
        status: TransactionStatus,
        limit: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryResult[Transaction]:
        return await self.store.query_by_index(
            TYPE_STATUS_INDEX,
            key_equals(transaction_status_key(status.value)),
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def count_by_status(
        self, status: TransactionStatus, deadline: Deadline | None = None
    ) -> CountResult:
        return await self.store.count_by_index(
            TYPE_STATUS_INDEX, key_equals(transaction_status_key(status.value)), deadline=deadline
        )

    async def record(
        self, transaction: Transaction, deadline: Deadline | None = None
    ) -> Transaction:
        """
        Write a new transaction and apply its amount to the wallet balance.

        Both writes happen or neither does. Debits require the wallet
        balance to cover the amount.

        Raises:
            ValidationError: Transaction is invalid
            TransactionConflictError: The transaction already exists, the
                wallet does not exist, or its balance is insufficient
        """
        put = self.store.put_operation(transaction)
        balance_condition = (gte("balance", -transaction.amount),) if transaction.amount < 0 else ()
        move = self.wallets.update_operation(
            wallet_key(transaction.user_id, transaction.wallet_id),
            add={"balance": transaction.amount},
            condition=balance_condition,
        )
        try:
            await self.store.transact_write([put, move], deadline=deadline)
        except TransactionConflictError:
            logger.warning(
                f"Transaction {transaction.id} rejected",
                extra={
                    "user_id": transaction.user_id,
                    "wallet_id": transaction.wallet_id,
                    "amount": transaction.amount,
                },
            )
            raise
        recorded = Transaction.from_item(put.item)
        logger.info(
            f"Recorded transaction {recorded.id}",
            extra={"wallet_id": recorded.wallet_id, "amount": recorded.amount},
        )
        return recorded
