"""Repository layer for Wallet data access."""

import logging

from tablestore.core.deadline import Deadline
from tablestore.core.errors import NotFoundError
from tablestore.db.models import Wallet
from tablestore.domain.conditions import KeyCondition, key_equals, sort_begins_with
from tablestore.domain.enums import SortOrder, WalletStatus
from tablestore.domain.keys import (
    PRIMARY_INDEX,
    TYPE_STATUS_INDEX,
    user_partition,
    wallet_key,
    wallet_sort_prefix,
    wallet_status_key,
)
from tablestore.repos.store import QueryResult, Store

logger = logging.getLogger(__name__)


class WalletRepository:
    """
    Data access for wallets, stored in their owner's partition.

    Balances are never written here; they only move through
    `TransactionRepository.record`.
    """

    def __init__(self, store: Store[Wallet]):
        self.store = store

    async def get(
        self, user_id: str, wallet_id: str, deadline: Deadline | None = None
    ) -> Wallet | None:
        return await self.store.get(wallet_key(user_id, wallet_id), deadline=deadline)

    async def require(
        self, user_id: str, wallet_id: str, deadline: Deadline | None = None
    ) -> Wallet:
        """
        Retrieve a wallet that must exist.

        Raises:
            NotFoundError: If the wallet does not exist
        """
        wallet = await self.get(user_id, wallet_id, deadline=deadline)
        if wallet is None:
            logger.warning(f"Wallet not found: {user_id}/{wallet_id}")
            raise NotFoundError(
                f"Wallet '{wallet_id}' not found",
                details={"user_id": user_id, "wallet_id": wallet_id},
            )
        return wallet

    async def create(self, wallet: Wallet, deadline: Deadline | None = None) -> Wallet:
        created = await self.store.create(wallet, deadline=deadline)
        logger.info(f"Created wallet {created.id} for user {created.user_id}")
        return created

    async def list_for_user(
        self,
        user_id: str,
        limit: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryResult[Wallet]:
        """A user's wallets in id order."""
        return await self.store.query_by_index(
            PRIMARY_INDEX,
            KeyCondition(user_partition(user_id), sort_begins_with(wallet_sort_prefix())),
            order=SortOrder.ASCENDING,
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def list_by_status(
        self,
        status: WalletStatus,
        limit: int | None = None,
        token: str | None = None,
        deadline: Deadline | None = None,
    ) -> QueryResult[Wallet]:
        """Wallets with a status across all users, newest first."""
        return await self.store.query_by_index(
            TYPE_STATUS_INDEX,
            key_equals(wallet_status_key(status.value)),
            limit=limit,
            token=token,
            deadline=deadline,
        )

    async def update_status(
        self,
        user_id: str,
        wallet_id: str,
        status: WalletStatus,
        deadline: Deadline | None = None,
    ) -> Wallet | None:
        wallet = await self.store.update(
            wallet_key(user_id, wallet_id), {"status": status}, deadline=deadline
        )
        if wallet is not None:
            logger.info(f"Wallet {wallet_id} status set to {status.value}")
        return wallet

    async def delete(self, user_id: str, wallet_id: str, deadline: Deadline | None = None) -> None:
        await self.store.delete(wallet_key(user_id, wallet_id), deadline=deadline)
