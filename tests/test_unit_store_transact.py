"""Tests for Store transactions."""

import pytest

from tablestore.core.errors import ConflictError, TransactionConflictError, ValidationError
from tablestore.db.memory import InMemoryEngine
from tablestore.db.models import User, Wallet
from tablestore.domain.conditions import attribute_exists, eq
from tablestore.domain.keys import user_key, wallet_key
from tablestore.repos.store import Store
from tests.factories import make_user, make_wallet


class TestTransactWrite:
    @pytest.mark.anyio
    async def test_puts_commit_together(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        user = make_user()
        wallet = make_wallet(user.id)

        await user_store.transact_write(
            [user_store.put_operation(user), wallet_store.put_operation(wallet)]
        )

        assert await user_store.get(user.primary_key()) is not None
        stored = await wallet_store.get(wallet.primary_key())
        assert stored.created_at is not None

    @pytest.mark.anyio
    async def test_failed_condition_applies_nothing(
        self, user_store: Store[User], wallet_store: Store[Wallet], engine: InMemoryEngine
    ):
        existing = await user_store.create(make_user(id="u1"))
        wallet = make_wallet("u1")

        with pytest.raises(TransactionConflictError) as exc:
            await user_store.transact_write(
                [wallet_store.put_operation(wallet), user_store.put_operation(make_user(id="u1"))]
            )

        assert exc.value.reasons == [None, "ConditionalCheckFailed"]
        assert isinstance(exc.value, ConflictError)
        assert await wallet_store.get(wallet.primary_key()) is None
        assert await user_store.get(user_key("u1")) == existing
        assert len(engine) == 1

    @pytest.mark.anyio
    async def test_update_with_numeric_delta(self, wallet_store: Store[Wallet]):
        wallet = await wallet_store.create(make_wallet("u1", balance=100))

        await wallet_store.transact_write(
            [wallet_store.update_operation(wallet.primary_key(), add={"balance": -40})]
        )

        stored = await wallet_store.get(wallet.primary_key())
        assert stored.balance == 60
        assert stored.updated_at > wallet.updated_at

    @pytest.mark.anyio
    async def test_update_of_missing_row_conflicts(self, wallet_store: Store[Wallet]):
        op = wallet_store.update_operation(wallet_key("u1", "nope"), {"name": "Travel"})
        with pytest.raises(TransactionConflictError):
            await wallet_store.transact_write([op])

    @pytest.mark.anyio
    async def test_condition_check_and_delete(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        user = await user_store.create(make_user())
        wallet = await wallet_store.create(make_wallet(user.id))

        await wallet_store.transact_write(
            [
                user_store.condition_check(user.primary_key(), eq("kycStatus", "NOT_STARTED")),
                wallet_store.delete_operation(
                    wallet.primary_key(), condition=(attribute_exists("PK"),)
                ),
            ]
        )

        assert await wallet_store.get(wallet.primary_key()) is None

    @pytest.mark.anyio
    async def test_failed_condition_check_blocks_delete(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        user = await user_store.create(make_user())
        wallet = await wallet_store.create(make_wallet(user.id))

        with pytest.raises(TransactionConflictError):
            await wallet_store.transact_write(
                [
                    user_store.condition_check(user.primary_key(), eq("kycStatus", "APPROVED")),
                    wallet_store.delete_operation(wallet.primary_key()),
                ]
            )

        assert await wallet_store.get(wallet.primary_key()) is not None

    @pytest.mark.anyio
    async def test_invalid_transactions_are_rejected(self, user_store: Store[User]):
        with pytest.raises(ValidationError):
            await user_store.transact_write([])

        user = make_user()
        with pytest.raises(ValidationError):
            await user_store.transact_write(
                [user_store.put_operation(user), user_store.delete_operation(user.primary_key())]
            )

        too_many = [user_store.put_operation(make_user()) for _ in range(101)]
        with pytest.raises(ValidationError):
            await user_store.transact_write(too_many)

    def test_operation_builders_validate(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        bad = make_user()
        bad.email = "broken"
        with pytest.raises(ValidationError):
            user_store.put_operation(bad)
        with pytest.raises(ValidationError):
            user_store.condition_check(user_key("u1"))
        with pytest.raises(ValidationError):
            wallet_store.update_operation(wallet_key("u1", "w1"))
        with pytest.raises(ValidationError):
            wallet_store.update_operation(wallet_key("u1", "w1"), add={"bogus": 1})
