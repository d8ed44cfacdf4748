"""Tests for single-item Store operations."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tablestore.core.errors import ConditionFailedError, ConflictError, ValidationError
from tablestore.core.optimistic_lock import ConcurrentModificationError
from tablestore.db.memory import InMemoryEngine
from tablestore.db.models import User, UserUpdate, Wallet
from tablestore.domain.keys import user_key
from tablestore.repos.store import Store
from tests.factories import make_user, make_wallet


class TestCreate:
    @pytest.mark.anyio
    async def test_create_stamps_and_persists(self, user_store: Store[User]):
        user = make_user()
        created = await user_store.create(user)

        assert created.created_at is not None
        assert created.created_at == created.updated_at
        assert user.created_at is None
        assert await user_store.get(user.primary_key()) == created

    @pytest.mark.anyio
    async def test_second_create_with_same_id_conflicts(self, user_store: Store[User]):
        first = await user_store.create(make_user(id="u1", first_name="First"))

        with pytest.raises(ConflictError):
            await user_store.create(make_user(id="u1", first_name="Second"))

        stored = await user_store.get(user_key("u1"))
        assert stored == first
        assert stored.first_name == "First"

    @pytest.mark.anyio
    async def test_conflict_carries_existing_item(self, user_store: Store[User]):
        await user_store.create(make_user(id="u1"))
        with pytest.raises(ConditionFailedError) as exc:
            await user_store.create(make_user(id="u1"))
        assert exc.value.item["id"] == "u1"

    @pytest.mark.anyio
    async def test_concurrent_creates_exactly_one_wins(self, user_store: Store[User]):
        results = await asyncio.gather(
            user_store.create(make_user(id="u2")),
            user_store.create(make_user(id="u2")),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        created = [r for r in results if isinstance(r, User)]
        assert len(conflicts) == 1
        assert len(created) == 1

    @pytest.mark.anyio
    async def test_invalid_entity_writes_nothing(
        self, user_store: Store[User], engine: InMemoryEngine
    ):
        user = make_user()
        user.email = "nope"
        with pytest.raises(ValidationError):
            await user_store.create(user)
        assert len(engine) == 0


class TestGet:
    @pytest.mark.anyio
    async def test_absent_row_is_none(self, user_store: Store[User]):
        assert await user_store.get(user_key("missing")) is None
        assert await user_store.exists(user_key("missing")) is False

    @pytest.mark.anyio
    async def test_exists(self, user_store: Store[User]):
        user = await user_store.create(make_user())
        assert await user_store.exists(user.primary_key()) is True

    @pytest.mark.anyio
    async def test_row_of_another_type_is_absent(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        wallet = await wallet_store.create(make_wallet("u1"))
        assert await user_store.get(wallet.primary_key()) is None
        assert await user_store.exists(wallet.primary_key()) is False


class TestUpdate:
    @pytest.mark.anyio
    async def test_updates_merge(self, user_store: Store[User]):
        user = await user_store.create(make_user())
        key = user.primary_key()

        first = await user_store.update(key, {"first_name": "Grace"})
        second = await user_store.update(key, {"last_name": "Hopper"})

        assert second.first_name == "Grace"
        assert second.last_name == "Hopper"
        assert second.updated_at > first.updated_at > user.updated_at
        assert second.created_at == user.created_at

    @pytest.mark.anyio
    async def test_update_reprojects_email_index(self, user_store: Store[User], engine):
        user = await user_store.create(make_user())
        await user_store.update(user.primary_key(), UserUpdate(email="New@Example.com"))
        (item,) = engine.dump()
        assert item["EmailKey"] == "EMAIL#new@example.com"

    @pytest.mark.anyio
    async def test_none_removes_attribute(self, user_store: Store[User], engine):
        user = await user_store.create(make_user(clkk_tag="adal1234"))
        updated = await user_store.update(user.primary_key(), {"clkk_tag": None})
        assert updated.clkk_tag is None
        (item,) = engine.dump()
        assert "clkkTag" not in item
        assert "ClkkTagKey" not in item

    @pytest.mark.anyio
    async def test_update_of_absent_row_is_none_and_writes_nothing(
        self, user_store: Store[User], engine: InMemoryEngine
    ):
        assert await user_store.update(user_key("ghost"), {"first_name": "Casper"}) is None
        assert len(engine) == 0

    @pytest.mark.anyio
    async def test_update_with_current_stamp_succeeds(self, user_store: Store[User]):
        user = await user_store.create(make_user())
        updated = await user_store.update(
            user.primary_key(), {"first_name": "Grace"}, expected_updated_at=user.updated_at
        )
        assert updated.first_name == "Grace"

    @pytest.mark.anyio
    async def test_update_with_stale_stamp_is_rejected(self, user_store: Store[User]):
        user = await user_store.create(make_user())
        await user_store.update(user.primary_key(), {"first_name": "Grace"})

        with pytest.raises(ConcurrentModificationError) as exc:
            await user_store.update(
                user.primary_key(), {"last_name": "Hopper"}, expected_updated_at=user.updated_at
            )
        assert exc.value.actual_updated_at is not None
        assert isinstance(exc.value, ConflictError)

    @pytest.mark.anyio
    async def test_invalid_update_is_rejected(self, user_store: Store[User]):
        user = await user_store.create(make_user())
        with pytest.raises(ValidationError):
            await user_store.update(user.primary_key(), {"email": "broken"})


class TestSave:
    @pytest.mark.anyio
    async def test_save_creates_missing_row(self, user_store: Store[User]):
        saved = await user_store.save(make_user(id="u9"))
        assert saved.created_at is not None
        assert await user_store.get(user_key("u9")) == saved

    @pytest.mark.anyio
    async def test_save_keeps_created_at_and_removes_dropped_attributes(
        self, user_store: Store[User], engine
    ):
        created = await user_store.create(make_user(clkk_tag="adal1234"))
        replacement = created.model_copy(
            update={
                "clkk_tag": None,
                "first_name": "Grace",
                "created_at": created.created_at + timedelta(days=1),
            }
        )

        saved = await user_store.save(replacement)

        assert saved.created_at == created.created_at
        assert saved.first_name == "Grace"
        assert saved.clkk_tag is None
        (item,) = engine.dump()
        assert "ClkkTagKey" not in item
        assert item["TimeSortKey"].endswith(created.to_item()["createdAt"])


class TestDelete:
    @pytest.mark.anyio
    async def test_delete_removes_row(self, user_store: Store[User]):
        user = await user_store.create(make_user())
        await user_store.delete(user.primary_key())
        assert await user_store.get(user.primary_key()) is None

    @pytest.mark.anyio
    async def test_delete_of_absent_row_is_not_an_error(self, user_store: Store[User]):
        await user_store.delete(user_key("ghost"))


class TestClock:
    @pytest.mark.anyio
    async def test_frozen_clock_still_yields_increasing_stamps(self, engine):
        frozen = datetime(2024, 1, 1, tzinfo=UTC)
        from tablestore.core.timeutil import MonotonicClock

        store = Store(engine, User, clock=MonotonicClock(lambda: frozen))
        user = await store.create(make_user())
        updated = await store.update(user.primary_key(), {"first_name": "Grace"})
        assert updated.updated_at > user.updated_at
