"""Tests for Store index queries, pagination and counting."""

import pytest

from tablestore.core.config import TableConfig
from tablestore.core.deadline import Deadline
from tablestore.core.errors import TokenDecodeError, ValidationError
from tablestore.db.models import User, Wallet
from tablestore.domain.conditions import KeyCondition, eq, key_equals, sort_begins_with
from tablestore.domain.enums import SortOrder
from tablestore.domain.keys import (
    EMAIL_INDEX,
    PRIMARY_INDEX,
    TYPE_STATUS_INDEX,
    user_kyc_status_key,
    user_partition,
)
from tablestore.repos.store import Store
from tests.factories import make_user, make_wallet
from tests.fakes import RecordingEngine

NOT_STARTED = key_equals(user_kyc_status_key("NOT_STARTED"))


async def _seed_users(store: Store[User], count: int) -> list[User]:
    return [await store.create(make_user(first_name=f"User{i}")) for i in range(count)]


class TestQueryByIndex:
    @pytest.mark.anyio
    async def test_newest_first_by_default(self, user_store: Store[User]):
        created = await _seed_users(user_store, 3)
        result = await user_store.query_by_index(TYPE_STATUS_INDEX, NOT_STARTED)
        assert [u.id for u in result.items] == [u.id for u in reversed(created)]
        assert result.count == 3
        assert result.next_token is None

    @pytest.mark.anyio
    async def test_ascending_order(self, user_store: Store[User]):
        created = await _seed_users(user_store, 3)
        result = await user_store.query_by_index(
            TYPE_STATUS_INDEX, NOT_STARTED, order=SortOrder.ASCENDING
        )
        assert [u.id for u in result.items] == [u.id for u in created]

    @pytest.mark.anyio
    async def test_index_can_be_named(self, user_store: Store[User]):
        await _seed_users(user_store, 1)
        result = await user_store.query_by_index("TypeStatusIndex", NOT_STARTED)
        assert result.count == 1

    @pytest.mark.anyio
    async def test_default_page_size_applies(self, engine):
        store = Store(engine, User, TableConfig(default_page_size=2))
        await _seed_users(store, 3)
        result = await store.query_by_index(TYPE_STATUS_INDEX, NOT_STARTED)
        assert result.count == 2
        assert result.next_token is not None

    @pytest.mark.anyio
    async def test_only_rows_of_the_store_entity_are_returned(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        user = await user_store.create(make_user())
        await wallet_store.create(make_wallet(user.id))

        result = await user_store.query_by_index(PRIMARY_INDEX, key_equals(user_partition(user.id)))
        assert [u.id for u in result.items] == [user.id]

    @pytest.mark.anyio
    async def test_sort_condition_narrows_results(
        self, user_store: Store[User], wallet_store: Store[Wallet]
    ):
        user = await user_store.create(make_user())
        await wallet_store.create(make_wallet(user.id))
        await wallet_store.create(make_wallet(user.id))

        result = await wallet_store.query_by_index(
            PRIMARY_INDEX, KeyCondition(user_partition(user.id), sort_begins_with("WALLET#"))
        )
        assert result.count == 2

    @pytest.mark.anyio
    async def test_filters_apply_after_limit(self, user_store: Store[User]):
        created = await _seed_users(user_store, 4)
        oldest = created[0]

        result = await user_store.query_by_index(
            TYPE_STATUS_INDEX, NOT_STARTED, filters=(eq("firstName", oldest.first_name),), limit=2
        )
        assert result.items == []
        assert result.next_token is not None

        rest = await user_store.query_by_index(
            TYPE_STATUS_INDEX,
            NOT_STARTED,
            filters=(eq("firstName", oldest.first_name),),
            limit=2,
            token=result.next_token,
        )
        assert [u.id for u in rest.items] == [oldest.id]

    @pytest.mark.anyio
    async def test_bad_inputs_are_validation_errors(self, user_store: Store[User]):
        with pytest.raises(ValidationError):
            await user_store.query_by_index("NoSuchIndex", NOT_STARTED)
        with pytest.raises(ValidationError):
            await user_store.query_by_index(TYPE_STATUS_INDEX, NOT_STARTED, limit=0)
        with pytest.raises(ValidationError):
            await user_store.query_by_index(
                EMAIL_INDEX, KeyCondition("EMAIL#a@example.com", sort_begins_with("x"))
            )
        with pytest.raises(ValidationError):
            await user_store.query_by_index(TYPE_STATUS_INDEX, key_equals(""))

    @pytest.mark.anyio
    async def test_garbage_token_is_rejected(self, user_store: Store[User]):
        with pytest.raises(TokenDecodeError):
            await user_store.query_by_index(TYPE_STATUS_INDEX, NOT_STARTED, token="garbage")

    @pytest.mark.anyio
    async def test_token_from_another_index_is_rejected(self, engine):
        store = Store(engine, User, TableConfig(default_page_size=1))
        user = (await _seed_users(store, 2))[0]
        wallets = Store(engine, Wallet, TableConfig(default_page_size=1))
        await wallets.create(make_wallet(user.id))
        await wallets.create(make_wallet(user.id))
        page = await wallets.query_by_index(PRIMARY_INDEX, key_equals(user_partition(user.id)))
        assert page.next_token is not None

        with pytest.raises(TokenDecodeError):
            await store.query_by_index(TYPE_STATUS_INDEX, NOT_STARTED, token=page.next_token)


class TestPaginationCompleteness:
    @pytest.mark.anyio
    @pytest.mark.parametrize("order", [SortOrder.DESCENDING, SortOrder.ASCENDING])
    async def test_page_by_page_equals_single_traversal(self, user_store: Store[User], order):
        await _seed_users(user_store, 7)

        paged: list[str] = []
        token = None
        while True:
            page = await user_store.query_by_index(
                TYPE_STATUS_INDEX, NOT_STARTED, order=order, limit=1, token=token
            )
            paged.extend(u.id for u in page.items)
            token = page.next_token
            if token is None:
                break

        everything = await user_store.query_all_pages(
            TYPE_STATUS_INDEX, NOT_STARTED, order=order, max_items=1000
        )
        assert paged == [u.id for u in everything.items]
        assert len(set(paged)) == 7
        assert everything.truncated is False

    @pytest.mark.anyio
    async def test_engine_page_cap_is_followed(self, table_config: TableConfig):
        engine = RecordingEngine(page_item_cap=2)
        store = Store(engine, User, table_config)
        await _seed_users(store, 5)

        result = await store.query_all_pages(TYPE_STATUS_INDEX, NOT_STARTED)
        assert len(result.items) == 5
        assert len(engine.queries) == 3


class TestQueryAllPages:
    @pytest.mark.anyio
    async def test_cap_truncates_and_token_resumes(self, user_store: Store[User]):
        created = await _seed_users(user_store, 5)

        first = await user_store.query_all_pages(TYPE_STATUS_INDEX, NOT_STARTED, max_items=3)
        assert len(first.items) == 3
        assert first.truncated is True
        assert first.next_token is not None

        rest = await user_store.query_all_pages(
            TYPE_STATUS_INDEX, NOT_STARTED, token=first.next_token
        )
        ids = [u.id for u in first.items + rest.items]
        assert ids == [u.id for u in reversed(created)]
        assert rest.truncated is False

    @pytest.mark.anyio
    async def test_default_cap_comes_from_config(self, engine):
        store = Store(engine, User, TableConfig(max_query_items=2, query_all_page_size=1))
        await _seed_users(store, 4)
        result = await store.query_all_pages(TYPE_STATUS_INDEX, NOT_STARTED)
        assert len(result.items) == 2
        assert result.truncated is True

    @pytest.mark.anyio
    async def test_max_items_must_be_positive(self, user_store: Store[User]):
        with pytest.raises(ValidationError):
            await user_store.query_all_pages(TYPE_STATUS_INDEX, NOT_STARTED, max_items=0)

    @pytest.mark.anyio
    async def test_cancelled_deadline_returns_partial_result(self, engine):
        store = Store(engine, User, TableConfig(query_all_page_size=1))
        await _seed_users(store, 4)
        deadline = Deadline()
        pages = 0
        original_query = engine.query

        async def cancelling_query(request):
            nonlocal pages
            pages += 1
            if pages == 2:
                deadline.cancel()
            return await original_query(request)

        engine.query = cancelling_query

        result = await store.query_all_pages(TYPE_STATUS_INDEX, NOT_STARTED, deadline=deadline)
        assert result.cancelled is True
        assert result.truncated is False
        assert len(result.items) == 2
        assert result.next_token is not None


class TestCount:
    @pytest.mark.anyio
    async def test_count_follows_every_page(self, table_config: TableConfig):
        engine = RecordingEngine(page_item_cap=2)
        store = Store(engine, User, table_config)
        await _seed_users(store, 5)

        result = await store.count_by_index(TYPE_STATUS_INDEX, NOT_STARTED)
        assert result.count == 5
        assert result.cancelled is False
        assert all(q.select_count for q in engine.queries)

    @pytest.mark.anyio
    async def test_count_applies_filters(self, user_store: Store[User]):
        created = await _seed_users(user_store, 3)
        result = await user_store.count_by_index(
            TYPE_STATUS_INDEX, NOT_STARTED, filters=(eq("firstName", created[1].first_name),)
        )
        assert result.count == 1

    @pytest.mark.anyio
    async def test_count_with_cancelled_deadline(self, user_store: Store[User]):
        await _seed_users(user_store, 2)
        deadline = Deadline()
        deadline.cancel()
        result = await user_store.count_by_index(TYPE_STATUS_INDEX, NOT_STARTED, deadline=deadline)
        assert result.cancelled is True
        assert result.count == 0
