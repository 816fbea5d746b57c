"""Tests for the mutation coordinator and its cache policies."""

from __future__ import annotations

import pytest

from luxicle.cache import keys
from luxicle.cache.keys import Entity
from luxicle.cache.mutations import MutationCoordinator, merge_shallow
from luxicle.cache.query_cache import QueryCache
from luxicle.errors import ErrorKind, OwnershipError
from luxicle.luxicles.schemas import LuxicleDetail, LuxicleItem, LuxicleSummary
from luxicle.result import Err, Ok


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache(retry=0, retry_delay=0)


@pytest.fixture
def coordinator(cache: QueryCache) -> MutationCoordinator:
    return MutationCoordinator(cache)


def _detail(**overrides: object) -> LuxicleDetail:
    fields = {
        "id": "l1",
        "user_id": "u1",
        "title": "Best pizza in town",
        "items": [LuxicleItem(id="i1", luxicle_id="l1", position=1, title="Joe's")],
    }
    fields.update(overrides)
    return LuxicleDetail(**fields)


class TestMergeShallow:
    def test_nothing_cached_takes_new(self):
        assert merge_shallow(None, {"a": 1}) == {"a": 1}

    def test_mappings_overlay(self):
        assert merge_shallow({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_model_keeps_type_and_extra_fields(self):
        old = _detail()
        new = LuxicleSummary(id="l1", user_id="u1", title="Best pizza, revised")
        merged = merge_shallow(old, new)
        assert isinstance(merged, LuxicleDetail)
        assert merged.title == "Best pizza, revised"
        assert merged.items == old.items


class TestRunCreate:
    async def test_seeds_detail_and_invalidates_lists(self, cache: QueryCache, coordinator: MutationCoordinator):
        search = keys.luxicle_search({"query": "pizza"})
        cache.set_data(search, [])
        created = _detail()

        async def mutation() -> LuxicleDetail:
            return created

        result = await coordinator.run_create(
            mutation,
            lambda lx: keys.luxicle_detail(lx.id),
            keys.prefixes(Entity.LUXICLES, keys.LUXICLE_LIST_SCOPES),
            name="create_luxicle",
        )
        assert isinstance(result, Ok)
        assert cache.get(keys.luxicle_detail("l1")) is created
        assert cache.get_entry(search).invalidated

    async def test_failure_leaves_cache_alone(self, cache: QueryCache, coordinator: MutationCoordinator):
        search = keys.luxicle_search()
        cache.set_data(search, ["kept"])

        async def mutation() -> LuxicleDetail:
            raise OwnershipError("You do not own this luxicle")

        result = await coordinator.run_create(mutation, keys.luxicle_detail("l1"), [search])
        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.OWNERSHIP
        assert not cache.get_entry(search).invalidated
        assert cache.get(keys.luxicle_detail("l1")) is None

    async def test_foreign_exception_is_wrapped(self, coordinator: MutationCoordinator):
        async def mutation() -> None:
            raise ConnectionResetError("socket closed")

        result = await coordinator.run_create(mutation)
        assert isinstance(result, Err)
        assert result.error.kind is ErrorKind.TRANSPORT


class TestRunUpdate:
    async def test_merges_into_cached_detail(self, cache: QueryCache, coordinator: MutationCoordinator):
        detail_key = keys.luxicle_detail("l1")
        cache.set_data(detail_key, _detail())

        async def mutation() -> LuxicleSummary:
            return LuxicleSummary(id="l1", user_id="u1", title="Renamed", is_published=True)

        result = await coordinator.run_update(mutation, [detail_key])
        assert result.ok
        cached = cache.get(detail_key)
        assert isinstance(cached, LuxicleDetail)
        assert cached.title == "Renamed"
        assert len(cached.items) == 1

    async def test_writes_value_when_nothing_cached(self, cache: QueryCache, coordinator: MutationCoordinator):
        async def mutation() -> dict[str, str]:
            return {"id": "u1", "username": "alice"}

        await coordinator.run_update(
            mutation,
            lambda p: [keys.user_detail(p["id"]), keys.user_by_username(p["username"])],
        )
        assert cache.get(keys.user_detail("u1")) == {"id": "u1", "username": "alice"}
        assert cache.get(keys.user_by_username("ALICE"))["username"] == "alice"

    async def test_mutation_runs_once(self, coordinator: MutationCoordinator):
        calls = []

        async def mutation() -> None:
            calls.append(1)
            raise ConnectionResetError("flaky")

        await coordinator.run_update(mutation)
        assert calls == [1]
