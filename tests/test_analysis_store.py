"""Tests for durable storage, cache-aside reads and invalidation."""

import json

import pytest

from app.core.errors import CacheUnavailable, NotFoundOrUnauthorized, QuotaExceeded
from app.schemas.analysis import Feedback, Tier
from app.services.cache_service import analysis_key, owner_list_key


async def test_create_and_get_round_trip(store, record_factory):
    record = record_factory(summary="Lease for office space", risks=[{"description": "d", "explanation": "e"}])
    await store.create(record)

    fetched = await store.get(record.id, record.owner_id)

    assert fetched.id == record.id
    assert fetched.summary == "Lease for office space"
    assert fetched.risks[0].description == "d"
    assert fetched.created_at.tzinfo is not None


async def test_get_populates_cache(store, fake_redis, record_factory):
    record = record_factory()
    await store.create(record)
    assert analysis_key(record.id) not in fake_redis.data

    await store.get(record.id, record.owner_id)

    cached = json.loads(fake_redis.data[analysis_key(record.id)])
    assert cached["owner_id"] == record.owner_id
    assert fake_redis.ttls[analysis_key(record.id)] == 3600


async def test_get_after_delete_is_not_found(store, record_factory):
    record = record_factory()
    await store.create(record)
    await store.get(record.id, record.owner_id)
    await store.list_by_owner(record.owner_id)

    await store.delete(record.id, record.owner_id)

    with pytest.raises(NotFoundOrUnauthorized):
        await store.get(record.id, record.owner_id)
    assert await store.list_by_owner(record.owner_id) == []


async def test_other_owner_gets_same_error_as_missing(store, record_factory):
    record = record_factory(owner_id="owner-b")
    await store.create(record)
    await store.get(record.id, "owner-b")  # warm the cache

    with pytest.raises(NotFoundOrUnauthorized) as foreign:
        await store.get(record.id, "owner-a")
    with pytest.raises(NotFoundOrUnauthorized) as missing:
        await store.get("does-not-exist", "owner-a")

    assert foreign.value.status_code == missing.value.status_code
    assert foreign.value.message == missing.value.message


async def test_delete_of_foreign_record_is_rejected(store, record_factory):
    record = record_factory(owner_id="owner-b")
    await store.create(record)

    with pytest.raises(NotFoundOrUnauthorized):
        await store.delete(record.id, "owner-a")
    assert (await store.get(record.id, "owner-b")).id == record.id


async def test_free_quota_enforced_on_insert(store, record_factory):
    for _ in range(3):
        await store.create(record_factory(owner_id="free-owner"))

    with pytest.raises(QuotaExceeded):
        await store.create(record_factory(owner_id="free-owner"))
    assert await store.count_by_owner("free-owner") == 3


async def test_premium_is_not_limited(store, record_factory):
    for _ in range(5):
        await store.create(record_factory(owner_id="premium-owner", tier=Tier.PREMIUM))

    assert await store.count_by_owner("premium-owner") == 5


async def test_list_is_newest_first_and_filters_project(store, record_factory, past):
    oldest = record_factory(project_id="p1", created_at=past(1), tier=Tier.PREMIUM)
    middle = record_factory(project_id="p2", created_at=past(2), tier=Tier.PREMIUM)
    newest = record_factory(project_id="p1", created_at=past(3), tier=Tier.PREMIUM)
    for record in (middle, oldest, newest):
        await store.create(record)

    assert [r.id for r in await store.list_by_owner("owner-1")] == [newest.id, middle.id, oldest.id]
    # served from the cached owner list the second time
    assert [r.id for r in await store.list_by_owner("owner-1", project_id="p1")] == [newest.id, oldest.id]


async def test_create_invalidates_owner_list(store, fake_redis, record_factory):
    await store.create(record_factory())
    await store.list_by_owner("owner-1")
    assert owner_list_key("owner-1") in fake_redis.data

    await store.create(record_factory())

    assert owner_list_key("owner-1") not in fake_redis.data
    assert len(await store.list_by_owner("owner-1")) == 2


async def test_attach_feedback_updates_cached_view(store, record_factory):
    record = record_factory()
    await store.create(record)
    await store.get(record.id, record.owner_id)

    updated = await store.attach_feedback(record.id, record.owner_id, Feedback(rating=4, comments="Helpful"))

    assert updated.feedback.rating == 4
    assert (await store.get(record.id, record.owner_id)).feedback.comments == "Helpful"


async def test_attach_feedback_requires_ownership(store, record_factory):
    record = record_factory(owner_id="owner-b")
    await store.create(record)

    with pytest.raises(NotFoundOrUnauthorized):
        await store.attach_feedback(record.id, "owner-a", Feedback(rating=1))


async def test_cache_read_failure_falls_back_to_store(store, fake_redis, record_factory):
    record = record_factory()
    await store.create(record)
    fake_redis.fail_on = {"get", "set"}

    assert (await store.get(record.id, record.owner_id)).id == record.id


async def test_failed_invalidation_is_reported(store, fake_redis, record_factory):
    record = record_factory()
    await store.create(record)
    fake_redis.fail_on = {"delete"}

    with pytest.raises(CacheUnavailable):
        await store.delete(record.id, record.owner_id)


async def test_delete_leaves_marker_that_blocks_stale_write_back(store, fake_redis, record_factory):
    record = record_factory()
    await store.create(record)
    original = store.get_uncached

    async def read_then_lose_race(analysis_id, owner_id):
        loaded = await original(analysis_id, owner_id)
        await store.delete(analysis_id, owner_id)
        return loaded

    store.get_uncached = read_then_lose_race
    await store.get(record.id, record.owner_id)
    store.get_uncached = original

    assert json.loads(fake_redis.data[analysis_key(record.id)]) == {"deleted": True}
    with pytest.raises(NotFoundOrUnauthorized):
        await store.get(record.id, record.owner_id)
