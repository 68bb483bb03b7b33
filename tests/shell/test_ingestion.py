"""Tests for the ingestion engine.

Runs against the in-memory store and cache.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from src.core.dedup import Classification
from src.core.errors import CacheUnavailable, StoreWriteFailure
from src.core.query import EventFilter
from src.ingestion import IngestionEngine
from src.shell.event_store import InMemoryEventStore
from src.shell.recency_cache import InMemoryRecencyCache


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_feature(event_id="us1000abcd", mag=5.8, time=1700000000000, updated=1700000000000):
    return {
        "type": "Feature",
        "id": event_id,
        "properties": {
            "mag": mag,
            "place": "10km N of Somewhere",
            "time": time,
            "updated": updated,
            "url": f"https://earthquake.usgs.gov/earthquakes/eventpage/{event_id}",
        },
        "geometry": {"type": "Point", "coordinates": [-122.1, 37.4, 10.2]},
    }


class YieldingStore(InMemoryEventStore):
    """Store whose reads yield to the event loop, so ingests interleave."""

    async def get(self, event_id):
        await asyncio.sleep(0)
        return await super().get(event_id)


@pytest.fixture
def clock():
    times = iter(NOW + timedelta(minutes=i) for i in range(1000))
    return lambda: next(times)


@pytest.fixture
async def store():
    store = InMemoryEventStore()
    await store.connect()
    return store


@pytest.fixture
def cache():
    return InMemoryRecencyCache(capacity=100)


@pytest.fixture
def engine(store, cache, clock):
    return IngestionEngine(store, cache, clock=clock)


class TestIngest:
    """Tests for IngestionEngine.ingest()."""

    @pytest.mark.asyncio
    async def test_first_sighting_is_new(self, engine, store, cache):
        result = await engine.ingest([make_feature()])

        assert (result.new, result.updated, result.unchanged) == (1, 0, 0)
        stored = await store.get("us1000abcd")
        assert stored.magnitude == 5.8
        assert stored.notification_sent is False
        assert stored.created_at == NOW
        assert [e.id for e in await cache.range_latest(0, 10)] == ["us1000abcd"]

    @pytest.mark.asyncio
    async def test_reingesting_same_batch_is_a_no_op(self, engine, store):
        features = [make_feature("eq1"), make_feature("eq2")]
        await engine.ingest(features)
        before = await store.find_all(EventFilter())

        result = await engine.ingest(features)

        assert result.unchanged == 2
        assert result.changed == []
        assert await store.find_all(EventFilter()) == before

    @pytest.mark.asyncio
    async def test_newer_revision_is_updated(self, engine, store):
        await engine.ingest([make_feature(mag=5.8, updated=1700000000000)])
        await store.mark_notification_sent("us1000abcd", NOW)

        result = await engine.ingest([make_feature(mag=6.1, updated=1700000300000)])

        assert result.updated == 1
        event, classification = result.changed[0]
        assert classification is Classification.UPDATED
        stored = await store.get("us1000abcd")
        assert stored.magnitude == 6.1
        assert stored.feed_updated_at == 1700000300000
        assert stored.notification_sent is True
        assert stored.created_at == NOW
        assert stored.updated_at > stored.created_at

    @pytest.mark.asyncio
    async def test_older_revision_is_unchanged(self, engine, store):
        await engine.ingest([make_feature(mag=5.8, updated=1700000300000)])

        result = await engine.ingest([make_feature(mag=4.0, updated=1700000000000)])

        assert result.unchanged == 1
        assert (await store.get("us1000abcd")).magnitude == 5.8

    @pytest.mark.asyncio
    async def test_changed_events_keep_feed_order(self, engine):
        result = await engine.ingest([make_feature("eq2"), make_feature("eq1"), make_feature("eq3")])

        assert [event.id for event, _ in result.changed] == ["eq2", "eq1", "eq3"]

    @pytest.mark.asyncio
    async def test_malformed_features_are_skipped(self, engine):
        broken = {"id": "eq9", "properties": {"mag": 3.0}, "geometry": {"coordinates": [1, 2]}}

        result = await engine.ingest([broken, make_feature("eq1"), {}])

        assert result.skipped == 2
        assert result.new == 1
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_store_failure_does_not_stop_batch(self, engine, store):
        original_insert = store.insert

        async def flaky_insert(event):
            if event.id == "eq1":
                raise StoreWriteFailure("write rejected")
            await original_insert(event)

        store.insert = flaky_insert

        result = await engine.ingest([make_feature("eq1"), make_feature("eq2")])

        assert result.failed == 1
        assert result.new == 1
        assert await store.get("eq1") is None
        assert await store.get("eq2") is not None

    @pytest.mark.asyncio
    async def test_cache_failure_is_not_fatal(self, store, clock):
        cache = AsyncMock()
        cache.add.side_effect = CacheUnavailable("down")
        engine = IngestionEngine(store, cache, clock=clock)

        result = await engine.ingest([make_feature()])

        assert result.new == 1
        assert await store.get("us1000abcd") is not None


class TestConcurrentIngest:
    """Overlapping ingests of the same record."""

    @pytest.mark.asyncio
    async def test_concurrent_first_sighting_is_new_once(self, cache, clock):
        store = YieldingStore()
        await store.connect()
        engine = IngestionEngine(store, cache, clock=clock)

        results = await asyncio.gather(
            engine.ingest([make_feature()]),
            engine.ingest([make_feature()]),
        )

        assert sorted(r.new for r in results) == [0, 1]
        assert sorted(r.unchanged for r in results) == [0, 1]
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_revision_is_updated_once(self, cache, clock):
        store = YieldingStore()
        await store.connect()
        engine = IngestionEngine(store, cache, clock=clock)
        await engine.ingest([make_feature(updated=1000)])

        results = await asyncio.gather(
            engine.ingest([make_feature(mag=6.0, updated=2000)]),
            engine.ingest([make_feature(mag=6.0, updated=2000)]),
        )

        assert sorted(r.updated for r in results) == [0, 1]
        assert (await store.get("us1000abcd")).feed_updated_at == 2000
