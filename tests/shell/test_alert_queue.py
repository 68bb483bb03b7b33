"""Tests for the alert queue backends."""

import asyncio
import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.earthquake import Location, SeismicEvent
from src.core.errors import AlertQueueFailure
from src.core.retry import RetryPolicy
from src.shell.alert_queue import AlertJob, InMemoryAlertQueue, RedisAlertQueue, new_job


POLICY = RetryPolicy(max_attempts=3, backoff_base_seconds=1.0)


def make_event(event_id="eq1"):
    return SeismicEvent(
        id=event_id,
        magnitude=5.0,
        location=Location(latitude=1.0, longitude=2.0, place="Somewhere"),
        depth=10.0,
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        feed_updated_at=1,
    )


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestAlertJob:
    """Tests for AlertJob."""

    def test_new_job_copies_policy(self):
        job = new_job(make_event(), RetryPolicy(max_attempts=5, backoff_base_seconds=2.0), 10.0)

        assert job.attempts_made == 0
        assert job.policy == RetryPolicy(max_attempts=5, backoff_base_seconds=2.0)
        assert job.enqueued_at == 10.0

    def test_record_failure(self):
        job = new_job(make_event(), POLICY, 0.0)

        failed = job.record_failure("broker down").record_failure("still down")

        assert failed.attempts_made == 2
        assert failed.last_error == "still down"
        assert job.attempts_made == 0

    def test_dict_form_keeps_event(self):
        job = new_job(make_event(), POLICY, 0.0).record_failure("x")

        restored = AlertJob.from_dict(json.loads(json.dumps(job.to_dict())))

        assert restored == job


class TestInMemoryAlertQueue:
    """Tests for InMemoryAlertQueue."""

    @pytest.mark.asyncio
    async def test_fifo(self):
        queue = InMemoryAlertQueue()
        await queue.enqueue(make_event("eq1"), POLICY)
        await queue.enqueue(make_event("eq2"), POLICY)

        first = await queue.reserve()
        second = await queue.reserve()

        assert (first.event.id, second.event.id) == ("eq1", "eq2")
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_complete_removes_job(self):
        queue = InMemoryAlertQueue()
        await queue.enqueue(make_event(), POLICY)
        job = await queue.reserve()

        assert (await queue.counts())["active"] == 1
        await queue.complete(job)

        assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_retry_later_waits_for_delay(self):
        clock = FakeClock()
        queue = InMemoryAlertQueue(clock=clock)
        await queue.enqueue(make_event(), POLICY)
        job = await queue.reserve()

        await queue.retry_later(job.record_failure("boom"), 2.0)

        clock.now += 1.9
        assert await queue.reserve() is None

        clock.now += 0.1
        retried = await queue.reserve()
        assert retried.id == job.id
        assert retried.attempts_made == 1

    @pytest.mark.asyncio
    async def test_abandon_keeps_failed_job(self):
        queue = InMemoryAlertQueue()
        await queue.enqueue(make_event(), POLICY)
        job = (await queue.reserve()).record_failure("gave up")

        await queue.abandon(job)

        assert queue.failed_jobs() == [job]
        assert (await queue.counts())["failed"] == 1

    @pytest.mark.asyncio
    async def test_reserve_wakes_on_enqueue(self):
        queue = InMemoryAlertQueue()

        waiter = asyncio.create_task(queue.reserve(timeout=5))
        await asyncio.sleep(0)
        await queue.enqueue(make_event(), POLICY)

        job = await asyncio.wait_for(waiter, 1)
        assert job.event.id == "eq1"

    @pytest.mark.asyncio
    async def test_reserve_times_out(self):
        assert await InMemoryAlertQueue().reserve(timeout=0.01) is None


@pytest.fixture
def redis_client():
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    client.pipeline.return_value.__aenter__.return_value = pipe
    client.ping = AsyncMock(return_value=True)
    client.lmove = AsyncMock(return_value=None)
    client.blmove = AsyncMock(return_value=None)
    client.hget = AsyncMock(return_value=None)
    client.lrem = AsyncMock()
    client.zrangebyscore = AsyncMock(return_value=[])
    client.zrem = AsyncMock(return_value=1)
    client.rpush = AsyncMock()
    return client


@pytest.fixture
def redis_queue(redis_client):
    return RedisAlertQueue(namespace="test", client=redis_client, clock=FakeClock(100.0))


def pipeline_of(client):
    return client.pipeline.return_value.__aenter__.return_value


class TestRedisAlertQueue:
    """Tests for RedisAlertQueue."""

    @pytest.mark.asyncio
    async def test_connect_requeues_orphaned_jobs(self, redis_queue, redis_client):
        redis_client.lmove.side_effect = ["job1", "job2", None]

        await redis_queue.connect()

        redis_client.lmove.assert_awaited_with(
            "test:alerts:active", "test:alerts:waiting", "RIGHT", "LEFT"
        )
        assert redis_client.lmove.await_count == 3

    @pytest.mark.asyncio
    async def test_connect_failure(self, redis_queue, redis_client):
        redis_client.ping.side_effect = RedisConnectionError("gone")

        with pytest.raises(AlertQueueFailure):
            await redis_queue.connect()

    @pytest.mark.asyncio
    async def test_enqueue_stores_job_and_id(self, redis_queue, redis_client):
        job = await redis_queue.enqueue(make_event(), POLICY)

        pipe = pipeline_of(redis_client)
        key, job_id, payload = pipe.hset.call_args[0]
        assert (key, job_id) == ("test:alerts:jobs", job.id)
        assert json.loads(payload)["event"]["id"] == "eq1"
        pipe.rpush.assert_called_once_with("test:alerts:waiting", job.id)

    @pytest.mark.asyncio
    async def test_reserve_moves_to_active(self, redis_queue, redis_client):
        stored = new_job(make_event(), POLICY, 0.0)
        redis_client.lmove.return_value = stored.id
        redis_client.hget.return_value = json.dumps(stored.to_dict())

        job = await redis_queue.reserve()

        redis_client.lmove.assert_awaited_with(
            "test:alerts:waiting", "test:alerts:active", "LEFT", "RIGHT"
        )
        assert job == stored

    @pytest.mark.asyncio
    async def test_reserve_blocks_with_timeout(self, redis_queue, redis_client):
        await redis_queue.reserve(timeout=2)

        redis_client.blmove.assert_awaited_with(
            "test:alerts:waiting", "test:alerts:active", 2, "LEFT", "RIGHT"
        )

    @pytest.mark.asyncio
    async def test_reserve_promotes_due_jobs(self, redis_queue, redis_client):
        redis_client.zrangebyscore.return_value = ["job1"]

        await redis_queue.reserve()

        redis_client.zrangebyscore.assert_awaited_with("test:alerts:delayed", "-inf", 100.0)
        redis_client.rpush.assert_awaited_with("test:alerts:waiting", "job1")

    @pytest.mark.asyncio
    async def test_promotion_lost_to_another_worker(self, redis_queue, redis_client):
        redis_client.zrangebyscore.return_value = ["job1"]
        redis_client.zrem.return_value = 0

        await redis_queue.reserve()

        redis_client.rpush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reserve_drops_job_without_payload(self, redis_queue, redis_client):
        redis_client.lmove.return_value = "ghost"

        assert await redis_queue.reserve() is None
        redis_client.lrem.assert_awaited_with("test:alerts:active", 0, "ghost")

    @pytest.mark.asyncio
    async def test_reserve_drops_unreadable_payload(self, redis_queue, redis_client):
        redis_client.lmove.return_value = "job1"
        redis_client.hget.return_value = '{"id": "job1"'

        assert await redis_queue.reserve() is None

        pipe = pipeline_of(redis_client)
        pipe.lrem.assert_called_once_with("test:alerts:active", 0, "job1")
        pipe.hdel.assert_called_once_with("test:alerts:jobs", "job1")

    @pytest.mark.asyncio
    async def test_drop_failure_becomes_queue_failure(self, redis_queue, redis_client):
        redis_client.lmove.return_value = "ghost"
        redis_client.lrem.side_effect = RedisConnectionError("gone")

        with pytest.raises(AlertQueueFailure):
            await redis_queue.reserve()

    @pytest.mark.asyncio
    async def test_retry_later_schedules_delay(self, redis_queue, redis_client):
        job = new_job(make_event(), POLICY, 0.0)

        await redis_queue.retry_later(job, 4.0)

        pipeline_of(redis_client).zadd.assert_called_once_with(
            "test:alerts:delayed", {job.id: 104.0}
        )

    @pytest.mark.asyncio
    async def test_abandon_moves_to_failed(self, redis_queue, redis_client):
        job = new_job(make_event(), POLICY, 0.0).record_failure("x")

        await redis_queue.abandon(job)

        pipe = pipeline_of(redis_client)
        pipe.hdel.assert_called_once_with("test:alerts:jobs", job.id)
        assert pipe.hset.call_args[0][:2] == ("test:alerts:failed", job.id)

    @pytest.mark.asyncio
    async def test_counts(self, redis_queue, redis_client):
        pipeline_of(redis_client).execute.return_value = [2, 1, 0, 3]

        assert await redis_queue.counts() == {
            "waiting": 2,
            "delayed": 1,
            "active": 0,
            "failed": 3,
        }

    @pytest.mark.asyncio
    async def test_redis_errors_become_queue_failures(self, redis_queue, redis_client):
        pipeline_of(redis_client).execute.side_effect = RedisConnectionError("gone")

        with pytest.raises(AlertQueueFailure):
            await redis_queue.enqueue(make_event(), POLICY)
