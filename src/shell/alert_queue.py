"""Alert Queue - Imperative Shell.

Durable queue of alert delivery jobs. A job carries the full event and
its retry state; the worker reserves a job, attempts delivery and then
completes it, schedules a delayed retry, or abandons it.

Jobs are removed on completion. Abandoned jobs are kept in a failed set
for inspection.
"""

import asyncio
import heapq
import json
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.core.earthquake import SeismicEvent, event_from_dict, event_to_dict
from src.core.errors import AlertQueueFailure
from src.core.retry import RetryPolicy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertJob:
    """One alert delivery job.

    Attributes:
        id: Job id (unique per enqueue)
        event: The event to alert on, as it was when enqueued
        attempts_made: Failed delivery attempts so far
        max_attempts: Attempts allowed before abandoning
        backoff_base_seconds: First retry delay
        enqueued_at: Epoch seconds at enqueue time
        last_error: Error from the most recent failed attempt
    """
    id: str
    event: SeismicEvent
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    enqueued_at: float = 0.0
    last_error: str | None = None

    @property
    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base_seconds=self.backoff_base_seconds,
        )

    def record_failure(self, error: str) -> "AlertJob":
        """Return a copy with one more failed attempt recorded."""
        return replace(self, attempts_made=self.attempts_made + 1, last_error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": event_to_dict(self.event),
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "backoff_base_seconds": self.backoff_base_seconds,
            "enqueued_at": self.enqueued_at,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertJob":
        return cls(
            id=data["id"],
            event=event_from_dict(data["event"]),
            attempts_made=int(data.get("attempts_made", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            backoff_base_seconds=float(data.get("backoff_base_seconds", 1.0)),
            enqueued_at=float(data.get("enqueued_at", 0.0)),
            last_error=data.get("last_error"),
        )


def new_job(event: SeismicEvent, policy: RetryPolicy, now: float) -> AlertJob:
    """Create a fresh job for an event.

    Pure function (apart from the random job id).
    """
    return AlertJob(
        id=uuid.uuid4().hex,
        event=event,
        max_attempts=policy.max_attempts,
        backoff_base_seconds=policy.backoff_base_seconds,
        enqueued_at=now,
    )


class InMemoryAlertQueue:
    """Process-local alert queue.

    Delayed jobs become ready when the injectable clock passes their
    ready time; they are promoted lazily on reserve().
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._waiting: deque[str] = deque()
        self._delayed: list[tuple[float, int, str]] = []
        self._jobs: dict[str, AlertJob] = {}
        self._active: set[str] = set()
        self._failed: dict[str, AlertJob] = {}
        self._counter = 0
        self._wakeup = asyncio.Event()
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def is_ready(self) -> bool:
        return self._connected

    async def enqueue(self, event: SeismicEvent, policy: RetryPolicy) -> AlertJob:
        job = new_job(event, policy, self._clock())
        self._jobs[job.id] = job
        self._waiting.append(job.id)
        self._wakeup.set()
        logger.debug("Enqueued alert job %s for %s", job.id, event.id)
        return job

    def _promote_due(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, job_id = heapq.heappop(self._delayed)
            self._waiting.append(job_id)

    def _pop_ready(self) -> AlertJob | None:
        self._promote_due()
        if not self._waiting:
            return None
        job_id = self._waiting.popleft()
        self._active.add(job_id)
        return self._jobs[job_id]

    async def reserve(self, timeout: float = 0.0) -> AlertJob | None:
        """Take the next ready job, waiting up to `timeout` seconds.

        Returns:
            The reserved job, or None if nothing became ready
        """
        job = self._pop_ready()
        if job is not None or timeout <= 0:
            return job

        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

        return self._pop_ready()

    async def complete(self, job: AlertJob) -> None:
        self._active.discard(job.id)
        self._jobs.pop(job.id, None)

    async def retry_later(self, job: AlertJob, delay: float) -> None:
        """Store the updated job and make it ready after `delay` seconds."""
        self._active.discard(job.id)
        self._jobs[job.id] = job
        self._counter += 1
        heapq.heappush(self._delayed, (self._clock() + delay, self._counter, job.id))

    async def abandon(self, job: AlertJob) -> None:
        self._active.discard(job.id)
        self._jobs.pop(job.id, None)
        self._failed[job.id] = job

    def failed_jobs(self) -> list[AlertJob]:
        return list(self._failed.values())

    async def counts(self) -> dict[str, int]:
        return {
            "waiting": len(self._waiting),
            "delayed": len(self._delayed),
            "active": len(self._active),
            "failed": len(self._failed),
        }


class RedisAlertQueue:
    """Alert queue backed by Redis.

    Keys (all under `namespace`):
        <ns>:alerts:waiting   list of ready job ids
        <ns>:alerts:active    list of reserved job ids
        <ns>:alerts:delayed   sorted set of job ids, score = ready time
        <ns>:alerts:jobs      hash job id -> job JSON
        <ns>:alerts:failed    hash job id -> abandoned job JSON

    recover() moves jobs left in the active list by a crashed worker
    back to waiting, so it must only run before this process starts its
    own worker.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        namespace: str = "quakes",
        client: Any | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url
        self.namespace = namespace
        self._client = client
        self._clock = clock

    @property
    def client(self) -> redis.Redis:
        """Lazy initialization of the Redis client."""
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, decode_responses=True)
        return self._client

    def _key(self, name: str) -> str:
        return f"{self.namespace}:alerts:{name}"

    async def connect(self) -> None:
        """Ping Redis and requeue jobs orphaned by a previous run.

        Raises:
            AlertQueueFailure: If Redis cannot be reached
        """
        try:
            await self.client.ping()
        except RedisError as e:
            raise AlertQueueFailure(f"Redis ping failed: {e}") from e

        recovered = await self.recover()
        if recovered:
            logger.warning("Requeued %d orphaned alert jobs", recovered)
        logger.info("Connected to Redis alert queue (%s)", self.namespace)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_ready(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def recover(self) -> int:
        """Move every reserved job back to the waiting list.

        Returns:
            Number of requeued jobs
        """
        recovered = 0
        try:
            while await self.client.lmove(
                self._key("active"), self._key("waiting"), "RIGHT", "LEFT"
            ):
                recovered += 1
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to recover jobs: {e}") from e
        return recovered

    async def enqueue(self, event: SeismicEvent, policy: RetryPolicy) -> AlertJob:
        """Add a job for an event.

        Raises:
            AlertQueueFailure: On any Redis error
        """
        job = new_job(event, policy, self._clock())
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self._key("jobs"), job.id, json.dumps(job.to_dict()))
                pipe.rpush(self._key("waiting"), job.id)
                await pipe.execute()
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to enqueue alert for {event.id}: {e}") from e

        logger.debug("Enqueued alert job %s for %s", job.id, event.id)
        return job

    async def _promote_due(self) -> None:
        due = await self.client.zrangebyscore(self._key("delayed"), "-inf", self._clock())
        for job_id in due:
            # zrem decides which process promotes a job
            if await self.client.zrem(self._key("delayed"), job_id):
                await self.client.rpush(self._key("waiting"), job_id)

    async def reserve(self, timeout: float = 0.0) -> AlertJob | None:
        """Take the next ready job, blocking up to `timeout` seconds.

        Raises:
            AlertQueueFailure: On any Redis error
        """
        try:
            await self._promote_due()
            if timeout > 0:
                job_id = await self.client.blmove(
                    self._key("waiting"), self._key("active"), timeout, "LEFT", "RIGHT"
                )
            else:
                job_id = await self.client.lmove(
                    self._key("waiting"), self._key("active"), "LEFT", "RIGHT"
                )
            if job_id is None:
                return None
            payload = await self.client.hget(self._key("jobs"), job_id)

            if payload is None:
                logger.warning("Dropping job %s with no stored payload", job_id)
                await self.client.lrem(self._key("active"), 0, job_id)
                return None

            try:
                return AlertJob.from_dict(json.loads(payload))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Dropping job %s with unreadable payload: %s", job_id, str(e))
                async with self.client.pipeline(transaction=True) as pipe:
                    pipe.lrem(self._key("active"), 0, job_id)
                    pipe.hdel(self._key("jobs"), job_id)
                    await pipe.execute()
                return None
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to reserve job: {e}") from e

    async def complete(self, job: AlertJob) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 0, job.id)
                pipe.hdel(self._key("jobs"), job.id)
                await pipe.execute()
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to complete job {job.id}: {e}") from e

    async def retry_later(self, job: AlertJob, delay: float) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self._key("jobs"), job.id, json.dumps(job.to_dict()))
                pipe.lrem(self._key("active"), 0, job.id)
                pipe.zadd(self._key("delayed"), {job.id: self._clock() + delay})
                await pipe.execute()
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to reschedule job {job.id}: {e}") from e

    async def abandon(self, job: AlertJob) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 0, job.id)
                pipe.hdel(self._key("jobs"), job.id)
                pipe.hset(self._key("failed"), job.id, json.dumps(job.to_dict()))
                await pipe.execute()
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to abandon job {job.id}: {e}") from e

    async def counts(self) -> dict[str, int]:
        try:
            async with self.client.pipeline(transaction=False) as pipe:
                pipe.llen(self._key("waiting"))
                pipe.zcard(self._key("delayed"))
                pipe.llen(self._key("active"))
                pipe.hlen(self._key("failed"))
                waiting, delayed, active, failed = await pipe.execute()
        except RedisError as e:
            raise AlertQueueFailure(f"Failed to count jobs: {e}") from e

        return {
            "waiting": int(waiting),
            "delayed": int(delayed),
            "active": int(active),
            "failed": int(failed),
        }
