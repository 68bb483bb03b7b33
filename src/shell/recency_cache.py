"""Recency Cache - Imperative Shell.

A bounded, time-ordered window of the most recent events plus a
short-lived per-id detail cache. The window is trimmed by rank only:
after every insert it keeps the `capacity` most recent events by
occurrence time, ties broken by insertion order (later insert ranks as
more recent). Detail entries expire independently of the window.

The cache is never the source of truth. Backend errors surface as
CacheUnavailable so callers can fall back to the store.
"""

import bisect
import json
import logging
import time
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.core.earthquake import SeismicEvent, event_from_dict, event_to_dict
from src.core.errors import CacheUnavailable


logger = logging.getLogger(__name__)


DEFAULT_CAPACITY = 1000
DEFAULT_DETAIL_TTL_SECONDS = 24 * 60 * 60


class InMemoryRecencyCache:
    """Process-local recency window and detail cache.

    The window is a sorted list of (occurred_ms, seq) keys. Detail entries
    carry their own expiry, checked against an injectable clock.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        detail_ttl_seconds: int = DEFAULT_DETAIL_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capacity = capacity
        self.detail_ttl_seconds = detail_ttl_seconds
        self._clock = clock
        self._keys: list[tuple[int, int]] = []
        self._ids_by_key: dict[tuple[int, int], str] = {}
        self._key_by_id: dict[str, tuple[int, int]] = {}
        self._events: dict[str, SeismicEvent] = {}
        self._details: dict[str, tuple[float, SeismicEvent]] = {}
        self._seq = 0
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def is_ready(self) -> bool:
        return self._connected

    def _remove_from_window(self, event_id: str) -> None:
        key = self._key_by_id.pop(event_id, None)
        if key is None:
            return
        index = bisect.bisect_left(self._keys, key)
        if index < len(self._keys) and self._keys[index] == key:
            del self._keys[index]
        self._ids_by_key.pop(key, None)
        self._events.pop(event_id, None)

    async def add(self, event: SeismicEvent) -> None:
        """Insert or refresh an event, then trim to capacity."""
        self._remove_from_window(event.id)

        self._seq += 1
        key = (event.occurred_at_ms, self._seq)
        bisect.insort(self._keys, key)
        self._ids_by_key[key] = event.id
        self._key_by_id[event.id] = key
        self._events[event.id] = event

        await self.set_detail(event)
        await self.trim_to_capacity(self.capacity)

    async def trim_to_capacity(self, capacity: int) -> int:
        """Evict the oldest-ranked events beyond `capacity`.

        Returns:
            Number of evicted events
        """
        overflow = len(self._keys) - capacity
        if overflow <= 0:
            return 0

        evicted = self._keys[:overflow]
        del self._keys[:overflow]
        for key in evicted:
            event_id = self._ids_by_key.pop(key)
            self._key_by_id.pop(event_id, None)
            self._events.pop(event_id, None)

        return overflow

    async def range_latest(self, offset: int, limit: int) -> list[SeismicEvent]:
        """Get up to `limit` events starting `offset` from the newest."""
        if limit <= 0:
            return []
        end = len(self._keys) - offset
        if end <= 0:
            return []
        start = max(end - limit, 0)
        keys = self._keys[start:end]
        return [self._events[self._ids_by_key[key]] for key in reversed(keys)]

    async def set_detail(self, event: SeismicEvent) -> None:
        expires_at = self._clock() + self.detail_ttl_seconds
        self._details[event.id] = (expires_at, event)
        if event.id in self._events:
            self._events[event.id] = event

    async def get_detail(self, event_id: str) -> SeismicEvent | None:
        entry = self._details.get(event_id)
        if entry is None:
            return None

        expires_at, event = entry
        if self._clock() >= expires_at:
            del self._details[event_id]
            return None

        return event

    async def size(self) -> int:
        return len(self._keys)


class RedisRecencyCache:
    """Recency window and detail cache backed by Redis.

    Keys (all under `namespace`):
        <ns>:recent          sorted set, member "<seq>:<id>", score occurred ms
        <ns>:recent:member   hash id -> current sorted-set member
        <ns>:recent:data     hash id -> event JSON
        <ns>:recent:seq      insertion counter
        <ns>:event:<id>      event JSON, expires after detail_ttl_seconds

    Redis orders equal scores by member; the zero-padded sequence prefix
    makes that order the insertion order.
    """

    SEQ_WIDTH = 15

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        namespace: str = "quakes",
        capacity: int = DEFAULT_CAPACITY,
        detail_ttl_seconds: int = DEFAULT_DETAIL_TTL_SECONDS,
        client: Any | None = None,
    ) -> None:
        self.url = url
        self.namespace = namespace
        self.capacity = capacity
        self.detail_ttl_seconds = detail_ttl_seconds
        self._client = client

    @property
    def client(self) -> redis.Redis:
        """Lazy initialization of the Redis client."""
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, decode_responses=True)
        return self._client

    def _key(self, *parts: str) -> str:
        return ":".join((self.namespace, *parts))

    @property
    def _window_key(self) -> str:
        return self._key("recent")

    @property
    def _member_key(self) -> str:
        return self._key("recent", "member")

    @property
    def _data_key(self) -> str:
        return self._key("recent", "data")

    @property
    def _seq_key(self) -> str:
        return self._key("recent", "seq")

    def _detail_key(self, event_id: str) -> str:
        return self._key("event", event_id)

    async def connect(self) -> None:
        """Ping Redis.

        Raises:
            CacheUnavailable: If Redis cannot be reached
        """
        try:
            await self.client.ping()
        except RedisError as e:
            raise CacheUnavailable(f"Redis ping failed: {e}") from e
        logger.info("Connected to Redis recency cache (%s)", self.namespace)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Disconnected from Redis recency cache")

    async def is_ready(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def add(self, event: SeismicEvent) -> None:
        """Insert or refresh an event, then trim to capacity.

        Raises:
            CacheUnavailable: On any Redis error
        """
        payload = json.dumps(event_to_dict(event))

        try:
            old_member = await self.client.hget(self._member_key, event.id)
            seq = await self.client.incr(self._seq_key)
            member = f"{seq:0{self.SEQ_WIDTH}d}:{event.id}"

            async with self.client.pipeline(transaction=True) as pipe:
                if old_member:
                    pipe.zrem(self._window_key, old_member)
                pipe.zadd(self._window_key, {member: event.occurred_at_ms})
                pipe.hset(self._member_key, event.id, member)
                pipe.hset(self._data_key, event.id, payload)
                pipe.set(self._detail_key(event.id), payload, ex=self.detail_ttl_seconds)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"Failed to cache {event.id}: {e}") from e

        await self.trim_to_capacity(self.capacity)

    async def trim_to_capacity(self, capacity: int) -> int:
        """Evict the lowest-ranked events beyond `capacity`.

        Returns:
            Number of evicted events

        Raises:
            CacheUnavailable: On any Redis error
        """
        try:
            overflow = await self.client.zcard(self._window_key) - capacity
            if overflow <= 0:
                return 0

            members = await self.client.zrange(self._window_key, 0, overflow - 1)
            if not members:
                return 0

            ids = [member.split(":", 1)[1] for member in members]
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._window_key, *members)
                pipe.hdel(self._member_key, *ids)
                pipe.hdel(self._data_key, *ids)
                await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"Failed to trim recency window: {e}") from e

        logger.debug("Evicted %d events from recency window", len(members))
        return len(members)

    async def range_latest(self, offset: int, limit: int) -> list[SeismicEvent]:
        """Get up to `limit` events starting `offset` from the newest.

        Raises:
            CacheUnavailable: On any Redis error
        """
        if limit <= 0:
            return []

        try:
            members = await self.client.zrevrange(
                self._window_key, offset, offset + limit - 1
            )
            if not members:
                return []
            ids = [member.split(":", 1)[1] for member in members]
            payloads = await self.client.hmget(self._data_key, ids)
        except RedisError as e:
            raise CacheUnavailable(f"Failed to read recency window: {e}") from e

        return [
            event_from_dict(json.loads(payload))
            for payload in payloads
            if payload is not None
        ]

    async def set_detail(self, event: SeismicEvent) -> None:
        """Write (or refresh) the detail entry for an event.

        Raises:
            CacheUnavailable: On any Redis error
        """
        payload = json.dumps(event_to_dict(event))
        try:
            await self.client.set(
                self._detail_key(event.id), payload, ex=self.detail_ttl_seconds
            )
            if await self.client.hexists(self._data_key, event.id):
                await self.client.hset(self._data_key, event.id, payload)
        except RedisError as e:
            raise CacheUnavailable(f"Failed to cache detail for {event.id}: {e}") from e

    async def get_detail(self, event_id: str) -> SeismicEvent | None:
        """Read the detail entry for an event.

        Raises:
            CacheUnavailable: On any Redis error
        """
        try:
            payload = await self.client.get(self._detail_key(event_id))
        except RedisError as e:
            raise CacheUnavailable(f"Failed to read detail for {event_id}: {e}") from e

        if payload is None:
            return None

        return event_from_dict(json.loads(payload))

    async def size(self) -> int:
        try:
            return int(await self.client.zcard(self._window_key))
        except RedisError as e:
            raise CacheUnavailable(f"Failed to size recency window: {e}") from e
