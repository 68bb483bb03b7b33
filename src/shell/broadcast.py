"""Broadcast Hub - Imperative Shell.

In-process pub/sub for real-time subscribers (the WebSocket route in
api/main.py is one). Each subscriber owns a bounded asyncio.Queue;
publishing puts a message on every queue of a topic without waiting.

Delivery is best effort: a full or closed subscriber queue drops the
message for that subscriber and is reported, never retried.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, AsyncIterator

from src.core.errors import BroadcastFailure


logger = logging.getLogger(__name__)


UPDATES_TOPIC = "updates"
NEW_EVENT = "new-event"
SERVER_STATUS = "server-status"

DEFAULT_QUEUE_SIZE = 100


@dataclass(frozen=True)
class BroadcastMessage:
    """A message delivered to subscribers.

    Attributes:
        event: Event name, e.g. 'new-event'
        data: JSON-serializable payload
    """
    event: str
    data: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "data": self.data}


class Subscription:
    """A live subscription to one topic.

    Iterate to receive messages; close() (or leaving `async with`)
    unregisters the queue.
    """

    def __init__(self, hub: "BroadcastHub", topic: str, queue: asyncio.Queue) -> None:
        self.hub = hub
        self.topic = topic
        self.queue = queue

    async def get(self) -> BroadcastMessage:
        return await self.queue.get()

    def close(self) -> None:
        self.hub._unsubscribe(self.topic, self.queue)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[BroadcastMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BroadcastMessage]:
        while True:
            yield await self.queue.get()


class BroadcastHub:
    """Topic-based fan-out to in-process subscriber queues."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    @property
    def subscriber_count(self) -> int:
        """Number of distinct live subscriptions across all topics."""
        return sum(len(queues) for queues in self._subscribers.values())

    def subscribe(self, topic: str = UPDATES_TOPIC) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[topic].add(queue)
        logger.info(
            "Subscriber added to %s (%d on topic)",
            topic,
            len(self._subscribers[topic]),
        )
        return Subscription(self, topic, queue)

    def _unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(topic)
        if queues is None or queue not in queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[topic]
        logger.info("Subscriber removed from %s", topic)

    def _deliver(self, queues: list[asyncio.Queue], message: BroadcastMessage) -> int:
        dropped = 0
        for queue in queues:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                dropped += 1
        return dropped

    async def publish(self, topic: str, event: str, data: dict[str, Any]) -> int:
        """Publish a message to every subscriber of a topic.

        Having no subscribers is not an error.

        Returns:
            Number of subscribers the message was delivered to

        Raises:
            BroadcastFailure: If any subscriber queue was full
        """
        queues = list(self._subscribers.get(topic, ()))
        if not queues:
            return 0

        message = BroadcastMessage(event=event, data=data)
        dropped = self._deliver(queues, message)

        if dropped:
            raise BroadcastFailure(
                f"{dropped} of {len(queues)} subscribers on {topic} dropped {event}"
            )

        logger.debug("Broadcast %s to %d subscribers on %s", event, len(queues), topic)
        return len(queues)

    async def publish_all(self, event: str, data: dict[str, Any]) -> int:
        """Publish a message to every subscriber of every topic.

        Returns:
            Number of subscribers the message was delivered to

        Raises:
            BroadcastFailure: If any subscriber queue was full
        """
        queues = [q for topic_queues in self._subscribers.values() for q in topic_queues]
        if not queues:
            return 0

        dropped = self._deliver(queues, BroadcastMessage(event=event, data=data))
        if dropped:
            raise BroadcastFailure(f"{dropped} of {len(queues)} subscribers dropped {event}")

        return len(queues)
