"""In-memory Event Store - Imperative Shell.

A process-local store with the same method surface as FirestoreEventStore.
Used for local runs and tests. Every method completes without awaiting
anything else, so each call is atomic with respect to other coroutines on
the same event loop.
"""

import logging
from dataclasses import replace
from datetime import datetime

from src.core.dedup import revision_fields
from src.core.earthquake import SeismicEvent
from src.core.errors import DuplicateEvent
from src.core.query import EventFilter, apply_filter


logger = logging.getLogger(__name__)


class InMemoryEventStore:
    """Event store keyed uniquely by event id."""

    def __init__(self) -> None:
        self._events: dict[str, SeismicEvent] = {}
        self._connected = False

    async def connect(self) -> None:
        self._connected = True
        logger.info("In-memory event store ready")

    async def disconnect(self) -> None:
        self._connected = False

    async def is_ready(self) -> bool:
        return self._connected

    async def get(self, event_id: str) -> SeismicEvent | None:
        return self._events.get(event_id)

    async def insert(self, event: SeismicEvent) -> None:
        """Insert a new event.

        Raises:
            DuplicateEvent: If the id is already stored
        """
        if event.id in self._events:
            raise DuplicateEvent(event.id)
        self._events[event.id] = event

    async def apply_revision(self, event: SeismicEvent) -> bool:
        """Store a newer feed revision of an existing event.

        Only the revisable fields and `updated_at` are written; flags stay
        as stored. The write is skipped if the stored revision is not
        older than the incoming one.

        Returns:
            True if the revision was written
        """
        stored = self._events.get(event.id)
        if stored is None or event.feed_updated_at <= stored.feed_updated_at:
            return False

        self._events[event.id] = replace(
            stored,
            updated_at=event.updated_at,
            **revision_fields(event),
        )
        return True

    async def mark_notification_sent(
        self,
        event_id: str,
        now: datetime,
    ) -> SeismicEvent | None:
        """Set notification_sent on an event (idempotent).

        Returns:
            The stored event after the update, or None if unknown
        """
        stored = self._events.get(event_id)
        if stored is None:
            return None

        if not stored.notification_sent:
            stored = replace(stored, notification_sent=True, updated_at=now)
            self._events[event_id] = stored

        return stored

    async def find_all(self, event_filter: EventFilter) -> list[SeismicEvent]:
        return apply_filter(list(self._events.values()), event_filter)

    async def count(
        self,
        since: datetime | None = None,
        min_magnitude: float | None = None,
    ) -> int:
        """Count events, optionally by occurrence time and magnitude."""
        total = 0
        for event in self._events.values():
            if since is not None and event.occurred_at < since:
                continue
            if min_magnitude is not None and event.magnitude < min_magnitude:
                continue
            total += 1
        return total
