"""Firestore Event Store - Imperative Shell.

This module persists every seismic event ever seen, one document per
event, using Google Cloud Firestore. The document id is the event id, so
Firestore's create() is the uniqueness arbiter between concurrent cycles.

All I/O is contained here; dedup decisions are in the core module.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from src.core.dedup import revision_fields
from src.core.earthquake import SeismicEvent, event_from_dict
from src.core.errors import DuplicateEvent, StoreUnavailable, StoreWriteFailure
from src.core.query import EventFilter, matches_filter


logger = logging.getLogger(__name__)


# Default collection name for stored events
DEFAULT_COLLECTION = "seismic_events"


@dataclass
class FirestoreConfig:
    """Configuration for Firestore client.

    Attributes:
        project_id: GCP project ID (None for default)
        database: Firestore database name (None for default database)
        collection: Firestore collection name
    """
    project_id: str | None = None
    database: str | None = None
    collection: str = DEFAULT_COLLECTION


def event_to_document(event: SeismicEvent) -> dict[str, Any]:
    """Convert an event to a Firestore document.

    Timestamps are stored natively so range filters and ordering on
    `occurred_at` work server-side.
    """
    return {
        "id": event.id,
        "magnitude": event.magnitude,
        "location": {
            "latitude": event.location.latitude,
            "longitude": event.location.longitude,
            "place": event.location.place,
        },
        "depth": event.depth,
        "occurred_at": event.occurred_at,
        "feed_updated_at": event.feed_updated_at,
        "url": event.url,
        "alert": event.alert,
        "tsunami": event.tsunami,
        "processed": event.processed,
        "notification_sent": event.notification_sent,
        "created_at": event.created_at,
        "updated_at": event.updated_at,
    }


def _revision_update(event: SeismicEvent) -> dict[str, Any]:
    fields = revision_fields(event)
    location = fields.pop("location")
    fields["location"] = {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "place": location.place,
    }
    fields["updated_at"] = event.updated_at
    return fields


class FirestoreEventStore:
    """Event store backed by a Firestore collection.

    This is part of the imperative shell - it handles database I/O.

    Document structure (document id = event id):
    {
        "id": "us1000abcd",
        "magnitude": 5.8,
        "location": {"latitude": ..., "longitude": ..., "place": ...},
        "depth": 10.2,
        "occurred_at": <timestamp>,
        "feed_updated_at": 1700000000000,
        ...
        "processed": false,
        "notification_sent": false,
        "created_at": <timestamp>,
        "updated_at": <timestamp>
    }

    Indexes: occurred_at (desc), magnitude (desc), and composite indexes on
    processed / notification_sent with occurred_at.
    """

    def __init__(
        self,
        config: FirestoreConfig | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize Firestore store.

        Args:
            config: Firestore configuration
            client: Pre-built AsyncClient (created lazily if not provided)
        """
        self.config = config or FirestoreConfig()
        self._client = client
        self._ready = False

    @property
    def client(self) -> firestore.AsyncClient:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs = {}
            if self.config.project_id:
                kwargs["project"] = self.config.project_id
            if self.config.database:
                kwargs["database"] = self.config.database
            self._client = firestore.AsyncClient(**kwargs)
        return self._client

    def _collection(self) -> Any:
        return self.client.collection(self.config.collection)

    def _doc_ref(self, event_id: str) -> Any:
        return self._collection().document(event_id)

    async def connect(self) -> None:
        """Create the client and probe the collection.

        Raises:
            StoreUnavailable: If Firestore cannot be reached
        """
        try:
            await self._collection().limit(1).get()
        except gcp_exceptions.GoogleAPIError as e:
            self._ready = False
            raise StoreUnavailable(f"Firestore probe failed: {e}") from e

        self._ready = True
        logger.info("Connected to Firestore collection %s", self.config.collection)

    async def disconnect(self) -> None:
        self._ready = False
        logger.info("Disconnected from Firestore")

    async def is_ready(self) -> bool:
        return self._ready

    async def get(self, event_id: str) -> SeismicEvent | None:
        """Fetch a stored event by id.

        Raises:
            StoreUnavailable: If the read fails
        """
        try:
            snapshot = await self._doc_ref(event_id).get()
        except gcp_exceptions.GoogleAPIError as e:
            raise StoreUnavailable(f"Failed to read {event_id}: {e}") from e

        if not snapshot.exists:
            return None

        return event_from_dict(snapshot.to_dict())

    async def insert(self, event: SeismicEvent) -> None:
        """Create the document for a new event.

        Raises:
            DuplicateEvent: If a document with this id already exists
            StoreWriteFailure: If the write fails for any other reason
        """
        try:
            await self._doc_ref(event.id).create(event_to_document(event))
        except gcp_exceptions.AlreadyExists as e:
            raise DuplicateEvent(event.id) from e
        except gcp_exceptions.GoogleAPIError as e:
            raise StoreWriteFailure(f"Failed to insert {event.id}: {e}") from e

        logger.debug("Inserted event %s", event.id)

    async def apply_revision(self, event: SeismicEvent) -> bool:
        """Write a newer feed revision in a transaction.

        The stored revision is re-read inside the transaction; the update
        only happens if it is still older than the incoming one. Flags are
        not part of the update.

        Returns:
            True if the revision was written

        Raises:
            StoreWriteFailure: If the transaction fails
        """
        doc_ref = self._doc_ref(event.id)
        update = _revision_update(event)

        @firestore.async_transactional
        async def _apply(transaction: Any) -> bool:
            snapshot = await doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            stored_revision = snapshot.get("feed_updated_at")
            if event.feed_updated_at <= stored_revision:
                return False
            transaction.update(doc_ref, update)
            return True

        try:
            return await _apply(self.client.transaction())
        except gcp_exceptions.GoogleAPIError as e:
            raise StoreWriteFailure(f"Failed to revise {event.id}: {e}") from e

    async def mark_notification_sent(
        self,
        event_id: str,
        now: datetime,
    ) -> SeismicEvent | None:
        """Set notification_sent on an event (idempotent).

        Returns:
            The stored event after the update, or None if unknown

        Raises:
            StoreWriteFailure: If the transaction fails
        """
        doc_ref = self._doc_ref(event_id)

        @firestore.async_transactional
        async def _mark(transaction: Any) -> dict[str, Any] | None:
            snapshot = await doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            data = snapshot.to_dict()
            if not data.get("notification_sent"):
                transaction.update(doc_ref, {
                    "notification_sent": True,
                    "updated_at": now,
                })
                data["notification_sent"] = True
                data["updated_at"] = now
            return data

        try:
            data = await _mark(self.client.transaction())
        except gcp_exceptions.GoogleAPIError as e:
            raise StoreWriteFailure(f"Failed to mark {event_id} notified: {e}") from e

        if data is None:
            return None

        return event_from_dict(data)

    def _base_query(self, event_filter: EventFilter) -> Any:
        """Build the server-side part of a query.

        Equality on flags and the occurred_at range go to Firestore, which
        keeps the query compatible with ordering on occurred_at.
        """
        query = self._collection()

        if event_filter.processed is not None:
            query = query.where(filter=FieldFilter("processed", "==", event_filter.processed))

        if event_filter.notification_sent is not None:
            query = query.where(
                filter=FieldFilter("notification_sent", "==", event_filter.notification_sent)
            )

        if event_filter.start_date is not None:
            query = query.where(filter=FieldFilter("occurred_at", ">=", event_filter.start_date))

        if event_filter.end_date is not None:
            query = query.where(filter=FieldFilter("occurred_at", "<=", event_filter.end_date))

        return query.order_by("occurred_at", direction=firestore.Query.DESCENDING)

    async def find_all(self, event_filter: EventFilter) -> list[SeismicEvent]:
        """List events matching a filter, newest first.

        Magnitude and location predicates are evaluated client-side, in
        which case paging is applied after filtering.

        Raises:
            StoreUnavailable: If the query fails
        """
        query = self._base_query(event_filter)
        client_side = (
            event_filter.min_magnitude is not None
            or event_filter.max_magnitude is not None
            or bool(event_filter.location)
        )

        if not client_side:
            query = query.offset(event_filter.offset).limit(event_filter.limit)

        events: list[SeismicEvent] = []
        skipped = 0

        try:
            async for snapshot in query.stream():
                event = event_from_dict(snapshot.to_dict())
                if client_side:
                    if not matches_filter(event, event_filter):
                        continue
                    if skipped < event_filter.offset:
                        skipped += 1
                        continue
                events.append(event)
                if len(events) >= event_filter.limit:
                    break
        except gcp_exceptions.GoogleAPIError as e:
            raise StoreUnavailable(f"Query failed: {e}") from e

        return events

    async def count(
        self,
        since: datetime | None = None,
        min_magnitude: float | None = None,
    ) -> int:
        """Count events with a server-side aggregation query.

        Raises:
            StoreUnavailable: If the aggregation fails
        """
        query = self._collection()

        if since is not None:
            query = query.where(filter=FieldFilter("occurred_at", ">=", since))

        if min_magnitude is not None:
            query = query.where(filter=FieldFilter("magnitude", ">=", min_magnitude))

        try:
            results = await query.count(alias="total").get()
        except gcp_exceptions.GoogleAPIError as e:
            raise StoreUnavailable(f"Count failed: {e}") from e

        return int(results[0][0].value)
