"""Ingestion Engine - Dedup/upsert of fetched feed records.

Reconciles each parsed feed record against the event store and keeps
the recency cache written through. Classification is pure (see
src/core/dedup.py); this module only sequences the store and cache I/O.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from src.core.dedup import Classification, apply_revision, build_new_record, classify
from src.core.earthquake import SeismicEvent, parse_feature
from src.core.errors import (
    CacheUnavailable,
    DuplicateEvent,
    StoreUnavailable,
    StoreWriteFailure,
)


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestResult:
    """Outcome of ingesting one batch of feed records.

    Attributes:
        changed: New and updated events, in feed order
        new: Records stored for the first time
        updated: Records revised with a newer feed revision
        unchanged: Records that needed no work
        skipped: Features that could not be parsed
        failed: Records whose store read or write failed
    """
    changed: list[tuple[SeismicEvent, Classification]] = field(default_factory=list)
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.new + self.updated + self.unchanged + self.skipped + self.failed

    @property
    def summary(self) -> str:
        return (
            f"{self.new} new, {self.updated} updated, {self.unchanged} unchanged, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


class IngestionEngine:
    """Reconcile feed records with the store, one record at a time."""

    def __init__(
        self,
        store: Any,
        cache: Any,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Event store (Firestore or in-memory)
            cache: Recency cache (Redis or in-memory)
            clock: Source of `created_at` / `updated_at` timestamps
        """
        self.store = store
        self.cache = cache
        self._clock = clock

    async def _write_through(self, event: SeismicEvent) -> None:
        try:
            await self.cache.add(event)
        except CacheUnavailable as e:
            logger.warning("Cache write-through failed for %s: %s", event.id, str(e))

    async def ingest_event(self, incoming: SeismicEvent) -> tuple[SeismicEvent, Classification]:
        """Reconcile a single event with the store.

        A lost insert race (DuplicateEvent) or a lost conditional revision
        is reported as UNCHANGED; the concurrent writer owns the change.

        Returns:
            (event as stored, classification)

        Raises:
            StoreWriteFailure: If the insert or revision fails
            StoreUnavailable: If the stored event cannot be read
        """
        stored = await self.store.get(incoming.id)
        classification = classify(incoming, stored)

        if classification is Classification.NEW:
            record = build_new_record(incoming, self._clock())
            try:
                await self.store.insert(record)
            except DuplicateEvent:
                logger.debug("Lost insert race for %s", incoming.id)
                return incoming, Classification.UNCHANGED
            await self._write_through(record)
            return record, Classification.NEW

        if classification is Classification.UPDATED:
            revised = apply_revision(stored, incoming, self._clock())
            if not await self.store.apply_revision(revised):
                logger.debug("Lost revision race for %s", incoming.id)
                return stored, Classification.UNCHANGED
            await self._write_through(revised)
            return revised, Classification.UPDATED

        return stored, Classification.UNCHANGED

    async def ingest(self, features: list[dict[str, Any]]) -> IngestResult:
        """Ingest a batch of GeoJSON features in feed order.

        A record whose store operation fails is counted and the batch
        continues with the next record.

        Args:
            features: Raw GeoJSON features

        Returns:
            IngestResult with the changed events and per-outcome counts
        """
        result = IngestResult()

        for feature in features:
            incoming = parse_feature(feature)
            if incoming is None:
                result.skipped += 1
                continue

            try:
                event, classification = await self.ingest_event(incoming)
            except (StoreWriteFailure, StoreUnavailable) as e:
                logger.error("Failed to ingest %s: %s", incoming.id, str(e))
                result.failed += 1
                continue

            if classification is Classification.NEW:
                result.new += 1
                result.changed.append((event, classification))
            elif classification is Classification.UPDATED:
                result.updated += 1
                result.changed.append((event, classification))
            else:
                result.unchanged += 1

        if result.skipped:
            logger.warning("Skipped %d malformed features", result.skipped)

        return result
