"""Orchestrator - Wires Functional Core and Imperative Shell.

This module coordinates the flow of data between the pure functional
core and the I/O-performing shell components. It's the "glue" that
makes the application work: scheduled fetch cycles go through ingestion
and dispatch, and the query surface reads through the recency cache.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from src.core.config import Config, is_valid_feed_kind
from src.core.earthquake import SeismicEvent
from src.core.errors import (
    BroadcastFailure,
    CacheUnavailable,
    FeedUnavailable,
    PipelineError,
)
from src.core.formatter import format_server_status
from src.core.health import HealthReport, Statistics
from src.core.query import EventFilter, is_simple_query, validate_filter
from src.core.retry import RetryPolicy
from src.dispatcher import AlertDispatcher, AlertWorker, DispatchResult
from src.ingestion import IngestionEngine, IngestResult, utc_now
from src.scheduler import FetchScheduler
from src.stats import StatsAggregator
from src.shell.alert_queue import InMemoryAlertQueue, RedisAlertQueue
from src.shell.broadcast import SERVER_STATUS, BroadcastHub
from src.shell.event_store import InMemoryEventStore
from src.shell.firestore_client import FirestoreConfig, FirestoreEventStore
from src.shell.mqtt_client import MqttPushChannel, NullPushChannel
from src.shell.recency_cache import InMemoryRecencyCache, RedisRecencyCache
from src.shell.usgs_client import USGSFeedClient


logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Result of one fetch cycle.

    Attributes:
        feed_kind: Feed that was fetched
        events_fetched: Features received from the feed
        ingest: Ingestion outcome (None if the fetch failed)
        dispatched: Dispatch results for new and updated events
        errors: Any errors that occurred
    """
    feed_kind: str
    events_fetched: int = 0
    ingest: IngestResult | None = None
    dispatched: list[DispatchResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Returns True if the feed was fetched and every record was handled."""
        return self.ingest is not None and self.ingest.failed == 0 and not self.errors

    @property
    def alerts_queued(self) -> int:
        return sum(1 for d in self.dispatched if d.enqueued)

    @property
    def summary(self) -> str:
        """Human-readable summary of the processing result."""
        if self.ingest is None:
            return f"Fetch of {self.feed_kind} failed"
        return (
            f"Fetched {self.events_fetched} events from {self.feed_kind}: "
            f"{self.ingest.summary}, {self.alerts_queued} alerts queued"
        )


def build_store(config: Config) -> Any:
    backend = config.storage.store_backend
    if backend == "firestore":
        return FirestoreEventStore(FirestoreConfig(
            database=config.storage.firestore_database,
            collection=config.storage.firestore_collection,
        ))
    if backend == "memory":
        return InMemoryEventStore()
    raise ValueError(f"Unknown store backend '{backend}'")


def build_cache(config: Config) -> Any:
    backend = config.storage.cache_backend
    if backend == "redis":
        return RedisRecencyCache(
            url=config.storage.redis_url,
            namespace=config.storage.redis_namespace,
            capacity=config.recency_capacity,
            detail_ttl_seconds=config.detail_ttl_seconds,
        )
    if backend == "memory":
        return InMemoryRecencyCache(
            capacity=config.recency_capacity,
            detail_ttl_seconds=config.detail_ttl_seconds,
        )
    raise ValueError(f"Unknown cache backend '{backend}'")


def build_queue(config: Config) -> Any:
    backend = config.storage.queue_backend
    if backend == "redis":
        return RedisAlertQueue(
            url=config.storage.redis_url,
            namespace=config.storage.redis_namespace,
        )
    if backend == "memory":
        return InMemoryAlertQueue()
    raise ValueError(f"Unknown queue backend '{backend}'")


def build_push_channel(config: Config) -> Any:
    if config.mqtt.enabled:
        return MqttPushChannel(config.mqtt)
    return NullPushChannel()


class Orchestrator:
    """Coordinates seismic event ingestion, alerting and queries.

    This class wires together:
    - USGS feed client (fetches feed data)
    - Ingestion engine (dedup/upsert into store and cache)
    - Alert dispatcher and worker (broadcast, queue, push)
    - Fetch scheduler (recurring cycles)
    - Stats/health aggregator
    """

    def __init__(
        self,
        config: Config,
        feed_client: USGSFeedClient | None = None,
        store: Any | None = None,
        cache: Any | None = None,
        queue: Any | None = None,
        broadcast: BroadcastHub | None = None,
        push: Any | None = None,
        scheduler: FetchScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize orchestrator with configuration.

        Args:
            config: Application configuration
            feed_client: USGS feed client (created if not provided)
            store: Event store (built from config if not provided)
            cache: Recency cache (built from config if not provided)
            queue: Alert queue (built from config if not provided)
            broadcast: Broadcast hub (created if not provided)
            push: Push channel (built from config if not provided)
            scheduler: Fetch scheduler (created if not provided)
            clock: Source of the current UTC time
        """
        self.config = config
        self._clock = clock

        self.feed_client = feed_client or USGSFeedClient(
            url_template=config.feed.url_template,
            timeout=config.feed.timeout_seconds,
            user_agent=config.feed.user_agent,
        )
        self.store = store or build_store(config)
        self.cache = cache or build_cache(config)
        self.queue = queue or build_queue(config)
        self.broadcast = broadcast or BroadcastHub()
        self.push = push or build_push_channel(config)
        self.scheduler = scheduler or FetchScheduler()

        self.ingestion = IngestionEngine(self.store, self.cache, clock=clock)
        self.dispatcher = AlertDispatcher(
            store=self.store,
            cache=self.cache,
            broadcast=self.broadcast,
            push=self.push,
            queue=self.queue,
            min_magnitude_alert=config.min_magnitude_alert,
            policy=RetryPolicy(
                max_attempts=config.alert_queue.max_attempts,
                backoff_base_seconds=config.alert_queue.backoff_base_seconds,
            ),
            clock=clock,
        )
        self.stats = StatsAggregator(
            store=self.store,
            cache=self.cache,
            broadcast=self.broadcast,
            push=self.push,
            queue=self.queue,
            min_magnitude_alert=config.min_magnitude_alert,
            clock=clock,
        )
        self.worker = AlertWorker(
            self.queue,
            self.dispatcher,
            on_abandoned=self.stats.record_alert_abandoned,
            poll_timeout=config.alert_queue.poll_timeout_seconds,
        )
        self._worker_task: asyncio.Task | None = None

    def _components(self) -> list[tuple[str, Any]]:
        return [
            ("store", self.store),
            ("cache", self.cache),
            ("alert queue", self.queue),
            ("push channel", self.push),
        ]

    async def start(self, schedule: bool = True) -> None:
        """Connect collaborators, start the alert worker and the scheduler.

        A collaborator that fails to connect is logged and left to report
        itself unhealthy; startup continues.

        Args:
            schedule: Register and start the recurring jobs
        """
        for name, component in self._components():
            try:
                await component.connect()
            except PipelineError as e:
                logger.error("Failed to connect %s: %s", name, str(e))

        self._worker_task = asyncio.create_task(self.worker.run())

        if not schedule:
            return

        for feed_schedule in self.config.schedules:
            self.scheduler.register(
                feed_schedule.name,
                feed_schedule.interval_seconds,
                self.run_cycle,
                feed_schedule.feed_kind,
            )

        if self.config.mqtt.enabled:
            self.scheduler.register(
                "heartbeat",
                self.config.mqtt.heartbeat_interval_seconds,
                self.push.publish_heartbeat,
            )

        self.scheduler.start()

    async def stop(self) -> None:
        """Stop scheduling, drain the worker and disconnect collaborators."""
        self.scheduler.stop()

        self.worker.stop()
        if self._worker_task is not None:
            await self._worker_task
            self._worker_task = None

        for name, component in self._components():
            try:
                await component.disconnect()
            except PipelineError as e:
                logger.warning("Failed to disconnect %s: %s", name, str(e))

        self.feed_client.close()
        logger.info("Orchestrator stopped")

    async def run_cycle(self, feed_kind: str) -> ProcessingResult:
        """Run one fetch cycle: fetch, ingest, dispatch.

        New and updated events are dispatched in feed order after the
        whole batch is ingested.

        Args:
            feed_kind: USGS summary feed to fetch

        Returns:
            ProcessingResult with statistics and any errors
        """
        logger.info("Starting fetch cycle for %s", feed_kind)
        result = ProcessingResult(feed_kind=feed_kind)

        try:
            features = await asyncio.to_thread(self.feed_client.fetch, feed_kind)
        except FeedUnavailable as e:
            logger.error("Fetch cycle for %s failed: %s", feed_kind, str(e))
            self.stats.record_fetch(feed_kind, success=False, error=str(e))
            result.errors.append(str(e))
            return result

        cap = self.config.feed.max_events_per_fetch
        if cap is not None:
            features = features[:cap]

        result.events_fetched = len(features)
        result.ingest = await self.ingestion.ingest(features)

        for event, _classification in result.ingest.changed:
            result.dispatched.append(await self.dispatcher.dispatch(event))

        now = self._clock()
        self.stats.record_fetch(feed_kind, success=True, at=now)

        try:
            await self.broadcast.publish_all(SERVER_STATUS, format_server_status(True, now))
        except BroadcastFailure as e:
            logger.warning("Server status broadcast incomplete: %s", str(e))

        logger.info("Completed: %s", result.summary)
        return result

    async def trigger_manual_fetch(self, feed_kind: str) -> ProcessingResult:
        """Run a fetch cycle on demand.

        Raises:
            ValueError: If feed_kind does not name a USGS summary feed
        """
        if not is_valid_feed_kind(feed_kind):
            raise ValueError(f"Unknown feed kind '{feed_kind}'")
        return await self.run_cycle(feed_kind)

    async def find_all(self, event_filter: EventFilter) -> list[SeismicEvent]:
        """List events, newest first.

        Simple pages are served from the recency window; the store answers
        everything else and any page the cache cannot fill.

        Raises:
            ValueError: If the filter is invalid
            StoreUnavailable: If the store query fails
        """
        problems = validate_filter(event_filter)
        if problems:
            raise ValueError("; ".join(problems))

        if is_simple_query(
            event_filter,
            self.config.recency_capacity,
            self.config.simple_query_max_limit,
        ):
            try:
                events = await self.cache.range_latest(event_filter.offset, event_filter.limit)
                if len(events) >= event_filter.limit:
                    return events
                logger.debug("Recency window short (%d events), using store", len(events))
            except CacheUnavailable as e:
                logger.warning("Recency cache unavailable, using store: %s", str(e))

        return await self.store.find_all(event_filter)

    async def get_event(self, event_id: str) -> SeismicEvent | None:
        """Get one event, from the detail cache if possible.

        Raises:
            StoreUnavailable: If the store read fails
        """
        try:
            cached = await self.cache.get_detail(event_id)
            if cached is not None:
                return cached
        except CacheUnavailable as e:
            logger.warning("Detail cache unavailable for %s: %s", event_id, str(e))

        event = await self.store.get(event_id)
        if event is None:
            return None

        try:
            await self.cache.set_detail(event)
        except CacheUnavailable as e:
            logger.debug("Failed to cache detail for %s: %s", event_id, str(e))

        return event

    async def get_statistics(self) -> Statistics:
        return await self.stats.stats()

    async def get_health_check(self) -> HealthReport:
        return await self.stats.health()
