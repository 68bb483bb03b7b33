"""Stats/Health Aggregator.

Gathers raw readings from the store, cache, broadcast hub, push channel
and alert queue; src/core/health.py turns them into reports. Fetch
outcomes and abandoned alert jobs are recorded here as they happen.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from src.core.errors import PipelineError
from src.core.health import HealthReport, Statistics, build_health_report
from src.core.rules import DEFAULT_MIN_MAGNITUDE_ALERT
from src.ingestion import utc_now
from src.shell.alert_queue import AlertJob


logger = logging.getLogger(__name__)


class StatsAggregator:
    """On-demand statistics and health for the query surface."""

    def __init__(
        self,
        store: Any,
        cache: Any,
        broadcast: Any,
        push: Any,
        queue: Any = None,
        min_magnitude_alert: float = DEFAULT_MIN_MAGNITUDE_ALERT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.cache = cache
        self.broadcast = broadcast
        self.push = push
        self.queue = queue
        self.min_magnitude_alert = min_magnitude_alert
        self._clock = clock

        self.last_fetch_time: datetime | None = None
        self.feed_errors: dict[str, str] = {}
        self.abandoned_alerts = 0
        self.last_abandoned_id: str | None = None

    def record_fetch(
        self,
        feed_kind: str,
        success: bool,
        error: str | None = None,
        at: datetime | None = None,
    ) -> None:
        """Record the outcome of a fetch cycle.

        A successful fetch clears the feed's last error.
        """
        if success:
            self.last_fetch_time = at or self._clock()
            self.feed_errors.pop(feed_kind, None)
        else:
            self.feed_errors[feed_kind] = error or "unknown error"

    def record_alert_abandoned(self, job: AlertJob) -> None:
        self.abandoned_alerts += 1
        self.last_abandoned_id = job.event.id
        logger.error(
            "Alerting degraded: %d abandoned jobs (last %s)",
            self.abandoned_alerts,
            job.event.id,
        )

    async def stats(self) -> Statistics:
        """Compute statistics from the store and channels.

        Raises:
            StoreUnavailable: If the store counts fail
        """
        since = self._clock() - timedelta(hours=24)

        return Statistics(
            total=await self.store.count(),
            last_24h=await self.store.count(since=since),
            significant_count=await self.store.count(min_magnitude=self.min_magnitude_alert),
            last_fetch_time=self.last_fetch_time,
            connected_subscribers=self.broadcast.subscriber_count,
            push_channel_connected=self.push.is_connected(),
        )

    async def _probe(self, name: str, component: Any) -> bool:
        try:
            return bool(await component.is_ready())
        except (PipelineError, OSError) as e:
            logger.warning("Health probe for %s failed: %s", name, str(e))
            return False

    async def _queue_counts(self) -> dict[str, int]:
        if self.queue is None:
            return {}
        try:
            return await self.queue.counts()
        except PipelineError as e:
            logger.warning("Failed to read alert queue counts: %s", str(e))
            return {}

    async def health(self) -> HealthReport:
        """Report readiness of store, cache and push channel.

        Never raises: a probe that fails counts as not ready.
        """
        dependencies = {
            "store": await self._probe("store", self.store),
            "cache": await self._probe("cache", self.cache),
            "push_channel": await self._probe("push_channel", self.push),
        }

        return build_health_report(
            dependencies=dependencies,
            feed_errors=self.feed_errors,
            last_fetch_time=self.last_fetch_time,
            abandoned_alerts=self.abandoned_alerts,
            last_abandoned_id=self.last_abandoned_id,
            queue_counts=await self._queue_counts(),
        )
