"""Alert Dispatcher and Worker.

The dispatcher fans every new or updated event out to the broadcast hub
and enqueues a durable alert job for eligible events. The worker consumes
the queue and runs the dispatcher's publish step with bounded retry.

Exactly-once publication rests on the store: each attempt re-reads the
event and skips publishing once `notification_sent` is set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from src.core.earthquake import SeismicEvent
from src.core.errors import (
    AlertQueueFailure,
    BroadcastFailure,
    CacheUnavailable,
    PushChannelFailure,
    StoreUnavailable,
    StoreWriteFailure,
)
from src.core.formatter import format_broadcast_event, format_event_summary
from src.core.retry import RetryPolicy, backoff_delay, should_retry
from src.core.rules import DEFAULT_MIN_MAGNITUDE_ALERT, get_priority, is_alert_eligible, needs_alert
from src.ingestion import utc_now
from src.shell.alert_queue import AlertJob
from src.shell.broadcast import NEW_EVENT, UPDATES_TOPIC


logger = logging.getLogger(__name__)


# Failures that make an alert attempt retryable
RETRYABLE_ERRORS = (PushChannelFailure, StoreWriteFailure, StoreUnavailable)


@dataclass
class DispatchResult:
    """Result of dispatching one event.

    Attributes:
        event: The dispatched event
        subscribers: Subscribers the broadcast reached
        job: Alert job enqueued for the event, if any
        errors: Non-fatal errors (broadcast or enqueue)
    """
    event: SeismicEvent
    subscribers: int = 0
    job: AlertJob | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def enqueued(self) -> bool:
        return self.job is not None


class AlertDispatcher:
    """Evaluate events and fan them out to the alerting channels."""

    def __init__(
        self,
        store: Any,
        cache: Any,
        broadcast: Any,
        push: Any,
        queue: Any,
        min_magnitude_alert: float = DEFAULT_MIN_MAGNITUDE_ALERT,
        policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.cache = cache
        self.broadcast = broadcast
        self.push = push
        self.queue = queue
        self.min_magnitude_alert = min_magnitude_alert
        self.policy = policy or RetryPolicy()
        self._clock = clock

    def evaluate(self, event: SeismicEvent) -> bool:
        """Check if an event is eligible for a push alert."""
        return is_alert_eligible(event, self.min_magnitude_alert)

    async def dispatch(self, event: SeismicEvent) -> DispatchResult:
        """Broadcast an event and enqueue an alert job if it needs one.

        Neither step raises; failures are logged and recorded on the result.
        """
        result = DispatchResult(event=event)

        try:
            result.subscribers = await self.broadcast.publish(
                UPDATES_TOPIC, NEW_EVENT, format_broadcast_event(event)
            )
        except BroadcastFailure as e:
            logger.warning("Broadcast of %s incomplete: %s", event.id, str(e))
            result.errors.append(str(e))

        if not needs_alert(event, self.min_magnitude_alert):
            return result

        try:
            result.job = await self.queue.enqueue(event, self.policy)
        except AlertQueueFailure as e:
            logger.error("Failed to enqueue alert for %s: %s", event.id, str(e))
            result.errors.append(str(e))
            return result

        logger.info(
            "Queued %s alert for %s: %s",
            get_priority(event.magnitude).value,
            event.id,
            format_event_summary(event),
        )
        return result

    async def publish_alert(self, event: SeismicEvent) -> bool:
        """Run one alert delivery attempt.

        Args:
            event: Event carried by the alert job

        Returns:
            True if an alert was published, False if the stored event was
            already notified

        Raises:
            PushChannelFailure: If the push channel did not accept the alert
            StoreWriteFailure: If notification_sent could not be recorded
            StoreUnavailable: If the stored event could not be read
        """
        stored = await self.store.get(event.id)
        if stored is not None and stored.notification_sent:
            logger.info("Alert for %s already sent, skipping", event.id)
            return False

        result = await self.push.publish_alert(stored or event)
        if not result.success:
            raise PushChannelFailure(result.error or f"Publish for {event.id} failed")

        marked = await self.store.mark_notification_sent(event.id, self._clock())
        if marked is None:
            logger.warning("Alerted %s, which is not in the store", event.id)
            return True

        try:
            await self.cache.set_detail(marked)
        except CacheUnavailable as e:
            logger.warning("Failed to refresh cached detail for %s: %s", event.id, str(e))

        return True


class AlertWorker:
    """Consume alert jobs with bounded exponential-backoff retry."""

    COMPLETED = "completed"
    RETRYING = "retrying"
    ABANDONED = "abandoned"

    def __init__(
        self,
        queue: Any,
        dispatcher: AlertDispatcher,
        on_abandoned: Callable[[AlertJob], None] | None = None,
        poll_timeout: float = 1.0,
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Alert queue to consume
            dispatcher: Dispatcher whose publish step is retried
            on_abandoned: Called with each abandoned job
            poll_timeout: Seconds to block waiting for a job
        """
        self.queue = queue
        self.dispatcher = dispatcher
        self.on_abandoned = on_abandoned
        self.poll_timeout = poll_timeout
        self._stopping = False

    async def handle(self, job: AlertJob) -> str:
        """Run one attempt for a reserved job and settle it in the queue.

        Unexpected errors count as a failed attempt, so a job is never left
        reserved by a bug in the publish path.

        Returns:
            COMPLETED, RETRYING or ABANDONED
        """
        try:
            await self.dispatcher.publish_alert(job.event)
        except RETRYABLE_ERRORS as e:
            return await self._fail(job, e)
        except Exception as e:
            logger.exception("Unexpected error publishing alert for %s", job.event.id)
            return await self._fail(job, e)

        await self.queue.complete(job)
        return self.COMPLETED

    async def _fail(self, job: AlertJob, error: Exception) -> str:
        failed = job.record_failure(str(error) or type(error).__name__)

        if should_retry(failed.attempts_made, failed.policy):
            delay = backoff_delay(failed.attempts_made, failed.backoff_base_seconds)
            logger.warning(
                "Alert attempt %d/%d for %s failed, retrying in %.1fs: %s",
                failed.attempts_made,
                failed.max_attempts,
                job.event.id,
                delay,
                failed.last_error,
            )
            await self.queue.retry_later(failed, delay)
            return self.RETRYING

        logger.error(
            "Abandoning alert for %s after %d attempts: %s",
            job.event.id,
            failed.attempts_made,
            failed.last_error,
        )
        await self.queue.abandon(failed)
        if self.on_abandoned is not None:
            self.on_abandoned(failed)
        return self.ABANDONED

    async def run_once(self, timeout: float = 0.0) -> str | None:
        """Reserve and handle at most one job.

        Returns:
            The job outcome, or None if no job was ready
        """
        job = await self.queue.reserve(timeout)
        if job is None:
            return None
        return await self.handle(job)

    async def run(self) -> None:
        """Consume jobs until stop() is called."""
        self._stopping = False
        logger.info("Alert worker started")

        while not self._stopping:
            try:
                await self.run_once(self.poll_timeout)
            except AlertQueueFailure as e:
                logger.error("Alert queue error: %s", str(e))
                await asyncio.sleep(self.poll_timeout)
            except Exception:
                logger.exception("Alert worker iteration failed")
                await asyncio.sleep(self.poll_timeout)

        logger.info("Alert worker stopped")

    def stop(self) -> None:
        self._stopping = True
