"""Configuration models - Pure data structures.

These are domain models for configuration. The actual loading
(I/O) is handled by the shell layer.
"""

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from src.core.rules import DEFAULT_MIN_MAGNITUDE_ALERT


USGS_SUMMARY_URL = (
    "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/{feed_kind}.geojson"
)

# USGS summary feeds: <magnitude band>_<period>
FEED_KIND_PATTERN = re.compile(r"^(significant|4\.5|2\.5|1\.0|all)_(hour|day|week|month)$")

BACKENDS = ("memory", "firestore", "redis")
STORE_BACKENDS = ("memory", "firestore")
CACHE_BACKENDS = ("memory", "redis")
QUEUE_BACKENDS = ("memory", "redis")


def is_valid_feed_kind(feed_kind: str) -> bool:
    """Check if a feed kind names a USGS summary feed.

    Pure function.
    """
    return bool(FEED_KIND_PATTERN.match(feed_kind))


@dataclass
class FeedSchedule:
    """A named recurring fetch.

    Attributes:
        name: Job name (unique)
        feed_kind: USGS summary feed to fetch
        interval_seconds: Seconds between ticks
    """
    name: str
    feed_kind: str
    interval_seconds: int


def default_schedules() -> list[FeedSchedule]:
    return [
        FeedSchedule(name="latest", feed_kind="all_hour", interval_seconds=30),
        FeedSchedule(name="significant", feed_kind="significant_month", interval_seconds=300),
        FeedSchedule(name="catch-up", feed_kind="all_day", interval_seconds=900),
    ]


@dataclass
class FeedConfig:
    """Upstream feed settings.

    Attributes:
        url_template: Feed URL with a {feed_kind} placeholder
        timeout_seconds: Request timeout
        user_agent: Identifying User-Agent header
        max_events_per_fetch: Cap on features handled per cycle (None = all)
    """
    url_template: str = USGS_SUMMARY_URL
    timeout_seconds: float = 10.0
    user_agent: str = "seismic-feed-pipeline/1.0"
    max_events_per_fetch: int | None = None


@dataclass
class StorageConfig:
    """Backend selection and connection settings.

    Attributes:
        store_backend: 'firestore' or 'memory'
        cache_backend: 'redis' or 'memory'
        queue_backend: 'redis' or 'memory'
        firestore_database: Firestore database name (None for default)
        firestore_collection: Firestore collection holding events
        redis_url: Redis connection URL
        redis_namespace: Key prefix for all Redis keys
    """
    store_backend: str = "firestore"
    cache_backend: str = "redis"
    queue_backend: str = "redis"
    firestore_database: str | None = None
    firestore_collection: str = "seismic_events"
    redis_url: str = "redis://localhost:6379/0"
    redis_namespace: str = "quakes"


@dataclass
class AlertQueueConfig:
    """Durable alert queue settings.

    Attributes:
        max_attempts: Delivery attempts before a job is abandoned
        backoff_base_seconds: First retry delay (doubles per attempt)
        poll_timeout_seconds: How long the worker blocks waiting for a job
    """
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    poll_timeout_seconds: float = 1.0


@dataclass
class MqttConfig:
    """Push channel (MQTT) settings.

    Attributes:
        enabled: Whether to connect to a broker at all
        broker_url: mqtt://host:port
        topic: General alert topic (heartbeat goes to <topic>/heartbeat)
        alert_topic_prefix: Prefix for per-priority topics
        username: Broker username (optional)
        password: Broker password (optional)
        publish_timeout_seconds: Max wait for a publish acknowledgement
        heartbeat_interval_seconds: Seconds between heartbeats
    """
    enabled: bool = True
    broker_url: str = "mqtt://localhost:1883"
    topic: str = "earthquakes/alerts"
    alert_topic_prefix: str = "earthquake/alert"
    username: str | None = None
    password: str | None = None
    publish_timeout_seconds: float = 5.0
    heartbeat_interval_seconds: int = 30


@dataclass
class Config:
    """Application configuration.

    This is a pure data structure - no I/O or side effects.

    Attributes:
        min_magnitude_alert: Alert threshold (inclusive)
        recency_capacity: Events kept in the recency window
        detail_ttl_seconds: Lifetime of per-event detail cache entries
        simple_query_max_limit: Largest page served from the cache
        feed: Upstream feed settings
        schedules: Recurring fetch jobs
        storage: Backend selection
        alert_queue: Durable alert queue settings
        mqtt: Push channel settings
    """
    min_magnitude_alert: float = DEFAULT_MIN_MAGNITUDE_ALERT
    recency_capacity: int = 1000
    detail_ttl_seconds: int = 24 * 60 * 60
    simple_query_max_limit: int = 100
    feed: FeedConfig = field(default_factory=FeedConfig)
    schedules: list[FeedSchedule] = field(default_factory=default_schedules)
    storage: StorageConfig = field(default_factory=StorageConfig)
    alert_queue: AlertQueueConfig = field(default_factory=AlertQueueConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)


@dataclass
class ValidationError:
    """A configuration validation error.

    Attributes:
        field: The field that has an error
        message: Human-readable error description
        severity: 'error' or 'warning'
    """
    field: str
    message: str
    severity: str = "error"


@dataclass
class ValidationResult:
    """Result of validating configuration.

    Attributes:
        valid: True if no errors (warnings are OK)
        errors: List of validation errors/warnings
    """
    valid: bool
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def warnings(self) -> list[ValidationError]:
        """Get only warnings."""
        return [e for e in self.errors if e.severity == "warning"]

    @property
    def critical_errors(self) -> list[ValidationError]:
        """Get only critical errors."""
        return [e for e in self.errors if e.severity == "error"]


def validate_schedules(schedules: list[FeedSchedule]) -> list[ValidationError]:
    """Validate recurring fetch jobs.

    Pure function.
    """
    errors = []
    seen: set[str] = set()

    for i, schedule in enumerate(schedules):
        prefix = f"schedules[{i}]"

        if schedule.name in seen:
            errors.append(ValidationError(
                field=f"{prefix}.name",
                message=f"Duplicate schedule name '{schedule.name}'",
            ))
        seen.add(schedule.name)

        if not is_valid_feed_kind(schedule.feed_kind):
            errors.append(ValidationError(
                field=f"{prefix}.feed_kind",
                message=f"Unknown feed kind '{schedule.feed_kind}'",
            ))

        if schedule.interval_seconds <= 0:
            errors.append(ValidationError(
                field=f"{prefix}.interval_seconds",
                message=f"Interval must be positive, got {schedule.interval_seconds}",
            ))

    if not schedules:
        errors.append(ValidationError(
            field="schedules",
            message="No fetch schedules configured",
            severity="warning",
        ))

    return errors


def validate_storage(storage: StorageConfig) -> list[ValidationError]:
    """Validate backend selection.

    Pure function.
    """
    errors = []

    for name, value, allowed in (
        ("store_backend", storage.store_backend, STORE_BACKENDS),
        ("cache_backend", storage.cache_backend, CACHE_BACKENDS),
        ("queue_backend", storage.queue_backend, QUEUE_BACKENDS),
    ):
        if value not in allowed:
            errors.append(ValidationError(
                field=f"storage.{name}",
                message=f"'{value}' is not one of {', '.join(allowed)}",
            ))

    uses_redis = "redis" in (storage.cache_backend, storage.queue_backend)
    if uses_redis and not storage.redis_url.startswith(("redis://", "rediss://", "unix://")):
        errors.append(ValidationError(
            field="storage.redis_url",
            message=f"Unsupported Redis URL '{storage.redis_url}'",
        ))

    if storage.store_backend == "memory":
        errors.append(ValidationError(
            field="storage.store_backend",
            message="In-memory store loses all events on restart",
            severity="warning",
        ))

    return errors


def validate_config(config: Config) -> ValidationResult:
    """Validate configuration for errors and warnings.

    Pure function.

    Args:
        config: Configuration to validate

    Returns:
        ValidationResult with any errors/warnings found
    """
    errors: list[ValidationError] = []

    if config.min_magnitude_alert < 0:
        errors.append(ValidationError(
            field="min_magnitude_alert",
            message=f"Alert threshold must be >= 0, got {config.min_magnitude_alert}",
        ))

    if config.recency_capacity <= 0:
        errors.append(ValidationError(
            field="recency_capacity",
            message=f"Capacity must be positive, got {config.recency_capacity}",
        ))

    if config.detail_ttl_seconds <= 0:
        errors.append(ValidationError(
            field="detail_ttl_seconds",
            message=f"Detail TTL must be positive, got {config.detail_ttl_seconds}",
        ))

    if "{feed_kind}" not in config.feed.url_template:
        errors.append(ValidationError(
            field="feed.url_template",
            message="Feed URL template has no {feed_kind} placeholder",
        ))

    if config.feed.timeout_seconds <= 0:
        errors.append(ValidationError(
            field="feed.timeout_seconds",
            message=f"Timeout must be positive, got {config.feed.timeout_seconds}",
        ))

    errors.extend(validate_schedules(config.schedules))
    errors.extend(validate_storage(config.storage))

    if config.alert_queue.max_attempts < 1:
        errors.append(ValidationError(
            field="alert_queue.max_attempts",
            message=f"max_attempts must be >= 1, got {config.alert_queue.max_attempts}",
        ))

    if config.alert_queue.backoff_base_seconds < 0:
        errors.append(ValidationError(
            field="alert_queue.backoff_base_seconds",
            message="Backoff base must be >= 0",
        ))

    if config.mqtt.enabled:
        scheme = urlparse(config.mqtt.broker_url).scheme
        if scheme not in ("mqtt", "mqtts", "tcp"):
            errors.append(ValidationError(
                field="mqtt.broker_url",
                message=f"Unsupported broker URL scheme '{scheme}'",
            ))
    else:
        errors.append(ValidationError(
            field="mqtt.enabled",
            message="Push channel disabled; health will report it as disconnected",
            severity="warning",
        ))

    has_critical = any(e.severity == "error" for e in errors)

    return ValidationResult(
        valid=not has_critical,
        errors=errors,
    )
