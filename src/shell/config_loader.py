"""Configuration Loader - Imperative Shell.

This module handles loading configuration from YAML files and
environment variables. All I/O is contained here.

Models (Config, FeedSchedule, ...) are defined in src/core/config.py
to avoid information leakage between layers.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from src.core.config import (
    AlertQueueConfig,
    Config,
    FeedConfig,
    FeedSchedule,
    MqttConfig,
    StorageConfig,
    USGS_SUMMARY_URL,
    default_schedules,
)
from src.core.rules import DEFAULT_MIN_MAGNITUDE_ALERT


logger = logging.getLogger(__name__)


def _resolve_value(value: Any) -> Any:
    """Resolve a value that may be an ${ENV_VAR} placeholder.

    Unset variables resolve to None so the field falls back to its default.

    Args:
        value: Value to resolve

    Returns:
        Resolved value
    """
    if not isinstance(value, str):
        return value

    if value.startswith("${") and value.endswith("}"):
        var_name = value[2:-1]
        env_value = os.environ.get(var_name)
        if env_value:
            return env_value
        logger.warning("Environment variable %s not set", var_name)
        return None

    return value


def _resolve_section(data: dict[str, Any] | None) -> dict[str, Any]:
    """Resolve placeholders in a section, dropping unset values."""
    resolved = {}
    for key, value in (data or {}).items():
        value = _resolve_value(value)
        if value is not None:
            resolved[key] = value
    return resolved


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_schedule(data: dict[str, Any]) -> FeedSchedule:
    """Parse a recurring fetch from config data."""
    return FeedSchedule(
        name=data["name"],
        feed_kind=data["feed_kind"],
        interval_seconds=int(data["interval_seconds"]),
    )


def _parse_feed(data: dict[str, Any]) -> FeedConfig:
    max_events = data.get("max_events_per_fetch")
    return FeedConfig(
        url_template=data.get("url_template", USGS_SUMMARY_URL),
        timeout_seconds=float(data.get("timeout_seconds", 10.0)),
        user_agent=data.get("user_agent", FeedConfig.user_agent),
        max_events_per_fetch=int(max_events) if max_events is not None else None,
    )


def _parse_storage(data: dict[str, Any]) -> StorageConfig:
    defaults = StorageConfig()
    return StorageConfig(
        store_backend=data.get("store_backend", defaults.store_backend),
        cache_backend=data.get("cache_backend", defaults.cache_backend),
        queue_backend=data.get("queue_backend", defaults.queue_backend),
        firestore_database=data.get("firestore_database"),
        firestore_collection=data.get("firestore_collection", defaults.firestore_collection),
        redis_url=data.get("redis_url", defaults.redis_url),
        redis_namespace=data.get("redis_namespace", defaults.redis_namespace),
    )


def _parse_alert_queue(data: dict[str, Any]) -> AlertQueueConfig:
    return AlertQueueConfig(
        max_attempts=int(data.get("max_attempts", 3)),
        backoff_base_seconds=float(data.get("backoff_base_seconds", 1.0)),
        poll_timeout_seconds=float(data.get("poll_timeout_seconds", 1.0)),
    )


def _parse_mqtt(data: dict[str, Any]) -> MqttConfig:
    defaults = MqttConfig()
    return MqttConfig(
        enabled=_parse_bool(data.get("enabled", True)),
        broker_url=data.get("broker_url", defaults.broker_url),
        topic=data.get("topic", defaults.topic),
        alert_topic_prefix=data.get("alert_topic_prefix", defaults.alert_topic_prefix),
        username=data.get("username"),
        password=data.get("password"),
        publish_timeout_seconds=float(
            data.get("publish_timeout_seconds", defaults.publish_timeout_seconds)
        ),
        heartbeat_interval_seconds=int(
            data.get("heartbeat_interval_seconds", defaults.heartbeat_interval_seconds)
        ),
    )


def load_config_from_dict(data: dict[str, Any]) -> Config:
    """Load configuration from a dictionary.

    This is a pure-ish function (only env var expansion has side effects).

    Args:
        data: Configuration dictionary

    Returns:
        Parsed Config object
    """
    if "schedules" in data:
        schedules = [_parse_schedule(s) for s in data.get("schedules") or []]
    else:
        schedules = default_schedules()

    return Config(
        min_magnitude_alert=float(
            _resolve_value(data.get("min_magnitude_alert")) or DEFAULT_MIN_MAGNITUDE_ALERT
        ),
        recency_capacity=int(data.get("recency_capacity", 1000)),
        detail_ttl_seconds=int(data.get("detail_ttl_seconds", 24 * 60 * 60)),
        simple_query_max_limit=int(data.get("simple_query_max_limit", 100)),
        feed=_parse_feed(_resolve_section(data.get("feed"))),
        schedules=schedules,
        storage=_parse_storage(_resolve_section(data.get("storage"))),
        alert_queue=_parse_alert_queue(_resolve_section(data.get("alert_queue"))),
        mqtt=_parse_mqtt(_resolve_section(data.get("mqtt"))),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file.

    This method performs file I/O.

    Args:
        config_path: Path to YAML config file.
                    If None, uses CONFIG_PATH env var or default.

    Returns:
        Parsed Config object

    Raises:
        yaml.YAMLError: If config file is invalid YAML
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config/config.yaml")

    path = Path(config_path)

    logger.info("Loading configuration from %s", path)

    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        logger.warning("Config file is empty, using environment")
        return load_config_from_env()

    config = load_config_from_dict(data)

    logger.info(
        "Loaded config: %d schedules, store=%s, cache=%s, queue=%s",
        len(config.schedules),
        config.storage.store_backend,
        config.storage.cache_backend,
        config.storage.queue_backend,
    )

    return config


def load_config_from_env() -> Config:
    """Load configuration from environment variables.

    Useful for simple deployments without a YAML file.

    Environment variables:
        MIN_MAGNITUDE_ALERT: Alert threshold (default 4.0)
        RECENCY_CAPACITY: Events kept in the recency window
        USGS_FEED_URL: Feed URL template with a {feed_kind} placeholder
        STORE_BACKEND / CACHE_BACKEND / QUEUE_BACKEND: memory, firestore, redis
        FIRESTORE_DATABASE / FIRESTORE_COLLECTION: Firestore location
        REDIS_URL: Redis connection URL
        MQTT_BROKER_URL / MQTT_TOPIC / MQTT_USERNAME / MQTT_PASSWORD: broker
        MQTT_ENABLED: Set to false to run without a push channel

    Returns:
        Config object from environment
    """
    env = os.environ
    storage_defaults = StorageConfig()
    mqtt_defaults = MqttConfig()

    storage = StorageConfig(
        store_backend=env.get("STORE_BACKEND", storage_defaults.store_backend),
        cache_backend=env.get("CACHE_BACKEND", storage_defaults.cache_backend),
        queue_backend=env.get("QUEUE_BACKEND", storage_defaults.queue_backend),
        firestore_database=env.get("FIRESTORE_DATABASE"),
        firestore_collection=env.get(
            "FIRESTORE_COLLECTION", storage_defaults.firestore_collection
        ),
        redis_url=env.get("REDIS_URL", storage_defaults.redis_url),
    )

    mqtt = MqttConfig(
        enabled=_parse_bool(env.get("MQTT_ENABLED", "true")),
        broker_url=env.get("MQTT_BROKER_URL", mqtt_defaults.broker_url),
        topic=env.get("MQTT_TOPIC", mqtt_defaults.topic),
        username=env.get("MQTT_USERNAME") or None,
        password=env.get("MQTT_PASSWORD") or None,
    )

    return Config(
        min_magnitude_alert=float(
            env.get("MIN_MAGNITUDE_ALERT", DEFAULT_MIN_MAGNITUDE_ALERT)
        ),
        recency_capacity=int(env.get("RECENCY_CAPACITY", 1000)),
        feed=FeedConfig(url_template=env.get("USGS_FEED_URL", USGS_SUMMARY_URL)),
        storage=storage,
        mqtt=mqtt,
    )
