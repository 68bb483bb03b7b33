"""Imperative Shell - I/O and side effects.

This module contains all code that interacts with external systems:
- USGS feed client (HTTP)
- Event store (Firestore, or in-memory)
- Recency cache and alert queue (Redis, or in-memory)
- MQTT push channel and in-process broadcast hub
- Configuration loading (environment/files)

Keep this layer thin and simple. All business logic should be in core.
"""

from src.shell.usgs_client import USGSFeedClient
from src.shell.event_store import InMemoryEventStore
from src.shell.firestore_client import FirestoreEventStore
from src.shell.recency_cache import InMemoryRecencyCache, RedisRecencyCache
from src.shell.alert_queue import AlertJob, InMemoryAlertQueue, RedisAlertQueue
from src.shell.broadcast import BroadcastHub
from src.shell.mqtt_client import MqttPushChannel, NullPushChannel
from src.shell.config_loader import load_config, load_config_from_env

__all__ = [
    "USGSFeedClient",
    "InMemoryEventStore",
    "FirestoreEventStore",
    "InMemoryRecencyCache",
    "RedisRecencyCache",
    "AlertJob",
    "InMemoryAlertQueue",
    "RedisAlertQueue",
    "BroadcastHub",
    "MqttPushChannel",
    "NullPushChannel",
    "load_config",
    "load_config_from_env",
]
