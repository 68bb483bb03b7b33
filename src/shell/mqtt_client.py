"""MQTT Push Channel - Imperative Shell.

This module publishes push alerts and heartbeats to an MQTT broker using
paho-mqtt. paho runs its network loop in a background thread; each
publish is wrapped as a single awaitable call that waits for the broker
acknowledgement with a timeout.

All I/O is contained here; payload formatting is in the core module.
"""

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from src.core.config import MqttConfig
from src.core.earthquake import SeismicEvent
from src.core.errors import PushChannelFailure
from src.core.formatter import format_heartbeat, format_push_alert


logger = logging.getLogger(__name__)


# Seconds to wait for the broker CONNACK on startup
CONNECT_TIMEOUT = 4.0


@dataclass
class PublishResult:
    """Response from a push publish attempt.

    Attributes:
        success: Whether the authoritative topic acknowledged the message
        topics: Topics the message was published to
        error: Error message if failed
    """
    success: bool
    topics: list[str] = field(default_factory=list)
    error: str | None = None


def parse_broker_url(url: str) -> tuple[str, int, bool]:
    """Split a broker URL into (host, port, use_tls).

    Pure function.
    """
    parsed = urlparse(url)
    use_tls = parsed.scheme == "mqtts"
    port = parsed.port or (8883 if use_tls else 1883)
    return parsed.hostname or "localhost", port, use_tls


class MqttPushChannel:
    """Push channel publishing per-priority alerts over MQTT.

    This is part of the imperative shell - it handles network I/O.

    Topics:
        <alert_topic_prefix>/<priority>   full payload (title, body, data)
        <topic>                           data only, for general consumers
        <topic>/heartbeat                 retained liveness message
    """

    def __init__(self, config: MqttConfig | None = None) -> None:
        """Initialize push channel.

        Args:
            config: MQTT configuration
        """
        self.config = config or MqttConfig()
        self.client_id = f"seismic-pipeline-{uuid.uuid4().hex[:8]}"
        self._client: Any | None = None
        self._connected = threading.Event()

    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self._connected.set()
        logger.info("Connected to MQTT broker at %s", self.config.broker_url)

    def _on_disconnect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        self._connected.clear()
        logger.warning("MQTT client is offline (%s), reconnecting", reason_code)

    def _build_client(self) -> Any:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        return client

    async def connect(self) -> None:
        """Connect to the broker and start the network loop.

        paho keeps reconnecting in the background if the broker goes away.

        Raises:
            PushChannelFailure: If the broker does not accept the
                connection within the connect timeout
        """
        if not self.config.enabled:
            logger.warning("Push channel disabled, not connecting")
            return

        host, port, use_tls = parse_broker_url(self.config.broker_url)

        if self._client is None:
            self._client = self._build_client()
            if use_tls:
                self._client.tls_set()

        try:
            self._client.connect_async(host, port, keepalive=60)
            self._client.loop_start()
        except (OSError, ValueError) as e:
            raise PushChannelFailure(f"Failed to start MQTT client: {e}") from e

        connected = await asyncio.to_thread(self._connected.wait, CONNECT_TIMEOUT)
        if not connected:
            raise PushChannelFailure(
                f"No CONNACK from {self.config.broker_url} within {CONNECT_TIMEOUT}s"
            )

    async def disconnect(self) -> None:
        if self._client is None:
            return
        self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()
        logger.info("Disconnected from MQTT broker")

    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.is_connected())

    async def is_ready(self) -> bool:
        return self.is_connected()

    def _publish_sync(self, topic: str, payload: str, qos: int, retain: bool) -> None:
        """Publish and block until acknowledged (runs in a worker thread).

        Raises:
            PushChannelFailure: If paho rejects the message or the broker
                does not acknowledge it in time
        """
        try:
            info = self._client.publish(topic, payload, qos=qos, retain=retain)
        except (RuntimeError, ValueError) as e:
            raise PushChannelFailure(f"Publish to {topic} rejected: {e}") from e

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PushChannelFailure(
                f"Publish to {topic} rejected: {mqtt.error_string(info.rc)}"
            )

        try:
            info.wait_for_publish(timeout=self.config.publish_timeout_seconds)
        except (RuntimeError, ValueError) as e:
            raise PushChannelFailure(f"Publish to {topic} failed: {e}") from e

        if not info.is_published():
            raise PushChannelFailure(
                f"Publish to {topic} not acknowledged within "
                f"{self.config.publish_timeout_seconds}s"
            )

    async def publish_alert(
        self,
        event: SeismicEvent,
        now: datetime | None = None,
    ) -> PublishResult:
        """Publish a push alert for an event.

        The per-priority topic is authoritative; the general topic is
        published after it and only logged on failure.

        Args:
            event: Event to alert on
            now: Publication time (defaults to current UTC time)

        Returns:
            PublishResult indicating success or failure
        """
        if not self.is_connected():
            logger.warning("MQTT client is not connected, unable to publish alert")
            return PublishResult(success=False, error="MQTT client is not connected")

        payload = format_push_alert(event, now or datetime.now(timezone.utc))
        priority_topic = f"{self.config.alert_topic_prefix}/{payload['data']['priority']}"

        try:
            await asyncio.to_thread(
                self._publish_sync, priority_topic, json.dumps(payload), 1, False
            )
        except PushChannelFailure as e:
            logger.error("Failed to publish alert for %s: %s", event.id, str(e))
            return PublishResult(success=False, topics=[priority_topic], error=str(e))

        topics = [priority_topic]
        try:
            await asyncio.to_thread(
                self._publish_sync, self.config.topic, json.dumps(payload["data"]), 1, False
            )
            topics.append(self.config.topic)
        except PushChannelFailure as e:
            logger.warning("General topic publish failed for %s: %s", event.id, str(e))

        logger.info("Published alert for %s to %s", event.id, ", ".join(topics))
        return PublishResult(success=True, topics=topics)

    async def publish_heartbeat(self, now: datetime | None = None) -> PublishResult:
        """Publish the retained heartbeat message.

        Returns:
            PublishResult indicating success or failure
        """
        topic = f"{self.config.topic}/heartbeat"

        if not self.is_connected():
            return PublishResult(success=False, error="MQTT client is not connected")

        payload = format_heartbeat(self.client_id, now or datetime.now(timezone.utc))

        try:
            await asyncio.to_thread(self._publish_sync, topic, json.dumps(payload), 0, True)
        except PushChannelFailure as e:
            logger.error("Failed to publish heartbeat: %s", str(e))
            return PublishResult(success=False, topics=[topic], error=str(e))

        return PublishResult(success=True, topics=[topic])


class NullPushChannel:
    """Push channel used when MQTT is disabled; always disconnected."""

    async def connect(self) -> None:
        logger.warning("Push channel disabled")

    async def disconnect(self) -> None:
        return None

    def is_connected(self) -> bool:
        return False

    async def is_ready(self) -> bool:
        return False

    async def publish_alert(self, event: SeismicEvent, now: datetime | None = None) -> PublishResult:
        return PublishResult(success=False, error="Push channel disabled")

    async def publish_heartbeat(self, now: datetime | None = None) -> PublishResult:
        return PublishResult(success=False, error="Push channel disabled")
