"""Tests for the FastAPI service.

Uses FastAPI's TestClient against an orchestrator with in-memory
backends, a mocked feed client and a mocked push channel.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from fastapi.testclient import TestClient

from api.main import create_app
from src.core.config import AlertQueueConfig, Config, MqttConfig, StorageConfig
from src.core.errors import FeedUnavailable, StoreUnavailable
from src.orchestrator import Orchestrator
from src.shell.mqtt_client import PublishResult


def make_feature(event_id, mag, time):
    return {
        "type": "Feature",
        "id": event_id,
        "properties": {"mag": mag, "place": "10km N of Somewhere", "time": time, "updated": time},
        "geometry": {"type": "Point", "coordinates": [-122.1, 37.4, 10.2]},
    }


@pytest.fixture
def feed_client():
    client = Mock()
    client.fetch.return_value = [
        make_feature("eq1", 5.8, 1700000000000),
        make_feature("eq2", 2.1, 1700000060000),
        make_feature("eq3", 4.2, 1700000120000),
    ]
    return client


@pytest.fixture
def push():
    push = Mock()
    push.connect = AsyncMock()
    push.disconnect = AsyncMock()
    push.is_ready = AsyncMock(return_value=True)
    push.is_connected.return_value = True
    push.publish_alert = AsyncMock(return_value=PublishResult(success=True, topics=["t"]))
    return push


@pytest.fixture
def orchestrator(feed_client, push):
    config = Config(
        storage=StorageConfig(store_backend="memory", cache_backend="memory", queue_backend="memory"),
        alert_queue=AlertQueueConfig(poll_timeout_seconds=0.05),
        mqtt=MqttConfig(enabled=False),
    )
    return Orchestrator(config, feed_client=feed_client, push=push)


@pytest.fixture
def client(orchestrator):
    with TestClient(create_app(orchestrator, schedule=False)) as client:
        yield client


@pytest.fixture
def loaded_client(client):
    assert client.post("/api/earthquakes/fetch/all_hour").status_code == 200
    return client


class TestListEarthquakes:
    """Tests for GET /api/earthquakes."""

    def test_empty(self, client):
        response = client.get("/api/earthquakes")

        assert response.status_code == 200
        assert response.json() == {"earthquakes": [], "count": 0, "limit": 100, "offset": 0}

    def test_newest_first(self, loaded_client):
        response = loaded_client.get("/api/earthquakes")

        assert [e["id"] for e in response.json()["earthquakes"]] == ["eq3", "eq2", "eq1"]

    def test_filters(self, loaded_client):
        response = loaded_client.get("/api/earthquakes", params={"min_magnitude": 4.0, "limit": 1})

        body = response.json()
        assert [e["id"] for e in body["earthquakes"]] == ["eq3"]
        assert body["limit"] == 1

    def test_invalid_limit(self, client):
        assert client.get("/api/earthquakes", params={"limit": 0}).status_code == 422

    def test_naive_start_date(self, loaded_client):
        """Dates without an offset are read as UTC."""
        response = loaded_client.get(
            "/api/earthquakes", params={"start_date": "2023-11-14T22:14:00"}
        )

        assert response.status_code == 200
        assert [e["id"] for e in response.json()["earthquakes"]] == ["eq3", "eq2"]

    def test_inverted_range(self, client):
        response = client.get(
            "/api/earthquakes", params={"min_magnitude": 6, "max_magnitude": 2}
        )

        assert response.status_code == 400

    def test_store_unavailable(self, client, orchestrator):
        orchestrator.store.find_all = AsyncMock(side_effect=StoreUnavailable("down"))

        response = client.get("/api/earthquakes", params={"min_magnitude": 1})

        assert response.status_code == 503


class TestGetEarthquake:
    """Tests for GET /api/earthquakes/{event_id}."""

    def test_found(self, loaded_client):
        response = loaded_client.get("/api/earthquakes/eq1")

        assert response.status_code == 200
        assert response.json()["magnitude"] == 5.8

    def test_not_found(self, client):
        assert client.get("/api/earthquakes/nope").status_code == 404


class TestStatisticsAndHealth:
    """Tests for the statistics and health routes."""

    def test_statistics(self, loaded_client):
        body = loaded_client.get("/api/earthquakes/statistics").json()

        assert body["total"] == 3
        assert body["significant_count"] == 2
        assert body["push_channel_connected"] is True
        assert body["last_fetch_time"] is not None

    def test_healthy(self, client):
        response = client.get("/api/earthquakes/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_unhealthy(self, client, push):
        push.is_ready.return_value = False

        response = client.get("/api/earthquakes/health")

        assert response.status_code == 503
        assert response.json()["details"]["push_channel"] is False

    def test_liveness(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestTriggerFetch:
    """Tests for POST /api/earthquakes/fetch/{feed_kind}."""

    def test_success(self, client):
        response = client.post("/api/earthquakes/fetch/all_hour")

        body = response.json()
        assert response.status_code == 200
        assert body["new"] == 3
        assert body["alerts_queued"] == 2

    def test_unknown_feed_kind(self, client):
        assert client.post("/api/earthquakes/fetch/everything").status_code == 400

    def test_feed_failure(self, client, feed_client):
        feed_client.fetch.side_effect = FeedUnavailable("all_hour", "HTTP 503")

        response = client.post("/api/earthquakes/fetch/all_hour")

        assert response.status_code == 207
        assert response.json()["status"] == "partial_failure"


class TestUpdatesWebSocket:
    """Tests for the /ws real-time route."""

    def test_receives_new_events(self, client):
        with client.websocket_connect("/ws") as websocket:
            client.post("/api/earthquakes/fetch/all_hour")

            first = websocket.receive_json()

        assert first["event"] == "new-event"
        assert first["data"]["id"] == "eq1"

    def test_disconnect_releases_subscription(self, client, orchestrator):
        with client.websocket_connect("/ws"):
            assert orchestrator.broadcast.subscriber_count == 1

        assert orchestrator.broadcast.subscriber_count == 0
