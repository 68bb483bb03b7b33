"""Unit tests for seismic event parsing.

These tests demonstrate the benefit of the Functional Core pattern:
- No mocks needed
- Fast, deterministic execution
- Simple assertions on pure functions
"""

from datetime import datetime, timezone

import pytest

from src.core.earthquake import (
    Location,
    SeismicEvent,
    datetime_to_ms,
    event_from_dict,
    event_to_dict,
    ms_to_datetime,
    parse_feature,
    parse_features,
)


# Sample USGS GeoJSON feature for testing
SAMPLE_FEATURE = {
    "type": "Feature",
    "id": "us1000abcd",
    "properties": {
        "mag": 5.8,
        "place": "20km N of X",
        "time": 1700000000000,
        "updated": 1700000000000,
        "url": "https://earthquake.usgs.gov/earthquakes/eventpage/us1000abcd",
        "alert": None,
        "tsunami": 0,
    },
    "geometry": {
        "type": "Point",
        "coordinates": [-122.1, 37.4, 10.2],  # lon, lat, depth
    },
}


class TestParseFeature:
    """Tests for parse_feature() function."""

    def test_parses_valid_feature(self):
        """Should parse a complete USGS feature."""
        event = parse_feature(SAMPLE_FEATURE)

        assert event is not None
        assert event.id == "us1000abcd"
        assert event.magnitude == 5.8
        assert event.place == "20km N of X"
        assert event.location.latitude == 37.4
        assert event.location.longitude == -122.1
        assert event.depth == 10.2
        assert event.feed_updated_at == 1700000000000
        assert event.alert is None
        assert event.tsunami is False

    def test_parses_time_as_utc(self):
        """Should convert epoch milliseconds to an aware UTC datetime."""
        event = parse_feature(SAMPLE_FEATURE)

        assert event.occurred_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_new_events_have_clear_flags(self):
        """Parsed events are not yet processed or notified."""
        event = parse_feature(SAMPLE_FEATURE)

        assert event.processed is False
        assert event.notification_sent is False
        assert event.created_at is None

    def test_updated_falls_back_to_time(self):
        """A missing updated stamp should use the event time."""
        feature = {
            **SAMPLE_FEATURE,
            "properties": {**SAMPLE_FEATURE["properties"], "updated": None},
        }

        event = parse_feature(feature)

        assert event.feed_updated_at == 1700000000000

    def test_tsunami_flag(self):
        """Should read the tsunami flag as a bool."""
        feature = {
            **SAMPLE_FEATURE,
            "properties": {**SAMPLE_FEATURE["properties"], "tsunami": 1},
        }

        assert parse_feature(feature).tsunami is True

    def test_missing_place_uses_default(self):
        """Should default the place description."""
        feature = {
            **SAMPLE_FEATURE,
            "properties": {**SAMPLE_FEATURE["properties"], "place": None},
        }

        assert parse_feature(feature).place == "Unknown location"

    def test_returns_none_for_missing_id(self):
        """Should return None if the id is missing."""
        feature = {**SAMPLE_FEATURE, "id": None}
        assert parse_feature(feature) is None

    def test_returns_none_for_missing_magnitude(self):
        """Should return None if magnitude is missing."""
        feature = {
            **SAMPLE_FEATURE,
            "properties": {**SAMPLE_FEATURE["properties"], "mag": None},
        }
        assert parse_feature(feature) is None

    def test_returns_none_for_short_coordinates(self):
        """Should return None without longitude, latitude and depth."""
        feature = {**SAMPLE_FEATURE, "geometry": {"coordinates": [-122.1, 37.4]}}
        assert parse_feature(feature) is None

    def test_returns_none_for_malformed_values(self):
        """Should return None if a value cannot be converted."""
        feature = {
            **SAMPLE_FEATURE,
            "properties": {**SAMPLE_FEATURE["properties"], "mag": "strong"},
        }
        assert parse_feature(feature) is None

    def test_returns_none_for_non_dict(self):
        """Should return None for a feature that is not a dict."""
        assert parse_feature("not a feature") is None


class TestParseFeatures:
    """Tests for parse_features() function."""

    def test_preserves_feed_order(self):
        """Should keep features in the order the feed listed them."""
        features = [
            {**SAMPLE_FEATURE, "id": "b"},
            {**SAMPLE_FEATURE, "id": "a"},
            {**SAMPLE_FEATURE, "id": "c"},
        ]

        events = parse_features(features)

        assert [e.id for e in events] == ["b", "a", "c"]

    def test_drops_invalid_features(self):
        """Should skip features that fail to parse."""
        features = [SAMPLE_FEATURE, {"id": "broken"}]

        events = parse_features(features)

        assert len(events) == 1

    def test_empty_list(self):
        """Should return empty list for no features."""
        assert parse_features([]) == []


class TestTimeConversion:
    """Tests for epoch millisecond conversion."""

    def test_round_trip(self):
        """Milliseconds should survive conversion to datetime and back."""
        assert datetime_to_ms(ms_to_datetime(1700000000123)) == 1700000000123

    def test_naive_datetime_is_utc(self):
        """Naive datetimes should be treated as UTC."""
        naive = datetime(2023, 11, 14, 22, 13, 20)
        assert datetime_to_ms(naive) == 1700000000000


class TestEventDict:
    """Tests for event_to_dict() and event_from_dict()."""

    def test_datetimes_are_iso_strings(self):
        """Serialized datetimes should be ISO 8601 strings."""
        event = parse_feature(SAMPLE_FEATURE)

        data = event_to_dict(event)

        assert data["occurred_at"] == "2023-11-14T22:13:20+00:00"
        assert data["created_at"] is None
        assert data["location"]["place"] == "20km N of X"

    def test_from_dict_accepts_datetimes(self):
        """Firestore returns datetimes; they should be accepted as is."""
        occurred = datetime(2024, 1, 1, tzinfo=timezone.utc)
        data = {
            "id": "eq1",
            "magnitude": 4.0,
            "location": {"latitude": 1.0, "longitude": 2.0, "place": "Somewhere"},
            "depth": 5.0,
            "occurred_at": occurred,
            "feed_updated_at": 1,
            "notification_sent": True,
        }

        event = event_from_dict(data)

        assert event.occurred_at == occurred
        assert event.notification_sent is True
        assert event.url == ""

    def test_from_dict_restores_event(self):
        """A serialized event should deserialize to an equal event."""
        event = SeismicEvent(
            id="eq1",
            magnitude=6.1,
            location=Location(latitude=-33.4, longitude=-70.6, place="Santiago"),
            depth=30.0,
            occurred_at=datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc),
            feed_updated_at=1709281800000,
            alert="yellow",
            tsunami=True,
            notification_sent=True,
            created_at=datetime(2024, 3, 1, 8, 31, tzinfo=timezone.utc),
            updated_at=datetime(2024, 3, 1, 8, 40, tzinfo=timezone.utc),
        )

        assert event_from_dict(event_to_dict(event)) == event

    def test_from_dict_requires_id(self):
        """Should raise KeyError for a dict without an id."""
        with pytest.raises(KeyError):
            event_from_dict({"magnitude": 1.0})
