"""Seismic event model and feed parsing - Pure functions.

This module turns USGS GeoJSON features into typed SeismicEvent objects
and converts events to and from plain dicts for storage and transport.
All functions are pure with no side effects.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class Location:
    """Epicenter location.

    Attributes:
        latitude: Epicenter latitude
        longitude: Epicenter longitude
        place: Human-readable location description
    """
    latitude: float
    longitude: float
    place: str


@dataclass(frozen=True)
class SeismicEvent:
    """Immutable seismic event record.

    Updates are expressed with dataclasses.replace(); nothing mutates an
    instance in place.

    Attributes:
        id: Unique upstream event ID (primary dedup key)
        magnitude: Event magnitude
        location: Epicenter location
        depth: Depth in kilometers
        occurred_at: Time of the physical event (UTC)
        feed_updated_at: Feed revision stamp in epoch milliseconds
        url: USGS event detail URL
        alert: PAGER alert level (green/yellow/orange/red) (optional)
        tsunami: Whether the tsunami flag is set
        processed: Reserved for downstream consumers
        notification_sent: True once a push alert has been published
        created_at: When the store first saw the event
        updated_at: When the store last changed the event
    """
    id: str
    magnitude: float
    location: Location
    depth: float
    occurred_at: datetime
    feed_updated_at: int
    url: str = ""
    alert: str | None = None
    tsunami: bool = False
    processed: bool = False
    notification_sent: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def place(self) -> str:
        """Shortcut for the location description."""
        return self.location.place

    @property
    def occurred_at_ms(self) -> int:
        """Event time in epoch milliseconds."""
        return datetime_to_ms(self.occurred_at)


def ms_to_datetime(value_ms: int | float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)


def datetime_to_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


def parse_feature(feature: dict[str, Any]) -> SeismicEvent | None:
    """Parse a single GeoJSON feature into a SeismicEvent.

    Pure function: takes raw dict, returns typed event or None if invalid.
    A missing `updated` stamp falls back to the event time.

    Args:
        feature: GeoJSON feature dict from a USGS summary feed

    Returns:
        SeismicEvent or None if a required field is missing or malformed
    """
    try:
        event_id = feature.get("id")
        if not event_id:
            return None

        props = feature.get("properties") or {}
        geometry = feature.get("geometry") or {}
        coords = geometry.get("coordinates") or []

        if len(coords) < 3:
            return None

        time_ms = props.get("time")
        magnitude = props.get("mag")
        if time_ms is None or magnitude is None:
            return None

        updated_ms = props.get("updated")
        if updated_ms is None:
            updated_ms = time_ms

        return SeismicEvent(
            id=str(event_id),
            magnitude=float(magnitude),
            location=Location(
                latitude=float(coords[1]),
                longitude=float(coords[0]),
                place=props.get("place") or "Unknown location",
            ),
            depth=float(coords[2]),
            occurred_at=ms_to_datetime(time_ms),
            feed_updated_at=int(updated_ms),
            url=props.get("url") or "",
            alert=props.get("alert"),
            tsunami=bool(props.get("tsunami", 0)),
        )
    except (AttributeError, TypeError, ValueError):
        return None


def parse_features(features: list[dict[str, Any]]) -> list[SeismicEvent]:
    """Parse a list of GeoJSON features, dropping invalid ones.

    Pure function. Unlike a display listing, feed order is preserved:
    dispatch order within a cycle follows the feed.
    """
    events = []
    for feature in features:
        event = parse_feature(feature)
        if event is not None:
            events.append(event)
    return events


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def event_to_dict(event: SeismicEvent) -> dict[str, Any]:
    """Convert a SeismicEvent to a JSON-serializable dict."""
    return {
        "id": event.id,
        "magnitude": event.magnitude,
        "location": {
            "latitude": event.location.latitude,
            "longitude": event.location.longitude,
            "place": event.location.place,
        },
        "depth": event.depth,
        "occurred_at": _iso(event.occurred_at),
        "feed_updated_at": event.feed_updated_at,
        "url": event.url,
        "alert": event.alert,
        "tsunami": event.tsunami,
        "processed": event.processed,
        "notification_sent": event.notification_sent,
        "created_at": _iso(event.created_at),
        "updated_at": _iso(event.updated_at),
    }


def event_from_dict(data: dict[str, Any]) -> SeismicEvent:
    """Rebuild a SeismicEvent from event_to_dict() output.

    Datetime fields may be ISO strings or datetime objects (Firestore
    returns timestamps as datetimes).

    Raises:
        KeyError: If a required field is missing
        ValueError: If a field cannot be converted
    """
    location = data["location"]
    return SeismicEvent(
        id=data["id"],
        magnitude=float(data["magnitude"]),
        location=Location(
            latitude=float(location["latitude"]),
            longitude=float(location["longitude"]),
            place=location.get("place", ""),
        ),
        depth=float(data["depth"]),
        occurred_at=_parse_iso(data["occurred_at"]),
        feed_updated_at=int(data["feed_updated_at"]),
        url=data.get("url", ""),
        alert=data.get("alert"),
        tsunami=bool(data.get("tsunami", False)),
        processed=bool(data.get("processed", False)),
        notification_sent=bool(data.get("notification_sent", False)),
        created_at=_parse_iso(data.get("created_at")),
        updated_at=_parse_iso(data.get("updated_at")),
    )
