"""Message formatting - Pure functions.

This module formats seismic events into push alert, broadcast and status
payloads. All functions are pure with no side effects.
"""

from datetime import datetime
from typing import Any

from src.core.earthquake import SeismicEvent, event_to_dict
from src.core.rules import get_priority


PAGER_EMOJI = {
    "green": "🟢",
    "yellow": "🟡",
    "orange": "🟠",
    "red": "🔴",
}


def get_magnitude_emoji(magnitude: float) -> str:
    """Get an emoji representing earthquake severity.

    Pure function.
    """
    if magnitude >= 7.0:
        return "🚨"  # Major
    elif magnitude >= 6.0:
        return "⚠️"  # Strong
    elif magnitude >= 5.0:
        return "🔶"  # Moderate
    elif magnitude >= 4.0:
        return "🔸"  # Light
    else:
        return "🔹"  # Minor


def get_severity_label(magnitude: float) -> str:
    """Get a human-readable severity label.

    Pure function.
    """
    if magnitude >= 8.0:
        return "Great"
    elif magnitude >= 7.0:
        return "Major"
    elif magnitude >= 6.0:
        return "Strong"
    elif magnitude >= 5.0:
        return "Moderate"
    elif magnitude >= 4.0:
        return "Light"
    elif magnitude >= 3.0:
        return "Minor"
    else:
        return "Micro"


def format_event_summary(event: SeismicEvent) -> str:
    """Format a one-line summary of an event.

    Pure function.
    """
    time_str = event.occurred_at.strftime("%Y-%m-%d %H:%M:%S UTC")
    return (
        f"M{event.magnitude:.1f} - {event.place} "
        f"at {time_str} (depth: {event.depth:.1f}km)"
    )


def format_alert_body(event: SeismicEvent) -> str:
    """Format the human-readable body of a push alert.

    Pure function.
    """
    lines = [
        event.place,
        f"Depth: {event.depth:.1f}km",
        f"Severity: {get_severity_label(event.magnitude)}",
    ]

    if event.tsunami:
        lines.append("🌊 TSUNAMI WARNING ISSUED")
    if event.alert:
        emoji = PAGER_EMOJI.get(event.alert, "⚪")
        lines.append(f"{emoji} PAGER Alert Level: {event.alert.upper()}")

    return "\n".join(lines)


def format_push_alert(
    event: SeismicEvent,
    published_at: datetime,
) -> dict[str, Any]:
    """Format an event as a push alert payload.

    Pure function.

    Args:
        event: Event to alert on
        published_at: Publication timestamp for the payload

    Returns:
        Dict with title, body and structured data
    """
    priority = get_priority(event.magnitude)
    emoji = get_magnitude_emoji(event.magnitude)

    return {
        "title": f"{emoji} Earthquake Alert - M{event.magnitude:.1f}",
        "body": format_alert_body(event),
        "data": {
            "id": event.id,
            "magnitude": event.magnitude,
            "location": {
                "latitude": event.location.latitude,
                "longitude": event.location.longitude,
                "place": event.location.place,
            },
            "depth": event.depth,
            "timestamp": event.occurred_at.isoformat(),
            "alert": event.alert,
            "tsunami": event.tsunami,
            "url": event.url,
            "published_at": published_at.isoformat(),
            "priority": priority.value,
        },
    }


def format_broadcast_event(event: SeismicEvent) -> dict[str, Any]:
    """Format an event for real-time subscribers.

    Pure function.
    """
    return event_to_dict(event)


def format_server_status(connected: bool, last_update: datetime) -> dict[str, Any]:
    """Format the server-status broadcast payload.

    Pure function.
    """
    return {
        "connected": connected,
        "last_update": last_update.isoformat(),
    }


def format_heartbeat(client_id: str, now: datetime) -> dict[str, Any]:
    """Format the retained push-channel heartbeat payload.

    Pure function.
    """
    return {
        "timestamp": now.isoformat(),
        "status": "online",
        "client_id": client_id,
    }
