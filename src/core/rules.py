"""Alert rule evaluation - Pure functions.

This module decides which events warrant a push alert and how urgent
that alert is. All functions are pure with no side effects.
"""

from enum import Enum

from src.core.earthquake import SeismicEvent


DEFAULT_MIN_MAGNITUDE_ALERT = 4.0


class AlertPriority(str, Enum):
    """Push alert priority, used in topic names and payloads."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def get_priority(magnitude: float) -> AlertPriority:
    """Derive the push alert priority from a magnitude.

    Pure function. Informational only; eligibility is decided by
    is_alert_eligible().
    """
    if magnitude >= 7.0:
        return AlertPriority.CRITICAL
    elif magnitude >= 5.5:
        return AlertPriority.HIGH
    elif magnitude >= 4.0:
        return AlertPriority.MEDIUM
    else:
        return AlertPriority.LOW


def is_alert_eligible(
    event: SeismicEvent,
    min_magnitude: float = DEFAULT_MIN_MAGNITUDE_ALERT,
) -> bool:
    """Check if an event reaches the alert threshold (inclusive).

    Pure function.
    """
    return event.magnitude >= min_magnitude


def needs_alert(
    event: SeismicEvent,
    min_magnitude: float = DEFAULT_MIN_MAGNITUDE_ALERT,
) -> bool:
    """Check if an alert job should be queued for an event.

    Pure function. An event that was already notified is never queued
    again, even when a revision comes in.
    """
    return is_alert_eligible(event, min_magnitude) and not event.notification_sent
