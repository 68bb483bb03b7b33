"""Functional Core - Pure functions with no side effects.

This module contains all business logic as pure functions:
- Feed parsing into SeismicEvent
- Dedup / revision classification
- Alert eligibility and priority
- Payload formatting
- Query filters
- Retry delays and health derivation

All functions here are deterministic and have no I/O.
"""

from src.core.earthquake import SeismicEvent, Location, parse_feature, parse_features
from src.core.dedup import Classification, classify, apply_revision, build_new_record
from src.core.rules import AlertPriority, get_priority, is_alert_eligible, needs_alert
from src.core.formatter import format_push_alert, format_broadcast_event
from src.core.query import EventFilter, apply_filter, matches_filter
from src.core.retry import RetryPolicy, backoff_delay

__all__ = [
    # Earthquake
    "SeismicEvent",
    "Location",
    "parse_feature",
    "parse_features",
    # Dedup
    "Classification",
    "classify",
    "apply_revision",
    "build_new_record",
    # Rules
    "AlertPriority",
    "get_priority",
    "is_alert_eligible",
    "needs_alert",
    # Formatter
    "format_push_alert",
    "format_broadcast_event",
    # Query
    "EventFilter",
    "apply_filter",
    "matches_filter",
    # Retry
    "RetryPolicy",
    "backoff_delay",
]
