"""Event query filters - Pure functions.

This module describes the filters accepted by the query surface and
applies them to in-memory event lists. Stores with native querying use
EventFilter directly and only fall back to matches_filter() for
predicates their backend cannot express.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from src.core.earthquake import SeismicEvent


DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


@dataclass(frozen=True)
class EventFilter:
    """Filters for listing events (all optional, combined with AND).

    Attributes:
        min_magnitude: Minimum magnitude (inclusive)
        max_magnitude: Maximum magnitude (inclusive)
        location: Case-insensitive substring of the place description
        start_date: Only events that occurred at or after this time
        end_date: Only events that occurred at or before this time
        processed: Match on the processed flag
        notification_sent: Match on the notification_sent flag
        limit: Page size
        offset: Number of events to skip
    """
    min_magnitude: float | None = None
    max_magnitude: float | None = None
    location: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    processed: bool | None = None
    notification_sent: bool | None = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    def __post_init__(self):
        # Naive bounds are taken as UTC, like every stored timestamp
        for name in ("start_date", "end_date"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                object.__setattr__(self, name, value.replace(tzinfo=timezone.utc))

    @property
    def has_predicates(self) -> bool:
        """True if any filter other than paging is set."""
        return any(
            value is not None
            for value in (
                self.min_magnitude,
                self.max_magnitude,
                self.location,
                self.start_date,
                self.end_date,
                self.processed,
                self.notification_sent,
            )
        )


def validate_filter(event_filter: EventFilter) -> list[str]:
    """Validate paging and range values.

    Pure function.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if not 1 <= event_filter.limit <= MAX_LIMIT:
        errors.append(f"limit must be between 1 and {MAX_LIMIT}, got {event_filter.limit}")

    if event_filter.offset < 0:
        errors.append(f"offset must be >= 0, got {event_filter.offset}")

    if (
        event_filter.min_magnitude is not None
        and event_filter.max_magnitude is not None
        and event_filter.min_magnitude > event_filter.max_magnitude
    ):
        errors.append(
            f"min_magnitude ({event_filter.min_magnitude}) > "
            f"max_magnitude ({event_filter.max_magnitude})"
        )

    if (
        event_filter.start_date is not None
        and event_filter.end_date is not None
        and event_filter.start_date > event_filter.end_date
    ):
        errors.append("start_date is after end_date")

    return errors


def matches_filter(event: SeismicEvent, event_filter: EventFilter) -> bool:
    """Check if an event satisfies every predicate of a filter.

    Pure function. Paging is not applied here.
    """
    f = event_filter

    if f.min_magnitude is not None and event.magnitude < f.min_magnitude:
        return False

    if f.max_magnitude is not None and event.magnitude > f.max_magnitude:
        return False

    if f.location and f.location.lower() not in event.place.lower():
        return False

    if f.start_date is not None and event.occurred_at < f.start_date:
        return False

    if f.end_date is not None and event.occurred_at > f.end_date:
        return False

    if f.processed is not None and event.processed != f.processed:
        return False

    if f.notification_sent is not None and event.notification_sent != f.notification_sent:
        return False

    return True


def sort_newest_first(events: list[SeismicEvent]) -> list[SeismicEvent]:
    """Sort events by occurrence time, newest first.

    Pure function.
    """
    return sorted(events, key=lambda e: e.occurred_at, reverse=True)


def apply_filter(
    events: list[SeismicEvent],
    event_filter: EventFilter,
) -> list[SeismicEvent]:
    """Filter, order (newest first) and page a list of events.

    Pure function.
    """
    matching = [e for e in events if matches_filter(e, event_filter)]
    ordered = sort_newest_first(matching)
    return ordered[event_filter.offset:event_filter.offset + event_filter.limit]


def is_simple_query(
    event_filter: EventFilter,
    cache_capacity: int,
    max_simple_limit: int,
) -> bool:
    """Check if a query can be answered from the recency window.

    Pure function. Simple means no predicates, a small page, and a page
    that lies entirely inside the window.
    """
    if event_filter.has_predicates:
        return False

    if event_filter.limit > max_simple_limit:
        return False

    return event_filter.offset + event_filter.limit <= cache_capacity
