"""Deduplication logic - Pure functions.

This module decides whether a freshly fetched event is new, a revision of
a stored event, or a repeat that needs no work. All functions are pure
with no side effects.

Note: The actual persistence (and the uniqueness guarantee on event ids)
is handled by the imperative shell. This module only contains the logic.
"""

from dataclasses import replace
from datetime import datetime
from enum import Enum

from src.core.earthquake import SeismicEvent


class Classification(str, Enum):
    """Outcome of reconciling a fetched event against the store."""
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# Fields a feed revision is allowed to overwrite. Flags and storage
# bookkeeping are owned by this system, never by the feed.
REVISABLE_FIELDS = (
    "magnitude",
    "location",
    "depth",
    "occurred_at",
    "feed_updated_at",
    "url",
    "alert",
    "tsunami",
)


def is_newer_revision(incoming: SeismicEvent, stored: SeismicEvent) -> bool:
    """Check if the incoming event is a strictly newer feed revision.

    Pure function.
    """
    return incoming.feed_updated_at > stored.feed_updated_at


def classify(
    incoming: SeismicEvent,
    stored: SeismicEvent | None,
) -> Classification:
    """Classify a fetched event against its stored counterpart.

    Pure function.

    Args:
        incoming: Event parsed from the feed
        stored: Stored event with the same id, or None

    Returns:
        NEW if nothing is stored, UPDATED if the feed revision is strictly
        newer, UNCHANGED otherwise
    """
    if stored is None:
        return Classification.NEW

    if is_newer_revision(incoming, stored):
        return Classification.UPDATED

    return Classification.UNCHANGED


def build_new_record(incoming: SeismicEvent, now: datetime) -> SeismicEvent:
    """Build the record stored on first sighting of an event.

    Pure function.
    """
    return replace(
        incoming,
        processed=False,
        notification_sent=False,
        created_at=now,
        updated_at=now,
    )


def apply_revision(
    stored: SeismicEvent,
    incoming: SeismicEvent,
    now: datetime,
) -> SeismicEvent:
    """Overwrite the revisable fields of a stored event.

    Pure function. Flags (`processed`, `notification_sent`) and
    `created_at` are carried over from the stored record.

    Args:
        stored: Currently stored event
        incoming: Newer revision from the feed
        now: Timestamp for `updated_at`

    Returns:
        The revised event
    """
    changes = {name: getattr(incoming, name) for name in REVISABLE_FIELDS}
    return replace(stored, updated_at=now, **changes)


def revision_fields(event: SeismicEvent) -> dict[str, object]:
    """Get the revisable fields of an event as a dict.

    Pure function. Used by stores that update a record partially.
    """
    return {name: getattr(event, name) for name in REVISABLE_FIELDS}
