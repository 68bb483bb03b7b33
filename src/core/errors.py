"""Pipeline error taxonomy.

Shell clients translate library exceptions into these types so the
orchestration layer can decide what is fatal to a record, a cycle or an
alert attempt without knowing which backend raised it.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class FeedUnavailable(PipelineError):
    """The upstream feed could not be fetched (status, timeout, transport)."""

    def __init__(self, feed_kind: str, reason: str) -> None:
        super().__init__(f"Feed {feed_kind} unavailable: {reason}")
        self.feed_kind = feed_kind
        self.reason = reason


class DuplicateEvent(PipelineError):
    """An insert collided with an existing event id."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id} already exists")
        self.event_id = event_id


class StoreWriteFailure(PipelineError):
    """The event store rejected or failed a write."""


class StoreUnavailable(PipelineError):
    """The event store could not be read."""


class CacheUnavailable(PipelineError):
    """The recency cache could not be reached."""


class PushChannelFailure(PipelineError):
    """A push alert could not be published."""


class BroadcastFailure(PipelineError):
    """A real-time broadcast could not be delivered."""


class AlertQueueFailure(PipelineError):
    """The durable alert queue rejected an operation."""
