"""Operational status models - Pure functions.

The aggregator in src/stats.py gathers raw readings from collaborators;
this module turns those readings into statistics and health reports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class Statistics:
    """Operational counters for the query surface.

    Attributes:
        total: Events in the store
        last_24h: Events that occurred in the last 24 hours
        significant_count: Events at or above the alert threshold
        last_fetch_time: Completion time of the latest successful fetch
        connected_subscribers: Live broadcast subscribers
        push_channel_connected: Whether the push channel is connected
    """
    total: int
    last_24h: int
    significant_count: int
    last_fetch_time: datetime | None
    connected_subscribers: int
    push_channel_connected: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "last_24h": self.last_24h,
            "significant_count": self.significant_count,
            "last_fetch_time": (
                self.last_fetch_time.isoformat() if self.last_fetch_time else None
            ),
            "connected_subscribers": self.connected_subscribers,
            "push_channel_connected": self.push_channel_connected,
        }


@dataclass(frozen=True)
class HealthReport:
    """Overall health with per-dependency details.

    Attributes:
        status: 'healthy' or 'unhealthy'
        details: Dependency readiness and degraded-mode signals
    """
    status: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status == HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "details": self.details}


def derive_status(dependencies: dict[str, bool]) -> str:
    """Derive the overall status from dependency readiness.

    Pure function. A single dependency that is not ready makes the whole
    service unhealthy; no dependencies at all counts as unhealthy.
    """
    if dependencies and all(dependencies.values()):
        return HEALTHY
    return UNHEALTHY


def degraded_signals(
    feed_errors: dict[str, str],
    abandoned_alerts: int,
) -> list[str]:
    """List degraded-mode signals that do not affect the status.

    Pure function.
    """
    signals = []
    if feed_errors:
        signals.append("feed")
    if abandoned_alerts > 0:
        signals.append("alerting")
    return signals


def build_health_report(
    dependencies: dict[str, bool],
    feed_errors: dict[str, str],
    last_fetch_time: datetime | None,
    abandoned_alerts: int,
    last_abandoned_id: str | None,
    queue_counts: dict[str, int] | None = None,
) -> HealthReport:
    """Assemble a HealthReport from raw readings.

    Pure function.
    """
    details: dict[str, Any] = dict(dependencies)
    details["feed"] = {
        "last_fetch_time": last_fetch_time.isoformat() if last_fetch_time else None,
        "errors": dict(feed_errors),
    }
    details["alerting"] = {
        "abandoned_jobs": abandoned_alerts,
        "last_abandoned_id": last_abandoned_id,
        "queue": dict(queue_counts or {}),
    }
    details["degraded"] = degraded_signals(feed_errors, abandoned_alerts)

    return HealthReport(status=derive_status(dependencies), details=details)
