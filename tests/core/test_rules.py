"""Unit tests for alert rules.

Pure function tests - no mocks needed.
"""

import pytest
from dataclasses import replace
from datetime import datetime, timezone

from src.core.earthquake import Location, SeismicEvent
from src.core.rules import (
    DEFAULT_MIN_MAGNITUDE_ALERT,
    AlertPriority,
    get_priority,
    is_alert_eligible,
    needs_alert,
)


@pytest.fixture
def event():
    """Create an event right at the default threshold."""
    return SeismicEvent(
        id="eq1",
        magnitude=4.0,
        location=Location(latitude=35.0, longitude=139.0, place="Near Tokyo"),
        depth=20.0,
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        feed_updated_at=1,
    )


class TestGetPriority:
    """Tests for get_priority() function."""

    @pytest.mark.parametrize("magnitude,expected", [
        (7.0, AlertPriority.CRITICAL),
        (8.3, AlertPriority.CRITICAL),
        (6.9, AlertPriority.HIGH),
        (5.5, AlertPriority.HIGH),
        (5.4, AlertPriority.MEDIUM),
        (4.0, AlertPriority.MEDIUM),
        (3.9, AlertPriority.LOW),
        (0.5, AlertPriority.LOW),
    ])
    def test_priority_bands(self, magnitude, expected):
        """Should map magnitude bands to priorities (inclusive lower bounds)."""
        assert get_priority(magnitude) is expected

    def test_priority_values(self):
        """Priority values are used as MQTT topic suffixes."""
        assert AlertPriority.CRITICAL.value == "critical"
        assert AlertPriority.LOW.value == "low"


class TestIsAlertEligible:
    """Tests for is_alert_eligible() function."""

    def test_default_threshold(self):
        """Default alert threshold should be 4.0."""
        assert DEFAULT_MIN_MAGNITUDE_ALERT == 4.0

    def test_threshold_is_inclusive(self, event):
        """An event exactly at the threshold is eligible."""
        assert is_alert_eligible(event) is True

    def test_below_threshold(self, event):
        """Should not be eligible below the threshold."""
        assert is_alert_eligible(replace(event, magnitude=3.99)) is False

    def test_custom_threshold(self, event):
        """Should respect a configured threshold."""
        assert is_alert_eligible(replace(event, magnitude=5.0), min_magnitude=5.5) is False
        assert is_alert_eligible(replace(event, magnitude=5.5), min_magnitude=5.5) is True


class TestNeedsAlert:
    """Tests for needs_alert() function."""

    def test_eligible_and_not_notified(self, event):
        """Should need an alert when eligible and not yet notified."""
        assert needs_alert(event) is True

    def test_already_notified(self, event):
        """Should not queue another alert once notified."""
        assert needs_alert(replace(event, notification_sent=True)) is False

    def test_not_eligible(self, event):
        """Should not need an alert below the threshold."""
        assert needs_alert(replace(event, magnitude=2.0)) is False
