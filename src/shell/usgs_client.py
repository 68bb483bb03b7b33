"""USGS Feed Client - Imperative Shell.

This module handles HTTP communication with the USGS summary GeoJSON
feeds. All I/O is contained here; parsing is in the core module.
"""

import logging
from typing import Any

import requests

from src.core.config import USGS_SUMMARY_URL, is_valid_feed_kind
from src.core.errors import FeedUnavailable


logger = logging.getLogger(__name__)


# Default timeout for feed requests (seconds)
DEFAULT_TIMEOUT = 10

DEFAULT_USER_AGENT = "seismic-feed-pipeline/1.0"


class USGSFeedClient:
    """Client for fetching summary feeds from USGS.

    This is part of the imperative shell - it handles HTTP I/O. It makes
    exactly one request per fetch; retrying is the scheduler's business.
    """

    def __init__(
        self,
        url_template: str = USGS_SUMMARY_URL,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize feed client.

        Args:
            url_template: Feed URL with a {feed_kind} placeholder
            timeout: Request timeout in seconds
            user_agent: Value of the User-Agent header
            session: Optional requests session (created if not provided)
        """
        self.url_template = url_template
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or requests.Session()

    def build_url(self, feed_kind: str) -> str:
        """Build the feed URL for a feed kind.

        Raises:
            ValueError: If the feed kind is not a USGS summary feed
        """
        if not is_valid_feed_kind(feed_kind):
            raise ValueError(f"Unknown feed kind: {feed_kind}")
        return self.url_template.format(feed_kind=feed_kind)

    def fetch(self, feed_kind: str) -> list[dict[str, Any]]:
        """Fetch the features of a summary feed.

        This method performs HTTP I/O.

        Args:
            feed_kind: Summary feed name, e.g. 'all_hour'

        Returns:
            Raw GeoJSON features in feed order (empty list if none)

        Raises:
            ValueError: If the feed kind is unknown
            FeedUnavailable: On non-200 status, timeout, transport error
                or a malformed body
        """
        url = self.build_url(feed_kind)

        logger.info("Fetching %s feed from USGS", feed_kind)

        try:
            response = self.session.get(
                url,
                timeout=self.timeout,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/geo+json, application/json",
                },
            )
        except requests.Timeout:
            logger.error("USGS %s feed request timed out", feed_kind)
            raise FeedUnavailable(feed_kind, f"timed out after {self.timeout}s")
        except requests.RequestException as e:
            logger.error("USGS %s feed request failed: %s", feed_kind, str(e))
            raise FeedUnavailable(feed_kind, str(e)) from e

        if response.status_code != 200:
            logger.warning(
                "USGS %s feed returned non-200: %d",
                feed_kind,
                response.status_code,
            )
            raise FeedUnavailable(feed_kind, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise FeedUnavailable(feed_kind, "response is not JSON") from e

        if not isinstance(data, dict):
            raise FeedUnavailable(feed_kind, "response is not a JSON object")

        features = data.get("features")
        if features is None:
            features = []
        if not isinstance(features, list):
            raise FeedUnavailable(feed_kind, "'features' is not a list")

        logger.info("Fetched %d features from USGS %s feed", len(features), feed_kind)

        return features

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
