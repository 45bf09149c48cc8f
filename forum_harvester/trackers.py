"""Cached BitTorrent tracker list attached to every persisted release."""

import logging
from datetime import datetime, timedelta

from .fetcher import Fetcher, FetchError
from .utils import utcnow

logger = logging.getLogger(__name__)

SOURCE_PREFIX = "tracker:"


def parse_tracker_list(text: str) -> list[str]:
    """Tracker URLs from a newline-delimited list, skipping blanks and # comments."""
    trackers = []
    seen = set()
    for line in text.splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#") or entry in seen:
            continue
        seen.add(entry)
        trackers.append(entry)
    return trackers


class TrackerList:
    """Tracker URLs fetched from a public list and refreshed on an interval.

    A failed refresh keeps the previously cached list, so releases written
    while the list host is down still carry the last known trackers.
    """

    def __init__(self, url: str, interval_hours: float = 6.0) -> None:
        self.url = url
        self.interval = timedelta(hours=interval_hours)
        self.trackers: list[str] = []
        self.last_refresh: datetime | None = None

    def is_stale(self, now: datetime | None = None) -> bool:
        if self.last_refresh is None:
            return True
        now = now or utcnow()
        return now - self.last_refresh >= self.interval

    @property
    def sources(self) -> list[str]:
        """Trackers formatted as ``tracker:<url>`` source entries."""
        return [f"{SOURCE_PREFIX}{tracker}" for tracker in self.trackers]

    async def refresh(self, fetcher: Fetcher, force: bool = False) -> bool:
        """
        Re-download the tracker list when stale (or when forced).

        Returns:
            True if the cached list was replaced
        """
        if not force and not self.is_stale():
            logger.debug("Tracker list is fresh; skipping refresh")
            return False

        logger.info(f"Refreshing tracker list from {self.url}")
        try:
            text = await fetcher.fetch(self.url)
        except FetchError as e:
            logger.error(f"Tracker list refresh failed, keeping {len(self.trackers)} cached: {e}")
            return False

        trackers = parse_tracker_list(text)
        if not trackers:
            logger.warning("Tracker list response contained no trackers; keeping cached list")
            return False

        self.trackers = trackers
        self.last_refresh = utcnow()
        logger.info(f"Updated tracker list with {len(trackers)} trackers")
        return True
