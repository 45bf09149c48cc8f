"""Forum listing page discovery."""

import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

TOPIC_MARKER = "/forums/topic/"
PROFILE_MARKER = "/profile/"


def build_page_url(forum_url: str, page: int = 1) -> str:
    """Build the listing URL for a forum page (page 1 is the forum URL itself)."""
    if page <= 1:
        return forum_url
    base = forum_url if forum_url.endswith("/") else f"{forum_url}/"
    return f"{base}page/{page}/"


def _is_thread_url(url: str) -> bool:
    return TOPIC_MARKER in url and PROFILE_MARKER not in url


def discover_threads(html: str, base_url: str) -> set[str]:
    """
    Collect thread URLs from a forum listing page.

    Only hover-card links (``a[data-ipshover]``) are considered; they are
    resolved against ``base_url`` and kept when they point at a topic rather
    than a member profile.

    Args:
        html: Listing page HTML
        base_url: URL the page was fetched from

    Returns:
        Deduplicated absolute thread URLs (empty when nothing matched)
    """
    soup = BeautifulSoup(html, "lxml")
    threads: set[str] = set()

    for link in soup.select("a[data-ipshover]"):
        href = link.get("href", "").strip()
        if not href:
            continue
        url = urljoin(base_url, href)
        if _is_thread_url(url):
            threads.add(url)
        else:
            logger.debug(f"Ignoring URL: {url} (not a topic or is a profile page)")

    return threads
