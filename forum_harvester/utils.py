"""Shared utilities for the forum harvester."""

import hashlib
import re
from datetime import datetime, timezone
from urllib.parse import parse_qs, quote, urlsplit

from bs4 import BeautifulSoup
from rich.console import Console

# Shared console instance for all modules
console = Console()

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Rotated per request by the fetcher
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]

PLACEHOLDER_POSTER = "https://placehold.co/200x300/101010/E0E0E0?text={text}"

# A BitTorrent v1 info hash is exactly 40 hex characters
INFO_HASH_PATTERN = re.compile(r"urn:btih:([0-9a-fA-F]{40})(?![0-9a-zA-Z])")

TOPIC_ID_PATTERN = re.compile(r"/topic/(\d+)(?:-|/|$|\?|&)")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as ISO 8601, assuming UTC for naive values."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp, returning None if missing or invalid."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sanitize_text(text: str) -> str:
    """Strip markup and script content from scraped text, collapsing whitespace."""
    if not text:
        return ""
    soup = BeautifulSoup(text, "lxml")
    for element in soup(["script", "style", "iframe", "object", "embed"]):
        element.decompose()
    cleaned = soup.get_text(" ")
    cleaned = cleaned.replace("<", "").replace(">", "")
    cleaned = re.sub(r"[\x00-\x08\x0b-\x1f\x7f]", "", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _hash_url(url: str) -> str:
    """Generate a SHA-256 hash of a URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def thread_id_from_url(url: str) -> str:
    """Stable thread identifier: the numeric topic id, else a hash of the URL."""
    match = TOPIC_ID_PATTERN.search(url)
    if match:
        return match.group(1)
    return _hash_url(url)[:16]


def extract_info_hash(magnet: str) -> str | None:
    """Return the 40-character BTIH from a magnet URI, or None."""
    if not magnet:
        return None
    match = INFO_HASH_PATTERN.search(magnet)
    return match.group(1) if match else None


def is_valid_magnet(magnet: str) -> bool:
    """Check that a URI is a magnet link carrying a valid info hash."""
    return bool(magnet) and magnet.lower().startswith("magnet:?") and (
        extract_info_hash(magnet) is not None
    )


def magnet_display_name(magnet: str) -> str | None:
    """Decode the ``dn`` (display name) parameter of a magnet URI."""
    try:
        query = urlsplit(magnet).query
    except ValueError:
        return None
    values = parse_qs(query).get("dn")
    if values and values[0].strip():
        return values[0].strip()
    return None


def placeholder_poster(title: str) -> str:
    """Generated placeholder image URL carrying the title text."""
    return PLACEHOLDER_POSTER.format(text=quote(title or "No Poster"))


def is_placeholder_poster(url: str) -> bool:
    return url.startswith(PLACEHOLDER_POSTER.split("?", 1)[0])
