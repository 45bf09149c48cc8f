"""Thread page extraction: title, poster, post time and magnet releases."""

import logging
from datetime import datetime

from bs4 import BeautifulSoup, Tag

from .models import ExtractedThread, ReleaseLink, ReleaseThread
from .utils import (
    extract_info_hash,
    is_valid_magnet,
    magnet_display_name,
    parse_timestamp,
    placeholder_poster,
    sanitize_text,
    thread_id_from_url,
    utcnow,
)

logger = logging.getLogger(__name__)

TITLE_SELECTOR = "span.ipsType_break.ipsContained"
POST_BODY_SELECTOR = "div.ipsType_normal.ipsType_richText"
POSTER_SELECTOR = "img.ipsImage"
POSTED_AT_SELECTORS = ["span.ipsType_light time[datetime]", "time[datetime]"]
ATTACHMENT_TITLE_CLASS = "ipsAttachLink_title"

UNKNOWN_RELEASE_NAME = "Unknown Release"

# Forum theme assets that show up as the "first image" but are not posters
BROKEN_POSTER_MARKERS = (
    "spacer.png",
    "blank.gif",
    "pixel.gif",
    "/set_resources_",
    "emoticons/",
)


def _meta_content(soup: BeautifulSoup, prop: str) -> str:
    meta = soup.find("meta", attrs={"property": prop})
    return meta.get("content", "").strip() if meta else ""


def extract_title(soup: BeautifulSoup, url: str) -> str | None:
    """Thread title from the page heading, falling back to og:title and <title>."""
    element = soup.select_one(TITLE_SELECTOR)
    title = sanitize_text(element.decode_contents()) if element else ""
    if not title:
        logger.warning(f"Could not find primary title element for {url}. Trying fallback.")
        title = sanitize_text(_meta_content(soup, "og:title"))
        if not title and soup.title:
            title = sanitize_text(soup.title.get_text(" ", strip=True))
    return title or None


def _usable_poster(src: str) -> bool:
    return bool(src) and not any(marker in src for marker in BROKEN_POSTER_MARKERS)


def extract_poster(soup: BeautifulSoup, body: Tag, title: str, url: str) -> str:
    """Poster URL: first post image, then og:image, then a generated placeholder."""
    image = body.select_one(POSTER_SELECTOR)
    if image is not None:
        src = (image.get("src") or image.get("data-src") or "").strip()
        if _usable_poster(src):
            return src

    og_image = _meta_content(soup, "og:image")
    if _usable_poster(og_image):
        return og_image

    logger.warning(f"No specific poster URL found for {url}. Using placeholder.")
    return placeholder_poster(title)


def extract_posted_at(soup: BeautifulSoup, url: str) -> datetime:
    """Original post time from the machine-readable ``datetime`` attribute."""
    for selector in POSTED_AT_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        posted_at = parse_timestamp(element.get("datetime"))
        if posted_at is not None:
            return posted_at
        break
    logger.warning(f"Could not parse valid thread started time for {url}. Using current time.")
    return utcnow()


def _link_text(link: Tag) -> str:
    return sanitize_text(link.get_text(" ", strip=True) or link.get("title", ""))


def extract_releases(body: Tag, url: str) -> tuple[list[ReleaseLink], list[str]]:
    """
    Collect magnet releases from a post body in document order.

    Each magnet is named by the closest attachment title before it that no
    earlier magnet has claimed, else its ``dn`` parameter, else its link
    text, else a generic placeholder.

    Returns:
        Tuple of (valid releases, rejected magnet URIs)
    """
    releases: list[ReleaseLink] = []
    rejected: list[str] = []
    seen_hashes: set[str] = set()
    pending_title: str | None = None

    for element in body.find_all(True):
        classes = element.get("class") or []
        if element.name == "span" and ATTACHMENT_TITLE_CLASS in classes:
            pending_title = sanitize_text(element.get_text(" ", strip=True)) or None
            continue

        href = (element.get("href") or "").strip() if element.name == "a" else ""
        if not href.lower().startswith("magnet:"):
            continue

        name = (
            pending_title
            or magnet_display_name(href)
            or _link_text(element)
            or UNKNOWN_RELEASE_NAME
        )
        pending_title = None

        if not is_valid_magnet(href):
            logger.warning(f"Invalid magnet URI for {name!r} in thread {url}: {href[:80]}")
            rejected.append(href)
            continue

        info_hash = extract_info_hash(href)
        if info_hash.lower() in seen_hashes:
            continue
        seen_hashes.add(info_hash.lower())
        releases.append(ReleaseLink(magnet=href, name=sanitize_text(name), info_hash=info_hash))

    return releases, rejected


def extract_thread(html: str, url: str) -> ExtractedThread | None:
    """
    Parse a thread page into a ReleaseThread and its releases.

    Args:
        html: Thread page HTML
        url: Thread URL (source of the thread id)

    Returns:
        ExtractedThread, or None when no title could be found
    """
    soup = BeautifulSoup(html, "lxml")

    title = extract_title(soup, url)
    if title is None:
        logger.error(f"Failed to extract title from {url} using fallbacks.")
        return None

    body = soup.select_one(POST_BODY_SELECTOR) or soup
    releases, rejected = extract_releases(body, url)

    thread = ReleaseThread(
        thread_id=thread_id_from_url(url),
        raw_title=title,
        poster_url=extract_poster(soup, body, title, url),
        posted_at=extract_posted_at(soup, url),
        source_url=url,
    )

    logger.info(f"Processed thread {url}: Title={title!r}, Magnets: {len(releases)}")
    return ExtractedThread(thread=thread, releases=releases, rejected_magnets=rejected)
