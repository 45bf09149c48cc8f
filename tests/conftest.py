"""Shared pytest fixtures for forum-harvester tests."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import fakeredis
import pytest

from forum_harvester.config import CrawlerSettings
from forum_harvester.models import (
    ExtractedThread,
    ReleaseLink,
    ReleaseThread,
    ShowGroup,
)
from forum_harvester.store import CatalogStore

FORUM_URL = "https://forum.example/forums/forum/63-tamil-new-web-series-tv-shows/"
THREAD_URL = "https://forum.example/forums/topic/133067-mercy-for-none-2025-s01/"
TRACKERS_URL = "https://trackers.example/trackers_all.txt"

HASH_A = "0123456789abcdef0123456789abcdef01234567"
HASH_B = "FEDCBA9876543210FEDCBA9876543210FEDCBA98"
HASH_C = "1111111111222222222233333333334444444444"

POSTED_AT = datetime(2025, 6, 1, 10, 30, tzinfo=timezone.utc)


# ============================================================================
# Factory Fixtures - Create test data on demand
# ============================================================================


@pytest.fixture
def thread_factory():
    """Factory for creating test ReleaseThread objects."""

    def _create(
        thread_id: str = "133067",
        raw_title: str = "Mercy For None (2025) S01 EP(01-07) [Tamil + Telugu] - 1080p - x264 - AAC",
        poster_url: str = "https://img.example/poster.jpg",
        posted_at: datetime = POSTED_AT,
        source_url: str = THREAD_URL,
    ) -> ReleaseThread:
        return ReleaseThread(
            thread_id=thread_id,
            raw_title=raw_title,
            poster_url=poster_url,
            posted_at=posted_at,
            source_url=source_url,
        )

    return _create


@pytest.fixture
def link_factory():
    """Factory for creating test ReleaseLink objects."""

    def _create(
        name: str = "Mercy For None (2025) S01 EP(01-07) 1080p HQ HDRip - x264 - [Tam + Tel] - 7.2GB.mkv",
        info_hash: str = HASH_A,
        magnet: str | None = None,
    ) -> ReleaseLink:
        if magnet is None:
            magnet = f"magnet:?xt=urn:btih:{info_hash}&dn=release"
        return ReleaseLink(magnet=magnet, name=name, info_hash=info_hash)

    return _create


@pytest.fixture
def extracted_factory(thread_factory, link_factory):
    """Factory for creating ExtractedThread objects with two releases by default."""

    def _create(thread: ReleaseThread | None = None, releases=None) -> ExtractedThread:
        if releases is None:
            releases = [
                link_factory(),
                link_factory(
                    name="Mercy For None (2025) S01 EP(01-07) 720p HQ HDRip - x264 - [Tam + Tel] - 3.5GB.mkv",
                    info_hash=HASH_B,
                ),
            ]
        return ExtractedThread(thread=thread or thread_factory(), releases=releases)

    return _create


@pytest.fixture
def group_factory():
    """Factory for creating test ShowGroup objects."""

    def _create(
        group_id: str = "mercy-for-none-2025-s01",
        display_title: str = "Mercy For None (2025) S01",
        base_title: str = "Mercy For None",
        poster_url: str = "https://img.example/poster.jpg",
        last_updated: datetime = POSTED_AT,
        source_thread_id: str = "133067",
        year: int | None = 2025,
        languages: set[str] | None = None,
        seasons: set[int] | None = None,
    ) -> ShowGroup:
        return ShowGroup(
            group_id=group_id,
            display_title=display_title,
            base_title=base_title,
            poster_url=poster_url,
            last_updated=last_updated,
            source_thread_id=source_thread_id,
            year=year,
            languages={"ta"} if languages is None else languages,
            seasons={1} if seasons is None else seasons,
        )

    return _create


# ============================================================================
# Settings and Store Fixtures
# ============================================================================


@pytest.fixture
def settings():
    """Crawler settings pointing at the mocked forum."""
    return CrawlerSettings(
        forum_url=FORUM_URL,
        initial_pages=2,
        max_concurrency=2,
        trackers_url=TRACKERS_URL,
        request_delay=0.0,
        max_retries=1,
    )


@pytest.fixture
def redis_server():
    """In-memory Redis server shared by every client created in a test."""
    return fakeredis.FakeServer()


@pytest.fixture
def store(redis_server):
    """CatalogStore backed by fakeredis."""
    return CatalogStore(fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True))


async def no_sleep(seconds: float) -> None:
    """Sleep replacement that returns immediately."""
    return None


# ============================================================================
# HTML Mock Data - IPS forum page fixtures
# ============================================================================


@pytest.fixture
def forum_page_html():
    """Forum listing page with two topics, a duplicate link and a profile link."""
    return """
    <!DOCTYPE html>
    <html>
    <body>
        <ol class="ipsDataList">
            <li class="ipsDataItem">
                <h4 class="ipsDataItem_title">
                    <a href="https://forum.example/forums/topic/133067-mercy-for-none-2025-s01/"
                       data-ipshover>Mercy For None (2025) S01 EP(01-07)</a>
                </h4>
                <a href="https://forum.example/profile/42-uploader/" data-ipshover>uploader</a>
            </li>
            <li class="ipsDataItem">
                <h4 class="ipsDataItem_title">
                    <a href="/forums/topic/133070-cooku-with-comali-2025-s06e01/"
                       data-ipshover>Cooku With Comali (2025) S06E01</a>
                </h4>
                <a href="https://forum.example/forums/topic/133067-mercy-for-none-2025-s01/"
                   data-ipshover>Mercy For None (2025) S01 EP(01-07)</a>
            </li>
            <li>
                <a href="https://forum.example/forums/topic/999-no-hover-card/">Pinned</a>
            </li>
        </ol>
    </body>
    </html>
    """


@pytest.fixture
def empty_forum_page_html():
    """Forum listing page without any topics."""
    return """
    <!DOCTYPE html>
    <html>
    <body>
        <p>There are no topics in this forum yet.</p>
    </body>
    </html>
    """


@pytest.fixture
def thread_page_html():
    """Thread page with two attachment-titled magnets and one broken magnet."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <title>Mercy For None (2025) S01 EP(01-07) - Tamil Web Series</title>
        <meta property="og:title" content="Mercy For None (2025) S01 EP(01-07)" />
        <meta property="og:image" content="https://img.example/og.jpg" />
    </head>
    <body>
        <h1 class="ipsType_pageTitle">
            <span class="ipsType_break ipsContained">Mercy For None (2025) S01 EP(01-07) [Tamil + Telugu] - 1080p - x264 - AAC</span>
        </h1>
        <div class="ipsType_normal">
            <span class="ipsType_light"><time datetime="2025-06-01T10:30:00Z">June 1, 2025</time></span>
        </div>
        <div class="ipsType_normal ipsType_richText ipsContained" data-role="commentContent">
            <p><img class="ipsImage" src="https://img.example/poster.jpg" alt="poster"></p>
            <p>
                <a class="ipsAttachLink ipsAttachLink_block" href="https://forum.example/attachment.php?id=1">
                    <span class="ipsAttachLink_title">Mercy For None (2025) S01 EP(01-07) 1080p HQ HDRip - x264 - [Tam + Tel] - 7.2GB.mkv.torrent</span>
                </a>
                <a class="magnet-plugin" href="magnet:?xt=urn:btih:{HASH_A}&amp;dn=ignored.name">MAGNET</a>
            </p>
            <p>
                <a class="ipsAttachLink ipsAttachLink_block" href="https://forum.example/attachment.php?id=2">
                    <span class="ipsAttachLink_title">Mercy For None (2025) S01 EP(01-07) 720p HQ HDRip - x264 - [Tam + Tel] - 3.5GB.mkv.torrent</span>
                </a>
                <a class="magnet-plugin" href="magnet:?xt=urn:btih:{HASH_B}">MAGNET</a>
            </p>
            <p><a href="magnet:?dn=missing.hash">Broken magnet</a></p>
        </div>
    </body>
    </html>
    """


@pytest.fixture
def fallback_thread_page_html():
    """Thread page missing the title span, poster image and post time."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta property="og:title" content="Cooku With Comali (2025) S06E01 [Tamil - 1080p - x264 - AAC - 7GB]" />
        <meta property="og:image" content="https://img.example/og-cooku.jpg" />
    </head>
    <body>
        <div class="ipsType_normal ipsType_richText">
            <p><img class="ipsImage" src="https://forum.example/uploads/set_resources_1/spacer.png"></p>
            <p><a href="magnet:?xt=urn:btih:{HASH_C}&amp;dn=Cooku.With.Comali.S06E01.1080p.mkv">Download</a></p>
        </div>
    </body>
    </html>
    """


@pytest.fixture
def untitled_thread_page_html():
    """Thread page with no recoverable title."""
    return """
    <!DOCTYPE html>
    <html>
    <body>
        <div class="ipsType_normal ipsType_richText"><p>Nothing to see here.</p></div>
    </body>
    </html>
    """


@pytest.fixture
def tracker_list_text():
    """Tracker list document with comments and blank lines."""
    return (
        "# Public trackers\n"
        "udp://tracker.opentrackr.org:1337/announce\n"
        "\n"
        "udp://open.stealth.si:80/announce\n"
        "udp://tracker.opentrackr.org:1337/announce\n"
        "   \n"
        "https://tracker.gbitt.info:443/announce\n"
    )


# ============================================================================
# Console Mocking
# ============================================================================


@pytest.fixture
def mock_console(monkeypatch):
    """Mock Rich console to suppress output in tests."""
    from forum_harvester import cli, utils

    mock = MagicMock()
    monkeypatch.setattr(utils, "console", mock)
    monkeypatch.setattr(cli, "console", mock)
    return mock
