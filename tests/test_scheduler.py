"""Tests for forum_harvester.scheduler with mocked HTTP and fakeredis."""

import asyncio
from datetime import timedelta

import httpx
import pytest

from forum_harvester.fetcher import Fetcher
from forum_harvester.models import ThreadTracking
from forum_harvester.scheduler import STATUS_PROCESSED, STATUS_REVISITED, CrawlScheduler
from forum_harvester.store import StoreError
from forum_harvester.trackers import TrackerList
from forum_harvester.utils import utcnow
from forum_harvester.writer import CatalogWriter

from conftest import FORUM_URL, THREAD_URL, TRACKERS_URL, no_sleep

COOKU_URL = "https://forum.example/forums/topic/133070-cooku-with-comali-2025-s06e01/"
PAGE_2_URL = f"{FORUM_URL}page/2/"
PAGE_3_URL = f"{FORUM_URL}page/3/"


def make_scheduler(settings, store, fetcher, writer=None, sleep=no_sleep):
    trackers = TrackerList(settings.trackers_url, settings.tracker_update_interval_hours)
    writer = writer or CatalogWriter(store, trackers)
    return CrawlScheduler(settings, store, fetcher, trackers, writer, sleep=sleep)


def make_fetcher(store, retries=1):
    return Fetcher(retries=retries, delay=0.0, recorder=store.record_failure, sleep=no_sleep)


class FailingWriter:
    """Writer whose every save hits a store outage."""

    async def save(self, extracted):
        raise StoreError("put_group failed: connection refused")


class TestNeedsVisit:
    """Tests for the revisit threshold."""

    def test_missing_record(self, settings, store):
        scheduler = make_scheduler(settings, store, fetcher=None)

        assert scheduler.needs_visit(None) is True

    @pytest.mark.parametrize("hours", [0.0, 24.0, 10_000.0])
    def test_missing_timestamp_always_due(self, settings, store, hours):
        settings.thread_revisit_hours = hours
        scheduler = make_scheduler(settings, store, fetcher=None)

        assert scheduler.needs_visit(ThreadTracking(thread_id="1", url=THREAD_URL)) is True

    def test_recent_thread_not_due(self, settings, store):
        scheduler = make_scheduler(settings, store, fetcher=None)
        tracking = ThreadTracking(thread_id="1", url=THREAD_URL, processed_at=utcnow())

        assert scheduler.needs_visit(tracking) is False

    def test_stale_thread_due(self, settings, store):
        scheduler = make_scheduler(settings, store, fetcher=None)
        tracking = ThreadTracking(
            thread_id="1", url=THREAD_URL, processed_at=utcnow() - timedelta(hours=25)
        )

        assert scheduler.needs_visit(tracking) is True


class TestProcessThread:
    """Tests for single-thread processing."""

    @pytest.mark.asyncio
    async def test_saves_thread_and_tracking(self, settings, store, respx_mock, thread_page_html):
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            saved = await scheduler.process_thread(THREAD_URL)

        tracking = await store.get_thread("133067")
        assert saved is True
        assert tracking.status == STATUS_PROCESSED
        assert tracking.processed_at is not None
        assert tracking.url == THREAD_URL
        assert (await store.counts())["releases"] == 2

    @pytest.mark.asyncio
    async def test_rejected_magnets_recorded(self, settings, store, respx_mock, thread_page_html):
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))

        async with make_fetcher(store) as fetcher:
            await make_scheduler(settings, store, fetcher).process_thread(THREAD_URL)

        failures = await store.recent_failures()
        assert [event["message"] for event in failures] == ["Invalid magnet URI"]
        assert failures[0]["url"] == THREAD_URL

    @pytest.mark.asyncio
    async def test_fetch_failure_is_not_fatal(self, settings, store, respx_mock):
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(500))

        async with make_fetcher(store) as fetcher:
            saved = await make_scheduler(settings, store, fetcher).process_thread(THREAD_URL)

        assert saved is False
        assert await store.get_thread("133067") is None
        assert (await store.recent_failures())[0]["message"] == f"Failed to fetch URL: {THREAD_URL}"

    @pytest.mark.asyncio
    async def test_untitled_thread_recorded(self, settings, store, respx_mock, untitled_thread_page_html):
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=untitled_thread_page_html))

        async with make_fetcher(store) as fetcher:
            saved = await make_scheduler(settings, store, fetcher).process_thread(THREAD_URL)

        assert saved is False
        assert "Failed to extract title" in (await store.recent_failures())[0]["message"]

    @pytest.mark.asyncio
    async def test_store_failure_leaves_timestamp_unchanged(
        self, settings, store, respx_mock, thread_page_html
    ):
        """Test a failed save does not advance tracking, so the thread stays due."""
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher, writer=FailingWriter())
            saved = await scheduler.process_thread(THREAD_URL)

        assert saved is False
        assert await store.get_thread("133067") is None
        messages = [event["message"] for event in await store.recent_failures()]
        assert f"Failed to persist thread: {THREAD_URL}" in messages


class TestProcessBatch:
    """Tests for concurrency-bounded batches."""

    @pytest.mark.asyncio
    async def test_batches_respect_max_concurrency(self, settings, store):
        settings.max_concurrency = 2
        scheduler = make_scheduler(settings, store, fetcher=None)
        in_flight = 0
        peak = 0
        seen = []

        async def fake_process(url, status):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            seen.append(url)
            in_flight -= 1
            return True

        scheduler.process_thread = fake_process
        urls = [f"https://forum.example/forums/topic/{i}-t/" for i in range(5)]

        saved = await scheduler.process_batch(urls)

        assert saved == 5
        assert peak == 2
        assert sorted(seen) == sorted(urls)


class TestCrawlNewPages:
    """Tests for new-page discovery."""

    @pytest.mark.asyncio
    async def test_empty_page_stops_discovery(
        self,
        settings,
        store,
        respx_mock,
        forum_page_html,
        empty_forum_page_html,
        thread_page_html,
        fallback_thread_page_html,
    ):
        settings.initial_pages = 5
        respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(200, text=forum_page_html))
        respx_mock.get(PAGE_2_URL).mock(return_value=httpx.Response(200, text=empty_forum_page_html))
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))
        respx_mock.get(COOKU_URL).mock(return_value=httpx.Response(200, text=fallback_thread_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            saved = await scheduler.crawl_new_pages()

        assert saved == 2
        assert scheduler.last_successful_page == 1
        assert (await store.counts())["groups"] == 2

    @pytest.mark.asyncio
    async def test_empty_first_page_keeps_previous_page(self, settings, store, respx_mock, empty_forum_page_html):
        respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(200, text=empty_forum_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            scheduler.last_successful_page = 3
            saved = await scheduler.crawl_new_pages()

        assert saved == 0
        assert scheduler.last_successful_page == 3

    @pytest.mark.asyncio
    async def test_page_cap(self, settings, store, respx_mock, forum_page_html, thread_page_html, fallback_thread_page_html):
        settings.initial_pages = 1
        listing = respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(200, text=forum_page_html))
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))
        respx_mock.get(COOKU_URL).mock(return_value=httpx.Response(200, text=fallback_thread_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            await scheduler.crawl_new_pages()

        assert listing.call_count == 1
        assert scheduler.last_successful_page == 1

    @pytest.mark.asyncio
    async def test_unbounded_pages_until_empty(
        self,
        settings,
        store,
        respx_mock,
        forum_page_html,
        empty_forum_page_html,
        thread_page_html,
        fallback_thread_page_html,
    ):
        settings.initial_pages = 0
        respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(200, text=forum_page_html))
        respx_mock.get(PAGE_2_URL).mock(return_value=httpx.Response(200, text=forum_page_html))
        respx_mock.get(PAGE_3_URL).mock(return_value=httpx.Response(200, text=empty_forum_page_html))
        thread_route = respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))
        respx_mock.get(COOKU_URL).mock(return_value=httpx.Response(200, text=fallback_thread_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            saved = await scheduler.crawl_new_pages()

        assert scheduler.last_successful_page == 2
        # Threads seen on page 1 are fresh by the time page 2 lists them again
        assert thread_route.call_count == 1
        assert saved == 2

    @pytest.mark.asyncio
    @pytest.mark.respx(assert_all_called=False)
    async def test_recently_processed_threads_skipped(
        self, settings, store, respx_mock, forum_page_html, empty_forum_page_html, thread_page_html, fallback_thread_page_html
    ):
        await store.put_thread(ThreadTracking(thread_id="133067", url=THREAD_URL, processed_at=utcnow()))
        respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(200, text=forum_page_html))
        respx_mock.get(PAGE_2_URL).mock(return_value=httpx.Response(200, text=empty_forum_page_html))
        mercy = respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))
        cooku = respx_mock.get(COOKU_URL).mock(return_value=httpx.Response(200, text=fallback_thread_page_html))

        async with make_fetcher(store) as fetcher:
            saved = await make_scheduler(settings, store, fetcher).crawl_new_pages()

        assert saved == 1
        assert mercy.call_count == 0
        assert cooku.call_count == 1

    @pytest.mark.asyncio
    async def test_listing_fetch_failure_stops_discovery(self, settings, store, respx_mock):
        respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(503))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            saved = await scheduler.crawl_new_pages()

        assert saved == 0
        assert scheduler.last_successful_page == 0


class TestRevisitThreads:
    """Tests for the revisit loop."""

    @pytest.mark.asyncio
    @pytest.mark.respx(assert_all_called=False)
    async def test_record_without_timestamp_is_revisited(self, settings, store, respx_mock, thread_page_html):
        settings.thread_revisit_hours = 10_000.0
        await store._redis.hset("thread:133067", mapping={"threadId": "133067", "url": THREAD_URL})
        fresh_url = "https://forum.example/forums/topic/2-fresh/"
        await store.put_thread(ThreadTracking(thread_id="2", url=fresh_url, processed_at=utcnow()))
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))
        fresh = respx_mock.get(fresh_url).mock(return_value=httpx.Response(200, text=thread_page_html))

        async with make_fetcher(store) as fetcher:
            saved = await make_scheduler(settings, store, fetcher).revisit_threads()

        tracking = await store.get_thread("133067")
        assert saved == 1
        assert fresh.call_count == 0
        assert tracking.status == STATUS_REVISITED
        assert tracking.processed_at is not None

    @pytest.mark.asyncio
    async def test_record_without_url_is_skipped(self, settings, store):
        await store._redis.hset("thread:9", mapping={"status": "processed"})

        saved = await make_scheduler(settings, store, fetcher=None).revisit_threads()

        assert saved == 0


class TestGuardAndTimers:
    """Tests for the running guard, startup and recurring timers."""

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(self, settings, store):
        scheduler = make_scheduler(settings, store, fetcher=None)
        scheduler.is_running = True

        assert await scheduler.run_cycle() is None
        assert await scheduler.run_revisit() is None

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, settings, store):
        scheduler = make_scheduler(settings, store, fetcher=None)

        async def boom():
            raise RuntimeError("boom")

        scheduler.crawl_new_pages = boom

        with pytest.raises(RuntimeError):
            await scheduler.run_cycle()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_timer_survives_failed_run(self, settings, store):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) > 3:
                raise asyncio.CancelledError

        scheduler = make_scheduler(settings, store, fetcher=None, sleep=sleep)
        runs = []

        async def job():
            runs.append(len(runs))
            if len(runs) == 1:
                raise RuntimeError("first run fails")

        with pytest.raises(asyncio.CancelledError):
            await scheduler._every("test job", 60, job)

        assert runs == [0, 1, 2]
        assert sleeps == [60, 60, 60, 60]
        assert (await store.recent_failures())[0]["message"] == "Scheduled test job run failed"

    @pytest.mark.asyncio
    async def test_run_startup(
        self,
        settings,
        store,
        respx_mock,
        tracker_list_text,
        forum_page_html,
        empty_forum_page_html,
        thread_page_html,
        fallback_thread_page_html,
    ):
        respx_mock.get(TRACKERS_URL).mock(return_value=httpx.Response(200, text=tracker_list_text))
        respx_mock.get(FORUM_URL).mock(return_value=httpx.Response(200, text=forum_page_html))
        respx_mock.get(PAGE_2_URL).mock(return_value=httpx.Response(200, text=empty_forum_page_html))
        respx_mock.get(THREAD_URL).mock(return_value=httpx.Response(200, text=thread_page_html))
        respx_mock.get(COOKU_URL).mock(return_value=httpx.Response(200, text=fallback_thread_page_html))

        async with make_fetcher(store) as fetcher:
            scheduler = make_scheduler(settings, store, fetcher)
            await scheduler.run_startup()

        assert scheduler.is_running is False
        assert len(scheduler.trackers.trackers) == 3
        records = await store.releases_for_group("cooku-with-comali-2025-s06")
        assert len(records) == 1
        assert len(records[0].sources) == 3
