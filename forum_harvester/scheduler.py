"""Crawl scheduling: page discovery, thread processing, revisits and timers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta

from .config import CrawlerSettings
from .discovery import build_page_url, discover_threads
from .extractor import extract_thread
from .fetcher import Fetcher, FetchError
from .models import ThreadTracking
from .store import CatalogStore, StoreError
from .trackers import TrackerList
from .utils import thread_id_from_url, utcnow
from .writer import CatalogWriter

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_REVISITED = "revisited"


class CrawlScheduler:
    """Drives the crawl pipeline under a global concurrency cap.

    Scheduling state (the running guard, the highest successful listing
    page and the tracker cache) lives on the instance so several schedulers
    can coexist in tests.

    Usage:
        scheduler = CrawlScheduler(settings, store, fetcher, trackers, writer)
        await scheduler.run_forever()
    """

    def __init__(
        self,
        settings: CrawlerSettings,
        store: CatalogStore,
        fetcher: Fetcher,
        trackers: TrackerList,
        writer: CatalogWriter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.fetcher = fetcher
        self.trackers = trackers
        self.writer = writer
        self._sleep = sleep

        self.is_running = False
        self.last_successful_page = 0
        self.revisit_threshold = timedelta(hours=settings.thread_revisit_hours)

    def needs_visit(self, tracking: ThreadTracking | None, now: datetime | None = None) -> bool:
        """True when a thread was never processed, has no usable timestamp, or is stale."""
        if tracking is None or tracking.processed_at is None:
            return True
        now = now or utcnow()
        return now - tracking.processed_at >= self.revisit_threshold

    async def process_thread(self, url: str, status: str = STATUS_PROCESSED) -> bool:
        """
        Fetch, extract and persist one thread.

        The tracking timestamp is written last, so a thread whose save failed
        stays due and is picked up again by the next revisit.

        Returns:
            True if the thread was saved
        """
        try:
            html = await self.fetcher.fetch(url)
            extracted = extract_thread(html, url)
            if extracted is None:
                await self.store.record_failure(
                    "ERROR", f"Failed to extract title from thread: {url}", url=url
                )
                return False

            for magnet in extracted.rejected_magnets:
                await self.store.record_failure(
                    "WARNING", "Invalid magnet URI", url=url, error=magnet[:200]
                )

            await self.writer.save(extracted)

            thread = extracted.thread
            thread.processed_at = utcnow()
            await self.store.put_thread(ThreadTracking.from_thread(thread, status))
            return True
        except FetchError as e:
            # The fetcher has already recorded the failure event
            logger.error(f"Skipping thread {url}: {e}")
        except StoreError as e:
            logger.error(f"Store error while processing thread {url}: {e}")
            await self.store.record_failure(
                "ERROR", f"Failed to persist thread: {url}", url=url, error=str(e)
            )
        except Exception as e:
            logger.exception(f"Unexpected error while processing thread {url}")
            await self.store.record_failure(
                "ERROR", f"Error processing thread: {url}", url=url, error=repr(e)
            )
        return False

    async def process_batch(self, urls: Iterable[str], status: str = STATUS_PROCESSED) -> int:
        """Process threads in batches of at most ``max_concurrency``; returns the saved count."""
        pending = list(urls)
        limit = self.settings.max_concurrency
        saved = 0
        for start in range(0, len(pending), limit):
            batch = pending[start : start + limit]
            logger.debug(f"Processing batch of {len(batch)} threads")
            results = await asyncio.gather(*(self.process_thread(url, status) for url in batch))
            saved += sum(1 for ok in results if ok)
        return saved

    async def _due_threads(self, urls: Iterable[str]) -> list[str]:
        now = utcnow()
        due = []
        for url in sorted(urls):
            try:
                tracking = await self.store.get_thread(thread_id_from_url(url))
            except StoreError as e:
                logger.warning(f"Could not read tracking for {url}, treating as due: {e}")
                tracking = None
            if self.needs_visit(tracking, now):
                due.append(url)
            else:
                logger.debug(f"Skipping recently processed thread {url}")
        return due

    async def crawl_page(self, page: int) -> set[str]:
        """Fetch one listing page and return the thread URLs on it."""
        url = build_page_url(self.settings.forum_url, page)
        logger.info(f"Crawling forum page {page}: {url}")
        html = await self.fetcher.fetch(url)
        threads = discover_threads(html, url)
        logger.info(f"Found {len(threads)} threads on page {page}")
        return threads

    async def crawl_new_pages(self) -> int:
        """
        Walk listing pages from page 1, processing due threads on each.

        Stops at the configured page cap (0 means no cap), at a page that
        cannot be fetched, or at the first page without threads.

        Returns:
            Number of threads saved
        """
        max_pages = self.settings.initial_pages
        page = 1
        saved = 0
        while max_pages == 0 or page <= max_pages:
            try:
                threads = await self.crawl_page(page)
            except FetchError as e:
                logger.error(f"Stopping page discovery at page {page}: {e}")
                break
            if not threads:
                logger.warning(f"No threads found on page {page}; stopping page discovery")
                break

            self.last_successful_page = max(self.last_successful_page, page)
            due = await self._due_threads(threads)
            logger.info(f"Page {page}: {len(due)} of {len(threads)} threads due for processing")
            saved += await self.process_batch(due, STATUS_PROCESSED)
            page += 1
        return saved

    async def revisit_threads(self) -> int:
        """Reprocess every known thread whose tracking record is stale or incomplete."""
        now = utcnow()
        due = []
        for tracking in await self.store.list_threads():
            if not self.needs_visit(tracking, now):
                continue
            if not tracking.url:
                logger.warning(f"Thread {tracking.thread_id} has no URL; cannot revisit")
                continue
            due.append(tracking.url)

        logger.info(f"Revisiting {len(due)} threads")
        return await self.process_batch(due, STATUS_REVISITED)

    async def refresh_trackers(self, force: bool = False) -> bool:
        return await self.trackers.refresh(self.fetcher, force=force)

    async def _guarded(self, name: str, job: Callable[[], Awaitable[int]]) -> int | None:
        if self.is_running:
            logger.warning(f"A crawl is already running; skipping {name}")
            return None
        self.is_running = True
        try:
            return await job()
        finally:
            self.is_running = False

    async def run_cycle(self) -> int | None:
        """Guarded new-page discovery run."""
        return await self._guarded("page discovery", self.crawl_new_pages)

    async def run_revisit(self) -> int | None:
        """Guarded revisit run."""
        return await self._guarded("thread revisit", self.revisit_threads)

    async def run_startup(self) -> None:
        """Tracker refresh, new-page discovery and revisit, in sequence."""
        await self.refresh_trackers()

        async def startup() -> int:
            saved = await self.crawl_new_pages()
            saved += await self.revisit_threads()
            return saved

        saved = await self._guarded("startup crawl", startup)
        logger.info(f"Startup crawl finished: {saved or 0} threads saved")

    async def _every(self, name: str, seconds: float, job: Callable[[], Awaitable]) -> None:
        """Run ``job`` every ``seconds``; a failed run never stops later ones."""
        while True:
            await self._sleep(seconds)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Scheduled {name} run failed")
                await self.store.record_failure(
                    "ERROR", f"Scheduled {name} run failed", error=repr(e)
                )

    async def run_forever(self) -> None:
        """Run the startup crawl, then the three recurring timers until cancelled."""
        try:
            await self.run_startup()
        except Exception as e:
            logger.exception("Startup crawl failed")
            await self.store.record_failure("ERROR", "Startup crawl failed", error=repr(e))

        await asyncio.gather(
            self._every("page discovery", self.settings.crawl_interval, self.run_cycle),
            self._every(
                "thread revisit", self.settings.revisit_interval_hours * 3600, self.run_revisit
            ),
            self._every(
                "tracker refresh",
                self.settings.tracker_update_interval_hours * 3600,
                lambda: self.refresh_trackers(force=True),
            ),
        )
