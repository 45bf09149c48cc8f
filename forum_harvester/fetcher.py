"""Polite HTTP fetching with User-Agent rotation and exponential backoff."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

from .utils import USER_AGENTS

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3
DEFAULT_DELAY = 0.25
DEFAULT_TIMEOUT = 30.0

FailureRecorder = Callable[..., Awaitable[None]]


class FetchError(Exception):
    """Raised when a URL could not be fetched within the retry budget."""

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {reason}")
        self.url = url
        self.attempts = attempts
        self.reason = reason


def backoff_delays(retries: int = DEFAULT_RETRIES) -> list[float]:
    """Seconds to wait before each retry: 1, 2, 4, ... (``2 ** attempt``)."""
    return [float(2**attempt) for attempt in range(retries)]


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 400


class Fetcher:
    """Async HTTP fetcher used for forum pages and the tracker list.

    Every request waits ``delay`` seconds first, picks a random User-Agent and
    follows redirects. Network errors and 4xx/5xx responses are retried with
    exponential backoff; when the budget is spent a failure event is handed
    to ``recorder`` and FetchError is raised.

    Usage:
        async with Fetcher() as fetcher:
            html = await fetcher.fetch("https://forum.example/topic/1-show/")
    """

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        delay: float = DEFAULT_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        recorder: FailureRecorder | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the fetcher.

        Args:
            retries: Retries after the first attempt.
            delay: Courtesy delay before every request, in seconds.
            timeout: Per-attempt transport timeout, in seconds.
            recorder: Coroutine receiving failure events (level, message, url, error).
            sleep: Sleep coroutine, replaceable in tests.
        """
        self._retries = retries
        self._delay = delay
        self._timeout = timeout
        self._recorder = recorder
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "Fetcher":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
            headers={"Accept-Encoding": "gzip, deflate"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("Fetcher not initialized. Use as async context manager.")
        headers = {"User-Agent": random.choice(USER_AGENTS)}
        return await self._client.get(url, headers=headers)

    async def fetch(self, url: str) -> str:
        """Fetch a URL and return its body text.

        Raises:
            FetchError: If every attempt failed.
        """
        delays = backoff_delays(self._retries)
        attempts = 0
        reason = "no attempt made"

        while True:
            attempts += 1
            await self._sleep(self._delay)
            try:
                response = await self._get(url)
                if _is_success(response.status_code):
                    if response.history:
                        logger.warning(f"Redirect detected from {url} to {response.url}")
                    return response.text
                reason = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                reason = f"{type(e).__name__}: {e}"

            logger.warning(f"Error fetching {url} (attempt {attempts}): {reason}")
            if attempts > len(delays):
                break
            wait = delays[attempts - 1]
            logger.info(f"Retrying {url} in {wait:.0f}s ({len(delays) - attempts + 1} left)")
            await self._sleep(wait)

        logger.error(f"Failed to fetch {url} after {attempts} attempts")
        if self._recorder is not None:
            await self._recorder("ERROR", f"Failed to fetch URL: {url}", url=url, error=reason)
        raise FetchError(url, attempts, reason)
