"""Redis-backed catalog store for groups, releases and thread tracking."""

import functools
import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from .models import ReleaseRecord, ShowGroup, ThreadTracking
from .utils import format_timestamp, utcnow

logger = logging.getLogger(__name__)

GROUP_PREFIX = "group:"
RELEASE_PREFIX = "release:"
THREAD_PREFIX = "thread:"
CATALOG_KEY = "catalog"
ERROR_QUEUE_KEY = "error_queue"

# Keep only the most recent failure events
ERROR_QUEUE_LIMIT = 1000


class StoreError(Exception):
    """Raised when the underlying Redis store rejects an operation."""


def _group_key(group_id: str) -> str:
    return f"{GROUP_PREFIX}{group_id}"


def _group_releases_key(group_id: str) -> str:
    return f"{GROUP_PREFIX}{group_id}:releases"


def _release_key(stream_id: str) -> str:
    return f"{RELEASE_PREFIX}{stream_id}"


def _thread_key(thread_id: str) -> str:
    return f"{THREAD_PREFIX}{thread_id}"


def _translate_errors(func):
    """Re-raise Redis failures as StoreError."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            raise StoreError(f"{func.__name__} failed: {e}") from e

    return wrapper


class CatalogStore:
    """Catalog persistence over a Redis hash-per-record layout.

    Keys:
        group:{groupId}            hash, one ShowGroup
        group:{groupId}:releases   sorted set of stream ids by discovery time
        release:{streamId}         hash, one ReleaseRecord
        thread:{threadId}          hash, thread tracking record
        catalog                    sorted set of group ids by lastUpdated
        error_queue                list of JSON failure events, newest first

    Usage:
        store = CatalogStore.from_url("redis://localhost:6379")
        group = await store.get_group("mercy-for-none-2025-s01")
        await store.close()
    """

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "CatalogStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
            retry_on_timeout=True,
        )
        return cls(client)

    async def close(self) -> None:
        await self._redis.aclose()

    @_translate_errors
    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    @_translate_errors
    async def get_group(self, group_id: str) -> ShowGroup | None:
        data = await self._redis.hgetall(_group_key(group_id))
        if not data or "groupId" not in data:
            return None
        return ShowGroup.from_mapping(data)

    @_translate_errors
    async def put_group(self, group: ShowGroup) -> None:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.hset(_group_key(group.group_id), mapping=group.to_mapping())
            pipe.zadd(CATALOG_KEY, {group.group_id: group.last_updated.timestamp()})
            await pipe.execute()

    @_translate_errors
    async def list_groups(self) -> list[ShowGroup]:
        """All catalog groups, most recently updated first."""
        group_ids = await self._redis.zrevrange(CATALOG_KEY, 0, -1)
        groups = []
        for group_id in group_ids:
            data = await self._redis.hgetall(_group_key(group_id))
            if data and "groupId" in data:
                groups.append(ShowGroup.from_mapping(data))
        return groups

    @_translate_errors
    async def get_release(self, stream_id: str) -> ReleaseRecord | None:
        data = await self._redis.hgetall(_release_key(stream_id))
        if not data or "streamId" not in data:
            return None
        return ReleaseRecord.from_mapping(data)

    @_translate_errors
    async def put_release(self, record: ReleaseRecord) -> None:
        """Upsert a release; the same stream id always lands on the same key."""
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.hset(_release_key(record.stream_id), mapping=record.to_mapping())
            pipe.zadd(
                _group_releases_key(record.parent_group_id),
                {record.stream_id: record.discovered_at.timestamp()},
            )
            await pipe.execute()

    @_translate_errors
    async def releases_for_group(self, group_id: str) -> list[ReleaseRecord]:
        stream_ids = await self._redis.zrevrange(_group_releases_key(group_id), 0, -1)
        records = []
        for stream_id in stream_ids:
            data = await self._redis.hgetall(_release_key(stream_id))
            if data and "streamId" in data:
                records.append(ReleaseRecord.from_mapping(data))
        return records

    @_translate_errors
    async def get_thread(self, thread_id: str) -> ThreadTracking | None:
        data = await self._redis.hgetall(_thread_key(thread_id))
        if not data:
            return None
        return ThreadTracking.from_mapping(thread_id, data)

    @_translate_errors
    async def put_thread(self, tracking: ThreadTracking) -> None:
        await self._redis.hset(_thread_key(tracking.thread_id), mapping=tracking.to_mapping())

    @_translate_errors
    async def list_threads(self) -> list[ThreadTracking]:
        """Every tracked thread, including records with missing timestamps."""
        threads = []
        async for key in self._redis.scan_iter(match=f"{THREAD_PREFIX}*"):
            data = await self._redis.hgetall(key)
            if data:
                threads.append(ThreadTracking.from_mapping(key[len(THREAD_PREFIX):], data))
        return threads

    async def record_failure(
        self,
        level: str,
        message: str,
        url: str | None = None,
        error: str | None = None,
    ) -> None:
        """Push a structured failure event onto the error queue. Never raises."""
        event: dict[str, Any] = {
            "timestamp": format_timestamp(utcnow()),
            "level": level,
            "message": message,
        }
        if url:
            event["url"] = url
        if error:
            event["error"] = error
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.lpush(ERROR_QUEUE_KEY, json.dumps(event))
                pipe.ltrim(ERROR_QUEUE_KEY, 0, ERROR_QUEUE_LIMIT - 1)
                await pipe.execute()
        except RedisError as e:
            logger.warning(f"Failed to record failure event {message!r}: {e}")

    @_translate_errors
    async def recent_failures(self, limit: int = 10) -> list[dict[str, Any]]:
        events = []
        for raw in await self._redis.lrange(ERROR_QUEUE_KEY, 0, limit - 1):
            try:
                events.append(json.loads(raw))
            except ValueError:
                events.append({"message": "Corrupted failure event", "raw": raw})
        return events

    async def _count(self, prefix: str) -> int:
        count = 0
        async for _ in self._redis.scan_iter(match=f"{prefix}*"):
            count += 1
        return count

    @_translate_errors
    async def counts(self) -> dict[str, int]:
        return {
            "groups": await self._redis.zcard(CATALOG_KEY),
            "releases": await self._count(RELEASE_PREFIX),
            "threads": await self._count(THREAD_PREFIX),
            "failures": await self._redis.llen(ERROR_QUEUE_KEY),
        }

    @_translate_errors
    async def purge(self) -> int:
        """Delete every key this harvester owns. Returns the number removed."""
        removed = 0
        for pattern in (f"{GROUP_PREFIX}*", f"{RELEASE_PREFIX}*", f"{THREAD_PREFIX}*"):
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                removed += await self._redis.delete(*keys)
        removed += await self._redis.delete(CATALOG_KEY, ERROR_QUEUE_KEY)
        logger.warning(f"Purged {removed} keys from the catalog store")
        return removed
