"""Map extracted threads onto catalog groups and release records."""

import logging

from .grouper import GROUP_THRESHOLD, find_matching_group, similar
from .models import ExtractedThread, ParsedTitle, ReleaseLink, ReleaseRecord, ShowGroup
from .store import CatalogStore
from .title_parser import make_id, parse_title
from .trackers import TrackerList
from .utils import extract_info_hash, is_placeholder_poster, utcnow

logger = logging.getLogger(__name__)

UNKNOWN_RESOLUTION = "unknown"


def build_stream_id(
    group_id: str, season: int, episode: int, resolution: str | None, info_hash: str
) -> str:
    """Stream id unique per group, episode, resolution and torrent content."""
    return f"{group_id}:s{season}e{episode}:{resolution or UNKNOWN_RESOLUTION}:{info_hash.lower()}"


class CatalogWriter:
    """Persists extracted threads as ShowGroups and ReleaseRecords.

    Saving the same thread twice produces the same keys and the same set
    fields; only ``lastUpdated`` moves forward.
    """

    def __init__(
        self,
        store: CatalogStore,
        trackers: TrackerList | None = None,
        group_title_threshold: float = GROUP_THRESHOLD,
    ) -> None:
        self.store = store
        self.trackers = trackers
        self.group_title_threshold = group_title_threshold

    async def _resolve_group(self, parsed: ParsedTitle) -> tuple[str, ShowGroup | None]:
        group_id = make_id(parsed.catalog_title)
        group = await self.store.get_group(group_id)
        if group is not None:
            return group_id, group

        match = find_matching_group(
            await self.store.list_groups(),
            parsed.base_show_name,
            parsed.year,
            parsed.season,
            self.group_title_threshold,
        )
        if match is not None:
            logger.info(f"Merging {parsed.catalog_title!r} into existing group {match.group_id}")
            return match.group_id, match
        return group_id, None

    def _merge_group(
        self, group: ShowGroup, parsed: ParsedTitle, extracted: ExtractedThread
    ) -> None:
        thread = extracted.thread
        title = parsed.catalog_title
        # Similarity-merged groups keep their own title so the id stays derivable from it
        if make_id(title) == group.group_id and similar(
            group.display_title, title, self.group_title_threshold
        ):
            group.display_title = title
        elif group.display_title != title:
            logger.debug(f"Keeping display title {group.display_title!r} over {title!r}")

        if is_placeholder_poster(group.poster_url) and not is_placeholder_poster(thread.poster_url):
            group.poster_url = thread.poster_url
        group.languages |= parsed.languages
        group.seasons.add(parsed.season)
        group.source_thread_id = thread.thread_id

    def _new_group(self, group_id: str, parsed: ParsedTitle, extracted: ExtractedThread) -> ShowGroup:
        thread = extracted.thread
        logger.info(f"Creating group {group_id} for {parsed.catalog_title!r}")
        return ShowGroup(
            group_id=group_id,
            display_title=parsed.catalog_title,
            base_title=parsed.base_show_name,
            poster_url=thread.poster_url,
            last_updated=utcnow(),
            source_thread_id=thread.thread_id,
            year=parsed.year,
            languages=set(parsed.languages),
            seasons={parsed.season},
        )

    async def _build_release(
        self, group_id: str, thread_title: ParsedTitle, link: ReleaseLink, thread_url: str
    ) -> ReleaseRecord | None:
        info_hash = link.info_hash or extract_info_hash(link.magnet)
        if not info_hash:
            logger.warning(f"Skipping release {link.name!r} from {thread_url}: no info hash")
            await self.store.record_failure(
                "WARNING",
                f"Release without valid info hash: {link.name}",
                url=thread_url,
            )
            return None

        parsed = parse_title(link.name)
        # A group holds exactly one season, the one its thread title names
        season = thread_title.season
        if parsed.season_detected and parsed.season != season:
            logger.debug(f"Release {link.name!r} names S{parsed.season:02d}; filing it under S{season:02d}")
        if parsed.episode_start is not None:
            episode, episode_end = parsed.episode_start, parsed.episode_end
        else:
            episode = thread_title.episode_start or 1
            episode_end = thread_title.episode_end
        resolution = parsed.resolution or thread_title.resolution

        stream_id = build_stream_id(group_id, season, episode, resolution, info_hash)
        existing = await self.store.get_release(stream_id)

        return ReleaseRecord(
            stream_id=stream_id,
            parent_group_id=group_id,
            info_hash=info_hash.lower(),
            display_name=link.name,
            display_title=parsed.canonical_display_title or thread_title.canonical_display_title,
            season_number=season,
            episode_number=episode,
            episode_end=episode_end,
            discovered_at=existing.discovered_at if existing else utcnow(),
            size=parsed.size or thread_title.size,
            resolution=resolution,
            languages=parsed.languages or set(thread_title.languages),
            codecs=parsed.codecs or set(thread_title.codecs),
            audio_codecs=parsed.audio_codecs or set(thread_title.audio_codecs),
            has_subtitles=parsed.has_subtitles or thread_title.has_subtitles,
            sources=self.trackers.sources if self.trackers else [],
            thread_url=thread_url,
        )

    async def save(self, extracted: ExtractedThread) -> ShowGroup:
        """
        Persist a thread's group and releases.

        Args:
            extracted: Thread and release links from the extractor

        Returns:
            The created or updated ShowGroup

        Raises:
            StoreError: If the store rejects a write
        """
        thread = extracted.thread
        parsed = parse_title(thread.raw_title)
        group_id, group = await self._resolve_group(parsed)

        records = []
        for link in extracted.releases:
            record = await self._build_release(group_id, parsed, link, thread.source_url)
            if record is not None:
                records.append(record)

        if group is None:
            group = self._new_group(group_id, parsed, extracted)
        else:
            self._merge_group(group, parsed, extracted)
        for record in records:
            group.languages |= record.languages
        group.last_updated = utcnow()

        await self.store.put_group(group)
        for record in records:
            await self.store.put_release(record)

        logger.info(f"Saved {len(records)} releases for {group}")
        return group
