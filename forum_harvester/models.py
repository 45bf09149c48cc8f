"""Data models for the forum harvester."""

import json
from dataclasses import dataclass, field
from datetime import datetime

from .utils import EPOCH, format_timestamp, parse_timestamp


def _dump_set(values) -> str:
    """Serialize a set-valued field as a sorted JSON list."""
    return json.dumps(sorted(values))


def _load_list(raw: str | None) -> list:
    """Deserialize a JSON list field, tolerating legacy comma-delimited values."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return [part.strip() for part in raw.split(",") if part.strip()]
    return value if isinstance(value, list) else []


def _load_int_set(raw: str | None) -> set[int]:
    result = set()
    for item in _load_list(raw):
        try:
            result.add(int(item))
        except (TypeError, ValueError):
            continue
    return result


def _optional_int(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@dataclass
class ParsedTitle:
    """Structured metadata parsed from a free-text release title."""

    base_show_name: str
    year: int | None = None
    season: int = 1
    season_detected: bool = False
    episode_start: int | None = None
    episode_end: int | None = None
    languages: set[str] = field(default_factory=set)
    resolutions: set[str] = field(default_factory=set)
    codecs: set[str] = field(default_factory=set)
    audio_codecs: set[str] = field(default_factory=set)
    quality_tags: set[str] = field(default_factory=set)
    sizes: list[str] = field(default_factory=list)
    has_subtitles: bool = False
    canonical_display_title: str = ""

    def __post_init__(self) -> None:
        if self.episode_start is not None and self.episode_end is None:
            self.episode_end = self.episode_start

    @property
    def catalog_title(self) -> str:
        """Title used for grouping: base name, year and season, never episodes."""
        parts = [self.base_show_name]
        if self.year is not None:
            parts.append(f"({self.year})")
        parts.append(f"S{self.season:02d}")
        return " ".join(parts)

    @property
    def resolution(self) -> str | None:
        """The highest resolution tag found, if any."""
        if not self.resolutions:
            return None
        return max(self.resolutions, key=_resolution_rank)

    @property
    def size(self) -> str | None:
        return self.sizes[0] if self.sizes else None


def _resolution_rank(tag: str) -> int:
    tag = tag.lower()
    if tag == "4k":
        return 2160
    if tag.endswith("p") and tag[:-1].isdigit():
        return int(tag[:-1])
    return {"hd": 720, "hq": 480}.get(tag, 0)


@dataclass
class ReleaseLink:
    """One magnet link found in a thread, with its descriptive name."""

    magnet: str
    name: str
    info_hash: str


@dataclass
class ReleaseThread:
    """A forum post describing one or more releases of a show season."""

    thread_id: str
    raw_title: str
    poster_url: str
    posted_at: datetime
    source_url: str
    processed_at: datetime | None = None


@dataclass
class ExtractedThread:
    """Result of extracting a single thread page."""

    thread: ReleaseThread
    releases: list[ReleaseLink] = field(default_factory=list)
    rejected_magnets: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.thread.raw_title} ({len(self.releases)} releases)"


@dataclass
class ThreadTracking:
    """Tracking record stored under ``thread:{threadId}``."""

    thread_id: str
    url: str
    processed_at: datetime | None = None
    status: str = "processed"
    raw_title: str = ""
    poster_url: str = ""
    posted_at: datetime | None = None

    @classmethod
    def from_thread(cls, thread: ReleaseThread, status: str) -> "ThreadTracking":
        return cls(
            thread_id=thread.thread_id,
            url=thread.source_url,
            processed_at=thread.processed_at,
            status=status,
            raw_title=thread.raw_title,
            poster_url=thread.poster_url,
            posted_at=thread.posted_at,
        )

    def to_mapping(self) -> dict[str, str]:
        mapping = {
            "threadId": self.thread_id,
            "url": self.url,
            "status": self.status,
            "rawTitle": self.raw_title,
            "posterUrl": self.poster_url,
        }
        if self.processed_at is not None:
            mapping["timestamp"] = format_timestamp(self.processed_at)
        if self.posted_at is not None:
            mapping["postedAt"] = format_timestamp(self.posted_at)
        return mapping

    @classmethod
    def from_mapping(cls, thread_id: str, data: dict[str, str]) -> "ThreadTracking":
        """Build a tracking record, leaving malformed timestamps as None."""
        return cls(
            thread_id=data.get("threadId") or thread_id,
            url=data.get("url", ""),
            processed_at=parse_timestamp(data.get("timestamp")),
            status=data.get("status", ""),
            raw_title=data.get("rawTitle", ""),
            poster_url=data.get("posterUrl", ""),
            posted_at=parse_timestamp(data.get("postedAt")),
        )


@dataclass
class ShowGroup:
    """Catalog entry: one logical show season aggregated from many threads."""

    group_id: str
    display_title: str
    base_title: str
    poster_url: str
    last_updated: datetime
    source_thread_id: str
    year: int | None = None
    languages: set[str] = field(default_factory=set)
    seasons: set[int] = field(default_factory=set)

    def to_mapping(self) -> dict[str, str]:
        return {
            "groupId": self.group_id,
            "displayTitle": self.display_title,
            "baseTitle": self.base_title,
            "posterUrl": self.poster_url,
            "year": "" if self.year is None else str(self.year),
            "languages": _dump_set(self.languages),
            "seasons": _dump_set(self.seasons),
            "lastUpdated": format_timestamp(self.last_updated),
            "sourceThreadId": self.source_thread_id,
        }

    @classmethod
    def from_mapping(cls, data: dict[str, str]) -> "ShowGroup":
        return cls(
            group_id=data["groupId"],
            display_title=data.get("displayTitle", ""),
            base_title=data.get("baseTitle", ""),
            poster_url=data.get("posterUrl", ""),
            last_updated=parse_timestamp(data.get("lastUpdated")) or EPOCH,
            source_thread_id=data.get("sourceThreadId", ""),
            year=_optional_int(data.get("year")),
            languages=set(_load_list(data.get("languages"))),
            seasons=_load_int_set(data.get("seasons")),
        )

    def __str__(self) -> str:
        return f"{self.display_title} [{self.group_id}]"


@dataclass
class ReleaseRecord:
    """One concrete downloadable release belonging to a ShowGroup."""

    stream_id: str
    parent_group_id: str
    info_hash: str
    display_name: str
    display_title: str
    season_number: int
    episode_number: int
    discovered_at: datetime
    episode_end: int | None = None
    size: str | None = None
    resolution: str | None = None
    languages: set[str] = field(default_factory=set)
    codecs: set[str] = field(default_factory=set)
    audio_codecs: set[str] = field(default_factory=set)
    has_subtitles: bool = False
    sources: list[str] = field(default_factory=list)
    thread_url: str = ""

    def to_mapping(self) -> dict[str, str]:
        return {
            "streamId": self.stream_id,
            "parentGroupId": self.parent_group_id,
            "infoHash": self.info_hash,
            "displayName": self.display_name,
            "displayTitle": self.display_title,
            "seasonNumber": str(self.season_number),
            "episodeNumber": str(self.episode_number),
            "episodeEnd": "" if self.episode_end is None else str(self.episode_end),
            "size": self.size or "",
            "resolution": self.resolution or "",
            "languages": _dump_set(self.languages),
            "codecs": _dump_set(self.codecs),
            "audioCodecs": _dump_set(self.audio_codecs),
            "hasSubtitles": "1" if self.has_subtitles else "0",
            "sources": json.dumps(self.sources),
            "threadUrl": self.thread_url,
            "discoveredAt": format_timestamp(self.discovered_at),
        }

    @classmethod
    def from_mapping(cls, data: dict[str, str]) -> "ReleaseRecord":
        return cls(
            stream_id=data["streamId"],
            parent_group_id=data.get("parentGroupId", ""),
            info_hash=data.get("infoHash", ""),
            display_name=data.get("displayName", ""),
            display_title=data.get("displayTitle", ""),
            season_number=_optional_int(data.get("seasonNumber")) or 1,
            episode_number=_optional_int(data.get("episodeNumber")) or 1,
            episode_end=_optional_int(data.get("episodeEnd")),
            discovered_at=parse_timestamp(data.get("discoveredAt")) or EPOCH,
            size=data.get("size") or None,
            resolution=data.get("resolution") or None,
            languages=set(_load_list(data.get("languages"))),
            codecs=set(_load_list(data.get("codecs"))),
            audio_codecs=set(_load_list(data.get("audioCodecs"))),
            has_subtitles=data.get("hasSubtitles") == "1",
            sources=_load_list(data.get("sources")),
            thread_url=data.get("threadUrl", ""),
        )

    def __str__(self) -> str:
        return f"{self.display_name} [{self.resolution or 'unknown'}]"
