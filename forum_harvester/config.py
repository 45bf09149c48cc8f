"""Crawler settings with defaults and environment overrides."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FORUM_URL = (
    "https://www.1tamilblasters.fi/index.php?/forums/forum/"
    "63-tamil-new-web-series-tv-shows/"
)
DEFAULT_TRACKERS_URL = (
    "https://raw.githubusercontent.com/ngosang/trackerslist/master/trackers_all.txt"
)


class CrawlerSettings(BaseSettings):
    """Read-only crawler configuration.

    Every field can be overridden by the upper-cased environment variable of
    its name (``FORUM_URL``, ``MAX_CONCURRENCY``, ...). Intervals are in
    seconds unless the field name says hours.
    """

    forum_url: str = Field(DEFAULT_FORUM_URL, description="Forum listing URL (page 1).")
    redis_url: str = Field("redis://localhost:6379", description="Catalog store connection URL.")
    initial_pages: int = Field(2, description="Listing pages per discovery run; 0 is unbounded.")
    crawl_interval: int = Field(1800, description="Seconds between discovery runs.")
    revisit_interval_hours: float = Field(24.0, description="Hours between revisit runs.")
    thread_revisit_hours: float = Field(
        24.0, description="Hours before a processed thread is fetched again."
    )
    max_concurrency: int = Field(8, description="Threads processed at once.")
    trackers_url: str = Field(DEFAULT_TRACKERS_URL, description="Plain-text tracker list URL.")
    tracker_update_interval_hours: float = Field(
        6.0, description="Hours before the tracker list is refreshed."
    )
    purge_on_start: bool = Field(False, description="Delete harvested keys before the first crawl.")
    request_delay: float = Field(0.25, description="Seconds slept before every request.")
    request_timeout: float = Field(30.0, description="Per-attempt HTTP timeout in seconds.")
    max_retries: int = Field(3, description="Retries after the first failed attempt.")
    group_title_threshold: float = Field(
        0.9, description="Title similarity needed to merge into an existing group."
    )
    log_level: str = Field("INFO", description="Logging level name.")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("max_concurrency")
    @classmethod
    def check_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_concurrency must be at least 1")
        return value

    @field_validator("initial_pages", "max_retries")
    @classmethod
    def check_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("group_title_threshold")
    @classmethod
    def check_threshold(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("group_title_threshold must be in (0, 1]")
        return value
