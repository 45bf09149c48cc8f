"""Forum harvester: crawl torrent release threads into a show catalog."""

__version__ = "1.0.0"
