from __future__ import annotations

from webspyder.models.cache import CacheEntry, PageContent
from webspyder.models.crawl import (
    CrawlResult,
    CrawlTask,
    LinkPartition,
    SessionStats,
    StatsSnapshot,
    TaskState,
)
from webspyder.models.fetch import FetchResult, FetchStatus

__all__ = [
    # cache
    "CacheEntry",
    "PageContent",
    # crawl
    "CrawlResult",
    "CrawlTask",
    "LinkPartition",
    "SessionStats",
    "StatsSnapshot",
    "TaskState",
    # fetch
    "FetchResult",
    "FetchStatus",
]
