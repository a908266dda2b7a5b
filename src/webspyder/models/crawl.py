from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields
from enum import StrEnum


class TaskState(StrEnum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPANDED = "expanded"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class CrawlTask:
    """A URL scheduled for crawling at a given link distance from the seed."""

    url: str
    depth: int
    parent: str | None = None

    def __post_init__(self) -> None:
        if self.depth < 1:
            raise ValueError(f"CrawlTask depth must be >= 1, got {self.depth}")

    def child(self, url: str) -> CrawlTask:
        return CrawlTask(url=url, depth=self.depth + 1, parent=self.url)


@dataclass(frozen=True)
class LinkPartition:
    """Extracted links split relative to the seed host.

    Every classified URL lands in exactly one of ``same_site``, ``external``
    or the ``dropped`` count.
    """

    same_site: frozenset[str] = frozenset()
    external: frozenset[str] = frozenset()
    dropped: int = 0


@dataclass(frozen=True)
class StatsSnapshot:
    pages_crawled: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    failed_fetches: int = 0
    external_links: int = 0
    seed_links: int = 0
    tag_search_hits: int = 0


@dataclass
class SessionStats:
    """Mutable per-session counters shared by the cache and the scheduler."""

    pages_crawled: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    failed_fetches: int = 0
    external_links: int = 0
    seed_links: int = 0
    tag_search_hits: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter.startswith("_") or not hasattr(self, counter):
            raise AttributeError(f"Unknown counter: {counter!r}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                **{f.name: getattr(self, f.name) for f in fields(StatsSnapshot)}
            )


@dataclass(frozen=True)
class CrawlResult:
    seed_url: str
    max_depth: int
    visited: frozenset[str]
    stats: StatsSnapshot
    elapsed_seconds: float
    cancelled: bool = False
