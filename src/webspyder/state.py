"""Application state container.

AppState is created once per run inside the CLI lifespan context manager and
handed to the crawl entry point. Everything a session shares lives here:
settings, the HTTP client, the page cache, the audit aggregator and the
counters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from webspyder.models.crawl import SessionStats

if TYPE_CHECKING:
    import httpx

    from webspyder.cache import PageCache
    from webspyder.config import Settings
    from webspyder.fetcher import Fetcher
    from webspyder.index import CacheIndex
    from webspyder.output import OutputAggregator


@dataclass
class AppState:
    """Holds all shared runtime state for one crawl session."""

    settings: Settings
    http_client: httpx.AsyncClient
    fetcher: Fetcher
    index: CacheIndex
    cache: PageCache
    output: OutputAggregator
    stats: SessionStats = field(default_factory=SessionStats)
