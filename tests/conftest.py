"""Shared test fixtures for the webspyder test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from webspyder.cache import PageCache
from webspyder.config import OutputSettings
from webspyder.index import CacheIndex
from webspyder.models.crawl import SessionStats
from webspyder.models.fetch import FetchResult, FetchStatus
from webspyder.output import OutputAggregator

if TYPE_CHECKING:
    from pathlib import Path


class FakeFetcher:
    """In-memory FetcherProtocol.

    ``pages`` maps URL → HTML body (200); ``results`` maps URL → a canned
    FetchResult and takes precedence. Anything else is a 404. Every call is
    recorded, and the peak number of concurrent calls is tracked.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.pages: dict[str, str] = {}
        self.results: dict[str, FetchResult] = {}
        self.calls: list[str] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if url in self.results:
            return self.results[url]
        if url in self.pages:
            return FetchResult(
                url=url, status=FetchStatus.SUCCESS, body=self.pages[url], status_code=200
            )
        return FetchResult(
            url=url, status=FetchStatus.CLIENT_ERROR, status_code=404, error="HTTP 404"
        )

    def count(self, url: str) -> int:
        return self.calls.count(url)


def html_page(*hrefs: str, extra: str = "") -> str:
    """Build a minimal HTML document linking to ``hrefs``."""
    anchors = "".join(f'<a href="{href}">link</a>' for href in hrefs)
    return f"<html><body>{anchors}{extra}</body></html>"


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture()
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture()
def index(cache_dir: Path) -> CacheIndex:
    return CacheIndex.load(cache_dir)


@pytest.fixture()
def stats() -> SessionStats:
    return SessionStats()


@pytest.fixture()
def output(output_dir: Path) -> OutputAggregator:
    return OutputAggregator(OutputSettings(directory=str(output_dir)))


@pytest.fixture()
def page_cache(
    fake_fetcher: FakeFetcher,
    index: CacheIndex,
    stats: SessionStats,
    output: OutputAggregator,
) -> PageCache:
    return PageCache(fake_fetcher, index, stats=stats, output=output)
