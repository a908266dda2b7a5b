"""Protocol interfaces for swappable components.

The scheduler and the page cache reference these protocols, not the concrete
implementations. This allows:
- Tests to drive the crawl engine with in-memory fetchers and caches
- Alternative backends without touching the scheduler
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from webspyder.models.cache import PageContent
    from webspyder.models.fetch import FetchResult


class FetcherProtocol(Protocol):
    """Interface for the HTTP page fetcher."""

    async def fetch(self, url: str) -> FetchResult: ...


class LinkExtractor(Protocol):
    """Callable turning a page body into absolute URLs."""

    def __call__(self, body: str, base_url: str) -> set[str]: ...


class PageCacheProtocol(Protocol):
    """Interface for the URL-keyed page cache."""

    async def get_or_fetch(self, url: str) -> PageContent: ...

    async def save_index(self) -> bool: ...

    async def verify(self) -> tuple[int, int]: ...
