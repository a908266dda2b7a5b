from __future__ import annotations

from pydantic import BaseModel

from webspyder.models.fetch import FetchStatus


class CacheEntry(BaseModel):
    """One row of the on-disk cache index."""

    url: str  # Normalized absolute URL (index key)
    handle: str  # File name of the cached body inside the cache directory


class PageContent(BaseModel):
    """Result of ``PageCache.get_or_fetch``."""

    url: str
    body: str = ""
    from_cache: bool = False
    handle: str | None = None  # None when the body was not persisted
    status: FetchStatus = FetchStatus.SUCCESS
    error: str | None = None
    final_url: str | None = None  # Last hop when redirects were followed

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.SUCCESS
