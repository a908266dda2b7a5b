"""URL-keyed page cache with per-URL fetch coalescing.

``PageCache.get_or_fetch`` returns a page body, reading it from the cache
directory when the index has an entry and fetching it otherwise. Concurrent
callers asking for the same uncached URL share one in-flight future: the
first caller fetches, the others await the same result. Coordination is per
key; unrelated URLs never wait on each other.

Fetch failures are values (``PageContent.ok`` is False) and are not cached,
so a later call retries. Cache I/O errors are logged and degrade to a miss on
read or a skipped write on store; infrastructure errors never cross the
PageCache boundary.

Whole-index operations (bulk save, consistency sweep) run in an exclusive
phase: they wait for in-progress reads and stores to finish and hold new ones
back until done. Network fetches happen outside the gate, so a slow server
never delays a save.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiofiles
import structlog

from webspyder.models.cache import PageContent
from webspyder.models.crawl import SessionStats
from webspyder.models.fetch import FetchResult, FetchStatus
from webspyder.urls import is_http_url, normalize_url

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from webspyder.index import CacheIndex
    from webspyder.output import OutputAggregator
    from webspyder.protocols import FetcherProtocol

log = structlog.get_logger()

DEFAULT_MAX_REDIRECT_HOPS = 5


class _ExclusiveGate:
    """Shared/exclusive gate for cache traffic versus whole-index phases.

    Releasing a shared hold is synchronous, so a cancelled reader can never
    leave the gate counting a holder that is gone.
    """

    def __init__(self) -> None:
        self._shared = 0
        self._idle = asyncio.Event()  # set while no shared holders
        self._open = asyncio.Event()  # set while no exclusive holder or waiter
        self._idle.set()
        self._open.set()
        self._exclusive_lock = asyncio.Lock()

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        while not self._open.is_set():
            await self._open.wait()
        self._shared += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._shared -= 1
            if self._shared == 0:
                self._idle.set()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._exclusive_lock:
            self._open.clear()
            try:
                await self._idle.wait()
                yield
            finally:
                self._open.set()


class PageCache:
    """Cache-aside page store implementing PageCacheProtocol."""

    def __init__(
        self,
        fetcher: FetcherProtocol,
        index: CacheIndex,
        *,
        stats: SessionStats | None = None,
        output: OutputAggregator | None = None,
        max_redirect_hops: int = DEFAULT_MAX_REDIRECT_HOPS,
        min_body_length: int = 0,
        enabled: bool = True,
        strip_query: bool = False,
    ) -> None:
        self._fetcher = fetcher
        self._index = index
        self._stats = stats if stats is not None else SessionStats()
        self._output = output
        self._max_redirect_hops = max_redirect_hops
        self._min_body_length = min_body_length
        self._enabled = enabled
        self._strip_query = strip_query
        self._gate = _ExclusiveGate()
        self._inflight: dict[str, asyncio.Future[PageContent]] = {}
        self._sweep_task: asyncio.Task[tuple[int, int]] | None = None

    @property
    def index(self) -> CacheIndex:
        return self._index

    @property
    def stats(self) -> SessionStats:
        return self._stats

    # ------------------------------------------------------------------
    # Get / fetch
    # ------------------------------------------------------------------

    async def get_or_fetch(self, url: str) -> PageContent:
        """Return the page for ``url`` from cache, or fetch and store it."""
        try:
            key = normalize_url(url, strip_query=self._strip_query)
        except ValueError:
            log.info("page_invalid_url", url=url)
            return self._failed(
                url,
                FetchResult(
                    url=url, status=FetchStatus.CLIENT_ERROR, error=f"Invalid URL: {url!r}"
                ),
            )

        while True:
            if self._enabled:
                cached = await self._read_cached(key)
                if cached is not None:
                    return cached

            pending = self._inflight.get(key)
            if pending is None:
                break
            log.debug("page_fetch_joined", url=key)
            # wait() leaves ``pending`` untouched if this caller is cancelled
            await asyncio.wait({pending})
            if not pending.cancelled():
                return pending.result()
            # The owner was cancelled; retry and take over the fetch if still free
            log.debug("page_fetch_owner_cancelled", url=key)

        # Nothing below may await before the in-flight future is registered.
        future: asyncio.Future[PageContent] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await self._fetch_and_store(key)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            log.error("page_fetch_unexpected_error", url=key, exc_info=True)
            result = self._failed(
                key,
                FetchResult(url=key, status=FetchStatus.NETWORK_ERROR, error=str(exc)),
            )
        finally:
            self._inflight.pop(key, None)

        future.set_result(result)
        return result

    async def _read_cached(self, key: str) -> PageContent | None:
        async with self._gate.shared():
            handle = self._index.get(key)
            if handle is None:
                return None

            path = self._index.body_path(handle)
            try:
                async with aiofiles.open(path, encoding="utf-8") as file_obj:
                    body = await file_obj.read()
            except FileNotFoundError:
                log.warning("cache_entry_dangling", url=key, handle=handle)
                self._index.remove(key)
                self._schedule_sweep()
                return None
            except (OSError, UnicodeDecodeError):
                log.warning("cache_read_error", url=key, handle=handle, exc_info=True)
                return None

        self._stats.increment("cache_hits")
        log.debug("cache_hit", url=key)
        return PageContent(url=key, body=body, from_cache=True, handle=handle)

    async def _fetch_and_store(self, key: str) -> PageContent:
        log.debug("cache_miss_fetching", url=key)
        result, final_url = await self._fetch_following_redirects(key)
        if not result.ok:
            return self._failed(key, result, final_url)

        self._stats.increment("cache_misses")
        handle = None
        if self._enabled and len(result.body) >= self._min_body_length:
            handle = await self._store(key, result.body)

        return PageContent(url=key, body=result.body, handle=handle, final_url=final_url)

    async def _fetch_following_redirects(self, key: str) -> tuple[FetchResult, str]:
        current = key
        for hop in range(self._max_redirect_hops + 1):
            result = await self._fetcher.fetch(current)
            if result.status is not FetchStatus.REDIRECT:
                return result, current
            if hop == self._max_redirect_hops:
                break

            target = result.redirect_to or ""
            if not is_http_url(target):
                return (
                    FetchResult(
                        url=key,
                        status=FetchStatus.CLIENT_ERROR,
                        status_code=result.status_code,
                        error=f"Redirect from {current} to unsupported location {target!r}",
                    ),
                    current,
                )
            log.debug("redirect_followed", url=key, hop=hop + 1, target=target)
            current = target

        return (
            FetchResult(
                url=key,
                status=FetchStatus.REDIRECT,
                error=f"Too many redirects (> {self._max_redirect_hops}) fetching {key}",
            ),
            current,
        )

    async def _store(self, key: str, body: str) -> str | None:
        async with self._gate.shared():
            handle = self._index.allocate_handle()
            path = self._index.body_path(handle)
            try:
                async with aiofiles.open(path, "w", encoding="utf-8") as file_obj:
                    await file_obj.write(body)
            except OSError:
                log.warning("cache_write_error", url=key, exc_info=True)
                return None

            if not self._index.add(key, handle):
                # Entries are add-only; keep the existing one
                path.unlink(missing_ok=True)
                return self._index.get(key)

        log.debug("cache_stored", url=key, handle=handle, content_length=len(body))
        return handle

    def _failed(
        self, key: str, result: FetchResult, final_url: str | None = None
    ) -> PageContent:
        if result.status in (FetchStatus.UNAUTHORIZED, FetchStatus.FORBIDDEN):
            log.warning(
                "fetch_denied", url=key, status=result.status, status_code=result.status_code
            )
        else:
            log.warning(
                "fetch_failed",
                url=key,
                status=result.status,
                status_code=result.status_code,
                error=result.error,
            )
        if self._output is not None:
            self._output.add_failed(key)
        return PageContent(url=key, status=result.status, error=result.error, final_url=final_url)

    # ------------------------------------------------------------------
    # Whole-index operations
    # ------------------------------------------------------------------

    def _schedule_sweep(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            log.warning("cache_consistency_check_triggered")
            self._sweep_task = asyncio.create_task(self.verify())

    async def verify(self) -> tuple[int, int]:
        """Run the consistency sweep and persist the result.

        Returns ``(entries_removed, files_removed)``.
        """
        async with self._gate.exclusive():
            removed = await asyncio.to_thread(self._index.sweep)
            await asyncio.to_thread(self._index.save)
        return removed

    async def save_index(self) -> bool:
        """Persist the index. A disabled cache has nothing to persist."""
        if not self._enabled:
            return False
        async with self._gate.exclusive():
            return await asyncio.to_thread(self._index.save)

    async def close(self) -> bool:
        """Let in-flight work settle, then persist the index."""
        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)
        if self._sweep_task is not None and not self._sweep_task.done():
            await asyncio.gather(self._sweep_task, return_exceptions=True)
        return await self.save_index()
