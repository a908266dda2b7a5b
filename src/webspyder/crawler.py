"""Crawl orchestration.

``CrawlScheduler.start_crawl`` walks a site outward from a seed URL:

    seed (depth 1) → fetch via PageCache → extract links → classify against
    the seed → claim unvisited children in the VisitedSet → enqueue at depth+1

Tasks flow through an ``asyncio.Queue`` drained by a fixed pool of worker
coroutines; the pool size is the global ceiling on in-flight fetches. A child
is only enqueued by the caller that won ``try_mark_visited`` for it, and only
when its depth stays within ``max_depth``, so every URL is dispatched at most
once per crawl and depth grows by exactly one per hop.

A failing page never aborts the crawl. Cancellation (``stop()`` or setting the
``cancel_event``) stops new dispatches, cancels in-flight work, and still runs
the finishing steps: summary callback, log event, and cache index save.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from webspyder.classifier import LinkClassifier
from webspyder.config import CrawlerSettings
from webspyder.errors import ErrorCode, WebSpyderError
from webspyder.models.crawl import CrawlResult, CrawlTask, SessionStats, TaskState
from webspyder.output import OutputAggregator
from webspyder.parser import extract_links, page_has_tag
from webspyder.urls import is_http_url, normalize_url
from webspyder.visited import VisitedSet

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from webspyder.protocols import LinkExtractor, PageCacheProtocol

log = structlog.get_logger()


def read_seed_file(path: str | Path) -> list[str]:
    """Read seed URLs from a text file: one per line, ``#`` starts a comment."""
    seeds: list[str] = []
    for line in Path(path).expanduser().read_text(encoding="utf-8").splitlines():
        url = line.strip()
        if url and not url.startswith("#"):
            seeds.append(url)
    return seeds


class CrawlScheduler:
    """Depth- and concurrency-bounded recursive crawler."""

    def __init__(
        self,
        cache: PageCacheProtocol,
        *,
        settings: CrawlerSettings | None = None,
        output: OutputAggregator | None = None,
        stats: SessionStats | None = None,
        extract_links: LinkExtractor = extract_links,
        classifier: LinkClassifier | None = None,
        on_finished: Callable[[CrawlResult], None] | None = None,
    ) -> None:
        self._cache = cache
        self._settings = settings or CrawlerSettings()
        self._output = output if output is not None else OutputAggregator()
        self._stats = stats if stats is not None else SessionStats()
        self._extract = extract_links
        self._classifier = classifier or LinkClassifier(
            self._settings.link_pattern_exclusions,
            strip_query=self._settings.strip_query,
        )
        self._on_finished = on_finished
        self._stop_event = asyncio.Event()
        self._active_cancel: asyncio.Event | None = None
        self._visited = VisitedSet()
        self._task_states: dict[str, TaskState] = {}
        self._dispatched_depths: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def visited(self) -> VisitedSet:
        """VisitedSet of the current (or most recent) crawl."""
        return self._visited

    @property
    def task_states(self) -> dict[str, TaskState]:
        return dict(self._task_states)

    @property
    def dispatched_depths(self) -> dict[str, int]:
        """Depth at which each URL was dispatched in the current crawl."""
        return dict(self._dispatched_depths)

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def output(self) -> OutputAggregator:
        return self._output

    def stop(self) -> None:
        """Request cancellation of the running crawl and any that follow."""
        log.warning("crawl_stop_requested")
        self._stop_event.set()
        if self._active_cancel is not None:
            self._active_cancel.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def start_crawl(
        self,
        seed_url: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> CrawlResult:
        """Crawl outward from ``seed_url`` and return the session outcome.

        Raises WebSpyderError(INVALID_CONFIG) if ``seed_url`` is not an absolute
        http(s) URL; nothing is fetched in that case.
        """
        if not is_http_url(seed_url):
            raise WebSpyderError(
                code=ErrorCode.INVALID_CONFIG,
                message=f"Seed URL is not an absolute http(s) URL: {seed_url!r}",
                suggestion="Use a full URL such as https://example.com/.",
            )

        seed = normalize_url(seed_url, strip_query=self._settings.strip_query)
        cancel = cancel_event or asyncio.Event()
        if self._stop_event.is_set():
            cancel.set()
        self._active_cancel = cancel

        self._visited = VisitedSet()
        self._task_states = {}
        self._dispatched_depths = {}
        queue: asyncio.Queue[CrawlTask] = asyncio.Queue()

        self._visited.try_mark_visited(seed)
        self._enqueue(queue, CrawlTask(url=seed, depth=1))

        crawl_log = log.bind(seed=seed)
        crawl_log.info(
            "crawl_started",
            max_depth=self._settings.max_depth,
            max_concurrent_crawlers=self._settings.max_concurrent_crawlers,
            follow_external_links=self._settings.follow_external_links,
        )

        started = time.perf_counter()
        workers = [
            asyncio.create_task(self._worker(queue, seed, cancel))
            for _ in range(self._settings.max_concurrent_crawlers)
        ]
        drained = asyncio.create_task(queue.join())
        cancelled_wait = asyncio.create_task(cancel.wait())

        try:
            await asyncio.wait({drained, cancelled_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled = not drained.done()
            for task in (*workers, drained, cancelled_wait):
                task.cancel()
            await asyncio.gather(*workers, drained, cancelled_wait, return_exceptions=True)

            result = CrawlResult(
                seed_url=seed,
                max_depth=self._settings.max_depth,
                visited=self._visited.snapshot(),
                stats=self._stats.snapshot(),
                elapsed_seconds=time.perf_counter() - started,
                cancelled=cancelled,
            )
            await self._finish(result)
            self._active_cancel = None

        return result

    async def crawl_seeds(
        self,
        seeds: Iterable[str],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[CrawlResult]:
        """Crawl each seed in turn, sharing cache, output and stats.

        Invalid seeds are logged and skipped; a stop request ends the run.
        """
        results: list[CrawlResult] = []
        for seed in seeds:
            if self.stopped or (cancel_event is not None and cancel_event.is_set()):
                break
            try:
                results.append(await self.start_crawl(seed, cancel_event=cancel_event))
            except WebSpyderError as exc:
                log.warning("crawl_seed_skipped", seed=seed, code=exc.code, message=exc.message)
        return results

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _enqueue(self, queue: asyncio.Queue[CrawlTask], task: CrawlTask) -> None:
        self._task_states[task.url] = TaskState.PENDING
        queue.put_nowait(task)

    async def _worker(
        self,
        queue: asyncio.Queue[CrawlTask],
        seed: str,
        cancel: asyncio.Event,
    ) -> None:
        while True:
            task = await queue.get()
            try:
                if cancel.is_set():
                    log.debug("crawl_task_abandoned", url=task.url, depth=task.depth)
                    continue
                await self._process(task, queue, seed)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.error("crawl_task_error", url=task.url, depth=task.depth, exc_info=True)
                self._task_states[task.url] = TaskState.FAILED
                self._stats.increment("failed_fetches")
                self._output.add_failed(task.url)
            finally:
                queue.task_done()

    async def _process(self, task: CrawlTask, queue: asyncio.Queue[CrawlTask], seed: str) -> None:
        max_depth = self._settings.max_depth
        if task.depth > max_depth:
            self._task_states[task.url] = TaskState.TERMINAL
            return

        self._task_states[task.url] = TaskState.DISPATCHED
        self._dispatched_depths[task.url] = task.depth

        self._task_states[task.url] = TaskState.FETCHING
        page = await self._cache.get_or_fetch(task.url)
        if not page.ok:
            self._task_states[task.url] = TaskState.FAILED
            self._stats.increment("failed_fetches")
            self._output.add_failed(task.url)
            return

        self._task_states[task.url] = TaskState.SUCCEEDED
        self._stats.increment("pages_crawled")

        if self._settings.enable_tag_search:
            await self._search_tag(task.url, page.body)

        base_url = page.final_url or task.url
        links = await asyncio.to_thread(self._extract, page.body, base_url)
        partition = self._classifier.classify(links, seed)

        self._stats.increment("seed_links", self._output.add_seed(partition.same_site))
        self._stats.increment("external_links", self._output.add_external(partition.external))
        self._output.add_scraped(partition.same_site | partition.external)

        if task.depth >= max_depth:
            self._task_states[task.url] = TaskState.TERMINAL
            log.debug(
                "page_crawled",
                url=task.url,
                depth=task.depth,
                from_cache=page.from_cache,
                links=len(links),
                children=0,
            )
            return

        candidates = set(partition.same_site)
        if self._settings.follow_external_links:
            candidates |= partition.external

        children = 0
        for url in sorted(candidates):
            if self._visited.try_mark_visited(url):
                self._enqueue(queue, task.child(url))
                children += 1

        self._task_states[task.url] = TaskState.EXPANDED
        log.debug(
            "page_crawled",
            url=task.url,
            depth=task.depth,
            from_cache=page.from_cache,
            links=len(links),
            children=children,
        )

    async def _search_tag(self, url: str, body: str) -> None:
        tag = self._settings.tag_to_search_for
        if await asyncio.to_thread(page_has_tag, body, tag):
            if self._output.add_tag_hit(url):
                self._stats.increment("tag_search_hits")
            log.info("tag_search_hit", url=url, tag=tag)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _finish(self, result: CrawlResult) -> None:
        log.info(
            "crawl_finished",
            seed=result.seed_url,
            cancelled=result.cancelled,
            visited=len(result.visited),
            pages_crawled=result.stats.pages_crawled,
            cache_hits=result.stats.cache_hits,
            cache_misses=result.stats.cache_misses,
            failed_fetches=result.stats.failed_fetches,
            seed_links=result.stats.seed_links,
            external_links=result.stats.external_links,
            tag_search_hits=result.stats.tag_search_hits,
            elapsed_seconds=round(result.elapsed_seconds, 3),
        )

        if self._on_finished is not None:
            try:
                self._on_finished(result)
            except Exception:
                log.warning("crawl_finished_callback_error", exc_info=True)

        await self._cache.save_index()
