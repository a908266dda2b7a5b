"""Command-line entrypoint.

Responsibilities (and nothing more):
- Parse CLI overrides and load Settings
- Configure structlog
- Create AppState via the lifespan context manager
- Run the crawl(s), wire SIGINT/SIGTERM to ``stop()``, print the summary
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from webspyder import __version__
from webspyder.cache import PageCache
from webspyder.config import Settings, validate_settings
from webspyder.crawler import CrawlScheduler, read_seed_file
from webspyder.errors import WebSpyderError
from webspyder.fetcher import Fetcher, build_http_client
from webspyder.index import CacheIndex
from webspyder.models.crawl import CrawlResult, SessionStats
from webspyder.output import OutputAggregator
from webspyder.report import format_summary, merge_results
from webspyder.schedulers import run_index_autosave
from webspyder.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Sequence

log = structlog.get_logger()

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_CANCELLED = 130


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout carries only the summary report
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webspyder",
        description="Depth-limited concurrent web crawler with an on-disk page cache.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--url", help="seed URL to start crawling from")
    parser.add_argument("--input-file", help="text file with one seed URL per line")
    parser.add_argument("--depth", type=int, help="maximum link depth (seed is depth 1)")
    parser.add_argument(
        "--follow-external",
        action="store_true",
        default=None,
        help="also crawl links outside the seed site",
    )
    parser.add_argument("--concurrency", type=int, help="number of concurrent crawl workers")
    parser.add_argument("--search-tag", metavar="TAG", help="record pages containing this tag")
    parser.add_argument("--cache-dir", help="directory holding cached pages and the index")
    parser.add_argument("--no-cache", action="store_true", help="disable the page cache")
    parser.add_argument(
        "--verify-cache",
        action="store_true",
        help="run the cache consistency sweep before crawling",
    )
    parser.add_argument("--output-dir", help="directory for the captured-URL files")
    return parser


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed arguments into nested Settings init kwargs."""
    crawler: dict[str, Any] = {}
    cache: dict[str, Any] = {}
    output: dict[str, Any] = {}

    if args.url is not None:
        crawler["starting_url"] = args.url
    if args.input_file is not None:
        crawler["input_file"] = args.input_file
    if args.depth is not None:
        crawler["max_depth"] = args.depth
    if args.follow_external:
        crawler["follow_external_links"] = True
    if args.concurrency is not None:
        crawler["max_concurrent_crawlers"] = args.concurrency
    if args.search_tag:
        crawler["enable_tag_search"] = True
        crawler["tag_to_search_for"] = args.search_tag
    if args.cache_dir is not None:
        cache["location"] = args.cache_dir
    if args.no_cache:
        cache["enabled"] = False
    if args.output_dir is not None:
        output["directory"] = args.output_dir

    overrides: dict[str, Any] = {}
    for section, values in (("crawler", crawler), ("cache", cache), ("output", output)):
        if values:
            overrides[section] = values
    return overrides


def _seed_urls(settings: Settings) -> list[str]:
    seeds: list[str] = []
    if settings.crawler.starting_url:
        seeds.append(settings.crawler.starting_url)
    if settings.crawler.input_file:
        seeds.extend(read_seed_file(settings.crawler.input_file))
    return seeds


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for one crawl session.

    Teardown always flushes the audit files and saves the cache index, also
    when the crawl was cancelled.
    """
    log.info("webspyder_starting", version=__version__)

    http_client = build_http_client(settings.fetcher)
    fetcher = Fetcher(http_client, settings.fetcher)
    index = await asyncio.to_thread(
        CacheIndex.load,
        Path(settings.cache.location).expanduser(),
        settings.cache.index_filename,
    )
    output = OutputAggregator(settings.output)
    stats = SessionStats()
    cache = PageCache(
        fetcher,
        index,
        stats=stats,
        output=output,
        max_redirect_hops=settings.cache.max_redirect_hops,
        min_body_length=settings.cache.min_body_length,
        enabled=settings.cache.enabled,
        strip_query=settings.crawler.strip_query,
    )
    state = AppState(
        settings=settings,
        http_client=http_client,
        fetcher=fetcher,
        index=index,
        cache=cache,
        output=output,
        stats=stats,
    )

    autosave_task: asyncio.Task[None] | None = None
    if settings.cache.enabled:
        autosave_task = asyncio.create_task(
            run_index_autosave(state.cache, settings.cache.autosave_interval_seconds)
        )

    try:
        yield state
    finally:
        if autosave_task is not None:
            autosave_task.cancel()
            with suppress(asyncio.CancelledError):
                await autosave_task
        await state.cache.close()
        await asyncio.to_thread(output.flush)
        await http_client.aclose()
        log.info("webspyder_stopping")


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


def _install_signal_handlers(scheduler: CrawlScheduler) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, scheduler.stop)
            installed.append(sig)
    return installed


def _remove_signal_handlers(installed: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for sig in installed:
        loop.remove_signal_handler(sig)


async def run(settings: Settings, *, verify_cache: bool = False) -> int:
    """Run every configured seed and print the summary. Returns the exit code."""
    seeds = _seed_urls(settings)

    started = time.perf_counter()
    async with lifespan(settings) as state:
        scheduler = CrawlScheduler(
            state.cache,
            settings=settings.crawler,
            output=state.output,
            stats=state.stats,
        )

        if verify_cache and settings.cache.enabled:
            entries_removed, files_removed = await state.cache.verify()
            log.info(
                "cache_verified",
                entries_removed=entries_removed,
                files_removed=files_removed,
            )

        installed = _install_signal_handlers(scheduler)
        try:
            results = await scheduler.crawl_seeds(seeds)
        finally:
            _remove_signal_handlers(installed)

    if results:
        summary = merge_results(results)
    else:
        # Stopped before the first seed finished, or every seed was invalid
        summary = CrawlResult(
            seed_url="",
            max_depth=settings.crawler.max_depth,
            visited=frozenset(),
            stats=state.stats.snapshot(),
            elapsed_seconds=time.perf_counter() - started,
            cancelled=scheduler.stopped,
        )
    print(format_summary(summary))

    if summary.cancelled or scheduler.stopped:
        return EXIT_CANCELLED
    if not results:
        log.error("no_valid_seeds", seeds=len(seeds))
        return EXIT_CONFIG_ERROR
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = Settings(**_cli_overrides(args))
    except ValidationError as exc:
        print(f"webspyder: invalid configuration\n{exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    _setup_logging(settings)

    try:
        validate_settings(settings)
    except WebSpyderError as exc:
        log.error("config_error", **exc.to_dict()["error"])
        return EXIT_CONFIG_ERROR

    try:
        return asyncio.run(run(settings, verify_cache=args.verify_cache))
    except KeyboardInterrupt:
        log.warning("crawl_interrupted")
        return EXIT_CANCELLED
