"""Plain-text end-of-session summary printed by the CLI."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from webspyder.models.crawl import CrawlResult

_BOX_WIDTH = 44


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours:02d}:{minutes:02d}:{secs:06.3f}"


def format_summary(result: CrawlResult) -> str:
    """Render the session counters as a fixed-width box."""
    stats = result.stats
    rows = [
        ("Urls Captured", str(stats.seed_links + stats.external_links)),
        ("Pages Crawled", str(stats.pages_crawled)),
        ("Failed Urls", str(stats.failed_fetches)),
        ("Cache Hits", str(stats.cache_hits)),
        ("Cache Misses", str(stats.cache_misses)),
        ("Tag Search Hits", str(stats.tag_search_hits)),
        ("Elapsed Time", _format_elapsed(result.elapsed_seconds)),
    ]
    if result.cancelled:
        rows.append(("Status", "cancelled"))

    inner = _BOX_WIDTH - 4
    border = "+" + "-" * (_BOX_WIDTH - 2) + "+"
    lines = [border, "| " + "Crawl Summary".center(inner) + " |", border]
    for label, value in rows:
        lines.append("| " + f"{label + ':':<18}{value:>{inner - 18}}" + " |")
    lines.append(border)
    return "\n".join(lines)


def merge_results(results: Sequence[CrawlResult]) -> CrawlResult:
    """Fold sequential crawls that shared one session into a single result.

    Stats snapshots are cumulative across the session, so the last one wins.
    """
    if not results:
        raise ValueError("merge_results needs at least one result")
    last = results[-1]
    return dataclasses.replace(
        last,
        visited=frozenset().union(*(r.visited for r in results)),
        elapsed_seconds=sum(r.elapsed_seconds for r in results),
        cancelled=any(r.cancelled for r in results),
    )
