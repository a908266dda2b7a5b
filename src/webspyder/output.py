"""Session-wide URL collections written out as plain-text audit files.

One aggregator is constructed per crawl session and passed to the cache and
the scheduler. Each collection is add-only and deduplicating. ``flush`` appends
every non-empty collection to its own file, one URL per line.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from webspyder.config import OutputSettings

if TYPE_CHECKING:
    from collections.abc import Iterable

log = structlog.get_logger()


class OutputAggregator:
    def __init__(self, settings: OutputSettings | None = None) -> None:
        self._settings = settings or OutputSettings()
        self._lock = threading.Lock()
        self._urls_scraped: set[str] = set()
        self._external_links: set[str] = set()
        self._seed_links: set[str] = set()
        self._failed_urls: set[str] = set()
        self._tag_search_hits: set[str] = set()

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def _add(self, target: set[str], urls: Iterable[str]) -> int:
        """Add ``urls`` to ``target``; return how many were new."""
        with self._lock:
            before = len(target)
            target.update(urls)
            return len(target) - before

    def add_scraped(self, urls: Iterable[str]) -> int:
        return self._add(self._urls_scraped, urls)

    def add_external(self, urls: Iterable[str]) -> int:
        return self._add(self._external_links, urls)

    def add_seed(self, urls: Iterable[str]) -> int:
        return self._add(self._seed_links, urls)

    def add_failed(self, url: str) -> bool:
        return self._add(self._failed_urls, (url,)) == 1

    def add_tag_hit(self, url: str) -> bool:
        return self._add(self._tag_search_hits, (url,)) == 1

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def _read(self, source: set[str]) -> frozenset[str]:
        with self._lock:
            return frozenset(source)

    @property
    def urls_scraped(self) -> frozenset[str]:
        return self._read(self._urls_scraped)

    @property
    def external_links(self) -> frozenset[str]:
        return self._read(self._external_links)

    @property
    def seed_links(self) -> frozenset[str]:
        return self._read(self._seed_links)

    @property
    def failed_urls(self) -> frozenset[str]:
        return self._read(self._failed_urls)

    @property
    def tag_search_hits(self) -> frozenset[str]:
        return self._read(self._tag_search_hits)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def flush(self, directory: str | Path | None = None) -> list[Path]:
        """Append each non-empty collection to its audit file.

        Returns the paths written. Write failures are logged per file and do
        not stop the remaining files from being written.
        """
        out_dir = Path(directory or self._settings.directory).expanduser()
        targets = [
            (self.urls_scraped, self._settings.all_urls_filename),
            (self.external_links, self._settings.external_links_filename),
            (self.seed_links, self._settings.seed_links_filename),
            (self.failed_urls, self._settings.failed_urls_filename),
            (self.tag_search_hits, self._settings.tag_search_filename),
        ]

        written: list[Path] = []
        for urls, filename in targets:
            if not urls:
                continue
            path = out_dir / filename
            try:
                out_dir.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as file_obj:
                    for url in sorted(urls):
                        file_obj.write(url + "\n")
            except OSError:
                log.warning("output_write_failed", path=str(path), exc_info=True)
                continue
            written.append(path)

        log.info("output_flushed", directory=str(out_dir), files=len(written))
        return written
