"""Session-scoped record of URLs already dispatched for crawling."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class VisitedSet:
    """Concurrency-safe set with atomic test-and-insert.

    Only the caller that receives ``True`` from ``try_mark_visited`` may
    schedule a crawl for that URL.
    """

    def __init__(self) -> None:
        self._urls: set[str] = set()
        self._lock = threading.Lock()

    def try_mark_visited(self, url: str) -> bool:
        """Insert ``url`` if absent. Returns True iff this call inserted it."""
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._urls)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())
