"""On-disk URL → cache-file index.

The index is a JSON object mapping normalized URLs to body file names inside
the cache directory. Entries are add-only; the only removal path is the
consistency sweep, which drops entries whose file is gone and deletes files
no entry points at.

All methods here are synchronous and touch the filesystem directly. The page
cache runs ``save`` and ``sweep`` in a worker thread while holding its
exclusive gate, so they never interleave with ordinary get/set traffic.

Save protocol (crash-safe):
  1. write ``<index>.new`` and fsync it
  2. read it back and compare with the in-memory snapshot
  3. copy the current ``<index>`` to ``<index>.bak``
  4. ``os.replace`` the new file over the original and fsync the directory
  5. remove ``<index>.bak``
A crash at any step leaves either the previous good index or the new one.
"""

from __future__ import annotations

import json
import os
import shutil
import sys
import threading
import uuid
from contextlib import suppress
from typing import TYPE_CHECKING

import structlog

from webspyder.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

log = structlog.get_logger()

DEFAULT_INDEX_FILENAME = "webspyder_cache_index.json"
BODY_SUFFIX = ".html"


class CacheIndex:
    """In-memory URL → handle map backed by a JSON file."""

    def __init__(
        self,
        directory: Path,
        filename: str = DEFAULT_INDEX_FILENAME,
        entries: dict[str, str] | None = None,
    ) -> None:
        self.directory = directory
        self.path = directory / filename
        self._entries: dict[str, str] = dict(entries or {})
        self._lock = threading.Lock()
        # Serializes save and sweep even if an awaiting coroutine was cancelled
        self._io_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, directory: Path, filename: str = DEFAULT_INDEX_FILENAME) -> CacheIndex:
        """Load the index from ``directory/filename``.

        A missing file is a cold start. A malformed file is logged and also
        treated as a cold start; crawling continues with an empty index.
        """
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        if not path.is_file():
            log.info("cache_index_missing", path=str(path))
            return cls(directory, filename)

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in raw.items()
            ):
                raise ValueError("cache index must be a JSON object of string → string")
        except (OSError, ValueError):
            log.warning("cache_index_corrupt", path=str(path), exc_info=True)
            return cls(directory, filename)

        log.info("cache_index_loaded", path=str(path), entries=len(raw))
        return cls(directory, filename, raw)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get(self, url: str) -> str | None:
        with self._lock:
            return self._entries.get(url)

    def add(self, url: str, handle: str) -> bool:
        """Insert ``url → handle`` if ``url`` is absent. Returns True if inserted."""
        with self._lock:
            if url in self._entries:
                return False
            self._entries[url] = handle
            return True

    def remove(self, url: str) -> str | None:
        with self._lock:
            return self._entries.pop(url, None)

    def entries(self) -> list[CacheEntry]:
        return [CacheEntry(url=url, handle=handle) for url, handle in self.snapshot().items()]

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def body_path(self, handle: str) -> Path:
        return self.directory / handle

    def allocate_handle(self) -> str:
        """Return a fresh file name that does not exist in the cache directory."""
        while True:
            handle = uuid.uuid4().hex + BODY_SUFFIX
            if not self.body_path(handle).exists():
                return handle

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def _new_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + ".new")

    @property
    def _backup_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + ".bak")

    def save(self) -> bool:
        """Persist the index with atomic replace semantics.

        Returns True on success. Failures are logged and leave the previous
        index file untouched.
        """
        with self._io_lock:
            return self._save()

    def _save(self) -> bool:
        snapshot = self.snapshot()
        payload = json.dumps(snapshot, indent=2, ensure_ascii=False, sort_keys=True)
        new_path = self._new_path
        backup_path = self._backup_path

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            _write_text_fsync(new_path, payload)

            if json.loads(new_path.read_text(encoding="utf-8")) != snapshot:
                raise ValueError("cache index verification failed after write")

            if self.path.exists():
                shutil.copy2(self.path, backup_path)
            os.replace(new_path, self.path)
            _fsync_directory(self.directory)
            backup_path.unlink(missing_ok=True)
        except (OSError, ValueError):
            log.warning("cache_index_save_failed", path=str(self.path), exc_info=True)
            return False
        finally:
            with suppress(OSError):
                new_path.unlink(missing_ok=True)

        log.info("cache_index_saved", path=str(self.path), entries=len(snapshot))
        return True

    # ------------------------------------------------------------------
    # Consistency sweep
    # ------------------------------------------------------------------

    def sweep(self) -> tuple[int, int]:
        """Drop dangling entries and delete orphan files.

        Returns ``(entries_removed, files_removed)``. The index file and its
        ``.new`` / ``.bak`` companions are never treated as orphans.
        """
        with self._io_lock:
            return self._sweep()

    def _sweep(self) -> tuple[int, int]:
        entries_removed = 0
        files_removed = 0

        for url, handle in self.snapshot().items():
            if not self.body_path(handle).is_file():
                self.remove(url)
                entries_removed += 1
                log.debug("cache_sweep_dangling_entry", url=url, handle=handle)

        referenced = set(self.snapshot().values())
        reserved = {self.path.name, self._new_path.name, self._backup_path.name}

        try:
            candidates = [p for p in self.directory.iterdir() if p.is_file()]
        except OSError:
            log.warning("cache_sweep_list_failed", directory=str(self.directory), exc_info=True)
            candidates = []

        for file_path in candidates:
            if file_path.name in referenced or file_path.name in reserved:
                continue
            try:
                file_path.unlink()
                files_removed += 1
                log.debug("cache_sweep_orphan_file", path=str(file_path))
            except OSError:
                log.warning("cache_sweep_delete_failed", path=str(file_path), exc_info=True)

        log.info(
            "cache_sweep_complete",
            entries_removed=entries_removed,
            files_removed=files_removed,
        )
        return entries_removed, files_removed


def _write_text_fsync(path: Path, text: str) -> None:
    with path.open("w", encoding="utf-8") as file_obj:
        file_obj.write(text)
        file_obj.flush()
        os.fsync(file_obj.fileno())


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)
