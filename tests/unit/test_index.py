"""Unit tests for webspyder.index."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import patch

from webspyder.index import BODY_SUFFIX, DEFAULT_INDEX_FILENAME, CacheIndex

if TYPE_CHECKING:
    from pathlib import Path


def _write_body(index: CacheIndex, url: str, body: str = "<html></html>") -> str:
    handle = index.allocate_handle()
    index.body_path(handle).write_text(body, encoding="utf-8")
    index.add(url, handle)
    return handle


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoad:
    def test_missing_file_is_empty(self, cache_dir: Path) -> None:
        index = CacheIndex.load(cache_dir)
        assert len(index) == 0
        assert cache_dir.is_dir()
        assert index.path == cache_dir / DEFAULT_INDEX_FILENAME

    def test_loads_existing_entries(self, cache_dir: Path) -> None:
        cache_dir.mkdir(parents=True)
        (cache_dir / DEFAULT_INDEX_FILENAME).write_text(
            json.dumps({"https://example.com/": "abc.html"}), encoding="utf-8"
        )
        index = CacheIndex.load(cache_dir)
        assert index.get("https://example.com/") == "abc.html"

    def test_corrupt_json_is_empty(self, cache_dir: Path) -> None:
        cache_dir.mkdir(parents=True)
        (cache_dir / DEFAULT_INDEX_FILENAME).write_text("{not json", encoding="utf-8")
        index = CacheIndex.load(cache_dir)
        assert len(index) == 0

    def test_wrong_shape_is_empty(self, cache_dir: Path) -> None:
        cache_dir.mkdir(parents=True)
        (cache_dir / DEFAULT_INDEX_FILENAME).write_text(
            json.dumps(["https://example.com/"]), encoding="utf-8"
        )
        assert len(CacheIndex.load(cache_dir)) == 0

    def test_custom_filename(self, cache_dir: Path) -> None:
        index = CacheIndex.load(cache_dir, "custom.json")
        assert index.path.name == "custom.json"


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


class TestEntries:
    def test_add_only(self, index: CacheIndex) -> None:
        assert index.add("https://example.com/", "a.html") is True
        assert index.add("https://example.com/", "b.html") is False
        assert index.get("https://example.com/") == "a.html"

    def test_remove(self, index: CacheIndex) -> None:
        index.add("https://example.com/", "a.html")
        assert index.remove("https://example.com/") == "a.html"
        assert "https://example.com/" not in index
        assert index.remove("https://example.com/") is None

    def test_entries_are_models(self, index: CacheIndex) -> None:
        index.add("https://example.com/", "a.html")
        [entry] = index.entries()
        assert entry.url == "https://example.com/"
        assert entry.handle == "a.html"

    def test_allocated_handles_are_unique(self, index: CacheIndex) -> None:
        handles = {index.allocate_handle() for _ in range(100)}
        assert len(handles) == 100
        assert all(h.endswith(BODY_SUFFIX) for h in handles)


# ---------------------------------------------------------------------------
# Save
# ---------------------------------------------------------------------------


class TestSave:
    def test_round_trip(self, cache_dir: Path) -> None:
        index = CacheIndex.load(cache_dir)
        index.add("https://example.com/", "a.html")
        index.add("https://example.com/b", "b.html")
        assert index.save() is True

        reloaded = CacheIndex.load(cache_dir)
        assert reloaded.snapshot() == index.snapshot()

    def test_no_temporary_files_left(self, cache_dir: Path) -> None:
        index = CacheIndex.load(cache_dir)
        index.add("https://example.com/", "a.html")
        index.save()
        index.add("https://example.com/b", "b.html")
        index.save()

        names = {p.name for p in cache_dir.iterdir()}
        assert names == {DEFAULT_INDEX_FILENAME}

    def test_failed_replace_keeps_previous_index(self, cache_dir: Path) -> None:
        index = CacheIndex.load(cache_dir)
        index.add("https://example.com/", "a.html")
        index.save()

        index.add("https://example.com/b", "b.html")
        with patch("webspyder.index.os.replace", side_effect=OSError("disk full")):
            assert index.save() is False

        reloaded = CacheIndex.load(cache_dir)
        assert reloaded.snapshot() == {"https://example.com/": "a.html"}
        assert not (cache_dir / (DEFAULT_INDEX_FILENAME + ".new")).exists()

    def test_verification_mismatch_aborts(self, cache_dir: Path) -> None:
        index = CacheIndex.load(cache_dir)
        index.add("https://example.com/", "a.html")
        with patch("webspyder.index.json.loads", return_value={}):
            assert index.save() is False
        assert not index.path.exists()


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


class TestSweep:
    def test_removes_dangling_entries(self, index: CacheIndex) -> None:
        _write_body(index, "https://example.com/kept")
        index.add("https://example.com/gone", "missing.html")

        entries_removed, files_removed = index.sweep()

        assert (entries_removed, files_removed) == (1, 0)
        assert "https://example.com/gone" not in index
        assert "https://example.com/kept" in index

    def test_deletes_orphan_files(self, index: CacheIndex, cache_dir: Path) -> None:
        handle = _write_body(index, "https://example.com/")
        (cache_dir / "orphan.html").write_text("stale", encoding="utf-8")

        assert index.sweep() == (0, 1)
        assert not (cache_dir / "orphan.html").exists()
        assert (cache_dir / handle).exists()

    def test_keeps_index_files(self, index: CacheIndex, cache_dir: Path) -> None:
        _write_body(index, "https://example.com/")
        index.save()
        (cache_dir / (DEFAULT_INDEX_FILENAME + ".bak")).write_text("{}", encoding="utf-8")

        index.sweep()

        assert index.path.exists()
        assert (cache_dir / (DEFAULT_INDEX_FILENAME + ".bak")).exists()

    def test_every_entry_resolves_after_sweep(self, index: CacheIndex) -> None:
        for i in range(5):
            _write_body(index, f"https://example.com/{i}")
        index.add("https://example.com/ghost", "ghost.html")
        index.body_path(index.get("https://example.com/2")).unlink()

        index.sweep()

        for _url, handle in index.snapshot().items():
            assert index.body_path(handle).is_file()
        assert len(index) == 4
