"""Unit tests for argument handling, startup failures and the summary in webspyder.cli."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import structlog

from webspyder.cli import (
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    _build_parser,
    _cli_overrides,
    _seed_urls,
    _setup_logging,
    lifespan,
    main,
)
from webspyder.config import Settings
from webspyder.crawler import CrawlScheduler

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from webspyder.models.crawl import CrawlResult


@pytest.fixture(autouse=True)
def _keep_default_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    # Configured loggers are cached against the stderr of the test that set them up
    monkeypatch.setattr("webspyder.cli._setup_logging", lambda settings: None)


def _overrides(*argv: str) -> dict:
    return _cli_overrides(_build_parser().parse_args(list(argv)))


class TestCliOverrides:
    def test_no_flags_no_overrides(self) -> None:
        assert _overrides() == {}

    def test_crawler_flags(self) -> None:
        assert _overrides(
            "--url", "https://example.com/", "--depth", "3", "--concurrency", "8",
            "--follow-external",
        ) == {
            "crawler": {
                "starting_url": "https://example.com/",
                "max_depth": 3,
                "max_concurrent_crawlers": 8,
                "follow_external_links": True,
            }
        }

    def test_search_tag_enables_tag_search(self) -> None:
        assert _overrides("--search-tag", "audio")["crawler"] == {
            "enable_tag_search": True,
            "tag_to_search_for": "audio",
        }

    def test_cache_and_output_flags(self) -> None:
        assert _overrides("--cache-dir", "/tmp/c", "--no-cache", "--output-dir", "/tmp/o") == {
            "cache": {"location": "/tmp/c", "enabled": False},
            "output": {"directory": "/tmp/o"},
        }

    def test_overrides_layer_onto_settings(self) -> None:
        settings = Settings(**_overrides("--depth", "4"))
        assert settings.crawler.max_depth == 4
        assert settings.crawler.max_concurrent_crawlers == 5


class TestSeedUrls:
    def test_url_then_file(self, tmp_path: Path) -> None:
        seeds = tmp_path / "seeds.txt"
        seeds.write_text("https://b.example/\n", encoding="utf-8")
        settings = Settings(
            crawler={"starting_url": "https://a.example/", "input_file": str(seeds)}
        )
        assert _seed_urls(settings) == ["https://a.example/", "https://b.example/"]


class TestMainStartupErrors:
    def test_missing_url_is_config_error(self, tmp_path: Path) -> None:
        code = main(["--cache-dir", str(tmp_path / "c"), "--output-dir", str(tmp_path / "o")])
        assert code == EXIT_CONFIG_ERROR

    def test_invalid_url_is_config_error(self, tmp_path: Path) -> None:
        code = main(
            [
                "--url", "example.com",
                "--cache-dir", str(tmp_path / "c"),
                "--output-dir", str(tmp_path / "o"),
            ]
        )
        assert code == EXIT_CONFIG_ERROR

    def test_out_of_range_value_is_config_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--url", "https://example.com/", "--depth", "0"]) == EXIT_CONFIG_ERROR
        assert "invalid configuration" in capsys.readouterr().err


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def _reset_structlog(self) -> Iterator[None]:
        yield
        structlog.reset_defaults()

    @pytest.mark.parametrize("fmt", ["json", "text"])
    def test_configures_structlog(self, fmt: str) -> None:
        _setup_logging(Settings(logging={"level": "WARNING", "format": fmt}))

        config = structlog.get_config()
        assert structlog.is_configured()
        assert config["cache_logger_on_first_use"] is True
        renderer = config["processors"][-1]
        if fmt == "json":
            assert isinstance(renderer, structlog.processors.JSONRenderer)
        else:
            assert isinstance(renderer, structlog.dev.ConsoleRenderer)


class TestRunSummary:
    def _args(self, tmp_path: Path, *extra: str) -> list[str]:
        return [
            "--cache-dir", str(tmp_path / "c"),
            "--output-dir", str(tmp_path / "o"),
            *extra,
        ]

    def test_summary_printed_when_no_seed_is_valid(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        seeds = tmp_path / "seeds.txt"
        seeds.write_text("not-a-url\nftp://example.com/\n", encoding="utf-8")

        code = main(self._args(tmp_path, "--input-file", str(seeds)))

        assert code == EXIT_CONFIG_ERROR
        stdout = capsys.readouterr().out
        assert "Crawl Summary" in stdout
        assert "cancelled" not in stdout

    def test_summary_printed_when_stopped_before_first_seed(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        async def stopped_immediately(
            self: CrawlScheduler, seeds: object, **kwargs: object
        ) -> list[CrawlResult]:
            self.stop()
            return []

        monkeypatch.setattr(CrawlScheduler, "crawl_seeds", stopped_immediately)

        code = main(self._args(tmp_path, "--url", "https://example.com/"))

        assert code == EXIT_CANCELLED
        stdout = capsys.readouterr().out
        assert "Crawl Summary" in stdout
        assert "Pages Crawled:" in stdout
        assert "cancelled" in stdout


class TestLifespan:
    async def test_state_fully_built(self, tmp_path: Path) -> None:
        settings = Settings(
            crawler={"starting_url": "https://example.com/"},
            cache={"location": str(tmp_path / "c"), "autosave_interval_seconds": 0},
            output={"directory": str(tmp_path / "o")},
        )
        async with lifespan(settings) as state:
            assert state.cache.stats is state.stats
            assert state.cache.index is state.index
            assert state.settings is settings
            client = state.http_client
        assert client.is_closed
