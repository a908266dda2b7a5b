"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments  (CLI overrides)
  2. Environment variables  (WEBSPYDER__CRAWLER__MAX_DEPTH=3)
  3. webspyder.yaml         (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The config file is optional, but a crawl needs either a starting URL or an
input file; ``validate_settings`` enforces that before anything runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from webspyder.errors import ErrorCode, WebSpyderError
from webspyder.urls import is_http_url

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("webspyder")
_DEFAULT_CACHE_DIR = str(Path(platformdirs.user_cache_dir("webspyder")) / "pages")


def _find_config_file() -> str | None:
    """Return the path of the first webspyder.yaml found, or None."""
    candidates = [
        Path("webspyder.yaml"),
        Path(platformdirs.user_config_dir("webspyder")) / "webspyder.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CrawlerSettings(BaseModel):
    starting_url: str = ""
    max_depth: int = Field(default=2, ge=1)
    follow_external_links: bool = False
    link_pattern_exclusions: list[str] = ["?id=", "file://", "mailto:", "?cb="]
    max_concurrent_crawlers: int = Field(default=5, ge=1)
    strip_query: bool = False
    enable_tag_search: bool = False
    tag_to_search_for: str = "video"
    input_file: str | None = None  # One seed URL per line


class CacheSettings(BaseModel):
    enabled: bool = True
    location: str = _DEFAULT_CACHE_DIR
    index_filename: str = "webspyder_cache_index.json"
    max_redirect_hops: int = Field(default=5, ge=0)
    min_body_length: int = Field(default=0, ge=0)
    autosave_interval_seconds: int = Field(default=300, ge=0)  # 0 disables autosave


class FetcherSettings(BaseModel):
    timeout_seconds: float = 30.0
    user_agent: str = "webspyder/1.0"
    max_connections: int = 10
    retry_attempts: int = Field(default=3, ge=0)
    backoff_factor: float = 1.0
    max_jitter_seconds: float = 1.0
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_seconds: float = 60.0


class OutputSettings(BaseModel):
    directory: str = _DEFAULT_DATA_DIR
    all_urls_filename: str = "AllUrlsCaptured.txt"
    external_links_filename: str = "CapturedExternalLinks.txt"
    seed_links_filename: str = "CapturedSeedUrls.txt"
    failed_urls_filename: str = "FailedCrawlerUrls.txt"
    tag_search_filename: str = "PositiveTagSearchResults.txt"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: WEBSPYDER__CACHE__ENABLED=false
        env_prefix="WEBSPYDER__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    crawler: CrawlerSettings = CrawlerSettings()
    cache: CacheSettings = CacheSettings()
    fetcher: FetcherSettings = FetcherSettings()
    output: OutputSettings = OutputSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )


def validate_settings(settings: Settings) -> None:
    """Fail fast on configuration that would make the crawl undefined.

    Creates the cache and output directories as a side effect. Raises
    WebSpyderError(INVALID_CONFIG) on the first problem found.
    """
    crawler = settings.crawler

    if not crawler.starting_url and not crawler.input_file:
        raise WebSpyderError(
            code=ErrorCode.INVALID_CONFIG,
            message="No starting URL configured",
            suggestion="Set crawler.starting_url, pass --url, or provide crawler.input_file.",
        )

    if crawler.starting_url and not is_http_url(crawler.starting_url):
        raise WebSpyderError(
            code=ErrorCode.INVALID_CONFIG,
            message=f"Starting URL is not an absolute http(s) URL: {crawler.starting_url!r}",
            suggestion="Use a full URL such as https://example.com/.",
        )

    if crawler.input_file and not Path(crawler.input_file).expanduser().is_file():
        raise WebSpyderError(
            code=ErrorCode.INVALID_CONFIG,
            message=f"Input file does not exist: {crawler.input_file}",
            suggestion="Check crawler.input_file points at a readable text file.",
        )

    for label, directory in (
        ("cache.location", settings.cache.location),
        ("output.directory", settings.output.directory),
    ):
        try:
            Path(directory).expanduser().mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WebSpyderError(
                code=ErrorCode.INVALID_CONFIG,
                message=f"Cannot create {label} directory {directory!r}: {exc}",
                suggestion=f"Point {label} at a writable location.",
            ) from exc
