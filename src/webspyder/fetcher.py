"""HTTP page fetcher with retry, backoff and per-host circuit breaking.

All network I/O for a crawl goes through a single Fetcher instance. The
Fetcher receives an httpx.AsyncClient via constructor injection; the CLI
lifespan owns the client lifecycle.

Redirects are not followed here. A 3xx response comes back as a REDIRECT
result carrying the absolute target, and the page cache decides whether to
follow it (bounded hop count).
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlsplit

import httpx
import structlog

from webspyder.config import FetcherSettings
from webspyder.models.fetch import FetchResult, FetchStatus

if TYPE_CHECKING:
    from collections.abc import Callable

log = structlog.get_logger()

_TRANSIENT_STATUS_CODES = frozenset({408, 429})


def build_http_client(settings: FetcherSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    settings = settings or FetcherSettings()
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=max(1, settings.max_connections // 2),
        ),
    )


def _is_transient(result: FetchResult) -> bool:
    if result.status in (FetchStatus.NETWORK_ERROR, FetchStatus.SERVER_ERROR):
        return True
    return result.status_code in _TRANSIENT_STATUS_CODES


def _backoff_delay(attempt: int, factor: float, max_jitter: float) -> float:
    """Exponential backoff (2, 4, 8 … seconds times factor) plus jitter."""
    return factor * (2**attempt) + random.uniform(0, max_jitter)


def _classify_response(url: str, response: httpx.Response) -> FetchResult:
    code = response.status_code

    if httpx.codes.is_redirect(code):
        location = response.headers.get("location")
        if location:
            return FetchResult(
                url=url,
                status=FetchStatus.REDIRECT,
                redirect_to=urljoin(url, location),
                status_code=code,
            )
        return FetchResult(
            url=url,
            status=FetchStatus.CLIENT_ERROR,
            status_code=code,
            error=f"HTTP {code} without Location header",
        )

    if response.is_success:
        return FetchResult(
            url=url, status=FetchStatus.SUCCESS, body=response.text, status_code=code
        )

    if code == 401:
        status = FetchStatus.UNAUTHORIZED
    elif code == 403:
        status = FetchStatus.FORBIDDEN
    elif code >= 500:
        status = FetchStatus.SERVER_ERROR
    else:
        status = FetchStatus.CLIENT_ERROR
    return FetchResult(
        url=url, status=status, status_code=code, error=f"HTTP {code} fetching {url}"
    )


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    closed → open after ``failure_threshold`` consecutive transient failures;
    open → half-open once ``reset_seconds`` have passed (one trial call is let
    through); a success closes it, a failure re-opens it.
    """

    def __init__(
        self,
        failure_threshold: int,
        reset_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return "closed"
        if self._clock() - self._opened_at >= self._reset_seconds:
            return "half_open"
        return "open"

    def allow_request(self) -> bool:
        return self.state != "open"

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        if self.state == "half_open":
            self._opened_at = self._clock()
            return
        self._failures += 1
        if self._failures >= self._failure_threshold:
            self._opened_at = self._clock()


class Fetcher:
    """HTTP fetcher implementing FetcherProtocol. Never raises for HTTP errors."""

    def __init__(self, client: httpx.AsyncClient, settings: FetcherSettings | None = None) -> None:
        self._client = client
        self._settings = settings or FetcherSettings()
        self._breakers: dict[str, CircuitBreaker] = {}

    def _breaker_for(self, url: str) -> CircuitBreaker:
        host = (urlsplit(url).hostname or "").lower()
        breaker = self._breakers.get(host)
        if breaker is None:
            breaker = CircuitBreaker(
                self._settings.circuit_failure_threshold,
                self._settings.circuit_reset_seconds,
            )
            self._breakers[host] = breaker
        return breaker

    async def fetch(self, url: str) -> FetchResult:
        """Fetch ``url`` once logically, retrying transient failures.

        Returns a FetchResult in every non-cancellation case.
        """
        breaker = self._breaker_for(url)
        if not breaker.allow_request():
            log.warning("fetch_circuit_open", url=url)
            return FetchResult(
                url=url,
                status=FetchStatus.NETWORK_ERROR,
                error=f"Circuit open for host of {url}",
            )

        result = await self._fetch_with_retry(url)

        if _is_transient(result):
            breaker.record_failure()
            if not breaker.allow_request():
                log.warning(
                    "fetch_circuit_opened",
                    url=url,
                    reset_seconds=self._settings.circuit_reset_seconds,
                )
        else:
            breaker.record_success()
        return result

    async def _fetch_with_retry(self, url: str) -> FetchResult:
        max_attempts = self._settings.retry_attempts + 1
        for attempt in range(1, max_attempts + 1):
            result = await self._fetch_once(url)
            if not _is_transient(result) or attempt == max_attempts:
                break

            delay = _backoff_delay(
                attempt, self._settings.backoff_factor, self._settings.max_jitter_seconds
            )
            log.warning(
                "fetch_retry",
                url=url,
                attempt=attempt,
                status=result.status,
                status_code=result.status_code,
                delay_seconds=round(delay, 2),
            )
            await asyncio.sleep(delay)

        if result.ok:
            log.debug(
                "fetch_complete",
                url=url,
                status_code=result.status_code,
                content_length=len(result.body),
            )
        return result

    async def _fetch_once(self, url: str) -> FetchResult:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            return FetchResult(
                url=url,
                status=FetchStatus.NETWORK_ERROR,
                error=f"Network error fetching {url}: {exc}",
            )
        return _classify_response(url, response)
