"""Same-site / external partitioning of extracted links.

Pure and stateless: no network or disk I/O, and the same inputs always yield
the same ``LinkPartition``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from webspyder.models.crawl import LinkPartition
from webspyder.urls import is_base_of, is_http_url, normalize_url

if TYPE_CHECKING:
    from collections.abc import Iterable


def is_excluded(url: str, exclusions: Iterable[str]) -> bool:
    """True if any exclusion pattern occurs in ``url`` (case-insensitive)."""
    lowered = url.lower()
    return any(pattern and pattern.lower() in lowered for pattern in exclusions)


def classify(
    urls: Iterable[str],
    base_url: str,
    exclusions: Iterable[str] = (),
    *,
    strip_query: bool = False,
) -> LinkPartition:
    """Split ``urls`` into same-site and external links relative to ``base_url``.

    Invalid, non-http(s) and excluded URLs are dropped silently. Exclusions are
    matched against the raw URL so query-string patterns still apply when
    ``strip_query`` removes the query during normalization.
    """
    patterns = tuple(exclusions)
    same_site: set[str] = set()
    external: set[str] = set()
    dropped = 0

    for raw in set(urls):
        if not is_http_url(raw) or is_excluded(raw, patterns):
            dropped += 1
            continue

        url = normalize_url(raw, strip_query=strip_query)
        if is_base_of(base_url, url):
            same_site.add(url)
        else:
            external.add(url)

    # Raw spellings that normalize to the same URL collapse into one entry
    return LinkPartition(
        same_site=frozenset(same_site),
        external=frozenset(external),
        dropped=dropped,
    )


class LinkClassifier:
    """``classify`` bound to a fixed exclusion list and query policy."""

    def __init__(self, exclusions: Iterable[str] = (), *, strip_query: bool = False) -> None:
        self._exclusions = tuple(exclusions)
        self._strip_query = strip_query

    @property
    def exclusions(self) -> tuple[str, ...]:
        return self._exclusions

    def classify(self, urls: Iterable[str], base_url: str) -> LinkPartition:
        return classify(urls, base_url, self._exclusions, strip_query=self._strip_query)
