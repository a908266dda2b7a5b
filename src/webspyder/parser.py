"""HTML link extraction and tag search.

``extract_links`` turns a page body into the set of absolute URLs its anchors
point at. Relative hrefs are resolved against the page URL, or against the
document's ``<base href>`` when one is present. Fragments are dropped and
non-navigational schemes are skipped; scheme and scope filtering beyond that
is the classifier's job.
"""

from __future__ import annotations

from contextlib import suppress
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup

_SKIPPED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:")


def _soup(body: str) -> BeautifulSoup:
    return BeautifulSoup(body, "html.parser")


def extract_links(body: str, base_url: str) -> set[str]:
    """Return absolute URLs for every ``<a href>`` in ``body``."""
    if not body:
        return set()

    soup = _soup(body)

    base_tag = soup.find("base", href=True)
    if base_tag is not None:
        with suppress(ValueError):
            base_url = urljoin(base_url, base_tag["href"].strip())

    links: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#") or href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        try:
            absolute, _fragment = urldefrag(urljoin(base_url, href))
        except ValueError:
            # Malformed hrefs (e.g. an unclosed IPv6 bracket) are dropped
            continue
        if absolute:
            links.add(absolute)
    return links


def page_has_tag(body: str, tag: str) -> bool:
    """True if ``body`` contains at least one ``<tag>`` element."""
    if not body or not tag:
        return False
    return _soup(body).find(tag.lower()) is not None
