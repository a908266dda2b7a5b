"""Integration test fixtures.

``mock_site`` serves a small website through respx so the real Fetcher,
PageCache, CrawlScheduler and CLI run end to end without a network:

    /           → /a, /b, /a?id=5 (excluded), https://other.org/
    /a          → /c, /
    /b          → 500
    /c          → 301 to /d
    /d          → page containing a <video> tag
    other.org   → page (only fetched when following external links)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import respx

from tests.conftest import html_page

if TYPE_CHECKING:
    from collections.abc import Iterator

SITE = "https://example.com"


@pytest.fixture()
def mock_site() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as router:
        router.get(f"{SITE}/", name="root").mock(
            return_value=httpx.Response(
                200, html=html_page("/a", "/b", "/a?id=5", "https://other.org/")
            )
        )
        router.get(f"{SITE}/a", name="a").mock(
            return_value=httpx.Response(200, html=html_page("/c", "/"))
        )
        router.get(f"{SITE}/b", name="b").mock(return_value=httpx.Response(500))
        router.get(f"{SITE}/c", name="c").mock(
            return_value=httpx.Response(301, headers={"location": "/d"})
        )
        router.get(f"{SITE}/d", name="d").mock(
            return_value=httpx.Response(200, html=html_page(extra="<video src='v.mp4'></video>"))
        )
        router.get("https://other.org/", name="other").mock(
            return_value=httpx.Response(200, html=html_page())
        )
        router.route(name="fallback").mock(return_value=httpx.Response(404))
        yield router
