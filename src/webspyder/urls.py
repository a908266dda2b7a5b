"""URL helpers shared by the classifier, the cache and the scheduler.

Canonical form used for cache keys and visited tracking:
- scheme and host lowercased, default ports dropped
- empty path becomes ``/``
- fragment always stripped
- query kept unless ``strip_query`` is set
"""

from __future__ import annotations

from urllib.parse import SplitResult, urlsplit, urlunsplit

_HTTP_SCHEMES = frozenset({"http", "https"})
_DEFAULT_PORTS = {"http": 80, "https": 443}


def _split(url: str) -> SplitResult | None:
    try:
        parts = urlsplit(url.strip())
        # Accessing .port validates it; bad ports raise ValueError
        _ = parts.port
    except ValueError:
        return None
    return parts


def is_http_url(url: str) -> bool:
    """True for absolute http/https URLs with a host."""
    if not url:
        return False
    parts = _split(url)
    if parts is None:
        return False
    return parts.scheme.lower() in _HTTP_SCHEMES and bool(parts.hostname)


def _authority(parts: SplitResult) -> tuple[str, str, int | None]:
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port if parts.port is not None else _DEFAULT_PORTS.get(scheme)
    return scheme, host, port


def normalize_url(url: str, *, strip_query: bool = False) -> str:
    """Return the canonical form of an absolute URL.

    Raises ValueError when ``url`` is not an absolute http(s) URL.
    """
    parts = _split(url)
    if parts is None or not is_http_url(url):
        raise ValueError(f"Not an absolute http(s) URL: {url!r}")

    scheme, host, port = _authority(parts)
    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    netloc = host if port == _DEFAULT_PORTS[scheme] else f"{host}:{port}"

    userinfo, sep, _ = parts.netloc.rpartition("@")
    if sep:
        netloc = f"{userinfo}@{netloc}"

    query = "" if strip_query else parts.query
    return urlunsplit((scheme, netloc, parts.path or "/", query, ""))


def is_base_of(base_url: str, url: str) -> bool:
    """Return True if ``base_url`` is a prefix base of ``url``.

    Both must share scheme and authority, and the path of ``url`` must sit
    under the directory part of the base path (everything up to and
    including its last ``/``).
    """
    base = _split(base_url)
    target = _split(url)
    if base is None or target is None:
        return False
    if _authority(base) != _authority(target):
        return False

    base_path = base.path or "/"
    base_dir = base_path[: base_path.rfind("/") + 1]
    return (target.path or "/").startswith(base_dir)
