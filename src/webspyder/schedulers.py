"""Background coroutines that run alongside a crawl."""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from webspyder.protocols import PageCacheProtocol

log = structlog.get_logger()


def _jittered_delay(base_seconds: float) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


async def run_index_autosave(cache: PageCacheProtocol, interval_seconds: float) -> None:
    """Persist the cache index every ``interval_seconds`` until cancelled.

    An interval of 0 (or less) disables autosave and returns immediately.
    A failed save is logged and retried on the next tick.
    """
    if interval_seconds <= 0:
        log.debug("index_autosave_disabled")
        return

    while True:
        await asyncio.sleep(_jittered_delay(interval_seconds))
        try:
            saved = await cache.save_index()
        except Exception:
            log.warning("index_autosave_error", exc_info=True)
            continue
        if not saved:
            log.warning("index_autosave_failed")
