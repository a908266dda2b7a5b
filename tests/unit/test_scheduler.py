"""Unit tests for the index autosave loop in schedulers.py."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from webspyder.schedulers import run_index_autosave


class TestIndexAutosave:
    async def test_zero_interval_disables(self) -> None:
        cache = AsyncMock()
        await run_index_autosave(cache, 0)
        cache.save_index.assert_not_awaited()

    async def test_saves_each_interval(self) -> None:
        cache = AsyncMock()
        cache.save_index.return_value = True
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) > 3:
                raise asyncio.CancelledError

        with (
            patch("asyncio.sleep", side_effect=fake_sleep),
            patch("webspyder.schedulers._jittered_delay", side_effect=float),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_index_autosave(cache, 60)

        assert sleep_durations == [60.0, 60.0, 60.0, 60.0]
        assert cache.save_index.await_count == 3

    async def test_failures_do_not_stop_loop(self) -> None:
        cache = AsyncMock()
        cache.save_index.side_effect = [RuntimeError("disk"), False, True]
        calls = 0

        async def fake_sleep(duration: float) -> None:
            nonlocal calls
            calls += 1
            if calls > 3:
                raise asyncio.CancelledError

        with (
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_index_autosave(cache, 5)

        assert cache.save_index.await_count == 3

    async def test_jitter_within_twenty_percent(self) -> None:
        from webspyder.schedulers import _jittered_delay

        for _ in range(100):
            assert 80 <= _jittered_delay(100) <= 120
