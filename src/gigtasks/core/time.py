# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.core.time
==================

Clock abstractions:
- Clock Protocol for dependency-injection and testing.
- SystemClock: production default implementation.
- ManualClock: deterministic time control for tests.
"""

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol

from .types import Millis, TimestampMs


class Clock(Protocol):
    """Minimal clock protocol used by the outbox and follow-up loops."""

    def now_dt(self) -> datetime: ...
    def now_ms(self) -> TimestampMs: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Default clock backed by system time."""

    def now_dt(self) -> datetime:
        return datetime.now(UTC)

    def now_ms(self) -> TimestampMs:
        return time.time_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    Wall time starts at `start_ms` and advances only through `advance()` or `sleep_ms()`.
    """

    def __init__(self, start_ms: Millis = 1_700_000_000_000) -> None:
        self._wall: Millis = start_ms

    def now_dt(self) -> datetime:
        return datetime.fromtimestamp(self._wall / 1000.0, tz=UTC)

    def now_ms(self) -> TimestampMs:
        return self._wall

    def advance(self, ms: Millis) -> None:
        self._wall += max(0, int(ms))

    async def sleep_ms(self, ms: Millis) -> None:
        # Fast-forward instead of sleeping; yield once so other tasks can run.
        self.advance(ms)
        await asyncio.sleep(0)
