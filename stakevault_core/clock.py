"""
Clock collaborators for the staking vault.

The vault never reads wall-clock time directly; it asks a clock for the
current integer timestamp (seconds).  ``SystemClock`` is used by the
runner, ``ManualClock`` by tests and simulations that need exact control
over elapsed time.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Whole seconds since the epoch, never moving backwards."""

    def __init__(self) -> None:
        self._last = 0

    def now(self) -> int:
        current = int(time.time())
        if current < self._last:
            return self._last
        self._last = current
        return current


class ManualClock:
    """Deterministic clock advanced explicitly by the caller."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += int(seconds)
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = int(timestamp)

    def __repr__(self) -> str:
        return f"ManualClock(now={self._now})"
