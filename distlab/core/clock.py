"""Time sources for protocol engines.

Engines never read the system clock directly. They ask an injected
``Clock`` for the current time in milliseconds, which keeps lease expiry
and heartbeat timing reproducible in tests::

    clock = ManualClock()
    lock = DistributedLockEngine(clock=clock)
    lock.request_lock("C0")
    clock.advance(4_000)
    lock.check_timeouts()
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Anything that can report the current time in milliseconds."""

    def now_ms(self) -> float:
        ...


class WallClock:
    """Reads the host's wall clock."""

    def now_ms(self) -> float:
        return time.time() * 1000.0

    def __repr__(self) -> str:
        return "WallClock()"


class ManualClock:
    """A clock that only moves when told to.

    Args:
        start_ms: Initial reading in milliseconds.
    """

    __slots__ = ("_now",)

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)

    def now_ms(self) -> float:
        return self._now

    def advance(self, ms: float) -> float:
        """Move the clock forward by ``ms`` and return the new reading."""
        if ms < 0:
            raise ValueError(f"cannot move a clock backwards (got {ms}ms)")
        self._now += ms
        return self._now

    def set(self, ms: float) -> None:
        """Jump to an absolute reading. Moving backwards is rejected."""
        if ms < self._now:
            raise ValueError(f"cannot move a clock backwards ({self._now} -> {ms})")
        self._now = float(ms)

    def __repr__(self) -> str:
        return f"ManualClock(now_ms={self._now})"
