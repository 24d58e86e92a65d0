"""Caller-driven deferred tasks.

Engines never start timers of their own. Work that should happen
"later" (auto-delivery of in-flight messages, background replication,
anti-entropy after recovery) is pushed onto a ``Scheduler`` and only runs
when the caller drives it with ``run_due()`` or ``run_all()``.

Tasks are cancellable; ``cancel_all()`` is what ``reset()`` uses so that
nothing scheduled against old state fires against fresh state.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from distlab.core.clock import Clock

logger = logging.getLogger(__name__)


@dataclass(order=True)
class ScheduledTask:
    """A single deferred callback.

    Ordered by ``(due_ms, seq)`` so ties run in scheduling order.
    """

    due_ms: float
    seq: int
    callback: Callable[[], object] = field(compare=False)
    description: str = field(default="", compare=False)
    cancelled: bool = field(default=False, compare=False)
    done: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.done)


class Scheduler:
    """Min-heap of ``ScheduledTask`` keyed on due time.

    Args:
        clock: Time source used to stamp due times and decide what is due.
    """

    def __init__(self, clock: Clock):
        self._clock = clock
        self._heap: list[ScheduledTask] = []
        self._seq = 0

    def schedule(self, delay_ms: float, callback: Callable[[], object], description: str = "") -> ScheduledTask:
        task = ScheduledTask(
            due_ms=self._clock.now_ms() + max(0.0, delay_ms),
            seq=self._seq,
            callback=callback,
            description=description,
        )
        self._seq += 1
        heapq.heappush(self._heap, task)
        logger.debug("Scheduled %r at %.1fms", description or task.seq, task.due_ms)
        return task

    def run_due(self) -> int:
        """Run every task whose due time has passed. Returns the number run."""
        now = self._clock.now_ms()
        ran = 0
        while self._heap and self._heap[0].due_ms <= now:
            ran += self._run(heapq.heappop(self._heap))
        return ran

    def run_all(self, limit: int = 10_000) -> int:
        """Run every pending task regardless of due time.

        Tasks scheduled by callbacks are run too, up to ``limit`` tasks.
        """
        ran = 0
        while self._heap and ran < limit:
            ran += self._run(heapq.heappop(self._heap))
        return ran

    def cancel_all(self) -> int:
        cancelled = 0
        for task in self._heap:
            if task.pending:
                task.cancel()
                cancelled += 1
        self._heap.clear()
        return cancelled

    @property
    def pending(self) -> int:
        return sum(1 for t in self._heap if t.pending)

    @property
    def next_due_ms(self) -> float | None:
        live = [t.due_ms for t in self._heap if t.pending]
        return min(live) if live else None

    def _run(self, task: ScheduledTask) -> int:
        if not task.pending:
            return 0
        task.done = True
        task.callback()
        return 1

    def __len__(self) -> int:
        return self.pending
