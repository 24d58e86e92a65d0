"""Audit trail of protocol activity.

Every state-changing engine operation appends exactly one
``SimulationEvent``. The log is write-only from the protocol's point of
view; it exists for observers (renderers, tests, notebooks).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pandas as pd

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass(frozen=True)
class SimulationEvent:
    """One audit entry.

    Attributes:
        id: Position in the log, starting at 0.
        timestamp: Engine clock reading in milliseconds.
        type: Short snake_case tag, e.g. ``"vote_granted"``.
        description: Human-readable sentence.
        data: Free-form structured details.
    """

    id: int
    timestamp: float
    type: str
    description: str
    data: dict[str, Any] = field(default_factory=dict)


class EventLog:
    """Ordered, append-only list of ``SimulationEvent``."""

    def __init__(self):
        self._events: list[SimulationEvent] = []

    def record(self, type: str, description: str, timestamp: float, **data: Any) -> SimulationEvent:
        event = SimulationEvent(
            id=len(self._events),
            timestamp=timestamp,
            type=type,
            description=description,
            data=data,
        )
        self._events.append(event)
        return event

    def of_type(self, type: str) -> list[SimulationEvent]:
        return [e for e in self._events if e.type == type]

    def types(self) -> list[str]:
        return [e.type for e in self._events]

    @property
    def last(self) -> SimulationEvent | None:
        return self._events[-1] if self._events else None

    def clear(self) -> None:
        self._events.clear()

    def to_dataframe(self) -> pd.DataFrame:
        """Return the log as a DataFrame with one row per event."""
        return pd.DataFrame(
            [
                {
                    "id": e.id,
                    "timestamp": e.timestamp,
                    "type": e.type,
                    "description": e.description,
                    "data": e.data,
                }
                for e in self._events
            ],
            columns=["id", "timestamp", "type", "description", "data"],
        )

    def __iter__(self) -> Iterator[SimulationEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __getitem__(self, index: int) -> SimulationEvent:
        return self._events[index]
