"""Causality tracking: total-order broadcast, vector clocks and snapshots."""

from distlab.components.causality.total_order import (
    HoldbackEntry,
    TotalOrderBroadcastEngine,
    TotalOrderStats,
)
from distlab.components.causality.vector_clocks import (
    EventKind,
    ProcessEvent,
    VectorClockEngine,
    VectorClockStats,
)
from distlab.components.causality.chandy_lamport import (
    ChandyLamportEngine,
    GlobalState,
    SnapshotState,
    SnapshotStats,
)

__all__ = [
    "HoldbackEntry",
    "TotalOrderBroadcastEngine",
    "TotalOrderStats",
    "EventKind",
    "ProcessEvent",
    "VectorClockEngine",
    "VectorClockStats",
    "ChandyLamportEngine",
    "GlobalState",
    "SnapshotState",
    "SnapshotStats",
]
