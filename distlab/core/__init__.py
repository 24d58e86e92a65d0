"""Message and event substrate shared by every protocol engine."""

from distlab.core.clock import Clock, ManualClock, WallClock
from distlab.core.engine import ProtocolEngine
from distlab.core.event_log import EventLog, SimulationEvent
from distlab.core.logical_clocks import (
    Causality,
    LamportClock,
    VectorClock,
    compare_vectors,
    happened_before,
    merge_vectors,
)
from distlab.core.message import Message, MessageLog, MessageStatus
from distlab.core.scheduler import ScheduledTask, Scheduler
from distlab.core.topology import Node, NodeStatus, Topology, byzantine_quorum, majority

__all__ = [
    "Clock",
    "ManualClock",
    "WallClock",
    "ProtocolEngine",
    "EventLog",
    "SimulationEvent",
    "Causality",
    "LamportClock",
    "VectorClock",
    "compare_vectors",
    "happened_before",
    "merge_vectors",
    "Message",
    "MessageLog",
    "MessageStatus",
    "ScheduledTask",
    "Scheduler",
    "Node",
    "NodeStatus",
    "Topology",
    "byzantine_quorum",
    "majority",
]
