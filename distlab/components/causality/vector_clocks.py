"""Vector clocks over a recorded run of process events.

Every local, send and receive event is kept with the vector it was
stamped with, so any two events of the run can be compared afterwards:
exactly one of *before*, *after* or *concurrent* holds for distinct
events.

Example::

    vc = VectorClockEngine(process_count=3)
    a = vc.create_local_event("P0")
    send = vc.send_message("P0", "P1")
    recv = vc.receive_message(send.message_id)
    assert vc.happened_before(a.id, recv.id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.logical_clocks import Causality, VectorClock, compare_vectors, happened_before
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)


class EventKind(Enum):
    LOCAL = "local"
    SEND = "send"
    RECEIVE = "receive"


@dataclass
class ProcessEvent:
    """One event in the run.

    Attributes:
        id: ``event-{n}``.
        process_id: Process the event happened on.
        vector: Vector clock stamped on the event.
        kind: Local, send or receive.
        related_event: For a send, the matching receive (once it happened);
            for a receive, the matching send.
        message_id: For a send, the in-flight message carrying the vector.
    """

    id: str
    process_id: str
    vector: dict[str, int]
    kind: EventKind
    timestamp: float = 0.0
    related_event: str | None = None
    message_id: str | None = None


@dataclass
class VectorProcess(Node):
    clock: VectorClock | None = None
    events: list[ProcessEvent] = field(default_factory=list)


@dataclass(frozen=True)
class TimestampedMessage:
    send_event_id: str
    vector: dict[str, int]
    text: str = "Message"


@dataclass(frozen=True)
class VectorClockStats:
    total_events: int = 0
    local_events: int = 0
    send_events: int = 0
    receive_events: int = 0
    concurrent_pairs: int = 0


def format_vector(vector: dict[str, int]) -> str:
    return "[" + ", ".join(str(vector[k]) for k in sorted(vector)) + "]"


class VectorClockEngine(ProtocolEngine):
    """Processes ``P0`` .. ``P{n-1}``."""

    message_prefix = "vc"

    def __init__(self, process_count: int = 3, *, name: str | None = None, clock=None, seed: int | None = None):
        if process_count < 1:
            raise ValueError(f"process_count must be >= 1, got {process_count}")
        self._process_count = process_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        ids = [f"P{i}" for i in range(self._process_count)]
        self._topology = Topology(VectorProcess(pid, clock=VectorClock(pid, ids)) for pid in ids)
        self._run: dict[str, ProcessEvent] = {}

    def _message_handlers(self):
        return {TimestampedMessage: self._handle_message}

    def _instructions(self):
        return {
            "create_local_event": self.create_local_event,
            "send_message": self.send_message,
            "receive_message": self.receive_message,
        }

    @property
    def processes(self) -> list[VectorProcess]:
        return list(self._topology)

    @property
    def all_events(self) -> list[ProcessEvent]:
        return list(self._run.values())

    def event(self, event_id: str) -> ProcessEvent | None:
        return self._run.get(event_id)

    @property
    def stats(self) -> VectorClockStats:
        events = list(self._run.values())
        concurrent = sum(
            1
            for i, a in enumerate(events)
            for b in events[i + 1 :]
            if compare_vectors(a.vector, b.vector) is Causality.CONCURRENT
        )
        return VectorClockStats(
            total_events=len(events),
            local_events=sum(1 for e in events if e.kind is EventKind.LOCAL),
            send_events=sum(1 for e in events if e.kind is EventKind.SEND),
            receive_events=sum(1 for e in events if e.kind is EventKind.RECEIVE),
            concurrent_pairs=concurrent,
        )

    def _record(self, process: VectorProcess, vector: dict[str, int], kind: EventKind) -> ProcessEvent:
        event = ProcessEvent(f"event-{len(self._run)}", process.id, vector, kind, self.now)
        process.events.append(event)
        self._run[event.id] = event
        return event

    def create_local_event(self, process_id: str, description: str = "Local computation") -> ProcessEvent | None:
        process = self._topology.get(process_id)
        if process is None or not process.is_healthy:
            return None
        event = self._record(process, process.clock.tick(), EventKind.LOCAL)
        self.log_event(
            "local_event",
            f"{process_id}: {description} {format_vector(event.vector)}",
            process_id=process_id,
            event_id=event.id,
            vector=event.vector,
        )
        return event

    def send_message(self, source: str, target: str, text: str = "Message") -> ProcessEvent | None:
        """Record a send event on ``source`` and put the message in flight.

        Returns:
            The send event; its ``message_id`` identifies the in-flight
            message for ``receive_message``. None if either end is down.
        """
        sender = self._topology.get(source)
        if sender is None or not sender.is_healthy or not self._topology.is_healthy(target):
            return None
        event = self._record(sender, sender.clock.send(), EventKind.SEND)
        message = self.send(source, target, TimestampedMessage(event.id, event.vector, text))
        event.message_id = message.id
        self.log_event(
            "send_message",
            f"{source} -> {target}: {text} {format_vector(event.vector)}",
            source=source,
            target=target,
            event_id=event.id,
            vector=event.vector,
        )
        return event

    def receive_message(self, message_id: str) -> ProcessEvent | None:
        """Deliver an in-flight message and return the receive event it produced."""
        message = self.deliver(message_id)
        if message is None or message.is_in_flight:
            return None
        send_event = self._run.get(message.payload.send_event_id)
        if send_event is None or send_event.related_event is None:
            return None
        return self._run.get(send_event.related_event)

    def _handle_message(self, message: Message) -> None:
        process = self._topology.get(message.target)
        payload: TimestampedMessage = message.payload
        event = self._record(process, process.clock.receive(payload.vector), EventKind.RECEIVE)
        event.related_event = payload.send_event_id
        send_event = self._run.get(payload.send_event_id)
        if send_event is not None:
            send_event.related_event = event.id
        self.log_event(
            "receive_message",
            f"{process.id} <- received: {payload.text} {format_vector(event.vector)}",
            process_id=process.id,
            event_id=event.id,
            vector=event.vector,
            related_event=payload.send_event_id,
        )

    # -- queries -------------------------------------------------------------

    def happened_before(self, event_a: str, event_b: str) -> bool:
        a, b = self._run.get(event_a), self._run.get(event_b)
        return a is not None and b is not None and happened_before(a.vector, b.vector)

    def are_concurrent(self, event_a: str, event_b: str) -> bool:
        a, b = self._run.get(event_a), self._run.get(event_b)
        if a is None or b is None:
            return False
        return not happened_before(a.vector, b.vector) and not happened_before(b.vector, a.vector)

    def compare_events(self, event_a: str, event_b: str) -> str:
        """``"before"``, ``"after"``, ``"concurrent"`` or ``"unknown"``."""
        a, b = self._run.get(event_a), self._run.get(event_b)
        if a is None or b is None:
            return "unknown"
        if happened_before(a.vector, b.vector):
            return "before"
        if happened_before(b.vector, a.vector):
            return "after"
        return "concurrent"

    def causal_history(self, event_id: str) -> list[ProcessEvent]:
        """Every event that happened before ``event_id``."""
        target = self._run.get(event_id)
        if target is None:
            return []
        return [e for e in self._run.values() if e.id != event_id and happened_before(e.vector, target.vector)]

    def concurrent_events(self, event_id: str) -> list[ProcessEvent]:
        target = self._run.get(event_id)
        if target is None:
            return []
        return [e for e in self._run.values() if e.id != event_id and self.are_concurrent(e.id, event_id)]
