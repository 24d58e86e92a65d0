"""Total-order broadcast on Lamport clocks.

Every process keeps a Lamport clock and a holdback queue. A broadcast is
stamped with the sender's clock and sent to everyone; each receiver
acknowledges it to everyone. A process delivers the head of its
holdback queue, ordered by ``(timestamp, sender)``, once every process
has acknowledged it. Since all processes order by the same key and wait
for the same acknowledgements, they deliver in the same order.

An Ack can overtake the Broadcast it refers to. Such acks are parked in
a per-process pending table and attached when the Broadcast arrives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.logical_clocks import LamportClock
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)


@dataclass
class HoldbackEntry:
    broadcast_id: str
    sender: str
    timestamp: int
    value: Any
    acks: set[str] = field(default_factory=set)

    @property
    def order_key(self) -> tuple[int, str]:
        return (self.timestamp, self.sender)


@dataclass
class LamportProcess(Node):
    """Attributes:
        clock: The process's Lamport clock.
        holdback: Broadcasts received but not yet delivered.
        delivered: Broadcasts in the order this process delivered them.
        pending_acks: Acks that arrived before their Broadcast.
    """

    clock: LamportClock = field(default_factory=LamportClock)
    holdback: list[HoldbackEntry] = field(default_factory=list)
    delivered: list[HoldbackEntry] = field(default_factory=list)
    pending_acks: dict[str, set[str]] = field(default_factory=dict)

    @property
    def delivered_ids(self) -> list[str]:
        return [e.broadcast_id for e in self.delivered]


@dataclass(frozen=True)
class Broadcast:
    broadcast_id: str
    value: Any
    timestamp: int


@dataclass(frozen=True)
class Ack:
    broadcast_id: str
    timestamp: int


@dataclass(frozen=True)
class TotalOrderStats:
    total_nodes: int = 0
    total_broadcasts: int = 0
    total_delivered: int = 0
    pending_messages: int = 0


class TotalOrderBroadcastEngine(ProtocolEngine):
    """Processes ``P0`` .. ``P{n-1}``."""

    message_prefix = "lamport"

    def __init__(self, process_count: int = 3, *, name: str | None = None, clock=None, seed: int | None = None):
        if process_count < 1:
            raise ValueError(f"process_count must be >= 1, got {process_count}")
        self._process_count = process_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(LamportProcess(f"P{i}") for i in range(self._process_count))
        self._broadcasts = 0

    def _message_handlers(self):
        return {Broadcast: self._handle_broadcast, Ack: self._handle_ack}

    def _instructions(self):
        return {"local_event": self.local_event, "broadcast": self.broadcast_value}

    @property
    def processes(self) -> list[LamportProcess]:
        return list(self._topology)

    @property
    def stats(self) -> TotalOrderStats:
        processes = list(self._topology)
        return TotalOrderStats(
            total_nodes=len(processes),
            total_broadcasts=self._broadcasts,
            total_delivered=sum(len(p.delivered) for p in processes),
            pending_messages=sum(len(p.holdback) for p in processes),
        )

    def local_event(self, pid: str, description: str = "local event") -> int | None:
        process = self._topology.get(pid)
        if process is None or not process.is_healthy:
            return None
        time = process.clock.tick()
        self.log_event("local_event", f"{pid} {description} (clock={time})", node_id=pid, clock=time)
        return time

    def broadcast_value(self, pid: str, payload: Any) -> str | None:
        """Totally ordered broadcast of ``payload`` from ``pid``.

        Returns:
            The broadcast id, or None if ``pid`` is unknown or down.
        """
        process = self._topology.get(pid)
        if process is None or not process.is_healthy:
            return None
        timestamp = process.clock.send()
        broadcast_id = f"b-{self._broadcasts}"
        self._broadcasts += 1

        entry = HoldbackEntry(broadcast_id, pid, timestamp, payload, acks={pid})
        entry.acks |= process.pending_acks.pop(broadcast_id, set())
        process.holdback.append(entry)
        self.log_event(
            "broadcast",
            f"{pid} broadcasts {payload!r} (t={timestamp})",
            node_id=pid,
            broadcast_id=broadcast_id,
            timestamp=timestamp,
        )
        ProtocolEngine.broadcast(self, pid, Broadcast(broadcast_id, payload, timestamp))
        self._send_ack(process, broadcast_id)
        self._try_deliver(process)
        return broadcast_id

    def _send_ack(self, process: LamportProcess, broadcast_id: str) -> None:
        ack_time = process.clock.send()
        ProtocolEngine.broadcast(self, process.id, Ack(broadcast_id, ack_time))

    def _handle_broadcast(self, message: Message) -> None:
        process = self._topology.get(message.target)
        payload: Broadcast = message.payload
        process.clock.receive(payload.timestamp)

        entry = next((e for e in process.holdback if e.broadcast_id == payload.broadcast_id), None)
        if entry is None:
            entry = HoldbackEntry(payload.broadcast_id, message.source, payload.timestamp, payload.value)
            entry.acks |= process.pending_acks.pop(payload.broadcast_id, set())
            process.holdback.append(entry)
        entry.acks.add(process.id)

        self.log_event(
            "broadcast_recv",
            f"{process.id} receives {payload.value!r}",
            node_id=process.id,
            source=message.source,
            broadcast_id=payload.broadcast_id,
        )
        self._send_ack(process, payload.broadcast_id)
        self._try_deliver(process)

    def _handle_ack(self, message: Message) -> None:
        process = self._topology.get(message.target)
        payload: Ack = message.payload
        process.clock.receive(payload.timestamp)

        entry = next((e for e in process.holdback if e.broadcast_id == payload.broadcast_id), None)
        if entry is not None:
            entry.acks.add(message.source)
        elif payload.broadcast_id not in process.delivered_ids:
            process.pending_acks.setdefault(payload.broadcast_id, set()).add(message.source)

        self.log_event(
            "ack_recv",
            f"{process.id} receives ack for {payload.broadcast_id}",
            node_id=process.id,
            source=message.source,
            broadcast_id=payload.broadcast_id,
        )
        self._try_deliver(process)

    def _try_deliver(self, process: LamportProcess) -> None:
        total = len(self._topology)
        while process.holdback:
            head = min(process.holdback, key=lambda e: e.order_key)
            if len(head.acks) < total:
                return
            process.holdback.remove(head)
            process.delivered.append(head)
            logger.debug("[%s] %s delivers %s", self.name, process.id, head.broadcast_id)
            self.log_event(
                "deliver",
                f"{process.id} delivers {head.value!r}",
                node_id=process.id,
                broadcast_id=head.broadcast_id,
            )
