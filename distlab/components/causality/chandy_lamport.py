"""Chandy-Lamport distributed snapshots.

Each node has a counter as its local state; sending or receiving an
application message bumps it. ``start_snapshot`` records the initiator's
counter and sends a Marker on every outgoing channel. A node's first
Marker for a snapshot makes it record its own counter, forward Markers
and start recording every other incoming channel. Each later Marker
closes the channel it arrived on. A node's snapshot is complete when all
channels it records are closed.

Application messages carry the ids of the snapshots their sender had
already recorded. Such a message was sent after its channel's Marker, so
it is never recorded as in transit, and a receiver that has not
recorded that snapshot yet records it before applying the message. This
keeps the cut consistent even when the caller delivers a message ahead
of the Marker it followed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)


@dataclass
class SnapshotState:
    """One node's part of a snapshot.

    Attributes:
        id: Snapshot id ``S{n}``.
        local_state: Counter value when the node recorded.
        channels: Sender -> application values recorded in transit.
        recording_from: Senders whose channel is still being recorded.
    """

    id: str
    local_state: int
    channels: dict[str, list[Any]] = field(default_factory=dict)
    recording_from: set[str] = field(default_factory=set)

    @property
    def complete(self) -> bool:
        return not self.recording_from


@dataclass
class SnapshotNode(Node):
    local_state: int = 0
    snapshots: dict[str, SnapshotState] = field(default_factory=dict)

    @property
    def snapshot(self) -> SnapshotState | None:
        """Most recently recorded snapshot."""
        return next(reversed(self.snapshots.values()), None)


@dataclass(frozen=True)
class App:
    value: Any
    recorded: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Marker:
    snapshot_id: str


@dataclass(frozen=True)
class GlobalState:
    """Assembled snapshot.

    Attributes:
        local_states: Node -> recorded counter, for nodes that recorded.
        channels: ``(sender, receiver)`` -> values in transit.
        complete: True once every recording node closed all its channels.
    """

    snapshot_id: str
    local_states: dict[str, int]
    channels: dict[tuple[str, str], list[Any]]
    complete: bool


@dataclass(frozen=True)
class SnapshotStats:
    total_nodes: int = 0
    healthy_nodes: int = 0
    snapshots_active: int = 0
    snapshots_complete: int = 0


class ChandyLamportEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}`` on a complete graph of FIFO channels."""

    message_prefix = "snapshot-msg"

    def __init__(self, node_count: int = 5, *, name: str | None = None, clock=None, seed: int | None = None):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self._node_count = node_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(SnapshotNode(f"N{i}") for i in range(self._node_count))
        self._snapshot_counter = 0

    def _message_handlers(self):
        return {App: self._handle_app, Marker: self._handle_marker}

    def _instructions(self):
        return {"start_snapshot": self.start_snapshot, "send_app_message": self.send_app_message}

    @property
    def stats(self) -> SnapshotStats:
        latest = [n.snapshot for n in self._topology if n.snapshot is not None]
        return SnapshotStats(
            total_nodes=len(self._topology),
            healthy_nodes=len(self._topology.healthy()),
            snapshots_active=sum(1 for s in latest if not s.complete),
            snapshots_complete=sum(1 for s in latest if s.complete),
        )

    def start_snapshot(self, initiator: str) -> str | None:
        """Start a new snapshot at ``initiator`` and return its id."""
        node = self._topology.get(initiator)
        if node is None or not node.is_healthy:
            self.log_event("snapshot_failed", f"Snapshot start failed at {initiator}", initiator_id=initiator)
            return None
        snapshot_id = f"S{self._snapshot_counter}"
        self._snapshot_counter += 1
        self.log_event("snapshot_start", f"Snapshot {snapshot_id} started at {initiator}", snapshot_id=snapshot_id, initiator_id=initiator)
        self._record(node, snapshot_id, closed_channel=None)
        logger.info("[%s] snapshot %s started at %s", self.name, snapshot_id, initiator)
        return snapshot_id

    def _record(self, node: SnapshotNode, snapshot_id: str, closed_channel: str | None) -> SnapshotState:
        incoming = [n.id for n in self._topology.others(node.id)]
        state = SnapshotState(
            snapshot_id,
            node.local_state,
            channels={sender: [] for sender in incoming},
            recording_from={sender for sender in incoming if sender != closed_channel},
        )
        node.snapshots[snapshot_id] = state
        self.log_event("snapshot_record", f"{node.id} records local state", node_id=node.id, snapshot_id=snapshot_id, local_state=state.local_state)
        self.broadcast(node.id, Marker(snapshot_id))
        self._check_complete(node, state)
        return state

    def _check_complete(self, node: SnapshotNode, state: SnapshotState) -> None:
        if state.complete:
            self.log_event("snapshot_complete", f"{node.id} completes snapshot", node_id=node.id, snapshot_id=state.id)

    def send_app_message(self, source: str, target: str, value: Any = None) -> None:
        sender = self._topology.get(source)
        if sender is None or not sender.is_healthy or not self._topology.is_healthy(target):
            self.log_event("send_failed", f"Send {source} -> {target} failed", source=source, target=target)
            return
        sender.local_state += 1
        self.send(source, target, App(value, frozenset(sender.snapshots)))
        self.log_event("app_send", f"{source} -> {target}: {value!r}", source=source, target=target, value=value)

    def _handle_app(self, message: Message) -> None:
        node = self._topology.get(message.target)
        payload: App = message.payload
        for snapshot_id in sorted(payload.recorded - set(node.snapshots)):
            self._record(node, snapshot_id, closed_channel=None)

        node.local_state += 1
        for state in node.snapshots.values():
            if message.source in state.recording_from and state.id not in payload.recorded:
                state.channels[message.source].append(payload.value)
        self.log_event(
            "app_deliver",
            f"{node.id} received {payload.value!r}",
            target=node.id,
            source=message.source,
            value=payload.value,
        )

    def _handle_marker(self, message: Message) -> None:
        node = self._topology.get(message.target)
        snapshot_id = message.payload.snapshot_id
        state = node.snapshots.get(snapshot_id)
        if state is None:
            self._record(node, snapshot_id, closed_channel=message.source)
            return
        if message.source in state.recording_from:
            state.recording_from.discard(message.source)
            self._check_complete(node, state)

    def global_state(self, snapshot_id: str) -> GlobalState | None:
        """Collect every node's recorded part of ``snapshot_id``."""
        parts = {n.id: n.snapshots[snapshot_id] for n in self._topology if snapshot_id in n.snapshots}
        if not parts:
            return None
        return GlobalState(
            snapshot_id=snapshot_id,
            local_states={nid: s.local_state for nid, s in parts.items()},
            channels={
                (sender, nid): list(values) for nid, s in parts.items() for sender, values in s.channels.items()
            },
            complete=len(parts) == len(self._topology) and all(s.complete for s in parts.values()),
        )
