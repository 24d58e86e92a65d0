"""Heartbeat and probe based failure detection.

Every node remembers when it last heard a heartbeat. ``tick`` turns the
silence into a suspicion level::

    phi = (now - last_heartbeat) / HEARTBEAT_INTERVAL_MS

and classifies the node as failed once ``phi >= PHI_THRESHOLD`` and as
suspect once ``phi >= PHI_THRESHOLD / 2``. This linear phi is a
simplification of the accrual detector, which models inter-arrival times
as a normal distribution; the thresholds play the same role.

Probing is the direct alternative: a node sends a Probe, the peer answers
with an Ack, and the Ack clears the peer's suspicion. Suspect and Confirm
messages let one node tell another that it is suspected or confirmed
dead.

A node the detector has declared failed neither sends nor receives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

PHI_THRESHOLD = 8.0
HEARTBEAT_INTERVAL_MS = 1000.0


class DetectorStatus(Enum):
    ALIVE = "alive"
    SUSPECT = "suspect"
    FAILED = "failed"


@dataclass
class DetectorNode(Node):
    detector_status: DetectorStatus = DetectorStatus.ALIVE
    last_heartbeat: float = 0.0
    phi: float = 0.0

    @property
    def is_alive(self) -> bool:
        return self.is_healthy and self.detector_status is not DetectorStatus.FAILED


@dataclass(frozen=True)
class Heartbeat:
    pass


@dataclass(frozen=True)
class Probe:
    pass


@dataclass(frozen=True)
class Ack:
    pass


@dataclass(frozen=True)
class Suspect:
    pass


@dataclass(frozen=True)
class Confirm:
    pass


@dataclass(frozen=True)
class FailureDetectorStats:
    total_nodes: int = 0
    alive: int = 0
    suspect: int = 0
    failed: int = 0


class FailureDetectorEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}`` watched by a linear phi detector.

    Args:
        node_count: Number of nodes.
        phi_threshold: Phi at which a node is declared failed. Half of it
            marks the node suspect.
        heartbeat_interval_ms: Expected gap between heartbeats.
    """

    message_prefix = "fd"

    def __init__(
        self,
        node_count: int = 5,
        phi_threshold: float = PHI_THRESHOLD,
        heartbeat_interval_ms: float = HEARTBEAT_INTERVAL_MS,
        *,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        if phi_threshold <= 0:
            raise ValueError(f"phi_threshold must be > 0, got {phi_threshold}")
        if heartbeat_interval_ms <= 0:
            raise ValueError(f"heartbeat_interval_ms must be > 0, got {heartbeat_interval_ms}")
        self._node_count = node_count
        self.phi_threshold = phi_threshold
        self.heartbeat_interval_ms = heartbeat_interval_ms
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        now = self.now
        self._topology = Topology(DetectorNode(f"N{i}", last_heartbeat=now) for i in range(self._node_count))

    def _message_handlers(self):
        return {
            Heartbeat: self._handle_heartbeat,
            Probe: self._handle_probe,
            Ack: self._handle_ack,
            Suspect: self._handle_suspect,
            Confirm: self._handle_confirm,
        }

    def _instructions(self):
        return {
            "send_heartbeat": self.send_heartbeat,
            "probe": self.probe,
            "suspect": self.suspect,
            "confirm": self.confirm,
            "tick": self.tick,
            "mark_failed": self.mark_failed,
            "recover": self.recover,
        }

    def _can_receive(self, message: Message) -> bool:
        node = self._topology.get(message.target)
        return node is not None and node.is_alive

    @property
    def stats(self) -> FailureDetectorStats:
        statuses = [n.detector_status for n in self._topology]
        return FailureDetectorStats(
            total_nodes=len(statuses),
            alive=statuses.count(DetectorStatus.ALIVE),
            suspect=statuses.count(DetectorStatus.SUSPECT),
            failed=statuses.count(DetectorStatus.FAILED),
        )

    def status(self, node_id: str) -> DetectorStatus | None:
        node = self._topology.get(node_id)
        return node.detector_status if node else None

    def _sender(self, node_id: str) -> DetectorNode | None:
        node = self._topology.get(node_id)
        return node if node is not None and node.is_alive else None

    def send_heartbeat(self, source: str) -> int:
        """Heartbeat every live peer of ``source``.

        Returns:
            Number of heartbeats sent.
        """
        if self._sender(source) is None:
            self.log_event("heartbeat_failed", f"{source} cannot heartbeat", node_id=source)
            return 0
        targets = [n.id for n in self._topology.others(source) if n.is_alive]
        sent = self.broadcast(source, Heartbeat(), targets)
        self.log_event("heartbeat_send", f"{source} heartbeats", node_id=source, targets=targets)
        return len(sent)

    def probe(self, source: str, target: str) -> None:
        if self._sender(source) is None or target not in self._topology:
            self.log_event("probe_failed", f"{source} cannot probe {target}", source=source, target=target)
            return
        self.send(source, target, Probe())
        self.log_event("probe", f"{source} probes {target}", source=source, target=target)

    def suspect(self, source: str, target: str) -> None:
        """Tell ``target`` that ``source`` suspects it."""
        if self._sender(source) is None or target not in self._topology:
            return
        self.send(source, target, Suspect())

    def confirm(self, source: str, target: str) -> None:
        """Tell ``target`` that ``source`` has confirmed it dead."""
        if self._sender(source) is None or target not in self._topology:
            return
        self.send(source, target, Confirm())

    def tick(self) -> list[str]:
        """Recompute phi for every node not already failed.

        Returns:
            Ids whose status changed.
        """
        now = self.now
        changed = []
        for node in self._topology:
            if node.detector_status is DetectorStatus.FAILED:
                continue
            node.phi = (now - node.last_heartbeat) / self.heartbeat_interval_ms
            if node.phi >= self.phi_threshold:
                status = DetectorStatus.FAILED
            elif node.phi >= self.phi_threshold / 2:
                status = DetectorStatus.SUSPECT
            else:
                status = node.detector_status
            if status is not node.detector_status:
                node.detector_status = status
                changed.append(node.id)
                logger.info("[%s] %s is %s (phi=%.2f)", self.name, node.id, status.value, node.phi)
                self.log_event(status.value, f"{node.id} {status.value} at phi {node.phi:.2f}", node_id=node.id, phi=node.phi)
        return changed

    def mark_failed(self, node_id: str) -> None:
        node = self._topology.get(node_id)
        if node is None:
            return
        node.detector_status = DetectorStatus.FAILED
        self.log_event("manual_fail", f"{node_id} failed", node_id=node_id)

    def recover(self, node_id: str) -> None:
        node = self._topology.get(node_id)
        if node is None:
            return
        self._revive(node)
        self.log_event("recover", f"{node_id} recovered", node_id=node_id)

    def _revive(self, node: DetectorNode) -> None:
        node.detector_status = DetectorStatus.ALIVE
        node.last_heartbeat = self.now
        node.phi = 0.0

    def _on_fail(self, node: Node) -> None:
        node.detector_status = DetectorStatus.FAILED

    def _on_recover(self, node: Node) -> None:
        self._revive(node)

    # -- handlers ------------------------------------------------------------

    def _handle_heartbeat(self, message: Message) -> None:
        node = self._topology.get(message.target)
        self._revive(node)
        self.log_event("heartbeat_recv", f"{node.id} received heartbeat", node_id=node.id, source=message.source)

    def _handle_probe(self, message: Message) -> None:
        self.send(message.target, message.source, Ack())
        self.log_event("ack_send", f"{message.target} ack to {message.source}", source=message.target, target=message.source)

    def _handle_ack(self, message: Message) -> None:
        peer = self._topology.get(message.source)
        if peer is not None and peer.is_healthy:
            self._revive(peer)
        self.log_event("ack_recv", f"{message.target} received ack from {message.source}", node_id=message.target, source=message.source)

    def _handle_suspect(self, message: Message) -> None:
        node = self._topology.get(message.target)
        node.detector_status = DetectorStatus.SUSPECT
        self.log_event("suspect", f"{node.id} suspected", node_id=node.id, source=message.source)

    def _handle_confirm(self, message: Message) -> None:
        node = self._topology.get(message.target)
        node.detector_status = DetectorStatus.FAILED
        logger.info("[%s] %s confirmed failed by %s", self.name, node.id, message.source)
        self.log_event("confirm", f"{node.id} confirmed failed", node_id=node.id, source=message.source)
