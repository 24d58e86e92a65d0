"""Practical Byzantine Fault Tolerance (normal case plus view change).

With ``N`` replicas the cluster tolerates ``f = (N - 1) // 3`` faulty
ones and uses quorums of ``2f + 1``. The primary of view ``v`` is replica
``v mod N``.

Normal-case flow for one request::

    client --ClientRequest--> primary
    primary --PrePrepare(view, seq, value)--> replicas
    replica --Prepare--> all peers          (prepared at 2f+1, self included)
    replica --Commit--> all peers           (executes at 2f+1, self included)

Byzantine behavior is modeled only as omission: failed replicas stay
silent. A view change simply re-derives roles; in-progress requests are
not carried across views.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology, byzantine_faults, byzantine_quorum

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

CLIENT_ID = "client"


class PbftRole(Enum):
    PRIMARY = "primary"
    REPLICA = "replica"


class PbftPhase(Enum):
    PRE_PREPARE = "pre-prepare"
    PREPARE = "prepare"
    COMMIT = "commit"
    EXECUTED = "executed"


@dataclass
class PbftLogEntry:
    """One request as seen by one replica."""

    request_id: str
    view: int
    seq: int
    value: Any
    phase: PbftPhase
    prepares: set[str] = field(default_factory=set)
    commits: set[str] = field(default_factory=set)


@dataclass
class PbftNode(Node):
    view: int = 0
    role: PbftRole = PbftRole.REPLICA
    log: dict[str, PbftLogEntry] = field(default_factory=dict)
    executed: list[PbftLogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class ClientRequest:
    request_id: str
    value: Any


@dataclass(frozen=True)
class PrePrepare:
    request_id: str
    view: int
    seq: int
    value: Any


@dataclass(frozen=True)
class Prepare:
    request_id: str
    view: int
    seq: int
    value: Any


@dataclass(frozen=True)
class Commit:
    request_id: str
    view: int
    seq: int
    value: Any


@dataclass(frozen=True)
class PbftStats:
    """Attributes:
        total_nodes: Configured replicas.
        healthy_nodes: Replicas currently healthy.
        view: Current view.
        primary: Primary of the current view.
        f: Tolerated Byzantine faults.
        quorum: Quorum size ``2f + 1``.
        executed: Executions summed over all replicas.
    """

    total_nodes: int = 0
    healthy_nodes: int = 0
    view: int = 0
    primary: str = ""
    f: int = 0
    quorum: int = 0
    executed: int = 0


class PbftEngine(ProtocolEngine):
    """Replicas ``N0`` .. ``N{n-1}``; ``N0`` is the primary of view 0."""

    message_prefix = "pbft"

    def __init__(self, node_count: int = 4, *, name: str | None = None, clock=None, seed: int | None = None):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self._node_count = node_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(PbftNode(f"N{i}") for i in range(self._node_count))
        self._view = 0
        self._seq = 0
        self._request_counter = 0
        self._set_roles(0)

    def _message_handlers(self):
        return {
            ClientRequest: self._handle_client_request,
            PrePrepare: self._handle_pre_prepare,
            Prepare: self._handle_prepare,
            Commit: self._handle_commit,
        }

    def _instructions(self):
        return {"client_request": self.client_request, "trigger_view_change": self.trigger_view_change}

    @property
    def f(self) -> int:
        return byzantine_faults(len(self._topology))

    @property
    def quorum_size(self) -> int:
        return byzantine_quorum(len(self._topology))

    @property
    def view(self) -> int:
        return self._view

    @property
    def primary(self) -> PbftNode:
        return self._topology.get(self._topology.ids()[self._view % len(self._topology)])

    @property
    def stats(self) -> PbftStats:
        return PbftStats(
            total_nodes=len(self._topology),
            healthy_nodes=len(self._topology.healthy()),
            view=self._view,
            primary=self.primary.id,
            f=self.f,
            quorum=self.quorum_size,
            executed=sum(len(n.executed) for n in self._topology),
        )

    def _set_roles(self, view: int) -> None:
        self._view = view
        primary_id = self._topology.ids()[view % len(self._topology)]
        for node in self._topology:
            node.view = view
            node.role = PbftRole.PRIMARY if node.id == primary_id else PbftRole.REPLICA

    # -- client and view change ----------------------------------------------

    def client_request(self, value: Any) -> str | None:
        """Send ``value`` from the client to the current primary.

        Returns:
            The request id, or None when the primary is down.
        """
        primary = self.primary
        if not primary.is_healthy:
            self.log_event(
                "request_failed",
                f"No healthy primary in view {self._view} ({primary.id} is down)",
                view=self._view,
                primary=primary.id,
            )
            return None
        request_id = f"req-{self._request_counter}"
        self._request_counter += 1
        self.send(CLIENT_ID, primary.id, ClientRequest(request_id, value))
        self.log_event(
            "client_request",
            f"Client sends {value!r} to {primary.id}",
            request_id=request_id,
            primary=primary.id,
            value=value,
        )
        return request_id

    def trigger_view_change(self) -> int:
        """Advance to the next view and re-derive roles. Returns the new view."""
        self._set_roles(self._view + 1)
        logger.info("[%s] View change to v%d, primary %s", self.name, self._view, self.primary.id)
        self.log_event(
            "view_change",
            f"View change to v{self._view}; primary is now {self.primary.id}",
            view=self._view,
            primary=self.primary.id,
        )
        return self._view

    # -- three phases --------------------------------------------------------

    def _handle_client_request(self, message: Message) -> None:
        primary: PbftNode = self._topology.get(message.target)
        request: ClientRequest = message.payload
        if primary.role is not PbftRole.PRIMARY:
            self.log_event(
                "request_failed",
                f"{primary.id} is not primary in view {primary.view}; dropped {request.request_id}",
                request_id=request.request_id,
                node_id=primary.id,
            )
            return

        seq = self._seq
        self._seq += 1
        entry = PbftLogEntry(
            request_id=request.request_id,
            view=primary.view,
            seq=seq,
            value=request.value,
            phase=PbftPhase.PRE_PREPARE,
            prepares={primary.id},
        )
        primary.log[entry.request_id] = entry
        self.broadcast(primary.id, PrePrepare(entry.request_id, entry.view, seq, entry.value))
        self.log_event(
            "pre_prepare",
            f"{primary.id} pre-prepares {entry.request_id} with seq {seq}",
            request_id=entry.request_id,
            seq=seq,
            view=entry.view,
        )

    def _handle_pre_prepare(self, message: Message) -> None:
        replica: PbftNode = self._topology.get(message.target)
        pre: PrePrepare = message.payload
        if pre.view != replica.view:
            self.log_event(
                "pre_prepare_rejected",
                f"{replica.id} ignored PrePrepare for {pre.request_id} from view {pre.view}",
                node_id=replica.id,
                request_id=pre.request_id,
                view=pre.view,
            )
            return

        entry = replica.log.get(pre.request_id)
        if entry is None:
            entry = PbftLogEntry(pre.request_id, pre.view, pre.seq, pre.value, PbftPhase.PREPARE)
            replica.log[pre.request_id] = entry
        elif entry.phase is PbftPhase.PRE_PREPARE:
            entry.phase = PbftPhase.PREPARE
        entry.prepares.add(replica.id)
        entry.prepares.add(message.source)

        self.broadcast(replica.id, Prepare(pre.request_id, pre.view, pre.seq, pre.value))
        self.log_event(
            "prepare",
            f"{replica.id} prepares {pre.request_id}",
            node_id=replica.id,
            request_id=pre.request_id,
            seq=pre.seq,
        )
        self._maybe_commit(replica, entry)

    def _handle_prepare(self, message: Message) -> None:
        node: PbftNode = self._topology.get(message.target)
        prepare: Prepare = message.payload
        entry = node.log.get(prepare.request_id)
        if entry is None:
            entry = PbftLogEntry(prepare.request_id, prepare.view, prepare.seq, prepare.value, PbftPhase.PREPARE)
            entry.prepares.add(node.id)
            node.log[prepare.request_id] = entry
        entry.prepares.add(message.source)

        if not self._maybe_commit(node, entry):
            self.log_event(
                "prepare_received",
                f"{node.id} has {len(entry.prepares)}/{self.quorum_size} prepares for {entry.request_id}",
                node_id=node.id,
                request_id=entry.request_id,
                prepares=len(entry.prepares),
            )

    def _maybe_commit(self, node: PbftNode, entry: PbftLogEntry) -> bool:
        if len(entry.prepares) < self.quorum_size or entry.phase in (PbftPhase.COMMIT, PbftPhase.EXECUTED):
            return False
        entry.phase = PbftPhase.COMMIT
        entry.commits.add(node.id)
        self.broadcast(node.id, Commit(entry.request_id, entry.view, entry.seq, entry.value))
        self.log_event(
            "commit",
            f"{node.id} is prepared for {entry.request_id} and broadcasts Commit",
            node_id=node.id,
            request_id=entry.request_id,
            prepares=len(entry.prepares),
        )
        self._maybe_execute(node, entry)
        return True

    def _handle_commit(self, message: Message) -> None:
        node: PbftNode = self._topology.get(message.target)
        commit: Commit = message.payload
        entry = node.log.get(commit.request_id)
        if entry is None:
            entry = PbftLogEntry(commit.request_id, commit.view, commit.seq, commit.value, PbftPhase.COMMIT)
            node.log[commit.request_id] = entry
        entry.commits.add(message.source)

        if not self._maybe_execute(node, entry):
            self.log_event(
                "commit_received",
                f"{node.id} has {len(entry.commits | {node.id})}/{self.quorum_size} commits for {entry.request_id}",
                node_id=node.id,
                request_id=entry.request_id,
                commits=len(entry.commits),
            )

    def _maybe_execute(self, node: PbftNode, entry: PbftLogEntry) -> bool:
        if entry.phase is PbftPhase.EXECUTED:
            return False
        if len(entry.commits | {node.id}) < self.quorum_size:
            return False
        entry.phase = PbftPhase.EXECUTED
        node.executed.append(entry)
        logger.info("[%s] %s executed %s (seq %d)", self.name, node.id, entry.request_id, entry.seq)
        self.log_event(
            "execute",
            f"{node.id} executes {entry.request_id}",
            node_id=node.id,
            request_id=entry.request_id,
            seq=entry.seq,
            value=entry.value,
        )
        return True
