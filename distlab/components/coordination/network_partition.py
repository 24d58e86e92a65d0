"""Network partitions and split-brain elections.

Every node carries a partition id, initially ``"A"``. ``split`` assigns
two groups to partitions ``A`` and ``B`` and marks each directed link up
only when both ends share a partition. A message sent across a link that
is down is lost at delivery.

``start_election`` runs a Raft-style vote inside one partition: a random
member becomes candidate in a fresh term and asks the other members for
their vote. It wins with ``votes > partition_size // 2``, counted over
its own partition only, so a 3/2 split elects two leaders at once::

    net = NetworkPartitionEngine(seed=7)
    net.split(["N0", "N1", "N2"], ["N3", "N4"])
    net.start_election("A")
    net.start_election("B")
    net.deliver_all()
    assert net.stats.leaders == 2

``heal`` puts everyone back in ``A`` and brings all links up. Both
leaders survive the heal until the next election settles the cluster on
one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from distlab.components.consensus.raft import RaftState
from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from collections.abc import Iterable

    from distlab.core.message import Message

logger = logging.getLogger(__name__)

DEFAULT_PARTITION = "A"
SPLIT_PARTITION = "B"


@dataclass
class PartitionNode(Node):
    state: RaftState = RaftState.FOLLOWER
    term: int = 0
    voted_for: str | None = None
    partition_id: str = DEFAULT_PARTITION
    votes: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class VoteRequest:
    term: int
    partition_id: str


@dataclass(frozen=True)
class Vote:
    term: int
    partition_id: str


@dataclass(frozen=True)
class Reject:
    term: int
    partition_id: str


@dataclass(frozen=True)
class PartitionStats:
    total_nodes: int = 0
    leaders: int = 0
    partitions: int = 0
    links_down: int = 0


class NetworkPartitionEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}`` on a complete graph of directed links."""

    message_prefix = "partition"

    def __init__(self, node_count: int = 5, *, name: str | None = None, clock=None, seed: int | None = None):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self._node_count = node_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(PartitionNode(f"N{i}") for i in range(self._node_count))
        ids = self._topology.ids()
        self.links: dict[tuple[str, str], bool] = {(a, b): True for a in ids for b in ids if a != b}
        self._term = 0

    def _message_handlers(self):
        return {VoteRequest: self._handle_vote_request, Vote: self._handle_vote, Reject: self._handle_reject}

    def _instructions(self):
        return {"split": self.split, "heal": self.heal, "start_election": self.start_election}

    def _can_receive(self, message: Message) -> bool:
        return self._topology.is_healthy(message.target) and self.link_up(message.source, message.target)

    def link_up(self, source: str, target: str) -> bool:
        return self.links.get((source, target), False)

    def members(self, partition_id: str) -> list[PartitionNode]:
        return [n for n in self._topology if n.partition_id == partition_id]

    def leaders(self) -> list[PartitionNode]:
        return [n for n in self._topology if n.state is RaftState.LEADER]

    @property
    def stats(self) -> PartitionStats:
        return PartitionStats(
            total_nodes=len(self._topology),
            leaders=len(self.leaders()),
            partitions=len({n.partition_id for n in self._topology}),
            links_down=sum(1 for up in self.links.values() if not up),
        )

    def _refresh_links(self) -> None:
        for source, target in self.links:
            a = self._topology.get(source)
            b = self._topology.get(target)
            self.links[(source, target)] = a.partition_id == b.partition_id

    def split(self, group_a: Iterable[str], group_b: Iterable[str]) -> None:
        """Place ``group_a`` in partition A and ``group_b`` in partition B.

        Nodes named in neither group keep their current partition.
        """
        group_a = [nid for nid in group_a if nid in self._topology]
        group_b = [nid for nid in group_b if nid in self._topology]
        for nid in group_a:
            self._topology.get(nid).partition_id = DEFAULT_PARTITION
        for nid in group_b:
            self._topology.get(nid).partition_id = SPLIT_PARTITION
        self._refresh_links()
        logger.info("[%s] partitioned %s | %s", self.name, group_a, group_b)
        self.log_event("partition", "Network partition created", partition_a=group_a, partition_b=group_b)

    def heal(self) -> None:
        for node in self._topology:
            node.partition_id = DEFAULT_PARTITION
        for link in self.links:
            self.links[link] = True
        logger.info("[%s] partition healed", self.name)
        self.log_event("heal", "Network partition healed")

    def start_election(self, partition_id: str) -> str | None:
        """Make a random healthy member of ``partition_id`` a candidate.

        Returns:
            The candidate's id, or None when the partition has no healthy member.
        """
        candidates = [n for n in self.members(partition_id) if n.is_healthy]
        if not candidates:
            self.log_event("election_failed", f"No candidates in partition {partition_id}", partition_id=partition_id)
            return None
        candidate = self._rng.choice(candidates)
        self._term = max(self._term, candidate.term) + 1
        candidate.state = RaftState.CANDIDATE
        candidate.term = self._term
        candidate.voted_for = candidate.id
        candidate.votes = {candidate.id}
        self.log_event(
            "election_start",
            f"{candidate.id} starts election in partition {partition_id}",
            candidate_id=candidate.id,
            partition_id=partition_id,
            term=candidate.term,
        )

        peers = [n.id for n in self.members(partition_id) if n.id != candidate.id]
        self.broadcast(candidate.id, VoteRequest(candidate.term, partition_id), peers)
        self._check_won(candidate)
        return candidate.id

    def _handle_vote_request(self, message: Message) -> None:
        node = self._topology.get(message.target)
        request: VoteRequest = message.payload
        if request.term > node.term:
            node.term = request.term
            node.voted_for = None
            if node.state is not RaftState.FOLLOWER:
                node.state = RaftState.FOLLOWER
                node.votes = set()

        if request.term == node.term and node.voted_for in (None, message.source):
            node.voted_for = message.source
            self.send(node.id, message.source, Vote(node.term, node.partition_id))
            self.log_event("vote", f"{node.id} votes for {message.source}", voter_id=node.id, candidate_id=message.source)
        else:
            self.send(node.id, message.source, Reject(node.term, node.partition_id))
            self.log_event("reject", f"{node.id} rejects {message.source}", voter_id=node.id, candidate_id=message.source)

    def _handle_vote(self, message: Message) -> None:
        candidate = self._topology.get(message.target)
        if candidate.state is not RaftState.CANDIDATE or message.payload.term != candidate.term:
            return
        candidate.votes.add(message.source)
        self._check_won(candidate)

    def _check_won(self, candidate: PartitionNode) -> None:
        partition = self.members(candidate.partition_id)
        if len(candidate.votes) <= len(partition) // 2:
            return
        for node in partition:
            node.state = RaftState.LEADER if node is candidate else RaftState.FOLLOWER
            node.votes = set()
        logger.info("[%s] %s leads partition %s (term %d)", self.name, candidate.id, candidate.partition_id, candidate.term)
        self.log_event(
            "leader_elected",
            f"{candidate.id} becomes leader",
            leader_id=candidate.id,
            partition_id=candidate.partition_id,
            term=candidate.term,
        )

    def _handle_reject(self, message: Message) -> None:
        candidate = self._topology.get(message.target)
        if message.payload.term > candidate.term:
            candidate.term = message.payload.term
            candidate.state = RaftState.FOLLOWER
            candidate.voted_for = None
            candidate.votes = set()
