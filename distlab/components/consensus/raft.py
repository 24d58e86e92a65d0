"""Raft leader election and log replication.

Nodes start as followers. ``start_election`` turns one into a candidate
which asks every healthy peer for a vote; once a strict majority of *all*
configured nodes has voted for it, the candidate becomes leader. The
leader accepts client commands, replicates them with AppendEntries and
commits an index once a majority of nodes hold it.

Simplifications against full Raft:

- Majority is computed over the configured cluster size, not the healthy
  subset, so a cluster with too many failures can never elect a leader.
- Followers accept AppendEntries whenever the term is not stale; there is
  no previous-entry consistency check.
- Elections are only started explicitly; there are no timeouts.

Example::

    raft = RaftEngine(node_count=5)
    raft.start_election("node-0")
    raft.deliver_all()
    raft.add_client_request("node-0", "SET x=1")
    raft.deliver_all()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from distlab.components.consensus.log import Log, LogEntry
from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology, majority

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)


class RaftState(Enum):
    FOLLOWER = "follower"
    CANDIDATE = "candidate"
    LEADER = "leader"


@dataclass
class RaftNode(Node):
    """Raft participant.

    Attributes:
        state: Follower, candidate or leader.
        term: Latest term this node has seen.
        voted_for: Candidate granted this node's vote in ``term``.
        votes: Voters that granted this node's current candidacy.
        leader_id: Leader this node last heard from.
        log: Replicated command log.
        match_index: Leader only. Highest index known replicated per follower.
    """

    state: RaftState = RaftState.FOLLOWER
    term: int = 0
    voted_for: str | None = None
    votes: set[str] = field(default_factory=set)
    leader_id: str | None = None
    log: Log = field(default_factory=Log)
    match_index: dict[str, int] = field(default_factory=dict)

    @property
    def commit_index(self) -> int:
        return self.log.commit_index

    @property
    def votes_received(self) -> int:
        return len(self.votes)


@dataclass(frozen=True)
class RequestVote:
    term: int
    candidate_id: str
    last_log_index: int
    last_log_term: int


@dataclass(frozen=True)
class RequestVoteResponse:
    term: int
    vote_granted: bool


@dataclass(frozen=True)
class AppendEntries:
    term: int
    leader_id: str
    entries: tuple[LogEntry, ...]
    leader_commit: int


@dataclass(frozen=True)
class AppendEntriesResponse:
    term: int
    success: bool
    match_index: int


@dataclass(frozen=True)
class RaftStats:
    """Cluster-wide snapshot.

    Attributes:
        leader_id: Current leader, if any healthy node is leader.
        current_term: Highest term across all nodes.
        healthy_nodes: Nodes currently healthy.
        total_messages: Messages sent since the last reset.
        log_length: Length of the leader's log (0 without a leader).
        commit_index: Leader's commit index (0 without a leader).
        elections_started: Elections started since the last reset.
    """

    leader_id: str | None = None
    current_term: int = 0
    healthy_nodes: int = 0
    total_messages: int = 0
    log_length: int = 0
    commit_index: int = 0
    elections_started: int = 0


class RaftEngine(ProtocolEngine):
    """Raft cluster of ``node_count`` nodes named ``node-0`` .. ``node-{n-1}``.

    Args:
        node_count: Cluster size.
        name: Log label.
        clock: Time source.
        seed: Unused by Raft itself; accepted for a uniform constructor.
    """

    message_prefix = "raft"

    def __init__(self, node_count: int = 5, *, name: str | None = None, clock=None, seed: int | None = None):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self._node_count = node_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(RaftNode(f"node-{i}") for i in range(self._node_count))
        self._elections_started = 0

    def _message_handlers(self):
        return {
            RequestVote: self._handle_request_vote,
            RequestVoteResponse: self._handle_request_vote_response,
            AppendEntries: self._handle_append_entries,
            AppendEntriesResponse: self._handle_append_entries_response,
        }

    def _instructions(self):
        return {
            "start_election": self.start_election,
            "send_heartbeat": self.send_heartbeat,
            "add_client_request": self.add_client_request,
        }

    @property
    def quorum_size(self) -> int:
        return majority(len(self._topology))

    @property
    def leader(self) -> RaftNode | None:
        leaders = [n for n in self._topology if n.state is RaftState.LEADER and n.is_healthy]
        if not leaders:
            return None
        return max(leaders, key=lambda n: n.term)

    @property
    def stats(self) -> RaftStats:
        leader = self.leader
        return RaftStats(
            leader_id=leader.id if leader else None,
            current_term=max((n.term for n in self._topology), default=0),
            healthy_nodes=len(self._topology.healthy()),
            total_messages=len(self._messages),
            log_length=len(leader.log) if leader else 0,
            commit_index=leader.commit_index if leader else 0,
            elections_started=self._elections_started,
        )

    # -- election ------------------------------------------------------------

    def start_election(self, node_id: str) -> None:
        """Promote ``node_id`` to candidate for a new term and request votes."""
        node = self._topology.get(node_id)
        if node is None:
            return
        if not node.is_healthy:
            self.log_event("election_failed", f"{node_id} cannot start an election while failed", node_id=node_id)
            return

        node.term += 1
        node.state = RaftState.CANDIDATE
        node.voted_for = node.id
        node.votes = {node.id}
        node.leader_id = None
        self._elections_started += 1

        request = RequestVote(
            term=node.term,
            candidate_id=node.id,
            last_log_index=node.log.last_index,
            last_log_term=node.log.last_term,
        )
        sent = self.broadcast(node.id, request)

        logger.debug("[%s] %s starting election for term %d", self.name, node_id, node.term)
        self.log_event(
            "election_started",
            f"{node_id} started election for term {node.term}",
            node_id=node_id,
            term=node.term,
            requests=len(sent),
        )

        # A single-node cluster wins immediately.
        if len(node.votes) >= self.quorum_size:
            self._become_leader(node)

    def _handle_request_vote(self, message: Message) -> None:
        voter: RaftNode = self._topology.get(message.target)
        request: RequestVote = message.payload

        if request.term > voter.term:
            self._step_down(voter, request.term)

        granted = request.term >= voter.term and voter.voted_for in (None, request.candidate_id)
        if granted:
            voter.voted_for = request.candidate_id

        self.send(voter.id, message.source, RequestVoteResponse(term=voter.term, vote_granted=granted))
        self.log_event(
            "vote_granted" if granted else "vote_denied",
            f"{voter.id} -> {request.candidate_id}: {'granted' if granted else 'denied'} for term {request.term}",
            voter=voter.id,
            candidate=request.candidate_id,
            term=request.term,
        )

    def _handle_request_vote_response(self, message: Message) -> None:
        candidate: RaftNode = self._topology.get(message.target)
        response: RequestVoteResponse = message.payload

        if response.term > candidate.term:
            self._step_down(candidate, response.term)
            self.log_event(
                "stepped_down",
                f"{candidate.id} saw term {response.term} and stepped down",
                node_id=candidate.id,
                term=response.term,
            )
            return

        # Late responses for an abandoned candidacy or an older term are dropped.
        if candidate.state is not RaftState.CANDIDATE or response.term != candidate.term:
            return
        if not response.vote_granted:
            return

        candidate.votes.add(message.source)
        self.log_event(
            "vote_received",
            f"{candidate.id} received vote from {message.source} ({len(candidate.votes)}/{len(self._topology)})",
            candidate=candidate.id,
            voter=message.source,
            votes=len(candidate.votes),
            total_nodes=len(self._topology),
        )
        if len(candidate.votes) >= self.quorum_size:
            self._become_leader(candidate)

    def _become_leader(self, node: RaftNode) -> None:
        node.state = RaftState.LEADER
        node.leader_id = node.id
        node.match_index = {other.id: 0 for other in self._topology.others(node.id)}
        for other in self._topology.others(node.id):
            if other.is_healthy:
                other.state = RaftState.FOLLOWER
                other.votes = set()

        logger.info("[%s] %s became leader for term %d", self.name, node.id, node.term)
        self.log_event(
            "leader_elected",
            f"{node.id} became leader for term {node.term}",
            leader_id=node.id,
            term=node.term,
            votes=len(node.votes),
        )
        node.votes = set()

    def _step_down(self, node: RaftNode, term: int) -> None:
        node.term = term
        node.state = RaftState.FOLLOWER
        node.voted_for = None
        node.votes = set()

    # -- replication ---------------------------------------------------------

    def send_heartbeat(self, leader_id: str) -> None:
        """Send an empty AppendEntries from the leader to every healthy follower."""
        leader = self._topology.get(leader_id)
        if leader is None:
            return
        if not leader.is_healthy or leader.state is not RaftState.LEADER:
            self.log_event("heartbeat_failed", f"{leader_id} is not an active leader", node_id=leader_id)
            return
        heartbeat = AppendEntries(
            term=leader.term, leader_id=leader.id, entries=(), leader_commit=leader.commit_index
        )
        sent = self.broadcast(leader.id, heartbeat)
        self.log_event(
            "heartbeat_sent",
            f"{leader_id} sent heartbeat for term {leader.term}",
            leader_id=leader_id,
            term=leader.term,
            followers=len(sent),
        )

    def add_client_request(self, leader_id: str, command: str) -> LogEntry | None:
        """Append ``command`` to the leader's log and replicate it.

        Returns:
            The new entry, or None if ``leader_id`` is not a healthy leader.
        """
        leader = self._topology.get(leader_id)
        if leader is None:
            return None
        if not leader.is_healthy or leader.state is not RaftState.LEADER:
            self.log_event(
                "client_request_failed",
                f"{leader_id} is not the leader; rejected {command!r}",
                node_id=leader_id,
                command=command,
            )
            return None

        entry = leader.log.append(leader.term, command)
        self._replicate(leader)
        self.log_event(
            "client_request",
            f"{leader_id} appended {command!r} at index {entry.index}",
            leader_id=leader_id,
            command=command,
            index=entry.index,
            term=entry.term,
        )
        if self.quorum_size == 1:
            self._advance_commit(leader)
        return entry

    def _replicate(self, leader: RaftNode) -> None:
        for follower in self._topology.others(leader.id):
            if not follower.is_healthy:
                continue
            entries = leader.log.entries_after(leader.match_index.get(follower.id, 0))
            self.send(
                leader.id,
                follower.id,
                AppendEntries(
                    term=leader.term,
                    leader_id=leader.id,
                    entries=tuple(entries),
                    leader_commit=leader.commit_index,
                ),
            )

    def _handle_append_entries(self, message: Message) -> None:
        follower: RaftNode = self._topology.get(message.target)
        request: AppendEntries = message.payload

        if request.term > follower.term:
            self._step_down(follower, request.term)

        success = request.term >= follower.term
        if success:
            if follower.state is not RaftState.FOLLOWER:
                follower.state = RaftState.FOLLOWER
                follower.votes = set()
            follower.leader_id = request.leader_id
            for entry in request.entries:
                follower.log.place(entry)
            follower.log.advance_commit(min(request.leader_commit, follower.log.last_index))

        self.send(
            follower.id,
            message.source,
            AppendEntriesResponse(term=follower.term, success=success, match_index=follower.log.last_index),
        )
        kind = "append_entries" if request.entries else "heartbeat"
        self.log_event(
            f"{kind}_accepted" if success else f"{kind}_rejected",
            f"{follower.id} {'accepted' if success else 'rejected'} {kind.replace('_', ' ')} from {request.leader_id}",
            follower=follower.id,
            leader_id=request.leader_id,
            term=request.term,
            entries=len(request.entries),
        )

    def _handle_append_entries_response(self, message: Message) -> None:
        leader: RaftNode = self._topology.get(message.target)
        response: AppendEntriesResponse = message.payload

        if response.term > leader.term:
            was_leader = leader.state is RaftState.LEADER
            self._step_down(leader, response.term)
            leader.leader_id = None
            self.log_event(
                "stepped_down",
                f"{leader.id} saw term {response.term} and stepped down",
                node_id=leader.id,
                term=response.term,
                was_leader=was_leader,
            )
            return
        if leader.state is not RaftState.LEADER or not response.success:
            return

        previous = leader.match_index.get(message.source, 0)
        leader.match_index[message.source] = max(previous, min(response.match_index, leader.log.last_index))
        if leader.match_index[message.source] != previous:
            self.log_event(
                "replication_ack",
                f"{message.source} holds {leader.id}'s log up to index {leader.match_index[message.source]}",
                leader_id=leader.id,
                follower=message.source,
                match_index=leader.match_index[message.source],
            )
            self._advance_commit(leader)

    def _advance_commit(self, leader: RaftNode) -> None:
        for index in range(leader.log.last_index, leader.commit_index, -1):
            replicas = 1 + sum(1 for m in leader.match_index.values() if m >= index)
            if replicas >= self.quorum_size:
                newly = leader.log.advance_commit(index)
                logger.info("[%s] %s committed up to index %d", self.name, leader.id, index)
                self.log_event(
                    "entries_committed",
                    f"{leader.id} committed {len(newly)} entr{'y' if len(newly) == 1 else 'ies'} up to index {index}",
                    leader_id=leader.id,
                    commit_index=index,
                )
                return

    # -- failures ------------------------------------------------------------

    def _on_fail(self, node: RaftNode) -> None:
        node.state = RaftState.FOLLOWER
        node.votes = set()
