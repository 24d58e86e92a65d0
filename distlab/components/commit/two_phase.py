"""Two-Phase Commit with a single coordinator.

The caller drives every step, which is what makes the protocol's blocking
behavior visible:

1. ``start_transaction`` moves the coordinator to PREPARING and sends a
   VoteRequest to every healthy participant.
2. ``participant_vote`` records each participant's YES (PREPARED) or NO
   (ABORTED) and sends the vote back.
3. ``coordinator_decide`` answers WAITING until every healthy participant
   has voted, then COMMIT iff all of them voted yes, else ABORT, and
   sends the decision out.
4. ``participant_finalize`` applies the decision at a participant and
   acknowledges it. Delivering the decision message does the same.
5. ``coordinator_complete`` moves the coordinator to its terminal state
   once every healthy participant has finalized.

A failed participant never votes; the engine does not invent a NO on its
behalf. ``handle_timeout`` is the escape hatch: in PREPARING it forces
an abort. If the coordinator itself fails after collecting votes, the
prepared participants stay blocked.

Example::

    tpc = TwoPhaseCommitEngine(participant_count=3)
    tpc.start_transaction()
    for pid in ("participant-0", "participant-1", "participant-2"):
        tpc.participant_vote(pid, Vote.YES)
    assert tpc.coordinator_decide() is Decision.COMMIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.message import MessageStatus
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

COORDINATOR_ID = "coordinator"


class TwoPhaseState(Enum):
    INIT = "init"
    PREPARING = "preparing"
    PREPARED = "prepared"
    COMMITTING = "committing"
    ABORTING = "aborting"
    COMMITTED = "committed"
    ABORTED = "aborted"


class Vote(Enum):
    YES = "yes"
    NO = "no"


class Decision(Enum):
    WAITING = "waiting"
    COMMIT = "commit"
    ABORT = "abort"


@dataclass
class TwoPhaseNode(Node):
    """Coordinator or participant.

    Attributes:
        is_coordinator: True only for the coordinator.
        state: Protocol state.
        vote: Participant's vote, once cast.
        transaction_id: Transaction this node is working on.
    """

    is_coordinator: bool = False
    state: TwoPhaseState = TwoPhaseState.INIT
    vote: Vote | None = None
    transaction_id: str = ""

    @property
    def finalized(self) -> bool:
        return self.state in (TwoPhaseState.COMMITTED, TwoPhaseState.ABORTED)


@dataclass(frozen=True)
class VoteRequest:
    transaction_id: str


@dataclass(frozen=True)
class VoteReply:
    transaction_id: str
    vote: Vote


@dataclass(frozen=True)
class DecisionMessage:
    transaction_id: str
    decision: Decision


@dataclass(frozen=True)
class Ack:
    transaction_id: str


@dataclass(frozen=True)
class TwoPhaseStats:
    """Attributes:
        total_participants: Configured participants.
        healthy_participants: Participants currently healthy.
        failed_participants: Participants currently failed.
        yes_votes: Participants that voted yes.
        no_votes: Participants that voted no.
        pending_votes: Healthy participants that have not voted.
        coordinator_state: Coordinator's protocol state.
        outcome: ``"committed"``, ``"aborted"`` or ``"in-progress"``.
    """

    total_participants: int = 0
    healthy_participants: int = 0
    failed_participants: int = 0
    yes_votes: int = 0
    no_votes: int = 0
    pending_votes: int = 0
    coordinator_state: TwoPhaseState = TwoPhaseState.INIT
    outcome: str = "in-progress"


class TwoPhaseCommitEngine(ProtocolEngine):
    """Coordinator plus participants ``participant-0`` .. ``participant-{n-1}``."""

    message_prefix = "2pc"

    def __init__(self, participant_count: int = 3, *, name: str | None = None, clock=None, seed: int | None = None):
        if participant_count < 1:
            raise ValueError(f"participant_count must be >= 1, got {participant_count}")
        self._participant_count = participant_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._transaction_id = f"txn-{self._rng.getrandbits(32):08x}"
        nodes = [TwoPhaseNode(COORDINATOR_ID, is_coordinator=True, transaction_id=self._transaction_id)]
        nodes += [
            TwoPhaseNode(f"participant-{i}", transaction_id=self._transaction_id)
            for i in range(self._participant_count)
        ]
        self._topology = Topology(nodes)

    def _message_handlers(self):
        return {
            VoteRequest: self._handle_vote_request,
            VoteReply: self._handle_vote_reply,
            DecisionMessage: self._handle_decision,
            Ack: self._handle_ack,
        }

    def _instructions(self):
        return {
            "start_transaction": self.start_transaction,
            "participant_vote": self.participant_vote,
            "coordinator_decide": self.coordinator_decide,
            "participant_finalize": self.participant_finalize,
            "coordinator_complete": self.coordinator_complete,
            "handle_timeout": self.handle_timeout,
        }

    @property
    def transaction_id(self) -> str:
        return self._transaction_id

    @property
    def coordinator(self) -> TwoPhaseNode:
        return self._topology.get(COORDINATOR_ID)

    @property
    def participants(self) -> list[TwoPhaseNode]:
        return [n for n in self._topology if not n.is_coordinator]

    def _participant(self, participant_id: str) -> TwoPhaseNode | None:
        node = self._topology.get(participant_id)
        if node is None or node.is_coordinator:
            return None
        return node

    @property
    def stats(self) -> TwoPhaseStats:
        participants = self.participants
        healthy = [p for p in participants if p.is_healthy]
        yes = sum(1 for p in participants if p.vote is Vote.YES)
        no = sum(1 for p in participants if p.vote is Vote.NO)
        state = self.coordinator.state
        outcome = {TwoPhaseState.COMMITTED: "committed", TwoPhaseState.ABORTED: "aborted"}.get(state, "in-progress")
        return TwoPhaseStats(
            total_participants=len(participants),
            healthy_participants=len(healthy),
            failed_participants=len(participants) - len(healthy),
            yes_votes=yes,
            no_votes=no,
            pending_votes=sum(1 for p in healthy if p.vote is None),
            coordinator_state=state,
            outcome=outcome,
        )

    # -- phase 1 -------------------------------------------------------------

    def start_transaction(self) -> None:
        coordinator = self.coordinator
        if coordinator.state is not TwoPhaseState.INIT:
            self.log_event(
                "transaction_failed",
                f"Transaction {self._transaction_id} already in progress ({coordinator.state.value})",
                state=coordinator.state.value,
            )
            return
        if not coordinator.is_healthy:
            self.log_event("transaction_failed", "Coordinator is down", state=coordinator.state.value)
            return

        coordinator.state = TwoPhaseState.PREPARING
        sent = self.broadcast(COORDINATOR_ID, VoteRequest(self._transaction_id), [p.id for p in self.participants])
        logger.info("[%s] %s: PREPARE sent to %d participants", self.name, self._transaction_id, len(sent))
        self.log_event(
            "vote_request",
            f"Coordinator sends VoteRequest to {len(sent)} participants",
            transaction_id=self._transaction_id,
            participants=[m.target for m in sent],
        )

    def participant_vote(self, participant_id: str, vote: Vote | str) -> None:
        """Cast ``participant_id``'s vote and send it to the coordinator."""
        participant = self._participant(participant_id)
        if participant is None:
            return
        vote = Vote(vote)
        if not participant.is_healthy:
            self.log_event(
                "vote_failed",
                f"{participant_id} is down and cannot vote",
                participant_id=participant_id,
            )
            return
        if self.coordinator.state is not TwoPhaseState.PREPARING or participant.vote is not None:
            self.log_event(
                "vote_failed",
                f"{participant_id} has no open vote request",
                participant_id=participant_id,
                coordinator_state=self.coordinator.state.value,
            )
            return

        participant.vote = vote
        participant.state = TwoPhaseState.PREPARED if vote is Vote.YES else TwoPhaseState.ABORTED
        self._resolve(VoteRequest, participant_id)
        self.send(participant_id, COORDINATOR_ID, VoteReply(self._transaction_id, vote))
        self.log_event(
            "participant_vote",
            f"{participant_id} votes {vote.value.upper()}",
            participant_id=participant_id,
            vote=vote.value,
        )

    def _resolve(self, kind: type, participant_id: str) -> None:
        for message in self._messages.of_kind(kind):
            if message.source == COORDINATOR_ID and message.target == participant_id and message.is_in_flight:
                message.status = MessageStatus.SUCCESS

    def _handle_vote_request(self, message: Message) -> None:
        self.log_event(
            "vote_request_received",
            f"{message.target} received VoteRequest for {message.payload.transaction_id}",
            participant_id=message.target,
        )

    def _handle_vote_reply(self, message: Message) -> None:
        reply: VoteReply = message.payload
        self.log_event(
            "vote_received",
            f"Coordinator received {reply.vote.value.upper()} from {message.source}",
            participant_id=message.source,
            vote=reply.vote.value,
        )

    # -- phase 2 -------------------------------------------------------------

    def coordinator_decide(self) -> Decision:
        """Decide once every healthy participant has voted.

        Returns:
            WAITING while votes are outstanding, otherwise COMMIT iff every
            healthy participant voted yes, else ABORT.
        """
        coordinator = self.coordinator
        if coordinator.state in (TwoPhaseState.COMMITTING, TwoPhaseState.COMMITTED):
            return Decision.COMMIT
        if coordinator.state in (TwoPhaseState.ABORTING, TwoPhaseState.ABORTED):
            return Decision.ABORT
        if coordinator.state is not TwoPhaseState.PREPARING or not coordinator.is_healthy:
            self.log_event(
                "decide_failed",
                "Coordinator cannot decide: " + ("it is down" if not coordinator.is_healthy else "no transaction"),
                coordinator_state=coordinator.state.value,
            )
            return Decision.WAITING

        healthy = [p for p in self.participants if p.is_healthy]
        if any(p.vote is None for p in healthy):
            return Decision.WAITING

        if all(p.vote is Vote.YES for p in healthy):
            coordinator.state = TwoPhaseState.COMMITTING
            targets = [p.id for p in healthy if p.vote is Vote.YES]
            self.broadcast(COORDINATOR_ID, DecisionMessage(self._transaction_id, Decision.COMMIT), targets)
            logger.info("[%s] %s: decided COMMIT", self.name, self._transaction_id)
            self.log_event("commit_decision", "Coordinator decides to COMMIT", participants=targets)
            return Decision.COMMIT

        self._abort("abort_decision", "Coordinator decides to ABORT")
        return Decision.ABORT

    def _abort(self, event_type: str, description: str) -> None:
        self.coordinator.state = TwoPhaseState.ABORTING
        targets = [p.id for p in self.participants]
        sent = self.broadcast(COORDINATOR_ID, DecisionMessage(self._transaction_id, Decision.ABORT), targets)
        logger.info("[%s] %s: %s", self.name, self._transaction_id, description)
        self.log_event(event_type, description, participants=[m.target for m in sent])

    def participant_finalize(self, participant_id: str, decision: Decision | str) -> None:
        """Apply the coordinator's decision at ``participant_id`` and acknowledge it."""
        participant = self._participant(participant_id)
        if participant is None:
            return
        decision = Decision(decision)
        if decision is Decision.WAITING:
            return
        if not participant.is_healthy:
            self.log_event("finalize_failed", f"{participant_id} is down", participant_id=participant_id)
            return
        self._resolve(DecisionMessage, participant_id)
        self._finalize(participant, decision)

    def _handle_decision(self, message: Message) -> None:
        self._finalize(self._topology.get(message.target), message.payload.decision)

    def _finalize(self, participant: TwoPhaseNode, decision: Decision) -> None:
        if participant.finalized:
            return
        participant.state = TwoPhaseState.COMMITTED if decision is Decision.COMMIT else TwoPhaseState.ABORTED
        self.send(participant.id, COORDINATOR_ID, Ack(self._transaction_id))
        self.log_event(
            "participant_finalize",
            f"{participant.id} {'COMMITS' if decision is Decision.COMMIT else 'ABORTS'}",
            participant_id=participant.id,
            decision=decision.value,
        )

    def _handle_ack(self, message: Message) -> None:
        self.log_event("ack_received", f"Coordinator received Ack from {message.source}", participant_id=message.source)

    def coordinator_complete(self) -> None:
        """Move the coordinator to COMMITTED/ABORTED once all healthy participants finalized."""
        coordinator = self.coordinator
        if coordinator.state not in (TwoPhaseState.COMMITTING, TwoPhaseState.ABORTING):
            return
        if not all(p.finalized for p in self.participants if p.is_healthy):
            return
        if coordinator.state is TwoPhaseState.COMMITTING:
            coordinator.state = TwoPhaseState.COMMITTED
            self.log_event("transaction_complete", "Transaction COMMITTED successfully", outcome="committed")
        else:
            coordinator.state = TwoPhaseState.ABORTED
            self.log_event("transaction_complete", "Transaction ABORTED", outcome="aborted")
        logger.info("[%s] %s: %s", self.name, self._transaction_id, coordinator.state.value)

    def handle_timeout(self) -> None:
        """Abort a transaction stuck in PREPARING."""
        if self.coordinator.state is TwoPhaseState.PREPARING and self.coordinator.is_healthy:
            self._abort("timeout", "Coordinator timed out in PREPARE phase; aborting")
