"""Three-Phase Commit.

Adds a PRE_COMMIT round between vote collection and commit so that no
participant commits before every participant knows the outcome. Phases
advance only when the caller says so; there are no timeouts in this
model, so the blocking window shrinks but does not disappear.

Phase order::

    IDLE -> PREPARE -> PRE_COMMIT -> COMMIT -> DONE
                   \\-> ABORT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from distlab.components.commit.two_phase import Vote
from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

COORDINATOR_ID = "coordinator"


class ThreePhase(Enum):
    IDLE = "init"
    PREPARE = "prepare"
    PRE_COMMIT = "pre-commit"
    COMMIT = "commit"
    DONE = "done"
    ABORT = "abort"


@dataclass
class ThreePhaseParticipant(Node):
    phase: ThreePhase = ThreePhase.IDLE
    vote: Vote | None = None


@dataclass(frozen=True)
class PhaseMessage:
    """Coordinator -> participant phase change (Prepare, PreCommit, Commit, Abort)."""

    phase: ThreePhase


@dataclass(frozen=True)
class VoteMessage:
    vote: Vote


@dataclass(frozen=True)
class ThreePhaseStats:
    participants: int = 0
    prepared: int = 0
    committed: int = 0
    aborted: int = 0
    phase: ThreePhase = ThreePhase.IDLE


class ThreePhaseCommitEngine(ProtocolEngine):
    """Participants ``P0`` .. ``P{n-1}`` driven by an implicit coordinator."""

    message_prefix = "3pc"

    def __init__(self, participant_count: int = 3, *, name: str | None = None, clock=None, seed: int | None = None):
        if participant_count < 1:
            raise ValueError(f"participant_count must be >= 1, got {participant_count}")
        self._participant_count = participant_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(ThreePhaseParticipant(f"P{i}") for i in range(self._participant_count))
        self._phase = ThreePhase.IDLE

    def _message_handlers(self):
        return {PhaseMessage: self._handle_phase, VoteMessage: self._handle_vote}

    def _instructions(self):
        return {
            "start": self.start,
            "receive_vote": self.receive_vote,
            "decide": self.decide,
            "commit": self.commit,
        }

    def _can_receive(self, message: Message) -> bool:
        return message.target == COORDINATOR_ID or self._topology.is_healthy(message.target)

    @property
    def participants(self) -> list[ThreePhaseParticipant]:
        return list(self._topology)

    @property
    def phase(self) -> ThreePhase:
        return self._phase

    @property
    def stats(self) -> ThreePhaseStats:
        nodes = list(self._topology)
        return ThreePhaseStats(
            participants=len(nodes),
            prepared=sum(1 for p in nodes if p.phase in (ThreePhase.PREPARE, ThreePhase.PRE_COMMIT)),
            committed=sum(1 for p in nodes if p.phase in (ThreePhase.COMMIT, ThreePhase.DONE)),
            aborted=sum(1 for p in nodes if p.phase is ThreePhase.ABORT),
            phase=self._phase,
        )

    def _move_all(self, phase: ThreePhase) -> list[str]:
        self._phase = phase
        for participant in self._topology:
            participant.phase = phase
        return [m.target for m in self.broadcast(COORDINATOR_ID, PhaseMessage(phase), self._topology.ids())]

    def start(self) -> None:
        """Open the PREPARE phase and solicit votes."""
        if self._phase is not ThreePhase.IDLE:
            self.log_event("3pc_failed", f"Transaction already in {self._phase.value}", phase=self._phase.value)
            return
        for participant in self._topology:
            participant.vote = None
        targets = self._move_all(ThreePhase.PREPARE)
        self.log_event("3pc_prepare", "Coordinator sends PREPARE", participants=targets)

    def receive_vote(self, participant_id: str, vote: Vote | str) -> None:
        participant = self._topology.get(participant_id)
        if participant is None:
            return
        vote = Vote(vote)
        if not participant.is_healthy or self._phase is not ThreePhase.PREPARE:
            self.log_event(
                "vote_failed",
                f"{participant_id} cannot vote now",
                participant_id=participant_id,
                phase=self._phase.value,
            )
            return
        participant.vote = vote
        self.send(participant_id, COORDINATOR_ID, VoteMessage(vote))
        self.log_event("3pc_vote", f"{participant_id} votes {vote.value.upper()}", participant_id=participant_id, vote=vote.value)

    def decide(self) -> ThreePhase:
        """PRE_COMMIT if every participant voted yes, otherwise ABORT.

        A missing vote counts as no.
        """
        if self._phase is not ThreePhase.PREPARE:
            self.log_event("decide_failed", f"Nothing to decide in {self._phase.value}", phase=self._phase.value)
            return self._phase
        if all(p.vote is Vote.YES for p in self._topology):
            targets = self._move_all(ThreePhase.PRE_COMMIT)
            self.log_event("3pc_precommit", "Coordinator sends PRE-COMMIT", participants=targets)
        else:
            targets = self._move_all(ThreePhase.ABORT)
            logger.info("[%s] 3PC aborted", self.name)
            self.log_event("3pc_abort", "Coordinator aborts", participants=targets)
        return self._phase

    def commit(self) -> None:
        """Send COMMIT after PRE_COMMIT; participants end in DONE."""
        if self._phase is not ThreePhase.PRE_COMMIT:
            self.log_event("commit_failed", f"Cannot commit from {self._phase.value}", phase=self._phase.value)
            return
        targets = self._move_all(ThreePhase.COMMIT)
        self._phase = ThreePhase.DONE
        for participant in self._topology:
            participant.phase = ThreePhase.DONE
        logger.info("[%s] 3PC committed", self.name)
        self.log_event("3pc_commit", "Coordinator commits", participants=targets)

    def _handle_phase(self, message: Message) -> None:
        self.log_event(
            "phase_received",
            f"{message.target} received {message.payload.phase.value.upper()}",
            participant_id=message.target,
            phase=message.payload.phase.value,
        )

    def _handle_vote(self, message: Message) -> None:
        self.log_event(
            "vote_received",
            f"Coordinator received {message.payload.vote.value.upper()} from {message.source}",
            participant_id=message.source,
        )
