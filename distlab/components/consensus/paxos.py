"""Single-decree Paxos with separate proposer, acceptor and learner roles.

Phase 1 (Prepare/Promise): a proposer picks a globally unique proposal
number and asks every healthy acceptor to promise not to accept anything
lower. Phase 2 (Accept/Accepted): once a strict majority of acceptors has
promised, the proposer asks them to accept a value, which is the value of
the highest-numbered proposal any promising acceptor already accepted, or
its own value if none had.

A value is *decided* the first time a strict majority of acceptors hold
it. The decision is sticky: ``check_for_decision`` never replaces it.

Proposal numbers are ``round * 10 + proposer_index`` where ``round`` is a
shared counter, so no two proposals ever share a number.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology, majority

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)


class PaxosRole(Enum):
    PROPOSER = "proposer"
    ACCEPTOR = "acceptor"
    LEARNER = "learner"


@dataclass
class PaxosNode(Node):
    """Paxos participant. Which fields matter depends on ``role``.

    Attributes:
        role: Proposer, acceptor or learner.
        index: Position within its role, used in proposal numbers.
        proposal_number: Proposer's current proposal (0 = none).
        proposed_value: Proposer's own value for the current proposal.
        promises: Proposer's promises for the current proposal, by acceptor.
        accept_sent: Proposer has already started phase 2 for this proposal.
        promised_proposal: Acceptor's highest promised number.
        accepted_proposal: Acceptor's highest accepted number (0 = none).
        accepted_value: Value accepted with ``accepted_proposal``.
        accepted_reports: Learner's view: acceptor id -> (number, value).
        learned_value: Value this learner has learned, if any.
    """

    role: PaxosRole = PaxosRole.ACCEPTOR
    index: int = 0
    proposal_number: int = 0
    proposed_value: Any = None
    promises: dict[str, Promise] = field(default_factory=dict)
    accept_sent: bool = False
    promised_proposal: int = 0
    accepted_proposal: int = 0
    accepted_value: Any = None
    accepted_reports: dict[str, tuple[int, Any]] = field(default_factory=dict)
    learned_value: Any = None


@dataclass(frozen=True)
class Prepare:
    proposal_number: int


@dataclass(frozen=True)
class Promise:
    proposal_number: int
    accepted_proposal: int
    accepted_value: Any


@dataclass(frozen=True)
class Nack:
    proposal_number: int
    promised_proposal: int


@dataclass(frozen=True)
class Accept:
    proposal_number: int
    value: Any


@dataclass(frozen=True)
class Accepted:
    proposal_number: int
    value: Any


@dataclass(frozen=True)
class PaxosStats:
    """Snapshot of a Paxos run.

    Attributes:
        proposals_started: Proposals started since the last reset.
        promises_received: Promises delivered to proposers.
        nacks_received: Nacks delivered to proposers.
        accepts: Accept requests acceptors agreed to.
        rejected_accepts: Accept requests refused because of a higher promise.
        decided_value: The decided value, or None.
        healthy_acceptors: Acceptors currently healthy.
    """

    proposals_started: int = 0
    promises_received: int = 0
    nacks_received: int = 0
    accepts: int = 0
    rejected_accepts: int = 0
    decided_value: Any = None
    healthy_acceptors: int = 0


class PaxosEngine(ProtocolEngine):
    """Proposers ``proposer-i``, acceptors ``acceptor-i`` and learners ``learner-i``.

    Args:
        proposer_count: Number of proposers.
        acceptor_count: Number of acceptors; the quorum is a majority of these.
        learner_count: Number of learners.
    """

    message_prefix = "paxos"

    def __init__(
        self,
        proposer_count: int = 2,
        acceptor_count: int = 5,
        learner_count: int = 2,
        *,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if proposer_count < 1 or acceptor_count < 1:
            raise ValueError("Paxos needs at least one proposer and one acceptor")
        if proposer_count > 10:
            raise ValueError("proposal numbering supports at most 10 proposers")
        self._counts = (proposer_count, acceptor_count, learner_count)
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        proposers, acceptors, learners = self._counts
        nodes: list[PaxosNode] = []
        nodes += [PaxosNode(f"proposer-{i}", role=PaxosRole.PROPOSER, index=i) for i in range(proposers)]
        nodes += [PaxosNode(f"acceptor-{i}", role=PaxosRole.ACCEPTOR, index=i) for i in range(acceptors)]
        nodes += [PaxosNode(f"learner-{i}", role=PaxosRole.LEARNER, index=i) for i in range(learners)]
        self._topology = Topology(nodes)
        self._round = 1
        self._decided_value: Any = None
        self._proposals_started = 0
        self._promises_received = 0
        self._nacks_received = 0
        self._accepts = 0
        self._rejected_accepts = 0

    def _message_handlers(self):
        return {
            Prepare: self._handle_prepare,
            Promise: self._handle_promise,
            Nack: self._handle_nack,
            Accept: self._handle_accept,
            Accepted: self._handle_accepted,
        }

    def _instructions(self):
        return {"start_proposal": self.start_proposal, "propose": self.start_proposal}

    def _role(self, role: PaxosRole) -> list[PaxosNode]:
        return [n for n in self._topology if n.role is role]

    @property
    def proposers(self) -> list[PaxosNode]:
        return self._role(PaxosRole.PROPOSER)

    @property
    def acceptors(self) -> list[PaxosNode]:
        return self._role(PaxosRole.ACCEPTOR)

    @property
    def learners(self) -> list[PaxosNode]:
        return self._role(PaxosRole.LEARNER)

    @property
    def quorum_size(self) -> int:
        return majority(len(self.acceptors))

    @property
    def decided_value(self) -> Any:
        return self._decided_value

    @property
    def stats(self) -> PaxosStats:
        return PaxosStats(
            proposals_started=self._proposals_started,
            promises_received=self._promises_received,
            nacks_received=self._nacks_received,
            accepts=self._accepts,
            rejected_accepts=self._rejected_accepts,
            decided_value=self._decided_value,
            healthy_acceptors=sum(1 for a in self.acceptors if a.is_healthy),
        )

    # -- phase 1 -------------------------------------------------------------

    def start_proposal(self, proposer_id: str, value: Any) -> int | None:
        """Begin phase 1 for ``value``.

        Returns:
            The new proposal number, or None if the proposer is unknown or failed.
        """
        proposer = self._topology.get(proposer_id)
        if proposer is None or proposer.role is not PaxosRole.PROPOSER:
            return None
        if not proposer.is_healthy:
            self.log_event("proposal_failed", f"{proposer_id} is down and cannot propose", proposer_id=proposer_id)
            return None

        number = self._round * 10 + proposer.index
        self._round += 1
        proposer.proposal_number = number
        proposer.proposed_value = value
        proposer.promises = {}
        proposer.accept_sent = False
        self._proposals_started += 1

        sent = self.broadcast(proposer.id, Prepare(number), [a.id for a in self.acceptors])
        self.log_event(
            "prepare_started",
            f"{proposer_id} starts proposal {number} with value {value!r}",
            proposer_id=proposer_id,
            proposal_number=number,
            value=value,
            prepares=len(sent),
        )
        return number

    propose = start_proposal

    def _handle_prepare(self, message: Message) -> None:
        acceptor: PaxosNode = self._topology.get(message.target)
        number = message.payload.proposal_number

        if number > acceptor.promised_proposal:
            acceptor.promised_proposal = number
            self.send(
                acceptor.id,
                message.source,
                Promise(number, acceptor.accepted_proposal, acceptor.accepted_value),
            )
            self.log_event(
                "promise_sent",
                f"{acceptor.id} -> {message.source}: Promise({number})",
                acceptor_id=acceptor.id,
                proposal_number=number,
                accepted_proposal=acceptor.accepted_proposal,
            )
        else:
            self.send(acceptor.id, message.source, Nack(number, acceptor.promised_proposal))
            self.log_event(
                "nack_sent",
                f"{acceptor.id} -> {message.source}: Nack({number}), already promised {acceptor.promised_proposal}",
                acceptor_id=acceptor.id,
                proposal_number=number,
                promised_proposal=acceptor.promised_proposal,
            )

    def _handle_promise(self, message: Message) -> None:
        proposer: PaxosNode = self._topology.get(message.target)
        promise: Promise = message.payload
        self._promises_received += 1

        if promise.proposal_number != proposer.proposal_number or proposer.accept_sent:
            return
        proposer.promises[message.source] = promise
        if len(proposer.promises) < self.quorum_size:
            self.log_event(
                "promise_received",
                f"{proposer.id} has {len(proposer.promises)}/{self.quorum_size} promises for {promise.proposal_number}",
                proposer_id=proposer.id,
                proposal_number=promise.proposal_number,
                promises=len(proposer.promises),
            )
            return

        value = proposer.proposed_value
        highest = 0
        for p in proposer.promises.values():
            if p.accepted_proposal > highest:
                highest = p.accepted_proposal
                value = p.accepted_value

        proposer.accept_sent = True
        sent = self.broadcast(proposer.id, Accept(promise.proposal_number, value), [a.id for a in self.acceptors])
        logger.debug(
            "[%s] %s has a majority of promises for %d, proposing %r",
            self.name, proposer.id, promise.proposal_number, value,
        )
        self.log_event(
            "majority_promises",
            f"{proposer.id} received majority promises for {promise.proposal_number}; sending Accept({value!r})",
            proposer_id=proposer.id,
            proposal_number=promise.proposal_number,
            value=value,
            adopted_from=highest or None,
            accepts_sent=len(sent),
        )

    def _handle_nack(self, message: Message) -> None:
        nack: Nack = message.payload
        self._nacks_received += 1
        self.log_event(
            "proposal_rejected",
            f"{message.target}'s proposal {nack.proposal_number} was rejected by {message.source} "
            f"(promised {nack.promised_proposal})",
            proposer_id=message.target,
            acceptor_id=message.source,
            proposal_number=nack.proposal_number,
            promised_proposal=nack.promised_proposal,
        )

    # -- phase 2 -------------------------------------------------------------

    def _handle_accept(self, message: Message) -> None:
        acceptor: PaxosNode = self._topology.get(message.target)
        accept: Accept = message.payload

        if accept.proposal_number < acceptor.promised_proposal:
            self._rejected_accepts += 1
            self.log_event(
                "accept_rejected",
                f"{acceptor.id} refused Accept({accept.proposal_number}); promised {acceptor.promised_proposal}",
                acceptor_id=acceptor.id,
                proposal_number=accept.proposal_number,
                promised_proposal=acceptor.promised_proposal,
            )
            return

        acceptor.promised_proposal = accept.proposal_number
        acceptor.accepted_proposal = accept.proposal_number
        acceptor.accepted_value = accept.value
        self._accepts += 1
        self.broadcast(acceptor.id, Accepted(accept.proposal_number, accept.value), [l.id for l in self.learners])
        self.log_event(
            "accepted",
            f"{acceptor.id} accepted {accept.value!r} under proposal {accept.proposal_number}",
            acceptor_id=acceptor.id,
            proposal_number=accept.proposal_number,
            value=accept.value,
        )
        self.check_for_decision()

    def _handle_accepted(self, message: Message) -> None:
        learner: PaxosNode = self._topology.get(message.target)
        accepted: Accepted = message.payload
        previous = learner.accepted_reports.get(message.source)
        if previous is None or accepted.proposal_number >= previous[0]:
            learner.accepted_reports[message.source] = (accepted.proposal_number, accepted.value)

        if learner.learned_value is not None:
            return
        counts = Counter(value for _, value in learner.accepted_reports.values())
        for value, count in counts.items():
            if count >= self.quorum_size:
                learner.learned_value = value
                self.log_event(
                    "value_learned",
                    f"{learner.id} learned {value!r}",
                    learner_id=learner.id,
                    value=value,
                )
                return

    def check_for_decision(self) -> Any:
        """Record a decision if a majority of acceptors hold the same value.

        Returns:
            The decided value (possibly decided earlier), or None.
        """
        if self._decided_value is not None:
            return self._decided_value
        counts = Counter(a.accepted_value for a in self.acceptors if a.accepted_proposal > 0)
        for value, count in counts.items():
            if count >= self.quorum_size:
                self._decided_value = value
                logger.info("[%s] Consensus reached on %r", self.name, value)
                self.log_event(
                    "value_decided",
                    f"Consensus reached: decided {value!r}",
                    value=value,
                    acceptor_count=count,
                )
                break
        return self._decided_value
