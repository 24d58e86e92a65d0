"""Integration tests for consensus safety under arbitrary delivery orders.

Scenario:
- Messages are delivered one at a time in a seeded random order instead
  of send order, so each seed explores a different interleaving
- Paxos: two proposers compete with different values; the second starts
  part-way through the first one's run; optionally an acceptor fails
- Raft: two candidates campaign for the same term, later elections push
  the term up, and nodes fail and recover between steps
- Safety must hold for every seed: at most one decided value that every
  learner agrees with, and at most one leader per term
"""

from __future__ import annotations

import random

import pytest

from distlab.components.consensus.paxos import PaxosEngine
from distlab.components.consensus.raft import RaftEngine, RaftState

SEEDS = range(12)


def deliver_one(engine, rng: random.Random) -> bool:
    """Deliver a random in-flight message. Returns False when none remain."""
    pending = engine.message_log.in_flight()
    if not pending:
        return False
    engine.deliver(rng.choice(pending).id)
    return True


def drain(engine, rng: random.Random, limit: int = 10_000) -> None:
    for _ in range(limit):
        if not deliver_one(engine, rng):
            return
    raise AssertionError("messages still in flight after delivery limit")


class TestPaxosSafety:
    """Competing proposers never lead to two decided values."""

    @pytest.mark.parametrize("seed", SEEDS)
    def test_dueling_proposers_agree(self, seed):
        """The later, higher-numbered proposal always completes and agrees."""
        rng = random.Random(seed)
        paxos = PaxosEngine(seed=seed)

        paxos.start_proposal("proposer-0", "A")
        for _ in range(rng.randint(0, 12)):
            deliver_one(paxos, rng)
        paxos.start_proposal("proposer-1", "B")
        drain(paxos, rng)

        decided = paxos.decided_value
        assert decided in ("A", "B")
        assert all(l.learned_value in (None, decided) for l in paxos.learners)
        holding = [a for a in paxos.acceptors if a.accepted_value == decided]
        assert len(holding) >= paxos.quorum_size

    @pytest.mark.parametrize("seed", SEEDS)
    def test_acceptor_failure_mid_run(self, seed):
        """One failed acceptor leaves a majority; safety is unaffected."""
        rng = random.Random(seed)
        paxos = PaxosEngine(seed=seed)

        paxos.start_proposal("proposer-0", "A")
        for _ in range(rng.randint(0, 8)):
            deliver_one(paxos, rng)
        paxos.fail_node(f"acceptor-{rng.randrange(5)}")
        paxos.start_proposal("proposer-1", "B")
        drain(paxos, rng)

        decided = paxos.decided_value
        assert decided is not None
        assert all(l.learned_value in (None, decided) for l in paxos.learners)

    def test_decision_is_sticky_across_later_proposals(self):
        """A proposal started after a decision adopts the decided value."""
        paxos = PaxosEngine(seed=3)
        paxos.start_proposal("proposer-0", "A")
        paxos.deliver_all()

        paxos.start_proposal("proposer-1", "B")
        paxos.deliver_all()

        assert paxos.decided_value == "A"
        assert all(a.accepted_value == "A" for a in paxos.acceptors)
        assert paxos.events.of_type("majority_promises")[-1].data["value"] == "A"


class TestRaftElectionSafety:
    """At most one leader is ever elected per term."""

    @staticmethod
    def leaders_by_term(raft) -> dict[int, list[str]]:
        by_term: dict[int, list[str]] = {}
        for event in raft.events.of_type("leader_elected"):
            by_term.setdefault(event.data["term"], []).append(event.data["leader_id"])
        return by_term

    @pytest.mark.parametrize("seed", SEEDS)
    def test_split_vote_elects_at_most_one(self, seed):
        """Two candidates in the same term split the votes between them."""
        rng = random.Random(seed)
        raft = RaftEngine(seed=seed)

        raft.start_election("node-1")
        raft.start_election("node-3")
        drain(raft, rng)

        leaders = [n for n in raft.nodes if n.state is RaftState.LEADER]
        assert len(leaders) <= 1
        assert all(len(elected) == 1 for elected in self.leaders_by_term(raft).values())

    @pytest.mark.parametrize("seed", SEEDS)
    def test_elections_with_failures(self, seed):
        """Repeated elections with nodes failing and recovering in between."""
        rng = random.Random(seed)
        raft = RaftEngine(seed=seed)
        ids = [n.id for n in raft.nodes]

        for _ in range(6):
            raft.start_election(rng.choice(ids))
            for _ in range(rng.randint(0, 6)):
                deliver_one(raft, rng)
            victim = rng.choice(ids)
            if raft.node(victim).is_healthy:
                raft.fail_node(victim)
            else:
                raft.recover_node(victim)
        drain(raft, rng)

        assert all(len(elected) == 1 for elected in self.leaders_by_term(raft).values())

    def test_majority_partition_keeps_electing(self):
        """With two of five nodes down every election still succeeds."""
        raft = RaftEngine(seed=5)
        raft.fail_node("node-3")
        raft.fail_node("node-4")

        for candidate in ("node-0", "node-1", "node-2"):
            raft.start_election(candidate)
            raft.deliver_all()
            assert raft.stats.leader_id == candidate

        assert sorted(self.leaders_by_term(raft)) == [1, 2, 3]
