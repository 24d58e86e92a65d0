"""Integration tests for atomic commitment driven end to end.

Scenario:
- A coordinator runs Two-Phase Commit with three participants
- Every participant votes yes: the transaction commits everywhere
- One participant votes no: the transaction aborts everywhere
- The same runs are replayed from scripted instructions, the way a
  step-through driver would feed them in
"""

from __future__ import annotations

import pytest

from distlab.components.commit.two_phase import (
    Decision,
    TwoPhaseCommitEngine,
    TwoPhaseState,
    Vote,
)
from distlab.scenario import Scenario


def run_transaction(votes: list[Vote]) -> TwoPhaseCommitEngine:
    tpc = TwoPhaseCommitEngine(participant_count=len(votes), seed=11)
    tpc.start_transaction()
    tpc.deliver_all()
    for i, vote in enumerate(votes):
        tpc.participant_vote(f"participant-{i}", vote)
    tpc.deliver_all()
    tpc.coordinator_decide()
    tpc.deliver_all()
    tpc.coordinator_complete()
    return tpc


class TestTwoPhaseOutcomes:
    """Unanimity decides the outcome for every participant."""

    def test_unanimous_yes_commits(self):
        tpc = run_transaction([Vote.YES, Vote.YES, Vote.YES])

        assert tpc.coordinator.state is TwoPhaseState.COMMITTED
        assert all(p.state is TwoPhaseState.COMMITTED for p in tpc.participants)
        assert tpc.stats.outcome == "committed"
        assert len(tpc.events.of_type("ack_received")) == 3

    @pytest.mark.parametrize("no_voter", [0, 1, 2])
    def test_single_no_aborts(self, no_voter):
        votes = [Vote.YES] * 3
        votes[no_voter] = Vote.NO

        tpc = run_transaction(votes)

        assert tpc.coordinator.state is TwoPhaseState.ABORTED
        assert all(p.state is TwoPhaseState.ABORTED for p in tpc.participants)
        assert tpc.stats.outcome == "aborted"

    def test_decision_never_flips(self):
        """Once decided, later calls report the same outcome."""
        tpc = run_transaction([Vote.YES, Vote.NO, Vote.YES])

        assert tpc.coordinator_decide() is Decision.ABORT
        tpc.handle_timeout()
        assert tpc.stats.outcome == "aborted"


class TestTwoPhaseScenario:
    """The same transaction replayed from a scripted scenario."""

    COMMIT = {
        "name": "unanimous commit",
        "instructions": [
            {"type": "start_transaction"},
            {"type": "deliver_all"},
            {"type": "participant_vote", "data": {"participant_id": "participant-0", "vote": "yes"}},
            {"type": "participant_vote", "data": {"participant_id": "participant-1", "vote": "yes"}},
            {"type": "deliver_all"},
            {"type": "coordinator_decide"},
            {"type": "deliver_all"},
            {"type": "coordinator_complete"},
        ],
    }

    def test_replay_commits(self):
        tpc = TwoPhaseCommitEngine(participant_count=2, seed=11)

        results = Scenario.from_dict(self.COMMIT).replay(tpc)

        assert results[5] is Decision.COMMIT
        assert tpc.stats.outcome == "committed"

    def test_replay_is_deterministic(self):
        first = TwoPhaseCommitEngine(participant_count=2, seed=11)
        second = TwoPhaseCommitEngine(participant_count=2, seed=11)

        Scenario.from_dict(self.COMMIT).replay(first)
        Scenario.from_dict(self.COMMIT).replay(second)

        assert first.events.types() == second.events.types()
        assert first.transaction_id == second.transaction_id
