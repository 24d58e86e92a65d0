"""Tests for the Two-Phase Commit engine."""

import pytest

from distlab.components.commit.two_phase import (
    COORDINATOR_ID,
    Decision,
    TwoPhaseCommitEngine,
    TwoPhaseState,
    Vote,
)


def prepared(participant_count=3, votes=None):
    tpc = TwoPhaseCommitEngine(participant_count=participant_count, seed=1)
    tpc.start_transaction()
    tpc.deliver_all()
    for i, vote in enumerate(votes or []):
        tpc.participant_vote(f"participant-{i}", vote)
    tpc.deliver_all()
    return tpc


class TestTwoPhaseSetup:
    def test_nodes(self):
        tpc = TwoPhaseCommitEngine(participant_count=3)

        assert tpc.coordinator.id == COORDINATOR_ID
        assert [p.id for p in tpc.participants] == ["participant-0", "participant-1", "participant-2"]
        assert tpc.stats.outcome == "in-progress"

    def test_transaction_id_is_seeded(self):
        assert TwoPhaseCommitEngine(seed=5).transaction_id == TwoPhaseCommitEngine(seed=5).transaction_id

    def test_rejects_empty_participants(self):
        with pytest.raises(ValueError):
            TwoPhaseCommitEngine(participant_count=0)


class TestTwoPhaseVoting:
    def test_start_sends_vote_requests(self):
        tpc = TwoPhaseCommitEngine()
        tpc.start_transaction()

        assert tpc.coordinator.state is TwoPhaseState.PREPARING
        assert len(tpc.message_log.of_kind("VoteRequest")) == 3

    def test_second_start_fails(self):
        tpc = TwoPhaseCommitEngine()
        tpc.start_transaction()
        tpc.start_transaction()

        assert tpc.events.last.type == "transaction_failed"

    def test_decide_waits_for_votes(self):
        tpc = prepared(votes=[Vote.YES])

        assert tpc.coordinator_decide() is Decision.WAITING
        assert tpc.stats.pending_votes == 2

    def test_vote_accepts_strings(self):
        tpc = prepared(votes=["yes", "no"])

        assert tpc.node("participant-0").state is TwoPhaseState.PREPARED
        assert tpc.node("participant-1").state is TwoPhaseState.ABORTED
        assert tpc.stats.yes_votes == 1
        assert tpc.stats.no_votes == 1

    def test_down_participant_cannot_vote(self):
        tpc = TwoPhaseCommitEngine()
        tpc.start_transaction()
        tpc.fail_node("participant-2")

        tpc.participant_vote("participant-2", Vote.YES)

        assert tpc.events.last.type == "vote_failed"
        assert tpc.node("participant-2").vote is None

    def test_vote_without_request_fails(self):
        tpc = TwoPhaseCommitEngine()
        tpc.participant_vote("participant-0", Vote.YES)

        assert tpc.events.last.type == "vote_failed"

    def test_double_vote_is_ignored(self):
        tpc = prepared(votes=[Vote.YES])
        tpc.participant_vote("participant-0", Vote.NO)

        assert tpc.node("participant-0").vote is Vote.YES


class TestTwoPhaseDecision:
    def test_all_yes_commits(self):
        tpc = prepared(votes=[Vote.YES] * 3)

        assert tpc.coordinator_decide() is Decision.COMMIT
        tpc.deliver_all()
        tpc.coordinator_complete()

        assert tpc.stats.outcome == "committed"
        assert all(p.state is TwoPhaseState.COMMITTED for p in tpc.participants)

    def test_one_no_aborts_everyone(self):
        tpc = prepared(votes=[Vote.YES, Vote.NO, Vote.YES])

        assert tpc.coordinator_decide() is Decision.ABORT
        tpc.deliver_all()
        tpc.coordinator_complete()

        assert tpc.stats.outcome == "aborted"
        assert all(p.state is TwoPhaseState.ABORTED for p in tpc.participants)

    def test_decision_is_sticky(self):
        tpc = prepared(votes=[Vote.YES] * 3)
        tpc.coordinator_decide()

        assert tpc.coordinator_decide() is Decision.COMMIT

    def test_failed_participant_is_not_waited_for(self):
        tpc = prepared(votes=[Vote.YES, Vote.YES])
        tpc.fail_node("participant-2")

        assert tpc.coordinator_decide() is Decision.COMMIT

    def test_explicit_finalize_sends_ack(self):
        tpc = prepared(votes=[Vote.YES] * 3)
        tpc.coordinator_decide()

        tpc.participant_finalize("participant-0", "commit")

        assert tpc.node("participant-0").state is TwoPhaseState.COMMITTED
        assert len(tpc.message_log.of_kind("Ack")) == 1

    def test_complete_waits_for_all_finalized(self):
        tpc = prepared(votes=[Vote.YES] * 3)
        tpc.coordinator_decide()
        tpc.participant_finalize("participant-0", Decision.COMMIT)

        tpc.coordinator_complete()

        assert tpc.coordinator.state is TwoPhaseState.COMMITTING

    def test_timeout_aborts_preparing(self):
        tpc = prepared(votes=[Vote.YES])
        tpc.handle_timeout()

        assert tpc.coordinator.state is TwoPhaseState.ABORTING
        assert tpc.events.last.type == "timeout"

    def test_timeout_after_decision_is_noop(self):
        tpc = prepared(votes=[Vote.YES] * 3)
        tpc.coordinator_decide()
        tpc.handle_timeout()

        assert tpc.coordinator.state is TwoPhaseState.COMMITTING

    def test_down_coordinator_cannot_decide(self):
        tpc = prepared(votes=[Vote.YES] * 3)
        tpc.fail_node(COORDINATOR_ID)

        assert tpc.coordinator_decide() is Decision.WAITING
        assert tpc.events.last.type == "decide_failed"
