"""Tests for joint consensus, Multi-Paxos and EPaxos."""

import pytest

from distlab.components.consensus.variants import (
    ConfigPhase,
    ConsensusVariant,
    ConsensusVariantsEngine,
    EPaxosPath,
    VariantRole,
)


class TestJointConsensus:
    """Tests for Raft membership change."""

    def test_joint_then_new(self):
        engine = ConsensusVariantsEngine()

        engine.start_joint_consensus(["N2", "N3", "N4"])
        assert engine.stats.config_phase is ConfigPhase.JOINT

        engine.finalize_joint_consensus()
        phases = {n.id: n.config_phase for n in engine.cluster()}
        assert phases["N0"] is ConfigPhase.OLD
        assert phases["N4"] is ConfigPhase.NEW

    def test_joint_quorum_needs_both_majorities(self):
        engine = ConsensusVariantsEngine()
        engine.start_joint_consensus(["N2", "N3", "N4"])

        assert engine.joint_quorum_met(["N0", "N1", "N2"]) is False
        assert engine.joint_quorum_met(["N0", "N2", "N3"]) is True

    def test_finalize_without_joint_phase(self):
        engine = ConsensusVariantsEngine()
        engine.finalize_joint_consensus()
        assert engine.events.last.type == "joint_end_failed"

    def test_append_replicates_to_healthy_followers(self):
        engine = ConsensusVariantsEngine()
        engine.elect_leader("N1")
        engine.fail_node("N4")

        entry = engine.append_entry("cfg")
        engine.deliver_all()

        assert entry.committed
        assert engine.stats.committed == 4
        assert engine.node("N4").log == []


class TestMultiPaxos:
    """Tests for steady-state slot filling."""

    def test_slots_are_sequential(self):
        engine = ConsensusVariantsEngine(variant=ConsensusVariant.MULTI_PAXOS)
        engine.elect_leader("N0")

        first = engine.propose_multi_paxos("a")
        second = engine.propose_multi_paxos("b")
        engine.deliver_all()

        assert (first.slot, second.slot) == (0, 1)
        assert [e.slot for e in engine.node("N3").log] == [0, 1]

    def test_down_leader_cannot_propose(self):
        engine = ConsensusVariantsEngine(variant="multi-paxos")
        engine.elect_leader("N0")
        engine.fail_node("N0")

        assert engine.propose_multi_paxos("a") is None
        assert engine.events.last.type == "append_failed"


class TestEPaxos:
    """Tests for leaderless command instances."""

    def test_fast_path_commits_immediately(self):
        engine = ConsensusVariantsEngine(variant=ConsensusVariant.EPAXOS, seed=3)

        instance = engine.propose_epaxos("x")

        assert instance.committed
        assert engine.node(instance.leader_id).role is VariantRole.PROPOSER
        assert engine.stats.epaxos_fast == 1

    def test_slow_path_waits_for_commit(self):
        engine = ConsensusVariantsEngine(variant=ConsensusVariant.EPAXOS, seed=3)

        instance = engine.propose_epaxos("x", path=EPaxosPath.SLOW)
        assert engine.stats.epaxos_pending == 1

        engine.commit_epaxos(instance.id)
        assert instance.committed
        assert engine.stats.epaxos_pending == 0

    def test_seeded_choice_is_reproducible(self):
        a = ConsensusVariantsEngine(variant="epaxos", seed=9)
        b = ConsensusVariantsEngine(variant="epaxos", seed=9)

        assert [a.propose_epaxos(v).leader_id for v in "abc"] == [b.propose_epaxos(v).leader_id for v in "abc"]


class TestVariantSelection:
    """Tests for switching between clusters."""

    def test_clusters_are_independent(self):
        engine = ConsensusVariantsEngine()
        engine.append_entry("raft-only")

        engine.set_variant("multi-paxos")

        assert engine.stats.committed == 0
        assert engine.stats_for(ConsensusVariant.RAFT_JOINT).committed == 1

    def test_unknown_variant_rejected(self):
        with pytest.raises(ValueError):
            ConsensusVariantsEngine(variant="zab")
