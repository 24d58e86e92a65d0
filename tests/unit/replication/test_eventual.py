"""Tests for eventual consistency with tunable consistency levels."""

import pytest

from distlab.components.replication.eventual import ConsistencyLevel, EventualConsistencyEngine


class TestEventualWrites:
    def test_quorum_write_replicates_synchronously_to_majority(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "v", ConsistencyLevel.QUORUM)

        assert [m.target for m in ec.message_log.of_kind("Replicate")] == ["N1"]
        assert ec.node("N0").vector_clock["N0"] == 1

    def test_all_write_replicates_to_every_copy(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "v", "ALL")

        assert [m.target for m in ec.message_log.of_kind("Replicate")] == ["N1", "N2"]

    def test_one_write_replicates_in_background(self, manual_clock):
        ec = EventualConsistencyEngine(clock=manual_clock)
        ec.write("N0", "k", "v", ConsistencyLevel.ONE)

        assert ec.messages == []
        assert ec.stats.pending_background_tasks == 2

        manual_clock.advance(999)
        assert ec.run_due() == 0

        manual_clock.advance(1)
        assert ec.run_due() == 2
        ec.deliver_all()

        assert ec.node("N1").data["k"].value == "v"
        assert ec.node("N2").data["k"].value == "v"
        assert ec.stats.pending_background_tasks == 0

    def test_write_to_failed_node(self):
        ec = EventualConsistencyEngine()
        ec.fail_node("N0")
        ec.write("N0", "k", "v")

        assert ec.events.last.type == "write_failed"

    def test_stale_replicate_is_ignored(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "first", ConsistencyLevel.QUORUM)
        ec.deliver_all()
        ec.write("N1", "k", "second", ConsistencyLevel.ONE)

        ec.send("N0", "N1", ec.message_log.of_kind("Replicate")[0].payload)
        ec.deliver_all()

        assert ec.node("N1").data["k"].value == "second"


class TestEventualReads:
    def test_one_read_is_local(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "v", ConsistencyLevel.ONE)

        assert ec.read("N1", "k", ConsistencyLevel.ONE) is None
        assert ec.read("N0", "k", ConsistencyLevel.ONE) == "v"
        assert ec.events.last.type == "read_local"

    def test_quorum_read_sees_unreplicated_write(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "v", ConsistencyLevel.ONE)

        assert ec.read("N1", "k", ConsistencyLevel.QUORUM) == "v"
        assert ec.events.last.type == "read_quorum"

    def test_causally_newer_value_wins(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "a", ConsistencyLevel.QUORUM)
        ec.deliver_all()
        ec.write("N1", "k", "b", ConsistencyLevel.ONE)

        assert ec.read("N0", "k", ConsistencyLevel.ALL) == "b"

    def test_read_from_failed_node(self):
        ec = EventualConsistencyEngine()
        ec.fail_node("N3")

        assert ec.read("N3", "k") is None
        assert ec.events.last.type == "read_failed"


class TestAntiEntropy:
    def test_anti_entropy_converges(self):
        ec = EventualConsistencyEngine(seed=4)
        ec.write("N0", "k", "v", ConsistencyLevel.ONE)
        ec.write("N3", "j", "w", ConsistencyLevel.ONE)

        for _ in range(10):
            ec.run_anti_entropy()
            ec.deliver_all()

        assert all("k" in n.data and "j" in n.data for n in ec.nodes)
        assert ec.stats.inconsistent_keys == 0

    def test_recovery_schedules_anti_entropy(self):
        ec = EventualConsistencyEngine()
        ec.fail_node("N2")
        ec.recover_node("N2")

        assert ec.stats.pending_background_tasks == 1
        ec.run_pending()
        assert ec.events.of_type("anti_entropy")

    def test_reset_cancels_background_work(self):
        ec = EventualConsistencyEngine()
        ec.write("N0", "k", "v", ConsistencyLevel.ONE)
        ec.reset()

        assert ec.stats.pending_background_tasks == 0
        assert ec.stats.total_keys == 0

    def test_rejects_bad_config(self):
        with pytest.raises(ValueError):
            EventualConsistencyEngine(node_count=0)
