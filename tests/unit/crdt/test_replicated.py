"""Tests for the CRDT replication engine."""

from distlab.components.crdt.replicated import CRDTReplicationEngine


class TestLocalOperations:
    def test_operations_stay_local_until_sync(self):
        crdt = CRDTReplicationEngine()
        crdt.increment("R1")
        crdt.add_element("R1", "apple")
        crdt.insert_text("R1", "a")

        assert crdt.node("R1").counter.value == 1
        assert crdt.node("R0").counter.value == 0
        assert crdt.stats.divergent_g_counter == 1
        assert crdt.stats.divergent_or_set == 1
        assert crdt.stats.divergent_rga == 1
        assert not crdt.stats.converged

    def test_operation_on_down_replica_fails(self):
        crdt = CRDTReplicationEngine()
        crdt.fail_node("R2")

        crdt.increment("R2")
        assert crdt.events.last.type == "gcounter_inc_failed"

        assert crdt.insert_text("R2", "x") is None
        assert crdt.events.last.type == "rga_insert_failed"

    def test_remove_and_delete_log_events(self):
        crdt = CRDTReplicationEngine()
        crdt.add_element("R0", "x")
        crdt.remove_element("R0", "x")
        element_id = crdt.insert_text("R0", "y")
        crdt.delete_text("R0", element_id)

        assert crdt.events.types()[-4:] == ["orset_add", "orset_remove", "rga_insert", "rga_remove"]
        assert crdt.node("R0").rga.text == ""


class TestSync:
    def test_sync_merges_both_ways(self):
        crdt = CRDTReplicationEngine(replica_count=2)
        crdt.increment("R0")
        crdt.increment("R1")
        crdt.increment("R1")

        crdt.sync("R0", "R1")
        crdt.deliver_all()

        assert crdt.node("R0").counter.value == 3
        assert crdt.node("R1").counter.value == 3
        assert crdt.stats.converged

    def test_sync_to_self_is_ignored(self):
        crdt = CRDTReplicationEngine()
        crdt.sync("R0", "R0")

        assert crdt.messages == []

    def test_sync_all_converges(self):
        crdt = CRDTReplicationEngine()
        crdt.increment("R0")
        crdt.add_element("R1", "pear")
        crdt.insert_text("R2", "z")

        crdt.sync_all()
        crdt.deliver_all()

        assert crdt.stats.converged
        assert all(r.or_set.elements == {"pear"} for r in crdt.replicas)

    def test_sync_with_down_replica_is_lost(self):
        crdt = CRDTReplicationEngine(replica_count=2)
        crdt.increment("R0")
        crdt.sync("R0", "R1")
        crdt.fail_node("R0")

        crdt.deliver_all()

        assert crdt.node("R1").counter.value == 0
        assert crdt.events.of_type("delivery_failed")
