"""Tests for network partitions and split-brain elections."""

from distlab.components.consensus.raft import RaftState
from distlab.components.coordination.network_partition import NetworkPartitionEngine


def split_brain(seed=7):
    net = NetworkPartitionEngine(seed=seed)
    net.split(["N0", "N1", "N2"], ["N3", "N4"])
    net.start_election("A")
    net.start_election("B")
    net.deliver_all()
    return net


class TestLinks:
    def test_all_links_up_initially(self):
        net = NetworkPartitionEngine()

        assert net.stats.links_down == 0
        assert net.stats.partitions == 1
        assert net.link_up("N0", "N4")

    def test_split_cuts_cross_links(self):
        net = NetworkPartitionEngine()
        net.split(["N0", "N1", "N2"], ["N3", "N4"])

        assert net.stats.partitions == 2
        assert net.stats.links_down == 12
        assert not net.link_up("N0", "N3")
        assert net.link_up("N3", "N4")
        assert [n.id for n in net.members("B")] == ["N3", "N4"]

    def test_cross_partition_message_is_lost(self):
        net = NetworkPartitionEngine()
        net.split(["N0", "N1", "N2"], ["N3", "N4"])
        message = net.send("N0", "N3", "hello")

        net.deliver(message.id)

        assert not message.is_in_flight
        assert net.events.last.type == "delivery_failed"

    def test_unknown_ids_are_ignored(self):
        net = NetworkPartitionEngine()
        net.split(["N0", "X"], ["N4", "Y"])

        assert net.node("N4").partition_id == "B"
        assert net.events.last.data["partition_b"] == ["N4"]

    def test_heal_restores_links(self):
        net = NetworkPartitionEngine()
        net.split(["N0", "N1"], ["N2", "N3", "N4"])
        net.heal()

        assert net.stats.links_down == 0
        assert net.stats.partitions == 1


class TestPartitionElections:
    def test_single_partition_elects_one_leader(self):
        net = NetworkPartitionEngine(seed=1)
        candidate = net.start_election("A")
        net.deliver_all()

        assert [n.id for n in net.leaders()] == [candidate]
        assert net.events.of_type("leader_elected")[0].data["term"] == 1

    def test_split_brain(self):
        net = split_brain()

        leaders = net.leaders()
        assert net.stats.leaders == 2
        assert {n.partition_id for n in leaders} == {"A", "B"}
        assert leaders[0].term != leaders[1].term

    def test_both_leaders_survive_heal(self):
        net = split_brain()
        net.heal()

        assert net.stats.leaders == 2

    def test_election_after_heal_settles_on_one_leader(self):
        net = split_brain()
        net.heal()
        candidate = net.start_election("A")
        net.deliver_all()

        assert [n.id for n in net.leaders()] == [candidate]
        assert all(n.term == net.node(candidate).term for n in net.nodes)

    def test_partition_without_healthy_members(self):
        net = NetworkPartitionEngine()
        net.split(["N0", "N1", "N2"], ["N3", "N4"])
        net.fail_node("N3")
        net.fail_node("N4")

        assert net.start_election("B") is None
        assert net.events.last.type == "election_failed"

    def test_minority_of_partition_cannot_win(self):
        net = NetworkPartitionEngine(seed=2)
        net.split(["N0", "N1", "N2"], ["N3", "N4"])
        net.fail_node("N3")
        net.fail_node("N4")
        net.fail_node("N2")
        net.fail_node("N1")

        candidate = net.start_election("A")
        net.deliver_all()

        assert candidate == "N0"
        assert net.node("N0").state is RaftState.CANDIDATE
        assert net.stats.leaders == 0
