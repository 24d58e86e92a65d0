"""Tests for gossip anti-entropy."""

import pytest

from distlab.components.replication.gossip import GossipEngine, GossipMode


def gossip_message_from(engine, source):
    return next(m for m in engine.message_log.in_flight() if m.source == source)


class TestGossipWrites:
    def test_set_value_versions_per_key(self):
        g = GossipEngine()
        g.set_value("N0", "color", "red")
        g.set_value("N0", "color", "blue")

        stored = g.node("N0").data["color"]
        assert stored.value == "blue"
        assert stored.version == 2
        assert stored.origin == "N0"

    def test_set_on_failed_node(self):
        g = GossipEngine()
        g.fail_node("N2")
        g.set_value("N2", "k", 1)

        assert g.events.last.type == "set_failed"
        assert g.node("N2").data == {}

    def test_single_write_diverges(self):
        g = GossipEngine()
        g.set_value("N0", "k", 1)

        assert g.stats.total_keys == 1
        assert g.stats.divergent_nodes == 5


class TestGossipRounds:
    def test_round_sends_fanout_per_node(self):
        g = GossipEngine(node_count=6)

        assert g.gossip_round(fanout=2) == 12
        assert g.stats.rounds == 1

    def test_round_needs_two_healthy_nodes(self):
        g = GossipEngine(node_count=2)
        g.fail_node("N1")

        assert g.gossip_round() == 0
        assert g.events.last.type == "gossip_skip"

    def test_push_only_moves_sender_state(self):
        g = GossipEngine(node_count=2, seed=3)
        g.set_value("N0", "k", 1)
        g.gossip_round(GossipMode.PUSH)

        g.deliver(gossip_message_from(g, "N1").id)
        assert "k" not in g.node("N1").data

        g.deliver(gossip_message_from(g, "N0").id)
        assert g.node("N1").data["k"].value == 1

    def test_pull_moves_receiver_state_back(self):
        g = GossipEngine(node_count=2, seed=3)
        g.set_value("N1", "k", 1)
        g.gossip_round("pull")

        g.deliver(gossip_message_from(g, "N0").id)

        assert g.node("N0").data["k"].value == 1

    def test_older_version_never_overwrites(self):
        g = GossipEngine(node_count=2, seed=3)
        g.set_value("N0", "k", "old")
        g.set_value("N1", "k", "a")
        g.set_value("N1", "k", "b")
        g.gossip_round(GossipMode.PUSH_PULL)
        g.deliver_all()

        assert g.node("N0").data["k"].value == "b"
        assert g.node("N1").data["k"].value == "b"

    def test_push_pull_converges(self):
        g = GossipEngine(node_count=6, seed=11)
        g.set_value("N0", "a", 1)
        g.set_value("N3", "b", 2)

        for _ in range(10):
            g.gossip_round(GossipMode.PUSH_PULL, fanout=2)
            g.deliver_all()

        assert g.stats.divergent_nodes == 0

    def test_message_to_failed_node_is_lost(self):
        g = GossipEngine(node_count=2, seed=3)
        g.set_value("N0", "k", 1)
        g.gossip_round(GossipMode.PUSH)
        g.fail_node("N1")
        g.deliver_all()

        assert "k" not in g.node("N1").data

    def test_invalid_mode(self):
        g = GossipEngine()

        with pytest.raises(ValueError):
            g.gossip_round("shout")
