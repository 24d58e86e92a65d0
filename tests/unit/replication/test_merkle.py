"""Tests for Merkle trees and Merkle anti-entropy."""

import pytest

from distlab.components.replication.merkle import MerkleAntiEntropyEngine, MerkleTree, polynomial_hash


class TestPolynomialHash:
    def test_known_values(self):
        assert polynomial_hash("") == "0"
        assert polynomial_hash("a") == format(97, "x")
        assert polynomial_hash("ab") == format(97 * 31 + 98, "x")

    def test_deterministic(self):
        assert polynomial_hash("k1:v1") == polynomial_hash("k1:v1")
        assert polynomial_hash("k1:v1") != polynomial_hash("k1:v2")


class TestMerkleTree:
    def test_empty_tree(self):
        tree = MerkleTree([])

        assert tree.root is None
        assert tree.root_hash is None
        assert tree.find(("a", "a")) is None

    def test_single_leaf_is_root(self):
        tree = MerkleTree([("k1", "v")])

        assert tree.root.is_leaf
        assert tree.root.range == ("k1", "k1")

    def test_root_covers_whole_range(self):
        tree = MerkleTree([(f"k{i}", "v") for i in range(1, 6)])

        assert tree.root.range == ("k1", "k5")
        assert tree.leaf_count == 5

    def test_find_subtree(self):
        tree = MerkleTree([("a", "1"), ("b", "2"), ("c", "3"), ("d", "4")])

        assert tree.find(("a", "b")) is tree.root.left
        assert tree.find(("c", "c")).is_leaf
        assert tree.find(("a", "c")) is None

    def test_single_change_changes_root(self):
        left = MerkleTree([("a", "1"), ("b", "2"), ("c", "3")])
        right = MerkleTree([("a", "1"), ("b", "X"), ("c", "3")])

        assert left.root_hash != right.root_hash
        assert left.find(("c", "c")).hash == right.find(("c", "c")).hash


class TestMerkleAntiEntropy:
    def test_initial_divergence(self):
        m = MerkleAntiEntropyEngine()

        assert m.stats.mismatched_keys == 3
        assert m.node("R0").data["k3"] == "k3-v2"
        assert m.node("R1").data["k9"] == "k9-v2"

    def test_sync_converges_on_source_values(self):
        m = MerkleAntiEntropyEngine()
        m.compare_roots()
        m.deliver_all()

        assert m.stats.mismatched_keys == 0
        assert m.stats.synced_keys == 3
        assert m.node("R1").data["k3"] == "k3-v2"
        assert m.node("R1").data["k9"] == "k9-v1"
        assert m.node("R0").tree.root_hash == m.node("R1").tree.root_hash

    def test_repairs_are_recorded(self):
        m = MerkleAntiEntropyEngine()
        m.compare_roots()
        m.deliver_all()

        applied = m.events.of_type("sync_applied")
        assert sorted(e.data["key"] for e in applied) == ["k3", "k7", "k9"]
        k9 = next(e for e in applied if e.data["key"] == "k9")
        assert k9.data["replica_id"] == "R1"
        assert k9.data["previous"] == "k9-v2"
        assert k9.data["value"] == "k9-v1"

        rebuilt = m.events.of_type("trees_rebuilt")
        assert len(rebuilt) == len(applied)
        assert rebuilt[-1].data["roots"]["R0"] == rebuilt[-1].data["roots"]["R1"]

    def test_rebuild_instruction_logs_roots(self):
        m = MerkleAntiEntropyEngine()
        m.rebuild_trees()

        assert m.events.last.type == "trees_rebuilt"
        assert m.events.last.data["roots"]["R0"] == m.node("R0").tree.root_hash

    def test_comparisons_skip_matching_subtrees(self):
        m = MerkleAntiEntropyEngine()
        m.compare_roots()
        m.deliver_all()

        tree_size = 2 * len(m.key_space) - 1
        assert 0 < m.stats.comparisons < tree_size
        assert m.events.of_type("node_match")

    def test_matching_roots_stop_early(self):
        m = MerkleAntiEntropyEngine()
        m.compare_roots()
        m.deliver_all()
        before = m.stats.comparisons

        m.compare_roots()
        m.deliver_all()

        assert m.stats.comparisons == before + 1
        assert m.events.last.type == "roots_match"

    def test_mutate_rebuilds_tree(self):
        m = MerkleAntiEntropyEngine()
        old = m.node("R1").tree.root_hash
        m.mutate_replica("R1", "k1", "changed")

        assert m.node("R1").tree.root_hash != old
        assert m.stats.mismatched_keys == 4

    def test_down_source_cannot_compare(self):
        m = MerkleAntiEntropyEngine()
        m.fail_node("R0")
        m.compare_roots()

        assert m.events.last.type == "compare_failed"
        assert len(m.messages) == 0

    def test_single_key_space(self):
        m = MerkleAntiEntropyEngine(key_count=1)
        m.mutate_replica("R0", "k1", "fresh")
        m.compare_roots()
        m.deliver_all()

        assert m.node("R1").data["k1"] == "fresh"

    def test_rejects_empty_key_space(self):
        with pytest.raises(ValueError):
            MerkleAntiEntropyEngine(key_count=0)
