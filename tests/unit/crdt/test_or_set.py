"""Tests for ORSet CRDT."""

from distlab.components.crdt.or_set import ORSet
from distlab.components.crdt.protocol import CRDT


class TestORSetBasics:
    """Tests for local add and remove."""

    def test_empty(self):
        s = ORSet("R0")

        assert s.elements == frozenset()
        assert len(s) == 0
        assert isinstance(s, CRDT)

    def test_add_returns_unique_tags(self):
        s = ORSet("R0")

        assert s.add("x") == "R0-0"
        assert s.add("x") == "R0-1"
        assert s.tags("x") == {"R0-0", "R0-1"}

    def test_remove_observed(self):
        s = ORSet("R0")
        s.add("apple")
        s.add("banana")

        removed = s.remove("apple")

        assert removed == {"R0-0"}
        assert s.elements == frozenset({"banana"})
        assert "apple" not in s

    def test_remove_unknown_element(self):
        s = ORSet("R0")

        assert s.remove("ghost") == frozenset()

    def test_re_add_after_remove(self):
        s = ORSet("R0")
        s.add("x")
        s.remove("x")
        s.add("x")

        assert "x" in s

    def test_iteration_is_sorted(self):
        s = ORSet("R0")
        for e in ("c", "a", "b"):
            s.add(e)

        assert list(s) == ["a", "b", "c"]


class TestORSetMerge:
    """Tests for merge semantics."""

    def test_merge_unions_elements(self):
        a = ORSet("R0")
        b = ORSet("R1")
        a.add("x")
        b.add("y")

        a.merge(b)

        assert a.elements == frozenset({"x", "y"})

    def test_concurrent_add_wins_over_remove(self):
        a = ORSet("R0")
        a.add("x")
        b = ORSet.from_dict({**a.to_dict(), "replica_id": "R1"})

        a.remove("x")
        b.add("x")
        a.merge(b)
        b.merge(a)

        assert "x" in a
        assert "x" in b
        assert a == b

    def test_remove_propagates(self):
        a = ORSet("R0")
        a.add("x")
        b = ORSet("R1")
        b.merge(a)

        a.remove("x")
        b.merge(a)

        assert "x" not in b
        assert b.removed == {"R0-0"}

    def test_merge_is_idempotent(self):
        a = ORSet("R0")
        b = ORSet("R1")
        b.add("x")
        a.merge(b)
        snapshot = a.to_dict()
        a.merge(b)

        assert a.to_dict() == snapshot

    def test_round_trip(self):
        s = ORSet("R0")
        s.add("x")
        s.add("y")
        s.remove("y")

        restored = ORSet.from_dict(s.to_dict())

        assert restored.elements == s.elements
        assert restored.removed == s.removed
        assert restored.add("z") == "R0-2"
