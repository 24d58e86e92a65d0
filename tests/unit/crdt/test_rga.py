"""Tests for the RGA sequence CRDT."""

from distlab.components.crdt.protocol import CRDT
from distlab.components.crdt.rga import HEAD_ID, RGA


class TestRGAInsert:
    def test_empty(self):
        doc = RGA("R0")

        assert doc.text == ""
        assert len(doc) == 0
        assert isinstance(doc, CRDT)

    def test_insert_after(self):
        doc = RGA("R0")
        h = doc.insert("H")
        doc.insert("i", after_id=h)

        assert doc.text == "Hi"
        assert doc.value == ["H", "i"]

    def test_insert_without_anchor_appends(self):
        doc = RGA("R0")
        doc.insert("a")
        doc.insert("b")
        doc.insert("c", after_id="missing")

        assert doc.text == "abc"

    def test_insert_in_the_middle(self):
        doc = RGA("R0")
        a = doc.insert("a")
        b = doc.insert("c", after_id=a)
        doc.insert("b", after_id=a)

        assert doc.get(b).prev_id == a
        assert doc.text == "abc"

    def test_ids_are_replica_scoped(self):
        doc = RGA("R7")

        assert doc.insert("x", after_id=HEAD_ID) == "R7-0"


class TestRGADelete:
    def test_delete_tombstones(self):
        doc = RGA("R0")
        a = doc.insert("a")
        doc.insert("b", after_id=a)

        assert doc.delete(a)
        assert doc.text == "b"
        assert doc.get(a).tombstone

    def test_delete_unknown(self):
        assert not RGA("R0").delete("R0-9")

    def test_insert_after_tombstone(self):
        doc = RGA("R0")
        a = doc.insert("a")
        doc.delete(a)
        doc.insert("z", after_id=a)

        assert doc.text == "z"


class TestRGAMerge:
    def test_concurrent_inserts_converge(self):
        left = RGA("R0")
        right = RGA("R1")
        left.insert("x", after_id=HEAD_ID)
        right.insert("y", after_id=HEAD_ID)

        left_copy = RGA.from_dict(left.to_dict())
        left.merge(right)
        right.merge(left_copy)

        assert left.text == right.text == "xy"

    def test_delete_wins_on_merge(self):
        left = RGA("R0")
        a = left.insert("a")
        right = RGA("R1")
        right.merge(left)

        right.delete(a)
        left.merge(right)
        right.merge(left)

        assert left.text == right.text == ""

    def test_merge_copies_elements(self):
        left = RGA("R0")
        a = left.insert("a")
        right = RGA("R1")
        right.merge(left)

        left.delete(a)

        assert right.text == "a"

    def test_round_trip(self):
        doc = RGA("R0")
        doc.insert("o")
        doc.insert("k")

        restored = RGA.from_dict(doc.to_dict())

        assert restored.text == "ok"
        assert restored.insert("!") == "R0-2"
