"""Tests for the vector clock engine."""

from distlab.components.causality.vector_clocks import EventKind, VectorClockEngine, format_vector


def run_with_message():
    """P0 and P1 each do local work, then P0 messages P1."""
    vc = VectorClockEngine(process_count=3)
    a = vc.create_local_event("P0")
    b = vc.create_local_event("P1")
    send = vc.send_message("P0", "P1", "hello")
    recv = vc.receive_message(send.message_id)
    return vc, a, b, send, recv


class TestVectorClockEvents:
    def test_local_event_ticks_own_slot(self):
        vc = VectorClockEngine()
        event = vc.create_local_event("P1")

        assert event.id == "event-0"
        assert event.kind is EventKind.LOCAL
        assert event.vector == {"P0": 0, "P1": 1, "P2": 0}

    def test_send_and_receive_link_events(self):
        vc, a, b, send, recv = run_with_message()

        assert recv.kind is EventKind.RECEIVE
        assert recv.related_event == send.id
        assert send.related_event == recv.id
        assert recv.vector["P0"] == 2
        assert recv.vector["P1"] == 2

    def test_down_process_records_nothing(self):
        vc = VectorClockEngine()
        vc.fail_node("P2")

        assert vc.create_local_event("P2") is None
        assert vc.send_message("P0", "P2") is None
        assert vc.all_events == []

    def test_receive_of_lost_message(self):
        vc = VectorClockEngine()
        send = vc.send_message("P0", "P1")
        vc.fail_node("P1")

        assert vc.receive_message(send.message_id) is None
        assert send.related_event is None

    def test_receive_unknown_message(self):
        assert VectorClockEngine().receive_message("vc-99") is None

    def test_format_vector(self):
        assert format_vector({"P1": 2, "P0": 1}) == "[1, 2]"


class TestVectorClockQueries:
    def test_happened_before_through_message(self):
        vc, a, b, send, recv = run_with_message()

        assert vc.happened_before(a.id, recv.id)
        assert vc.happened_before(b.id, recv.id)
        assert not vc.happened_before(recv.id, a.id)

    def test_independent_locals_are_concurrent(self):
        vc, a, b, send, recv = run_with_message()

        assert vc.are_concurrent(a.id, b.id)
        assert vc.compare_events(a.id, b.id) == "concurrent"

    def test_compare_events(self):
        vc, a, b, send, recv = run_with_message()

        assert vc.compare_events(a.id, send.id) == "before"
        assert vc.compare_events(recv.id, send.id) == "after"
        assert vc.compare_events(a.id, "event-99") == "unknown"

    def test_causal_history(self):
        vc, a, b, send, recv = run_with_message()

        assert {e.id for e in vc.causal_history(recv.id)} == {a.id, b.id, send.id}
        assert vc.causal_history("event-99") == []

    def test_concurrent_events(self):
        vc, a, b, send, recv = run_with_message()

        assert {e.id for e in vc.concurrent_events(b.id)} == {a.id, send.id}

    def test_stats(self):
        vc, *_ = run_with_message()
        stats = vc.stats

        assert stats.total_events == 4
        assert stats.local_events == 2
        assert stats.send_events == 1
        assert stats.receive_events == 1
        assert stats.concurrent_pairs == 2
