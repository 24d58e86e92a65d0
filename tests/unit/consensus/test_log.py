"""Tests for the Raft replicated log."""

from distlab.components.consensus.log import Log, LogEntry


class TestLog:
    """Tests for Log append, placement and commit."""

    def test_append_is_one_based(self):
        log = Log()
        entry = log.append(1, "SET x=1")

        assert entry == LogEntry(1, 1, "SET x=1")
        assert log.last_index == 1
        assert log.last_term == 1

    def test_place_appends_next_index(self):
        log = Log()
        assert log.place(LogEntry(1, 1, "a")) is True
        assert log.place(LogEntry(3, 1, "gap")) is False
        assert len(log) == 1

    def test_conflicting_entry_truncates_suffix(self):
        log = Log()
        for command in "abc":
            log.append(1, command)

        log.place(LogEntry(2, 2, "B"))

        assert [e.command for e in log] == ["a", "B"]

    def test_advance_commit_returns_new_entries(self):
        log = Log()
        for command in "abc":
            log.append(1, command)

        newly = log.advance_commit(2)

        assert [e.command for e in newly] == ["a", "b"]
        assert log.advance_commit(1) == []
        assert log.advance_commit(10)[0].command == "c"
        assert log.commit_index == 3

    def test_entries_after(self):
        log = Log()
        for command in "abc":
            log.append(1, command)

        assert [e.command for e in log.entries_after(1)] == ["b", "c"]
