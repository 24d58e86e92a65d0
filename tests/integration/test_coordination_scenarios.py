"""Integration tests for coordination scenarios replayed step by step.

Scenario:
- Lease handoff: C0 takes the lock, C1 queues behind it, C0 goes silent,
  time moves past the TTL and the manager hands the lease to C1 with a
  larger fencing token
- Split brain: a 3/2 partition elects a leader on each side; healing the
  network leaves both in place until a fresh election converges
"""

from __future__ import annotations

from distlab.components.consensus.raft import RaftState
from distlab.components.coordination.distributed_lock import DistributedLockEngine
from distlab.components.coordination.network_partition import NetworkPartitionEngine
from distlab.core.clock import ManualClock
from distlab.scenario import Scenario

LEASE_HANDOFF = {
    "name": "lease handoff",
    "description": "C0's lease lapses and the queued C1 takes over",
    "instructions": [
        {"type": "request_lock", "data": {"client_id": "C0"}},
        {"type": "deliver_all"},
        {"type": "request_lock", "data": {"client_id": "C1"}},
        {"type": "deliver_all"},
    ],
}


class TestLeaseHandoff:
    """Lease expiry hands the lock to the next waiter."""

    def test_scripted_handoff(self):
        clock = ManualClock()
        lock = DistributedLockEngine(clock=clock)

        Scenario.from_dict(LEASE_HANDOFF).replay(lock)

        assert lock.lease_owner == "C0"
        assert lock.queue_position("C1") == 1
        denied = lock.events.of_type("acquire_denied")
        assert [e.data["client_id"] for e in denied] == ["C1"]

        clock.advance(4000)
        assert lock.check_timeouts()
        lock.deliver_all()

        assert lock.lease_owner == "C1"
        assert lock.node("C1").holding_lock
        assert not lock.node("C0").holding_lock
        assert lock.node("C1").fencing_token > 1
        assert lock.lease.expires_at == 8000.0

    def test_step_through_matches_replay(self):
        """Stepping one instruction at a time ends in the same place."""
        clock = ManualClock()
        lock = DistributedLockEngine(clock=clock)
        scenario = Scenario.from_dict(LEASE_HANDOFF)

        while not scenario.finished:
            scenario.step(lock)

        assert lock.lease_owner == "C0"
        assert lock.queue == ["C1"]

    def test_renewing_holder_keeps_the_lease(self):
        clock = ManualClock()
        lock = DistributedLockEngine(clock=clock)
        Scenario.from_dict(LEASE_HANDOFF).replay(lock)

        for _ in range(3):
            clock.advance(3000)
            lock.send_heartbeat("C0")
            lock.deliver_all()
            assert not lock.check_timeouts()

        assert lock.lease_owner == "C0"
        assert lock.stats.total_expirations == 0

    def test_failed_holder_loses_the_lease(self):
        """A crashed holder cannot renew, so its lease runs out."""
        clock = ManualClock()
        lock = DistributedLockEngine(clock=clock)
        Scenario.from_dict(LEASE_HANDOFF).replay(lock)

        lock.fail_node("C0")
        clock.advance(2000)
        lock.send_heartbeat("C0")
        clock.advance(2000)

        assert lock.check_timeouts()
        lock.deliver_all()
        assert lock.lease_owner == "C1"
        assert lock.events.of_type("heartbeat_failed")


class TestSplitBrain:
    """Partitions elect independently and heal without an automatic step-down."""

    def test_split_brain_and_recovery(self):
        net = NetworkPartitionEngine(seed=7)
        net.split(["N0", "N1", "N2"], ["N3", "N4"])

        net.start_election("A")
        net.start_election("B")
        net.deliver_all()

        assert {n.partition_id for n in net.leaders()} == {"A", "B"}
        assert net.events.of_type("delivery_failed") == []

        net.heal()
        assert net.stats.leaders == 2

        winner = net.start_election("A")
        net.deliver_all()

        assert [n.id for n in net.leaders()] == [winner]
        followers = [n for n in net.nodes if n.id != winner]
        assert all(n.state is RaftState.FOLLOWER for n in followers)

    def test_messages_across_the_cut_are_lost(self):
        net = NetworkPartitionEngine(seed=3)
        net.split(["N0", "N1"], ["N2", "N3", "N4"])

        for target in ("N1", "N2", "N3"):
            net.send("N0", target, "ping")
        net.deliver_all()

        lost = [e.data["target"] for e in net.events.of_type("delivery_failed")]
        assert lost == ["N2", "N3"]
