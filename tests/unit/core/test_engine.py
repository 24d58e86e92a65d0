"""Tests for the ProtocolEngine message and event substrate."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from distlab.components.partitioning.sharding import ShardingEngine, ShardingStrategy
from distlab.core.clock import ManualClock
from distlab.core.engine import InstructionError, ProtocolEngine
from distlab.core.message import MessageStatus
from distlab.core.topology import Node, Topology
from distlab.scenario import Instruction


@dataclass(frozen=True)
class Ping:
    hops: int = 0


@dataclass
class EchoNode(Node):
    received: int = 0


class EchoEngine(ProtocolEngine):
    """Three nodes that bounce a Ping back until ``hops`` runs out."""

    message_prefix = "echo"

    def _setup(self) -> None:
        self._topology = Topology(EchoNode(f"N{i}") for i in range(3))
        self.picks: list[str] = []

    def _message_handlers(self):
        return {Ping: self._handle_ping}

    def _instructions(self):
        return {"ping": self.ping, "pick": self.pick}

    def ping(self, source: str, target: str, hops: int = 0) -> None:
        self.send(source, target, Ping(hops))

    def pick(self) -> str:
        choice = self._rng.choice(self._topology.ids())
        self.picks.append(choice)
        return choice

    def _handle_ping(self, message):
        node = self._topology.get(message.target)
        node.received += 1
        if message.payload.hops > 0:
            self.send(message.target, message.source, Ping(message.payload.hops - 1))


class TestSendAndDeliver:
    """Tests for the message lifecycle."""

    def test_send_creates_in_flight_message(self):
        engine = EchoEngine(clock=ManualClock(42))

        message = engine.send("N0", "N1", Ping())

        assert message.id == "echo-0"
        assert message.kind == "Ping"
        assert message.status is MessageStatus.IN_FLIGHT
        assert message.timestamp == 42.0

    def test_deliver_runs_handler(self):
        engine = EchoEngine()
        message = engine.send("N0", "N1", Ping())

        assert engine.deliver(message.id) is message
        assert message.status is MessageStatus.SUCCESS
        assert engine.node("N1").received == 1

    def test_deliver_twice_is_noop(self):
        engine = EchoEngine()
        message = engine.send("N0", "N1", Ping())
        engine.deliver(message.id)

        assert engine.deliver(message.id) is None
        assert engine.node("N1").received == 1

    def test_deliver_unknown_id(self):
        assert EchoEngine().deliver("echo-99") is None

    def test_deliver_to_failed_node_marks_failure(self):
        engine = EchoEngine()
        message = engine.send("N0", "N1", Ping())
        engine.fail_node("N1")

        engine.deliver(message.id)

        assert message.status is MessageStatus.FAILURE
        assert engine.node("N1").received == 0
        assert engine.events.last.type == "delivery_failed"

    def test_deliver_all_follows_replies(self):
        engine = EchoEngine()
        engine.ping("N0", "N1", hops=3)

        resolved = engine.deliver_all()

        assert resolved == 4
        assert engine.node("N1").received == 2
        assert engine.node("N0").received == 2
        assert engine.message_log.in_flight() == []

    def test_broadcast_skips_failed_targets(self):
        engine = EchoEngine()
        engine.fail_node("N2")

        sent = engine.broadcast("N0", Ping())

        assert [m.target for m in sent] == ["N1"]


class TestFailureInjection:
    """Tests for fail_node / recover_node."""

    def test_fail_and_recover_log_events(self):
        engine = EchoEngine()
        engine.fail_node("N0")
        engine.recover_node("N0")

        assert engine.events.types() == ["node_failed", "node_recovered"]
        assert engine.node("N0").is_healthy

    def test_unknown_node_ignored(self):
        engine = EchoEngine()
        engine.fail_node("missing")
        assert len(engine.events) == 0


class TestDeferredDelivery:
    """Tests for scheduled delivery on an injected clock."""

    def test_auto_delivery_waits_for_clock(self):
        clock = ManualClock()
        engine = EchoEngine(clock=clock)
        message = engine.send("N0", "N1", Ping())
        engine.schedule_auto_delivery(1000)

        assert engine.run_due() == 0
        clock.advance(1000)
        assert engine.run_due() == 1
        assert message.status is MessageStatus.SUCCESS

    def test_run_pending_ignores_due_time(self):
        engine = EchoEngine(clock=ManualClock())
        message = engine.send("N0", "N1", Ping())
        engine.schedule_delivery(message.id, delay_ms=60_000)

        assert engine.run_pending() == 1
        assert message.status is MessageStatus.SUCCESS

    def test_schedule_delivery_unknown_id(self):
        assert EchoEngine().schedule_delivery("nope") is None


class TestReset:
    """Tests for reset and deterministic randomness."""

    def test_reset_clears_everything(self):
        engine = EchoEngine(clock=ManualClock())
        engine.ping("N0", "N1")
        engine.schedule_auto_delivery()
        engine.fail_node("N2")

        engine.reset()

        assert engine.messages == []
        assert len(engine.events) == 0
        assert engine.scheduler.pending == 0
        assert engine.node("N2").is_healthy
        assert engine.send("N0", "N1", Ping()).id == "echo-0"

    def test_reset_reseeds_rng(self):
        engine = EchoEngine(seed=11)
        first = [engine.pick() for _ in range(5)]

        engine.reset()

        assert [engine.pick() for _ in range(5)] == first


class TestApply:
    """Tests for instruction dispatch."""

    def test_engine_specific_instruction(self):
        engine = EchoEngine()
        engine.apply(Instruction("ping", {"source": "N0", "target": "N2"}))
        engine.apply(Instruction("deliver_all"))

        assert engine.node("N2").received == 1

    def test_unknown_instruction_ignored(self):
        assert EchoEngine().apply(Instruction("explode")) is None

    def test_missing_argument_names_instruction(self):
        engine = EchoEngine()

        with pytest.raises(InstructionError, match="'ping'") as excinfo:
            engine.apply(Instruction("ping", {"source": "N0"}))

        assert excinfo.value.instruction_type == "ping"
        assert isinstance(excinfo.value.__cause__, TypeError)
        assert len(engine.messages) == 0

    def test_unexpected_argument(self):
        with pytest.raises(InstructionError):
            EchoEngine().apply(Instruction("deliver_all", {"bogus": 1}))

    def test_rejected_value_names_instruction(self):
        shards = ShardingEngine()

        with pytest.raises(InstructionError, match="'set_strategy'") as excinfo:
            shards.apply(Instruction("set_strategy", {"strategy": "diagonal"}))

        assert isinstance(excinfo.value.__cause__, ValueError)
        assert shards.strategy is ShardingStrategy.RANGE


class TestExport:
    """Tests for pandas export of the logs."""

    def test_message_dataframe_expands_payload(self):
        engine = EchoEngine()
        engine.ping("N0", "N1", hops=2)

        frame = engine.message_log.to_dataframe()

        assert list(frame["kind"]) == ["Ping"]
        assert frame.loc[0, "payload.hops"] == 2

    def test_event_dataframe(self, test_output_dir):
        engine = EchoEngine()
        engine.fail_node("N0")

        frame = engine.events.to_dataframe()
        frame.to_csv(test_output_dir / "events.csv", index=False)

        assert list(frame["type"]) == ["node_failed"]
        assert (test_output_dir / "events.csv").exists()

    def test_empty_message_dataframe_has_columns(self):
        frame = EchoEngine().message_log.to_dataframe()
        assert "kind" in frame.columns
        assert len(frame) == 0
