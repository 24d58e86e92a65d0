"""Base class for every protocol engine.

A ``ProtocolEngine`` owns a ``Topology`` of nodes, the full message history
and the audit log. Subclasses describe their initial state in ``_setup``
and map payload types to handler methods in ``_message_handlers``;
everything else (sending, delivery, failure injection, reset, deferred
tasks and instruction dispatch) lives here.

Delivery is always explicit. Nothing happens between calls::

    raft = RaftEngine(seed=1)
    raft.start_election("node-0")      # RequestVote messages now in flight
    raft.deliver_all()                 # votes granted, node-0 becomes leader
    assert raft.stats.leader_id == "node-0"

Public mutators never raise for domain failures. A rejected operation
records a ``*_failed`` event and leaves state untouched; an unknown id
is ignored. Malformed scripted instructions are the exception: ``apply``
raises ``InstructionError`` naming the instruction.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from distlab.core.clock import Clock, WallClock
from distlab.core.event_log import EventLog, SimulationEvent
from distlab.core.message import Message, MessageLog, MessageStatus
from distlab.core.scheduler import ScheduledTask, Scheduler
from distlab.core.topology import Node, NodeStatus, Topology

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from distlab.scenario import Instruction

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_DELAY_MS = 1000.0
DEFAULT_MAX_DELIVERY_ROUNDS = 100


class InstructionError(ValueError):
    """A scripted instruction carried arguments its mutator cannot accept."""

    def __init__(self, instruction_type: str, reason: str):
        self.instruction_type = instruction_type
        self.reason = reason
        super().__init__(f"instruction {instruction_type!r} failed: {reason}")


class ProtocolEngine(ABC):
    """Shared node/message/event substrate.

    Args:
        name: Label used in log lines. Defaults to ``message_prefix``.
        clock: Time source for timestamps and deferred tasks.
        seed: Seed for the engine's private ``random.Random``. ``reset()``
            reseeds it, so a replayed scenario makes the same choices.

    Attributes:
        message_prefix: Prefix for generated message ids.
    """

    message_prefix: ClassVar[str] = "msg"

    def __init__(self, name: str | None = None, *, clock: Clock | None = None, seed: int | None = None):
        self.name = name or self.message_prefix
        self._clock: Clock = clock if clock is not None else WallClock()
        self._seed = seed
        self._rng = random.Random(seed)
        self._messages = MessageLog(self.message_prefix)
        self._events = EventLog()
        self._scheduler = Scheduler(self._clock)
        self._topology: Topology = Topology()
        self._setup()

    @abstractmethod
    def _setup(self) -> None:
        """Build the initial topology and protocol state."""

    def _message_handlers(self) -> dict[type, Callable[[Message], None]]:
        return {}

    def _instructions(self) -> dict[str, Callable[..., Any]]:
        return {}

    def _on_fail(self, node: Node) -> None:
        pass

    def _on_recover(self, node: Node) -> None:
        pass

    # -- accessors -----------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def now(self) -> float:
        return self._clock.now_ms()

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def nodes(self) -> list[Node]:
        return list(self._topology)

    def node(self, node_id: str) -> Node | None:
        return self._topology.get(node_id)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def message_log(self) -> MessageLog:
        return self._messages

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # -- substrate -----------------------------------------------------------

    def send(self, source: str, target: str, payload: Any) -> Message:
        """Create an in-flight message. Delivery happens later."""
        message = self._messages.create(source, target, payload, self.now)
        logger.debug("[%s] %s %s -> %s", self.name, message.kind, source, target)
        return message

    def broadcast(self, source: str, payload: Any, targets: Iterable[str] | None = None) -> list[Message]:
        """Send ``payload`` from ``source`` to every healthy target.

        ``targets`` defaults to every other node in the topology.
        """
        if targets is None:
            targets = [n.id for n in self._topology.others(source)]
        return [self.send(source, t, payload) for t in targets if self._topology.is_healthy(t)]

    def log_event(self, type: str, description: str, **data: Any) -> SimulationEvent:
        event = self._events.record(type, description, self.now, **data)
        logger.debug("[%s] %s: %s", self.name, type, description)
        return event

    def deliver(self, message_id: str) -> Message | None:
        """Resolve one in-flight message.

        Returns the message, or None when the id is unknown or the message
        was already resolved.
        """
        message = self._messages.get(message_id)
        if message is None or not message.is_in_flight:
            return None

        if not self._can_receive(message):
            message.status = MessageStatus.FAILURE
            self.log_event(
                "delivery_failed",
                f"{message.kind} to {message.target} lost: target unavailable",
                message_id=message.id,
                source=message.source,
                target=message.target,
            )
            return message

        message.status = MessageStatus.SUCCESS
        handler = self._message_handlers().get(type(message.payload))
        if handler is None:
            logger.warning("[%s] No handler for message kind %s", self.name, message.kind)
            return message
        handler(message)
        return message

    def deliver_all(self, max_rounds: int = DEFAULT_MAX_DELIVERY_ROUNDS) -> int:
        """Deliver in-flight messages in send order until none remain.

        Messages sent by handlers are delivered in later rounds. Returns
        the number of messages resolved.
        """
        resolved = 0
        for _ in range(max_rounds):
            pending = self._messages.in_flight()
            if not pending:
                break
            for message in pending:
                if self.deliver(message.id) is not None:
                    resolved += 1
        return resolved

    def _can_receive(self, message: Message) -> bool:
        return self._topology.is_healthy(message.target)

    # -- deferred work -------------------------------------------------------

    def schedule(self, delay_ms: float, callback: Callable[[], object], description: str = "") -> ScheduledTask:
        return self._scheduler.schedule(delay_ms, callback, description)

    def schedule_delivery(self, message_id: str, delay_ms: float = DEFAULT_DELIVERY_DELAY_MS) -> ScheduledTask | None:
        if self._messages.get(message_id) is None:
            return None
        return self._scheduler.schedule(delay_ms, lambda: self.deliver(message_id), f"deliver {message_id}")

    def schedule_auto_delivery(self, delay_ms: float = DEFAULT_DELIVERY_DELAY_MS) -> list[ScheduledTask]:
        """Schedule delivery of every message currently in flight."""
        return [
            self._scheduler.schedule(delay_ms, lambda mid=m.id: self.deliver(mid), f"deliver {m.id}")
            for m in self._messages.in_flight()
        ]

    def run_due(self) -> int:
        """Run scheduled tasks whose delay has elapsed on the engine clock."""
        return self._scheduler.run_due()

    def run_pending(self) -> int:
        """Run every scheduled task immediately."""
        return self._scheduler.run_all()

    # -- failure injection ---------------------------------------------------

    def fail_node(self, node_id: str) -> None:
        node = self._topology.get(node_id)
        if node is None:
            return
        node.status = NodeStatus.FAILED
        self._on_fail(node)
        logger.info("[%s] %s failed", self.name, node_id)
        self.log_event("node_failed", f"{node_id} has failed", node_id=node_id)

    def recover_node(self, node_id: str) -> None:
        node = self._topology.get(node_id)
        if node is None:
            return
        node.status = NodeStatus.HEALTHY
        self._on_recover(node)
        logger.info("[%s] %s recovered", self.name, node_id)
        self.log_event("node_recovered", f"{node_id} has recovered", node_id=node_id)

    # -- lifecycle -----------------------------------------------------------

    def reset(self) -> None:
        """Return to the constructor's initial configuration."""
        self._scheduler.cancel_all()
        self._messages.clear()
        self._events.clear()
        self._rng = random.Random(self._seed)
        self._topology = Topology()
        self._setup()
        logger.debug("[%s] reset", self.name)

    def apply(self, instruction: Instruction) -> Any:
        """Run the mutator named by ``instruction.type`` with ``instruction.data``.

        Unknown instruction types are ignored.

        Raises:
            InstructionError: If ``instruction.data`` does not fit the mutator
                (missing or unexpected arguments, or a value such as an
                unknown enum name that the mutator rejects).
        """
        handlers: dict[str, Callable[..., Any]] = {
            "deliver": self.deliver,
            "deliver_all": self.deliver_all,
            "fail_node": self.fail_node,
            "recover_node": self.recover_node,
            "reset": self.reset,
            "run_due": self.run_due,
            "run_pending": self.run_pending,
        }
        handlers.update(self._instructions())
        handler = handlers.get(instruction.type)
        if handler is None:
            logger.debug("[%s] Ignoring unknown instruction %r", self.name, instruction.type)
            return None
        try:
            return handler(**instruction.data)
        except (TypeError, ValueError) as exc:
            logger.warning("[%s] instruction %r rejected: %s", self.name, instruction.type, exc)
            raise InstructionError(instruction.type, str(exc)) from exc

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, nodes={len(self._topology)}, "
            f"messages={len(self._messages)}, events={len(self._events)})"
        )
