"""Saga: a long-running transaction split into locally committed steps.

Each step is independently marked COMPLETED or COMPENSATED. Nothing links
a failure to compensation of earlier steps; the orchestrating caller
decides which steps to undo and in which order, usually the completed
ones in reverse.

Example::

    saga = SagaEngine(step_count=3)
    saga.start()
    saga.complete_step("S0")
    saga.complete_step("S1")
    # S2 failed: undo what was done
    saga.compensate("S1")
    saga.compensate("S0")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

ORCHESTRATOR_ID = "saga"


class SagaStepState(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    COMPENSATED = "compensated"


@dataclass
class SagaStep(Node):
    """One step. ``id`` doubles as the step's service node."""

    label: str = ""
    state: SagaStepState = SagaStepState.PENDING


@dataclass(frozen=True)
class Compensate:
    step_id: str


@dataclass(frozen=True)
class SagaStats:
    steps: int = 0
    completed: int = 0
    compensated: int = 0
    pending: int = 0
    started: bool = False


class SagaEngine(ProtocolEngine):
    """Steps ``S0`` .. ``S{n-1}`` labelled ``Step 1`` .. ``Step n``."""

    message_prefix = "saga"

    def __init__(self, step_count: int = 3, *, name: str | None = None, clock=None, seed: int | None = None):
        if step_count < 1:
            raise ValueError(f"step_count must be >= 1, got {step_count}")
        self._step_count = step_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(SagaStep(f"S{i}", label=f"Step {i + 1}") for i in range(self._step_count))
        self._started = False

    def _message_handlers(self):
        return {Compensate: self._handle_compensate}

    def _instructions(self):
        return {"start": self.start, "complete_step": self.complete_step, "compensate": self.compensate}

    @property
    def steps(self) -> list[SagaStep]:
        return list(self._topology)

    @property
    def stats(self) -> SagaStats:
        steps = list(self._topology)
        return SagaStats(
            steps=len(steps),
            completed=sum(1 for s in steps if s.state is SagaStepState.COMPLETED),
            compensated=sum(1 for s in steps if s.state is SagaStepState.COMPENSATED),
            pending=sum(1 for s in steps if s.state is SagaStepState.PENDING),
            started=self._started,
        )

    def start(self) -> None:
        for step in self._topology:
            step.state = SagaStepState.PENDING
        self._started = True
        self.log_event("saga_start", "Saga starts", steps=self._topology.ids())

    def complete_step(self, step_id: str) -> None:
        step = self._topology.get(step_id)
        if step is None:
            return
        if not step.is_healthy:
            self.log_event("saga_step_failed", f"{step.label} failed: service {step_id} is down", step_id=step_id)
            return
        step.state = SagaStepState.COMPLETED
        self.log_event("saga_step", f"{step.label} completed", step_id=step_id)

    def compensate(self, step_id: str) -> None:
        """Mark ``step_id`` compensated and send the compensating action."""
        step = self._topology.get(step_id)
        if step is None:
            return
        step.state = SagaStepState.COMPENSATED
        self.send(ORCHESTRATOR_ID, step_id, Compensate(step_id))
        logger.info("[%s] Compensating %s", self.name, step.label)
        self.log_event("saga_compensate", f"{step.label} compensated", step_id=step_id)

    def _handle_compensate(self, message: Message) -> None:
        self.log_event(
            "compensation_applied",
            f"{message.target} applied its compensating action",
            step_id=message.target,
        )
