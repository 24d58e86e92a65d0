"""Scripted instruction sequences for protocol engines.

A scenario is a named list of instructions, each naming one engine
operation and its keyword arguments. ``replay`` feeds them all through
``ProtocolEngine.apply``; ``step`` feeds one at a time, for step-through
drivers.

Example::

    lease = Scenario.from_dict({
        "name": "lease expiry",
        "instructions": [
            {"type": "request_lock", "data": {"client_id": "C0"}},
            {"type": "deliver_all"},
            {"type": "request_lock", "data": {"client_id": "C1"}},
            {"type": "deliver_all"},
        ],
    })
    lease.replay(DistributedLockEngine(clock=clock))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from distlab.core.engine import ProtocolEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Instruction:
    """One engine operation.

    Attributes:
        type: Operation name, e.g. ``"start_election"`` or ``"deliver_all"``.
        data: Keyword arguments for the operation.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Instruction:
        if "type" not in raw:
            raise ValueError(f"instruction has no type: {raw!r}")
        return cls(str(raw["type"]), dict(raw.get("data") or {}))


class Scenario:
    """Named, replayable sequence of instructions.

    Args:
        name: Scenario label.
        instructions: Instructions in execution order.
        description: Free-form explanation of what the scenario shows.
    """

    def __init__(self, name: str, instructions: Iterable[Instruction] = (), description: str = ""):
        self.name = name
        self.instructions = list(instructions)
        self.description = description
        self._position = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Scenario:
        return cls(
            raw.get("name", "scenario"),
            [Instruction.from_dict(i) for i in raw.get("instructions", ())],
            raw.get("description", ""),
        )

    @property
    def position(self) -> int:
        """Index of the next instruction ``step`` will run."""
        return self._position

    @property
    def finished(self) -> bool:
        return self._position >= len(self.instructions)

    def rewind(self) -> None:
        self._position = 0

    def step(self, engine: ProtocolEngine) -> Any:
        """Apply the next instruction to ``engine`` and return its result.

        Returns None once the scenario is finished.
        """
        if self.finished:
            return None
        instruction = self.instructions[self._position]
        self._position += 1
        logger.debug("[%s] step %d: %s", self.name, self._position, instruction.type)
        return engine.apply(instruction)

    def replay(self, engine: ProtocolEngine) -> list[Any]:
        """Apply every remaining instruction to ``engine``.

        Returns:
            The result of each instruction, in order.
        """
        results = []
        while not self.finished:
            results.append(self.step(engine))
        logger.info("[%s] replayed %d instructions on %s", self.name, len(results), engine.name)
        return results

    def __len__(self) -> int:
        return len(self.instructions)

    def __repr__(self) -> str:
        return f"Scenario(name={self.name!r}, instructions={len(self.instructions)}, position={self._position})"
