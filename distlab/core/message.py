"""Simulated network messages.

A message is created in flight by an engine's ``send`` and resolved by
exactly one delivery, either to ``SUCCESS`` (the target handled it) or to
``FAILURE`` (the target was down or unknown). Payloads are small frozen
dataclasses, one per protocol message kind, so ``kind`` is simply the
payload's class name::

    @dataclass(frozen=True)
    class RequestVote:
        term: int
        candidate_id: str

    msg = log.create("node-0", "node-1", RequestVote(1, "node-0"), timestamp=0.0)
    assert msg.kind == "RequestVote"
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import pandas as pd

if TYPE_CHECKING:
    from collections.abc import Iterator


class MessageStatus(Enum):
    """Lifecycle of a simulated message."""

    IN_FLIGHT = "in-flight"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class Message:
    """A single message between two nodes.

    Attributes:
        id: Engine-unique identifier, e.g. ``"raft-12"``.
        source: Sending node id.
        target: Receiving node id.
        payload: Protocol-specific frozen dataclass.
        timestamp: Creation time in milliseconds.
        status: Current lifecycle state. The only field that ever changes.
    """

    id: str
    source: str
    target: str
    payload: Any
    timestamp: float
    status: MessageStatus = field(default=MessageStatus.IN_FLIGHT)

    @property
    def kind(self) -> str:
        return type(self.payload).__name__

    @property
    def is_in_flight(self) -> bool:
        return self.status is MessageStatus.IN_FLIGHT

    def __repr__(self) -> str:
        return (
            f"Message({self.id} {self.kind} {self.source}->{self.target} "
            f"{self.status.value})"
        )


class MessageLog:
    """Append-only history of every message an engine has sent.

    Args:
        prefix: Prefix for generated message ids.
    """

    def __init__(self, prefix: str = "msg"):
        self._prefix = prefix
        self._messages: list[Message] = []
        self._index: dict[str, Message] = {}
        self._counter = 0

    def create(self, source: str, target: str, payload: Any, timestamp: float) -> Message:
        message = Message(
            id=f"{self._prefix}-{self._counter}",
            source=source,
            target=target,
            payload=payload,
            timestamp=timestamp,
        )
        self._counter += 1
        self._messages.append(message)
        self._index[message.id] = message
        return message

    def get(self, message_id: str) -> Message | None:
        return self._index.get(message_id)

    def in_flight(self) -> list[Message]:
        return [m for m in self._messages if m.is_in_flight]

    def of_kind(self, kind: type | str) -> list[Message]:
        name = kind if isinstance(kind, str) else kind.__name__
        return [m for m in self._messages if m.kind == name]

    def clear(self) -> None:
        self._messages.clear()
        self._index.clear()
        self._counter = 0

    def to_dataframe(self) -> pd.DataFrame:
        """Flatten the history into a DataFrame, one row per message.

        Payload fields are expanded into ``payload.<field>`` columns.
        """
        rows = []
        for m in self._messages:
            row = {
                "id": m.id,
                "timestamp": m.timestamp,
                "source": m.source,
                "target": m.target,
                "kind": m.kind,
                "status": m.status.value,
            }
            if dataclasses.is_dataclass(m.payload):
                for name, value in dataclasses.asdict(m.payload).items():
                    row[f"payload.{name}"] = value
            rows.append(row)
        if not rows:
            return pd.DataFrame(columns=["id", "timestamp", "source", "target", "kind", "status"])
        return pd.DataFrame(rows)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"MessageLog(prefix={self._prefix!r}, messages={len(self._messages)})"
