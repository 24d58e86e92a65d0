"""Leader/follower partition log with an in-sync replica set.

Broker ``B0`` leads partition ``P0``; the other brokers follow. ``produce``
appends at the leader and pushes a Replicate to each follower.
``replicate`` has a follower fetch whatever suffix it is missing. Only
members of the ISR accept data. The high watermark, the last offset
every ISR member holds, is what a consumer may read.

Failing a broker drops it from the ISR. Recovery does not add it back;
that takes an explicit ``add_to_isr`` once it has caught up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

PARTITION_ID = "P0"


class BrokerRole(Enum):
    LEADER = "leader"
    FOLLOWER = "follower"


@dataclass(frozen=True)
class LogRecord:
    offset: int
    value: str


@dataclass
class Broker(Node):
    role: BrokerRole = BrokerRole.FOLLOWER
    log: list[LogRecord] = field(default_factory=list)
    high_watermark: int = -1

    @property
    def last_offset(self) -> int:
        return self.log[-1].offset if self.log else -1


@dataclass(frozen=True)
class Replicate:
    partition_id: str
    record: LogRecord


@dataclass(frozen=True)
class FetchRequest:
    partition_id: str
    from_offset: int


@dataclass(frozen=True)
class FetchResponse:
    partition_id: str
    records: tuple[LogRecord, ...]


@dataclass(frozen=True)
class ReplicationLogStats:
    replicas: int = 0
    isr_size: int = 0
    high_watermark: int = -1
    log_size: int = 0
    max_lag: int = 0


class ReplicationLogEngine(ProtocolEngine):
    """Brokers ``B0`` .. ``B{n-1}`` replicating one partition."""

    message_prefix = "log"

    def __init__(self, broker_count: int = 3, *, name: str | None = None, clock=None, seed: int | None = None):
        if broker_count < 1:
            raise ValueError(f"broker_count must be >= 1, got {broker_count}")
        self._broker_count = broker_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(
            Broker(f"B{i}", role=BrokerRole.LEADER if i == 0 else BrokerRole.FOLLOWER) for i in range(self._broker_count)
        )
        self.leader_id = "B0"
        self.isr: list[str] = self._topology.ids()
        self._next_offset = 0

    def _message_handlers(self):
        return {Replicate: self._handle_replicate, FetchRequest: self._handle_fetch, FetchResponse: self._handle_fetch_response}

    def _instructions(self):
        return {
            "produce": self.produce,
            "replicate": self.replicate,
            "shrink_isr": self.shrink_isr,
            "add_to_isr": self.add_to_isr,
        }

    @property
    def leader(self) -> Broker:
        return self._topology.get(self.leader_id)

    @property
    def high_watermark(self) -> int:
        members = [self._topology.get(b) for b in self.isr]
        if not members:
            return -1
        return min(b.last_offset for b in members)

    def lag(self, broker_id: str) -> int:
        broker = self._topology.get(broker_id)
        if broker is None:
            return 0
        return len(self.leader.log) - len(broker.log)

    @property
    def stats(self) -> ReplicationLogStats:
        return ReplicationLogStats(
            replicas=len(self._topology),
            isr_size=len(self.isr),
            high_watermark=self.high_watermark,
            log_size=len(self.leader.log),
            max_lag=max((self.lag(b) for b in self._topology.ids()), default=0),
        )

    def produce(self, value: str) -> LogRecord | None:
        leader = self.leader
        if not leader.is_healthy:
            self.log_event("produce_failed", f"Leader {leader.id} is down", value=value)
            return None
        record = LogRecord(self._next_offset, value)
        self._next_offset += 1
        leader.log.append(record)
        self.log_event("produce", f"Leader appended {value} @{record.offset}", offset=record.offset, value=value)
        self.broadcast(leader.id, Replicate(PARTITION_ID, record))
        self._update_high_watermark()
        return record

    def replicate(self, follower_id: str) -> None:
        """Have ``follower_id`` fetch the records it is missing from the leader.

        Followers outside the ISR may fetch too, so a recovered broker can
        catch up before ``add_to_isr`` makes it count toward the high watermark.
        """
        follower = self._topology.get(follower_id)
        if follower is None or follower_id == self.leader_id:
            return
        if not follower.is_healthy:
            self.log_event("fetch_failed", f"{follower_id} cannot fetch (down)", replica_id=follower_id)
            return
        self.send(follower_id, self.leader_id, FetchRequest(PARTITION_ID, follower.last_offset + 1))
        self.log_event("fetch", f"{follower_id} fetches from offset {follower.last_offset + 1}", replica_id=follower_id)

    def shrink_isr(self, follower_id: str) -> None:
        if follower_id not in self._topology or follower_id not in self.isr:
            return
        self.isr.remove(follower_id)
        logger.info("[%s] %s removed from ISR", self.name, follower_id)
        self.log_event("isr_shrink", f"{follower_id} removed from ISR", replica_id=follower_id)
        self._update_high_watermark()

    def add_to_isr(self, follower_id: str) -> None:
        broker = self._topology.get(follower_id)
        if broker is None or follower_id in self.isr:
            return
        if not broker.is_healthy:
            self.log_event("isr_add_failed", f"{follower_id} is down", replica_id=follower_id)
            return
        self.isr.append(follower_id)
        logger.info("[%s] %s added to ISR", self.name, follower_id)
        self.log_event("isr_add", f"{follower_id} added to ISR", replica_id=follower_id)
        self._update_high_watermark()

    def _on_fail(self, node: Node) -> None:
        self.shrink_isr(node.id)

    def _append(self, broker: Broker, record: LogRecord) -> bool:
        if record.offset != len(broker.log):
            return False
        broker.log.append(record)
        return True

    def _handle_replicate(self, message: Message) -> None:
        follower = self._topology.get(message.target)
        record = message.payload.record
        if follower.id not in self.isr or not self._append(follower, record):
            return
        self.log_event("replicated", f"{follower.id} replicated @{record.offset}", replica_id=follower.id, offset=record.offset)
        self._update_high_watermark()

    def _handle_fetch(self, message: Message) -> None:
        records = tuple(self.leader.log[message.payload.from_offset :])
        self.send(self.leader_id, message.source, FetchResponse(PARTITION_ID, records))

    def _handle_fetch_response(self, message: Message) -> None:
        follower = self._topology.get(message.target)
        appended = [r.offset for r in message.payload.records if self._append(follower, r)]
        if appended:
            self.log_event(
                "replicated",
                f"{follower.id} replicated @{appended[0]}..{appended[-1]}",
                replica_id=follower.id,
                offsets=appended,
            )
            self._update_high_watermark()

    def _update_high_watermark(self) -> None:
        high_watermark = self.high_watermark
        for broker_id in self.isr:
            self._topology.get(broker_id).high_watermark = high_watermark
