"""Gossip anti-entropy.

Every round, each healthy node picks ``fanout`` random healthy peers and
sends them a Gossip message. Delivering it exchanges state in the
direction given by the mode. A key is overwritten only by a strictly
newer version, so rounds can be repeated freely and the cluster
converges once every node has been reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)


class GossipMode(Enum):
    PUSH = "push"
    PULL = "pull"
    PUSH_PULL = "push-pull"


@dataclass(frozen=True)
class GossipValue:
    value: Any
    version: int
    origin: str
    timestamp: float = 0.0


@dataclass
class GossipNode(Node):
    data: dict[str, GossipValue] = field(default_factory=dict)
    version: int = 0


@dataclass(frozen=True)
class Gossip:
    mode: GossipMode


@dataclass(frozen=True)
class GossipStats:
    """Attributes:
        divergent_nodes: Healthy nodes missing the newest version of any key.
    """

    total_nodes: int = 0
    healthy_nodes: int = 0
    failed_nodes: int = 0
    total_keys: int = 0
    divergent_nodes: int = 0
    rounds: int = 0


class GossipEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}``."""

    message_prefix = "gossip"

    def __init__(self, node_count: int = 6, *, name: str | None = None, clock=None, seed: int | None = None):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self._node_count = node_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(GossipNode(f"N{i}") for i in range(self._node_count))
        self._rounds = 0

    def _message_handlers(self):
        return {Gossip: self._handle_gossip}

    def _instructions(self):
        return {"set_value": self.set_value, "gossip_round": self.gossip_round}

    def _can_receive(self, message: Message) -> bool:
        # Both ends take part in the exchange.
        return self._topology.is_healthy(message.source) and self._topology.is_healthy(message.target)

    @property
    def stats(self) -> GossipStats:
        nodes = list(self._topology)
        keys = {key for node in nodes for key in node.data}
        newest = {key: max(n.data[key].version for n in nodes if key in n.data) for key in keys}
        divergent = sum(
            1
            for node in nodes
            if node.is_healthy
            and any(key not in node.data or node.data[key].version < newest[key] for key in keys)
        )
        healthy = len(self._topology.healthy())
        return GossipStats(
            total_nodes=len(nodes),
            healthy_nodes=healthy,
            failed_nodes=len(nodes) - healthy,
            total_keys=len(keys),
            divergent_nodes=divergent,
            rounds=self._rounds,
        )

    def set_value(self, node_id: str, key: str, value: Any) -> None:
        node = self._topology.get(node_id)
        if node is None or not node.is_healthy:
            self.log_event("set_failed", f"Write to {node_id} failed (node unhealthy)", node_id=node_id, key=key)
            return
        existing = node.data.get(key)
        version = (existing.version if existing else 0) + 1
        node.data[key] = GossipValue(value, version, node.id, self.now)
        node.version += 1
        self.log_event("set_value", f"{node_id} sets {key}={value!r}", node_id=node_id, key=key, value=value)

    def gossip_round(self, mode: GossipMode | str = GossipMode.PUSH_PULL, fanout: int = 1) -> int:
        """Send one Gossip message from every healthy node to ``fanout`` random peers.

        Returns:
            Number of messages sent.
        """
        mode = GossipMode(mode)
        healthy = self._topology.healthy()
        if len(healthy) < 2:
            self.log_event("gossip_skip", "Not enough healthy nodes for gossip round")
            return 0

        sent = 0
        for node in healthy:
            peers = [p for p in healthy if p.id != node.id]
            for target in self._rng.sample(peers, min(fanout, len(peers))):
                self.send(node.id, target.id, Gossip(mode))
                sent += 1
        self._rounds += 1
        self.log_event("gossip_round", f"Gossip round ({mode.value}) fanout={fanout}", mode=mode.value, fanout=fanout)
        return sent

    def _handle_gossip(self, message: Message) -> None:
        sender = self._topology.get(message.source)
        receiver = self._topology.get(message.target)
        mode = message.payload.mode
        if mode is GossipMode.PUSH:
            self._sync(sender, receiver)
        elif mode is GossipMode.PULL:
            self._sync(receiver, sender)
        else:
            self._sync(sender, receiver)
            self._sync(receiver, sender)

    def _sync(self, source: GossipNode, target: GossipNode) -> None:
        updated = [
            key
            for key, value in source.data.items()
            if key not in target.data or target.data[key].version < value.version
        ]
        if not updated:
            return
        for key in updated:
            target.data[key] = replace(source.data[key])
        target.version += len(updated)
        self.log_event(
            "gossip_update",
            f"{source.id} synced {', '.join(updated)} to {target.id}",
            source=source.id,
            target=target.id,
            keys=updated,
        )
