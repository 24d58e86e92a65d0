"""Range and hash sharding with rebalancing.

The key space ``0 .. HASH_RING_SIZE - 1`` is cut into one contiguous
shard per node. Under RANGE a key's shard position is the key itself;
under HASH it is ``(key * 37) % HASH_RING_SIZE``, which spreads adjacent
keys across nodes at the cost of range-scan locality.

After a membership or strategy change, ``rebalance`` compares the old
and new ownership of every key and sends one MoveShard per
``(old shard, new owner)`` pair whose keys changed hands.
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

HASH_RING_SIZE = 100
DEFAULT_KEY_COUNT = 60
HASH_MULTIPLIER = 37


class ShardingStrategy(Enum):
    RANGE = "range"
    HASH = "hash"


@dataclass(frozen=True)
class ShardRange:
    start: int
    end: int

    def __contains__(self, position: object) -> bool:
        return isinstance(position, int) and self.start <= position <= self.end


@dataclass
class ShardNode(Node):
    shards: list[ShardRange] = field(default_factory=list)
    keys: list[int] = field(default_factory=list)

    @property
    def load(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class MoveShard:
    range: ShardRange
    keys: tuple[int, ...]
    strategy: ShardingStrategy


@dataclass(frozen=True)
class ShardingStats:
    total_nodes: int = 0
    strategy: ShardingStrategy = ShardingStrategy.RANGE
    total_keys: int = 0
    avg_load: float = 0.0
    max_load: int = 0
    keys_migrated: int = 0


class ShardingEngine(ProtocolEngine):
    """Nodes ``N0`` .. ``N{n-1}`` sharing keys ``0`` .. ``key_count - 1``."""

    message_prefix = "shard"

    def __init__(
        self,
        node_count: int = 3,
        strategy: ShardingStrategy | str = ShardingStrategy.RANGE,
        *,
        key_count: int = DEFAULT_KEY_COUNT,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        if not 0 <= key_count <= HASH_RING_SIZE:
            raise ValueError(f"key_count must be in 0..{HASH_RING_SIZE}, got {key_count}")
        self._node_count = node_count
        self._initial_strategy = ShardingStrategy(strategy)
        self._key_count = key_count
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(ShardNode(f"N{i}") for i in range(self._node_count))
        self._next_index = self._node_count
        self.strategy = self._initial_strategy
        self.keys = list(range(self._key_count))
        self._keys_migrated = 0
        self._shard_of: dict[int, tuple[str, ShardRange]] = {}
        self._assign()

    def _message_handlers(self):
        return {MoveShard: self._handle_move_shard}

    def _instructions(self):
        return {
            "add_node": self.add_node,
            "remove_node": self.remove_node,
            "set_strategy": self.set_strategy,
            "rebalance": self.rebalance,
        }

    @property
    def stats(self) -> ShardingStats:
        nodes = list(self._topology)
        return ShardingStats(
            total_nodes=len(nodes),
            strategy=self.strategy,
            total_keys=len(self.keys),
            avg_load=len(self.keys) / len(nodes) if nodes else 0.0,
            max_load=max((n.load for n in nodes), default=0),
            keys_migrated=self._keys_migrated,
        )

    def shard_position(self, key: int) -> int:
        if self.strategy is ShardingStrategy.HASH:
            return (key * HASH_MULTIPLIER) % HASH_RING_SIZE
        return key

    def owner(self, key: int) -> str | None:
        entry = self._shard_of.get(key)
        return entry[0] if entry else None

    def _assign(self) -> None:
        nodes = list(self._topology)
        self._shard_of = {}
        for node in nodes:
            node.shards = []
            node.keys = []
        if not nodes:
            return

        count = len(nodes)
        width = HASH_RING_SIZE // count
        for index, node in enumerate(nodes):
            if self.strategy is ShardingStrategy.RANGE:
                end = HASH_RING_SIZE - 1 if index == count - 1 else (index + 1) * width - 1
                node.shards = [ShardRange(index * width, end)]
            else:
                node.shards = [ShardRange(index * HASH_RING_SIZE // count, (index + 1) * HASH_RING_SIZE // count - 1)]

        for key in self.keys:
            position = self.shard_position(key)
            for node in nodes:
                shard = next((s for s in node.shards if position in s), None)
                if shard is not None:
                    node.keys.append(key)
                    self._shard_of[key] = (node.id, shard)
                    break

    def set_strategy(self, strategy: ShardingStrategy | str) -> None:
        self.strategy = ShardingStrategy(strategy)
        self.rebalance()

    def add_node(self) -> str:
        node_id = f"N{self._next_index}"
        self._next_index += 1
        self._topology.add(ShardNode(node_id))
        self.log_event("node_added", f"{node_id} joins the cluster", node_id=node_id)
        self.rebalance()
        return node_id

    def remove_node(self, node_id: str) -> None:
        if node_id not in self._topology or len(self._topology) == 1:
            return
        self._topology.remove(node_id)
        self.log_event("node_removed", f"{node_id} leaves the cluster", node_id=node_id)
        self.rebalance()

    def rebalance(self) -> int:
        """Recompute ownership and send MoveShard for every key range that changed hands.

        Returns:
            Number of MoveShard messages sent.
        """
        previous = dict(self._shard_of)
        self._assign()

        moves: dict[tuple[str, ShardRange, str], list[int]] = {}
        for key, (old_owner, old_shard) in previous.items():
            new_owner = self.owner(key)
            if new_owner is not None and new_owner != old_owner:
                moves.setdefault((old_owner, old_shard, new_owner), []).append(key)

        for (source, shard, target), keys in moves.items():
            self.send(source, target, MoveShard(shard, tuple(keys), self.strategy))
        logger.info("[%s] rebalanced (%s): %d migrations", self.name, self.strategy.value, len(moves))
        self.log_event(
            "rebalance",
            f"Rebalanced using {self.strategy.value} sharding",
            strategy=self.strategy.value,
            migrations=len(moves),
        )
        return len(moves)

    def _handle_move_shard(self, message: Message) -> None:
        payload: MoveShard = message.payload
        self._keys_migrated += len(payload.keys)
        self.log_event(
            "shard_moved",
            f"{message.source} -> {message.target}: shard {payload.range.start}-{payload.range.end} ({len(payload.keys)} keys)",
            source=message.source,
            target=message.target,
            keys=list(payload.keys),
        )
