"""Consistent hashing with virtual nodes.

Each server is placed on a ``2**32`` ring at ``virtual_nodes`` points
(``{server}-v0``, ``{server}-v1``, ...). A key belongs to the first
virtual node at or after its own hash, wrapping around past the top of
the ring. Adding or removing a server only moves the keys that land on
that server's virtual nodes; changing the virtual node count rebuilds
the whole ring.

The hash is the 31-multiplier string hash, wrapped to a signed 32-bit
integer after each character and then made non-negative. It is not
cryptographic, and it does not need to be.

Example::

    ring = ConsistentHashingEngine(server_count=3, virtual_nodes=3)
    ring.add_random_keys(100)
    moved = ring.add_server("server-3")
    print(ring.stats.load_distribution, moved)
"""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

logger = logging.getLogger(__name__)

RING_SPACE = 2**32
DEFAULT_SERVER_COUNT = 3
DEFAULT_VIRTUAL_NODES = 3


def ring_hash(text: str) -> int:
    """Position of ``text`` on the ring."""
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
        if h >= 0x80000000:
            h -= 0x100000000
    return abs(h) % RING_SPACE


@dataclass(frozen=True, order=True)
class VirtualNode:
    hash: int
    id: str
    server_id: str = field(compare=False)


@dataclass
class Server(Node):
    virtual_nodes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LoadStats:
    min: int = 0
    max: int = 0
    avg: float = 0.0
    std_dev: float = 0.0
    imbalance: float = 0.0


@dataclass(frozen=True)
class ConsistentHashingStats:
    """Attributes:
        load_distribution: Server -> number of keys it owns.
        imbalance: ``max / avg`` load, 0 with no keys.
    """

    total_virtual_nodes: int = 0
    physical_servers: int = 0
    virtual_nodes_per_server: int = 0
    total_keys: int = 0
    load_distribution: dict[str, int] = field(default_factory=dict)
    min: int = 0
    max: int = 0
    avg: float = 0.0
    std_dev: float = 0.0
    imbalance: float = 0.0


class ConsistentHashingEngine(ProtocolEngine):
    """Hash ring over servers ``server-0`` .. ``server-{n-1}``.

    Args:
        server_count: Servers on the ring initially.
        virtual_nodes: Ring points per server.
    """

    message_prefix = "ring"

    def __init__(
        self,
        server_count: int = DEFAULT_SERVER_COUNT,
        virtual_nodes: int = DEFAULT_VIRTUAL_NODES,
        *,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if server_count < 0:
            raise ValueError(f"server_count must be >= 0, got {server_count}")
        if virtual_nodes < 1:
            raise ValueError(f"virtual_nodes must be >= 1, got {virtual_nodes}")
        self._server_count = server_count
        self._initial_virtual_nodes = virtual_nodes
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self.virtual_nodes_per_server = self._initial_virtual_nodes
        self._ring: list[VirtualNode] = []
        self._owners: dict[str, str] = {}
        for i in range(self._server_count):
            self.add_server(f"server-{i}")

    def _instructions(self):
        return {
            "add_server": self.add_server,
            "remove_server": self.remove_server,
            "add_key": self.add_key,
            "add_random_keys": self.add_random_keys,
            "set_virtual_nodes_per_server": self.set_virtual_nodes_per_server,
        }

    @property
    def ring(self) -> list[VirtualNode]:
        return list(self._ring)

    @property
    def keys(self) -> list[str]:
        return list(self._owners)

    @property
    def servers(self) -> list[str]:
        return sorted(self._topology.ids())

    def owner(self, key: str) -> str | None:
        """Server currently holding ``key``, if the key was added."""
        return self._owners.get(key)

    def lookup(self, key: str) -> str | None:
        """Server that would own ``key`` on the current ring."""
        vnode = self._find(ring_hash(key))
        return vnode.server_id if vnode else None

    def _find(self, key_hash: int) -> VirtualNode | None:
        if not self._ring:
            return None
        i = bisect.bisect_left([v.hash for v in self._ring], key_hash)
        return self._ring[i % len(self._ring)]

    def load_distribution(self) -> dict[str, int]:
        distribution = dict.fromkeys(self.servers, 0)
        for server_id in self._owners.values():
            distribution[server_id] += 1
        return distribution

    def load_stats(self) -> LoadStats:
        loads = list(self.load_distribution().values())
        if not loads or not self._owners:
            return LoadStats()
        avg = sum(loads) / len(loads)
        std_dev = math.sqrt(sum((load - avg) ** 2 for load in loads) / len(loads))
        return LoadStats(min(loads), max(loads), avg, std_dev, max(loads) / avg if avg > 0 else 0.0)

    @property
    def stats(self) -> ConsistentHashingStats:
        load = self.load_stats()
        return ConsistentHashingStats(
            total_virtual_nodes=len(self._ring),
            physical_servers=len(self._topology),
            virtual_nodes_per_server=self.virtual_nodes_per_server,
            total_keys=len(self._owners),
            load_distribution=self.load_distribution(),
            min=load.min,
            max=load.max,
            avg=load.avg,
            std_dev=load.std_dev,
            imbalance=load.imbalance,
        )

    def _reassign(self) -> int:
        moved = 0
        for key in self._owners:
            new_owner = self.lookup(key)
            if new_owner != self._owners[key]:
                self._owners[key] = new_owner
                moved += 1
        return moved

    def add_server(self, server_id: str) -> int:
        """Place ``server_id`` on the ring.

        Returns:
            Number of keys that moved to the new server.
        """
        if server_id in self._topology:
            self.log_event("server_add_failed", f"Server {server_id} already on the ring", server_id=server_id)
            return 0
        server = Server(server_id)
        for i in range(self.virtual_nodes_per_server):
            vnode = VirtualNode(ring_hash(f"{server_id}-v{i}"), f"{server_id}-v{i}", server_id)
            bisect.insort(self._ring, vnode)
            server.virtual_nodes.append(vnode.id)
        self._topology.add(server)
        moved = self._reassign()
        logger.info("[%s] added %s, %d keys moved", self.name, server_id, moved)
        self.log_event(
            "server_added",
            f"Added server {server_id} with {self.virtual_nodes_per_server} virtual nodes",
            server_id=server_id,
            virtual_nodes=self.virtual_nodes_per_server,
            keys_moved=moved,
        )
        return moved

    def remove_server(self, server_id: str) -> int:
        """Take ``server_id`` off the ring.

        Returns:
            Number of keys that moved; all of them were ``server_id``'s.
        """
        if self._topology.remove(server_id) is None:
            return 0
        self._ring = [v for v in self._ring if v.server_id != server_id]
        moved = self._reassign()
        logger.info("[%s] removed %s, %d keys moved", self.name, server_id, moved)
        self.log_event("server_removed", f"Removed server {server_id}", server_id=server_id, keys_moved=moved)
        return moved

    def add_key(self, key: str) -> str | None:
        """Store ``key`` and return the owning server."""
        owner = self.lookup(key)
        if owner is None:
            self.log_event("key_add_failed", f"No servers available to store {key!r}", key=key)
            return None
        self._owners[key] = owner
        self.log_event("key_added", f'Added key "{key}" to {owner}', key=key, hash=ring_hash(key), server_id=owner)
        return owner

    def add_random_keys(self, count: int, prefix: str = "key") -> None:
        """Add ``{prefix}-0`` .. ``{prefix}-{count-1}``."""
        for i in range(count):
            self.add_key(f"{prefix}-{i}")

    def set_virtual_nodes_per_server(self, count: int) -> None:
        """Rebuild the ring with ``count`` virtual nodes per server, keeping servers and keys."""
        if count < 1:
            self.log_event("virtual_nodes_failed", f"Invalid virtual node count {count}", count=count)
            return
        servers = self.servers
        keys = self.keys
        self._ring = []
        self._owners = {}
        for server_id in servers:
            self._topology.remove(server_id)
        self.virtual_nodes_per_server = count
        for server_id in servers:
            self.add_server(server_id)
        for key in keys:
            self.add_key(key)
        self.log_event("virtual_nodes_changed", f"Changed virtual nodes per server to {count}", count=count)
