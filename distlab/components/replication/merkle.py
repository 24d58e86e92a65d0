"""Merkle-tree anti-entropy between two replicas.

Each replica hashes its keyspace into a binary hash tree. ``compare_roots``
starts a top-down walk: only subtrees whose hashes differ are descended,
and each differing leaf triggers a SyncLeaf that copies the initiating
replica's value to its peer. The number of comparisons grows with the
size of the divergence, not with the keyspace.

The two replicas start with three divergent keys (``k3`` and ``k7`` newer
on R0, ``k9`` newer on R1).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from collections.abc import Iterable

    from distlab.core.message import Message

logger = logging.getLogger(__name__)

HASH_MODULUS = 1_000_000_007
KEY_COUNT = 12


def polynomial_hash(text: str) -> str:
    """Rolling ``h * 31 + c`` hash, rendered as hex."""
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) % HASH_MODULUS
    return format(h, "x")


@dataclass(frozen=True)
class MerkleTreeNode:
    """A subtree covering the keys ``range[0]`` .. ``range[1]``."""

    hash: str
    range: tuple[str, str]
    left: MerkleTreeNode | None = None
    right: MerkleTreeNode | None = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None or self.right is None


class MerkleTree:
    """Binary hash tree over ordered ``(key, value)`` leaves.

    Levels are paired left to right; an odd node out is carried up
    unchanged.

    Args:
        leaves: ``(key, value)`` pairs in keyspace order.
    """

    def __init__(self, leaves: Iterable[tuple[str, str]]):
        level = [MerkleTreeNode(polynomial_hash(f"{key}:{value}"), (key, key)) for key, value in leaves]
        self.leaf_count = len(level)
        self.root: MerkleTreeNode | None = self._build(level) if level else None

    @staticmethod
    def _build(level: list[MerkleTreeNode]) -> MerkleTreeNode:
        while len(level) > 1:
            paired = []
            for i in range(0, len(level), 2):
                if i + 1 == len(level):
                    paired.append(level[i])
                    continue
                left, right = level[i], level[i + 1]
                paired.append(
                    MerkleTreeNode(polynomial_hash(left.hash + right.hash), (left.range[0], right.range[1]), left, right)
                )
            level = paired
        return level[0]

    @property
    def root_hash(self) -> str | None:
        return self.root.hash if self.root else None

    def find(self, key_range: tuple[str, str]) -> MerkleTreeNode | None:
        """Subtree covering exactly ``key_range``, or None."""
        stack = [self.root] if self.root else []
        while stack:
            node = stack.pop()
            if node.range == tuple(key_range):
                return node
            if node.right is not None:
                stack.append(node.right)
            if node.left is not None:
                stack.append(node.left)
        return None


@dataclass
class MerkleReplica(Node):
    data: dict[str, str] = field(default_factory=dict)
    tree: MerkleTree | None = None


@dataclass(frozen=True)
class CompareRoot:
    hash: str | None


@dataclass(frozen=True)
class CompareNode:
    range: tuple[str, str]
    hash: str


@dataclass(frozen=True)
class SyncLeaf:
    key: str
    value: str


@dataclass(frozen=True)
class MerkleStats:
    replica_count: int = 0
    mismatched_keys: int = 0
    synced_keys: int = 0
    comparisons: int = 0


class MerkleAntiEntropyEngine(ProtocolEngine):
    """Replicas ``R0`` and ``R1`` over keys ``k1`` .. ``k12``."""

    message_prefix = "merkle"

    def __init__(self, key_count: int = KEY_COUNT, *, name: str | None = None, clock=None, seed: int | None = None):
        if key_count < 1:
            raise ValueError(f"key_count must be >= 1, got {key_count}")
        self.key_space = [f"k{i + 1}" for i in range(key_count)]
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        replicas = [MerkleReplica(f"R{i}", data={k: f"{k}-v1" for k in self.key_space}) for i in range(2)]
        source, peer = replicas
        for key in ("k3", "k7"):
            if key in source.data:
                source.data[key] = f"{key}-v2"
        if "k9" in peer.data:
            peer.data["k9"] = "k9-v2"
        self._topology = Topology(replicas)
        self._synced_keys = 0
        self._comparisons = 0
        self._build_trees()

    def _message_handlers(self):
        return {CompareRoot: self._handle_compare_root, CompareNode: self._handle_compare_node, SyncLeaf: self._handle_sync_leaf}

    def _instructions(self):
        return {"compare_roots": self.compare_roots, "mutate_replica": self.mutate_replica, "rebuild_trees": self.rebuild_trees}

    @property
    def replicas(self) -> list[MerkleReplica]:
        return list(self._topology)

    @property
    def _pair(self) -> tuple[MerkleReplica, MerkleReplica]:
        source, peer = self._topology
        return source, peer

    @property
    def stats(self) -> MerkleStats:
        source, peer = self._pair
        return MerkleStats(
            replica_count=len(self._topology),
            mismatched_keys=sum(1 for k in self.key_space if source.data.get(k) != peer.data.get(k)),
            synced_keys=self._synced_keys,
            comparisons=self._comparisons,
        )

    def rebuild_trees(self) -> None:
        self._build_trees()
        self.log_event(
            "trees_rebuilt",
            "Merkle trees rebuilt",
            roots={r.id: r.tree.root_hash for r in self._topology},
        )

    def _build_trees(self) -> None:
        for replica in self._topology:
            replica.tree = MerkleTree((k, replica.data.get(k, "")) for k in self.key_space)

    def mutate_replica(self, replica_id: str, key: str, value: str) -> None:
        replica = self._topology.get(replica_id)
        if replica is None:
            return
        replica.data[key] = value
        self._build_trees()
        self.log_event("mutate", f"{replica_id} updates {key}={value}", replica_id=replica_id, key=key, value=value)

    def compare_roots(self) -> None:
        source, peer = self._pair
        if not source.is_healthy:
            self.log_event("compare_failed", f"{source.id} is down", replica_id=source.id)
            return
        self.send(source.id, peer.id, CompareRoot(source.tree.root_hash))
        self.log_event("compare_root", "Compare root hashes", source=source.id, target=peer.id)

    def _handle_compare_root(self, message: Message) -> None:
        self._comparisons += 1
        source, peer = self._pair
        if source.tree.root_hash == peer.tree.root_hash:
            self.log_event("roots_match", "Roots match, no sync needed")
            return
        self._descend(source.tree.root, peer.tree.root)

    def _handle_compare_node(self, message: Message) -> None:
        self._comparisons += 1
        source, peer = self._pair
        key_range = message.payload.range
        ours = source.tree.find(key_range)
        theirs = peer.tree.find(key_range)
        if ours is None or theirs is None:
            return
        if ours.hash == theirs.hash:
            self.log_event("node_match", f"Range {key_range[0]}-{key_range[1]} matches", range=list(key_range))
            return
        self._descend(ours, theirs)

    def _descend(self, ours: MerkleTreeNode | None, theirs: MerkleTreeNode | None) -> None:
        if ours is None or theirs is None or ours.hash == theirs.hash:
            return
        source, peer = self._pair
        if ours.is_leaf or theirs.is_leaf:
            self._sync_leaf(ours.range[0])
            return
        for child in (ours.left, ours.right):
            self.send(source.id, peer.id, CompareNode(child.range, child.hash))

    def _sync_leaf(self, key: str) -> None:
        source, peer = self._pair
        value = source.data.get(key)
        if value is None:
            return
        self.send(source.id, peer.id, SyncLeaf(key, value))
        self.log_event("sync_leaf", f"Sync {key}", key=key)

    def _handle_sync_leaf(self, message: Message) -> None:
        replica = self._topology.get(message.target)
        key, value = message.payload.key, message.payload.value
        previous = replica.data.get(key)
        replica.data[key] = value
        self._synced_keys += 1
        self.log_event(
            "sync_applied",
            f"{replica.id} applied {key}={value}",
            replica_id=replica.id,
            key=key,
            value=value,
            previous=previous,
        )
        self.rebuild_trees()
        logger.debug("[%s] %s synced %s", self.name, replica.id, message.payload.key)
