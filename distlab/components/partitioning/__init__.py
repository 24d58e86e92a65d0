"""Data partitioning: consistent hashing and range/hash sharding."""

from distlab.components.partitioning.consistent_hashing import (
    ConsistentHashingEngine,
    ConsistentHashingStats,
    LoadStats,
    VirtualNode,
    ring_hash,
)
from distlab.components.partitioning.sharding import (
    ShardingEngine,
    ShardingStats,
    ShardingStrategy,
    ShardRange,
)

__all__ = [
    "ConsistentHashingEngine",
    "ConsistentHashingStats",
    "LoadStats",
    "VirtualNode",
    "ring_hash",
    "ShardingEngine",
    "ShardingStats",
    "ShardingStrategy",
    "ShardRange",
]
