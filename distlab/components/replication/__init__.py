"""Replication and convergence: quorums, gossip, Merkle anti-entropy,
tunable consistency and a leader/follower replicated log.
"""

from distlab.components.replication.quorum import (
    QuorumReplicationEngine,
    QuorumStats,
    QuorumValue,
    WriteResult,
)
from distlab.components.replication.gossip import GossipEngine, GossipMode, GossipStats
from distlab.components.replication.merkle import (
    MerkleAntiEntropyEngine,
    MerkleStats,
    MerkleTree,
    MerkleTreeNode,
    polynomial_hash,
)
from distlab.components.replication.eventual import (
    ConsistencyLevel,
    EventualConsistencyEngine,
    EventualStats,
    VersionedValue,
)
from distlab.components.replication.replication_log import (
    LogRecord,
    ReplicationLogEngine,
    ReplicationLogStats,
)

__all__ = [
    # Quorum
    "QuorumReplicationEngine",
    "QuorumStats",
    "QuorumValue",
    "WriteResult",
    # Gossip
    "GossipEngine",
    "GossipMode",
    "GossipStats",
    # Merkle
    "MerkleAntiEntropyEngine",
    "MerkleStats",
    "MerkleTree",
    "MerkleTreeNode",
    "polynomial_hash",
    # Eventual consistency
    "ConsistencyLevel",
    "EventualConsistencyEngine",
    "EventualStats",
    "VersionedValue",
    # Replicated log
    "LogRecord",
    "ReplicationLogEngine",
    "ReplicationLogStats",
]
