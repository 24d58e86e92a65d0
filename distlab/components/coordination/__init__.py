"""Coordination: lease locks, failure detection and network partitions."""

from distlab.components.coordination.distributed_lock import (
    DEFAULT_LOCK_TTL_MS,
    DistributedLockEngine,
    DistributedLockStats,
    LockLease,
)
from distlab.components.coordination.failure_detector import (
    HEARTBEAT_INTERVAL_MS,
    PHI_THRESHOLD,
    DetectorStatus,
    FailureDetectorEngine,
    FailureDetectorStats,
)
from distlab.components.coordination.network_partition import (
    NetworkPartitionEngine,
    PartitionStats,
)

__all__ = [
    # Locking
    "DEFAULT_LOCK_TTL_MS",
    "DistributedLockEngine",
    "DistributedLockStats",
    "LockLease",
    # Failure detection
    "HEARTBEAT_INTERVAL_MS",
    "PHI_THRESHOLD",
    "DetectorStatus",
    "FailureDetectorEngine",
    "FailureDetectorStats",
    # Partitions
    "NetworkPartitionEngine",
    "PartitionStats",
]
