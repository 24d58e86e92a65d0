"""distlab: deterministic simulation engines for distributed-systems protocols.

Each engine owns a fixed set of nodes and an explicit list of in-flight
messages. Nothing is delivered until the caller says so, which makes
every interleaving reproducible::

    from distlab import RaftEngine

    raft = RaftEngine(seed=1)
    raft.start_election("node-0")
    raft.deliver_all()
    print(raft.stats.leader_id)

The library is silent by default. See ``distlab.logging_config``.
"""

import logging

logging.getLogger("distlab").addHandler(logging.NullHandler())

__version__ = "0.1.0"

from distlab.logging_config import (
    configure_from_env,
    disable_logging,
    enable_console_logging,
    enable_file_logging,
    enable_json_file_logging,
    enable_json_logging,
    set_level,
    set_module_level,
)

# Substrate
from distlab.core.clock import Clock, ManualClock, WallClock
from distlab.core.engine import InstructionError, ProtocolEngine
from distlab.core.event_log import EventLog, SimulationEvent
from distlab.core.logical_clocks import Causality, LamportClock, VectorClock
from distlab.core.message import Message, MessageLog, MessageStatus
from distlab.core.scheduler import ScheduledTask, Scheduler
from distlab.core.topology import Node, NodeStatus, Topology
from distlab.scenario import Instruction, Scenario

# Consensus
from distlab.components.consensus import (
    ConsensusVariant,
    ConsensusVariantsEngine,
    PaxosEngine,
    PbftEngine,
    RaftEngine,
)

# Commitment
from distlab.components.commit import SagaEngine, ThreePhaseCommitEngine, TwoPhaseCommitEngine

# Replication
from distlab.components.replication import (
    ConsistencyLevel,
    EventualConsistencyEngine,
    GossipEngine,
    GossipMode,
    MerkleAntiEntropyEngine,
    QuorumReplicationEngine,
    ReplicationLogEngine,
)
from distlab.components.crdt import GCounter, ORSet, RGA, CRDTReplicationEngine

# Causality
from distlab.components.causality import (
    ChandyLamportEngine,
    TotalOrderBroadcastEngine,
    VectorClockEngine,
)

# Partitioning
from distlab.components.partitioning import ConsistentHashingEngine, ShardingEngine, ShardingStrategy

# Coordination
from distlab.components.coordination import (
    DistributedLockEngine,
    FailureDetectorEngine,
    NetworkPartitionEngine,
)
from distlab.components.load_balancer import BackpressureEngine

__all__ = [
    "__version__",
    # Logging
    "configure_from_env",
    "disable_logging",
    "enable_console_logging",
    "enable_file_logging",
    "enable_json_file_logging",
    "enable_json_logging",
    "set_level",
    "set_module_level",
    # Substrate
    "Clock",
    "ManualClock",
    "WallClock",
    "InstructionError",
    "ProtocolEngine",
    "EventLog",
    "SimulationEvent",
    "Causality",
    "LamportClock",
    "VectorClock",
    "Message",
    "MessageLog",
    "MessageStatus",
    "ScheduledTask",
    "Scheduler",
    "Node",
    "NodeStatus",
    "Topology",
    "Instruction",
    "Scenario",
    # Consensus
    "ConsensusVariant",
    "ConsensusVariantsEngine",
    "PaxosEngine",
    "PbftEngine",
    "RaftEngine",
    # Commitment
    "SagaEngine",
    "ThreePhaseCommitEngine",
    "TwoPhaseCommitEngine",
    # Replication
    "ConsistencyLevel",
    "EventualConsistencyEngine",
    "GossipEngine",
    "GossipMode",
    "MerkleAntiEntropyEngine",
    "QuorumReplicationEngine",
    "ReplicationLogEngine",
    "GCounter",
    "ORSet",
    "RGA",
    "CRDTReplicationEngine",
    # Causality
    "ChandyLamportEngine",
    "TotalOrderBroadcastEngine",
    "VectorClockEngine",
    # Partitioning
    "ConsistentHashingEngine",
    "ShardingEngine",
    "ShardingStrategy",
    # Coordination
    "DistributedLockEngine",
    "FailureDetectorEngine",
    "NetworkPartitionEngine",
    "BackpressureEngine",
]
