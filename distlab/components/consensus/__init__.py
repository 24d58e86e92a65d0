"""Consensus protocols: Raft, single-decree Paxos, PBFT and their variants."""

from distlab.components.consensus.log import Log, LogEntry
from distlab.components.consensus.raft import (
    RaftEngine,
    RaftNode,
    RaftState,
    RaftStats,
)
from distlab.components.consensus.paxos import (
    PaxosEngine,
    PaxosNode,
    PaxosRole,
    PaxosStats,
)
from distlab.components.consensus.pbft import (
    PbftEngine,
    PbftNode,
    PbftPhase,
    PbftRole,
    PbftStats,
)
from distlab.components.consensus.variants import (
    ConfigPhase,
    ConsensusVariant,
    ConsensusVariantsEngine,
    EPaxosPath,
    VariantStats,
)

__all__ = [
    # Log
    "Log",
    "LogEntry",
    # Raft
    "RaftEngine",
    "RaftNode",
    "RaftState",
    "RaftStats",
    # Paxos
    "PaxosEngine",
    "PaxosNode",
    "PaxosRole",
    "PaxosStats",
    # PBFT
    "PbftEngine",
    "PbftNode",
    "PbftPhase",
    "PbftRole",
    "PbftStats",
    # Variants
    "ConfigPhase",
    "ConsensusVariant",
    "ConsensusVariantsEngine",
    "EPaxosPath",
    "VariantStats",
]
