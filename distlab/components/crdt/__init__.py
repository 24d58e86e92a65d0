"""Conflict-free replicated data types.

Provides state-based CRDTs that merge without coordination:

- **GCounter**: grow-only counter, one slot per replica.
- **ORSet**: observed-remove set with unique add tags.
- **RGA**: replicated growable array for collaborative text.

``CRDTReplicationEngine`` keeps one of each per replica and syncs them
pairwise.
"""

from distlab.components.crdt.protocol import CRDT
from distlab.components.crdt.g_counter import GCounter
from distlab.components.crdt.or_set import ORSet
from distlab.components.crdt.rga import RGA, RGAElement
from distlab.components.crdt.replicated import CRDTReplica, CRDTReplicationEngine, CRDTStats

__all__ = [
    "CRDT",
    "GCounter",
    "ORSet",
    "RGA",
    "RGAElement",
    "CRDTReplica",
    "CRDTReplicationEngine",
    "CRDTStats",
]
