"""Three consensus variants side by side.

Each variant runs on its own five-node cluster (``N0`` .. ``N4``); the
``variant`` argument on every mutator selects which one (default: the
active variant, see ``set_variant``).

- ``RAFT_JOINT``: Raft membership change through joint consensus. Nodes
  move ``old -> joint`` on ``start_joint_consensus`` and then to ``new``
  (members of the new configuration) or back to ``old`` (leaving nodes)
  on ``finalize_joint_consensus``. While joint, an entry needs a majority
  of both configurations.
- ``MULTI_PAXOS``: a stable leader that has run phase 1 once appends
  entries straight into the next slot, skipping Prepare/Promise.
- ``EPAXOS``: leaderless; any replica proposes. Whether a command takes
  the fast or the slow path is chosen by the caller; there is no real
  interference detection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology, majority

if TYPE_CHECKING:
    from collections.abc import Iterable

    from distlab.core.message import Message

logger = logging.getLogger(__name__)


class ConsensusVariant(Enum):
    RAFT_JOINT = "raft-joint"
    MULTI_PAXOS = "multi-paxos"
    EPAXOS = "epaxos"


class VariantRole(Enum):
    FOLLOWER = "follower"
    LEADER = "leader"
    PROPOSER = "proposer"


class ConfigPhase(Enum):
    OLD = "old"
    JOINT = "joint"
    NEW = "new"


class EPaxosPath(Enum):
    FAST = "fast"
    SLOW = "slow"


@dataclass
class VariantEntry:
    id: str
    value: str
    committed: bool = False
    slot: int | None = None


@dataclass
class EPaxosInstance:
    id: str
    leader_id: str
    command: str
    path: EPaxosPath
    committed: bool = False


@dataclass
class VariantNode(Node):
    """Attributes:
        role: Follower, leader, or EPaxos command leader.
        term: Leadership epoch (ballot for Multi-Paxos).
        log: Entries held by this node.
        config_phase: Membership phase (raft-joint only).
        in_new_config: Member of the target configuration.
        committed_index: Index of the last committed entry (-1 = none).
        instances: EPaxos instances led by this node.
    """

    role: VariantRole = VariantRole.FOLLOWER
    term: int = 0
    log: list[VariantEntry] = field(default_factory=list)
    config_phase: ConfigPhase = ConfigPhase.OLD
    in_new_config: bool = False
    committed_index: int = -1
    instances: list[EPaxosInstance] = field(default_factory=list)


@dataclass(frozen=True)
class Append:
    variant: ConsensusVariant
    entry_id: str
    value: str
    slot: int | None = None


@dataclass(frozen=True)
class VariantStats:
    """Attributes:
        variant: Variant the numbers describe.
        nodes: Nodes in that cluster.
        committed: Committed entries summed over all nodes.
        config_phase: Phase of the first node (raft-joint only).
        epaxos_fast: EPaxos instances committed on the fast path.
        epaxos_pending: EPaxos instances waiting on the slow path.
    """

    variant: ConsensusVariant
    nodes: int = 0
    committed: int = 0
    config_phase: ConfigPhase | None = None
    epaxos_fast: int = 0
    epaxos_pending: int = 0


class ConsensusVariantsEngine(ProtocolEngine):
    """Raft joint consensus, Multi-Paxos and EPaxos clusters.

    Args:
        node_count: Nodes per cluster.
        variant: Initially active variant.
        seed: Seeds the choice of EPaxos command leader.
    """

    message_prefix = "consensus"

    def __init__(
        self,
        node_count: int = 5,
        variant: ConsensusVariant = ConsensusVariant.RAFT_JOINT,
        *,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self._node_count = node_count
        self._initial_variant = ConsensusVariant(variant)
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._clusters: dict[ConsensusVariant, Topology] = {
            v: Topology(VariantNode(f"N{i}") for i in range(self._node_count)) for v in ConsensusVariant
        }
        self._variant = self._initial_variant
        self._topology = self._clusters[self._variant]
        self._entry_counter = 0
        self._instance_counter = 0
        self._next_slot = 0

    def _message_handlers(self):
        return {Append: self._handle_append}

    def _instructions(self):
        return {
            "set_variant": self.set_variant,
            "elect_leader": self.elect_leader,
            "start_joint_consensus": self.start_joint_consensus,
            "finalize_joint_consensus": self.finalize_joint_consensus,
            "append_entry": self.append_entry,
            "propose_multi_paxos": self.propose_multi_paxos,
            "propose_epaxos": self.propose_epaxos,
            "commit_epaxos": self.commit_epaxos,
        }

    def _can_receive(self, message: Message) -> bool:
        return self._clusters[message.payload.variant].is_healthy(message.target)

    @property
    def variant(self) -> ConsensusVariant:
        return self._variant

    def cluster(self, variant: ConsensusVariant | str | None = None) -> list[VariantNode]:
        return list(self._clusters[self._resolve(variant)])

    def stats_for(self, variant: ConsensusVariant | str | None = None) -> VariantStats:
        variant = self._resolve(variant)
        nodes = list(self._clusters[variant])
        instances = [i for n in nodes for i in n.instances]
        return VariantStats(
            variant=variant,
            nodes=len(nodes),
            committed=sum(1 for n in nodes for e in n.log if e.committed),
            config_phase=nodes[0].config_phase if variant is ConsensusVariant.RAFT_JOINT and nodes else None,
            epaxos_fast=sum(1 for i in instances if i.path is EPaxosPath.FAST),
            epaxos_pending=sum(1 for i in instances if not i.committed),
        )

    @property
    def stats(self) -> VariantStats:
        return self.stats_for(self._variant)

    def _resolve(self, variant: ConsensusVariant | str | None) -> ConsensusVariant:
        return self._variant if variant is None else ConsensusVariant(variant)

    def set_variant(self, variant: ConsensusVariant | str) -> None:
        self._variant = ConsensusVariant(variant)
        self._topology = self._clusters[self._variant]
        self.log_event("variant_selected", f"Switched to {self._variant.value}", variant=self._variant.value)

    # -- leadership ----------------------------------------------------------

    def elect_leader(self, node_id: str, variant: ConsensusVariant | str | None = None) -> None:
        """Make ``node_id`` leader of the variant's cluster and bump its term."""
        variant = self._resolve(variant)
        cluster = self._clusters[variant]
        node = cluster.get(node_id)
        if node is None:
            return
        if not node.is_healthy:
            self.log_event("leader_failed", f"{node_id} is down and cannot lead", variant=variant.value, node_id=node_id)
            return
        for other in cluster:
            other.role = VariantRole.LEADER if other.id == node_id else VariantRole.FOLLOWER
        node.term += 1
        logger.info("[%s] %s elected leader (%s, term %d)", self.name, node_id, variant.value, node.term)
        self.log_event(
            "leader",
            f"{node_id} elected leader ({variant.value}, term {node.term})",
            variant=variant.value,
            node_id=node_id,
            term=node.term,
        )

    def _leader(self, cluster: Topology) -> VariantNode:
        for node in cluster:
            if node.role is VariantRole.LEADER:
                return node
        return next(iter(cluster))

    # -- raft joint consensus ------------------------------------------------

    def start_joint_consensus(self, new_config_ids: Iterable[str]) -> None:
        cluster = self._clusters[ConsensusVariant.RAFT_JOINT]
        new_ids = [i for i in new_config_ids if i in cluster]
        if not new_ids:
            self.log_event("joint_start_failed", "New configuration has no known members", new_config_ids=[])
            return
        for node in cluster:
            node.config_phase = ConfigPhase.JOINT
            node.in_new_config = node.id in new_ids
        self.log_event(
            "joint_start",
            f"Joint consensus started: C_old,new with C_new = {', '.join(new_ids)}",
            new_config_ids=new_ids,
        )

    def finalize_joint_consensus(self) -> None:
        cluster = self._clusters[ConsensusVariant.RAFT_JOINT]
        if any(n.config_phase is not ConfigPhase.JOINT for n in cluster):
            self.log_event("joint_end_failed", "No joint configuration in progress")
            return
        for node in cluster:
            node.config_phase = ConfigPhase.NEW if node.in_new_config else ConfigPhase.OLD
        self.log_event(
            "joint_end",
            "Joint consensus finalized",
            members=[n.id for n in cluster if n.config_phase is ConfigPhase.NEW],
        )

    def joint_quorum_met(self, voters: Iterable[str]) -> bool:
        """Whether ``voters`` form a quorum under the current membership.

        During the joint phase a decision needs separate majorities of the
        old configuration and of the new one.
        """
        cluster = self._clusters[ConsensusVariant.RAFT_JOINT]
        voters = set(voters)
        all_ids = cluster.ids()
        new_ids = [n.id for n in cluster if n.in_new_config]
        phase = next(iter(cluster)).config_phase

        def has_majority(members: list[str]) -> bool:
            return len(voters & set(members)) >= majority(len(members))

        if phase is ConfigPhase.JOINT:
            return has_majority(all_ids) and has_majority(new_ids)
        if phase is ConfigPhase.NEW or any(n.config_phase is ConfigPhase.NEW for n in cluster):
            return has_majority(new_ids)
        return has_majority(all_ids)

    # -- log append ----------------------------------------------------------

    def append_entry(self, value: str, variant: ConsensusVariant | str | None = None) -> VariantEntry | None:
        """Append ``value`` at the leader (or the first node) and replicate it.

        The entry commits at the leader immediately; each delivered Append
        adds the committed entry to a follower.
        """
        variant = self._resolve(variant)
        return self._append(variant, value, slot=None)

    def _append(self, variant: ConsensusVariant, value: str, slot: int | None) -> VariantEntry | None:
        cluster = self._clusters[variant]
        leader = self._leader(cluster)
        if not leader.is_healthy:
            self.log_event(
                "append_failed",
                f"{leader.id} is down; cannot append {value!r}",
                variant=variant.value,
                node_id=leader.id,
            )
            return None
        entry = VariantEntry(id=f"e-{self._entry_counter}", value=value, committed=True, slot=slot)
        self._entry_counter += 1
        leader.log.append(entry)
        leader.committed_index = len(leader.log) - 1

        followers = [n.id for n in cluster.others(leader.id) if n.is_healthy]
        for follower in followers:
            self.send(leader.id, follower, Append(variant, entry.id, value, slot))
        self.log_event(
            "append",
            f"{leader.id} appends {value!r}" + (f" in slot {slot}" if slot is not None else ""),
            variant=variant.value,
            entry_id=entry.id,
            slot=slot,
            followers=len(followers),
        )
        return entry

    def propose_multi_paxos(self, value: str) -> VariantEntry | None:
        """Steady-state Multi-Paxos: the leader fills the next slot directly."""
        slot = self._next_slot
        entry = self._append(ConsensusVariant.MULTI_PAXOS, value, slot=slot)
        if entry is not None:
            self._next_slot += 1
        return entry

    def _handle_append(self, message: Message) -> None:
        append: Append = message.payload
        node: VariantNode = self._clusters[append.variant].get(message.target)
        if any(e.id == append.entry_id for e in node.log):
            return
        node.log.append(VariantEntry(id=append.entry_id, value=append.value, committed=True, slot=append.slot))
        node.committed_index = len(node.log) - 1
        self.log_event(
            "append_received",
            f"{node.id} stored {append.value!r}",
            variant=append.variant.value,
            node_id=node.id,
            entry_id=append.entry_id,
        )

    # -- epaxos --------------------------------------------------------------

    def propose_epaxos(self, value: str, path: EPaxosPath | str = EPaxosPath.FAST) -> EPaxosInstance | None:
        """Have a randomly chosen healthy replica lead a new command instance.

        A fast-path instance commits at once. A slow-path instance stays
        pending until ``commit_epaxos``.
        """
        path = EPaxosPath(path)
        candidates = self._clusters[ConsensusVariant.EPAXOS].healthy()
        if not candidates:
            self.log_event("epaxos_failed", f"No healthy replica to propose {value!r}", value=value)
            return None
        proposer = self._rng.choice(candidates)
        proposer.role = VariantRole.PROPOSER
        instance = EPaxosInstance(
            id=f"i-{self._instance_counter}",
            leader_id=proposer.id,
            command=value,
            path=path,
            committed=path is EPaxosPath.FAST,
        )
        self._instance_counter += 1
        proposer.instances.append(instance)
        self.log_event(
            "epaxos",
            f"{proposer.id} proposes {value!r} ({path.value} path)",
            instance_id=instance.id,
            leader_id=proposer.id,
            path=path.value,
            committed=instance.committed,
        )
        return instance

    def commit_epaxos(self, instance_id: str) -> None:
        """Finish the slow-path Accept round for a pending instance."""
        for node in self._clusters[ConsensusVariant.EPAXOS]:
            for instance in node.instances:
                if instance.id != instance_id:
                    continue
                if instance.committed:
                    return
                instance.committed = True
                self.log_event(
                    "epaxos_commit",
                    f"{node.id} commits {instance.command!r} after the slow path",
                    instance_id=instance_id,
                    leader_id=node.id,
                )
                return
