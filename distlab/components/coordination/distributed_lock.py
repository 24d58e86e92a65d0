"""Lease-based lock manager with a FIFO wait queue and fencing tokens.

Manager ``L`` hands out a single lease that expires ``lease_ttl_ms``
after it was granted or last renewed. An Acquire while the lease is held
and unexpired queues the requester and answers with a Deny carrying its
queue position. Heartbeats from the holder push the expiry out by a full
TTL.

Nothing expires by itself: the manager compares the clock with the
expiry only in ``check_timeouts``, which also runs when an Acquire
arrives. A lease is overdue once ``now >= expires_at``; the check then
clears it, sends a Timeout to the old holder and grants the next queued
client. Pass a ``ManualClock`` to step time explicitly::

    clock = ManualClock()
    lock = DistributedLockEngine(clock=clock)
    lock.request_lock("C0")
    lock.deliver_all()
    clock.advance(4000)
    lock.check_timeouts()

Every grant carries a fencing token that increases by one per grant, so a
storage service can reject writes from a holder whose lease has already
passed to someone else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

MANAGER_ID = "L"
DEFAULT_LOCK_TTL_MS = 4000.0


class LockRole(Enum):
    MANAGER = "manager"
    CLIENT = "client"


@dataclass
class LockNode(Node):
    """Attributes:
        holding_lock: Client's view of whether it holds the lease.
        lease_expires_at: Client's view of the lease expiry.
        last_heartbeat: When the lease was last granted or renewed.
        fencing_token: Token of the lease the client believes it holds.
    """

    role: LockRole = LockRole.CLIENT
    holding_lock: bool = False
    lease_expires_at: float | None = None
    last_heartbeat: float | None = None
    fencing_token: int | None = None


@dataclass(frozen=True)
class LockLease:
    owner_id: str | None = None
    expires_at: float | None = None
    fencing_token: int = 0

    @property
    def held(self) -> bool:
        return self.owner_id is not None


@dataclass(frozen=True)
class Acquire:
    pass


@dataclass(frozen=True)
class Release:
    pass


@dataclass(frozen=True)
class Heartbeat:
    pass


@dataclass(frozen=True)
class Grant:
    lease_expires_at: float
    fencing_token: int


@dataclass(frozen=True)
class Deny:
    reason: str
    queue_position: int


@dataclass(frozen=True)
class Timeout:
    pass


@dataclass(frozen=True)
class DistributedLockStats:
    total_nodes: int = 0
    healthy_nodes: int = 0
    lease_owner: str | None = None
    queue_length: int = 0
    lease_ttl_ms: float = DEFAULT_LOCK_TTL_MS
    total_grants: int = 0
    total_expirations: int = 0


class DistributedLockEngine(ProtocolEngine):
    """Manager ``L`` and clients ``C0`` .. ``C{n-1}``.

    Args:
        client_count: Number of clients.
        lease_ttl_ms: Lease lifetime after a grant or heartbeat.
    """

    message_prefix = "lock"

    def __init__(
        self,
        client_count: int = 4,
        lease_ttl_ms: float = DEFAULT_LOCK_TTL_MS,
        *,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if client_count < 1:
            raise ValueError(f"client_count must be >= 1, got {client_count}")
        if lease_ttl_ms < 0:
            raise ValueError(f"lease_ttl_ms must be >= 0, got {lease_ttl_ms}")
        self._client_count = client_count
        self.lease_ttl_ms = lease_ttl_ms
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        nodes = [LockNode(MANAGER_ID, role=LockRole.MANAGER)]
        nodes += [LockNode(f"C{i}") for i in range(self._client_count)]
        self._topology = Topology(nodes)
        self.lease = LockLease()
        self.queue: list[str] = []
        self._grants = 0
        self._expirations = 0

    def _message_handlers(self):
        return {
            Acquire: self._handle_acquire,
            Release: self._handle_release,
            Heartbeat: self._handle_heartbeat,
            Grant: self._handle_grant,
            Deny: self._handle_deny,
            Timeout: self._handle_timeout,
        }

    def _instructions(self):
        return {
            "request_lock": self.request_lock,
            "release_lock": self.release_lock,
            "send_heartbeat": self.send_heartbeat,
            "check_timeouts": self.check_timeouts,
        }

    @property
    def manager(self) -> LockNode:
        return self._topology.get(MANAGER_ID)

    @property
    def lease_owner(self) -> str | None:
        return self.lease.owner_id

    def queue_position(self, client_id: str) -> int | None:
        """1-based position of ``client_id`` in the wait queue."""
        return self.queue.index(client_id) + 1 if client_id in self.queue else None

    @property
    def stats(self) -> DistributedLockStats:
        return DistributedLockStats(
            total_nodes=len(self._topology),
            healthy_nodes=len(self._topology.healthy()),
            lease_owner=self.lease.owner_id,
            queue_length=len(self.queue),
            lease_ttl_ms=self.lease_ttl_ms,
            total_grants=self._grants,
            total_expirations=self._expirations,
        )

    def _client(self, client_id: str) -> LockNode | None:
        node = self._topology.get(client_id)
        return node if node is not None and node.role is LockRole.CLIENT else None

    # -- client side ---------------------------------------------------------

    def request_lock(self, client_id: str) -> None:
        client = self._client(client_id)
        if client is None or not client.is_healthy:
            self.log_event("acquire_failed", f"Acquire failed at {client_id}", client_id=client_id)
            return
        self.send(client_id, MANAGER_ID, Acquire())
        self.log_event("acquire_request", f"{client_id} requests lock", client_id=client_id)

    def release_lock(self, client_id: str) -> None:
        client = self._client(client_id)
        if client is None:
            return
        if not client.is_healthy:
            self.log_event("release_failed", f"{client_id} is down", client_id=client_id)
            return
        self.send(client_id, MANAGER_ID, Release())
        self.log_event("release_request", f"{client_id} releases lock", client_id=client_id)

    def send_heartbeat(self, client_id: str) -> None:
        client = self._client(client_id)
        if client is None:
            return
        if not client.is_healthy:
            self.log_event("heartbeat_failed", f"{client_id} is down", client_id=client_id)
            return
        self.send(client_id, MANAGER_ID, Heartbeat())
        self.log_event("heartbeat_send", f"{client_id} heartbeat", client_id=client_id)

    # -- manager side --------------------------------------------------------

    def check_timeouts(self) -> bool:
        """Expire the lease if its TTL has elapsed.

        Returns:
            True if a lease was expired.
        """
        if not self.lease.held or self.lease.expires_at is None or self.now < self.lease.expires_at:
            return False
        owner_id = self.lease.owner_id
        self._expirations += 1
        logger.info("[%s] lease of %s expired", self.name, owner_id)
        self.log_event("lease_timeout", f"Lease expired for {owner_id}", owner_id=owner_id)
        self._clear_lease()
        self.send(MANAGER_ID, owner_id, Timeout())
        self._grant_next()
        return True

    def _handle_acquire(self, message: Message) -> None:
        client_id = message.source
        # Overdue lease expires first; queued waiters keep their turn.
        self.check_timeouts()
        if not self.lease.held:
            self._grant(client_id)
            return
        if client_id == self.lease.owner_id:
            return
        if client_id not in self.queue:
            self.queue.append(client_id)
        position = self.queue_position(client_id)
        self.send(MANAGER_ID, client_id, Deny("queued", position))
        self.log_event("acquire_queued", f"{client_id} queued", client_id=client_id, position=position)

    def _handle_release(self, message: Message) -> None:
        if self.lease.owner_id != message.source:
            return
        self._clear_lease()
        self.log_event("release_ack", f"{message.source} released lock", client_id=message.source)
        self._grant_next()

    def _handle_heartbeat(self, message: Message) -> None:
        if self.lease.owner_id != message.source:
            return
        expires_at = self.now + self.lease_ttl_ms
        self.lease = LockLease(message.source, expires_at, self.lease.fencing_token)
        client = self._topology.get(message.source)
        client.lease_expires_at = expires_at
        client.last_heartbeat = self.now
        self.log_event("heartbeat_recv", f"{message.source} renewed lease", client_id=message.source, expires_at=expires_at)

    def _grant(self, client_id: str) -> None:
        if client_id in self.queue:
            self.queue.remove(client_id)
        expires_at = self.now + self.lease_ttl_ms
        self.lease = LockLease(client_id, expires_at, self.lease.fencing_token + 1)
        self._grants += 1
        self.send(MANAGER_ID, client_id, Grant(expires_at, self.lease.fencing_token))

        client = self._topology.get(client_id)
        client.holding_lock = True
        client.lease_expires_at = expires_at
        client.last_heartbeat = self.now
        client.fencing_token = self.lease.fencing_token
        logger.info("[%s] lease granted to %s (token %d)", self.name, client_id, self.lease.fencing_token)
        self.log_event(
            "grant",
            f"{client_id} granted lease",
            client_id=client_id,
            expires_at=expires_at,
            fencing_token=self.lease.fencing_token,
        )

    def _grant_next(self) -> None:
        if self.queue:
            self._grant(self.queue[0])

    def _clear_lease(self) -> None:
        owner = self._topology.get(self.lease.owner_id) if self.lease.owner_id else None
        if owner is not None:
            owner.holding_lock = False
            owner.lease_expires_at = None
        self.lease = LockLease(fencing_token=self.lease.fencing_token)

    # -- client handlers -----------------------------------------------------

    def _handle_grant(self, message: Message) -> None:
        client = self._topology.get(message.target)
        client.holding_lock = True
        client.lease_expires_at = message.payload.lease_expires_at
        client.fencing_token = message.payload.fencing_token
        client.last_heartbeat = self.now

    def _handle_deny(self, message: Message) -> None:
        self.log_event(
            "acquire_denied",
            f"{message.target} denied: {message.payload.reason} at position {message.payload.queue_position}",
            client_id=message.target,
            position=message.payload.queue_position,
        )

    def _handle_timeout(self, message: Message) -> None:
        client = self._topology.get(message.target)
        client.holding_lock = False
        client.lease_expires_at = None
