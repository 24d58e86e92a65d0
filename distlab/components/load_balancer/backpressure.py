"""Shortest-queue load balancing with bounded queues.

The balancer sends each request to the healthy worker with the shortest
queue, breaking ties by worker id. Every queue holds at most
``max_queue`` requests; once all healthy queues are full the balancer
sheds load and the request is dropped. ``tick`` is one unit of work:
each healthy worker finishes up to ``capacity`` requests from the head
of its queue and reports them with a Complete message.

Requests queued on a worker that fails are lost and counted as dropped.

Example::

    lb = BackpressureEngine()
    lb.dispatch(40)          # 32 queued, 8 dropped
    lb.tick()                # 12 completed
    print(lb.stats.utilisation)
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from distlab.core.engine import ProtocolEngine
from distlab.core.topology import Node, Topology

if TYPE_CHECKING:
    from distlab.core.message import Message

logger = logging.getLogger(__name__)

BALANCER_ID = "balancer"
DEFAULT_WORKER_CAPACITY = 3
DEFAULT_MAX_QUEUE = 8


@dataclass
class Worker(Node):
    """Attributes:
        queue: Request ids waiting at this worker, oldest first.
        completed: Requests this worker has finished.
    """

    queue: deque[str] = field(default_factory=deque)
    completed: int = 0

    @property
    def queue_depth(self) -> int:
        return len(self.queue)


@dataclass(frozen=True)
class Dispatch:
    request_id: str


@dataclass(frozen=True)
class Drop:
    request_id: str


@dataclass(frozen=True)
class Complete:
    request_id: str


@dataclass(frozen=True)
class BackpressureStats:
    """Attributes:
        utilisation: Queued requests over the queue room of healthy workers.
    """

    total_requests: int = 0
    queued: int = 0
    completed: int = 0
    dropped: int = 0
    utilisation: float = 0.0
    queue_depths: dict[str, int] = field(default_factory=dict)


class BackpressureEngine(ProtocolEngine):
    """Balancer in front of workers ``W0`` .. ``W{n-1}``.

    Args:
        worker_count: Number of workers.
        capacity: Requests a worker completes per tick.
        max_queue: Queue bound per worker.
    """

    message_prefix = "lb"

    def __init__(
        self,
        worker_count: int = 4,
        capacity: int = DEFAULT_WORKER_CAPACITY,
        max_queue: int = DEFAULT_MAX_QUEUE,
        *,
        name: str | None = None,
        clock=None,
        seed: int | None = None,
    ):
        if worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {worker_count}")
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if max_queue < 1:
            raise ValueError(f"max_queue must be >= 1, got {max_queue}")
        self._worker_count = worker_count
        self.capacity = capacity
        self.max_queue = max_queue
        super().__init__(name, clock=clock, seed=seed)

    def _setup(self) -> None:
        self._topology = Topology(Worker(f"W{i}") for i in range(self._worker_count))
        self._request_counter = 0
        self._completed = 0
        self._dropped = 0

    def _message_handlers(self):
        return {Dispatch: self._handle_dispatch, Drop: self._handle_drop, Complete: self._handle_complete}

    def _instructions(self):
        return {"dispatch": self.dispatch, "tick": self.tick}

    def _can_receive(self, message: Message) -> bool:
        return message.target == BALANCER_ID or self._topology.is_healthy(message.target)

    @property
    def stats(self) -> BackpressureStats:
        workers = list(self._topology)
        queued = sum(w.queue_depth for w in workers)
        room = len(self._topology.healthy()) * self.max_queue
        return BackpressureStats(
            total_requests=self._request_counter,
            queued=queued,
            completed=self._completed,
            dropped=self._dropped,
            utilisation=queued / room if room else 0.0,
            queue_depths={w.id: w.queue_depth for w in workers},
        )

    def _pick_worker(self) -> Worker | None:
        healthy = self._topology.healthy()
        if not healthy:
            return None
        return min(healthy, key=lambda w: (w.queue_depth, w.id))

    def dispatch(self, count: int = 1) -> int:
        """Route ``count`` new requests.

        Returns:
            Number of requests accepted into a queue.
        """
        accepted = 0
        for _ in range(count):
            request_id = f"req-{self._request_counter}"
            self._request_counter += 1
            worker = self._pick_worker()

            if worker is None or worker.queue_depth >= self.max_queue:
                self._dropped += 1
                if worker is not None:
                    self.send(BALANCER_ID, worker.id, Drop(request_id))
                logger.debug("[%s] %s dropped: no queue room", self.name, request_id)
                self.log_event("drop", f"{request_id} dropped", request_id=request_id)
                continue

            worker.queue.append(request_id)
            accepted += 1
            self.send(BALANCER_ID, worker.id, Dispatch(request_id))
            self.log_event(
                "dispatch",
                f"{request_id} dispatched to {worker.id}",
                request_id=request_id,
                worker_id=worker.id,
                queue_depth=worker.queue_depth,
            )
        return accepted

    def tick(self) -> int:
        """Let every healthy worker finish up to ``capacity`` requests.

        Returns:
            Number of requests completed.
        """
        done = 0
        for worker in self._topology.healthy():
            for _ in range(min(self.capacity, worker.queue_depth)):
                request_id = worker.queue.popleft()
                worker.completed += 1
                done += 1
                self.send(worker.id, BALANCER_ID, Complete(request_id))
        self._completed += done
        if done:
            self.log_event("tick", f"{done} requests completed", completed=done)
        return done

    def _on_fail(self, node: Worker) -> None:
        lost = len(node.queue)
        if lost:
            self._dropped += lost
            node.queue.clear()
            logger.info("[%s] %s failed with %d queued requests", self.name, node.id, lost)

    def _handle_dispatch(self, message: Message) -> None:
        self.log_event(
            "dispatch_recv",
            f"{message.target} accepted {message.payload.request_id}",
            worker_id=message.target,
            request_id=message.payload.request_id,
        )

    def _handle_drop(self, message: Message) -> None:
        pass

    def _handle_complete(self, message: Message) -> None:
        self.log_event(
            "complete",
            f"{message.payload.request_id} completed by {message.source}",
            worker_id=message.source,
            request_id=message.payload.request_id,
        )
