"""Load balancing with bounded queues and load shedding."""

from distlab.components.load_balancer.backpressure import BackpressureEngine, BackpressureStats

__all__ = [
    "BackpressureEngine",
    "BackpressureStats",
]
