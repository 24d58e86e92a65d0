"""Atomic commitment: two-phase commit, three-phase commit and sagas."""

from distlab.components.commit.two_phase import (
    Decision,
    TwoPhaseCommitEngine,
    TwoPhaseState,
    TwoPhaseStats,
    Vote,
)
from distlab.components.commit.three_phase import (
    ThreePhase,
    ThreePhaseCommitEngine,
    ThreePhaseStats,
)
from distlab.components.commit.saga import SagaEngine, SagaStats, SagaStepState

__all__ = [
    "Decision",
    "TwoPhaseCommitEngine",
    "TwoPhaseState",
    "TwoPhaseStats",
    "Vote",
    "ThreePhase",
    "ThreePhaseCommitEngine",
    "ThreePhaseStats",
    "SagaEngine",
    "SagaStats",
    "SagaStepState",
]
