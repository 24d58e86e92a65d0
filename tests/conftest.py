"""Fixtures shared by the unit and integration suites."""

import logging
from pathlib import Path

import pytest

from distlab.core.clock import ManualClock

OUTPUT_ROOT = Path(__file__).parent.parent / "test_output"


def _restore_silent_logger() -> None:
    logger = logging.getLogger("distlab")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.NOTSET)


@pytest.fixture(scope="session")
def test_output_root() -> Path:
    """Directory for exported frames and charts; kept after the run."""
    OUTPUT_ROOT.mkdir(exist_ok=True)
    return OUTPUT_ROOT


@pytest.fixture
def test_output_dir(request, test_output_root) -> Path:
    """Per-test folder laid out as ``test_output/<module>/<test>/``.

    Example:
        def test_event_export(test_output_dir):
            raft.events.to_dataframe().to_csv(test_output_dir / "events.csv")
    """
    folder = test_output_root / request.module.__name__.rsplit(".", 1)[-1] / request.node.name
    folder.mkdir(parents=True, exist_ok=True)
    return folder


@pytest.fixture
def manual_clock() -> ManualClock:
    """A clock starting at 0 ms that only moves when the test advances it."""
    return ManualClock()


@pytest.fixture(autouse=True)
def reset_distlab_logging():
    """Every test sees the package logger as shipped: a NullHandler and no level."""
    _restore_silent_logger()
    yield
    _restore_silent_logger()
