"""Shared pytest fixtures for the coordinator integrity engine tests.

The event log writes to tmp_path; collaborators are the in-memory fakes
from tests/fakes.py.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import structlog
from structlog.testing import LogCapture

from src.audit.log import EventLog
from tests.fakes import FakeCellStore, FakeClock


@pytest.fixture
def event_log(tmp_path: Path) -> EventLog:
    return EventLog(tmp_path / "sessions")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cell_store() -> FakeCellStore:
    return FakeCellStore()


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def log_capture() -> Iterator[LogCapture]:
    cap = LogCapture()
    structlog.configure(processors=[cap], wrapper_class=structlog.BoundLogger)
    try:
        yield cap
    finally:
        structlog.reset_defaults()
