"""Shared test fixtures."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from reporting_agent.scheduler.registry import JobRegistry
from reporting_agent.scheduler.store import AlertStore, ScheduleStore


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def schedule_store(db_path: Path) -> ScheduleStore:
    """ScheduleStore backed by a temp database."""
    return ScheduleStore(db_path=db_path)


@pytest.fixture
def alert_store(db_path: Path) -> AlertStore:
    """AlertStore sharing the schedule store's temp database."""
    return AlertStore(db_path=db_path)


@pytest.fixture
async def registry() -> AsyncIterator[JobRegistry]:
    """A JobRegistry that is torn down after the test."""
    reg = JobRegistry(timezone="UTC", shutdown_grace_seconds=1.0)
    yield reg
    await reg.shutdown()
