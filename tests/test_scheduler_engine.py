"""Tests for Scheduler: schedule/alert lifecycle and restart behaviour."""

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from reporting_agent.errors import ExecutionError, StoreUnavailableError, ValidationError
from reporting_agent.metrics import StaticMetricProvider
from reporting_agent.scheduler.alerts import AlertMonitor
from reporting_agent.scheduler.dispatcher import ExecutionDispatcher
from reporting_agent.scheduler.engine import Scheduler
from reporting_agent.scheduler.models import (
    AlertDefinition,
    JobKind,
    ReportResult,
    ScheduleDefinition,
)
from reporting_agent.scheduler.registry import JobRegistry
from reporting_agent.scheduler.store import AlertStore, ScheduleStore

# A Wednesday.
CREATED_ON = datetime(2025, 1, 15, 8, 0, tzinfo=UTC)
# Yearly, so alert jobs never fire while a test runs.
ALERT_CRON = "0 0 1 1 *"


def _build_scheduler(
    db_path: Path,
    report_executor: AsyncMock,
    notifier: AsyncMock,
    now: datetime = CREATED_ON,
    **kwargs,
) -> Scheduler:
    schedule_store = ScheduleStore(db_path=db_path)
    alert_store = AlertStore(db_path=db_path)
    registry = JobRegistry(timezone="UTC", shutdown_grace_seconds=1.0)
    dispatcher = ExecutionDispatcher(
        schedule_store, report_executor, notifier, timezone="UTC", clock=lambda: now
    )
    monitor = AlertMonitor(
        alert_store, StaticMetricProvider({"cash_balance": 150}), notifier, clock=lambda: now
    )
    return Scheduler(
        schedule_store,
        alert_store,
        registry,
        dispatcher,
        monitor,
        alert_check_cron=ALERT_CRON,
        clock=lambda: now,
        **kwargs,
    )


def _make_schedule(**kwargs) -> ScheduleDefinition:
    defaults = {
        "id": "",
        "task_type": "profit_loss",
        "frequency": "daily",
        "hour": 9,
        "minute": 30,
        "recipients": ["cfo@example.com", "slack:U123"],
    }
    defaults.update(kwargs)
    return ScheduleDefinition(**defaults)


def _make_alert(**kwargs) -> AlertDefinition:
    defaults = {
        "id": "",
        "metric": "cash_balance",
        "threshold": Decimal("100"),
        "condition": "greater_than",
        "recipients": ["cfo@example.com"],
    }
    defaults.update(kwargs)
    return AlertDefinition(**defaults)


@pytest.fixture
def report_executor() -> AsyncMock:
    return AsyncMock(return_value=ReportResult(deliverable_ref="https://files.example.com/r.pdf"))


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
async def scheduler(
    db_path: Path, report_executor: AsyncMock, notifier: AsyncMock
) -> AsyncIterator[Scheduler]:
    s = _build_scheduler(db_path, report_executor, notifier)
    await s.start()
    yield s
    await s.stop()


# -- Lifecycle -----------------------------------------------------------------


async def test_start_and_stop(
    db_path: Path, report_executor: AsyncMock, notifier: AsyncMock
) -> None:
    s = _build_scheduler(db_path, report_executor, notifier)
    result = await s.start()
    assert s.running is True
    assert result.total == 0

    await s.stop()
    assert s.running is False


async def test_stop_when_not_running(
    db_path: Path, report_executor: AsyncMock, notifier: AsyncMock
) -> None:
    s = _build_scheduler(db_path, report_executor, notifier)
    # Should not raise
    await s.stop()


# -- create_schedule -----------------------------------------------------------


async def test_create_daily_schedule(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule())

    assert len(created.id) == 32
    assert await scheduler.get_schedule(created.id) == created
    job = scheduler.registry.get(created.id)
    assert job is not None
    assert job.cron_expression == "30 9 * * *"
    assert job.kind is JobKind.SCHEDULE


async def test_weekly_anchor_defaults_to_creation_day(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(frequency="weekly"))

    assert created.anchor_day_of_week == 3
    assert scheduler.registry.get(created.id).cron_expression == "30 9 * * 3"
    assert (await scheduler.get_schedule(created.id)).anchor_day_of_week == 3


async def test_monthly_anchor_defaults_to_creation_day(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(frequency="monthly"))

    assert created.anchor_day_of_month == 15
    assert scheduler.registry.get(created.id).cron_expression == "30 9 15 * *"


async def test_explicit_anchor_is_kept(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(
        _make_schedule(frequency="monthly", anchor_day_of_month=31)
    )
    assert scheduler.registry.get(created.id).cron_expression == "30 9 31 * *"


@pytest.mark.parametrize(
    "overrides",
    [
        {"task_type": "horoscope"},
        {"recipients": []},
        {"recipients": ["not-an-address"]},
        {"hour": 24},
        {"minute": 75},
        {"from_date": "2025-01-01"},
        {"from_date": "2025-02-01", "to_date": "2025-01-01"},
        {"from_date": "01/02/2025", "to_date": "2025-03-01"},
        {"frequency": "weekly", "anchor_day_of_week": 9},
    ],
)
async def test_invalid_schedule_is_not_persisted(scheduler: Scheduler, overrides: dict) -> None:
    with pytest.raises(ValidationError):
        await scheduler.create_schedule(_make_schedule(**overrides))

    assert await scheduler.list_schedules() == []
    assert scheduler.registry.count() == 0


async def test_create_inactive_schedule_registers_nothing(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(active=False))

    assert (await scheduler.get_schedule(created.id)).active is False
    assert not scheduler.registry.has(created.id)


async def test_custom_task_types(db_path: Path, notifier: AsyncMock) -> None:
    s = _build_scheduler(db_path, AsyncMock(), notifier, task_types=["board_pack"])

    created = await s.create_schedule(_make_schedule(task_type="board_pack"))
    assert s.registry.has(created.id)
    await s.stop()


# -- One-time schedules --------------------------------------------------------


async def test_one_time_runs_once_and_is_never_registered(
    scheduler: Scheduler, report_executor: AsyncMock, notifier: AsyncMock
) -> None:
    created = await scheduler.create_schedule(_make_schedule(frequency="one-time"))
    assert scheduler.registry.count() == 0

    await scheduler.registry.drain()

    report_executor.assert_awaited_once()
    notifier.send_report_ready.assert_awaited_once()
    stored = await scheduler.get_schedule(created.id)
    assert stored.active is False
    assert stored.last_run_at is not None
    assert scheduler.registry.count() == 0


async def test_one_time_failure_still_deactivates(
    scheduler: Scheduler, report_executor: AsyncMock, notifier: AsyncMock
) -> None:
    report_executor.side_effect = ExecutionError("ledger offline")

    created = await scheduler.create_schedule(_make_schedule(frequency="one-time"))
    await scheduler.registry.drain()

    notifier.send_failure.assert_awaited_once()
    assert (await scheduler.get_schedule(created.id)).active is False


async def test_one_time_cannot_be_reactivated(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(frequency="one-time"))
    await scheduler.registry.drain()

    with pytest.raises(ValidationError, match="One-time"):
        await scheduler.update_schedule_active(created.id, True)


# -- update_schedule_active / delete_schedule ----------------------------------


async def test_deactivate_and_reactivate_restores_same_cron(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(
        _make_schedule(frequency="weekly", anchor_day_of_week=5, hour=18, minute=0)
    )
    original = scheduler.registry.get(created.id).cron_expression

    assert await scheduler.update_schedule_active(created.id, False) is True
    assert not scheduler.registry.has(created.id)
    assert (await scheduler.get_schedule(created.id)).active is False

    assert await scheduler.update_schedule_active(created.id, True) is True
    assert scheduler.registry.get(created.id).cron_expression == original
    assert (await scheduler.get_schedule(created.id)).active is True


async def test_update_missing_schedule(scheduler: Scheduler) -> None:
    assert await scheduler.update_schedule_active("nonexistent", False) is False


async def test_delete_schedule(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule())

    assert await scheduler.delete_schedule(created.id) is True
    assert await scheduler.get_schedule(created.id) is None
    assert not scheduler.registry.has(created.id)
    assert await scheduler.delete_schedule(created.id) is False


async def test_describe_schedule(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(
        _make_schedule(frequency="weekly", anchor_day_of_week=1)
    )
    assert Scheduler.describe_schedule(created) == "09:30 every Monday"


# -- Alerts --------------------------------------------------------------------


async def test_create_alert_registers_check(scheduler: Scheduler) -> None:
    created = await scheduler.create_alert(_make_alert())

    assert len(created.id) == 32
    assert await scheduler.get_alert(created.id) == created
    job = scheduler.registry.get(created.id)
    assert job.kind is JobKind.ALERT
    assert job.cron_expression == ALERT_CRON


async def test_invalid_alert_is_not_persisted(scheduler: Scheduler) -> None:
    with pytest.raises(ValidationError):
        await scheduler.create_alert(_make_alert(metric=" "))
    with pytest.raises(ValidationError):
        await scheduler.create_alert(_make_alert(recipients=[]))

    assert await scheduler.list_alerts() == []
    assert scheduler.registry.count() == 0


async def test_alert_toggle_and_delete(scheduler: Scheduler) -> None:
    created = await scheduler.create_alert(_make_alert())

    assert await scheduler.update_alert_active(created.id, False) is True
    assert not scheduler.registry.has(created.id)
    assert await scheduler.update_alert_active(created.id, True) is True
    assert scheduler.registry.has(created.id)

    assert await scheduler.delete_alert(created.id) is True
    assert not scheduler.registry.has(created.id)
    assert await scheduler.get_alert(created.id) is None
    assert await scheduler.update_alert_active(created.id, True) is False


async def test_alert_job_checks_by_id(scheduler: Scheduler, notifier: AsyncMock) -> None:
    created = await scheduler.create_alert(_make_alert())

    await scheduler.registry._fire(created.id)
    await scheduler.registry.drain()

    notifier.send_alert.assert_awaited_once()


# -- Id uniqueness and concurrency ---------------------------------------------


async def test_alert_cannot_reuse_schedule_id(scheduler: Scheduler) -> None:
    schedule = await scheduler.create_schedule(_make_schedule())

    with pytest.raises(ValidationError, match="already in use"):
        await scheduler.create_alert(_make_alert(id=schedule.id))

    assert scheduler.registry.get(schedule.id).kind is JobKind.SCHEDULE
    assert await scheduler.list_alerts() == []
    status = scheduler.status()
    assert (status.active_schedule_count, status.active_alert_count) == (1, 0)


async def test_schedule_cannot_reuse_alert_id(scheduler: Scheduler) -> None:
    alert = await scheduler.create_alert(_make_alert())

    with pytest.raises(ValidationError, match="already in use"):
        await scheduler.create_schedule(_make_schedule(id=alert.id))

    assert await scheduler.list_schedules() == []
    assert scheduler.registry.get(alert.id).kind is JobKind.ALERT


async def test_supplied_unused_id_is_kept(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(id="month-end-pl"))

    assert created.id == "month-end-pl"
    assert scheduler.registry.has("month-end-pl")
    with pytest.raises(ValidationError):
        await scheduler.create_schedule(_make_schedule(id="month-end-pl"))


async def test_reactivate_overlapping_delete_leaves_no_job(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(active=False))
    store = scheduler._schedule_store
    real_get = store.get
    fetched = asyncio.Event()
    release = asyncio.Event()

    async def paused_get(schedule_id: str):
        result = await real_get(schedule_id)
        fetched.set()
        await release.wait()
        return result

    store.get = paused_get
    update = asyncio.create_task(scheduler.update_schedule_active(created.id, True))
    await fetched.wait()
    store.get = real_get

    delete = asyncio.create_task(scheduler.delete_schedule(created.id))
    await asyncio.sleep(0.01)
    release.set()
    await asyncio.gather(update, delete)

    assert await scheduler.get_schedule(created.id) is None
    assert not scheduler.registry.has(created.id)
    assert scheduler.status().active_schedule_count == 0


async def test_update_registers_nothing_when_row_disappears(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule(active=False))
    scheduler._schedule_store.set_active = AsyncMock(return_value=False)

    assert await scheduler.update_schedule_active(created.id, True) is False
    assert not scheduler.registry.has(created.id)


async def test_concurrent_toggles_end_consistent(scheduler: Scheduler) -> None:
    created = await scheduler.create_schedule(_make_schedule())

    await asyncio.gather(
        *(scheduler.update_schedule_active(created.id, i % 2 == 0) for i in range(9))
    )

    # Calls run in submission order, so the last one (i=8, active) wins.
    assert (await scheduler.get_schedule(created.id)).active is True
    assert scheduler.registry.count() == 1


# -- Store outages -------------------------------------------------------------


async def test_crud_surfaces_store_outage_and_keeps_jobs(
    scheduler: Scheduler, db_path: Path
) -> None:
    schedule = await scheduler.create_schedule(_make_schedule())
    alert = await scheduler.create_alert(_make_alert())
    # A directory cannot be opened as a database.
    scheduler._schedule_store._db_path = db_path.parent
    scheduler._alert_store._db_path = db_path.parent

    with pytest.raises(StoreUnavailableError):
        await scheduler.create_schedule(_make_schedule())
    with pytest.raises(StoreUnavailableError):
        await scheduler.update_schedule_active(schedule.id, False)
    with pytest.raises(StoreUnavailableError):
        await scheduler.delete_schedule(schedule.id)
    with pytest.raises(StoreUnavailableError):
        await scheduler.create_alert(_make_alert())
    with pytest.raises(StoreUnavailableError):
        await scheduler.delete_alert(alert.id)

    assert scheduler.registry.get(schedule.id).cron_expression == "30 9 * * *"
    assert scheduler.registry.get(alert.id).kind is JobKind.ALERT
    assert scheduler.registry.count() == 2


# -- status --------------------------------------------------------------------


async def test_status(scheduler: Scheduler) -> None:
    s1 = await scheduler.create_schedule(_make_schedule())
    s2 = await scheduler.create_schedule(_make_schedule(frequency="weekly"))
    await scheduler.create_schedule(_make_schedule(active=False))
    a1 = await scheduler.create_alert(_make_alert())

    status = scheduler.status()

    assert status.active_schedule_count == 2
    assert status.active_alert_count == 1
    assert set(status.next_fire_times) == {s1.id, s2.id, a1.id}
    assert all(t is not None for t in status.next_fire_times.values())


# -- Restart -------------------------------------------------------------------


async def test_restart_restores_jobs_without_running_anything(db_path: Path) -> None:
    first_executor, first_notifier = AsyncMock(), AsyncMock()
    first = _build_scheduler(db_path, first_executor, first_notifier)
    await first.start()
    daily = await first.create_schedule(_make_schedule(hour=9, minute=0))
    weekly = await first.create_schedule(_make_schedule(frequency="weekly"))
    monthly = await first.create_schedule(_make_schedule(frequency="monthly", hour=6, minute=0))
    alert = await first.create_alert(_make_alert())
    paused = await first.create_schedule(_make_schedule())
    await first.update_schedule_active(paused.id, False)
    expected = {
        job.definition_id: job.cron_expression for job in first.registry.jobs()
    }
    await first.stop()

    # Restart on a different weekday and day of month.
    second_executor, second_notifier = AsyncMock(), AsyncMock()
    second = _build_scheduler(
        db_path, second_executor, second_notifier, now=datetime(2025, 3, 3, 12, 0, tzinfo=UTC)
    )
    result = await second.start()
    try:
        assert (result.schedules, result.alerts) == (3, 1)
        assert {
            job.definition_id: job.cron_expression for job in second.registry.jobs()
        } == expected
        assert set(expected) == {daily.id, weekly.id, monthly.id, alert.id}
        assert expected[daily.id] == "0 9 * * *"
        assert len(daily.recipients) == 2
        assert expected[weekly.id] == "30 9 * * 3"
        assert expected[monthly.id] == "0 6 15 * *"

        await second.registry.drain()
        second_executor.assert_not_awaited()
        assert second_notifier.mock_calls == []
    finally:
        await second.stop()


async def test_restart_twice_registers_each_job_once(
    db_path: Path, report_executor: AsyncMock, notifier: AsyncMock
) -> None:
    first = _build_scheduler(db_path, report_executor, notifier)
    await first.start()
    await first.create_schedule(_make_schedule())
    await first.stop()

    second = _build_scheduler(db_path, report_executor, notifier)
    await second.start()
    try:
        await second.recover()
        assert second.registry.count() == 1
    finally:
        await second.stop()
