"""Scheduler: the surface the controller layer uses to manage schedules and alerts."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

from reporting_agent.errors import StoreUnavailableError, ValidationError
from reporting_agent.notifications.router import validate_recipients
from reporting_agent.scheduler.models import (
    DEFAULT_REPORT_TYPES,
    Frequency,
    JobKind,
    make_definition_id,
)
from reporting_agent.scheduler.planner import (
    build_trigger,
    describe_schedule,
    plan_schedule,
    validate_time_of_day,
)
from reporting_agent.scheduler.recovery import RecoveryManager
from reporting_agent.scheduler.registry import KeyedLock

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from reporting_agent.scheduler.alerts import AlertMonitor
    from reporting_agent.scheduler.dispatcher import ExecutionDispatcher
    from reporting_agent.scheduler.models import AlertDefinition, ScheduleDefinition
    from reporting_agent.scheduler.recovery import RecoveryResult
    from reporting_agent.scheduler.registry import JobRegistry
    from reporting_agent.scheduler.store import AlertStore, ScheduleStore

logger = logging.getLogger(__name__)


@dataclass
class SchedulerStatus:
    """Snapshot of live jobs: counts per kind and each job's next fire time."""

    active_schedule_count: int
    active_alert_count: int
    next_fire_times: dict[str, datetime | None] = field(default_factory=dict)


class Scheduler:
    """Creates, toggles and deletes schedules/alerts and keeps jobs in step.

    The store is only written after a definition passes validation, and a
    job only exists for active recurring schedules and active alerts.
    One-time schedules run straight away on a background task and are then
    marked inactive whatever the outcome. Ids are unique across schedules
    and alerts, and create/update/delete calls for the same id never
    interleave.

    Args:
        schedule_store: ScheduleStore for persistence.
        alert_store: AlertStore for persistence.
        registry: JobRegistry owning the live jobs.
        dispatcher: ExecutionDispatcher that runs schedules.
        monitor: AlertMonitor that checks alerts.
        task_types: Report kinds schedules may use (default: built-in kinds).
        alert_check_cron: Cadence of alert checks (default from settings).
        clock: Returns the current time; anchors default from its date.
    """

    def __init__(
        self,
        schedule_store: ScheduleStore,
        alert_store: AlertStore,
        registry: JobRegistry,
        dispatcher: ExecutionDispatcher,
        monitor: AlertMonitor,
        *,
        task_types: Iterable[str] | None = None,
        alert_check_cron: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._schedule_store = schedule_store
        self._alert_store = alert_store
        self._registry = registry
        self._dispatcher = dispatcher
        self._monitor = monitor
        self._task_types = frozenset(task_types) if task_types is not None else DEFAULT_REPORT_TYPES
        self._clock = clock or (lambda: datetime.now(registry.timezone))
        self._recovery = RecoveryManager(
            schedule_store,
            alert_store,
            registry,
            schedule_handler=dispatcher.execute,
            alert_handler=monitor.check,
            alert_check_cron=alert_check_cron,
        )
        self._locks = KeyedLock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> RecoveryResult:
        """Start the job registry and restore jobs for all active definitions."""
        self._registry.start()
        result = await self.recover()
        self._running = True
        logger.info("Scheduler started with %d job(s)", self._registry.count())
        return result

    async def stop(self) -> None:
        """Stop every timer and wait for running handlers."""
        await self._registry.shutdown()
        if self._running:
            self._running = False
            logger.info("Scheduler stopped")

    async def recover(self) -> RecoveryResult:
        """Re-register jobs from the stores. Runs nothing."""
        return await self._recovery.recover()

    # -- Schedules -------------------------------------------------------------

    def _prepare_schedule(self, definition: ScheduleDefinition) -> None:
        """Validate *definition* and fill in id and anchor days. Raises ValidationError."""
        if definition.task_type not in self._task_types:
            msg = f"Unknown report type: {definition.task_type!r}"
            raise ValidationError(msg)
        definition.recipients = validate_recipients(definition.recipients)
        validate_time_of_day(definition.hour, definition.minute)
        self._check_dates(definition)

        today = self._clock().astimezone(self._registry.timezone).date()
        if definition.frequency is Frequency.WEEKLY and definition.anchor_day_of_week is None:
            # Cron numbering: Sunday = 0.
            definition.anchor_day_of_week = today.isoweekday() % 7
        if definition.frequency is Frequency.MONTHLY and definition.anchor_day_of_month is None:
            definition.anchor_day_of_month = today.day

        if definition.is_recurring:
            build_trigger(plan_schedule(definition), self._registry.timezone)
        if not definition.id:
            definition.id = make_definition_id()

    @staticmethod
    def _check_dates(definition: ScheduleDefinition) -> None:
        if bool(definition.from_date) != bool(definition.to_date):
            msg = "from_date and to_date must be given together"
            raise ValidationError(msg)
        if not definition.from_date:
            return
        try:
            start = date.fromisoformat(definition.from_date)
            end = date.fromisoformat(definition.to_date)
        except ValueError as exc:
            msg = f"Dates must be YYYY-MM-DD: {exc}"
            raise ValidationError(msg) from exc
        if start > end:
            msg = f"from_date {start} is after to_date {end}"
            raise ValidationError(msg)

    async def _check_id_free(self, definition_id: str) -> None:
        """Raise ValidationError if a schedule or alert already uses *definition_id*."""
        if (
            self._registry.has(definition_id)
            or await self._schedule_store.get(definition_id) is not None
            or await self._alert_store.get(definition_id) is not None
        ):
            msg = f"Id already in use: {definition_id}"
            raise ValidationError(msg)

    async def create_schedule(self, definition: ScheduleDefinition) -> ScheduleDefinition:
        """Validate and persist a schedule, then register or run it."""
        self._prepare_schedule(definition)
        async with self._locks.hold(definition.id):
            await self._check_id_free(definition.id)
            await self._schedule_store.create(definition)

            if not definition.active:
                logger.info("Created inactive schedule %s", definition.id)
            elif definition.is_one_time:
                logger.info(
                    "Executing one-time report immediately for schedule %s", definition.id
                )
                self._registry.spawn(
                    f"one-time:{definition.id}",
                    functools.partial(self._run_one_time, definition),
                )
            else:
                job = await self._recovery.restore_schedule(definition)
                logger.info(
                    "Schedule %s will run at %s (%s)",
                    definition.id,
                    describe_schedule(definition),
                    job.cron_expression,
                )
        return definition

    async def _run_one_time(self, definition: ScheduleDefinition) -> None:
        try:
            await self._dispatcher.run(definition)
        finally:
            definition.active = False
            try:
                await self._schedule_store.set_active(definition.id, False)
            except StoreUnavailableError:
                logger.warning("Could not mark one-time schedule %s completed", definition.id)

    async def update_schedule_active(self, schedule_id: str, active: bool) -> bool:
        """Activate or deactivate a schedule. Returns False if it does not exist."""
        async with self._locks.hold(schedule_id):
            definition = await self._schedule_store.get(schedule_id)
            if definition is None:
                return False
            if active and definition.is_one_time:
                msg = "One-time schedules cannot be reactivated"
                raise ValidationError(msg)
            if active:
                build_trigger(plan_schedule(definition), self._registry.timezone)

            if not await self._schedule_store.set_active(schedule_id, active):
                logger.warning("Schedule %s vanished before it could be updated", schedule_id)
                await self._registry.unregister(schedule_id)
                return False
            if active:
                definition.active = True
                await self._recovery.restore_schedule(definition)
            else:
                await self._registry.unregister(schedule_id)
        return True

    async def delete_schedule(self, schedule_id: str) -> bool:
        """Remove a schedule row and its job. Returns True if either existed."""
        async with self._locks.hold(schedule_id):
            deleted = await self._schedule_store.delete(schedule_id)
            unregistered = await self._registry.unregister(schedule_id)
        return deleted or unregistered

    async def get_schedule(self, schedule_id: str) -> ScheduleDefinition | None:
        return await self._schedule_store.get(schedule_id)

    async def list_schedules(self) -> list[ScheduleDefinition]:
        return await self._schedule_store.get_all()

    @staticmethod
    def describe_schedule(definition: ScheduleDefinition) -> str:
        return describe_schedule(definition)

    # -- Alerts ----------------------------------------------------------------

    async def create_alert(self, alert: AlertDefinition) -> AlertDefinition:
        """Validate and persist an alert, then start checking it if active."""
        if not alert.metric or not alert.metric.strip():
            msg = "Alert metric is required"
            raise ValidationError(msg)
        alert.recipients = validate_recipients(alert.recipients)
        build_trigger(self._recovery.alert_check_cron, self._registry.timezone)
        if not alert.id:
            alert.id = make_definition_id()

        async with self._locks.hold(alert.id):
            await self._check_id_free(alert.id)
            await self._alert_store.create(alert)
            if alert.active:
                await self._recovery.restore_alert(alert)
        return alert

    async def update_alert_active(self, alert_id: str, active: bool) -> bool:
        """Activate or deactivate an alert. Returns False if it does not exist."""
        async with self._locks.hold(alert_id):
            alert = await self._alert_store.get(alert_id)
            if alert is None:
                return False
            if not await self._alert_store.set_active(alert_id, active):
                logger.warning("Alert %s vanished before it could be updated", alert_id)
                await self._registry.unregister(alert_id)
                return False
            if active:
                alert.active = True
                await self._recovery.restore_alert(alert)
            else:
                await self._registry.unregister(alert_id)
        return True

    async def delete_alert(self, alert_id: str) -> bool:
        """Remove an alert row and its job. Returns True if either existed."""
        async with self._locks.hold(alert_id):
            deleted = await self._alert_store.delete(alert_id)
            unregistered = await self._registry.unregister(alert_id)
        return deleted or unregistered

    async def get_alert(self, alert_id: str) -> AlertDefinition | None:
        return await self._alert_store.get(alert_id)

    async def list_alerts(self) -> list[AlertDefinition]:
        return await self._alert_store.get_all()

    # -- Status ----------------------------------------------------------------

    def status(self) -> SchedulerStatus:
        """Counts of live schedule/alert jobs and when each fires next."""
        return SchedulerStatus(
            active_schedule_count=self._registry.count(JobKind.SCHEDULE),
            active_alert_count=self._registry.count(JobKind.ALERT),
            next_fire_times={
                job.definition_id: self._registry.next_fire_time(job.definition_id)
                for job in self._registry.jobs()
            },
        )
