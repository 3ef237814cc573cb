"""RecoveryManager: rebuild live jobs from persisted definitions at startup."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from reporting_agent.config import settings
from reporting_agent.errors import StoreUnavailableError, ValidationError
from reporting_agent.scheduler.models import JobKind
from reporting_agent.scheduler.planner import plan_schedule

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from reporting_agent.scheduler.models import AlertDefinition, Job, ScheduleDefinition
    from reporting_agent.scheduler.registry import JobRegistry
    from reporting_agent.scheduler.store import AlertStore, ScheduleStore

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """How many jobs a recovery pass restored, and how many definitions it skipped."""

    schedules: int = 0
    alerts: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.schedules + self.alerts


class RecoveryManager:
    """Re-registers jobs for every active definition without running anything.

    Only future triggers are re-established: nothing is executed and nobody
    is notified as a result of recovery. Weekly/monthly jobs are planned from
    the anchor days persisted at creation, never from today's date.

    Args:
        schedule_store: Source of schedule definitions.
        alert_store: Source of alert definitions.
        registry: JobRegistry to register into.
        schedule_handler: Async ``(schedule_id)`` run when a schedule fires.
        alert_handler: Async ``(alert_id)`` run when an alert check fires.
        alert_check_cron: Cadence of alert checks (default from settings).
    """

    def __init__(
        self,
        schedule_store: ScheduleStore,
        alert_store: AlertStore,
        registry: JobRegistry,
        schedule_handler: Callable[[str], Awaitable[Any]],
        alert_handler: Callable[[str], Awaitable[Any]],
        *,
        alert_check_cron: str | None = None,
    ) -> None:
        self._schedule_store = schedule_store
        self._alert_store = alert_store
        self._registry = registry
        self._schedule_handler = schedule_handler
        self._alert_handler = alert_handler
        self._alert_check_cron = alert_check_cron or settings.alert_check_cron

    @property
    def alert_check_cron(self) -> str:
        return self._alert_check_cron

    async def restore_schedule(self, definition: ScheduleDefinition) -> Job:
        """Register the job for a recurring schedule from its stored fields."""
        expression = plan_schedule(definition)
        return await self._registry.register(
            definition.id,
            expression,
            functools.partial(self._schedule_handler, definition.id),
            kind=JobKind.SCHEDULE,
        )

    async def restore_alert(self, alert: AlertDefinition) -> Job:
        """Register the periodic check job for an alert."""
        return await self._registry.register(
            alert.id,
            self._alert_check_cron,
            functools.partial(self._alert_handler, alert.id),
            kind=JobKind.ALERT,
        )

    async def recover(self) -> RecoveryResult:
        """Register jobs for all active definitions. Never raises for store outages."""
        result = RecoveryResult()
        await self._recover_schedules(result)
        await self._recover_alerts(result)
        logger.info(
            "Recovery complete: %d schedule job(s), %d alert job(s), %d skipped",
            result.schedules,
            result.alerts,
            result.skipped,
        )
        return result

    async def _recover_schedules(self, result: RecoveryResult) -> None:
        try:
            schedules = await self._schedule_store.get_active()
        except StoreUnavailableError:
            logger.warning("Schedule store unavailable; no schedule jobs restored")
            return

        for definition in schedules:
            if definition.is_one_time:
                # Interrupted one-time run: it does not get a second chance.
                logger.warning(
                    "One-time schedule %s was still active at startup; marking it inactive",
                    definition.id,
                )
                try:
                    await self._schedule_store.set_active(definition.id, False)
                except StoreUnavailableError:
                    logger.warning("Could not deactivate one-time schedule %s", definition.id)
                result.skipped += 1
                continue
            try:
                await self.restore_schedule(definition)
            except ValidationError as exc:
                logger.error("Skipping schedule %s: %s", definition.id, exc)
                result.skipped += 1
                continue
            result.schedules += 1

    async def _recover_alerts(self, result: RecoveryResult) -> None:
        try:
            alerts = await self._alert_store.get_active()
        except StoreUnavailableError:
            logger.warning("Alert store unavailable; no alert jobs restored")
            return

        for alert in alerts:
            try:
                await self.restore_alert(alert)
            except ValidationError as exc:
                logger.error("Skipping alert %s: %s", alert.id, exc)
                result.skipped += 1
                continue
            result.alerts += 1
