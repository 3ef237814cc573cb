"""ExecutionDispatcher: turns a schedule firing into a report plus notification."""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from reporting_agent.config import settings
from reporting_agent.errors import StoreUnavailableError
from reporting_agent.scheduler.models import Frequency
from reporting_agent.scheduler.planner import resolve_timezone

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import tzinfo

    from reporting_agent.notifications.notifier import Notifier
    from reporting_agent.scheduler.models import ReportResult, ScheduleDefinition
    from reporting_agent.scheduler.store import ScheduleStore

    ReportExecutor = Callable[[str, date, date], Awaitable[ReportResult]]

logger = logging.getLogger(__name__)


def one_month_back(day: date) -> date:
    """Same day of the previous month, clamped to that month's length."""
    year, month = (day.year - 1, 12) if day.month == 1 else (day.year, day.month - 1)
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def resolve_date_range(definition: ScheduleDefinition, today: date) -> tuple[date, date]:
    """Return the ``(from_date, to_date)`` a run of *definition* reports on.

    Explicit dates on the definition win. Otherwise the range ends today and
    starts one period back: a day for daily (and one-time), a week for
    weekly, a calendar month for monthly.
    """
    if definition.from_date and definition.to_date:
        return date.fromisoformat(definition.from_date), date.fromisoformat(definition.to_date)

    if definition.frequency is Frequency.WEEKLY:
        return today - timedelta(days=7), today
    if definition.frequency is Frequency.MONTHLY:
        return one_month_back(today), today
    return today - timedelta(days=1), today


class ExecutionDispatcher:
    """Runs scheduled reports and routes the outcome to the notifier.

    A failed run is reported to the schedule's recipients and logged. The
    schedule's job stays registered, so the next tick runs it again.

    Args:
        store: ScheduleStore to look definitions up and record last_run_at.
        report_executor: Async callable ``(task_type, from_date, to_date)``
            returning a ReportResult.
        notifier: Notifier for success/failure messages.
        timezone: Timezone that defines "today" (default from settings).
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: ScheduleStore,
        report_executor: ReportExecutor,
        notifier: Notifier,
        *,
        timezone: str | tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._report_executor = report_executor
        self._notifier = notifier
        self._timezone = resolve_timezone(timezone or settings.scheduler_timezone)
        self._clock = clock or (lambda: datetime.now(self._timezone))

    def today(self) -> date:
        return self._clock().astimezone(self._timezone).date()

    async def execute(self, schedule_id: str) -> bool:
        """Job handler: look up a schedule by ID and run it if still active."""
        try:
            definition = await self._store.get(schedule_id)
        except StoreUnavailableError:
            logger.warning("Skipping run of schedule %s: store unavailable", schedule_id)
            return False
        if definition is None:
            logger.warning("Scheduled report not found: %s", schedule_id)
            return False
        if not definition.active:
            logger.info("Skipping inactive schedule: %s", schedule_id)
            return False
        return await self.run(definition)

    async def run(self, definition: ScheduleDefinition) -> bool:
        """Generate the report for *definition* and notify its recipients.

        Returns True on success. Never raises for report failures.
        """
        logger.info(
            "Executing %s report (%s, %s) for %d recipient(s)",
            definition.task_type,
            definition.frequency,
            definition.id,
            len(definition.recipients),
        )
        try:
            from_date, to_date = resolve_date_range(definition, self.today())
            logger.info("Report date range: %s to %s", from_date, to_date)
            result = await self._report_executor(definition.task_type, from_date, to_date)
        except Exception as exc:
            logger.exception(
                "Report execution failed: %s (%s)", definition.task_type, definition.id
            )
            await self._notifier.send_failure(definition.recipients, exc, definition)
            return False

        await self._notifier.send_report_ready(
            definition.recipients, result, definition, period=(from_date, to_date)
        )
        try:
            await self._store.update_last_run(definition.id)
        except StoreUnavailableError:
            logger.warning("Could not record last run for schedule %s", definition.id)
        logger.info("Report executed successfully: %s (%s)", definition.task_type, definition.id)
        return True
