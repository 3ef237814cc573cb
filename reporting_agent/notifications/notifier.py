"""Notifier: formats scheduler messages and fans them out to recipients."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from reporting_agent.errors import NotificationError
from reporting_agent.scheduler.models import AlertDefinition, ScheduleDefinition

if TYPE_CHECKING:
    from datetime import date

    from reporting_agent.notifications.router import NotificationRouter
    from reporting_agent.scheduler.models import ReportResult

logger = logging.getLogger(__name__)


def _title(name: str) -> str:
    """``"profit_loss"`` -> ``"PROFIT LOSS"``."""
    return name.replace("_", " ").upper()


class Notifier:
    """Delivers report, failure and alert notifications.

    Delivery is best-effort: a recipient that cannot be reached is logged
    and skipped, and never affects the execution that produced the message.

    Args:
        router: NotificationRouter that resolves recipients to channels.
    """

    def __init__(self, router: NotificationRouter) -> None:
        self._router = router

    async def _deliver(self, recipients: list[str], subject: str, body: str) -> int:
        delivered = 0
        for recipient in recipients:
            try:
                await self._router.send(recipient, body, subject=subject)
                delivered += 1
            except NotificationError as exc:
                logger.warning("Notification to %s failed: %s", recipient, exc)
            except Exception:
                logger.exception("Unexpected error notifying %s", recipient)
        logger.info("'%s' delivered to %d/%d recipient(s)", subject, delivered, len(recipients))
        return delivered

    async def send_report_ready(
        self,
        recipients: list[str],
        result: ReportResult,
        definition: ScheduleDefinition | None = None,
        *,
        period: tuple[date, date] | None = None,
    ) -> int:
        """Tell recipients a scheduled report is ready for download."""
        report = _title(definition.task_type) if definition else (result.title or "REPORT")
        subject = f"Scheduled {report} Report"
        lines = [f"Your scheduled {report} report has been generated."]
        if period:
            lines.append(f"Period: {period[0].isoformat()} to {period[1].isoformat()}")
        lines.append(f"Download: {result.deliverable_ref}")
        if definition is not None:
            lines.append(f"Frequency: {definition.frequency}")
        return await self._deliver(recipients, subject, "\n".join(lines))

    async def send_failure(
        self,
        recipients: list[str],
        error: BaseException,
        definition: ScheduleDefinition | AlertDefinition | None = None,
    ) -> int:
        """Tell recipients that a report or alert check could not be completed."""
        if isinstance(definition, ScheduleDefinition):
            subject = f"Report Generation Failed - {definition.task_type}"
            what = f"your scheduled {_title(definition.task_type)} report"
        elif isinstance(definition, AlertDefinition):
            subject = f"Alert Check Failed - {definition.metric}"
            what = f"the {_title(definition.metric)} alert"
        else:
            subject = "Scheduled Task Failed"
            what = "a scheduled task"
        body = (
            f"We encountered an error while processing {what}.\n"
            f"Error: {error}\n"
            "The task stays scheduled and will run again at its next scheduled time."
        )
        return await self._deliver(recipients, subject, body)

    async def send_alert(
        self, recipients: list[str], alert: AlertDefinition, value: float
    ) -> int:
        """Tell recipients an alert threshold condition was met."""
        subject = f"Financial Alert: {alert.metric} Threshold Exceeded"
        body = "\n".join([
            "Financial Alert Triggered",
            f"Metric: {_title(alert.metric)}",
            f"Current Value: {value}",
            f"Threshold: {alert.threshold}",
            f"Condition: {alert.condition.replace('_', ' ')}",
            f"Time: {datetime.now(UTC).strftime('%Y-%m-%d %H:%M UTC')}",
            "Please review the financial metrics and take appropriate action.",
        ])
        return await self._deliver(recipients, subject, body)
