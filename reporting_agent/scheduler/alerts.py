"""AlertMonitor: threshold checks for alert definitions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from reporting_agent.config import settings
from reporting_agent.errors import ExecutionError, StoreUnavailableError
from reporting_agent.scheduler.models import AlertCondition

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from reporting_agent.notifications.notifier import Notifier
    from reporting_agent.scheduler.models import AlertDefinition
    from reporting_agent.scheduler.store import AlertStore

    MetricProvider = Callable[[str], Awaitable[float]]

logger = logging.getLogger(__name__)

EQUALS_TOLERANCE = Decimal("0.01")


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        msg = f"Metric value is not a number: {value!r}"
        raise ExecutionError(msg) from None


def evaluate(
    condition: AlertCondition | str, current_value: object, threshold: object
) -> bool:
    """Whether *current_value* meets *condition* against *threshold*.

    ``greater_than`` and ``less_than`` are strict; ``equals`` matches within
    0.01 either side.
    """
    condition = AlertCondition(condition)
    value = _to_decimal(current_value)
    limit = _to_decimal(threshold)
    if value.is_nan() or limit.is_nan():
        return False

    if condition is AlertCondition.GREATER_THAN:
        return value > limit
    if condition is AlertCondition.LESS_THAN:
        return value < limit
    return abs(value - limit) < EQUALS_TOLERANCE


class AlertMonitor:
    """Checks alert conditions against a metric provider and notifies on a hit.

    Once an alert fires it stays quiet for *cooldown* (measured from
    ``last_triggered_at``); a zero cooldown re-notifies on every check while
    the condition holds.

    Args:
        store: AlertStore to read alerts and record last_triggered_at.
        metric_provider: Async callable ``(metric) -> number``.
        notifier: Notifier for alert and failure messages.
        cooldown: Minimum gap between notifications for one alert
            (default ``alert_cooldown_hours`` from settings).
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: AlertStore,
        metric_provider: MetricProvider,
        notifier: Notifier,
        *,
        cooldown: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._metric_provider = metric_provider
        self._notifier = notifier
        self._cooldown = (
            timedelta(hours=settings.alert_cooldown_hours) if cooldown is None else cooldown
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def in_cooldown(self, alert: AlertDefinition, now: datetime) -> bool:
        """True while the alert's last notification is younger than the cooldown."""
        if not self._cooldown or not alert.last_triggered_at:
            return False
        last = datetime.fromisoformat(alert.last_triggered_at)
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        return now - last < self._cooldown

    async def check(self, alert_id: str) -> bool:
        """Job handler: look up an alert by ID and check it if still active."""
        try:
            alert = await self._store.get(alert_id)
        except StoreUnavailableError:
            logger.warning("Skipping check of alert %s: store unavailable", alert_id)
            return False
        if alert is None:
            logger.warning("Alert not found: %s", alert_id)
            return False
        if not alert.active:
            logger.info("Skipping inactive alert: %s", alert_id)
            return False
        return await self.check_alert(alert)

    async def check_alert(self, alert: AlertDefinition) -> bool:
        """Check one alert. Returns True if a notification was sent."""
        try:
            value = await self._metric_provider(alert.metric)
            hit = evaluate(alert.condition, value, alert.threshold)
        except Exception as exc:
            logger.exception("Alert check failed: %s (%s)", alert.metric, alert.id)
            await self._notifier.send_failure(alert.recipients, exc, alert)
            return False

        if not hit:
            logger.debug(
                "Alert %s not met: %s=%s (%s %s)",
                alert.id, alert.metric, value, alert.condition, alert.threshold,
            )
            return False

        now = self._clock()
        if self.in_cooldown(alert, now):
            logger.info(
                "Alert %s met but suppressed (last triggered %s)", alert.id, alert.last_triggered_at
            )
            return False

        alert.last_triggered_at = now.isoformat()
        try:
            await self._store.update_last_triggered(alert.id, alert.last_triggered_at)
        except StoreUnavailableError:
            logger.warning("Could not record trigger time for alert %s", alert.id)

        await self._notifier.send_alert(alert.recipients, alert, value)
        logger.info(
            "Alert triggered: %s=%s (%s %s)", alert.metric, value, alert.condition, alert.threshold
        )
        return True

    async def poll_all(self) -> int:
        """Check every active alert once. Returns how many fired."""
        try:
            alerts = await self._store.get_active()
        except StoreUnavailableError:
            logger.warning("Alert poll skipped: store unavailable")
            return 0
        fired = 0
        for alert in alerts:
            if await self.check_alert(alert):
                fired += 1
        return fired
