"""Composition root: builds the scheduler and its collaborators from settings."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from datetime import timedelta
from typing import TYPE_CHECKING

from reporting_agent.config import Settings, settings
from reporting_agent.metrics import StaticMetricProvider
from reporting_agent.notifications.notifier import Notifier
from reporting_agent.notifications.router import NotificationRouter
from reporting_agent.reports import ReportRegistry, report_registry
from reporting_agent.scheduler.alerts import AlertMonitor
from reporting_agent.scheduler.dispatcher import ExecutionDispatcher
from reporting_agent.scheduler.engine import Scheduler
from reporting_agent.scheduler.registry import JobRegistry
from reporting_agent.scheduler.store import AlertStore, ScheduleStore

if TYPE_CHECKING:
    from reporting_agent.scheduler.alerts import MetricProvider
    from reporting_agent.scheduler.dispatcher import ReportExecutor

logger = logging.getLogger(__name__)


def _init_notifications(cfg: Settings) -> NotificationRouter:
    """Register a channel for every transport that has credentials configured."""
    from reporting_agent.notifications.email_channel import EmailChannel

    router = NotificationRouter()
    if cfg.smtp_host:
        router.register_channel(
            EmailChannel(
                cfg.smtp_host,
                cfg.smtp_port,
                cfg.email_sender,
                username=cfg.smtp_user,
                password=cfg.smtp_password,
                starttls=cfg.smtp_starttls,
            )
        )

    if cfg.telegram_bot_token:
        import telegram

        from reporting_agent.notifications.telegram_channel import TelegramChannel

        router.register_channel(TelegramChannel(telegram.Bot(cfg.telegram_bot_token)))

    if cfg.slack_bot_token:
        from slack_sdk.web.async_client import AsyncWebClient

        from reporting_agent.notifications.slack_channel import SlackChannel

        router.register_channel(SlackChannel(AsyncWebClient(token=cfg.slack_bot_token)))

    logger.info("Notification channels: %s", ", ".join(router.list_channels()) or "none")
    return router


def build_scheduler(
    cfg: Settings | None = None,
    *,
    router: NotificationRouter | None = None,
    report_executor: ReportExecutor | None = None,
    metric_provider: MetricProvider | None = None,
) -> Scheduler:
    """Wire stores, registry, dispatcher and alert monitor into a Scheduler."""
    cfg = cfg or settings
    notifier = Notifier(router or _init_notifications(cfg))
    schedule_store = ScheduleStore(db_path=cfg.database_path)
    alert_store = AlertStore(db_path=cfg.database_path)
    registry = JobRegistry(
        timezone=cfg.scheduler_timezone,
        shutdown_grace_seconds=cfg.shutdown_grace_seconds,
    )
    executor = report_executor or report_registry
    dispatcher = ExecutionDispatcher(
        schedule_store, executor, notifier, timezone=cfg.scheduler_timezone
    )
    monitor = AlertMonitor(
        alert_store,
        metric_provider or StaticMetricProvider(cfg.get_metric_values()),
        notifier,
        cooldown=timedelta(hours=cfg.alert_cooldown_hours),
    )
    task_types = None
    if isinstance(executor, ReportRegistry):
        task_types = executor.task_types
        if executor.unimplemented:
            logger.warning(
                "No generator registered for report type(s): %s; those schedules will fail",
                ", ".join(sorted(executor.unimplemented)),
            )
    return Scheduler(
        schedule_store,
        alert_store,
        registry,
        dispatcher,
        monitor,
        task_types=task_types,
        alert_check_cron=cfg.alert_check_cron,
    )


async def run(cfg: Settings | None = None) -> None:
    """Run the scheduler until SIGINT/SIGTERM, then shut it down cleanly."""
    scheduler = build_scheduler(cfg)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    result = await scheduler.start()
    logger.info("Restored %d job(s) at startup", result.total)
    try:
        await stop.wait()
    finally:
        await scheduler.stop()
