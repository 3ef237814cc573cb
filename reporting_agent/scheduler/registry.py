"""JobRegistry: owns the APScheduler instance and the live job map."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from reporting_agent.config import settings
from reporting_agent.errors import ValidationError
from reporting_agent.scheduler.models import Job, JobKind
from reporting_agent.scheduler.planner import build_trigger, next_fire_time, resolve_timezone

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from datetime import tzinfo

    Handler = Callable[[], Awaitable[Any]]

logger = logging.getLogger(__name__)


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class JobRegistry:
    """Maps definition ids to live APScheduler jobs.

    Every firing runs its handler on a separate asyncio task, so a slow
    report never holds up other jobs, and a handler that raises is logged
    without touching the job itself. Register/unregister calls for the same
    id are serialized; different ids never wait on each other.

    Args:
        timezone: IANA timezone string or tzinfo (default from settings).
        shutdown_grace_seconds: How long :meth:`shutdown` waits for running
            handlers before cancelling them (default from settings).
    """

    def __init__(
        self,
        timezone: str | tzinfo | None = None,
        shutdown_grace_seconds: float | None = None,
    ) -> None:
        self._timezone = resolve_timezone(timezone or settings.scheduler_timezone)
        self._grace = (
            settings.shutdown_grace_seconds
            if shutdown_grace_seconds is None
            else shutdown_grace_seconds
        )
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._jobs: dict[str, Job] = {}
        self._locks = KeyedLock()
        self._inflight: set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Start evaluating triggers. Jobs registered earlier start firing now."""
        if not self._running:
            self._scheduler.start()
            self._running = True
            logger.info(
                "Job registry started with %d job(s) (tz=%s)", len(self._jobs), self._timezone
            )

    async def shutdown(self) -> None:
        """Stop all timers, then wait for (or cancel) handlers still running."""
        dropped = len(self._jobs)
        self._jobs.clear()
        self._scheduler.remove_all_jobs()
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
        await self.drain(timeout=self._grace)
        logger.info("Job registry stopped (%d job(s) removed)", dropped)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight handler runs. Stragglers past *timeout* are cancelled."""
        if not self._inflight:
            return
        pending = set(self._inflight)
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("Cancelling %d handler run(s) still in flight", len(not_done))
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)

    # -- Job management --------------------------------------------------------

    async def register(
        self,
        definition_id: str,
        cron_expression: str,
        handler: Handler,
        *,
        kind: JobKind = JobKind.SCHEDULE,
    ) -> Job:
        """Create or replace the job for *definition_id*.

        The trigger is built before anything changes, so an invalid
        expression raises CronExpressionError and leaves any existing job
        in place. A job of another kind under the same id is never replaced:
        that raises ValidationError.
        """
        trigger = build_trigger(cron_expression, self._timezone)
        job = Job(
            definition_id=definition_id,
            cron_expression=cron_expression,
            kind=JobKind(kind),
            trigger=trigger,
            handler=handler,
        )
        async with self._locks.hold(definition_id):
            existing = self._jobs.get(definition_id)
            if existing is not None and existing.kind != job.kind:
                msg = f"Id {definition_id} already belongs to a {existing.kind} job"
                raise ValidationError(msg)
            replaced = existing is not None
            self._scheduler.add_job(
                self._fire,
                trigger=trigger,
                id=definition_id,
                name=f"{job.kind}:{definition_id}",
                args=[definition_id],
                misfire_grace_time=None,
                coalesce=True,
                replace_existing=True,
            )
            self._jobs[definition_id] = job
        logger.info(
            "%s %s job %s: %s",
            "Replaced" if replaced else "Registered",
            job.kind,
            definition_id,
            cron_expression,
        )
        return job

    async def unregister(self, definition_id: str) -> bool:
        """Stop future firings for *definition_id*. Returns True if a job existed.

        A handler run that is already in flight is left to finish.
        """
        async with self._locks.hold(definition_id):
            job = self._jobs.pop(definition_id, None)
            # Before start() every add_job is queued separately.
            removed = 0
            while True:
                try:
                    self._scheduler.remove_job(definition_id)
                except JobLookupError:
                    break
                removed += 1
            if not removed:
                logger.debug(
                    "Job %s not found in scheduler (may already be removed)", definition_id
                )
        if job is not None:
            logger.info("Unregistered %s job %s", job.kind, definition_id)
        return job is not None

    def has(self, definition_id: str) -> bool:
        return definition_id in self._jobs

    def count(self, kind: JobKind | None = None) -> int:
        if kind is None:
            return len(self._jobs)
        return sum(1 for job in self._jobs.values() if job.kind == kind)

    def get(self, definition_id: str) -> Job | None:
        return self._jobs.get(definition_id)

    def jobs(self, kind: JobKind | None = None) -> list[Job]:
        return [job for job in self._jobs.values() if kind is None or job.kind == kind]

    def next_fire_time(self, definition_id: str) -> datetime | None:
        """When the job for *definition_id* fires next, or None if unregistered."""
        job = self._jobs.get(definition_id)
        if job is None:
            return None
        if self._running:
            scheduled = self._scheduler.get_job(definition_id)
            planned = getattr(scheduled, "next_run_time", None)
            if planned is not None:
                return planned
        return next_fire_time(job.trigger, datetime.now(self._timezone))

    # -- Firing ----------------------------------------------------------------

    def spawn(self, name: str, handler: Handler) -> asyncio.Task:
        """Run *handler* now on its own task, without creating a job."""
        return self._launch(name, handler)

    async def _fire(self, definition_id: str) -> None:
        """APScheduler callback. Hands the real work off to a separate task."""
        job = self._jobs.get(definition_id)
        if job is None:
            logger.debug("Job %s fired after being unregistered", definition_id)
            return
        logger.info("Job fired: %s %s", job.kind, definition_id)
        self._launch(f"{job.kind}:{definition_id}", job.handler)

    def _launch(self, name: str, handler: Handler) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._guarded(name, handler), name=name)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    @staticmethod
    async def _guarded(name: str, handler: Handler) -> None:
        try:
            await handler()
        except Exception:
            logger.exception("Handler for %s failed", name)
