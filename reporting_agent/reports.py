"""Report generator registry: the extensible catalog of report kinds."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import date

from reporting_agent.errors import ExecutionError
from reporting_agent.scheduler.models import DEFAULT_REPORT_TYPES, ReportResult

logger = logging.getLogger(__name__)

# Generator signature: async (from_date, to_date) -> ReportResult
ReportGenerator = Callable[[date, date], Awaitable[ReportResult]]


class ReportRegistry:
    """Registry for named report generators. Acts as the scheduler's report executor.

    Usage::

        reports = ReportRegistry()

        @reports.generator("profit_loss")
        async def profit_loss(from_date: date, to_date: date) -> ReportResult:
            ...

        result = await reports("profit_loss", from_date, to_date)
    """

    def __init__(self) -> None:
        self._generators: dict[str, ReportGenerator] = {}

    def generator(self, task_type: str) -> Callable[[ReportGenerator], ReportGenerator]:
        """Decorator to register an async function as the generator for *task_type*."""

        def decorator(fn: ReportGenerator) -> ReportGenerator:
            self._generators[task_type] = fn
            logger.info("Registered report generator: %s", task_type)
            return fn

        return decorator

    def get(self, task_type: str) -> ReportGenerator | None:
        """Look up a generator by report kind."""
        return self._generators.get(task_type)

    @property
    def task_types(self) -> frozenset[str]:
        """Report kinds a schedule may name: the defaults plus any registered kind."""
        return DEFAULT_REPORT_TYPES | frozenset(self._generators)

    @property
    def unimplemented(self) -> frozenset[str]:
        """Accepted report kinds that have no generator registered yet."""
        return self.task_types - frozenset(self._generators)

    async def __call__(self, task_type: str, from_date: date, to_date: date) -> ReportResult:
        fn = self._generators.get(task_type)
        if fn is None:
            msg = f"Unsupported report type: {task_type}"
            raise ExecutionError(msg)
        try:
            result = await fn(from_date, to_date)
        except ExecutionError:
            raise
        except Exception as exc:
            msg = f"{task_type} report failed: {exc}"
            raise ExecutionError(msg) from exc
        if not result or not result.deliverable_ref:
            msg = f"{task_type} report produced no deliverable"
            raise ExecutionError(msg)
        return result


report_registry = ReportRegistry()
