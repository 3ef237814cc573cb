"""Report scheduler: models, persistence, planning, execution and alerting."""

from reporting_agent.scheduler.alerts import AlertMonitor, evaluate
from reporting_agent.scheduler.dispatcher import ExecutionDispatcher, resolve_date_range
from reporting_agent.scheduler.engine import Scheduler, SchedulerStatus
from reporting_agent.scheduler.models import (
    AlertCondition,
    AlertDefinition,
    Frequency,
    Job,
    JobKind,
    ReportResult,
    ScheduleDefinition,
)
from reporting_agent.scheduler.planner import build_trigger, describe, plan
from reporting_agent.scheduler.recovery import RecoveryManager, RecoveryResult
from reporting_agent.scheduler.registry import JobRegistry
from reporting_agent.scheduler.store import AlertStore, ScheduleStore

__all__ = [
    "AlertCondition",
    "AlertDefinition",
    "AlertMonitor",
    "AlertStore",
    "ExecutionDispatcher",
    "Frequency",
    "Job",
    "JobKind",
    "JobRegistry",
    "RecoveryManager",
    "RecoveryResult",
    "ReportResult",
    "ScheduleDefinition",
    "ScheduleStore",
    "Scheduler",
    "SchedulerStatus",
    "build_trigger",
    "describe",
    "evaluate",
    "plan",
    "resolve_date_range",
]
