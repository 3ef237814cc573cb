"""Schedule, alert and job data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from reporting_agent.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class Frequency(StrEnum):
    ONE_TIME = "one-time"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AlertCondition(StrEnum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"


class JobKind(StrEnum):
    SCHEDULE = "schedule"
    ALERT = "alert"


# Report kinds known out of the box. Deployments may register more
# generators on the report registry.
DEFAULT_REPORT_TYPES = frozenset({
    "cash_flow_projection",
    "profit_loss",
    "cash_flow_statement",
    "ratio_analysis",
    "expense_analysis",
})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _coerce(enum_cls: type[StrEnum], value: object, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        msg = f"Invalid {field_name} {value!r} (expected one of: {allowed})"
        raise ValidationError(msg) from None


@dataclass
class ScheduleDefinition:
    """A persisted report schedule.

    Attributes:
        id: Unique identifier (UUID hex).
        task_type: Report kind, e.g. ``"profit_loss"``.
        frequency: One of :class:`Frequency`.
        hour: Hour of day the report runs (0-23).
        minute: Minute of the hour (0-59).
        recipients: Delivery targets (``"a@b.com"``, ``"telegram:123"``...).
        anchor_day_of_week: Weekly schedules only, 0 = Sunday. Fixed at creation.
        anchor_day_of_month: Monthly schedules only (1-31). Fixed at creation.
        from_date: Optional explicit report start, ``YYYY-MM-DD``.
        to_date: Optional explicit report end, ``YYYY-MM-DD``.
        active: Whether the schedule should fire.
        created_at: ISO 8601 timestamp.
        last_run_at: ISO 8601 timestamp of the last successful execution.
    """

    id: str
    task_type: str
    frequency: Frequency
    hour: int
    minute: int
    recipients: list[str] = field(default_factory=list)
    anchor_day_of_week: int | None = None
    anchor_day_of_month: int | None = None
    from_date: str | None = None
    to_date: str | None = None
    active: bool = True
    created_at: str = ""
    last_run_at: str | None = None

    def __post_init__(self) -> None:
        self.frequency = _coerce(Frequency, self.frequency, "frequency")
        if not self.created_at:
            self.created_at = _now_iso()

    @property
    def is_one_time(self) -> bool:
        return self.frequency is Frequency.ONE_TIME

    @property
    def is_recurring(self) -> bool:
        return not self.is_one_time

    @property
    def time_of_day(self) -> str:
        """``HH:MM`` representation of the run time."""
        return f"{self.hour:02d}:{self.minute:02d}"

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``report_schedules`` column order."""
        return (
            self.id,
            self.task_type,
            str(self.frequency),
            self.hour,
            self.minute,
            self.anchor_day_of_week,
            self.anchor_day_of_month,
            self.from_date,
            self.to_date,
            json.dumps(self.recipients),
            int(self.active),
            self.created_at,
            self.last_run_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> ScheduleDefinition:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            task_type=row[1],
            frequency=Frequency(row[2]),
            hour=row[3],
            minute=row[4],
            anchor_day_of_week=row[5],
            anchor_day_of_month=row[6],
            from_date=row[7],
            to_date=row[8],
            recipients=json.loads(row[9]),
            active=bool(row[10]),
            created_at=row[11],
            last_run_at=row[12],
        )


@dataclass
class AlertDefinition:
    """A persisted threshold condition over a named metric.

    ``threshold`` is kept as a :class:`~decimal.Decimal` and stored as text so
    that values such as ``50.00`` survive a round trip unchanged.
    """

    id: str
    metric: str
    threshold: Decimal
    condition: AlertCondition
    recipients: list[str] = field(default_factory=list)
    active: bool = True
    created_at: str = ""
    last_triggered_at: str | None = None

    def __post_init__(self) -> None:
        self.condition = _coerce(AlertCondition, self.condition, "condition")
        if not isinstance(self.threshold, Decimal):
            try:
                self.threshold = Decimal(str(self.threshold))
            except InvalidOperation:
                msg = f"Invalid threshold: {self.threshold!r}"
                raise ValidationError(msg) from None
        if not self.threshold.is_finite():
            msg = f"Threshold must be a finite number, got {self.threshold}"
            raise ValidationError(msg)
        if not self.created_at:
            self.created_at = _now_iso()

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``alert_thresholds`` column order."""
        return (
            self.id,
            self.metric,
            str(self.threshold),
            str(self.condition),
            json.dumps(self.recipients),
            int(self.active),
            self.created_at,
            self.last_triggered_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> AlertDefinition:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            metric=row[1],
            threshold=Decimal(row[2]),
            condition=AlertCondition(row[3]),
            recipients=json.loads(row[4]),
            active=bool(row[5]),
            created_at=row[6],
            last_triggered_at=row[7],
        )


@dataclass
class ReportResult:
    """What a report generator hands back: a reference to the deliverable."""

    deliverable_ref: str
    title: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Job:
    """A live timer binding in the job registry. Never persisted."""

    definition_id: str
    cron_expression: str
    kind: JobKind
    trigger: Any
    handler: Callable[[], Awaitable[Any]]


def make_definition_id() -> str:
    """Generate a new schedule/alert ID."""
    return uuid.uuid4().hex
