"""CronPlanner: derive cron expressions and APScheduler triggers from schedules.

Everything here is a pure function of its arguments. Nothing samples the
current date, so a schedule always maps to the same expression no matter
when (or how often) the process restarts.

Month-length policy: a monthly anchor of 29-31 fires on the anchor day in
months that have it and on the last day of the month otherwise, exactly
once per month. :func:`build_trigger` serves such expressions with
:class:`ClampedMonthlyTrigger` instead of a plain ``CronTrigger`` (which
would silently skip the short months).
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger

from reporting_agent.errors import CronExpressionError, ValidationError
from reporting_agent.scheduler.models import Frequency

if TYPE_CHECKING:
    from reporting_agent.scheduler.models import ScheduleDefinition

logger = logging.getLogger(__name__)

# Cron numbering: 0 and 7 are both Sunday.
_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

# Highest day-of-month present in every month.
_SAFE_MONTH_DAY = 28


# -- Validation ----------------------------------------------------------------


def _check_range(name: str, value: object, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an integer, got {value!r}"
        raise ValidationError(msg)
    if not low <= value <= high:
        msg = f"{name} must be between {low} and {high}, got {value}"
        raise ValidationError(msg)
    return value


def validate_time_of_day(hour: object, minute: object) -> None:
    """Raise ValidationError unless hour is 0-23 and minute is 0-59."""
    _check_range("hour", hour, 0, 23)
    _check_range("minute", minute, 0, 59)


# -- Planning ------------------------------------------------------------------


def plan(
    frequency: Frequency | str,
    hour: int,
    minute: int,
    anchor_day_of_week: int | None = None,
    anchor_day_of_month: int | None = None,
) -> str:
    """Return the cron expression for a recurring schedule.

    >>> plan("daily", 9, 30)
    '30 9 * * *'
    >>> plan("weekly", 9, 30, anchor_day_of_week=1)
    '30 9 * * 1'
    >>> plan("monthly", 9, 30, anchor_day_of_month=15)
    '30 9 15 * *'
    """
    try:
        frequency = Frequency(frequency)
    except ValueError:
        msg = f"Unknown frequency: {frequency!r}"
        raise ValidationError(msg) from None

    validate_time_of_day(hour, minute)

    if frequency is Frequency.DAILY:
        return f"{minute} {hour} * * *"
    if frequency is Frequency.WEEKLY:
        if anchor_day_of_week is None:
            msg = "Weekly schedules need an anchor day of week"
            raise ValidationError(msg)
        _check_range("anchor_day_of_week", anchor_day_of_week, 0, 6)
        return f"{minute} {hour} * * {anchor_day_of_week}"
    if frequency is Frequency.MONTHLY:
        if anchor_day_of_month is None:
            msg = "Monthly schedules need an anchor day of month"
            raise ValidationError(msg)
        _check_range("anchor_day_of_month", anchor_day_of_month, 1, 31)
        return f"{minute} {hour} {anchor_day_of_month} * *"

    msg = "One-time schedules run immediately and have no cron expression"
    raise ValidationError(msg)


def plan_schedule(definition: ScheduleDefinition) -> str:
    """Cron expression for a stored schedule, from its persisted anchor fields."""
    return plan(
        definition.frequency,
        definition.hour,
        definition.minute,
        anchor_day_of_week=definition.anchor_day_of_week,
        anchor_day_of_month=definition.anchor_day_of_month,
    )


def _ordinal(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe(
    frequency: Frequency | str,
    hour: int,
    minute: int,
    anchor_day_of_week: int | None = None,
    anchor_day_of_month: int | None = None,
) -> str:
    """Human-readable cadence, e.g. ``"09:30 every Monday"``."""
    frequency = Frequency(frequency)
    at = f"{hour:02d}:{minute:02d}"
    if frequency is Frequency.ONE_TIME:
        return "once, immediately"
    if frequency is Frequency.WEEKLY and anchor_day_of_week is not None:
        return f"{at} every {_DAY_NAMES[anchor_day_of_week]}"
    if frequency is Frequency.MONTHLY and anchor_day_of_month is not None:
        text = f"{at} on the {_ordinal(anchor_day_of_month)} of each month"
        if anchor_day_of_month > _SAFE_MONTH_DAY:
            text += " (last day in shorter months)"
        return text
    return f"{at} daily"


def describe_schedule(definition: ScheduleDefinition) -> str:
    return describe(
        definition.frequency,
        definition.hour,
        definition.minute,
        anchor_day_of_week=definition.anchor_day_of_week,
        anchor_day_of_month=definition.anchor_day_of_month,
    )


# -- Triggers ------------------------------------------------------------------


class ClampedMonthlyTrigger(BaseTrigger):
    """Fires once a month on ``min(day, last day of month)`` at hour:minute."""

    def __init__(self, day: int, hour: int, minute: int, timezone: tzinfo) -> None:
        self.day = day
        self.hour = hour
        self.minute = minute
        self.timezone = timezone

    def get_next_fire_time(
        self, previous_fire_time: datetime | None, now: datetime
    ) -> datetime | None:
        if previous_fire_time is not None:
            start = min(now, previous_fire_time + timedelta(microseconds=1))
            if start == previous_fire_time:
                start += timedelta(microseconds=1)
        else:
            start = now
        start = start.astimezone(self.timezone)

        year, month = start.year, start.month
        for _ in range(13):
            last_day = calendar.monthrange(year, month)[1]
            candidate = datetime(
                year, month, min(self.day, last_day), self.hour, self.minute,
                tzinfo=self.timezone,
            )
            if candidate >= start:
                return candidate
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return None

    def __str__(self) -> str:
        return f"clamped_monthly[day={self.day}, hour={self.hour}, minute={self.minute}]"

    def __repr__(self) -> str:
        return (
            f"<ClampedMonthlyTrigger (day={self.day}, hour={self.hour}, "
            f"minute={self.minute}, timezone='{self.timezone}')>"
        )


def resolve_timezone(timezone: tzinfo | str) -> tzinfo:
    """Turn an IANA name into a tzinfo (tzinfo objects pass through)."""
    if isinstance(timezone, tzinfo):
        return timezone
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"Unknown timezone: {timezone!r}"
        raise ValidationError(msg) from exc


def _expand_day_of_week(field: str) -> str:
    """Translate a cron day-of-week field into APScheduler weekday names.

    APScheduler counts weekdays from Monday = 0, cron from Sunday = 0; names
    are unambiguous in both.
    """
    if field == "*":
        return field

    names: list[str] = []
    for item in field.split(","):
        rng, _, step_text = item.partition("/")
        step = int(step_text) if step_text else 1
        if rng == "*":
            low, high = 0, 6
        elif "-" in rng:
            low_text, high_text = rng.split("-", 1)
            low, high = int(low_text), int(high_text)
        elif rng.isdigit():
            low = high = int(rng)
        else:
            # Already a name such as "mon" or "mon-fri".
            names.append(item.lower())
            continue
        if step < 1 or not 0 <= low <= high <= 7:
            msg = f"Invalid day-of-week item: {item!r}"
            raise ValueError(msg)
        names.extend(_DOW_NAMES[i] for i in range(low, high + 1, step))
    return ",".join(dict.fromkeys(names))


def build_trigger(expression: str, timezone: tzinfo | str) -> BaseTrigger:
    """Parse a five-field cron expression into an APScheduler trigger."""
    tz = resolve_timezone(timezone)
    fields = expression.split() if isinstance(expression, str) else []
    if len(fields) != 5:
        msg = f"Invalid cron expression (expected 5 fields): {expression!r}"
        raise CronExpressionError(msg)
    minute, hour, day, month, day_of_week = fields

    if (
        day.isdigit()
        and _SAFE_MONTH_DAY < int(day) <= 31
        and month == "*"
        and day_of_week == "*"
        and minute.isdigit()
        and hour.isdigit()
    ):
        try:
            validate_time_of_day(int(hour), int(minute))
        except ValidationError as exc:
            raise CronExpressionError(f"Invalid cron expression {expression!r}: {exc}") from exc
        return ClampedMonthlyTrigger(int(day), int(hour), int(minute), tz)

    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_expand_day_of_week(day_of_week),
            timezone=tz,
        )
    except (ValueError, TypeError) as exc:
        msg = f"Invalid cron expression {expression!r}: {exc}"
        raise CronExpressionError(msg) from exc


def next_fire_time(trigger: BaseTrigger, now: datetime) -> datetime | None:
    """Estimate the next time *trigger* fires at or after *now*."""
    return trigger.get_next_fire_time(None, now)
