"""Exception hierarchy for the reporting agent scheduler."""


class SchedulerError(Exception):
    """Base class for all reporting agent errors."""


class ValidationError(SchedulerError, ValueError):
    """A definition or argument was rejected before anything was persisted or registered."""


class CronExpressionError(ValidationError):
    """A cron expression could not be turned into a trigger."""


class StoreUnavailableError(SchedulerError):
    """The schedule/alert database could not be reached or queried."""


class ExecutionError(SchedulerError):
    """A report generator or metric provider failed."""


class NotificationError(SchedulerError):
    """A message could not be delivered to a recipient."""
