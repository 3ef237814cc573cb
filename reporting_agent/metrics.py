"""StaticMetricProvider: metric values from configuration."""

from __future__ import annotations

import logging

from reporting_agent.errors import ExecutionError

logger = logging.getLogger(__name__)


class StaticMetricProvider:
    """Serves alert metrics from a fixed name -> value mapping.

    Stands in for the live financial data source until one is wired up.
    Unknown metrics raise ExecutionError.
    """

    def __init__(self, values: dict[str, float] | None = None) -> None:
        self._values = dict(values or {})

    def set(self, metric: str, value: float) -> None:
        self._values[metric] = value

    @property
    def metrics(self) -> list[str]:
        return sorted(self._values)

    async def __call__(self, metric: str) -> float:
        try:
            return self._values[metric]
        except KeyError:
            msg = f"Unknown metric: {metric}"
            raise ExecutionError(msg) from None
