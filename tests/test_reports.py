"""Tests for the report generator registry."""

from datetime import date

import pytest

from reporting_agent.errors import ExecutionError
from reporting_agent.reports import ReportRegistry
from reporting_agent.scheduler.models import DEFAULT_REPORT_TYPES, ReportResult

FROM, TO = date(2025, 1, 1), date(2025, 1, 31)


def test_decorator_registers_generator() -> None:
    reports = ReportRegistry()

    @reports.generator("board_pack")
    async def board_pack(from_date: date, to_date: date) -> ReportResult:
        return ReportResult(deliverable_ref="ref")

    assert reports.get("board_pack") is board_pack
    assert reports.get("missing") is None


def test_task_types_include_defaults_and_registered() -> None:
    reports = ReportRegistry()

    @reports.generator("board_pack")
    async def board_pack(from_date: date, to_date: date) -> ReportResult:
        return ReportResult(deliverable_ref="ref")

    assert reports.task_types == DEFAULT_REPORT_TYPES | {"board_pack"}


def test_unimplemented_lists_kinds_without_generator() -> None:
    reports = ReportRegistry()
    assert reports.unimplemented == DEFAULT_REPORT_TYPES

    @reports.generator("profit_loss")
    async def profit_loss(from_date: date, to_date: date) -> ReportResult:
        return ReportResult(deliverable_ref="ref")

    assert "profit_loss" not in reports.unimplemented
    assert reports.unimplemented == DEFAULT_REPORT_TYPES - {"profit_loss"}


async def test_call_passes_date_range() -> None:
    reports = ReportRegistry()
    seen: list[tuple[date, date]] = []

    @reports.generator("profit_loss")
    async def profit_loss(from_date: date, to_date: date) -> ReportResult:
        seen.append((from_date, to_date))
        return ReportResult(deliverable_ref=f"pl-{from_date}-{to_date}.pdf")

    result = await reports("profit_loss", FROM, TO)

    assert seen == [(FROM, TO)]
    assert result.deliverable_ref == "pl-2025-01-01-2025-01-31.pdf"


async def test_unsupported_type_raises() -> None:
    reports = ReportRegistry()
    with pytest.raises(ExecutionError, match="Unsupported report type"):
        await reports("profit_loss", FROM, TO)


async def test_generator_error_is_wrapped() -> None:
    reports = ReportRegistry()

    @reports.generator("profit_loss")
    async def profit_loss(from_date: date, to_date: date) -> ReportResult:
        raise KeyError("ledger")

    with pytest.raises(ExecutionError, match="profit_loss report failed") as exc_info:
        await reports("profit_loss", FROM, TO)
    assert isinstance(exc_info.value.__cause__, KeyError)


async def test_empty_deliverable_rejected() -> None:
    reports = ReportRegistry()

    @reports.generator("profit_loss")
    async def profit_loss(from_date: date, to_date: date) -> ReportResult:
        return ReportResult(deliverable_ref="")

    with pytest.raises(ExecutionError, match="no deliverable"):
        await reports("profit_loss", FROM, TO)
