"""ScheduleStore / AlertStore: aiosqlite CRUD for schedule and alert definitions."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from reporting_agent.config import settings
from reporting_agent.errors import StoreUnavailableError
from reporting_agent.scheduler.models import AlertDefinition, ScheduleDefinition

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_SCHEDULES = """
CREATE TABLE IF NOT EXISTS report_schedules (
    id TEXT PRIMARY KEY,
    task_type TEXT NOT NULL,
    frequency TEXT NOT NULL,
    hour INTEGER NOT NULL,
    minute INTEGER NOT NULL,
    anchor_day_of_week INTEGER,
    anchor_day_of_month INTEGER,
    from_date TEXT,
    to_date TEXT,
    recipients TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    last_run_at TEXT
)
"""

_CREATE_ALERTS = """
CREATE TABLE IF NOT EXISTS alert_thresholds (
    id TEXT PRIMARY KEY,
    metric TEXT NOT NULL,
    threshold TEXT NOT NULL,
    condition_type TEXT NOT NULL,
    recipients TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    last_triggered_at TEXT
)
"""


class _SQLiteStore:
    """Shared connection handling. Every database error surfaces as StoreUnavailableError."""

    _create_table: str = ""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(str(self._db_path)) as db:
                if not self._initialised:
                    await db.execute(self._create_table)
                    await db.commit()
                    self._initialised = True
                yield db
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Store unavailable (%s): %s", self._db_path, exc)
            msg = f"Database unavailable: {exc}"
            raise StoreUnavailableError(msg) from exc


class ScheduleStore(_SQLiteStore):
    """Persists report schedules in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _create_table = _CREATE_SCHEDULES

    async def create(self, definition: ScheduleDefinition) -> str:
        """Insert a new schedule. Returns its id."""
        async with self._session() as db:
            await db.execute(
                """
                INSERT INTO report_schedules
                    (id, task_type, frequency, hour, minute, anchor_day_of_week,
                     anchor_day_of_month, from_date, to_date, recipients, active,
                     created_at, last_run_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                definition.to_row(),
            )
            await db.commit()
        logger.info(
            "Added schedule: %s %s (%s)", definition.frequency, definition.task_type, definition.id
        )
        return definition.id

    async def get(self, schedule_id: str) -> ScheduleDefinition | None:
        """Fetch a schedule by ID, or None if not found."""
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT * FROM report_schedules WHERE id = ?", (schedule_id,)
            )
            row = await cursor.fetchone()
        return ScheduleDefinition.from_row(row) if row else None

    async def get_all(self) -> list[ScheduleDefinition]:
        async with self._session() as db:
            cursor = await db.execute("SELECT * FROM report_schedules ORDER BY created_at")
            rows = await cursor.fetchall()
        return [ScheduleDefinition.from_row(row) for row in rows]

    async def get_active(self) -> list[ScheduleDefinition]:
        """Return all active schedules."""
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT * FROM report_schedules WHERE active = 1 ORDER BY created_at"
            )
            rows = await cursor.fetchall()
        return [ScheduleDefinition.from_row(row) for row in rows]

    async def set_active(self, schedule_id: str, active: bool) -> bool:
        """Set the active flag. Returns True if a row was updated."""
        async with self._session() as db:
            cursor = await db.execute(
                "UPDATE report_schedules SET active = ? WHERE id = ?",
                (int(active), schedule_id),
            )
            await db.commit()
            updated = cursor.rowcount > 0
        if updated:
            logger.info("Schedule %s: active=%s", schedule_id, active)
        return updated

    async def delete(self, schedule_id: str) -> bool:
        """Remove a schedule row. Returns True if it existed."""
        async with self._session() as db:
            cursor = await db.execute(
                "DELETE FROM report_schedules WHERE id = ?", (schedule_id,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted schedule: %s", schedule_id)
        return deleted

    async def update_last_run(self, schedule_id: str, timestamp: str | None = None) -> None:
        """Set the last_run_at timestamp (defaults to now UTC)."""
        ts = timestamp or datetime.now(UTC).isoformat()
        async with self._session() as db:
            await db.execute(
                "UPDATE report_schedules SET last_run_at = ? WHERE id = ?",
                (ts, schedule_id),
            )
            await db.commit()


class AlertStore(_SQLiteStore):
    """Persists alert thresholds in SQLite."""

    _create_table = _CREATE_ALERTS

    async def create(self, definition: AlertDefinition) -> str:
        """Insert a new alert. Returns its id."""
        async with self._session() as db:
            await db.execute(
                """
                INSERT INTO alert_thresholds
                    (id, metric, threshold, condition_type, recipients, active,
                     created_at, last_triggered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                definition.to_row(),
            )
            await db.commit()
        logger.info(
            "Added alert: %s %s %s (%s)",
            definition.metric,
            definition.condition,
            definition.threshold,
            definition.id,
        )
        return definition.id

    async def get(self, alert_id: str) -> AlertDefinition | None:
        async with self._session() as db:
            cursor = await db.execute("SELECT * FROM alert_thresholds WHERE id = ?", (alert_id,))
            row = await cursor.fetchone()
        return AlertDefinition.from_row(row) if row else None

    async def get_all(self) -> list[AlertDefinition]:
        async with self._session() as db:
            cursor = await db.execute("SELECT * FROM alert_thresholds ORDER BY created_at")
            rows = await cursor.fetchall()
        return [AlertDefinition.from_row(row) for row in rows]

    async def get_active(self) -> list[AlertDefinition]:
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT * FROM alert_thresholds WHERE active = 1 ORDER BY created_at"
            )
            rows = await cursor.fetchall()
        return [AlertDefinition.from_row(row) for row in rows]

    async def set_active(self, alert_id: str, active: bool) -> bool:
        async with self._session() as db:
            cursor = await db.execute(
                "UPDATE alert_thresholds SET active = ? WHERE id = ?",
                (int(active), alert_id),
            )
            await db.commit()
            updated = cursor.rowcount > 0
        if updated:
            logger.info("Alert %s: active=%s", alert_id, active)
        return updated

    async def delete(self, alert_id: str) -> bool:
        async with self._session() as db:
            cursor = await db.execute("DELETE FROM alert_thresholds WHERE id = ?", (alert_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted alert: %s", alert_id)
        return deleted

    async def update_last_triggered(self, alert_id: str, timestamp: str | None = None) -> None:
        """Set the last_triggered_at timestamp (defaults to now UTC)."""
        ts = timestamp or datetime.now(UTC).isoformat()
        async with self._session() as db:
            await db.execute(
                "UPDATE alert_thresholds SET last_triggered_at = ? WHERE id = ?",
                (ts, alert_id),
            )
            await db.commit()
