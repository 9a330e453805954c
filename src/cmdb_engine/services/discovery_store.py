"""Discovery run, discovered item and schedule storage."""
from __future__ import annotations

import logging
import sqlite3

from src.cmdb_engine.services.store_base import BaseStore
from src.shared.models.cmdb import (
    DiscoveredItem,
    DiscoveredItemStatus,
    DiscoveryRun,
    DiscoveryRunStatus,
    DiscoverySchedule,
    DiscoveryType,
)
from src.shared.utils import dumps_json, loads_json, now_iso

logger = logging.getLogger(__name__)


class DiscoveryStore(BaseStore):
    """Persistence for the discovery pipeline."""

    store_name = "CMDB store"

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> DiscoveryRun:
        return DiscoveryRun(
            id=row["id"],
            schedule_id=row["schedule_id"],
            discovery_type=DiscoveryType(row["discovery_type"]),
            status=DiscoveryRunStatus(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            items_discovered=row["items_discovered"],
            items_updated=row["items_updated"],
            items_created=row["items_created"],
            items_failed=row["items_failed"],
            error_message=row["error_message"],
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> DiscoveredItem:
        return DiscoveredItem(
            id=row["id"],
            run_id=row["run_id"],
            discovered_data=loads_json(row["discovered_data"], {}),
            fingerprint=row["fingerprint"],
            status=DiscoveredItemStatus(row["status"]),
            ci_id=row["ci_id"],
            processing_notes=row["processing_notes"],
            discovered_at=row["discovered_at"],
            processed_at=row["processed_at"],
        )

    @staticmethod
    def _row_to_schedule(row: sqlite3.Row) -> DiscoverySchedule:
        return DiscoverySchedule(
            id=row["id"],
            name=row["name"],
            discovery_type=DiscoveryType(row["discovery_type"]),
            cron_expression=row["cron_expression"],
            scope_configuration=loads_json(row["scope_configuration"], {}),
            is_active=bool(row["is_active"]),
            next_run_date=row["next_run_date"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # runs
    # ------------------------------------------------------------------

    def create_run(self, run: DiscoveryRun) -> DiscoveryRun:
        conn = self._conn()
        conn.execute(
            """INSERT INTO discovery_runs (id, schedule_id, discovery_type, status, start_time)
               VALUES (?, ?, ?, ?, ?)""",
            (
                run.id,
                run.schedule_id,
                run.discovery_type.value,
                DiscoveryRunStatus.RUNNING.value,
                run.start_time.isoformat(),
            ),
        )
        conn.commit()
        return self.get_run(run.id)  # type: ignore[return-value]

    def get_run(self, run_id: str) -> DiscoveryRun | None:
        row = self._conn().execute(
            "SELECT * FROM discovery_runs WHERE id = ?", (run_id,)
        ).fetchone()
        return self._row_to_run(row) if row is not None else None

    def list_runs(self, limit: int = 50) -> list[DiscoveryRun]:
        rows = self._conn().execute(
            "SELECT * FROM discovery_runs ORDER BY start_time DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._row_to_run(r) for r in rows]

    def finish_run(
        self,
        run_id: str,
        status: DiscoveryRunStatus,
        *,
        items_discovered: int = 0,
        items_created: int = 0,
        items_updated: int = 0,
        items_failed: int = 0,
        error_message: str | None = None,
    ) -> bool:
        """Move a run out of ``Running``.

        Only a running run is updated, so a terminal status is written once.
        Returns False when the run was already finished.
        """
        conn = self._conn()
        cursor = conn.execute(
            """UPDATE discovery_runs
               SET status = ?, end_time = ?, items_discovered = ?, items_created = ?,
                   items_updated = ?, items_failed = ?, error_message = ?
               WHERE id = ? AND status = 'Running'""",
            (
                status.value,
                now_iso(),
                items_discovered,
                items_created,
                items_updated,
                items_failed,
                error_message,
                run_id,
            ),
        )
        conn.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # discovered items
    # ------------------------------------------------------------------

    def insert_item(self, item: DiscoveredItem) -> DiscoveredItem:
        conn = self._conn()
        conn.execute(
            """INSERT INTO discovered_items
               (id, run_id, discovered_data, fingerprint, status, discovered_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                item.id,
                item.run_id,
                dumps_json(item.discovered_data),
                item.fingerprint,
                item.status.value,
                item.discovered_at.isoformat(),
            ),
        )
        conn.commit()
        return item

    def get_item(self, item_id: str) -> DiscoveredItem | None:
        row = self._conn().execute(
            "SELECT * FROM discovered_items WHERE id = ?", (item_id,)
        ).fetchone()
        return self._row_to_item(row) if row is not None else None

    def list_items(
        self,
        run_id: str,
        status: DiscoveredItemStatus | None = None,
    ) -> list[DiscoveredItem]:
        sql = "SELECT * FROM discovered_items WHERE run_id = ?"
        params: list[str] = [run_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY discovered_at, rowid"
        rows = self._conn().execute(sql, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    def update_item(
        self,
        item_id: str,
        status: DiscoveredItemStatus,
        notes: str,
        ci_pk: str | None = None,
    ) -> None:
        """Record the outcome of processing an item.

        ``processed_at`` is stamped only for ``Processed``; a null *ci_pk*
        leaves an existing link in place.
        """
        processed_at = now_iso() if status == DiscoveredItemStatus.PROCESSED else None
        conn = self._conn()
        conn.execute(
            """UPDATE discovered_items
               SET status = ?, processing_notes = ?,
                   ci_id = COALESCE(?, ci_id),
                   processed_at = COALESCE(?, processed_at)
               WHERE id = ?""",
            (status.value, notes, ci_pk, processed_at, item_id),
        )
        conn.commit()

    # ------------------------------------------------------------------
    # schedules
    # ------------------------------------------------------------------

    def insert_schedule(self, schedule: DiscoverySchedule) -> DiscoverySchedule:
        conn = self._conn()
        conn.execute(
            """INSERT INTO discovery_schedules
               (id, name, discovery_type, cron_expression, scope_configuration,
                is_active, next_run_date, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                schedule.id,
                schedule.name,
                schedule.discovery_type.value,
                schedule.cron_expression,
                dumps_json(schedule.scope_configuration),
                int(schedule.is_active),
                schedule.next_run_date.isoformat() if schedule.next_run_date else None,
                schedule.created_at.isoformat(),
            ),
        )
        conn.commit()
        return schedule

    def get_schedule(self, schedule_id: str) -> DiscoverySchedule | None:
        row = self._conn().execute(
            "SELECT * FROM discovery_schedules WHERE id = ?", (schedule_id,)
        ).fetchone()
        return self._row_to_schedule(row) if row is not None else None

    def list_schedules(self, active_only: bool = False) -> list[DiscoverySchedule]:
        sql = "SELECT * FROM discovery_schedules"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY name"
        rows = self._conn().execute(sql).fetchall()
        return [self._row_to_schedule(r) for r in rows]

    def set_next_run(self, schedule_id: str, next_run_date: str) -> None:
        conn = self._conn()
        conn.execute(
            "UPDATE discovery_schedules SET next_run_date = ? WHERE id = ?",
            (next_run_date, schedule_id),
        )
        conn.commit()
