"""CMDB ↔ inventory mapping storage."""
from __future__ import annotations

import sqlite3
from typing import Any

from src.cmdb_engine.services.store_base import BaseStore
from src.shared.models.cmdb import CmdbInventoryMapping, ConflictResolution, SyncStatus
from src.shared.utils import dumps_json, loads_json, now_iso

_MAX_PAGE_SIZE = 200

_UPDATABLE = frozenset({
    "mapping_type",
    "relationship",
    "sync_enabled",
    "conflict_resolution",
    "field_mapping",
})


class MappingStore(BaseStore):
    """CRUD and sync bookkeeping for ``cmdb_inventory_mappings``."""

    store_name = "CMDB store"

    @staticmethod
    def _row_to_mapping(row: sqlite3.Row) -> CmdbInventoryMapping:
        return CmdbInventoryMapping(
            id=row["id"],
            ci_id=row["ci_id"],
            inventory_asset_id=row["inventory_asset_id"],
            mapping_type=row["mapping_type"],
            relationship=row["relationship"],
            sync_enabled=bool(row["sync_enabled"]),
            conflict_resolution=ConflictResolution(row["conflict_resolution"]),
            field_mapping=loads_json(row["field_mapping"]),
            sync_status=SyncStatus(row["sync_status"]),
            last_sync_at=row["last_sync_at"],
            sync_errors=row["sync_errors"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def insert(self, mapping: CmdbInventoryMapping) -> CmdbInventoryMapping:
        now = now_iso()
        conn = self._conn()
        conn.execute(
            """INSERT INTO cmdb_inventory_mappings
               (id, ci_id, inventory_asset_id, mapping_type, relationship, sync_enabled,
                conflict_resolution, field_mapping, sync_status, created_by,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                mapping.id,
                mapping.ci_id,
                mapping.inventory_asset_id,
                mapping.mapping_type,
                mapping.relationship,
                int(mapping.sync_enabled),
                mapping.conflict_resolution.value,
                dumps_json(mapping.field_mapping),
                SyncStatus.PENDING.value,
                mapping.created_by,
                now,
                now,
            ),
        )
        conn.commit()
        return self.get(mapping.id)  # type: ignore[return-value]

    def get(self, mapping_id: str) -> CmdbInventoryMapping | None:
        row = self._conn().execute(
            "SELECT * FROM cmdb_inventory_mappings WHERE id = ?", (mapping_id,)
        ).fetchone()
        return self._row_to_mapping(row) if row is not None else None

    def update(self, mapping_id: str, fields: dict[str, Any]) -> CmdbInventoryMapping | None:
        """Apply the given fields; returns None when the mapping is gone."""
        columns = {k: v for k, v in fields.items() if k in _UPDATABLE}
        if not columns:
            return self.get(mapping_id)
        if "field_mapping" in columns:
            columns["field_mapping"] = dumps_json(columns["field_mapping"])
        if "conflict_resolution" in columns:
            columns["conflict_resolution"] = ConflictResolution(columns["conflict_resolution"]).value
        if "sync_enabled" in columns:
            columns["sync_enabled"] = int(columns["sync_enabled"])
        columns["updated_at"] = now_iso()

        assignments = ", ".join(f"{col} = ?" for col in columns)
        conn = self._conn()
        cursor = conn.execute(
            f"UPDATE cmdb_inventory_mappings SET {assignments} WHERE id = ?",
            [*columns.values(), mapping_id],
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get(mapping_id)

    def delete(self, mapping_id: str) -> bool:
        conn = self._conn()
        cursor = conn.execute(
            "DELETE FROM cmdb_inventory_mappings WHERE id = ?", (mapping_id,)
        )
        conn.commit()
        return cursor.rowcount > 0

    def list_mappings(
        self,
        page: int = 1,
        page_size: int = 50,
        ci_id: str | None = None,
        inventory_asset_id: str | None = None,
        mapping_type: str | None = None,
        sync_enabled: bool | None = None,
    ) -> tuple[list[CmdbInventoryMapping], int]:
        """Return a filtered page of mappings (newest first) and the total."""
        conn = self._conn()
        page_size = max(1, min(page_size, _MAX_PAGE_SIZE))
        page = max(1, page)

        conditions: list[str] = []
        params: list[Any] = []
        if ci_id is not None:
            conditions.append("ci_id = ?")
            params.append(ci_id)
        if inventory_asset_id is not None:
            conditions.append("inventory_asset_id = ?")
            params.append(inventory_asset_id)
        if mapping_type is not None:
            conditions.append("mapping_type = ?")
            params.append(mapping_type)
        if sync_enabled is not None:
            conditions.append("sync_enabled = ?")
            params.append(int(sync_enabled))

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        total: int = conn.execute(
            f"SELECT COUNT(*) AS cnt FROM cmdb_inventory_mappings {where_clause}", params
        ).fetchone()["cnt"]
        rows = conn.execute(
            f"SELECT * FROM cmdb_inventory_mappings {where_clause} "
            f"ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size],
        ).fetchall()
        return [self._row_to_mapping(r) for r in rows], total

    def list_enabled(self) -> list[CmdbInventoryMapping]:
        rows = self._conn().execute(
            "SELECT * FROM cmdb_inventory_mappings WHERE sync_enabled = 1 ORDER BY created_at, rowid"
        ).fetchall()
        return [self._row_to_mapping(r) for r in rows]

    def mapped_asset_ids(self) -> set[str]:
        rows = self._conn().execute(
            "SELECT DISTINCT inventory_asset_id FROM cmdb_inventory_mappings"
        ).fetchall()
        return {r["inventory_asset_id"] for r in rows}

    # ------------------------------------------------------------------
    # sync bookkeeping
    # ------------------------------------------------------------------

    def record_sync(
        self, mapping_id: str, status: SyncStatus, error: str | None = None
    ) -> str:
        """Stamp a sync attempt; returns the timestamp written."""
        synced_at = now_iso()
        conn = self._conn()
        conn.execute(
            """UPDATE cmdb_inventory_mappings
               SET sync_status = ?, sync_errors = ?, last_sync_at = ?, updated_at = ?
               WHERE id = ?""",
            (status.value, error, synced_at, synced_at, mapping_id),
        )
        conn.commit()
        return synced_at

    def list_synced_since(self, since: str, limit: int = 10) -> list[CmdbInventoryMapping]:
        rows = self._conn().execute(
            """SELECT * FROM cmdb_inventory_mappings
               WHERE last_sync_at >= ?
               ORDER BY last_sync_at DESC LIMIT ?""",
            (since, limit),
        ).fetchall()
        return [self._row_to_mapping(r) for r in rows]

    def count(
        self,
        sync_enabled: bool | None = None,
        sync_status: SyncStatus | None = None,
    ) -> int:
        conditions: list[str] = []
        params: list[Any] = []
        if sync_enabled is not None:
            conditions.append("sync_enabled = ?")
            params.append(int(sync_enabled))
        if sync_status is not None:
            conditions.append("sync_status = ?")
            params.append(sync_status.value)
        where_clause = ("WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._conn().execute(
            f"SELECT COUNT(*) AS cnt FROM cmdb_inventory_mappings {where_clause}", params
        ).fetchone()
        return row["cnt"]
