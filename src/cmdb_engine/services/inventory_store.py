"""Read access to the inventory system's asset table."""
from __future__ import annotations

import sqlite3
from typing import Any

from src.cmdb_engine.services.store_base import BaseStore
from src.shared.models.cmdb import InventoryAsset
from src.shared.utils import dumps_json, loads_json, now_iso


class InventoryStore(BaseStore):
    """Inventory assets live in their own database; this side only reads,
    except for :meth:`upsert` which seeds and tests rely on."""

    store_name = "Inventory store"

    @staticmethod
    def _row_to_asset(row: sqlite3.Row) -> InventoryAsset:
        return InventoryAsset(
            id=row["id"],
            asset_tag=row["asset_tag"],
            serial_number=row["serial_number"],
            model=row["model"],
            status=row["status"],
            vendor_id=row["vendor_id"],
            location_id=row["location_id"],
            department=row["department"],
            assigned_to_user_id=row["assigned_to_user_id"],
            purchase_date=row["purchase_date"],
            warranty_expiry=row["warranty_expiry"],
            custom_fields=loads_json(row["custom_fields"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get(self, asset_id: str) -> InventoryAsset | None:
        row = self._conn().execute(
            "SELECT * FROM inventory_assets WHERE id = ?", (asset_id,)
        ).fetchone()
        return self._row_to_asset(row) if row is not None else None

    def list_excluding(self, asset_ids: set[str], limit: int = 100) -> list[InventoryAsset]:
        """Newest assets whose id is not in *asset_ids*."""
        rows = self._conn().execute(
            "SELECT * FROM inventory_assets ORDER BY created_at DESC"
        ).fetchall()
        assets: list[InventoryAsset] = []
        for row in rows:
            if row["id"] in asset_ids:
                continue
            assets.append(self._row_to_asset(row))
            if len(assets) >= limit:
                break
        return assets

    def upsert(self, asset: InventoryAsset) -> InventoryAsset:
        now = now_iso()
        data: dict[str, Any] = asset.model_dump()
        conn = self._conn()
        conn.execute(
            """INSERT INTO inventory_assets
               (id, asset_tag, serial_number, model, status, vendor_id, location_id,
                department, assigned_to_user_id, purchase_date, warranty_expiry,
                custom_fields, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   asset_tag = excluded.asset_tag,
                   serial_number = excluded.serial_number,
                   model = excluded.model,
                   status = excluded.status,
                   vendor_id = excluded.vendor_id,
                   location_id = excluded.location_id,
                   department = excluded.department,
                   assigned_to_user_id = excluded.assigned_to_user_id,
                   purchase_date = excluded.purchase_date,
                   warranty_expiry = excluded.warranty_expiry,
                   custom_fields = excluded.custom_fields,
                   updated_at = excluded.updated_at""",
            (
                data["id"],
                data["asset_tag"],
                data["serial_number"],
                data["model"],
                data["status"],
                data["vendor_id"],
                data["location_id"],
                data["department"],
                data["assigned_to_user_id"],
                data["purchase_date"],
                data["warranty_expiry"],
                dumps_json(data["custom_fields"]),
                data["created_at"].isoformat() if data["created_at"] else now,
                data["updated_at"].isoformat() if data["updated_at"] else now,
            ),
        )
        conn.commit()
        return self.get(asset.id)  # type: ignore[return-value]
