"""Configuration item storage: CIs, CI types, network details, business
services and the audit trail."""
from __future__ import annotations

import logging
import sqlite3
import uuid
from enum import Enum
from typing import Any

from src.cmdb_engine.services.store_base import BaseStore
from src.shared.errors import ConflictError, NotFoundError
from src.shared.models.cmdb import (
    AuditLogEntry,
    BusinessService,
    CIType,
    ConfigurationItem,
    Criticality,
)
from src.shared.utils import dumps_json, is_uuid, loads_json, now_iso

logger = logging.getLogger(__name__)

_MAX_PAGE_SIZE = 200
_IN_CHUNK = 500

# Columns a caller may write through ``update``; anything else is folded
# into the open-schema ``attributes`` map.
UPDATABLE_COLUMNS: frozenset[str] = frozenset({
    "name",
    "display_name",
    "description",
    "ci_type",
    "ci_sub_type",
    "ci_status",
    "criticality",
    "environment",
    "serial_number",
    "asset_tag",
    "model",
    "manufacturer",
    "vendor",
    "location",
    "department",
    "owner",
    "purchase_date",
    "warranty_expiry_date",
    "custom_fields",
    "attributes",
    "is_discovered",
    "discovery_source",
    "first_discovered_date",
    "last_discovered_date",
})

_JSON_COLUMNS = frozenset({"custom_fields", "attributes"})


def _to_db(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return dumps_json(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class CIStore(BaseStore):
    """CRUD for ``configuration_items`` and its satellite tables."""

    store_name = "CMDB store"

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_ci(row: sqlite3.Row) -> ConfigurationItem:
        return ConfigurationItem(
            id=row["id"],
            ci_id=row["ci_id"],
            name=row["name"],
            display_name=row["display_name"],
            description=row["description"],
            ci_type=row["ci_type"],
            ci_sub_type=row["ci_sub_type"],
            ci_status=row["ci_status"],
            criticality=Criticality(row["criticality"]),
            environment=row["environment"],
            serial_number=row["serial_number"],
            asset_tag=row["asset_tag"],
            model=row["model"],
            manufacturer=row["manufacturer"],
            vendor=row["vendor"],
            location=row["location"],
            department=row["department"],
            owner=row["owner"],
            purchase_date=row["purchase_date"],
            warranty_expiry_date=row["warranty_expiry_date"],
            custom_fields=loads_json(row["custom_fields"]),
            attributes=loads_json(row["attributes"], {}),
            is_discovered=bool(row["is_discovered"]),
            discovery_source=row["discovery_source"],
            first_discovered_date=row["first_discovered_date"],
            last_discovered_date=row["last_discovered_date"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_service(row: sqlite3.Row) -> BusinessService:
        return BusinessService(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            criticality=Criticality(row["criticality"]),
        )

    def _fetch_one(self, sql: str, params: tuple) -> ConfigurationItem | None:
        row = self._conn().execute(sql, params).fetchone()
        return self._row_to_ci(row) if row is not None else None

    # ------------------------------------------------------------------
    # CI types
    # ------------------------------------------------------------------

    def get_ci_type(self, type_id: str) -> CIType | None:
        row = self._conn().execute(
            "SELECT * FROM ci_types WHERE id = ?", (type_id,)
        ).fetchone()
        if row is None:
            return None
        return CIType(
            id=row["id"],
            name=row["name"],
            category=row["category"],
            default_status=row["default_status"],
            is_active=bool(row["is_active"]),
        )

    def list_ci_types(self, include_inactive: bool = False) -> list[CIType]:
        sql = "SELECT * FROM ci_types"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY category, name"
        rows = self._conn().execute(sql).fetchall()
        return [
            CIType(
                id=r["id"],
                name=r["name"],
                category=r["category"],
                default_status=r["default_status"],
                is_active=bool(r["is_active"]),
            )
            for r in rows
        ]

    def insert_ci_type(self, ci_type: CIType, *, ignore_existing: bool = False) -> CIType:
        """Insert a CI type. Raises :class:`ConflictError` on a duplicate id
        unless *ignore_existing* is set (used for idempotent seeding)."""
        verb = "INSERT OR IGNORE" if ignore_existing else "INSERT"
        conn = self._conn()
        try:
            conn.execute(
                f"""{verb} INTO ci_types (id, name, category, default_status, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    ci_type.id,
                    ci_type.name,
                    ci_type.category,
                    ci_type.default_status,
                    int(ci_type.is_active),
                    now_iso(),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise ConflictError(detail=f"CI type already exists: {ci_type.id}") from exc
        return ci_type

    # ------------------------------------------------------------------
    # configuration items
    # ------------------------------------------------------------------

    def get(self, ref: str) -> ConfigurationItem | None:
        """Resolve a CI by opaque id (uuid-shaped) or ``ci_id`` business key."""
        if is_uuid(ref):
            return self._fetch_one("SELECT * FROM configuration_items WHERE id = ?", (ref,))
        return self._fetch_one("SELECT * FROM configuration_items WHERE ci_id = ?", (ref,))

    def get_by_pk(self, ci_pk: str) -> ConfigurationItem | None:
        return self._fetch_one("SELECT * FROM configuration_items WHERE id = ?", (ci_pk,))

    def ci_id_exists(self, ci_id: str) -> bool:
        row = self._conn().execute(
            "SELECT 1 FROM configuration_items WHERE ci_id = ?", (ci_id,)
        ).fetchone()
        return row is not None

    def find_by_serial(self, serial_number: str) -> ConfigurationItem | None:
        return self._fetch_one(
            "SELECT * FROM configuration_items WHERE serial_number = ? ORDER BY created_at LIMIT 1",
            (serial_number,),
        )

    def find_by_name(self, name: str) -> ConfigurationItem | None:
        return self._fetch_one(
            "SELECT * FROM configuration_items WHERE name = ? ORDER BY created_at LIMIT 1",
            (name,),
        )

    def find_by_ip_address(self, ip_address: str) -> ConfigurationItem | None:
        return self._fetch_one(
            """SELECT ci.* FROM configuration_items ci
               JOIN ci_network_details nd ON nd.ci_id = ci.id
               WHERE nd.ip_address = ?
               ORDER BY ci.created_at LIMIT 1""",
            (ip_address,),
        )

    def find_by_fingerprint(self, fingerprint: str) -> ConfigurationItem | None:
        """Return the CI linked to the latest processed item with *fingerprint*."""
        return self._fetch_one(
            """SELECT ci.* FROM configuration_items ci
               JOIN discovered_items di ON di.ci_id = ci.id
               WHERE di.fingerprint = ? AND di.status = 'Processed'
               ORDER BY di.processed_at DESC LIMIT 1""",
            (fingerprint,),
        )

    def insert(self, ci: ConfigurationItem) -> ConfigurationItem:
        """Insert a CI. The ``ci_id`` UNIQUE constraint is the real guard
        against duplicate business keys; a clash raises :class:`ConflictError`."""
        now = now_iso()
        data = ci.model_dump()
        data["created_at"] = now
        data["updated_at"] = now
        columns = ["id", "ci_id", *sorted(UPDATABLE_COLUMNS), "created_by", "created_at", "updated_at"]
        placeholders = ", ".join("?" for _ in columns)
        values = [_to_db(col, data.get(col)) for col in columns]

        conn = self._conn()
        try:
            conn.execute(
                f"INSERT INTO configuration_items ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise ConflictError(detail=f"Configuration Item already exists: {ci.ci_id}") from exc
        return self.get_by_pk(ci.id)  # type: ignore[return-value]

    def update(self, ci_pk: str, fields: dict[str, Any]) -> ConfigurationItem:
        """Write *fields* onto a CI.

        Known columns are written directly; unknown keys are merged into
        ``attributes`` (an explicit ``attributes`` value is taken as the new
        base map). Raises :class:`NotFoundError` when the CI is gone.
        """
        columns = {k: v for k, v in fields.items() if k in UPDATABLE_COLUMNS}
        extras = {k: v for k, v in fields.items() if k not in UPDATABLE_COLUMNS}

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT attributes FROM configuration_items WHERE id = ?", (ci_pk,)
            ).fetchone()
            if row is None:
                raise NotFoundError(detail=f"Configuration Item not found: {ci_pk}")
            if extras:
                base = columns.get("attributes")
                if base is None:
                    base = loads_json(row["attributes"], {})
                columns["attributes"] = {**base, **extras}
            columns["updated_at"] = now_iso()
            assignments = ", ".join(f"{col} = ?" for col in columns)
            conn.execute(
                f"UPDATE configuration_items SET {assignments} WHERE id = ?",
                [*(_to_db(col, val) for col, val in columns.items()), ci_pk],
            )
        return self.get_by_pk(ci_pk)  # type: ignore[return-value]

    def delete(self, ci_pk: str) -> None:
        conn = self._conn()
        conn.execute("DELETE FROM configuration_items WHERE id = ?", (ci_pk,))
        conn.commit()

    def list_cis(
        self,
        page: int = 1,
        page_size: int = 50,
        ci_type: str | None = None,
        status: str | None = None,
        environment: str | None = None,
        criticality: str | None = None,
        location: str | None = None,
        search: str | None = None,
    ) -> tuple[list[ConfigurationItem], int]:
        """Return a filtered page of CIs and the total match count."""
        conn = self._conn()
        page_size = max(1, min(page_size, _MAX_PAGE_SIZE))
        page = max(1, page)

        conditions: list[str] = []
        params: list[Any] = []
        if ci_type is not None:
            conditions.append("ci_type = ?")
            params.append(ci_type)
        if status is not None:
            conditions.append("ci_status = ?")
            params.append(status)
        if environment is not None:
            conditions.append("environment = ?")
            params.append(environment)
        if criticality is not None:
            conditions.append("criticality = ?")
            params.append(criticality)
        if location:
            conditions.append("location LIKE ?")
            params.append(f"%{location}%")
        if search:
            conditions.append(
                "(name LIKE ? OR description LIKE ? OR serial_number LIKE ?"
                " OR asset_tag LIKE ? OR ci_id LIKE ?)"
            )
            params.extend([f"%{search}%"] * 5)

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        total: int = conn.execute(
            f"SELECT COUNT(*) AS cnt FROM configuration_items {where_clause}", params
        ).fetchone()["cnt"]
        rows = conn.execute(
            f"SELECT * FROM configuration_items {where_clause} "
            f"ORDER BY updated_at DESC, name ASC LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size],
        ).fetchall()
        return [self._row_to_ci(r) for r in rows], total

    def list_unmapped(self, limit: int = 100) -> list[ConfigurationItem]:
        """CIs that no inventory mapping points at, newest first."""
        rows = self._conn().execute(
            """SELECT * FROM configuration_items
               WHERE id NOT IN (SELECT ci_id FROM cmdb_inventory_mappings)
               ORDER BY created_at DESC LIMIT ?""",
            (limit,),
        ).fetchall()
        return [self._row_to_ci(r) for r in rows]

    def search_for_asset(
        self,
        serial_number: str | None,
        asset_tag: str | None,
        model: str | None,
        limit: int = 10,
    ) -> list[ConfigurationItem]:
        """Candidate CIs for an inventory asset.

        Matches case-insensitively on serial number, on asset tag, or on
        model containment combined with serial containment when the asset
        has a serial number.
        """
        criteria: list[str] = []
        params: list[Any] = []
        if serial_number:
            criteria.append("LOWER(serial_number) = LOWER(?)")
            params.append(serial_number)
        if asset_tag:
            criteria.append("LOWER(asset_tag) = LOWER(?)")
            params.append(asset_tag)
        if model:
            if serial_number:
                criteria.append(
                    "(INSTR(LOWER(model), LOWER(?)) > 0"
                    " AND INSTR(LOWER(serial_number), LOWER(?)) > 0)"
                )
                params.extend([model, serial_number])
            else:
                criteria.append("INSTR(LOWER(model), LOWER(?)) > 0")
                params.append(model)
        if not criteria:
            return []
        rows = self._conn().execute(
            f"SELECT * FROM configuration_items WHERE {' OR '.join(criteria)} LIMIT ?",
            [*params, limit],
        ).fetchall()
        return [self._row_to_ci(r) for r in rows]

    # ------------------------------------------------------------------
    # network details
    # ------------------------------------------------------------------

    def upsert_network_detail(
        self,
        ci_pk: str,
        ip_address: str | None = None,
        mac_address: str | None = None,
        fqdn: str | None = None,
    ) -> None:
        """Record network identifiers; ``None`` keeps the stored value."""
        conn = self._conn()
        conn.execute(
            """INSERT INTO ci_network_details (ci_id, ip_address, mac_address, fqdn, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(ci_id) DO UPDATE SET
                   ip_address  = COALESCE(excluded.ip_address, ip_address),
                   mac_address = COALESCE(excluded.mac_address, mac_address),
                   fqdn        = COALESCE(excluded.fqdn, fqdn),
                   updated_at  = excluded.updated_at""",
            (ci_pk, ip_address, mac_address, fqdn, now_iso()),
        )
        conn.commit()

    # ------------------------------------------------------------------
    # business services
    # ------------------------------------------------------------------

    def insert_business_service(self, service: BusinessService) -> BusinessService:
        conn = self._conn()
        conn.execute(
            """INSERT INTO business_services (id, name, description, criticality, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (service.id, service.name, service.description, service.criticality.value, now_iso()),
        )
        conn.commit()
        return service

    def get_business_service(self, service_id: str) -> BusinessService | None:
        row = self._conn().execute(
            "SELECT * FROM business_services WHERE id = ?", (service_id,)
        ).fetchone()
        return self._row_to_service(row) if row is not None else None

    def list_business_services(self) -> list[BusinessService]:
        rows = self._conn().execute(
            "SELECT * FROM business_services ORDER BY name"
        ).fetchall()
        return [self._row_to_service(r) for r in rows]

    def link_business_service(
        self, ci_pk: str, service_id: str, criticality: Criticality
    ) -> None:
        conn = self._conn()
        conn.execute(
            """INSERT INTO ci_business_services (ci_id, business_service_id, criticality)
               VALUES (?, ?, ?)
               ON CONFLICT(ci_id, business_service_id) DO UPDATE SET
                   criticality = excluded.criticality""",
            (ci_pk, service_id, criticality.value),
        )
        conn.commit()

    def list_service_links(
        self, ci_pks: list[str]
    ) -> list[tuple[BusinessService, ConfigurationItem, Criticality]]:
        """Return (service, CI, join criticality) for every link touching *ci_pks*."""
        conn = self._conn()
        links: list[tuple[BusinessService, ConfigurationItem, Criticality]] = []
        for start in range(0, len(ci_pks), _IN_CHUNK):
            chunk = ci_pks[start:start + _IN_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"""SELECT cbs.business_service_id, cbs.ci_id, cbs.criticality AS link_criticality
                    FROM ci_business_services cbs
                    WHERE cbs.ci_id IN ({placeholders})
                    ORDER BY cbs.business_service_id, cbs.ci_id""",
                chunk,
            ).fetchall()
            for r in rows:
                service = self.get_business_service(r["business_service_id"])
                ci = self.get_by_pk(r["ci_id"])
                if service is None or ci is None:
                    continue
                links.append((service, ci, Criticality(r["link_criticality"])))
        return links

    # ------------------------------------------------------------------
    # health counters
    # ------------------------------------------------------------------

    def count(
        self,
        ci_status: str | None = None,
        is_discovered: bool | None = None,
        updated_before: str | None = None,
    ) -> int:
        conditions: list[str] = []
        params: list[Any] = []
        if ci_status is not None:
            conditions.append("ci_status = ?")
            params.append(ci_status)
        if is_discovered is not None:
            conditions.append("is_discovered = ?")
            params.append(int(is_discovered))
        if updated_before is not None:
            conditions.append("updated_at < ?")
            params.append(updated_before)
        where_clause = ("WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._conn().execute(
            f"SELECT COUNT(*) AS cnt FROM configuration_items {where_clause}", params
        ).fetchone()
        return row["cnt"]

    def list_keys(self) -> dict[str, str]:
        """Opaque id -> ``ci_id`` for every CI."""
        rows = self._conn().execute("SELECT id, ci_id FROM configuration_items").fetchall()
        return {r["id"]: r["ci_id"] for r in rows}

    def list_completeness_fields(self) -> list[dict[str, Any]]:
        rows = self._conn().execute(
            "SELECT name, ci_type, environment, owner FROM configuration_items"
        ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # audit trail
    # ------------------------------------------------------------------

    def record_audit(
        self,
        ci_pk: str,
        operation: str,
        field_name: str | None = None,
        old_value: Any = None,
        new_value: Any = None,
        changed_by: str | None = None,
    ) -> None:
        """Append an audit row. Never raises: audit failures are logged."""
        try:
            conn = self._conn()
            conn.execute(
                """INSERT INTO ci_audit_log
                   (ci_id, operation, field_name, old_value, new_value, changed_by, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    ci_pk,
                    operation,
                    field_name,
                    None if old_value is None else str(old_value),
                    None if new_value is None else str(new_value),
                    changed_by,
                    now_iso(),
                ),
            )
            conn.commit()
        except Exception as exc:
            logger.warning("CIStore.record_audit failed (non-blocking): %s", exc)

    def list_audit(self, ci_pk: str, limit: int = 50) -> list[AuditLogEntry]:
        rows = self._conn().execute(
            """SELECT * FROM ci_audit_log WHERE ci_id = ?
               ORDER BY timestamp DESC, id DESC LIMIT ?""",
            (ci_pk, limit),
        ).fetchall()
        return [
            AuditLogEntry(
                ci_id=r["ci_id"],
                operation=r["operation"],
                field_name=r["field_name"],
                old_value=r["old_value"],
                new_value=r["new_value"],
                changed_by=r["changed_by"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]


def new_ci_pk() -> str:
    """Return a fresh opaque CI id."""
    return str(uuid.uuid4())
