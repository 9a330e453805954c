"""Relationship type and relationship storage."""
from __future__ import annotations

import logging
import sqlite3

from src.cmdb_engine.services.store_base import BaseStore
from src.shared.errors import ConflictError, DuplicateRelationshipError
from src.shared.models.cmdb import Criticality, Relationship, RelationshipType
from src.shared.utils import now_iso

logger = logging.getLogger(__name__)

_SELECT_RELATIONSHIP = """
    SELECT r.*, t.name AS relationship_type_name
    FROM ci_relationships r
    JOIN ci_relationship_types t ON t.id = r.relationship_type_id
"""


class RelationshipStore(BaseStore):
    """Typed, directed CI edges with soft deletion.

    The partial unique indexes ``uq_rel_edge`` and ``uq_rel_exclusive`` back
    the duplicate and multiplicity rules even when two writers race past the
    service-level checks.
    """

    store_name = "CMDB store"

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_type(row: sqlite3.Row) -> RelationshipType:
        return RelationshipType(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            source_ci_type_constraint=row["source_ci_type_constraint"],
            target_ci_type_constraint=row["target_ci_type_constraint"],
            allow_multiple=bool(row["allow_multiple"]),
        )

    @staticmethod
    def _row_to_relationship(row: sqlite3.Row) -> Relationship:
        return Relationship(
            id=row["id"],
            source_ci_id=row["source_ci_id"],
            target_ci_id=row["target_ci_id"],
            relationship_type_id=row["relationship_type_id"],
            relationship_type_name=row["relationship_type_name"],
            description=row["description"],
            criticality=Criticality(row["criticality"]),
            is_active=bool(row["is_active"]),
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # relationship types
    # ------------------------------------------------------------------

    def get_type(self, type_id: str) -> RelationshipType | None:
        row = self._conn().execute(
            "SELECT * FROM ci_relationship_types WHERE id = ?", (type_id,)
        ).fetchone()
        return self._row_to_type(row) if row is not None else None

    def get_type_by_name(self, name: str) -> RelationshipType | None:
        row = self._conn().execute(
            "SELECT * FROM ci_relationship_types WHERE name = ?", (name,)
        ).fetchone()
        return self._row_to_type(row) if row is not None else None

    def list_types(self) -> list[RelationshipType]:
        rows = self._conn().execute(
            "SELECT * FROM ci_relationship_types ORDER BY name"
        ).fetchall()
        return [self._row_to_type(r) for r in rows]

    def insert_type(
        self, rel_type: RelationshipType, *, ignore_existing: bool = False
    ) -> RelationshipType:
        """Insert a relationship type; names are unique.

        With *ignore_existing* a clash on id or name is silently skipped and
        the stored row is returned instead.
        """
        conn = self._conn()
        verb = "INSERT OR IGNORE" if ignore_existing else "INSERT"
        try:
            conn.execute(
                f"""{verb} INTO ci_relationship_types
                    (id, name, description, source_ci_type_constraint,
                     target_ci_type_constraint, allow_multiple, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    rel_type.id,
                    rel_type.name,
                    rel_type.description,
                    rel_type.source_ci_type_constraint,
                    rel_type.target_ci_type_constraint,
                    int(rel_type.allow_multiple),
                    now_iso(),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise ConflictError(
                detail=f"Relationship type already exists: {rel_type.name}"
            ) from exc
        if ignore_existing:
            return self.get_type_by_name(rel_type.name) or rel_type
        return rel_type

    # ------------------------------------------------------------------
    # relationships
    # ------------------------------------------------------------------

    def get(self, relationship_id: str) -> Relationship | None:
        row = self._conn().execute(
            _SELECT_RELATIONSHIP + " WHERE r.id = ?", (relationship_id,)
        ).fetchone()
        return self._row_to_relationship(row) if row is not None else None

    def find_active(
        self, source_pk: str, target_pk: str, type_id: str
    ) -> Relationship | None:
        row = self._conn().execute(
            _SELECT_RELATIONSHIP
            + """ WHERE r.source_ci_id = ? AND r.target_ci_id = ?
                  AND r.relationship_type_id = ? AND r.is_active = 1""",
            (source_pk, target_pk, type_id),
        ).fetchone()
        return self._row_to_relationship(row) if row is not None else None

    def has_active_of_type(self, source_pk: str, type_id: str) -> bool:
        row = self._conn().execute(
            """SELECT 1 FROM ci_relationships
               WHERE source_ci_id = ? AND relationship_type_id = ? AND is_active = 1
               LIMIT 1""",
            (source_pk, type_id),
        ).fetchone()
        return row is not None

    def insert(self, relationship: Relationship, *, exclusive: bool) -> Relationship:
        """Insert an active edge.

        *exclusive* is copied from the type's ``allow_multiple`` (inverted) so
        the multiplicity index applies. Any uniqueness violation surfaces as
        :class:`DuplicateRelationshipError`.
        """
        now = now_iso()
        conn = self._conn()
        try:
            conn.execute(
                """INSERT INTO ci_relationships
                   (id, source_ci_id, target_ci_id, relationship_type_id, description,
                    criticality, is_active, exclusive, created_by, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?)""",
                (
                    relationship.id,
                    relationship.source_ci_id,
                    relationship.target_ci_id,
                    relationship.relationship_type_id,
                    relationship.description,
                    relationship.criticality.value,
                    int(exclusive),
                    relationship.created_by,
                    now,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise DuplicateRelationshipError(
                detail="Relationship already exists between these CIs"
            ) from exc
        return self.get(relationship.id)  # type: ignore[return-value]

    def deactivate(self, relationship_id: str) -> bool:
        """Soft-delete an edge. Returns True when a row changed state."""
        conn = self._conn()
        cursor = conn.execute(
            """UPDATE ci_relationships SET is_active = 0, updated_at = ?
               WHERE id = ? AND is_active = 1""",
            (now_iso(), relationship_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def list_outgoing(
        self, ci_pk: str, type_id: str | None = None
    ) -> list[Relationship]:
        sql = _SELECT_RELATIONSHIP + " WHERE r.source_ci_id = ? AND r.is_active = 1"
        params: list[str] = [ci_pk]
        if type_id is not None:
            sql += " AND r.relationship_type_id = ?"
            params.append(type_id)
        sql += " ORDER BY r.created_at, r.id"
        rows = self._conn().execute(sql, params).fetchall()
        return [self._row_to_relationship(r) for r in rows]

    def list_incoming(
        self, ci_pk: str, type_id: str | None = None
    ) -> list[Relationship]:
        sql = _SELECT_RELATIONSHIP + " WHERE r.target_ci_id = ? AND r.is_active = 1"
        params: list[str] = [ci_pk]
        if type_id is not None:
            sql += " AND r.relationship_type_id = ?"
            params.append(type_id)
        sql += " ORDER BY r.created_at, r.id"
        rows = self._conn().execute(sql, params).fetchall()
        return [self._row_to_relationship(r) for r in rows]

    def count_active_for_ci(self, ci_pk: str) -> int:
        row = self._conn().execute(
            """SELECT COUNT(*) AS cnt FROM ci_relationships
               WHERE is_active = 1 AND (source_ci_id = ? OR target_ci_id = ?)""",
            (ci_pk, ci_pk),
        ).fetchone()
        return row["cnt"]

    def list_active_edges(self) -> list[tuple[str, str]]:
        """Every active (source, target) pair, for whole-graph audits."""
        rows = self._conn().execute(
            "SELECT source_ci_id, target_ci_id FROM ci_relationships WHERE is_active = 1"
        ).fetchall()
        return [(r["source_ci_id"], r["target_ci_id"]) for r in rows]
