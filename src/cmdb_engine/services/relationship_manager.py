"""Relationship graph management: typed, directed edges between CIs."""
from __future__ import annotations

import asyncio
import logging

from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.cycle_validator import CircularDependencyValidator
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.constants import RELATIONSHIP_DIRECTIONS
from src.shared.errors import (
    CircularDependencyError,
    DuplicateRelationshipError,
    NotFoundError,
    TypeConstraintViolationError,
    ValidationError,
)
from src.shared.models.cmdb import (
    ConfigurationItem,
    RelatedRelationship,
    Relationship,
    RelationshipCreate,
    RelationshipDirection,
    RelationshipType,
    RelationshipTypeCreate,
)

logger = logging.getLogger(__name__)


class RelationshipManager:
    """Creates, removes and lists relationships.

    Creation runs its checks in a fixed order: exact duplicate, type
    constraints, multiplicity, circular dependency. The store's partial
    unique indexes repeat the duplicate and multiplicity checks at insert.
    """

    def __init__(
        self,
        ci_store: CIStore,
        relationship_store: RelationshipStore,
        validator: CircularDependencyValidator | None = None,
    ) -> None:
        self._cis = ci_store
        self._relationships = relationship_store
        self._validator = validator or CircularDependencyValidator(
            ci_store, relationship_store
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _resolve(self, ref: str, label: str = "Configuration Item") -> ConfigurationItem:
        ci = await asyncio.to_thread(self._cis.get, ref)
        if ci is None:
            raise NotFoundError(detail=f"{label} not found: {ref}")
        return ci

    @staticmethod
    def _check_constraints(
        source: ConfigurationItem,
        target: ConfigurationItem,
        rel_type: RelationshipType,
    ) -> None:
        if (
            rel_type.source_ci_type_constraint
            and source.ci_type != rel_type.source_ci_type_constraint
        ):
            raise TypeConstraintViolationError(
                detail=(
                    f"Source CI type {source.ci_type} not allowed for relationship "
                    f"type {rel_type.name}"
                )
            )
        if (
            rel_type.target_ci_type_constraint
            and target.ci_type != rel_type.target_ci_type_constraint
        ):
            raise TypeConstraintViolationError(
                detail=(
                    f"Target CI type {target.ci_type} not allowed for relationship "
                    f"type {rel_type.name}"
                )
            )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def create_relationship(self, body: RelationshipCreate) -> Relationship:
        source = await self._resolve(body.source_ci_id, "Source Configuration Item")
        target = await self._resolve(body.target_ci_id, "Target Configuration Item")
        rel_type = await asyncio.to_thread(
            self._relationships.get_type, body.relationship_type_id
        )
        if rel_type is None:
            raise NotFoundError(
                detail=f"Relationship type not found: {body.relationship_type_id}"
            )

        existing = await asyncio.to_thread(
            self._relationships.find_active, source.id, target.id, rel_type.id
        )
        if existing is not None:
            raise DuplicateRelationshipError(
                detail="Relationship already exists between these CIs"
            )

        self._check_constraints(source, target, rel_type)

        if not rel_type.allow_multiple:
            taken = await asyncio.to_thread(
                self._relationships.has_active_of_type, source.id, rel_type.id
            )
            if taken:
                raise DuplicateRelationshipError(
                    detail=(
                        f"Relationship type {rel_type.name} does not allow multiple "
                        f"relationships from {source.ci_id}"
                    )
                )

        if await self._validator.would_create_cycle(source.id, target.id):
            raise CircularDependencyError(
                detail=(
                    f"Relationship {source.ci_id} -> {target.ci_id} would create a "
                    "circular dependency"
                )
            )

        relationship = Relationship(
            source_ci_id=source.id,
            target_ci_id=target.id,
            relationship_type_id=rel_type.id,
            description=body.description,
            criticality=body.criticality,
            created_by=body.created_by,
        )
        created = await asyncio.to_thread(
            self._relationships.insert,
            relationship,
            exclusive=not rel_type.allow_multiple,
        )
        await asyncio.to_thread(
            self._cis.record_audit,
            source.id,
            "RELATIONSHIP_CREATE",
            "relationship",
            None,
            f"{rel_type.name} -> {target.ci_id}",
            body.created_by,
        )
        logger.info(
            "Relationship created: %s -> %s (%s)",
            source.ci_id, target.ci_id, rel_type.name,
            extra={"relationship_id": created.id, "ci_id": source.ci_id},
        )
        return created

    async def delete_relationship(
        self, relationship_id: str, deleted_by: str | None = None
    ) -> bool:
        """Soft-delete a relationship.

        Returns False only when the id is unknown. Deleting an inactive
        relationship is a no-op that still returns True.
        """
        relationship = await asyncio.to_thread(self._relationships.get, relationship_id)
        if relationship is None:
            return False
        changed = await asyncio.to_thread(self._relationships.deactivate, relationship_id)
        if changed:
            await asyncio.to_thread(
                self._cis.record_audit,
                relationship.source_ci_id,
                "RELATIONSHIP_DELETE",
                "relationship",
                f"{relationship.relationship_type_name} -> {relationship.target_ci_id}",
                None,
                deleted_by,
            )
            logger.info(
                "Relationship deleted: %s -> %s (%s)",
                relationship.source_ci_id,
                relationship.target_ci_id,
                relationship.relationship_type_name,
                extra={"relationship_id": relationship_id},
            )
        return True

    async def get_relationships(
        self,
        ci_ref: str,
        direction: str = RelationshipDirection.BOTH.value,
        relationship_type: str | None = None,
    ) -> list[RelatedRelationship]:
        """Active relationships of a CI, annotated with direction and the other CI.

        *relationship_type* filters by type name; an unknown name yields an
        empty list.
        """
        try:
            wanted = RelationshipDirection(direction)
        except ValueError:
            raise ValidationError(
                detail=(
                    f"Invalid direction: {direction}. "
                    f"Use one of: {', '.join(RELATIONSHIP_DIRECTIONS)}"
                )
            ) from None

        ci = await self._resolve(ci_ref)
        type_id: str | None = None
        if relationship_type:
            rel_type = await asyncio.to_thread(
                self._relationships.get_type_by_name, relationship_type
            )
            if rel_type is None:
                return []
            type_id = rel_type.id

        results: list[RelatedRelationship] = []
        if wanted in (RelationshipDirection.OUTGOING, RelationshipDirection.BOTH):
            outgoing = await asyncio.to_thread(
                self._relationships.list_outgoing, ci.id, type_id
            )
            for rel in outgoing:
                related = await asyncio.to_thread(self._cis.get_by_pk, rel.target_ci_id)
                if related is None:
                    continue
                results.append(
                    RelatedRelationship(
                        **rel.model_dump(),
                        direction=RelationshipDirection.OUTGOING,
                        related_ci=related,
                    )
                )
        if wanted in (RelationshipDirection.INCOMING, RelationshipDirection.BOTH):
            incoming = await asyncio.to_thread(
                self._relationships.list_incoming, ci.id, type_id
            )
            for rel in incoming:
                related = await asyncio.to_thread(self._cis.get_by_pk, rel.source_ci_id)
                if related is None:
                    continue
                results.append(
                    RelatedRelationship(
                        **rel.model_dump(),
                        direction=RelationshipDirection.INCOMING,
                        related_ci=related,
                    )
                )
        return results

    async def list_relationship_types(self) -> list[RelationshipType]:
        return await asyncio.to_thread(self._relationships.list_types)

    async def create_relationship_type(
        self, body: RelationshipTypeCreate
    ) -> RelationshipType:
        for constraint in (body.source_ci_type_constraint, body.target_ci_type_constraint):
            if constraint is None:
                continue
            ci_type = await asyncio.to_thread(self._cis.get_ci_type, constraint)
            if ci_type is None:
                raise ValidationError(detail=f"CI Type {constraint} does not exist")
        rel_type = RelationshipType(**body.model_dump())
        created = await asyncio.to_thread(self._relationships.insert_type, rel_type)
        logger.info("Relationship type created: %s", created.name)
        return created
