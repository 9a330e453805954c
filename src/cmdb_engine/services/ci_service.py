"""Configuration item lifecycle: create, read, update, delete, audit."""
from __future__ import annotations

import asyncio
import logging
import random

from src.cmdb_engine.services.ci_store import CIStore, new_ci_pk
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.constants import CI_ID_MAX, CI_ID_MIN, CI_ID_PREFIX
from src.shared.errors import ConflictError, NotFoundError, ValidationError
from src.shared.models.cmdb import (
    AuditLogEntry,
    BusinessService,
    BusinessServiceCreate,
    CICreate,
    CIListResponse,
    CIType,
    CIUpdate,
    ConfigurationItem,
    Criticality,
)

logger = logging.getLogger(__name__)

_NOT_NULL_FIELDS = ("name", "ci_type", "ci_status", "criticality", "attributes")


class CIService:
    """Manual CI management on top of :class:`CIStore`.

    Every store call is blocking SQLite work and runs via
    ``asyncio.to_thread``.
    """

    def __init__(
        self,
        ci_store: CIStore,
        relationship_store: RelationshipStore,
        ci_id_max_attempts: int = 50,
    ) -> None:
        self._cis = ci_store
        self._relationships = relationship_store
        self._max_attempts = ci_id_max_attempts

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def resolve(self, ref: str) -> ConfigurationItem:
        """Return the CI for an id or ``ci_id`` reference or raise NotFoundError."""
        ci = await asyncio.to_thread(self._cis.get, ref)
        if ci is None:
            raise NotFoundError(detail=f"Configuration Item not found: {ref}")
        return ci

    async def generate_ci_id(self) -> str:
        """Draw ``CI`` + six random digits until an unused one turns up.

        Gives up with :class:`ConflictError` after the configured number of
        attempts. The UNIQUE constraint on ``ci_id`` still guards the insert.
        """
        for _ in range(self._max_attempts):
            candidate = f"{CI_ID_PREFIX}{random.randint(CI_ID_MIN, CI_ID_MAX)}"
            exists = await asyncio.to_thread(self._cis.ci_id_exists, candidate)
            if not exists:
                return candidate
        raise ConflictError(
            detail=f"Could not allocate a unique CI id after {self._max_attempts} attempts"
        )

    # ------------------------------------------------------------------
    # configuration items
    # ------------------------------------------------------------------

    async def create_ci(self, body: CICreate) -> ConfigurationItem:
        ci_type = await asyncio.to_thread(self._cis.get_ci_type, body.ci_type)
        if ci_type is None:
            raise ValidationError(detail=f"CI Type {body.ci_type} does not exist")

        data = body.model_dump()
        if data["ci_status"] is None:
            data["ci_status"] = ci_type.default_status
        ci = ConfigurationItem(
            id=new_ci_pk(),
            ci_id=await self.generate_ci_id(),
            **data,
        )
        created = await asyncio.to_thread(self._cis.insert, ci)
        await asyncio.to_thread(
            self._cis.record_audit, created.id, "CREATE", changed_by=body.created_by
        )
        logger.info(
            "Configuration Item created: %s (%s)", created.ci_id, created.name,
            extra={"ci_id": created.ci_id},
        )
        return created

    async def get_ci(self, ref: str) -> ConfigurationItem:
        return await self.resolve(ref)

    async def list_cis(
        self,
        page: int = 1,
        page_size: int = 50,
        ci_type: str | None = None,
        status: str | None = None,
        environment: str | None = None,
        criticality: str | None = None,
        location: str | None = None,
        search: str | None = None,
    ) -> CIListResponse:
        items, total = await asyncio.to_thread(
            self._cis.list_cis,
            page=page,
            page_size=page_size,
            ci_type=ci_type,
            status=status,
            environment=environment,
            criticality=criticality,
            location=location,
            search=search,
        )
        return CIListResponse(items=items, total=total, page=page, page_size=page_size)

    async def update_ci(self, ref: str, body: CIUpdate) -> ConfigurationItem:
        """Apply the set fields of *body* and write one audit row per changed field."""
        existing = await self.resolve(ref)
        changes = body.model_dump(exclude_unset=True)
        changed_by = changes.pop("updated_by", None)
        for required in _NOT_NULL_FIELDS:
            if required in changes and changes[required] is None:
                del changes[required]
        if not changes:
            return existing

        if "ci_type" in changes:
            ci_type = await asyncio.to_thread(self._cis.get_ci_type, changes["ci_type"])
            if ci_type is None:
                raise ValidationError(detail=f"CI Type {changes['ci_type']} does not exist")

        updated = await asyncio.to_thread(self._cis.update, existing.id, changes)
        for field_name, new_value in changes.items():
            old_value = getattr(existing, field_name)
            if isinstance(old_value, Criticality):
                old_value = old_value.value
            if isinstance(new_value, Criticality):
                new_value = new_value.value
            if old_value != new_value:
                await asyncio.to_thread(
                    self._cis.record_audit,
                    existing.id,
                    "UPDATE",
                    field_name,
                    old_value,
                    new_value,
                    changed_by,
                )
        logger.info(
            "Configuration Item updated: %s (%s)", updated.ci_id, updated.name,
            extra={"ci_id": updated.ci_id},
        )
        return updated

    async def delete_ci(self, ref: str, deleted_by: str | None = None) -> bool:
        """Delete a CI. Returns False when it does not exist.

        Raises :class:`ConflictError` while active relationships touch it.
        """
        ci = await asyncio.to_thread(self._cis.get, ref)
        if ci is None:
            return False
        active = await asyncio.to_thread(self._relationships.count_active_for_ci, ci.id)
        if active > 0:
            raise ConflictError(
                detail="Cannot delete CI with active relationships. Remove relationships first."
            )
        await asyncio.to_thread(self._cis.delete, ci.id)
        await asyncio.to_thread(
            self._cis.record_audit, ci.id, "DELETE", changed_by=deleted_by
        )
        logger.info(
            "Configuration Item deleted: %s (%s)", ci.ci_id, ci.name,
            extra={"ci_id": ci.ci_id},
        )
        return True

    async def get_audit_trail(self, ref: str, limit: int = 50) -> list[AuditLogEntry]:
        ci = await self.resolve(ref)
        return await asyncio.to_thread(self._cis.list_audit, ci.id, limit)

    # ------------------------------------------------------------------
    # CI types
    # ------------------------------------------------------------------

    async def list_ci_types(self) -> list[CIType]:
        return await asyncio.to_thread(self._cis.list_ci_types)

    async def create_ci_type(self, ci_type: CIType) -> CIType:
        created = await asyncio.to_thread(self._cis.insert_ci_type, ci_type)
        logger.info("CI type created: %s", created.id)
        return created

    # ------------------------------------------------------------------
    # business services
    # ------------------------------------------------------------------

    async def list_business_services(self) -> list[BusinessService]:
        return await asyncio.to_thread(self._cis.list_business_services)

    async def create_business_service(self, body: BusinessServiceCreate) -> BusinessService:
        service = BusinessService(**body.model_dump())
        return await asyncio.to_thread(self._cis.insert_business_service, service)

    async def link_business_service(
        self, service_id: str, ci_ref: str, criticality: Criticality
    ) -> None:
        service = await asyncio.to_thread(self._cis.get_business_service, service_id)
        if service is None:
            raise NotFoundError(detail=f"Business service not found: {service_id}")
        ci = await self.resolve(ci_ref)
        await asyncio.to_thread(
            self._cis.link_business_service, ci.id, service.id, criticality
        )
        logger.info(
            "CI %s linked to business service %s", ci.ci_id, service.name,
            extra={"ci_id": ci.ci_id},
        )
