"""Inventory to CMDB mapping synchronization and match suggestions."""
from __future__ import annotations

import asyncio
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from src.cmdb_engine.services.ci_store import UPDATABLE_COLUMNS, CIStore
from src.cmdb_engine.services.inventory_store import InventoryStore
from src.cmdb_engine.services.mapping_store import MappingStore
from src.shared.errors import NotFoundError, SyncDisabledError
from src.shared.models.cmdb import (
    BatchSyncResult,
    BulkMappingResponse,
    BulkMappingResult,
    CmdbInventoryMapping,
    ConfigurationItem,
    ConflictResolution,
    IntegrationOpportunities,
    IntegrationReport,
    IntegrationSummary,
    InventoryAsset,
    MappingCreate,
    MappingDetail,
    MappingListResponse,
    MappingSyncResult,
    MappingUpdate,
    MatchSuggestion,
    Recommendation,
    SyncOutcome,
    SyncStatus,
)

logger = logging.getLogger(__name__)

STATUS_MAP: dict[str, str] = {
    "active": "Active",
    "deployed": "Active",
    "available": "Active",
    "in_use": "Active",
    "maintenance": "Non-Operational",
    "repair": "Non-Operational",
    "decommissioned": "Retired",
    "disposed": "Retired",
    "lost": "Retired",
    "stolen": "Retired",
}
DEFAULT_CI_STATUS = "Active"

_UNMAPPED_SCAN_LIMIT = 100
_MAX_SUGGESTIONS = 20
_CANDIDATES_PER_SUGGESTION = 3
_CANDIDATE_SEARCH_LIMIT = 10
_RECENT_ACTIVITY_LIMIT = 10

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def map_inventory_status(status: str | None) -> str:
    """CI status for an inventory status; unknown or missing -> ``Active``."""
    return STATUS_MAP.get((status or "").lower(), DEFAULT_CI_STATUS)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_match_confidence(asset: InventoryAsset, ci: ConfigurationItem) -> int:
    """Score 0-100 of how likely *ci* is the CMDB twin of *asset*.

    Each factor counts only when both sides carry a value: serial number
    (40), asset tag (30), model (20 exact, 10 substring), department (10).
    The score is the sum divided by the number of factors compared.
    """
    confidence = 0
    factors = 0

    if asset.serial_number and ci.serial_number:
        factors += 1
        if asset.serial_number.lower() == ci.serial_number.lower():
            confidence += 40

    if asset.asset_tag and ci.asset_tag:
        factors += 1
        if asset.asset_tag.lower() == ci.asset_tag.lower():
            confidence += 30

    if asset.model and ci.model:
        factors += 1
        if asset.model.lower() == ci.model.lower():
            confidence += 20
        elif asset.model.lower() in ci.model.lower():
            confidence += 10

    if asset.department and ci.department:
        factors += 1
        if asset.department.lower() == ci.department.lower():
            confidence += 10

    if factors == 0:
        return 0
    return _round_half_up(confidence / factors)


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


class MappingSynchronizer:
    """Keeps CIs in step with the inventory assets mapped onto them."""

    def __init__(
        self,
        mapping_store: MappingStore,
        ci_store: CIStore,
        inventory_store: InventoryStore,
    ) -> None:
        self._mappings = mapping_store
        self._cis = ci_store
        self._inventory = inventory_store

    # ------------------------------------------------------------------
    # field mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _inventory_value(asset: InventoryAsset, field: str) -> tuple[bool, Any]:
        """Look up *field* on the asset: top-level first, then custom fields."""
        for name in (field, _CAMEL_RE.sub("_", field).lower()):
            if name in InventoryAsset.model_fields:
                return True, getattr(asset, name)
        custom = asset.custom_fields or {}
        if field in custom:
            return True, custom[field]
        return False, None

    def map_inventory_to_cmdb(
        self, asset: InventoryAsset, mapping: CmdbInventoryMapping
    ) -> dict[str, Any]:
        """CMDB field -> value payload for one asset.

        Custom ``field_mapping`` entries replace the matching default keys
        when the named inventory field exists on the asset.
        """
        payload: dict[str, Any] = {
            "serial_number": asset.serial_number,
            "asset_tag": asset.asset_tag,
            "model": asset.model,
            "vendor": f"vendor_{asset.vendor_id}" if asset.vendor_id else None,
            "location": f"location_{asset.location_id}" if asset.location_id else None,
            "department": asset.department,
            "purchase_date": asset.purchase_date,
            "warranty_expiry_date": asset.warranty_expiry,
            "owner": f"user_{asset.assigned_to_user_id}" if asset.assigned_to_user_id else None,
            "ci_status": map_inventory_status(asset.status),
            "custom_fields": asset.custom_fields,
        }
        for cmdb_field, inventory_field in (mapping.field_mapping or {}).items():
            present, value = self._inventory_value(asset, inventory_field)
            if present:
                payload[cmdb_field] = value
        return payload

    @staticmethod
    def _current_value(ci: ConfigurationItem, field: str) -> Any:
        if field in UPDATABLE_COLUMNS:
            return getattr(ci, field)
        return ci.attributes.get(field)

    def resolve_conflicts(
        self,
        payload: dict[str, Any],
        ci: ConfigurationItem,
        asset: InventoryAsset,
        policy: ConflictResolution,
    ) -> dict[str, Any]:
        """Fields to write onto the CI under *policy*.

        ``inventory_wins`` (the default) takes every inventory value,
        ``cmdb_wins`` only fills CMDB fields that are empty, and
        ``newest_wins`` picks one of those two by comparing the asset and
        CI ``updated_at``. Missing inventory values and unchanged fields
        are never written.
        """
        if policy == ConflictResolution.NEWEST_WINS:
            asset_updated = _as_aware(asset.updated_at)
            ci_updated = _as_aware(ci.updated_at)
            if asset_updated is not None and ci_updated is not None and asset_updated > ci_updated:
                policy = ConflictResolution.INVENTORY_WINS
            else:
                policy = ConflictResolution.CMDB_WINS

        fields: dict[str, Any] = {}
        for field, value in payload.items():
            if value is None:
                continue
            current = self._current_value(ci, field)
            if policy == ConflictResolution.CMDB_WINS and not _is_empty(current):
                continue
            if current == value:
                continue
            fields[field] = value
        return fields

    # ------------------------------------------------------------------
    # mappings
    # ------------------------------------------------------------------

    async def create_mapping(self, body: MappingCreate) -> CmdbInventoryMapping:
        """Persist a mapping and, when sync is enabled, run one sync pass.

        A failing initial sync is recorded on the mapping, which is still
        returned.
        """
        ci = await asyncio.to_thread(self._cis.get, body.ci_id)
        if ci is None:
            raise NotFoundError(detail=f"Configuration Item not found: {body.ci_id}")
        asset = await asyncio.to_thread(self._inventory.get, body.inventory_asset_id)
        if asset is None:
            raise NotFoundError(detail=f"Inventory Asset not found: {body.inventory_asset_id}")

        mapping = CmdbInventoryMapping(**{**body.model_dump(), "ci_id": ci.id})
        stored = await asyncio.to_thread(self._mappings.insert, mapping)
        logger.info(
            "Mapping created: %s <-> %s", ci.ci_id, asset.id,
            extra={"mapping_id": stored.id, "ci_id": ci.ci_id},
        )

        if stored.sync_enabled:
            try:
                await self.sync_mapping(stored.id)
            except Exception as exc:
                logger.warning(
                    "Initial sync failed for mapping %s: %s", stored.id, exc,
                    extra={"mapping_id": stored.id},
                )
            stored = await asyncio.to_thread(self._mappings.get, stored.id) or stored
        return stored

    async def get_mapping(self, mapping_id: str) -> MappingDetail:
        mapping = await asyncio.to_thread(self._mappings.get, mapping_id)
        if mapping is None:
            raise NotFoundError(detail=f"Mapping not found: {mapping_id}")
        ci = await asyncio.to_thread(self._cis.get_by_pk, mapping.ci_id)
        asset = await asyncio.to_thread(self._inventory.get, mapping.inventory_asset_id)
        return MappingDetail(
            **mapping.model_dump(),
            configuration_item=ci,
            inventory_asset=asset,
        )

    async def list_mappings(
        self,
        page: int = 1,
        page_size: int = 50,
        ci_id: str | None = None,
        inventory_asset_id: str | None = None,
        mapping_type: str | None = None,
        sync_enabled: bool | None = None,
    ) -> MappingListResponse:
        if ci_id is not None:
            ci = await asyncio.to_thread(self._cis.get, ci_id)
            ci_id = ci.id if ci is not None else ci_id
        items, total = await asyncio.to_thread(
            self._mappings.list_mappings,
            page=page,
            page_size=page_size,
            ci_id=ci_id,
            inventory_asset_id=inventory_asset_id,
            mapping_type=mapping_type,
            sync_enabled=sync_enabled,
        )
        return MappingListResponse(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if page_size else 0,
        )

    async def update_mapping(self, mapping_id: str, body: MappingUpdate) -> CmdbInventoryMapping:
        updated = await asyncio.to_thread(
            self._mappings.update, mapping_id, body.model_dump(exclude_unset=True)
        )
        if updated is None:
            raise NotFoundError(detail=f"Mapping not found: {mapping_id}")
        return updated

    async def delete_mapping(self, mapping_id: str) -> None:
        deleted = await asyncio.to_thread(self._mappings.delete, mapping_id)
        if not deleted:
            raise NotFoundError(detail=f"Mapping not found: {mapping_id}")
        logger.info("Mapping deleted: %s", mapping_id, extra={"mapping_id": mapping_id})

    async def bulk_create_mappings(self, bodies: list[MappingCreate]) -> BulkMappingResponse:
        results: list[BulkMappingResult] = []
        for body in bodies:
            try:
                mapping = await self.create_mapping(body)
            except Exception as exc:
                results.append(
                    BulkMappingResult(
                        success=False,
                        ci_id=body.ci_id,
                        inventory_asset_id=body.inventory_asset_id,
                        error=str(exc),
                    )
                )
                continue
            results.append(
                BulkMappingResult(
                    success=True,
                    ci_id=body.ci_id,
                    inventory_asset_id=body.inventory_asset_id,
                    mapping=mapping,
                )
            )
        successful = sum(1 for r in results if r.success)
        return BulkMappingResponse(
            total=len(bodies),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    async def sync_mapping(self, mapping_id: str) -> SyncOutcome:
        """Push the asset's fields onto the CI.

        The outcome (success, or failure with the message) is always
        written onto the mapping; a failure is then re-raised.
        """
        mapping = await asyncio.to_thread(self._mappings.get, mapping_id)
        if mapping is None:
            raise NotFoundError(detail=f"Mapping not found: {mapping_id}")
        if not mapping.sync_enabled:
            raise SyncDisabledError(detail=f"Sync is disabled for mapping {mapping_id}")

        try:
            asset = await asyncio.to_thread(self._inventory.get, mapping.inventory_asset_id)
            if asset is None:
                raise NotFoundError(detail=f"Inventory asset not found: {mapping.inventory_asset_id}")
            ci = await asyncio.to_thread(self._cis.get_by_pk, mapping.ci_id)
            if ci is None:
                raise NotFoundError(detail=f"Configuration Item not found: {mapping.ci_id}")

            payload = self.map_inventory_to_cmdb(asset, mapping)
            fields = self.resolve_conflicts(payload, ci, asset, mapping.conflict_resolution)
            if fields:
                await asyncio.to_thread(self._cis.update, ci.id, fields)
                for field_name, new_value in fields.items():
                    await asyncio.to_thread(
                        self._cis.record_audit,
                        ci.id,
                        "SYNC",
                        field_name,
                        self._current_value(ci, field_name),
                        new_value,
                        "inventory-sync",
                    )
            else:
                logger.info(
                    "Sync found nothing to change for mapping %s (policy %s)",
                    mapping_id, mapping.conflict_resolution.value,
                    extra={"mapping_id": mapping_id},
                )
        except Exception as exc:
            logger.error(
                "Sync failed for mapping %s: %s", mapping_id, exc,
                extra={"mapping_id": mapping_id},
            )
            try:
                await asyncio.to_thread(
                    self._mappings.record_sync, mapping_id, SyncStatus.FAILED, str(exc)
                )
            except Exception as record_exc:
                logger.error(
                    "Could not record sync failure on mapping %s: %s", mapping_id, record_exc,
                    extra={"mapping_id": mapping_id},
                )
            raise

        synced_at = await asyncio.to_thread(
            self._mappings.record_sync, mapping_id, SyncStatus.SUCCESS
        )
        logger.info(
            "Mapping synced: %s (%d fields)", mapping_id, len(fields),
            extra={"mapping_id": mapping_id},
        )
        return SyncOutcome(
            mapping_id=mapping_id,
            success=True,
            synced_at=synced_at,
            updated_fields=sorted(fields),
        )

    async def sync_all_mappings(self) -> BatchSyncResult:
        """Sync every enabled mapping one after another; never aborts early."""
        mappings = await asyncio.to_thread(self._mappings.list_enabled)
        results: list[MappingSyncResult] = []
        for mapping in mappings:
            try:
                await self.sync_mapping(mapping.id)
            except Exception as exc:
                results.append(
                    MappingSyncResult(
                        mapping_id=mapping.id, status=SyncStatus.FAILED, error=str(exc)
                    )
                )
                continue
            results.append(MappingSyncResult(mapping_id=mapping.id, status=SyncStatus.SUCCESS))

        successful = sum(1 for r in results if r.status == SyncStatus.SUCCESS)
        logger.info(
            "Batch sync finished: %d mappings, %d successful, %d failed",
            len(mappings), successful, len(results) - successful,
        )
        return BatchSyncResult(
            total=len(mappings),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    # ------------------------------------------------------------------
    # integration analysis
    # ------------------------------------------------------------------

    async def find_potential_ci_matches(self, asset: InventoryAsset) -> list[ConfigurationItem]:
        return await asyncio.to_thread(
            self._cis.search_for_asset,
            asset.serial_number,
            asset.asset_tag,
            asset.model,
            _CANDIDATE_SEARCH_LIMIT,
        )

    async def analyze_integration_opportunities(self) -> IntegrationOpportunities:
        mapped = await asyncio.to_thread(self._mappings.mapped_asset_ids)
        unmapped_assets = await asyncio.to_thread(
            self._inventory.list_excluding, mapped, _UNMAPPED_SCAN_LIMIT
        )
        unmapped_cis = await asyncio.to_thread(self._cis.list_unmapped, _UNMAPPED_SCAN_LIMIT)

        suggestions: list[MatchSuggestion] = []
        for asset in unmapped_assets:
            candidates = await self.find_potential_ci_matches(asset)
            if not candidates:
                continue
            suggestions.append(
                MatchSuggestion(
                    inventory_asset=asset,
                    potential_cis=candidates[:_CANDIDATES_PER_SUGGESTION],
                    confidence=calculate_match_confidence(asset, candidates[0]),
                )
            )
            if len(suggestions) >= _MAX_SUGGESTIONS:
                break

        total_mappings = await asyncio.to_thread(self._mappings.count)
        return IntegrationOpportunities(
            unmapped_assets=len(unmapped_assets),
            unmapped_cis=len(unmapped_cis),
            suggestions=suggestions,
            total_mappings=total_mappings,
        )

    @staticmethod
    def generate_recommendations(summary: IntegrationSummary) -> list[Recommendation]:
        recommendations: list[Recommendation] = []
        if summary.failed_syncs > 0:
            recommendations.append(
                Recommendation(
                    type="error",
                    title="Sync Failures Detected",
                    description=f"{summary.failed_syncs} mappings have failed sync operations",
                    action="Review and resolve sync errors",
                )
            )
        if summary.unmapped_assets > 50:
            recommendations.append(
                Recommendation(
                    type="warning",
                    title="High Number of Unmapped Assets",
                    description=(
                        f"{summary.unmapped_assets} inventory assets are not mapped to CMDB"
                    ),
                    action="Consider bulk mapping operations",
                )
            )
        if summary.unmapped_cis > 30:
            recommendations.append(
                Recommendation(
                    type="info",
                    title="CIs Without Inventory Links",
                    description=(
                        f"{summary.unmapped_cis} configuration items lack inventory mapping"
                    ),
                    action="Review CIs for potential asset relationships",
                )
            )
        if summary.total_mappings == 0:
            recommendations.append(
                Recommendation(
                    type="warning",
                    title="No CMDB-Inventory Integration",
                    description="No mappings exist between CMDB and Inventory systems",
                    action="Start by mapping critical assets to CIs",
                )
            )
        return recommendations

    async def generate_integration_report(self) -> IntegrationReport:
        total = await asyncio.to_thread(self._mappings.count)
        active = await asyncio.to_thread(self._mappings.count, True)
        failed = await asyncio.to_thread(self._mappings.count, None, SyncStatus.FAILED)
        since = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
        recent = await asyncio.to_thread(
            self._mappings.list_synced_since, since, _RECENT_ACTIVITY_LIMIT
        )
        opportunities = await self.analyze_integration_opportunities()

        if failed == 0:
            health = "Healthy"
        elif failed < 5:
            health = "Warning"
        else:
            health = "Critical"

        summary = IntegrationSummary(
            total_mappings=total,
            active_mappings=active,
            failed_syncs=failed,
            unmapped_assets=opportunities.unmapped_assets,
            unmapped_cis=opportunities.unmapped_cis,
            integration_health=health,
        )
        return IntegrationReport(
            summary=summary,
            recent_activity=recent,
            recommendations=self.generate_recommendations(summary),
        )
