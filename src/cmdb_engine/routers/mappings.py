"""Inventory mapping, synchronization and integration endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response

from src.shared.models.cmdb import (
    BatchSyncResult,
    BulkMappingResponse,
    CmdbInventoryMapping,
    IntegrationOpportunities,
    IntegrationReport,
    MappingCreate,
    MappingDetail,
    MappingListResponse,
    MappingUpdate,
    SyncOutcome,
)

router = APIRouter(prefix="/api", tags=["mappings"])


@router.post("/mappings", response_model=CmdbInventoryMapping, status_code=201)
async def create_mapping(body: MappingCreate, request: Request) -> CmdbInventoryMapping:
    """Create a mapping; an initial sync runs when sync is enabled."""
    return await request.app.state.services.mappings.create_mapping(body)


@router.get("/mappings", response_model=MappingListResponse)
async def list_mappings(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    ci_id: str | None = Query(None),
    inventory_asset_id: str | None = Query(None),
    mapping_type: str | None = Query(None),
    sync_enabled: bool | None = Query(None),
) -> MappingListResponse:
    return await request.app.state.services.mappings.list_mappings(
        page=page,
        page_size=page_size,
        ci_id=ci_id,
        inventory_asset_id=inventory_asset_id,
        mapping_type=mapping_type,
        sync_enabled=sync_enabled,
    )


@router.post("/mappings/bulk", response_model=BulkMappingResponse)
async def bulk_create_mappings(
    body: list[MappingCreate], request: Request
) -> BulkMappingResponse:
    """Create many mappings; failures are reported per entry."""
    return await request.app.state.services.mappings.bulk_create_mappings(body)


@router.post("/mappings/sync", response_model=BatchSyncResult)
async def sync_all_mappings(request: Request) -> BatchSyncResult:
    return await request.app.state.services.mappings.sync_all_mappings()


@router.get("/mappings/{mapping_id}", response_model=MappingDetail)
async def get_mapping(mapping_id: str, request: Request) -> MappingDetail:
    return await request.app.state.services.mappings.get_mapping(mapping_id)


@router.patch("/mappings/{mapping_id}", response_model=CmdbInventoryMapping)
async def update_mapping(
    mapping_id: str, body: MappingUpdate, request: Request
) -> CmdbInventoryMapping:
    return await request.app.state.services.mappings.update_mapping(mapping_id, body)


@router.delete("/mappings/{mapping_id}", status_code=204)
async def delete_mapping(mapping_id: str, request: Request) -> Response:
    await request.app.state.services.mappings.delete_mapping(mapping_id)
    return Response(status_code=204)


@router.post("/mappings/{mapping_id}/sync", response_model=SyncOutcome)
async def sync_mapping(mapping_id: str, request: Request) -> SyncOutcome:
    """Push inventory values onto the mapped CI under the conflict policy."""
    return await request.app.state.services.mappings.sync_mapping(mapping_id)


@router.get("/integration/opportunities", response_model=IntegrationOpportunities)
async def integration_opportunities(request: Request) -> IntegrationOpportunities:
    return await request.app.state.services.mappings.analyze_integration_opportunities()


@router.get("/integration/report", response_model=IntegrationReport)
async def integration_report(request: Request) -> IntegrationReport:
    return await request.app.state.services.mappings.generate_integration_report()
