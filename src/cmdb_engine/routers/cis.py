"""Configuration item, CI type and business service endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response

from src.shared.errors import NotFoundError
from src.shared.models.cmdb import (
    AuditLogEntry,
    BusinessService,
    BusinessServiceCreate,
    BusinessServiceLink,
    CICreate,
    CIListResponse,
    CIType,
    CIUpdate,
    ConfigurationItem,
)

router = APIRouter(prefix="/api", tags=["cis"])


@router.post("/cis", response_model=ConfigurationItem, status_code=201)
async def create_ci(body: CICreate, request: Request) -> ConfigurationItem:
    """Create a CI with a freshly generated CI id."""
    return await request.app.state.services.ci_service.create_ci(body)


@router.get("/cis", response_model=CIListResponse)
async def list_cis(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    ci_type: str | None = Query(None),
    status: str | None = Query(None),
    environment: str | None = Query(None),
    criticality: str | None = Query(None),
    location: str | None = Query(None),
    search: str | None = Query(None),
) -> CIListResponse:
    """List CIs with pagination and optional filters."""
    return await request.app.state.services.ci_service.list_cis(
        page=page,
        page_size=page_size,
        ci_type=ci_type,
        status=status,
        environment=environment,
        criticality=criticality,
        location=location,
        search=search,
    )


@router.get("/cis/{ref}", response_model=ConfigurationItem)
async def get_ci(ref: str, request: Request) -> ConfigurationItem:
    """Get a CI by opaque id or CI id."""
    return await request.app.state.services.ci_service.get_ci(ref)


@router.patch("/cis/{ref}", response_model=ConfigurationItem)
async def update_ci(ref: str, body: CIUpdate, request: Request) -> ConfigurationItem:
    return await request.app.state.services.ci_service.update_ci(ref, body)


@router.delete("/cis/{ref}", status_code=204)
async def delete_ci(
    ref: str,
    request: Request,
    deleted_by: str | None = Query(None),
) -> Response:
    """Delete a CI. Refused while active relationships reference it."""
    deleted = await request.app.state.services.ci_service.delete_ci(ref, deleted_by)
    if not deleted:
        raise NotFoundError(detail=f"CI not found: {ref}")
    return Response(status_code=204)


@router.get("/cis/{ref}/audit", response_model=list[AuditLogEntry])
async def get_audit_trail(
    ref: str,
    request: Request,
    limit: int = Query(50, ge=1, le=500),
) -> list[AuditLogEntry]:
    return await request.app.state.services.ci_service.get_audit_trail(ref, limit)


@router.get("/ci-types", response_model=list[CIType])
async def list_ci_types(request: Request) -> list[CIType]:
    return await request.app.state.services.ci_service.list_ci_types()


@router.post("/ci-types", response_model=CIType, status_code=201)
async def create_ci_type(body: CIType, request: Request) -> CIType:
    return await request.app.state.services.ci_service.create_ci_type(body)


@router.get("/business-services", response_model=list[BusinessService])
async def list_business_services(request: Request) -> list[BusinessService]:
    return await request.app.state.services.ci_service.list_business_services()


@router.post("/business-services", response_model=BusinessService, status_code=201)
async def create_business_service(
    body: BusinessServiceCreate, request: Request
) -> BusinessService:
    return await request.app.state.services.ci_service.create_business_service(body)


@router.post("/business-services/{service_id}/cis", status_code=204)
async def link_business_service(
    service_id: str, body: BusinessServiceLink, request: Request
) -> Response:
    """Attach a CI to a business service; re-linking updates the criticality."""
    await request.app.state.services.ci_service.link_business_service(
        service_id, body.ci_id, body.criticality
    )
    return Response(status_code=204)
