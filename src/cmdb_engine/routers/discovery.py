"""Discovery run, discovered item and schedule endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Query, Request

from src.shared.models.cmdb import (
    DiscoveredItem,
    DiscoveredItemStatus,
    DiscoveryConfig,
    DiscoveryRun,
    DiscoverySchedule,
    DiscoveryScheduleCreate,
    ProcessingOutcome,
    ProcessRequest,
)

router = APIRouter(prefix="/api/discovery", tags=["discovery"])


@router.post("/runs", response_model=DiscoveryRun, status_code=202)
async def run_discovery(body: DiscoveryConfig, request: Request) -> DiscoveryRun:
    """Start a discovery run; the probe executes in the background."""
    return await request.app.state.services.discovery.run_discovery(body)


@router.get("/runs", response_model=list[DiscoveryRun])
async def list_runs(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
) -> list[DiscoveryRun]:
    return await request.app.state.services.discovery.get_discovery_runs(limit)


@router.get("/runs/{run_id}", response_model=DiscoveryRun)
async def get_run(run_id: str, request: Request) -> DiscoveryRun:
    return await request.app.state.services.discovery.get_discovery_run(run_id)


@router.get("/runs/{run_id}/items", response_model=list[DiscoveredItem])
async def list_items(
    run_id: str,
    request: Request,
    status: DiscoveredItemStatus | None = Query(None),
) -> list[DiscoveredItem]:
    return await request.app.state.services.discovery.get_discovered_items(run_id, status)


@router.post("/items/{item_id}/process", response_model=ProcessingOutcome)
async def process_item(
    item_id: str, request: Request, body: ProcessRequest | None = None
) -> ProcessingOutcome:
    """Reconcile one discovered item into the CMDB."""
    auto_create = body.auto_create if body is not None else True
    return await request.app.state.services.discovery.process_discovered_item(
        item_id, auto_create=auto_create
    )


@router.get("/schedules", response_model=list[DiscoverySchedule])
async def list_schedules(request: Request) -> list[DiscoverySchedule]:
    return await request.app.state.services.discovery.list_schedules()


@router.post("/schedules", response_model=DiscoverySchedule, status_code=201)
async def create_schedule(
    body: DiscoveryScheduleCreate, request: Request
) -> DiscoverySchedule:
    return await request.app.state.services.discovery.create_schedule(body)


@router.post("/schedules/{schedule_id}/run", response_model=DiscoveryRun, status_code=202)
async def run_schedule(schedule_id: str, request: Request) -> DiscoveryRun:
    """Start a run from a saved schedule and advance its next run date."""
    return await request.app.state.services.discovery.run_schedule(schedule_id)
