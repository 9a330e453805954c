"""Impact analysis, dependency tree and CMDB health endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Query, Request

from src.shared.models.cmdb import CmdbHealth, DependencyTreeNode, ImpactAnalysis

router = APIRouter(prefix="/api", tags=["impact"])


@router.get("/cis/{ref}/impact", response_model=ImpactAnalysis)
async def analyze_impact(
    ref: str,
    request: Request,
    max_depth: int | None = Query(None),
) -> ImpactAnalysis:
    """Downstream impact of an outage of the CI, bucketed by depth."""
    return await request.app.state.services.impact.analyze_impact(ref, max_depth)


@router.get("/cis/{ref}/dependency-tree", response_model=DependencyTreeNode)
async def get_dependency_tree(
    ref: str,
    request: Request,
    direction: str = Query("both"),
    max_depth: int = Query(3),
) -> DependencyTreeNode:
    return await request.app.state.services.dependency_tree.get_dependency_tree(
        ref, direction=direction, max_depth=max_depth
    )


@router.get("/cmdb/health", response_model=CmdbHealth)
async def cmdb_health(request: Request) -> CmdbHealth:
    """Data quality report: staleness, orphans, completeness and cycles."""
    return await request.app.state.services.auditor.cmdb_health()
