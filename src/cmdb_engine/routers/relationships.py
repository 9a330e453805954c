"""Relationship and relationship type endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response

from src.shared.errors import NotFoundError
from src.shared.models.cmdb import (
    CycleValidation,
    CycleValidationRequest,
    RelatedRelationship,
    Relationship,
    RelationshipCreate,
    RelationshipType,
    RelationshipTypeCreate,
)

router = APIRouter(prefix="/api", tags=["relationships"])


@router.post("/relationships", response_model=Relationship, status_code=201)
async def create_relationship(body: RelationshipCreate, request: Request) -> Relationship:
    """Create a directed relationship after duplicate, constraint,
    multiplicity and cycle checks."""
    return await request.app.state.services.relationships.create_relationship(body)


@router.delete("/relationships/{relationship_id}", status_code=204)
async def delete_relationship(
    relationship_id: str,
    request: Request,
    deleted_by: str | None = Query(None),
) -> Response:
    """Soft-delete a relationship. Deleting an inactive one is a no-op."""
    found = await request.app.state.services.relationships.delete_relationship(
        relationship_id, deleted_by
    )
    if not found:
        raise NotFoundError(detail=f"Relationship not found: {relationship_id}")
    return Response(status_code=204)


@router.post("/relationships/validate", response_model=CycleValidation)
async def validate_relationship(
    body: CycleValidationRequest, request: Request
) -> CycleValidation:
    """Report whether adding source -> target would close a cycle."""
    return await request.app.state.services.cycle_validator.validate(
        body.source_ci_id, body.target_ci_id
    )


@router.get("/cis/{ref}/relationships", response_model=list[RelatedRelationship])
async def get_relationships(
    ref: str,
    request: Request,
    direction: str = Query("both"),
    relationship_type: str | None = Query(None),
) -> list[RelatedRelationship]:
    return await request.app.state.services.relationships.get_relationships(
        ref, direction=direction, relationship_type=relationship_type
    )


@router.get("/relationship-types", response_model=list[RelationshipType])
async def list_relationship_types(request: Request) -> list[RelationshipType]:
    return await request.app.state.services.relationships.list_relationship_types()


@router.post("/relationship-types", response_model=RelationshipType, status_code=201)
async def create_relationship_type(
    body: RelationshipTypeCreate, request: Request
) -> RelationshipType:
    return await request.app.state.services.relationships.create_relationship_type(body)
