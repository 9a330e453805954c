"""Custom exception classes and FastAPI exception handlers."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request


class AppError(Exception):
    """Base application error."""

    code: str = "internal_error"

    def __init__(self, detail: str, status_code: int = 500) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class ValidationError(AppError):
    """Validation error (422)."""

    code = "validation_error"

    def __init__(self, detail: str = "Validation error") -> None:
        super().__init__(detail=detail, status_code=422)


class NotFoundError(AppError):
    """Resource not found (404)."""

    code = "not_found"

    def __init__(self, detail: str = "Resource not found") -> None:
        super().__init__(detail=detail, status_code=404)


class ConflictError(AppError):
    """Conflict error (409)."""

    code = "conflict"

    def __init__(self, detail: str = "Conflict") -> None:
        super().__init__(detail=detail, status_code=409)


class DuplicateRelationshipError(AppError):
    """An active relationship would violate multiplicity (409)."""

    code = "duplicate_relationship"

    def __init__(self, detail: str = "Relationship already exists") -> None:
        super().__init__(detail=detail, status_code=409)


class CircularDependencyError(AppError):
    """The proposed relationship would close a loop (409)."""

    code = "circular_dependency"

    def __init__(self, detail: str = "Circular dependency detected") -> None:
        super().__init__(detail=detail, status_code=409)


class TypeConstraintViolationError(AppError):
    """CI type is not allowed by the relationship type (422)."""

    code = "type_constraint_violation"

    def __init__(self, detail: str = "CI type not allowed for relationship type") -> None:
        super().__init__(detail=detail, status_code=422)


class SyncDisabledError(AppError):
    """Sync requested on a mapping with sync disabled (409)."""

    code = "sync_disabled"

    def __init__(self, detail: str = "Sync is disabled for this mapping") -> None:
        super().__init__(detail=detail, status_code=409)


class StoreUnavailableError(AppError):
    """Backing store could not be opened (503)."""

    code = "store_unavailable"

    def __init__(self, detail: str = "Store unavailable") -> None:
        super().__init__(detail=detail, status_code=503)


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers with a FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code},
        )
