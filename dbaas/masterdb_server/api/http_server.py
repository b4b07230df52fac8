"""
HTTP server implementation for MasterDB.

REST surface over the schema registry and the record engine:
- /schema: create, update, list, list by group, fetch, delete
- /master/{schema}/data: create, list, fetch, update, delete records
- /health

Invariants:
    - Every engine error is returned as {error, error_code, details}
    - NotFound -> 404, Validation/ReferentialIntegrity -> 400,
      Conflict -> 409, Internal and store failures -> 500
    - The service is started and stopped by the application lifespan

How to change safely:
    - Keep response shapes stable; record payloads are schema-driven and
      consumed by generic clients
    - Add new routes rather than changing the meaning of existing ones
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .._version import __version__
from ..errors import (
    ConflictError,
    InternalError,
    MasterDbError,
    NotFoundError,
    ValidationError,
)
from ..records.engine import DEFAULT_LIMIT, DEFAULT_ORDER, DEFAULT_PAGE, DEFAULT_SORT, ListOptions
from ..schema.types import SchemaDefinition
from ..service import MasterDataService
from ..store.base import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Request Models ---


class FieldModel(BaseModel):
    """One field of a schema definition."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field("", description="Field name (derived for master fields)")
    type: str = Field(..., description="string, number, boolean, date, array, object or master")
    required: bool = False
    unique: bool = False
    default_value: Any = Field(None, alias="defaultValue")
    master_type: str | None = Field(None, alias="masterType")
    relationship_type: str | None = Field(None, alias="relationshipType")


class SchemaRequest(BaseModel):
    """Schema definition body for create and update."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, description="Schema name (taken from the path on update)")
    display_name: str | None = Field(None, alias="displayName")
    group_id: str | None = Field(None, alias="groupId")
    fields: list[FieldModel] = Field(default_factory=list)

    def to_definition(self, name: str | None = None) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        if name is not None:
            data["name"] = name
        return data


# --- Error Handling ---

_STATUS_BY_ERROR: list[tuple[type[MasterDbError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (InternalError, 500),
]


def status_for(error: MasterDbError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return status
    return 500


def _error_body(message: str, code: str, details: Any = None) -> dict[str, Any]:
    return {"error": message, "error_code": code, "details": jsonable_encoder(details or {})}


async def handle_masterdb_error(request: Request, exc: MasterDbError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc.message}",
            extra={"error_code": exc.code},
        )
    return JSONResponse(status_code=status, content=_error_body(exc.message, exc.code, exc.details))


async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} store failure: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body(str(exc), "INTERNAL_ERROR"))


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body(
            "Invalid request",
            "VALIDATION_ERROR",
            {"errors": [{"loc": e["loc"], "msg": e["msg"]} for e in exc.errors()]},
        ),
    )


# --- Dependencies ---


def get_service(request: Request) -> MasterDataService:
    """Get the service from app state."""
    return request.app.state.service


async def _with_group_names(
    service: MasterDataService, schemas: list[SchemaDefinition]
) -> list[dict[str, Any]]:
    names = await service.registry.group_names(schemas)
    return [
        {**schema.to_dict(), "groupName": names.get(schema.group_id) if schema.group_id else None}
        for schema in schemas
    ]


def _parse_filters(filters: str | None) -> dict[str, Any] | None:
    if not filters:
        return None
    try:
        parsed = json.loads(filters)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid filters: {e.msg}", field_name="filters") from e
    if not isinstance(parsed, dict):
        raise ValidationError("filters must be an object", field_name="filters")
    return parsed


# --- Schema Routes ---


@router.post("/schema", status_code=201, tags=["schemas"])
async def create_schema(
    body: SchemaRequest,
    service: MasterDataService = Depends(get_service),
):
    """Register a new schema and make its records available immediately."""
    return await service.registry.create_schema(body.to_definition())


@router.put("/schema/{schema_name}", tags=["schemas"])
async def update_schema(
    schema_name: str,
    body: SchemaRequest,
    service: MasterDataService = Depends(get_service),
):
    """Replace a schema definition; the name in the path is authoritative."""
    return await service.registry.update_schema(schema_name, body.to_definition(schema_name))


@router.get("/schema", tags=["schemas"])
async def list_schemas(service: MasterDataService = Depends(get_service)):
    schemas = await service.registry.get_all_schemas()
    return await _with_group_names(service, schemas)


@router.get("/schema/group/{group_id}", tags=["schemas"])
async def list_schemas_by_group(
    group_id: str,
    service: MasterDataService = Depends(get_service),
):
    schemas = await service.registry.get_schemas_by_group(group_id)
    return await _with_group_names(service, schemas)


@router.get("/schema/{schema_name}", tags=["schemas"])
async def get_schema(
    schema_name: str,
    service: MasterDataService = Depends(get_service),
):
    schema = await service.registry.get_schema(schema_name)
    return schema.to_dict()


@router.delete("/schema/{schema_name}", tags=["schemas"])
async def delete_schema(
    schema_name: str,
    force: bool = Query(False, description="Delete even if referenced; purges records"),
    service: MasterDataService = Depends(get_service),
):
    """
    Delete a schema.

    Refused with 409 while other schemas reference it, unless force=true.
    """
    return await service.registry.delete_schema(schema_name, force=force)


# --- Record Routes ---


@router.post("/master/{schema_name}/data", status_code=201, tags=["records"])
async def create_record(
    schema_name: str,
    payload: dict[str, Any] = Body(...),
    service: MasterDataService = Depends(get_service),
):
    return await service.records.create(schema_name, payload)


@router.get("/master/{schema_name}/data", tags=["records"])
async def list_records(
    schema_name: str,
    page: int = Query(DEFAULT_PAGE, ge=1, description="1-based page number"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, description="Page size"),
    sort: str = Query(DEFAULT_SORT, description="Field to order by"),
    order: str = Query(DEFAULT_ORDER, pattern="^(asc|desc)$"),
    search: str | None = Query(None, description="Case-insensitive text search"),
    filters: str | None = Query(None, description="JSON object merged into the query"),
    service: MasterDataService = Depends(get_service),
):
    """
    List records page by page.

    Returns {data, total, page, limit, totalPages}.
    """
    options = ListOptions(
        page=page,
        limit=limit,
        sort=sort,
        order=order,
        search=search,
        filters=_parse_filters(filters),
    )
    return await service.records.list(schema_name, options)


@router.get("/master/{schema_name}/data/{record_id}", tags=["records"])
async def get_record(
    schema_name: str,
    record_id: str,
    service: MasterDataService = Depends(get_service),
):
    return await service.records.get(schema_name, record_id)


@router.put("/master/{schema_name}/data/{record_id}", tags=["records"])
async def update_record(
    schema_name: str,
    record_id: str,
    payload: dict[str, Any] = Body(...),
    service: MasterDataService = Depends(get_service),
):
    return await service.records.update(schema_name, record_id, payload)


@router.delete("/master/{schema_name}/data/{record_id}", tags=["records"])
async def delete_record(
    schema_name: str,
    record_id: str,
    service: MasterDataService = Depends(get_service),
):
    return await service.records.remove(schema_name, record_id)


# --- Application ---


def create_app(
    service: MasterDataService,
    cors_origins: tuple[str, ...] | list[str] = (),
) -> FastAPI:
    """Create the FastAPI application around a service.

    Args:
        service: MasterDataService to expose; started and stopped by the app
        cors_origins: Allowed CORS origins (empty disables CORS)

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await service.start()
        yield
        await service.stop()

    app = FastAPI(
        title="MasterDB",
        description="Metadata-driven master data service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.add_exception_handler(MasterDbError, handle_masterdb_error)
    app.add_exception_handler(StoreError, handle_store_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    app.include_router(router)

    @app.get("/health", tags=["health"])
    async def health():
        return {
            "status": "healthy" if service.is_running else "starting",
            "service": "masterdb",
            "instance_id": service.instance_id,
            "schemas": len(service.cache),
        }

    return app
