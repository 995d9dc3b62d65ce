"""
FastAPI application for the universal data engine.

Exposes the CRUD contract over HTTP:
- POST /api/v1/organizations
- POST /api/v1/entities
- POST /api/v1/relationships
- POST /api/v1/transactions
- GET  /api/v1/auth/introspect/{actor_id}
- GET  /health

Every endpoint answers with the CrudResult envelope
{success, data, error, error_code, details}; the HTTP status is derived
from error_code.

Invariants:
    - Routes hold no state; the UniversalApi lives on app.state
    - The actor comes from the body or the X-Actor-ID header
    - Decimals are serialized as strings
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from .crud import CrudResult, UniversalApi
from .settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Universal API"])

# error_code -> HTTP status
STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "INVALID_SMART_CODE": 400,
    "INVALID_ACTION": 400,
    "NO_POSTING_RULE": 400,
    "CROSS_ORG_ACCESS": 403,
    "NOT_FOUND": 404,
    "ACTOR_NOT_FOUND": 404,
    "GL_ACCOUNT_NOT_FOUND": 404,
    "DUPLICATE_CODE": 409,
    "CYCLE_DETECTED": 409,
    "STALE_VERSION": 409,
    "INVALID_TRANSITION": 409,
    "STILL_REFERENCED": 409,
    "IMBALANCE": 422,
    "DEADLINE_EXCEEDED": 504,
}


# --- Request Models ---


class OrganizationCreateRequest(BaseModel):
    """Request to create an organization."""

    organization_name: str = Field(..., description="Display name")
    organization_code: str = Field(..., description="Globally unique code")
    organization_type: str = Field("business", description="Organization type")
    smart_code: str | None = Field(None, description="Smart code of the shadow entity")
    actor_id: str | None = Field(None, description="Creating actor")


class EntityCrudRequest(BaseModel):
    """entities.crud call."""

    action: str = Field(..., description="CREATE, READ, UPDATE, DELETE or UPSERT")
    organization_id: str = Field(..., description="Tenant boundary")
    actor_id: str | None = Field(None, description="Acting entity id")
    entity: dict[str, Any] | None = Field(None, description="Entity attributes or filters")
    dynamic_fields: list[dict[str, Any]] | dict[str, Any] | None = Field(
        None, description="Dynamic fields in list or mapping form"
    )
    relationships: list[dict[str, Any]] | None = Field(
        None, description="Relationships created from the entity"
    )
    options: dict[str, Any] = Field(default_factory=dict, description="Action options")


class RelationshipCrudRequest(BaseModel):
    """relationships.crud call."""

    action: str = Field(..., description="CREATE, READ or DELETE")
    organization_id: str = Field(..., description="Tenant boundary")
    actor_id: str | None = Field(None, description="Acting entity id")
    relationship: dict[str, Any] | None = Field(None, description="Relationship or filters")
    options: dict[str, Any] = Field(default_factory=dict, description="Action options")


class TransactionCrudRequest(BaseModel):
    """transactions.crud call."""

    action: str = Field(..., description="CREATE, READ, QUERY, UPDATE, DELETE, POST, VOID, REVERSE")
    organization_id: str = Field(..., description="Tenant boundary")
    actor_id: str | None = Field(None, description="Acting entity id")
    header: dict[str, Any] | None = Field(None, description="Transaction header or filters")
    lines: list[dict[str, Any]] | None = Field(None, description="Transaction lines")
    options: dict[str, Any] = Field(default_factory=dict, description="Action options")


# --- Dependencies ---


def get_api(request: Request) -> UniversalApi:
    """Get the UniversalApi from app state."""
    return request.app.state.api


def get_actor(request: Request) -> str | None:
    """Actor from the X-Actor-ID header."""
    return request.headers.get("X-Actor-ID")


def _options(request: Request, options: dict[str, Any]) -> dict[str, Any]:
    settings: Settings = request.app.state.settings
    if "timeout_ms" not in options and settings.request_timeout_ms > 0:
        return {**options, "timeout_ms": settings.request_timeout_ms}
    return options


def respond(result: CrudResult) -> JSONResponse:
    """Render a CrudResult with the status mapped from its error code."""
    status = 200 if result.success else STATUS_BY_CODE.get(result.error_code or "", 400)
    content = jsonable_encoder(result.to_dict(), custom_encoder={Decimal: str})
    return JSONResponse(status_code=status, content=content)


# --- Routes ---


@router.post("/organizations")
async def create_organization(
    body: OrganizationCreateRequest,
    api: UniversalApi = Depends(get_api),
    actor: str | None = Depends(get_actor),
):
    """Create an organization and its ORGANIZATION entity."""
    payload = body.model_dump(exclude={"actor_id"})
    return respond(await api.organizations.create(payload, body.actor_id or actor))


@router.post("/entities")
async def entities_crud(
    body: EntityCrudRequest,
    request: Request,
    api: UniversalApi = Depends(get_api),
    actor: str | None = Depends(get_actor),
):
    """Entity CRUD with dynamic fields and inline relationships."""
    result = await api.entities.crud(
        body.action,
        body.actor_id or actor,
        body.organization_id,
        entity=body.entity,
        dynamic_fields=body.dynamic_fields,
        relationships=body.relationships,
        options=_options(request, body.options),
    )
    return respond(result)


@router.post("/relationships")
async def relationships_crud(
    body: RelationshipCrudRequest,
    request: Request,
    api: UniversalApi = Depends(get_api),
    actor: str | None = Depends(get_actor),
):
    """Relationship CRUD."""
    result = await api.relationships.crud(
        body.action,
        body.actor_id or actor,
        body.organization_id,
        relationship=body.relationship,
        options=_options(request, body.options),
    )
    return respond(result)


@router.post("/transactions")
async def transactions_crud(
    body: TransactionCrudRequest,
    request: Request,
    api: UniversalApi = Depends(get_api),
    actor: str | None = Depends(get_actor),
):
    """Transaction CRUD, posting, void and reverse."""
    result = await api.transactions.crud(
        body.action,
        body.actor_id or actor,
        body.organization_id,
        header=body.header,
        lines=body.lines,
        options=_options(request, body.options),
    )
    return respond(result)


@router.get("/auth/introspect/{actor_id}")
async def introspect(
    actor_id: str,
    request: Request,
    api: UniversalApi = Depends(get_api),
):
    """Organizations, roles and apps visible to an actor."""
    return respond(await api.auth.introspect(actor_id, options=_options(request, {})))


# --- Application ---


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the UniversalApi unless one was injected."""
    if app.state.api is None:
        app.state.api = UniversalApi.from_config(app.state.settings.to_server_config())
    logger.info("Universal API ready", extra={"db_path": str(app.state.api.store.db_path)})

    yield


def create_app(api: UniversalApi | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        api: Pre-built UniversalApi (tests inject one); built from settings otherwise
        settings: Gateway settings; loaded from the environment otherwise
    """
    settings = settings or Settings()

    app = FastAPI(
        title="Universal Data Engine",
        description="Entity, relationship and transaction CRUD with graph-based authorization.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.api = api
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "udb-core", "version": __version__}

    return app
