"""
API routes for the Campus EAV HTTP gateway.

Thin REST endpoints over EavService. Domain errors raised by the service
are turned into JSON error bodies by the handlers registered in app.py.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from ..service import EavService, RelationInput
from ..store.records import Relation
from .config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Campus EAV"])


# --- Request/Response Models ---


class RelationItem(BaseModel):
    """Relation created together with an entity."""

    toId: str = Field(..., description="Target entity ID")
    relationType: str = Field(..., description="Relation kind, e.g. ENROLLED_IN")
    metadata: dict[str, Any] | None = Field(None, description="Opaque relation payload")


class EntityCreateRequest(BaseModel):
    """Request to create an entity."""

    type: str = Field(..., description="Entity kind, e.g. STUDENT")
    name: str | None = Field(None, description="Display name")
    description: str | None = Field(None, description="Description")
    attributes: dict[str, Any] = Field(default_factory=dict, description="Attribute bag")
    relations: list[RelationItem] = Field(default_factory=list, description="Outgoing relations")
    enforceRequired: bool = Field(False, description="Reject missing required attributes")


class EntityUpdateRequest(BaseModel):
    """Request to update an entity."""

    name: str | None = None
    description: str | None = None
    isActive: bool | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    relations: list[RelationItem] = Field(default_factory=list)


class RelationCreateRequest(BaseModel):
    """Request to create (or reuse) a relation."""

    fromId: str = Field(..., description="Source entity ID")
    toId: str = Field(..., description="Target entity ID")
    relationType: str = Field(..., description="Relation kind")
    metadata: dict[str, Any] | None = Field(None, description="Opaque relation payload")
    startDate: int | None = Field(None, description="Start timestamp (Unix ms)")
    reuseExisting: bool = Field(True, description="Reactivate an existing edge instead of inserting")


class AttributeCreateRequest(BaseModel):
    """Request to define or redefine an attribute."""

    name: str
    displayName: str | None = None
    dataType: str = "STRING"
    category: str = "PERSONAL"
    entityTypes: list[str] = Field(default_factory=list)
    isRequired: bool = False
    description: str | None = None


class AccountEntityRequest(BaseModel):
    """Find-or-create the profile entity of an account."""

    type: str = Field(..., description="Entity kind to create when none is bound")
    attributes: dict[str, Any] = Field(default_factory=dict)
    name: str | None = None


class PaginatedResponse(BaseModel):
    """Paginated list response."""

    items: list[dict[str, Any]]
    offset: int
    limit: int
    has_more: bool


# --- Dependencies ---


def get_service(request: Request) -> EavService:
    """Get the EAV service from app state."""
    return request.app.state.service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_token(request: Request) -> None:
    """Check the static bearer token when one is configured."""
    expected = request.app.state.settings.api_token
    if not expected:
        return
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or token != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")


def _relation_inputs(items: list[RelationItem]) -> list[RelationInput]:
    return [RelationInput(i.toId, i.relationType, i.metadata) for i in items]


def _relation_response(relation: Relation) -> dict[str, Any]:
    result = relation.to_dict()
    result["status"] = relation.status.value.lower()
    return result


# --- Entity Routes ---


@router.post("/entities", status_code=201)
async def create_entity(
    body: EntityCreateRequest,
    service: EavService = Depends(get_service),
):
    """
    Create an entity with its attribute bag and outgoing relations.

    Returns the entity id and the attribute names written and skipped.
    """
    result = await service.create_entity(
        body.type,
        name=body.name,
        description=body.description,
        attributes=body.attributes,
        relations=_relation_inputs(body.relations),
        enforce_required=body.enforceRequired,
    )
    return result.to_dict()


@router.get("/entities", response_model=PaginatedResponse)
async def list_entities(
    request: Request,
    type: str = Query(..., description="Entity kind"),
    is_active: bool | None = Query(None, description="Filter by active flag"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    limit: int | None = Query(None, ge=1, description="Page size"),
    include: list[str] = Query([], description="TYPE:direction:as"),
    service: EavService = Depends(get_service),
    settings: Settings = Depends(get_settings),
):
    """
    List projected entities of one kind.

    Query parameters other than the ones above filter on attribute values.
    """
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    reserved = {"type", "is_active", "offset", "limit", "include"}
    filters = {k: v for k, v in request.query_params.items() if k not in reserved}

    items = await service.query_entities(
        type,
        is_active=is_active,
        filters=filters or None,
        limit=limit + 1,
        offset=offset,
        include=include,
    )
    return PaginatedResponse(
        items=items[:limit],
        offset=offset,
        limit=limit,
        has_more=len(items) > limit,
    )


@router.get("/entities/{entity_id}")
async def get_entity(
    entity_id: str,
    include: list[str] = Query([], description="TYPE:direction:as"),
    service: EavService = Depends(get_service),
):
    """Get one projected entity, with the requested relation lists."""
    return await service.get_entity(entity_id, include)


@router.patch("/entities/{entity_id}")
async def update_entity(
    entity_id: str,
    body: EntityUpdateRequest,
    service: EavService = Depends(get_service),
):
    """Update core fields, upsert attributes and relink relations."""
    result = await service.update_entity(
        entity_id,
        name=body.name,
        description=body.description,
        is_active=body.isActive,
        attributes=body.attributes,
        relations=_relation_inputs(body.relations),
    )
    return result.to_dict()


@router.delete("/entities/{entity_id}")
async def delete_entity(
    entity_id: str,
    service: EavService = Depends(get_service),
):
    """Delete an entity with its values and relations."""
    counts = await service.delete_entity(entity_id)
    return {"id": entity_id, "deleted": counts}


# --- Relation Routes ---


@router.post("/relations", status_code=201)
async def create_relation(
    body: RelationCreateRequest,
    service: EavService = Depends(get_service),
):
    """Create a relation, or reactivate the existing one between the same entities."""
    relation = await service.link(
        body.fromId,
        body.toId,
        body.relationType,
        metadata=body.metadata,
        start_date=body.startDate,
        reuse_existing=body.reuseExisting,
    )
    return _relation_response(relation)


@router.patch("/relations/{relation_id}/metadata")
async def update_relation_metadata(
    relation_id: str,
    patch: dict[str, Any],
    service: EavService = Depends(get_service),
):
    """Shallow-merge a patch into the relation's metadata."""
    relation = await service.update_relation_metadata(relation_id, patch)
    return _relation_response(relation)


@router.post("/relations/{relation_id}/deactivate")
async def deactivate_relation(
    relation_id: str,
    service: EavService = Depends(get_service),
):
    """Soft-delete a relation."""
    relation = await service.deactivate_relation(relation_id)
    return _relation_response(relation)


@router.delete("/relations/{relation_id}", status_code=204)
async def remove_relation(
    relation_id: str,
    service: EavService = Depends(get_service),
):
    """Hard-delete a relation."""
    await service.remove_relation(relation_id)
    return Response(status_code=204)


# --- Attribute Routes ---


@router.get("/attributes")
async def list_attributes(
    entity_type: str | None = Query(None, description="Only attributes declared for this kind"),
    service: EavService = Depends(get_service),
):
    attributes = await service.list_attributes(entity_type)
    return [a.to_dict() for a in attributes]


@router.post("/attributes", status_code=201)
async def define_attribute(
    body: AttributeCreateRequest,
    service: EavService = Depends(get_service),
):
    """Create or overwrite an attribute definition by name."""
    attribute = await service.define_attribute(
        body.name,
        display_name=body.displayName,
        data_type=body.dataType,
        category=body.category,
        entity_types=body.entityTypes,
        is_required=body.isRequired,
        description=body.description,
    )
    return attribute.to_dict()


@router.post("/attributes/seed")
async def seed_attributes(service: EavService = Depends(get_service)):
    """Upsert the predefined attribute catalog."""
    names = await service.seed_catalog()
    return {"seeded": names, "count": len(names)}


# --- Account Routes ---


@router.post("/accounts/{account_id}/entity")
async def account_entity(
    account_id: str,
    body: AccountEntityRequest,
    response: Response,
    service: EavService = Depends(get_service),
):
    """
    Write to the profile entity of an account, creating and binding it on first use.

    Responds 201 when the entity was created, 200 otherwise.
    """
    result = await service.update_entity_for_account(
        account_id, body.type, attributes=body.attributes, name=body.name
    )
    response.status_code = 201 if result.created else 200
    return await service.get_entity(result.entity_id)
