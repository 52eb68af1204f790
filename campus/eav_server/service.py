"""
EAV service facade.

This is the entry point route handlers and tools call. It composes the
stores and the projector and implements three contracts:

- Write path: {type, name?, description?, attributes, relations?} in,
  WriteResult (entity id, written/skipped attribute names) out
- Read path: entity id or {type, filters} plus relation specs in,
  flat projections out
- Relation mutations: link, metadata patch, deactivate, remove

Invariants:
    - A write (entity row, values, relations) commits atomically or not at all
    - NotFoundError and ValidationError propagate to the caller unchanged
    - Relations created through the facade reuse an existing edge between
      the same two entities instead of duplicating it

How to change safely:
    - New write-path steps must run on the transaction's connection, not
      through a store method (store methods open their own connection)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import ServerConfig
from .errors import NotFoundError, ValidationError
from .projection import Projector, RelationSpec
from .schema.types import AttributeCategory, DataType, tag
from .schema.values import is_empty
from .store import (
    AccountStore,
    AttributeRegistry,
    Database,
    EntityStore,
    RelationStore,
    ValueStore,
)
from .store.entities import insert_entity, update_entity_row
from .store.records import Attribute, Relation
from .store.relations import relink, require_entities
from .store.values import write_values

logger = logging.getLogger(__name__)


@dataclass
class RelationInput:
    """A relation to create alongside an entity write.

    Attributes:
        to_id: Target entity (the written entity is the source)
        relation_type: Relation kind
        metadata: Optional opaque payload
    """

    to_id: str
    relation_type: str
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelationInput:
        to_id = data.get("toId") or data.get("to_id")
        relation_type = data.get("relationType") or data.get("relation_type")
        if not to_id or not relation_type:
            raise ValidationError(
                "relations entries need toId and relationType", field_name="relations"
            )
        return cls(to_id=to_id, relation_type=relation_type, metadata=data.get("metadata"))


@dataclass
class WriteResult:
    """Outcome of an entity write.

    Attributes:
        entity_id: The created or updated entity
        created: True if the entity was created by this write
        written: Attribute names stored
        skipped: Attribute names with empty values, not stored
        relation_ids: Relations created or reused by this write
    """

    entity_id: str
    created: bool = False
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    relation_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entity_id,
            "created": self.created,
            "written": list(self.written),
            "skipped": list(self.skipped),
            "relationIds": list(self.relation_ids),
        }


def _relation_inputs(relations: Iterable[RelationInput | dict[str, Any]] | None) -> list[RelationInput]:
    return [
        r if isinstance(r, RelationInput) else RelationInput.from_dict(r)
        for r in (relations or ())
    ]


class EavService:
    """Facade over the EAV stores.

    Example:
        >>> service = EavService(Database("/tmp/campus.db"))
        >>> await service.initialize()
        >>> result = await service.create_entity(
        ...     "STUDENT", attributes={"firstName": "Ada", "gpa": 3.9}
        ... )
        >>> await service.get_entity(result.entity_id)
        {'id': ..., 'type': 'STUDENT', 'firstName': 'Ada', 'gpa': 3.9, ...}
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.attributes = AttributeRegistry(db)
        self.values = ValueStore(db)
        self.entities = EntityStore(db)
        self.relations = RelationStore(db)
        self.accounts = AccountStore(db)
        self.projector = Projector(self.relations)

    @classmethod
    def from_config(cls, config: ServerConfig) -> EavService:
        return cls(Database.from_config(config.storage))

    async def initialize(self, seed: bool = False) -> None:
        """Create the schema, and seed the attribute catalog if asked."""
        await self.db.initialize()
        if seed:
            await self.attributes.seed_catalog()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def _check_required(
        self, entity_type: str, attributes: dict[str, Any], existing: Iterable[str] = ()
    ) -> None:
        supplied = {k for k, v in attributes.items() if not is_empty(v)} | set(existing)
        missing = await self.attributes.missing_required(entity_type, supplied)
        if missing:
            raise ValidationError(
                f"Missing required attributes for {tag(entity_type)}: {', '.join(missing)}",
                field_name="attributes",
                errors=missing,
            )

    async def create_entity(
        self,
        entity_type: str,
        name: str | None = None,
        description: str | None = None,
        attributes: dict[str, Any] | None = None,
        relations: Sequence[RelationInput | dict[str, Any]] | None = None,
        enforce_required: bool = False,
    ) -> WriteResult:
        """Create an entity with its attribute bag and outgoing relations.

        Raises:
            ValidationError: On a missing name for a name-required kind, or
                missing required attributes when enforce_required is set
            NotFoundError: If a relation target does not exist
        """
        attributes = dict(attributes or {})
        relation_inputs = _relation_inputs(relations)
        if enforce_required:
            await self._check_required(entity_type, attributes)

        with self.db.transaction("create_entity") as conn:
            entity = insert_entity(conn, entity_type, name, description)
            written = write_values(conn, entity.id, entity.type, attributes)
            relation_ids = []
            for r in relation_inputs:
                require_entities(conn, r.to_id)
                relation, _ = relink(conn, entity.id, r.to_id, r.relation_type, r.metadata)
                relation_ids.append(relation.id)

        logger.debug(
            "Created entity",
            extra={
                "entity_id": entity.id,
                "type": entity.type,
                "attributes": written.written,
                "relations": len(relation_ids),
            },
        )
        return WriteResult(
            entity_id=entity.id,
            created=True,
            written=written.written,
            skipped=written.skipped,
            relation_ids=relation_ids,
        )

    async def update_entity(
        self,
        entity_id: str,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
        attributes: dict[str, Any] | None = None,
        relations: Sequence[RelationInput | dict[str, Any]] | None = None,
        enforce_required: bool = False,
    ) -> WriteResult:
        """Update core fields, upsert attributes and relink relations.

        Raises:
            NotFoundError: If the entity or a relation target does not exist
        """
        attributes = dict(attributes or {})
        relation_inputs = _relation_inputs(relations)
        if enforce_required:
            current = await self.entities.require(entity_id)
            await self._check_required(current.type, attributes, current.values)

        with self.db.transaction("update_entity") as conn:
            entity = update_entity_row(conn, entity_id, name, description, is_active)
            written = write_values(conn, entity_id, entity.type, attributes)
            relation_ids = []
            for r in relation_inputs:
                require_entities(conn, r.to_id)
                relation, _ = relink(conn, entity_id, r.to_id, r.relation_type, r.metadata)
                relation_ids.append(relation.id)

        logger.debug(
            "Updated entity",
            extra={"entity_id": entity_id, "attributes": written.written},
        )
        return WriteResult(
            entity_id=entity_id,
            written=written.written,
            skipped=written.skipped,
            relation_ids=relation_ids,
        )

    async def delete_entity(self, entity_id: str) -> dict[str, int]:
        """Cascade-delete an entity. Raises NotFoundError if missing."""
        return await self.entities.delete(entity_id)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    @staticmethod
    def _specs(include: Iterable[RelationSpec | str] | None) -> list[RelationSpec]:
        return [
            spec if isinstance(spec, RelationSpec) else RelationSpec.parse(spec)
            for spec in (include or ())
        ]

    async def get_entity(
        self, entity_id: str, include: Iterable[RelationSpec | str] | None = None
    ) -> dict[str, Any]:
        """Projection of one entity, with the requested relation lists.

        Raises:
            NotFoundError: If the entity does not exist
        """
        entity = await self.entities.require(entity_id)
        return await self.projector.project_with_relations(entity, self._specs(include))

    async def query_entities(
        self,
        entity_type: str,
        is_active: bool | None = None,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        include: Iterable[RelationSpec | str] | None = None,
    ) -> list[dict[str, Any]]:
        """Projections of every entity of a kind matching the filters.

        Relations for every spec are batch-loaded with the page of entities.
        """
        specs = self._specs(include)
        entities = await self.entities.find_by_type(
            entity_type,
            is_active=is_active,
            filters=filters,
            limit=limit,
            offset=offset,
            relations=[(s.relation_type, s.direction, s.active_only) for s in specs],
        )
        return [self.projector.project_loaded(e, specs) for e in entities]

    # ------------------------------------------------------------------
    # Relation mutations
    # ------------------------------------------------------------------

    async def link(
        self,
        from_id: str,
        to_id: str,
        relation_type: str,
        metadata: dict[str, Any] | None = None,
        start_date: int | None = None,
        reuse_existing: bool = True,
    ) -> Relation:
        """Create a relation, reusing an existing edge unless told not to.

        Raises:
            NotFoundError: If either entity does not exist
        """
        if not reuse_existing:
            return await self.relations.link(from_id, to_id, relation_type, metadata, start_date)
        relation, _ = await self.relations.link_or_reactivate(
            from_id, to_id, relation_type, metadata, start_date
        )
        return relation

    async def update_relation_metadata(self, relation_id: str, patch: dict[str, Any]) -> Relation:
        return await self.relations.update_metadata(relation_id, patch)

    async def deactivate_relation(self, relation_id: str) -> Relation:
        return await self.relations.deactivate(relation_id)

    async def remove_relation(self, relation_id: str) -> None:
        """Hard-delete a relation.

        Raises:
            NotFoundError: If the relation does not exist
        """
        if not await self.relations.remove(relation_id):
            raise NotFoundError("Relation", relation_id)

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    async def define_attribute(
        self,
        name: str,
        display_name: str | None = None,
        data_type: DataType | str = DataType.STRING,
        category: AttributeCategory | str = AttributeCategory.PERSONAL,
        entity_types: Iterable[str] = (),
        is_required: bool = False,
        description: str | None = None,
    ) -> Attribute:
        return await self.attributes.resolve_or_create(
            name, display_name, data_type, category, entity_types, is_required, description
        )

    async def list_attributes(self, entity_type: str | None = None) -> list[Attribute]:
        return await self.attributes.list(entity_type)

    async def seed_catalog(self) -> list[str]:
        return await self.attributes.seed_catalog()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def bind_account(self, account_id: str, entity_id: str) -> None:
        await self.accounts.bind_account_to_entity(account_id, entity_id)

    async def entity_for_account(
        self,
        account_id: str,
        entity_type: str,
        include: Iterable[RelationSpec | str] | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Projection of the account's profile entity, created on first use.

        Returns:
            (projection, created)
        """
        entity, created = await self.accounts.find_or_create_entity_for_account(
            account_id, entity_type
        )
        projection = await self.projector.project_with_relations(entity, self._specs(include))
        return projection, created

    async def update_entity_for_account(
        self,
        account_id: str,
        entity_type: str,
        attributes: dict[str, Any] | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> WriteResult:
        """Self-service update: write to the account's entity, creating it if needed."""
        entity, created = await self.accounts.find_or_create_entity_for_account(
            account_id, entity_type, name=name
        )
        result = await self.update_entity(
            entity.id, name=name, description=description, attributes=attributes
        )
        result.created = created
        return result
