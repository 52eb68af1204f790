"""
Entity store: generic typed nodes.

Invariants:
    - type is set once at creation and never updated
    - Kinds in NAME_REQUIRED_TYPES cannot be created without a name
    - delete() removes values, then relations (either direction), then the
      entity row, inside one transaction

How to change safely:
    - Keep the cascade order; entity_values and entity_relations reference
      entities with foreign keys enforced
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterable
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..schema.types import NAME_REQUIRED_TYPES, tag
from .database import Database, now_ms
from .records import Entity, Relation
from .relations import Direction, fetch_relations_many
from .values import fetch_values

logger = logging.getLogger(__name__)


def insert_entity(
    conn: sqlite3.Connection,
    entity_type: str,
    name: str | None = None,
    description: str | None = None,
    is_active: bool = True,
) -> Entity:
    """Insert an entity row on an open connection.

    Raises:
        ValidationError: If the kind requires a name and none is given
    """
    kind = tag(entity_type)
    if kind in NAME_REQUIRED_TYPES and not (name and name.strip()):
        raise ValidationError(f"name is required for {kind} entities", field_name="name")

    now = now_ms()
    entity = Entity(
        id=str(uuid.uuid4()),
        type=kind,
        name=name,
        description=description,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    conn.execute(
        """
        INSERT INTO entities (id, type, name, description, is_active, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entity.id,
            entity.type,
            entity.name,
            entity.description,
            1 if is_active else 0,
            now,
            now,
        ),
    )
    return entity


def fetch_entity(
    conn: sqlite3.Connection, entity_id: str, with_values: bool = True
) -> Entity | None:
    """Load an entity (and its values) on an open connection."""
    row = conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
    if not row:
        return None
    values = fetch_values(conn, [entity_id])[entity_id] if with_values else None
    return Entity.from_row(row, values)


def update_entity_row(
    conn: sqlite3.Connection,
    entity_id: str,
    name: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> Entity:
    """Update core fields on an open connection; None leaves a field unchanged.

    Returns:
        The updated entity, without values

    Raises:
        NotFoundError: If the entity does not exist
    """
    entity = fetch_entity(conn, entity_id, with_values=False)
    if entity is None:
        raise NotFoundError("Entity", entity_id)

    changes: dict[str, Any] = {}
    if name is not None:
        changes["name"] = entity.name = name
    if description is not None:
        changes["description"] = entity.description = description
    if is_active is not None:
        entity.is_active = is_active
        changes["is_active"] = 1 if is_active else 0
    if changes:
        changes["updated_at"] = entity.updated_at = now_ms()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn.execute(
            f"UPDATE entities SET {assignments} WHERE id = ?",
            (*changes.values(), entity_id),
        )
    return entity


def attach_relations(
    conn: sqlite3.Connection,
    entities: list[Entity],
    relation_type: str | None,
    direction: Direction | str,
    active_only: bool = True,
) -> None:
    """Batch-load one kind of relation onto entities on an open connection.

    Fills relations_from or relations_to, merging with relations already
    attached so several kinds can be loaded in turn. Entities without a
    matching relation get an empty list.
    """
    direction = Direction.from_str(direction)
    attr = "relations_from" if direction is Direction.FROM else "relations_to"
    loaded = fetch_relations_many(
        conn, [e.id for e in entities], direction, relation_type, active_only
    )
    for entity in entities:
        merged: list[Relation] = list(getattr(entity, attr) or [])
        seen = {r.id for r in merged}
        merged.extend(r for r in loaded[entity.id] if r.id not in seen)
        merged.sort(key=lambda r: (r.created_at, r.id))
        setattr(entity, attr, merged)


class EntityStore:
    """Generic entity storage.

    Example:
        >>> entities = EntityStore(db)
        >>> student = await entities.create("STUDENT", name="Ada Lovelace")
        >>> [e.id for e in await entities.find_by_type("STUDENT")]
        [student.id]
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        entity_type: str,
        name: str | None = None,
        description: str | None = None,
        is_active: bool = True,
    ) -> Entity:
        """Create an entity.

        Raises:
            ValidationError: If the type is empty or a required name is missing
        """
        with self.db.transaction("create_entity") as conn:
            entity = insert_entity(conn, entity_type, name, description, is_active)

        logger.debug("Created entity", extra={"entity_id": entity.id, "type": entity.type})
        return entity

    async def get(self, entity_id: str, with_values: bool = True) -> Entity | None:
        """Get an entity with its values, or None."""
        with self.db.connect("get_entity") as conn:
            return fetch_entity(conn, entity_id, with_values)

    async def require(self, entity_id: str, with_values: bool = True) -> Entity:
        """Like get(), raising NotFoundError instead of returning None."""
        entity = await self.get(entity_id, with_values)
        if entity is None:
            raise NotFoundError("Entity", entity_id)
        return entity

    async def update(
        self,
        entity_id: str,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> Entity:
        """Update core fields; arguments left as None are unchanged.

        Raises:
            NotFoundError: If the entity does not exist
        """
        with self.db.transaction("update_entity") as conn:
            entity = update_entity_row(conn, entity_id, name, description, is_active)
            entity.values = fetch_values(conn, [entity_id])[entity_id]

        logger.debug("Updated entity", extra={"entity_id": entity_id})
        return entity

    async def delete(self, entity_id: str) -> dict[str, int]:
        """Delete an entity with its values and relations.

        Returns:
            Number of deleted rows per table

        Raises:
            NotFoundError: If the entity does not exist
        """
        with self.db.transaction("delete_entity") as conn:
            if not conn.execute("SELECT 1 FROM entities WHERE id = ?", (entity_id,)).fetchone():
                raise NotFoundError("Entity", entity_id)

            values = conn.execute(
                "DELETE FROM entity_values WHERE entity_id = ?", (entity_id,)
            ).rowcount
            relations = conn.execute(
                "DELETE FROM entity_relations WHERE from_entity_id = ? OR to_entity_id = ?",
                (entity_id, entity_id),
            ).rowcount
            conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))

        counts = {"values": values, "relations": relations, "entities": 1}
        logger.debug("Deleted entity", extra={"entity_id": entity_id, **counts})
        return counts

    async def find_by_type(
        self,
        entity_type: str,
        is_active: bool | None = None,
        name: str | None = None,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        relations: Iterable[tuple[str | None, Direction | str, bool]] | None = None,
    ) -> list[Entity]:
        """Entities of a kind with their values, newest first.

        Args:
            entity_type: Kind to list
            is_active: Only entities with this active flag, if given
            name: Only entities with this exact name, if given
            filters: Attribute name -> value that must match the stored scalar
            limit: Maximum entities to return
            offset: Pagination offset, applied after filtering
            relations: (relation_type, direction, active_only) triples to
                batch-load into relations_from / relations_to
        """
        clauses = ["type = ?"]
        params: list[Any] = [tag(entity_type)]
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(1 if is_active else 0)
        if name is not None:
            clauses.append("name = ?")
            params.append(name)

        query = f"SELECT * FROM entities WHERE {' AND '.join(clauses)} ORDER BY created_at DESC, id"
        if not filters and (limit is not None or offset):
            query += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, offset])

        with self.db.connect("find_entities") as conn:
            rows = conn.execute(query, params).fetchall()
            values = fetch_values(conn, [row["id"] for row in rows])
            entities = [Entity.from_row(row, values[row["id"]]) for row in rows]

            if filters:
                matched = [
                    e for e in entities
                    if all(_matches(e.values.get(key), wanted) for key, wanted in filters.items())
                ]
                end = None if limit is None else offset + limit
                entities = matched[offset:end]

            for relation_type, direction, active_only in relations or ():
                attach_relations(conn, entities, relation_type, direction, active_only)

        return entities

    async def count_by_type(self, entity_type: str) -> int:
        with self.db.connect("count_entities") as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM entities WHERE type = ?", (tag(entity_type),)
            ).fetchone()[0]


def _matches(stored: Any, wanted: Any) -> bool:
    if stored == wanted:
        return True
    # Query-string filters arrive as text
    return stored is not None and str(stored).lower() == str(wanted).lower()
