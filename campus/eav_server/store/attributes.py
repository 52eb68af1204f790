"""
Attribute registry.

The registry is the single source of truth for how a raw value is
interpreted and stored. Attributes are keyed by a globally unique name and
shared by every entity kind that writes that name.

Invariants:
    - Exactly one row per attribute name, under concurrent first use too
      (INSERT ... ON CONFLICT(name), never check-then-insert)
    - resolve_or_create() overwrites the definition with the latest caller's
      fields; ensure() never changes an existing definition beyond adding
      the writer's entity type
    - Attributes are never deleted

How to change safely:
    - Keep every write conflict-safe on the name key
    - Seeding must stay idempotent; it runs on every startup when enabled
"""

from __future__ import annotations

import builtins
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from typing import Any

from ..errors import InfrastructureError
from ..schema.catalog import ATTRIBUTE_CATALOG
from ..schema.types import AttributeCategory, AttributeDef, DataType, tag
from ..schema.values import infer_data_type
from .database import Database, now_ms
from .records import Attribute

logger = logging.getLogger(__name__)


def fetch_attribute(conn: sqlite3.Connection, name: str) -> Attribute | None:
    """Load an attribute by name on an open connection."""
    row = conn.execute("SELECT * FROM attributes WHERE name = ?", (name,)).fetchone()
    return Attribute.from_row(row) if row else None


def _refetch(conn: sqlite3.Connection, name: str, operation: str) -> Attribute:
    attribute = fetch_attribute(conn, name)
    if attribute is None:
        raise InfrastructureError(f"Attribute '{name}' missing after upsert", operation=operation)
    return attribute


def upsert_definition(conn: sqlite3.Connection, definition: AttributeDef) -> Attribute:
    """Insert or overwrite an attribute definition by name."""
    now = now_ms()
    conn.execute(
        """
        INSERT INTO attributes
        (id, name, display_name, data_type, category, entity_types,
         is_required, description, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            display_name = excluded.display_name,
            data_type = excluded.data_type,
            category = excluded.category,
            entity_types = excluded.entity_types,
            is_required = excluded.is_required,
            description = excluded.description,
            updated_at = excluded.updated_at
        """,
        (
            str(uuid.uuid4()),
            definition.name,
            definition.display_name,
            definition.data_type.value,
            definition.category.value,
            json.dumps(sorted({tag(t) for t in definition.entity_types})),
            1 if definition.is_required else 0,
            definition.description,
            now,
            now,
        ),
    )
    return _refetch(conn, definition.name, "upsert_attribute")


def ensure_attribute(
    conn: sqlite3.Connection,
    name: str,
    sample: Any = None,
    entity_type: str | None = None,
) -> Attribute:
    """Return the attribute for name, creating it from a sample value if missing.

    A new attribute gets displayName = name, the sample's inferred data type,
    category PERSONAL and entityTypes = [entity_type]. An existing attribute
    keeps its definition and only gains entity_type.
    """
    now = now_ms()
    entity_types = [tag(entity_type)] if entity_type else []
    conn.execute(
        """
        INSERT INTO attributes
        (id, name, display_name, data_type, category, entity_types,
         is_required, description, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)
        ON CONFLICT(name) DO NOTHING
        """,
        (
            str(uuid.uuid4()),
            name,
            name,
            infer_data_type(sample).value,
            AttributeCategory.PERSONAL.value,
            json.dumps(entity_types),
            now,
            now,
        ),
    )
    attribute = _refetch(conn, name, "ensure_attribute")

    if entity_types and entity_types[0] not in attribute.entity_types:
        attribute.entity_types = sorted(set(attribute.entity_types) | set(entity_types))
        attribute.updated_at = now
        conn.execute(
            "UPDATE attributes SET entity_types = ?, updated_at = ? WHERE id = ?",
            (json.dumps(attribute.entity_types), now, attribute.id),
        )
    return attribute


class AttributeRegistry:
    """Registry of named, typed attributes.

    Example:
        >>> registry = AttributeRegistry(db)
        >>> gpa = await registry.resolve_or_create("gpa", "GPA", "NUMBER", "ACADEMIC", ["STUDENT"])
        >>> gpa.data_type
        <DataType.NUMBER: 'NUMBER'>
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def resolve_or_create(
        self,
        name: str,
        display_name: str | None = None,
        data_type: DataType | str = DataType.STRING,
        category: AttributeCategory | str = AttributeCategory.PERSONAL,
        entity_types: Iterable[str] = (),
        is_required: bool = False,
        description: str | None = None,
    ) -> Attribute:
        """Upsert an attribute by name; the latest caller's fields win.

        Raises:
            ValidationError: If data_type or category is not a known value
        """
        definition = AttributeDef(
            name=name,
            display_name=display_name or name,
            data_type=DataType.from_str(data_type),
            category=AttributeCategory.from_str(category),
            entity_types=tuple(entity_types),
            is_required=is_required,
            description=description,
        )
        with self.db.transaction("resolve_attribute") as conn:
            attribute = upsert_definition(conn, definition)

        logger.debug(
            "Resolved attribute",
            extra={"attribute": name, "data_type": attribute.data_type.value},
        )
        return attribute

    async def ensure(self, name: str, sample: Any = None, entity_type: str | None = None) -> Attribute:
        """Create-if-missing used by the write path."""
        with self.db.transaction("ensure_attribute") as conn:
            return ensure_attribute(conn, name, sample, entity_type)

    async def ensure_many(
        self, samples: dict[str, Any], entity_type: str | None = None
    ) -> dict[str, Attribute]:
        """ensure() for every key of samples, in one transaction."""
        with self.db.transaction("ensure_attributes") as conn:
            return {
                name: ensure_attribute(conn, name, sample, entity_type)
                for name, sample in samples.items()
            }

    async def seed_catalog(
        self, definitions: Iterable[AttributeDef] | None = None
    ) -> builtins.list[str]:
        """Upsert a catalog of definitions by name.

        Args:
            definitions: Definitions to seed; the built-in catalog if None

        Returns:
            Names that were (re)seeded, in catalog order
        """
        definitions = tuple(ATTRIBUTE_CATALOG if definitions is None else definitions)
        with self.db.transaction("seed_catalog") as conn:
            for definition in definitions:
                upsert_definition(conn, definition)

        names = [definition.name for definition in definitions]
        logger.info("Seeded attribute catalog", extra={"count": len(names)})
        return names

    async def get(self, attribute_id: str) -> Attribute | None:
        with self.db.connect("get_attribute") as conn:
            row = conn.execute(
                "SELECT * FROM attributes WHERE id = ?", (attribute_id,)
            ).fetchone()
            return Attribute.from_row(row) if row else None

    async def get_by_name(self, name: str) -> Attribute | None:
        with self.db.connect("get_attribute") as conn:
            return fetch_attribute(conn, name)

    async def list(self, entity_type: str | None = None) -> builtins.list[Attribute]:
        """All attributes ordered by name, optionally only those declared for a kind."""
        with self.db.connect("list_attributes") as conn:
            rows = conn.execute("SELECT * FROM attributes ORDER BY name").fetchall()
        attributes = [Attribute.from_row(row) for row in rows]
        if entity_type is None:
            return attributes
        kind = tag(entity_type)
        return [a for a in attributes if kind in a.entity_types]

    async def missing_required(
        self, entity_type: str, supplied: Iterable[str]
    ) -> builtins.list[str]:
        """Required attributes declared for entity_type that supplied lacks."""
        supplied = set(supplied)
        return [
            a.name
            for a in await self.list(entity_type)
            if a.is_required and a.name not in supplied
        ]
