"""
Relation store: directed, typed, soft-activatable edges.

State machine:
    CREATED (is_active=1) -> DEACTIVATED (is_active=0, end_date set)
        -> REACTIVATED (is_active=1, end_date cleared) -> ...
    remove() hard-deletes from any state.

Invariants:
    - link() always inserts; it never looks for an existing edge, so two
      calls for the same (from, to, type) leave two rows
    - link_or_reactivate() does the lookup and the write in one
      BEGIN IMMEDIATE transaction and never leaves a duplicate behind
    - Metadata is stored as opaque JSON; unparseable payloads read as {}
    - Traversal loads far-side entities and their values in a fixed number
      of queries, independent of the number of edges

How to change safely:
    - Adding a uniqueness constraint on (from, to, type) changes link()
      behaviour for existing callers; route them to link_or_reactivate first
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterable
from enum import Enum
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..schema.metadata import dump_metadata
from ..schema.types import tag
from .database import Database, now_ms
from .records import Entity, Relation
from .values import _CHUNK, fetch_values

logger = logging.getLogger(__name__)


class Direction(Enum):
    """Traversal direction relative to the anchor entity."""

    FROM = "from"  # anchor is the source; far side is to_entity
    TO = "to"  # anchor is the target; far side is from_entity

    @classmethod
    def from_str(cls, value: str | Direction) -> Direction:
        if isinstance(value, Direction):
            return value
        lowered = str(value).strip().lower()
        aliases = {"from": cls.FROM, "out": cls.FROM, "to": cls.TO, "in": cls.TO}
        if lowered not in aliases:
            raise ValidationError(
                f"Invalid direction '{value}'. Must be one of: from, to", field_name="direction"
            )
        return aliases[lowered]


_FAR_COLUMNS = """
    e.id AS e_id, e.type AS e_type, e.name AS e_name, e.description AS e_description,
    e.is_active AS e_is_active, e.created_at AS e_created_at, e.updated_at AS e_updated_at
"""


def insert_relation(
    conn: sqlite3.Connection,
    from_entity_id: str,
    to_entity_id: str,
    relation_type: str,
    metadata: dict[str, Any] | None = None,
    start_date: int | None = None,
) -> Relation:
    """Insert a relation row on an open connection."""
    now = now_ms()
    relation = Relation(
        id=str(uuid.uuid4()),
        from_entity_id=from_entity_id,
        to_entity_id=to_entity_id,
        relation_type=tag(relation_type, "relationType"),
        is_active=True,
        start_date=start_date if start_date is not None else now,
        end_date=None,
        metadata=dict(metadata or {}),
        created_at=now,
        updated_at=now,
    )
    conn.execute(
        """
        INSERT INTO entity_relations
        (id, from_entity_id, to_entity_id, relation_type, is_active,
         start_date, end_date, metadata, created_at, updated_at)
        VALUES (?, ?, ?, ?, 1, ?, NULL, ?, ?, ?)
        """,
        (
            relation.id,
            from_entity_id,
            to_entity_id,
            relation.relation_type,
            relation.start_date,
            dump_metadata(metadata),
            now,
            now,
        ),
    )
    return relation


def fetch_relation(conn: sqlite3.Connection, relation_id: str) -> Relation | None:
    row = conn.execute("SELECT * FROM entity_relations WHERE id = ?", (relation_id,)).fetchone()
    return Relation.from_row(row) if row else None


def fetch_relations_many(
    conn: sqlite3.Connection,
    entity_ids: Iterable[str],
    direction: Direction,
    relation_type: str | None = None,
    active_only: bool = True,
) -> dict[str, list[Relation]]:
    """Relations of many entities in one direction, far side joined with values.

    One query per chunk of anchor ids for the relations joined to their
    far-side entities, then the values of every far-side entity at once.

    Returns:
        anchor entity_id -> relations; every requested id is present
    """
    anchor, far = (
        ("from_entity_id", "to_entity_id")
        if direction is Direction.FROM
        else ("to_entity_id", "from_entity_id")
    )
    ids = list(dict.fromkeys(entity_ids))
    grouped: dict[str, list[Relation]] = {entity_id: [] for entity_id in ids}
    filters = ""
    params: list[Any] = []
    if relation_type is not None:
        filters += " AND r.relation_type = ?"
        params.append(tag(relation_type, "relationType"))
    if active_only:
        filters += " AND r.is_active = 1"

    rows: list[sqlite3.Row] = []
    for start in range(0, len(ids), _CHUNK):
        chunk = ids[start : start + _CHUNK]
        placeholders = ", ".join("?" for _ in chunk)
        rows.extend(
            conn.execute(
                f"""
                SELECT r.*, {_FAR_COLUMNS}
                FROM entity_relations r
                JOIN entities e ON e.id = r.{far}
                WHERE r.{anchor} IN ({placeholders}){filters}
                ORDER BY r.created_at, r.id
                """,
                [*chunk, *params],
            ).fetchall()
        )

    values = fetch_values(conn, [row["e_id"] for row in rows])
    for row in rows:
        relation = Relation.from_row(row)
        far_entity = Entity.from_row(row, values[row["e_id"]], prefix="e_")
        if direction is Direction.FROM:
            relation.to_entity = far_entity
        else:
            relation.from_entity = far_entity
        grouped[row[anchor]].append(relation)
    return grouped


def fetch_relations(
    conn: sqlite3.Connection,
    entity_id: str,
    direction: Direction,
    relation_type: str | None = None,
    active_only: bool = True,
) -> list[Relation]:
    """Relations of one entity in one direction, far side joined with values."""
    return fetch_relations_many(conn, [entity_id], direction, relation_type, active_only)[
        entity_id
    ]


def require_entities(conn: sqlite3.Connection, *entity_ids: str) -> None:
    for entity_id in entity_ids:
        if not conn.execute("SELECT 1 FROM entities WHERE id = ?", (entity_id,)).fetchone():
            raise NotFoundError("Entity", entity_id)


def _reactivate(
    conn: sqlite3.Connection, relation: Relation, metadata: dict[str, Any] | None
) -> Relation:
    now = now_ms()
    if metadata is not None:
        relation.metadata = dict(metadata)
    conn.execute(
        """
        UPDATE entity_relations
        SET is_active = 1, end_date = NULL, metadata = ?, updated_at = ?
        WHERE id = ?
        """,
        (dump_metadata(relation.metadata), now, relation.id),
    )
    relation.is_active = True
    relation.end_date = None
    relation.updated_at = now
    return relation


def relink(
    conn: sqlite3.Connection,
    from_entity_id: str,
    to_entity_id: str,
    relation_type: str,
    metadata: dict[str, Any] | None = None,
    start_date: int | None = None,
) -> tuple[Relation, bool]:
    """Reactivate the existing edge between two entities or insert one.

    Must run inside a write transaction for the lookup and the write to be
    atomic.
    """
    kind = tag(relation_type, "relationType")
    row = conn.execute(
        """
        SELECT * FROM entity_relations
        WHERE from_entity_id = ? AND to_entity_id = ? AND relation_type = ?
        ORDER BY is_active DESC, created_at DESC, id
        LIMIT 1
        """,
        (from_entity_id, to_entity_id, kind),
    ).fetchone()
    if row:
        return _reactivate(conn, Relation.from_row(row), metadata), False
    return insert_relation(conn, from_entity_id, to_entity_id, kind, metadata, start_date), True


class RelationStore:
    """Storage and traversal of entity relations.

    Example:
        >>> relations = RelationStore(db)
        >>> enrollment = await relations.link(student.id, course.id, "ENROLLED_IN",
        ...                                   {"grade": "N/A", "attendance": 100})
        >>> await relations.update_metadata(enrollment.id, {"grade": "A-"})
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def link(
        self,
        from_entity_id: str,
        to_entity_id: str,
        relation_type: str,
        metadata: dict[str, Any] | None = None,
        start_date: int | None = None,
    ) -> Relation:
        """Insert a new active relation.

        Callers that must not duplicate an edge use link_or_reactivate().

        Raises:
            NotFoundError: If either entity does not exist
        """
        with self.db.transaction("link") as conn:
            require_entities(conn, from_entity_id, to_entity_id)
            relation = insert_relation(
                conn, from_entity_id, to_entity_id, relation_type, metadata, start_date
            )

        logger.debug(
            "Created relation",
            extra={
                "relation_id": relation.id,
                "relation_type": relation.relation_type,
                "from": from_entity_id,
                "to": to_entity_id,
            },
        )
        return relation

    async def find_active(
        self, from_entity_id: str, to_entity_id: str, relation_type: str
    ) -> Relation | None:
        """The most recent active relation between two entities, or None."""
        with self.db.connect("find_active_relation") as conn:
            row = conn.execute(
                """
                SELECT * FROM entity_relations
                WHERE from_entity_id = ? AND to_entity_id = ? AND relation_type = ?
                  AND is_active = 1
                ORDER BY created_at DESC, id
                LIMIT 1
                """,
                (from_entity_id, to_entity_id, tag(relation_type, "relationType")),
            ).fetchone()
        return Relation.from_row(row) if row else None

    async def find(
        self, from_entity_id: str, to_entity_id: str, relation_type: str | None = None
    ) -> list[Relation]:
        """Every relation between two entities in any state, oldest first."""
        query = "SELECT * FROM entity_relations WHERE from_entity_id = ? AND to_entity_id = ?"
        params: list[Any] = [from_entity_id, to_entity_id]
        if relation_type is not None:
            query += " AND relation_type = ?"
            params.append(tag(relation_type, "relationType"))
        with self.db.connect("find_relations") as conn:
            rows = conn.execute(query + " ORDER BY created_at, id", params).fetchall()
        return [Relation.from_row(row) for row in rows]

    async def reactivate_or_update(
        self, relation_id: str, metadata: dict[str, Any] | None = None
    ) -> Relation:
        """Mark a relation active, clear end_date, and replace metadata if given.

        Raises:
            NotFoundError: If the relation does not exist
        """
        with self.db.transaction("reactivate_relation") as conn:
            relation = fetch_relation(conn, relation_id)
            if relation is None:
                raise NotFoundError("Relation", relation_id)
            relation = _reactivate(conn, relation, metadata)

        logger.debug("Reactivated relation", extra={"relation_id": relation_id})
        return relation

    async def link_or_reactivate(
        self,
        from_entity_id: str,
        to_entity_id: str,
        relation_type: str,
        metadata: dict[str, Any] | None = None,
        start_date: int | None = None,
    ) -> tuple[Relation, bool]:
        """Reuse the existing edge between two entities or insert one.

        An active edge is preferred over an inactive one; among equals the
        newest wins.

        Returns:
            (relation, created) where created is False if a row was reused

        Raises:
            NotFoundError: If either entity does not exist
        """
        with self.db.transaction("link_or_reactivate") as conn:
            require_entities(conn, from_entity_id, to_entity_id)
            relation, created = relink(
                conn, from_entity_id, to_entity_id, relation_type, metadata, start_date
            )

        logger.debug(
            "Linked relation",
            extra={
                "relation_id": relation.id,
                "relation_type": relation.relation_type,
                "created": created,
            },
        )
        return relation, created

    async def set_active(self, relation_id: str, is_active: bool) -> Relation:
        """Move a relation between ACTIVE and INACTIVE.

        Deactivation stamps end_date; reactivation clears it. Deactivating an
        inactive relation keeps its original end_date.

        Raises:
            NotFoundError: If the relation does not exist
        """
        with self.db.transaction("set_relation_active") as conn:
            relation = fetch_relation(conn, relation_id)
            if relation is None:
                raise NotFoundError("Relation", relation_id)
            if is_active:
                relation = _reactivate(conn, relation, None)
            elif relation.is_active:
                now = now_ms()
                conn.execute(
                    """
                    UPDATE entity_relations
                    SET is_active = 0, end_date = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (now, now, relation_id),
                )
                relation.is_active = False
                relation.end_date = now
                relation.updated_at = now

        logger.debug(
            "Set relation active flag",
            extra={"relation_id": relation_id, "is_active": is_active},
        )
        return relation

    async def deactivate(self, relation_id: str) -> Relation:
        """Soft-delete: is_active=0, end_date=now.

        Raises:
            NotFoundError: If the relation does not exist
        """
        return await self.set_active(relation_id, False)

    async def deactivate_between(
        self, from_entity_id: str, to_entity_id: str, relation_type: str
    ) -> int:
        """Deactivate every active edge of a kind between two entities.

        Returns:
            Number of relations deactivated
        """
        now = now_ms()
        with self.db.transaction("deactivate_between") as conn:
            count = conn.execute(
                """
                UPDATE entity_relations
                SET is_active = 0, end_date = ?, updated_at = ?
                WHERE from_entity_id = ? AND to_entity_id = ? AND relation_type = ?
                  AND is_active = 1
                """,
                (now, now, from_entity_id, to_entity_id, tag(relation_type, "relationType")),
            ).rowcount

        logger.debug(
            "Deactivated relations",
            extra={"from": from_entity_id, "to": to_entity_id, "count": count},
        )
        return count

    async def remove(self, relation_id: str) -> bool:
        """Hard-delete a relation.

        Returns:
            True if a row was deleted, False if none existed
        """
        with self.db.transaction("remove_relation") as conn:
            deleted = conn.execute(
                "DELETE FROM entity_relations WHERE id = ?", (relation_id,)
            ).rowcount

        if deleted:
            logger.debug("Removed relation", extra={"relation_id": relation_id})
        return deleted > 0

    async def update_metadata(self, relation_id: str, patch: dict[str, Any]) -> Relation:
        """Shallow-merge patch into the stored metadata.

        Raises:
            NotFoundError: If the relation does not exist
        """
        with self.db.transaction("update_relation_metadata") as conn:
            relation = fetch_relation(conn, relation_id)
            if relation is None:
                raise NotFoundError("Relation", relation_id)
            relation.metadata = {**relation.metadata, **patch}
            relation.updated_at = now_ms()
            conn.execute(
                "UPDATE entity_relations SET metadata = ?, updated_at = ? WHERE id = ?",
                (dump_metadata(relation.metadata), relation.updated_at, relation_id),
            )

        logger.debug(
            "Updated relation metadata",
            extra={"relation_id": relation_id, "keys": sorted(patch)},
        )
        return relation

    async def get(self, relation_id: str) -> Relation | None:
        with self.db.connect("get_relation") as conn:
            return fetch_relation(conn, relation_id)

    async def relations_from(
        self, entity_id: str, relation_type: str | None = None, active_only: bool = True
    ) -> list[Relation]:
        """Outgoing relations with to_entity (and its values) loaded."""
        with self.db.connect("relations_from") as conn:
            return fetch_relations(conn, entity_id, Direction.FROM, relation_type, active_only)

    async def relations_to(
        self, entity_id: str, relation_type: str | None = None, active_only: bool = True
    ) -> list[Relation]:
        """Incoming relations with from_entity (and its values) loaded."""
        with self.db.connect("relations_to") as conn:
            return fetch_relations(conn, entity_id, Direction.TO, relation_type, active_only)
