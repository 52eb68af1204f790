"""
Value store: one typed fact per (entity, attribute) pair.

Invariants:
    - At most one row per (entity_id, attribute_id), enforced by the
      UNIQUE key and written with INSERT ... ON CONFLICT DO UPDATE
    - Every write sets all six typed columns, so exactly one is non-null
      even when the attribute's data type changed since the last write
    - Empty incoming values are never written

How to change safely:
    - Keep reads tolerant: more than one populated column is resolved by
      coalesce() order, never raised
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError
from ..schema.types import DataType
from ..schema.values import COALESCE_ORDER, TypedValue, coalesce, is_empty, marshal, read_typed
from .attributes import ensure_attribute
from .database import Database, now_ms
from .records import Attribute, Value

logger = logging.getLogger(__name__)

# SQLite's default limit on host parameters is 999
_CHUNK = 500

_VALUE_COLUMNS = ", ".join(f"v.{column.value}" for column in COALESCE_ORDER)


@dataclass
class ValueWrite:
    """Outcome of a batch of attribute writes.

    Attributes:
        written: Attribute names that were stored
        skipped: Attribute names whose value was empty and not stored
    """

    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def upsert_value(
    conn: sqlite3.Connection, entity_id: str, attribute: Attribute, raw: Any
) -> TypedValue | None:
    """Write one value on an open connection; None if raw is empty."""
    if is_empty(raw):
        return None

    typed = marshal(raw, attribute.data_type)
    columns = typed.columns()
    now = now_ms()
    conn.execute(
        """
        INSERT INTO entity_values
        (id, entity_id, attribute_id, value_string, value_number, value_bool,
         value_date, value_datetime, value_text, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(entity_id, attribute_id) DO UPDATE SET
            value_string = excluded.value_string,
            value_number = excluded.value_number,
            value_bool = excluded.value_bool,
            value_date = excluded.value_date,
            value_datetime = excluded.value_datetime,
            value_text = excluded.value_text,
            updated_at = excluded.updated_at
        """,
        (
            str(uuid.uuid4()),
            entity_id,
            attribute.id,
            columns["value_string"],
            columns["value_number"],
            columns["value_bool"],
            columns["value_date"],
            columns["value_datetime"],
            columns["value_text"],
            now,
            now,
        ),
    )
    return typed


def write_values(
    conn: sqlite3.Connection,
    entity_id: str,
    entity_type: str,
    values: dict[str, Any],
) -> ValueWrite:
    """Write an attribute bag, creating unknown attributes on the way."""
    result = ValueWrite()
    for name, raw in values.items():
        if is_empty(raw):
            result.skipped.append(name)
            continue
        attribute = ensure_attribute(conn, name, raw, entity_type)
        upsert_value(conn, entity_id, attribute, raw)
        result.written.append(name)
    return result


def fetch_values(
    conn: sqlite3.Connection, entity_ids: Iterable[str]
) -> dict[str, dict[str, Any]]:
    """Coalesced values for many entities, one query per chunk of ids.

    Returns:
        entity_id -> {attribute name -> scalar}; every requested id is present
    """
    ids = list(dict.fromkeys(entity_ids))
    result: dict[str, dict[str, Any]] = {entity_id: {} for entity_id in ids}
    for start in range(0, len(ids), _CHUNK):
        chunk = ids[start : start + _CHUNK]
        placeholders = ", ".join("?" for _ in chunk)
        rows = conn.execute(
            f"""
            SELECT v.entity_id, a.name AS attribute_name, {_VALUE_COLUMNS}
            FROM entity_values v
            JOIN attributes a ON a.id = v.attribute_id
            WHERE v.entity_id IN ({placeholders})
            ORDER BY a.name
            """,
            chunk,
        ).fetchall()
        for row in rows:
            result[row["entity_id"]][row["attribute_name"]] = coalesce(row)
    return result


class ValueStore:
    """Typed value storage bound to (entity, attribute) pairs.

    Example:
        >>> values = ValueStore(db)
        >>> await values.set_value(student.id, gpa.id, 3.9)
        >>> await values.read_values(student.id)
        {'gpa': 3.9}
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def set_value(self, entity_id: str, attribute_id: str, raw: Any) -> TypedValue | None:
        """Upsert one value.

        Returns:
            The stored TypedValue, or None if raw was empty and nothing was written

        Raises:
            NotFoundError: If the entity or attribute does not exist
        """
        with self.db.transaction("set_value") as conn:
            if not conn.execute("SELECT 1 FROM entities WHERE id = ?", (entity_id,)).fetchone():
                raise NotFoundError("Entity", entity_id)
            row = conn.execute("SELECT * FROM attributes WHERE id = ?", (attribute_id,)).fetchone()
            if not row:
                raise NotFoundError("Attribute", attribute_id)
            typed = upsert_value(conn, entity_id, Attribute.from_row(row), raw)

        if typed is not None:
            logger.debug(
                "Set value",
                extra={
                    "entity_id": entity_id,
                    "attribute": row["name"],
                    "column": typed.column.value,
                },
            )
        return typed

    async def set_many(self, entity_id: str, values: dict[str, Any]) -> ValueWrite:
        """Upsert an attribute bag by name, in one transaction.

        Unknown names are registered from the value's runtime type.

        Raises:
            NotFoundError: If the entity does not exist
        """
        with self.db.transaction("set_values") as conn:
            row = conn.execute("SELECT type FROM entities WHERE id = ?", (entity_id,)).fetchone()
            if not row:
                raise NotFoundError("Entity", entity_id)
            result = write_values(conn, entity_id, row["type"], values)

        logger.debug(
            "Set values",
            extra={"entity_id": entity_id, "written": result.written, "skipped": result.skipped},
        )
        return result

    async def read_values(self, entity_id: str) -> dict[str, Any]:
        """All values of an entity as attribute name -> scalar."""
        with self.db.connect("read_values") as conn:
            return fetch_values(conn, [entity_id])[entity_id]

    async def read_value(self, entity_id: str, name: str) -> Any:
        """Strict read of one value.

        Returns:
            The value from the column matching the attribute's current data
            type; None if unset, if the attribute is unknown, or if the stored
            column does not match that type
        """
        with self.db.connect("read_value") as conn:
            row = conn.execute(
                f"""
                SELECT a.data_type, {_VALUE_COLUMNS}
                FROM entity_values v
                JOIN attributes a ON a.id = v.attribute_id
                WHERE v.entity_id = ? AND a.name = ?
                """,
                (entity_id, name),
            ).fetchone()
        if not row:
            return None
        return read_typed(row, DataType.from_str(row["data_type"]))

    async def list_values(self, entity_id: str) -> list[Value]:
        """Raw Value rows of an entity, with every storage column."""
        with self.db.connect("list_values") as conn:
            rows = conn.execute(
                f"""
                SELECT v.entity_id, v.attribute_id, a.name AS attribute_name,
                       {_VALUE_COLUMNS}, v.updated_at
                FROM entity_values v
                JOIN attributes a ON a.id = v.attribute_id
                WHERE v.entity_id = ?
                ORDER BY a.name
                """,
                (entity_id,),
            ).fetchall()
        return [Value.from_row(row) for row in rows]

    async def count(self, entity_id: str) -> int:
        with self.db.connect("count_values") as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM entity_values WHERE entity_id = ?", (entity_id,)
            ).fetchone()[0]
