"""
Record types returned by the EAV stores.

These are plain dataclasses built from sqlite3.Row objects; they carry no
database handle and can be passed freely between stores and the projector.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..schema.metadata import load_metadata, parse_metadata
from ..schema.types import AttributeCategory, DataType
from ..schema.values import COALESCE_ORDER, coalesce


class RelationStatus(Enum):
    """Effective status of a relation."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


@dataclass
class Attribute:
    """A registered attribute.

    Attributes:
        id: Attribute identifier (UUID)
        name: Globally unique name
        display_name: Human-readable label
        data_type: Storage interpretation of values
        category: Grouping tag
        entity_types: Entity kinds known to carry this attribute
        is_required: Whether required for those kinds
        description: Optional free text
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
    """

    id: str
    name: str
    display_name: str
    data_type: DataType
    category: AttributeCategory
    entity_types: list[str]
    is_required: bool
    description: str | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Attribute:
        try:
            entity_types = json.loads(row["entity_types"] or "[]")
        except ValueError:
            entity_types = []
        return cls(
            id=row["id"],
            name=row["name"],
            display_name=row["display_name"],
            data_type=DataType.from_str(row["data_type"]),
            category=AttributeCategory.from_str(row["category"]),
            entity_types=list(entity_types),
            is_required=bool(row["is_required"]),
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "dataType": self.data_type.value,
            "category": self.category.value,
            "entityTypes": list(self.entity_types),
            "isRequired": self.is_required,
            "description": self.description,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Value:
    """One stored Value row with its attribute name."""

    entity_id: str
    attribute_id: str
    attribute_name: str
    columns: dict[str, Any]
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Value:
        return cls(
            entity_id=row["entity_id"],
            attribute_id=row["attribute_id"],
            attribute_name=row["attribute_name"],
            columns={column.value: row[column.value] for column in COALESCE_ORDER},
            updated_at=row["updated_at"],
        )

    @property
    def value(self) -> Any:
        return coalesce(self.columns)

    @property
    def populated(self) -> list[str]:
        """Names of the non-null storage columns."""
        return [name for name, stored in self.columns.items() if stored is not None]


@dataclass
class Entity:
    """A generic domain object.

    Attributes:
        id: Entity identifier (UUID)
        type: Kind discriminant (STUDENT, COURSE, ...), immutable
        name: Optional display name
        description: Optional description
        is_active: Active flag
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        values: Attribute name -> scalar, when loaded
        relations_from: Outgoing relations, when loaded
        relations_to: Incoming relations, when loaded
    """

    id: str
    type: str
    name: str | None
    description: str | None
    is_active: bool
    created_at: int
    updated_at: int
    values: dict[str, Any] = field(default_factory=dict)
    relations_from: list[Relation] | None = None
    relations_to: list[Relation] | None = None

    @classmethod
    def from_row(
        cls, row: sqlite3.Row, values: dict[str, Any] | None = None, prefix: str = ""
    ) -> Entity:
        return cls(
            id=row[f"{prefix}id"],
            type=row[f"{prefix}type"],
            name=row[f"{prefix}name"],
            description=row[f"{prefix}description"],
            is_active=bool(row[f"{prefix}is_active"]),
            created_at=row[f"{prefix}created_at"],
            updated_at=row[f"{prefix}updated_at"],
            values=values or {},
        )


@dataclass
class Relation:
    """A directed, typed edge between two entities.

    Attributes:
        id: Relation identifier (UUID)
        from_entity_id: Source entity
        to_entity_id: Target entity
        relation_type: Edge tag (ENROLLED_IN, TEACHES, ...)
        is_active: Soft-delete flag
        start_date: Start timestamp (Unix ms)
        end_date: End timestamp, set on deactivation (Unix ms)
        metadata: Opaque payload, {} when absent or unparseable
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
        from_entity: Source entity with values, when joined
        to_entity: Target entity with values, when joined
    """

    id: str
    from_entity_id: str
    to_entity_id: str
    relation_type: str
    is_active: bool
    start_date: int | None
    end_date: int | None
    metadata: dict[str, Any]
    created_at: int
    updated_at: int
    from_entity: Entity | None = None
    to_entity: Entity | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Relation:
        return cls(
            id=row["id"],
            from_entity_id=row["from_entity_id"],
            to_entity_id=row["to_entity_id"],
            relation_type=row["relation_type"],
            is_active=bool(row["is_active"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            metadata=load_metadata(row["metadata"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def status(self) -> RelationStatus:
        return RelationStatus.ACTIVE if self.is_active else RelationStatus.INACTIVE

    @property
    def typed_metadata(self) -> Any:
        return parse_metadata(self.relation_type, self.metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fromEntityId": self.from_entity_id,
            "toEntityId": self.to_entity_id,
            "relationType": self.relation_type,
            "isActive": self.is_active,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "metadata": dict(self.metadata),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Account:
    """A login identity, optionally bound to one entity."""

    id: str
    email: str
    password_hash: str
    role: str
    is_active: bool
    must_change_password: bool
    temp_password: str | None
    last_login: int | None
    entity_id: str | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Account:
        return cls(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            role=row["role"],
            is_active=bool(row["is_active"]),
            must_change_password=bool(row["must_change_password"]),
            temp_password=row["temp_password"],
            last_login=row["last_login"],
            entity_id=row["entity_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Public view; the password hash is never included."""
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "isActive": self.is_active,
            "mustChangePassword": self.must_change_password,
            "lastLogin": self.last_login,
            "entityId": self.entity_id,
            "createdAt": self.created_at,
        }
