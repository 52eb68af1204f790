"""
Core type definitions for the EAV attribute system.

This module defines the closed vocabularies of the data model:
- DataType: How an attribute's raw value is interpreted and stored
- AttributeCategory: Grouping tag for attributes
- EntityType: Known entity kinds (the discriminant of an Entity)
- RelationType: Known relation tags
- AttributeDef: A catalog definition of a named, typed attribute

Invariants:
    - DataType and AttributeCategory values are closed sets; unknown
      strings are rejected with ValidationError
    - EntityType and RelationType are open: any non-empty upper-case tag
      is accepted, the enums only name the kinds the system ships with
    - Attribute names are unique across all entity kinds

How to change safely:
    - Add new data types together with a storage column in values.py
    - Never rename an enum value that is already persisted

Example:
    >>> from campus.eav_server.schema.types import AttributeCategory, AttributeDef, DataType
    >>> gpa = AttributeDef(
    ...     name="gpa",
    ...     display_name="GPA",
    ...     data_type=DataType.NUMBER,
    ...     category=AttributeCategory.ACADEMIC,
    ...     entity_types=("STUDENT",),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import ValidationError


class DataType(Enum):
    """Supported attribute data types.

    These map to exactly one storage column each (see values.py).
    """

    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"
    TEXT = "TEXT"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    URL = "URL"

    @classmethod
    def from_str(cls, value: str | DataType) -> DataType:
        """Convert string representation to DataType.

        Args:
            value: Name of the data type (case-insensitive)

        Returns:
            Corresponding DataType enum value

        Raises:
            ValidationError: If value is not a valid data type
        """
        if isinstance(value, DataType):
            return value
        for kind in cls:
            if kind.value == str(value).upper():
                return kind
        valid = [k.value for k in cls]
        raise ValidationError(
            f"Invalid dataType '{value}'. Valid types: {valid}", field_name="dataType"
        )


class AttributeCategory(Enum):
    """Grouping tag for attributes."""

    PERSONAL = "PERSONAL"
    ACADEMIC = "ACADEMIC"
    FACILITY = "FACILITY"
    SCHEDULE = "SCHEDULE"
    SYSTEM = "SYSTEM"
    CONTACT = "CONTACT"
    EMPLOYMENT = "EMPLOYMENT"

    @classmethod
    def from_str(cls, value: str | AttributeCategory) -> AttributeCategory:
        """Convert string representation to AttributeCategory.

        Raises:
            ValidationError: If value is not a valid category
        """
        if isinstance(value, AttributeCategory):
            return value
        for category in cls:
            if category.value == str(value).upper():
                return category
        valid = [c.value for c in cls]
        raise ValidationError(
            f"Invalid category '{value}'. Valid categories: {valid}", field_name="category"
        )


class EntityType(Enum):
    """Entity kinds shipped with the system."""

    STUDENT = "STUDENT"
    STAFF = "STAFF"
    PARENT = "PARENT"
    COURSE = "COURSE"
    COURSE_CONTENT = "COURSE_CONTENT"
    DEPARTMENT = "DEPARTMENT"
    ASSESSMENT = "ASSESSMENT"
    ASSIGNMENT = "ASSIGNMENT"
    EVENT = "EVENT"
    ANNOUNCEMENT = "ANNOUNCEMENT"
    ROOM = "ROOM"
    BUILDING = "BUILDING"


class RelationType(Enum):
    """Relation tags shipped with the system."""

    ENROLLED_IN = "ENROLLED_IN"
    TEACHES = "TEACHES"
    PARENT_OF = "PARENT_OF"
    BELONGS_TO = "BELONGS_TO"
    WORKS_IN = "WORKS_IN"
    ASSESSMENT_FOR = "ASSESSMENT_FOR"
    ASSIGNMENT_FOR = "ASSIGNMENT_FOR"
    SUBMITTED_FOR = "SUBMITTED_FOR"
    GRADED_IN = "GRADED_IN"


class AccountRole(Enum):
    """Roles a login account can hold."""

    ADMIN = "ADMIN"
    STAFF = "STAFF"
    STUDENT = "STUDENT"
    PARENT = "PARENT"

    @classmethod
    def from_str(cls, value: str | AccountRole) -> AccountRole:
        """Convert string representation to AccountRole.

        Raises:
            ValidationError: If value is not a valid role
        """
        if isinstance(value, AccountRole):
            return value
        for role in cls:
            if role.value == str(value).upper():
                return role
        valid = [r.value for r in cls]
        raise ValidationError(f"Invalid role '{value}'. Valid roles: {valid}", field_name="role")


# Entity kinds that cannot be created without a display name
NAME_REQUIRED_TYPES = frozenset(
    {
        EntityType.DEPARTMENT.value,
        EntityType.ASSESSMENT.value,
        EntityType.ASSIGNMENT.value,
        EntityType.ANNOUNCEMENT.value,
        EntityType.EVENT.value,
    }
)


def tag(value: str | Enum, what: str = "type") -> str:
    """Normalize an entity or relation kind to its persisted tag.

    Args:
        value: Enum member or free-form string
        what: Field name used in the error message

    Returns:
        Upper-case tag string

    Raises:
        ValidationError: If the tag is empty
    """
    if isinstance(value, Enum):
        return str(value.value)
    text = str(value or "").strip().upper()
    if not text:
        raise ValidationError(f"{what} is required", field_name=what)
    return text


@dataclass(frozen=True)
class AttributeDef:
    """Catalog definition of a single named attribute.

    Attributes:
        name: Globally unique attribute name (e.g. "firstName")
        display_name: Human-readable label
        data_type: Storage interpretation of raw values
        category: Grouping tag
        entity_types: Entity kinds expected to carry this attribute
        is_required: Whether the attribute is mandatory for those kinds
        description: Optional free text
    """

    name: str
    display_name: str
    data_type: DataType
    category: AttributeCategory
    entity_types: tuple[str, ...] = ()
    is_required: bool = False
    description: str | None = None

    def __post_init__(self) -> None:
        """Validate attribute definition."""
        if not self.name:
            raise ValidationError("Attribute name cannot be empty", field_name="name")
        if not isinstance(self.data_type, DataType):
            object.__setattr__(self, "data_type", DataType.from_str(self.data_type))
        if not isinstance(self.category, AttributeCategory):
            object.__setattr__(self, "category", AttributeCategory.from_str(self.category))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "displayName": self.display_name,
            "dataType": self.data_type.value,
            "category": self.category.value,
            "entityTypes": list(self.entity_types),
            "isRequired": self.is_required,
        }
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttributeDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            display_name=data.get("displayName") or data["name"],
            data_type=DataType.from_str(data.get("dataType", "STRING")),
            category=AttributeCategory.from_str(data.get("category", "PERSONAL")),
            entity_types=tuple(data.get("entityTypes", ())),
            is_required=bool(data.get("isRequired", False)),
            description=data.get("description"),
        )
