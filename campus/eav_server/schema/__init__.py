"""
Schema module for the EAV core - attribute typing and value marshalling.

This module provides:
- DataType / AttributeCategory closed vocabularies
- EntityType / RelationType known kinds
- AttributeDef catalog definitions and the predefined catalog
- Typed-value marshalling between raw scalars and storage columns
- Typed relation metadata variants

Invariants:
    - Each DataType maps to exactly one storage column
    - Attribute names are global, not scoped per entity kind
"""

from .catalog import ATTRIBUTE_CATALOG
from .metadata import (
    EnrollmentMeta,
    GradeMeta,
    SubmissionMeta,
    TeachingMeta,
    dump_metadata,
    load_metadata,
    parse_metadata,
)
from .types import (
    NAME_REQUIRED_TYPES,
    AccountRole,
    AttributeCategory,
    AttributeDef,
    DataType,
    EntityType,
    RelationType,
    tag,
)
from .values import (
    TypedValue,
    ValueColumn,
    coalesce,
    infer_data_type,
    is_empty,
    marshal,
    read_typed,
)

__all__ = [
    "ATTRIBUTE_CATALOG",
    "AccountRole",
    "AttributeCategory",
    "AttributeDef",
    "DataType",
    "EnrollmentMeta",
    "EntityType",
    "GradeMeta",
    "NAME_REQUIRED_TYPES",
    "RelationType",
    "SubmissionMeta",
    "TeachingMeta",
    "TypedValue",
    "ValueColumn",
    "coalesce",
    "dump_metadata",
    "infer_data_type",
    "is_empty",
    "load_metadata",
    "marshal",
    "parse_metadata",
    "read_typed",
    "tag",
]
