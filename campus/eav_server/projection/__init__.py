"""
Projection module - read-side reconstruction of domain objects.

Turns generic Entity + Value + Relation records into flat JSON objects,
with fixed field-name fallback chains for COURSE and DEPARTMENT kinds.
"""

from .projector import (
    Projector,
    RelationSpec,
    extract_course_code,
    extract_course_name,
    extract_department_code,
    extract_department_name,
    relation_fields,
)

__all__ = [
    "Projector",
    "RelationSpec",
    "extract_course_code",
    "extract_course_name",
    "extract_department_code",
    "extract_department_name",
    "relation_fields",
]
