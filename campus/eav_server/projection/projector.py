"""
Projection of entities into flat, JSON-ready objects.

project(entity) merges the core envelope with the entity's attribute
values:

    {id, type, name, description, isActive, createdAt}  <- core fields
    {...attribute name -> scalar}                        <- override core

project_with_relations(entity, specs) then attaches, for every
RelationSpec, a list of projected far-side entities, each carrying the
relation-level fields of its relation kind (these override the far side's
own fields).

Invariants:
    - Attribute values are applied after the core envelope: an attribute
      literally named "name" wins over Entity.name
    - COURSE projections always carry name/courseName/code/courseCode,
      resolved through fixed fallback chains
    - DEPARTMENT projections always carry name, resolved through a
      fallback chain

How to change safely:
    - The fallback chains are read by clients that stored course and
      department fields under different historical names; only append
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from ..errors import ValidationError
from ..schema.types import EntityType, RelationType, tag
from ..store.records import Entity, Relation
from ..store.relations import Direction, RelationStore

logger = logging.getLogger(__name__)

COURSE_NAME_FIELDS = ("name", "courseName", "title", "displayName", "course_name")
COURSE_CODE_FIELDS = ("code", "courseCode", "course_code", "shortCode")
DEPARTMENT_NAME_FIELDS = ("name", "departmentName")
DEPARTMENT_CODE_FIELDS = ("departmentCode", "code")

UNNAMED_COURSE = "Unnamed Course"
NO_COURSE_CODE = "N/A"
UNKNOWN_DEPARTMENT = "Unknown Department"


def _first(fields: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = fields.get(key)
        if value is not None and value != "":
            return value
    return None


def extract_course_name(fields: Mapping[str, Any]) -> Any:
    """Course display name: name, courseName, title, displayName, course_name."""
    value = _first(fields, COURSE_NAME_FIELDS)
    return UNNAMED_COURSE if value is None else value


def extract_course_code(fields: Mapping[str, Any]) -> Any:
    """Course code: code, courseCode, course_code, shortCode."""
    value = _first(fields, COURSE_CODE_FIELDS)
    return NO_COURSE_CODE if value is None else value


def extract_department_name(fields: Mapping[str, Any]) -> Any:
    value = _first(fields, DEPARTMENT_NAME_FIELDS)
    return UNKNOWN_DEPARTMENT if value is None else value


def extract_department_code(fields: Mapping[str, Any]) -> Any:
    """Department code, or None if neither departmentCode nor code is set."""
    return _first(fields, DEPARTMENT_CODE_FIELDS)


@dataclass(frozen=True)
class RelationSpec:
    """Which relations to attach to a projection, and under which key.

    Attributes:
        relation_type: Relation kind to traverse (ENROLLED_IN, ...)
        direction: FROM follows outgoing edges, TO follows incoming ones
        as_: Output key for the projected list
        active_only: Skip deactivated relations
    """

    relation_type: str
    direction: Direction = Direction.FROM
    as_: str = ""
    active_only: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "relation_type", tag(self.relation_type, "relationType"))
        object.__setattr__(self, "direction", Direction.from_str(self.direction))
        if not self.as_:
            object.__setattr__(self, "as_", self.relation_type.lower())

    @classmethod
    def parse(cls, text: str) -> RelationSpec:
        """Parse "TYPE[:direction[:as[:all]]]", e.g. "ENROLLED_IN:from:courses".

        A trailing ":all" includes deactivated relations.

        Raises:
            ValidationError: If the text is empty or malformed
        """
        parts = [part.strip() for part in text.split(":")]
        if not parts[0] or len(parts) > 4:
            raise ValidationError(f"Invalid relation spec '{text}'", field_name="include")
        active_only = True
        if len(parts) == 4:
            if parts[3].lower() != "all":
                raise ValidationError(f"Invalid relation spec '{text}'", field_name="include")
            active_only = False
        return cls(
            relation_type=parts[0],
            direction=parts[1] if len(parts) > 1 and parts[1] else Direction.FROM,
            as_=parts[2] if len(parts) > 2 else "",
            active_only=active_only,
        )


def _json_scalar(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _status(relation: Relation, inactive: str = "inactive") -> str:
    return "active" if relation.is_active else inactive


def relation_fields(relation: Relation) -> dict[str, Any]:
    """Relation-level fields attached to a projected far-side entity."""
    meta = relation.metadata
    kind = relation.relation_type

    if kind == RelationType.ENROLLED_IN.value:
        grade = meta.get("grade")
        attendance = meta.get("attendance")
        return {
            "enrollmentId": relation.id,
            "grade": "N/A" if grade is None else grade,
            "attendance": 0 if attendance is None else attendance,
            "enrolledAt": relation.start_date or relation.created_at,
            "status": _status(relation, "dropped"),
        }

    if kind == RelationType.SUBMITTED_FOR.value:
        return {
            **meta,
            "submissionId": relation.id,
            "submittedAt": meta.get("submittedAt") or relation.created_at,
            "status": meta.get("status") or "submitted",
        }

    if kind == RelationType.GRADED_IN.value:
        return {
            "gradeId": relation.id,
            "score": meta.get("score"),
            "feedback": meta.get("feedback"),
            "status": meta.get("status") or "pending",
            "gradedAt": meta.get("gradedAt"),
        }

    if kind == RelationType.TEACHES.value:
        return {
            "relationId": relation.id,
            "semester": meta.get("semester"),
            "year": meta.get("year"),
            "schedule": meta.get("schedule"),
            "startDate": relation.start_date,
            "endDate": relation.end_date,
        }

    return {
        "relationId": relation.id,
        "relationType": kind,
        "metadata": dict(meta),
        "status": _status(relation),
    }


class Projector:
    """Builds flat projections of entities.

    Example:
        >>> projector = Projector(relations)
        >>> await projector.project_with_relations(
        ...     student, [RelationSpec.parse("ENROLLED_IN:from:courses")]
        ... )
        {'id': ..., 'type': 'STUDENT', 'firstName': 'Ada', 'courses': [...]}
    """

    def __init__(self, relations: RelationStore | None = None) -> None:
        self.relations = relations

    def project(self, entity: Entity) -> dict[str, Any]:
        """Flatten an entity: core envelope, then attribute values."""
        result: dict[str, Any] = {
            "id": entity.id,
            "type": entity.type,
            "name": entity.name,
            "description": entity.description,
            "isActive": entity.is_active,
            "createdAt": entity.created_at,
        }
        for key, value in entity.values.items():
            result[key] = _json_scalar(value)

        if entity.type == EntityType.COURSE.value:
            result["name"] = result["courseName"] = extract_course_name(result)
            result["code"] = result["courseCode"] = extract_course_code(result)
        elif entity.type == EntityType.DEPARTMENT.value:
            result["name"] = extract_department_name(result)
            code = extract_department_code(result)
            if code is not None:
                result["code"] = code
        return result

    def project_relation(self, relation: Relation, direction: Direction) -> dict[str, Any]:
        """Far-side projection merged with the relation's own fields."""
        far = relation.to_entity if direction is Direction.FROM else relation.from_entity
        item = self.project(far) if far is not None else {}
        item.update(relation_fields(relation))
        return item

    async def project_with_relations(
        self, entity: Entity, specs: Iterable[RelationSpec]
    ) -> dict[str, Any]:
        """Projection with one list of related items per spec."""
        result = self.project(entity)
        specs = list(specs)
        if specs and self.relations is None:
            raise RuntimeError("Projector needs a RelationStore to follow relations")

        for spec in specs:
            if spec.direction is Direction.FROM:
                related = await self.relations.relations_from(
                    entity.id, spec.relation_type, spec.active_only
                )
            else:
                related = await self.relations.relations_to(
                    entity.id, spec.relation_type, spec.active_only
                )
            result[spec.as_] = [self.project_relation(r, spec.direction) for r in related]

        logger.debug(
            "Projected entity with relations",
            extra={"entity_id": entity.id, "specs": [s.as_ for s in specs]},
        )
        return result

    def project_loaded(self, entity: Entity, specs: Iterable[RelationSpec]) -> dict[str, Any]:
        """Like project_with_relations, over relations already attached to the entity.

        Raises:
            ValueError: If a spec's direction was not loaded onto the entity
        """
        result = self.project(entity)
        for spec in specs:
            loaded = (
                entity.relations_from if spec.direction is Direction.FROM else entity.relations_to
            )
            if loaded is None:
                raise ValueError(
                    f"Relations {spec.direction.value} entity {entity.id} were not loaded"
                )
            result[spec.as_] = [
                self.project_relation(r, spec.direction)
                for r in loaded
                if r.relation_type == spec.relation_type and (r.is_active or not spec.active_only)
            ]
        return result
