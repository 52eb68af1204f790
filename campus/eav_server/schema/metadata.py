"""
Typed views over relation metadata.

Relation metadata is persisted as an opaque JSON object. These variants give
the projection layer typed access for the relation kinds that carry a known
payload shape:

- ENROLLED_IN   -> EnrollmentMeta {grade, attendance}
- SUBMITTED_FOR -> SubmissionMeta {content, fileUrl, submittedAt, score,
                                   feedback, isLate, status}
- GRADED_IN     -> GradeMeta {score, feedback, status, gradedAt}
- TEACHES       -> TeachingMeta {semester, year, schedule}

Keys a variant does not know are kept in ``extra`` so a round trip through
to_dict() never drops data written by another caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from .types import RelationType

logger = logging.getLogger(__name__)


def load_metadata(raw: str | bytes | dict[str, Any] | None) -> dict[str, Any]:
    """Parse stored metadata; unparseable or non-object payloads become {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable relation metadata", extra={"raw": str(raw)[:200]})
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def dump_metadata(metadata: dict[str, Any] | None) -> str | None:
    """Serialize metadata for storage; None stays None."""
    if metadata is None:
        return None
    return json.dumps(metadata, default=str, sort_keys=True)


@dataclass
class _Meta:
    """Base for typed metadata variants.

    Subclasses map dataclass attribute names to camelCase payload keys
    through KEYS.
    """

    KEYS: ClassVar[dict[str, str]] = {}

    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _Meta:
        known = {attr: data.get(key) for attr, key in cls.KEYS.items()}
        extra = {k: v for k, v in data.items() if k not in cls.KEYS.values()}
        return cls(extra=extra, **known)

    def to_dict(self) -> dict[str, Any]:
        result = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is not None:
                result[self.KEYS[f.name]] = value
        return result


@dataclass
class EnrollmentMeta(_Meta):
    KEYS: ClassVar[dict[str, str]] = {"grade": "grade", "attendance": "attendance"}

    grade: Any = None
    attendance: Any = None


@dataclass
class SubmissionMeta(_Meta):
    KEYS: ClassVar[dict[str, str]] = {
        "content": "content",
        "file_url": "fileUrl",
        "submitted_at": "submittedAt",
        "score": "score",
        "feedback": "feedback",
        "is_late": "isLate",
        "status": "status",
    }

    content: Any = None
    file_url: Any = None
    submitted_at: Any = None
    score: Any = None
    feedback: Any = None
    is_late: Any = None
    status: Any = None


@dataclass
class GradeMeta(_Meta):
    KEYS: ClassVar[dict[str, str]] = {
        "score": "score",
        "feedback": "feedback",
        "status": "status",
        "graded_at": "gradedAt",
    }

    score: Any = None
    feedback: Any = None
    status: Any = None
    graded_at: Any = None


@dataclass
class TeachingMeta(_Meta):
    KEYS: ClassVar[dict[str, str]] = {
        "semester": "semester",
        "year": "year",
        "schedule": "schedule",
    }

    semester: Any = None
    year: Any = None
    schedule: Any = None


METADATA_TYPES: dict[str, type[_Meta]] = {
    RelationType.ENROLLED_IN.value: EnrollmentMeta,
    RelationType.SUBMITTED_FOR.value: SubmissionMeta,
    RelationType.GRADED_IN.value: GradeMeta,
    RelationType.TEACHES.value: TeachingMeta,
}


def parse_metadata(relation_type: str, data: dict[str, Any]) -> _Meta | dict[str, Any]:
    """Typed variant for known relation kinds, the plain dict otherwise."""
    variant = METADATA_TYPES.get(relation_type)
    if variant is None:
        return data
    return variant.from_dict(data)
