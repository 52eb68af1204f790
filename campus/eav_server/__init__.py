"""
Campus EAV Server - schema-less-over-relational storage for university data.

Every domain object (students, staff, courses, departments, parents,
assessments, assignments, events, ...) is stored as generic rows:

    ┌───────────┐      ┌──────────────┐      ┌───────────┐
    │ Attribute │◀─────│    Value     │─────▶│  Entity   │
    │ (by name) │      │ (one typed   │      │ (type,    │
    └───────────┘      │  column set) │      │  name)    │
                       └──────────────┘      └─────┬─────┘
                                                   │ from / to
                                             ┌─────┴──────────┐
                                             │ EntityRelation │
                                             │ (soft-active,  │
                                             │  metadata)     │
                                             └────────────────┘

The projection layer flattens these rows back into JSON-friendly objects.

Invariants:
    - Attribute names are unique across every entity kind
    - Exactly one Value row per (entity_id, attribute_id)
    - Exactly one typed column of a Value row is non-null
    - An Entity's type never changes after creation
    - Deleting an Entity deletes its Values and Relations first

How to change safely:
    - Add new data types together with their storage column mapping
    - Never repurpose a typed column for a different data type
    - Keep the projector's field fallback chains append-only

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
