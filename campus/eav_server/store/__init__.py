"""
Store module for the EAV core - SQLite persistence.

This module provides:
- Database: connection handling, schema and transactions
- AttributeRegistry: named, typed attributes (upsert by name)
- ValueStore: one typed value per (entity, attribute)
- EntityStore: generic typed nodes with cascade delete
- RelationStore: soft-activatable typed edges and traversal
- AccountStore: login identities bound to entities
"""

from .accounts import AccountStore
from .attributes import AttributeRegistry
from .database import Database, now_ms
from .entities import EntityStore
from .records import Account, Attribute, Entity, Relation, RelationStatus, Value
from .relations import Direction, RelationStore
from .values import ValueStore, ValueWrite

__all__ = [
    "Account",
    "AccountStore",
    "Attribute",
    "AttributeRegistry",
    "Database",
    "Direction",
    "Entity",
    "EntityStore",
    "Relation",
    "RelationStatus",
    "RelationStore",
    "Value",
    "ValueStore",
    "ValueWrite",
    "now_ms",
]
