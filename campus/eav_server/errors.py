"""
Error types for the EAV core.

This module defines the exception taxonomy surfaced to callers:
- EavError: Base exception
- NotFoundError: Entity/Attribute/Relation/Account id does not exist
- ValidationError: Missing required field or invalid enum value
- ConflictError: Unique key collision that cannot be upserted
- InfrastructureError: Backing store unreachable or query failure

Invariants:
    - All errors inherit from EavError
    - Every error carries a stable code for programmatic handling
    - Stores never swallow NotFoundError or ValidationError
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class EavError(Exception):
    """Base exception for all EAV core errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "EAV_ERROR"
        self.details = details or {}


class NotFoundError(EavError):
    """Requested record does not exist.

    Raised when:
    - Entity id is unknown
    - Relation id is unknown
    - Account id is unknown
    """

    def __init__(
        self,
        kind: str,
        resource_id: str,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"{kind} not found: {resource_id}",
            code="NOT_FOUND",
            details={"kind": kind, "id": resource_id},
        )
        self.kind = kind
        self.resource_id = resource_id


class ValidationError(EavError):
    """Input failed validation.

    Raised when:
    - A required field (e.g. entity name) is missing
    - dataType or category is not a known enum value
    - Required attributes are missing on a strict write
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class ConflictError(EavError):
    """Unique key already taken.

    Attribute names and (entity, attribute) pairs are upserted, so the
    only conflict that reaches callers is a duplicate account email.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, code="CONFLICT", details={"key": key})
        self.key = key


class InfrastructureError(EavError):
    """Backing store failure.

    Raised when:
    - The database file cannot be opened
    - A query fails for reasons unrelated to the caller's input
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INFRASTRUCTURE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation
