"""
Error types for the universal data engine.

Every error raised by the engines derives from UdbError and carries:
- message: human readable description
- code: stable error code for programmatic handling
- details: additional context (ids, expected/actual values)

Taxonomy:
    - ValidationError: malformed smart code, bad field value, missing attribute
    - ReferentialError: referenced entity/relationship/transaction not found
    - CrossOrgAccessError: an id resolves to another organization
    - DuplicateCodeError: organization-scoped uniqueness collision
    - CycleError: hierarchical relationship would close a cycle
    - StaleVersionError: optimistic concurrency conflict
    - ImbalanceError: amounts or ledger sides do not balance
    - ActorNotFoundError: introspection actor does not exist
    - DeadlineExceededError: caller deadline expired before commit

Invariants:
    - All engine errors are recoverable by the caller
    - Storage errors (sqlite3.Error) are never wrapped
    - Error messages name the offending id or value
"""

from __future__ import annotations

from typing import Any


class UdbError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "UDB_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "error_code": self.code, "details": self.details}


class ValidationError(UdbError):
    """Payload validation failed.

    Raised when:
    - A smart code is malformed
    - A dynamic field value does not match its field_type
    - A required attribute is missing
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
        code: str = "VALIDATION_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class SmartCodeError(ValidationError):
    """Smart code does not match the grammar."""

    def __init__(self, smart_code: Any, errors: list[str], field_name: str | None = None) -> None:
        super().__init__(
            f"Invalid smart code '{smart_code}': {'; '.join(errors)}",
            field_name=field_name,
            errors=errors,
            code="INVALID_SMART_CODE",
        )
        self.smart_code = smart_code
        self.details["smart_code"] = smart_code


class InvalidTransitionError(ValidationError):
    """Transaction status does not allow the requested operation."""

    def __init__(self, transaction_id: str, status: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} transaction {transaction_id} in status '{status}'",
            field_name="transaction_status",
            code="INVALID_TRANSITION",
        )
        self.transaction_id = transaction_id
        self.status = status
        self.operation = operation
        self.details.update(
            {"transaction_id": transaction_id, "status": status, "operation": operation}
        )


class ReferentialError(UdbError):
    """Referenced resource does not exist.

    Raised when:
    - Entity, relationship or transaction is not found
    - A line or header references a missing entity
    - A hard delete would orphan transaction references
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
        code: str = "NOT_FOUND",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class CrossOrgAccessError(UdbError):
    """Supplied id belongs to a different organization than the caller's context."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        organization_id: str,
    ) -> None:
        super().__init__(
            f"{resource_type} {resource_id} does not belong to organization {organization_id}",
            code="CROSS_ORG_ACCESS",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "organization_id": organization_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.organization_id = organization_id


class DuplicateCodeError(UdbError):
    """Organization-scoped code is already taken."""

    def __init__(
        self,
        resource_type: str,
        code_value: str,
        organization_id: str | None = None,
        existing_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Duplicate {resource_type} code '{code_value}'",
            code="DUPLICATE_CODE",
            details={
                "resource_type": resource_type,
                "code": code_value,
                "organization_id": organization_id,
                "existing_id": existing_id,
            },
        )
        self.resource_type = resource_type
        self.code_value = code_value
        self.organization_id = organization_id
        self.existing_id = existing_id


class CycleError(UdbError):
    """Hierarchical relationship would create a cycle."""

    def __init__(
        self,
        relationship_type: str,
        from_entity_id: str,
        to_entity_id: str,
        path: list[str] | None = None,
    ) -> None:
        super().__init__(
            f"{relationship_type} edge {from_entity_id} -> {to_entity_id} would create a cycle",
            code="CYCLE_DETECTED",
            details={
                "relationship_type": relationship_type,
                "from_entity_id": from_entity_id,
                "to_entity_id": to_entity_id,
                "path": path or [],
            },
        )
        self.relationship_type = relationship_type
        self.from_entity_id = from_entity_id
        self.to_entity_id = to_entity_id
        self.path = path or []


class StaleVersionError(UdbError):
    """Entity was modified since the caller read it."""

    def __init__(
        self,
        entity_id: str,
        expected_version: int,
        actual_version: int,
    ) -> None:
        super().__init__(
            f"Entity {entity_id} is at version {actual_version}, expected {expected_version}",
            code="STALE_VERSION",
            details={
                "entity_id": entity_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ImbalanceError(UdbError):
    """Amounts do not reconcile.

    Raised when:
    - Header total differs from the sum of business lines
    - Ledger debit and credit totals differ
    """

    def __init__(
        self,
        message: str,
        expected: Any = None,
        actual: Any = None,
        transaction_id: str | None = None,
        currency: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="IMBALANCE",
            details={
                "expected": str(expected) if expected is not None else None,
                "actual": str(actual) if actual is not None else None,
                "transaction_id": transaction_id,
                "currency": currency,
            },
        )
        self.expected = expected
        self.actual = actual
        self.transaction_id = transaction_id
        self.currency = currency


class ActorNotFoundError(UdbError):
    """Introspection actor entity does not exist."""

    def __init__(self, actor_id: str) -> None:
        super().__init__(
            f"Actor entity not found: {actor_id}",
            code="ACTOR_NOT_FOUND",
            details={"actor_id": actor_id},
        )
        self.actor_id = actor_id


class DeadlineExceededError(UdbError):
    """Caller deadline expired; the unit of work was rolled back."""

    def __init__(self, operation: str, overrun_ms: int = 0) -> None:
        super().__init__(
            f"Deadline exceeded during {operation}",
            code="DEADLINE_EXCEEDED",
            details={"operation": operation, "overrun_ms": overrun_ms},
        )
        self.operation = operation
        self.overrun_ms = overrun_ms
