"""
Core type definitions for the universal schema.

The engine models every business concept with six generic relations:
- Organization: tenant boundary
- Entity: any addressable business object
- DynamicField: one typed attribute value of an Entity
- Relationship: directed, typed edge between two Entities
- Transaction: business event header
- TransactionLine: one line of a Transaction

Dynamic field values are a tagged union (FieldValue) so exactly one value
slot is ever populated and it always matches the field type.

Invariants:
    - Every row carries exactly one organization_id
    - Type tags (entity_type, relationship_type, transaction_type) are upper-case
    - Monetary values are Decimal, never float
    - (entity_id, field_name) is unique

How to change safely:
    - New field types need a FieldValue variant, a storage slot and a parser branch
    - Never reorder or rename TransactionStatus values; they are persisted
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from ..errors import ValidationError


class FieldType(Enum):
    """Supported dynamic field types."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"

    @classmethod
    def from_str(cls, value: str) -> FieldType:
        """Convert string representation to FieldType.

        Raises:
            ValueError: If value is not a valid field type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field type '{value}'. Valid types: {valid}")

    @property
    def slot(self) -> str:
        """Storage column holding values of this type."""
        return f"field_value_{self.value}"


class TransactionStatus(Enum):
    """Transaction lifecycle: draft -> posted -> (void | reversed)."""

    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"
    REVERSED = "reversed"


class LedgerSide(Enum):
    """Side of a ledger line."""

    DR = "DR"
    CR = "CR"

    def opposite(self) -> LedgerSide:
        return LedgerSide.CR if self is LedgerSide.DR else LedgerSide.DR


# --- Field values ---


@dataclass(frozen=True)
class TextValue:
    value: str
    field_type = FieldType.TEXT


@dataclass(frozen=True)
class NumberValue:
    value: Decimal
    field_type = FieldType.NUMBER


@dataclass(frozen=True)
class BooleanValue:
    value: bool
    field_type = FieldType.BOOLEAN


@dataclass(frozen=True)
class DateValue:
    value: datetime
    field_type = FieldType.DATE


@dataclass(frozen=True)
class JsonValue:
    value: Any
    field_type = FieldType.JSON

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JsonValue):
            return NotImplemented
        return _canonical_json(self.value) == _canonical_json(other.value)

    def __hash__(self) -> int:
        return hash(_canonical_json(self.value))


FieldValue = Union[TextValue, NumberValue, BooleanValue, DateValue, JsonValue]


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def to_decimal(value: Any, name: str) -> Decimal:
    """Convert a payload value to Decimal without float rounding.

    Floats are converted through their shortest repr, so 0.1 becomes Decimal("0.1").

    Raises:
        ValidationError: If value is not numeric
    """
    if isinstance(value, bool):
        raise ValidationError(f"Field '{name}' must be a number, got bool", field_name=name)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValidationError(
                f"Field '{name}' must be a number, got '{value}'", field_name=name
            )
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise ValidationError(
            f"Field '{name}' must be a number, got {type(value).__name__}", field_name=name
        )
    if not result.is_finite():
        raise ValidationError(f"Field '{name}' must be finite", field_name=name)
    return result


def to_int(value: Any, name: str) -> int:
    """Convert a payload value (int, integral float or numeric string) to int.

    Raises:
        ValidationError: If value is not an integer
    """
    if isinstance(value, bool):
        raise ValidationError(f"'{name}' must be an integer, got bool", field_name=name)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValidationError(f"'{name}' must be an integer, got '{value}'", field_name=name)
    raise ValidationError(
        f"'{name}' must be an integer, got {type(value).__name__}", field_name=name
    )


def to_datetime(value: Any, name: str) -> datetime:
    """Convert a payload value to an aware UTC datetime.

    Raises:
        ValidationError: If value is not a date, datetime or ISO-8601 string
    """
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(
                f"Field '{name}' must be an ISO-8601 date, got '{value}'", field_name=name
            )
    else:
        raise ValidationError(
            f"Field '{name}' must be a date, got {type(value).__name__}", field_name=name
        )
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


def make_field_value(field_type: FieldType, value: Any, name: str) -> FieldValue:
    """Build the FieldValue variant for field_type, rejecting mismatched values.

    Raises:
        ValidationError: If value does not match field_type
    """
    if value is None:
        raise ValidationError(f"Field '{name}' has no value", field_name=name)

    if field_type is FieldType.TEXT:
        if not isinstance(value, str):
            raise ValidationError(
                f"Field '{name}' must be text, got {type(value).__name__}", field_name=name
            )
        return TextValue(value)
    if field_type is FieldType.NUMBER:
        return NumberValue(to_decimal(value, name))
    if field_type is FieldType.BOOLEAN:
        if not isinstance(value, bool):
            raise ValidationError(
                f"Field '{name}' must be a boolean, got {type(value).__name__}", field_name=name
            )
        return BooleanValue(value)
    if field_type is FieldType.DATE:
        return DateValue(to_datetime(value, name))
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Field '{name}' must be JSON serializable", field_name=name)
    return JsonValue(value)


def json_object(value: Any, name: str) -> dict[str, Any]:
    """Validate a caller-supplied JSON object (None reads as {}).

    Returns the value as it will read back from storage (tuples become
    lists, keys become strings), so stored and supplied forms compare equal.

    Raises:
        ValidationError: If value is not an object or not JSON serializable
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"'{name}' must be an object", field_name=name)
    try:
        encoded = json.dumps(value, allow_nan=False)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be JSON serializable", field_name=name)
    return json.loads(encoded)


def field_value_to_python(field_value: FieldValue) -> Any:
    """Plain value for flattened reads (dates as ISO strings)."""
    if isinstance(field_value, DateValue):
        return field_value.value.isoformat()
    return field_value.value


def normalize_type_tag(value: Any, name: str) -> str:
    """Upper-case a type tag, rejecting empty or non-string values."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{name}' is required", field_name=name)
    return value.strip().upper()


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


# --- Rows ---


@dataclass
class Organization:
    """A tenant.

    Attributes:
        id: Organization identifier (UUID)
        name: Display name
        code: Globally unique code
        org_type: Free-form organization type
        status: Lifecycle status
    """

    id: str
    name: str
    code: str
    org_type: str = "business"
    status: str = "active"
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_name": self.name,
            "organization_code": self.code,
            "organization_type": self.org_type,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class DynamicField:
    """One typed attribute value attached to exactly one Entity."""

    entity_id: str
    organization_id: str
    field_name: str
    value: FieldValue
    smart_code: str
    created_at: int = 0
    updated_at: int = 0

    @property
    def field_type(self) -> FieldType:
        return self.value.field_type

    def same_content(self, other: DynamicField) -> bool:
        return (
            self.field_name == other.field_name
            and self.value == other.value
            and self.smart_code == other.smart_code
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_name": self.field_name,
            "field_type": self.field_type.value,
            "value": field_value_to_python(self.value),
            "smart_code": self.smart_code,
        }


@dataclass
class Entity:
    """Any addressable business object.

    Attributes:
        id: Entity identifier (UUID)
        organization_id: Owning organization
        entity_type: Upper-case type tag
        entity_name: Display name
        entity_code: Optional business code
        smart_code: Validated smart code
        status: Lifecycle status
        metadata: Semi-structured document
        version: Incremented on each effective update
        dynamic_fields: Attached fields keyed by field_name (populated on reads)
    """

    id: str
    organization_id: str
    entity_type: str
    entity_name: str
    smart_code: str
    entity_code: str | None = None
    status: str = "active"
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    updated_by: str | None = None
    created_at: int = 0
    updated_at: int = 0
    version: int = 1
    dynamic_fields: dict[str, DynamicField] = field(default_factory=dict)

    def field_values(self) -> dict[str, Any]:
        return {
            name: field_value_to_python(df.value) for name, df in self.dynamic_fields.items()
        }

    def to_dict(self, include_dynamic: bool = True) -> dict[str, Any]:
        """Flatten the entity and its dynamic fields into one record."""
        record = {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity_type": self.entity_type,
            "entity_name": self.entity_name,
            "entity_code": self.entity_code,
            "smart_code": self.smart_code,
            "status": self.status,
            "metadata": self.metadata,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }
        if include_dynamic:
            record["dynamic"] = {name: df.to_dict() for name, df in self.dynamic_fields.items()}
            for name, value in self.field_values().items():
                record.setdefault(name, value)
        return record


@dataclass
class Relationship:
    """Directed, typed edge between two Entities of one organization."""

    id: str
    organization_id: str
    from_entity_id: str
    to_entity_id: str
    relationship_type: str
    smart_code: str
    relationship_data: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    effective_date: str | None = None
    created_by: str | None = None
    created_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "from_entity_id": self.from_entity_id,
            "to_entity_id": self.to_entity_id,
            "relationship_type": self.relationship_type,
            "smart_code": self.smart_code,
            "relationship_data": self.relationship_data,
            "is_active": self.is_active,
            "effective_date": self.effective_date,
            "created_by": self.created_by,
            "created_at": self.created_at,
        }


@dataclass
class TransactionLine:
    """One line of a Transaction.

    Ledger lines carry line_data["side"] in {"DR", "CR"}.
    """

    id: str
    transaction_id: str
    organization_id: str
    line_number: int
    line_type: str
    smart_code: str
    line_amount: Decimal
    quantity: Decimal = Decimal("1")
    unit_amount: Decimal | None = None
    entity_id: str | None = None
    description: str | None = None
    line_data: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    @property
    def side(self) -> LedgerSide | None:
        side = self.line_data.get("side")
        return LedgerSide(side) if side in ("DR", "CR") else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "organization_id": self.organization_id,
            "line_number": self.line_number,
            "line_type": self.line_type,
            "description": self.description,
            "entity_id": self.entity_id,
            "quantity": str(self.quantity),
            "unit_amount": str(self.unit_amount) if self.unit_amount is not None else None,
            "line_amount": str(self.line_amount),
            "smart_code": self.smart_code,
            "line_data": self.line_data,
        }


@dataclass
class Transaction:
    """Business event header with its lines."""

    id: str
    organization_id: str
    transaction_type: str
    transaction_code: str
    transaction_date: str
    total_amount: Decimal
    smart_code: str
    status: TransactionStatus = TransactionStatus.DRAFT
    source_entity_id: str | None = None
    target_entity_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    updated_by: str | None = None
    created_at: int = 0
    updated_at: int = 0
    lines: list[TransactionLine] = field(default_factory=list)

    def to_dict(self, include_lines: bool = True) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": self.id,
            "organization_id": self.organization_id,
            "transaction_type": self.transaction_type,
            "transaction_code": self.transaction_code,
            "transaction_date": self.transaction_date,
            "total_amount": str(self.total_amount),
            "smart_code": self.smart_code,
            "transaction_status": self.status.value,
            "source_entity_id": self.source_entity_id,
            "target_entity_id": self.target_entity_id,
            "metadata": self.metadata,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_lines:
            record["lines"] = [line.to_dict() for line in self.lines]
        return record
