"""
Schema module for the universal data engine.

This module provides:
- Smart code grammar and validator
- Row types for the six universal relations
- The FieldValue tagged union for dynamic fields

Invariants:
    - Smart codes are validated before any write
    - Exactly one FieldValue variant per dynamic field
    - Type tags are upper-case once they reach a row type

How to change safely:
    - Grammar changes must keep every existing stored code valid
    - Add FieldValue variants together with a storage slot
"""

from .smart_code import SmartCode, SmartCodeValidator, get_validator, is_valid, validate
from .types import (
    BooleanValue,
    DateValue,
    DynamicField,
    Entity,
    FieldType,
    FieldValue,
    JsonValue,
    LedgerSide,
    NumberValue,
    Organization,
    Relationship,
    TextValue,
    Transaction,
    TransactionLine,
    TransactionStatus,
)

__all__ = [
    "SmartCode",
    "SmartCodeValidator",
    "get_validator",
    "is_valid",
    "validate",
    "BooleanValue",
    "DateValue",
    "DynamicField",
    "Entity",
    "FieldType",
    "FieldValue",
    "JsonValue",
    "LedgerSide",
    "NumberValue",
    "Organization",
    "Relationship",
    "TextValue",
    "Transaction",
    "TransactionLine",
    "TransactionStatus",
]
