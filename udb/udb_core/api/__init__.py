"""
API module - caller-facing contracts.

This module provides:
- CRUD facades that turn engine errors into CrudResult envelopes
- FastAPI HTTP gateway over the same facades
"""

from .crud import (
    AuthCrud,
    CrudResult,
    EntitiesCrud,
    OrganizationsCrud,
    RelationshipsCrud,
    TransactionsCrud,
    UniversalApi,
)

__all__ = [
    "AuthCrud",
    "CrudResult",
    "EntitiesCrud",
    "OrganizationsCrud",
    "RelationshipsCrud",
    "TransactionsCrud",
    "UniversalApi",
]
