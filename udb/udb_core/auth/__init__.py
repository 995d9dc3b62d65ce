"""
Authorization module - relationship-graph access resolution.

Invariants:
    - Access is derived from MEMBER_OF, HAS_ROLE and ORG_HAS_APP edges only
    - Resolution is read-only
"""

from .resolver import (
    AppEntitlement,
    AuthorizationResolver,
    Introspection,
    OrganizationAccess,
    role_name,
)

__all__ = [
    "AppEntitlement",
    "AuthorizationResolver",
    "Introspection",
    "OrganizationAccess",
    "role_name",
]
