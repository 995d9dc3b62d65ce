"""
Engines for the universal data model.

This module provides the stateless engines that enforce business rules on
top of the universal store:
- OrganizationEngine: tenants and their shadow entities
- EntityEngine: entities with dynamic fields
- RelationshipEngine: typed edges and hierarchy traversal
- TransactionEngine: transactions, lines and ledger posting

Invariants:
    - Every operation takes organization_id explicitly
    - All validation happens before the unit of work opens
    - Engine errors derive from UdbError; storage errors propagate unchanged
"""

from .entities import EntityEngine, FieldSpec
from .ledger import DEFAULT_POSTING_RULES, PostingRule, PostingRuleSet
from .organizations import OrganizationEngine
from .relationships import HierarchyNode, RelationshipEngine
from .transactions import TransactionEngine

__all__ = [
    "EntityEngine",
    "FieldSpec",
    "DEFAULT_POSTING_RULES",
    "PostingRule",
    "PostingRuleSet",
    "OrganizationEngine",
    "HierarchyNode",
    "RelationshipEngine",
    "TransactionEngine",
]
