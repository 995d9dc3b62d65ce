"""
Universal data engine - one schema for every business object.

This package implements an entity-relationship-transaction engine built on:
- Six generic relations (organizations, entities, dynamic fields,
  relationships, transactions, transaction lines)
- Smart codes: hierarchical, versioned tags validated on every write
- Relationship-graph authorization (MEMBER_OF, HAS_ROLE, ORG_HAS_APP)

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────┐
    │   Caller    │────▶│ CRUD / HTTP  │────▶│     Engines      │
    │             │     │   contract   │     │ entity/rel/txn   │
    └─────────────┘     └──────────────┘     └────────┬─────────┘
                                                      │
                              ┌───────────────────────┼────────────┐
                              ▼                       ▼            ▼
                        ┌───────────┐          ┌───────────┐ ┌───────────┐
                        │Smart Code │          │  Universal│ │   Auth    │
                        │ Validator │          │   Store   │ │ Resolver  │
                        └───────────┘          └───────────┘ └───────────┘

Invariants:
    - Every row belongs to exactly one organization
    - organization_id is an explicit parameter of every engine call
    - Smart codes are validated before anything is written
    - Multi-row writes are atomic

How to change safely:
    - New domains are new type tags and smart codes, never new tables
    - Smart code grammar changes must keep stored codes valid
"""

from ._version import __version__

__all__ = ["__version__"]
