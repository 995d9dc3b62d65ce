"""
Store module - the relational backing for the six universal relations.

Invariants:
    - One SQLite file holds every organization's rows
    - organization_id is a mandatory predicate on every row method
    - Multi-row writes happen inside one unit of work
"""

from .universal_store import UniversalStore

__all__ = ["UniversalStore"]
