"""
Universal data engine test suite.

This package contains:
- unit/: Unit tests (validator, types, store and engines on a temporary SQLite file)
- integration/: Integration tests (CRUD contract, HTTP gateway, end-to-end scenarios)
"""
