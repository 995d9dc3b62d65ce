"""
Unit tests for the universal SQLite store.

Tests cover:
- Schema creation and version
- Unit of work commit and rollback
- Deadline checks at commit
- Dynamic field slot constraint
- Ownership lookups
"""

import sqlite3
import time

import pytest

from udb.udb_core.deadline import Deadline
from udb.udb_core.errors import DeadlineExceededError
from udb.udb_core.schema.types import Entity, Organization, now_ms
from udb.udb_core.store.universal_store import UniversalStore


def _org(org_id="org_1", code="ORG-1"):
    now = now_ms()
    return Organization(id=org_id, name="Org", code=code, created_at=now, updated_at=now)


def _entity(entity_id, org_id="org_1"):
    now = now_ms()
    return Entity(
        id=entity_id,
        organization_id=org_id,
        entity_type="CUSTOMER",
        entity_name=f"Customer {entity_id}",
        smart_code="HERA.CRM.CUSTOMER.ENTITY.PROFILE.v1",
        created_at=now,
        updated_at=now,
    )


class TestUniversalStore:
    """Tests for UniversalStore."""

    def test_schema_has_six_relations(self, store):
        with store.read_snapshot("tables") as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
            ).fetchall()
            version = conn.execute("PRAGMA user_version").fetchone()[0]

        assert [r["name"] for r in rows] == [
            "core_dynamic_data",
            "core_entities",
            "core_organizations",
            "core_relationships",
            "universal_transaction_lines",
            "universal_transactions",
        ]
        assert version == UniversalStore.SCHEMA_VERSION

    def test_initialize_is_idempotent(self, store):
        store.initialize()
        store.initialize()

    def test_unit_commits(self, store):
        with store.unit_of_work("seed") as conn:
            store.insert_organization(conn, _org())
            store.insert_entity(conn, _entity("e1"))

        with store.read_snapshot("check") as conn:
            assert store.fetch_entity(conn, "org_1", "e1") is not None
            assert store.owner_of(conn, "entity", "e1") == "org_1"
            assert store.owner_of(conn, "entity", "missing") is None

    def test_unit_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.unit_of_work("seed") as conn:
                store.insert_organization(conn, _org())
                raise RuntimeError("boom")

        with store.read_snapshot("check") as conn:
            assert store.fetch_organization(conn, "org_1") is None

    def test_expired_deadline_rolls_back(self, store):
        """A deadline that passes during the unit leaves nothing behind."""
        deadline = Deadline.after(0.05)

        with pytest.raises(DeadlineExceededError):
            with store.unit_of_work("slow", deadline) as conn:
                store.insert_organization(conn, _org())
                time.sleep(0.1)

        with store.read_snapshot("check") as conn:
            assert store.list_organizations(conn) == []

    def test_expired_deadline_before_start(self, store):
        with pytest.raises(DeadlineExceededError) as exc_info:
            with store.unit_of_work("late", Deadline.after(-1)):
                pass

        assert exc_info.value.code == "DEADLINE_EXCEEDED"

    def test_field_slot_check_constraint(self, store):
        """A field row with two populated slots is rejected by the schema."""
        with store.unit_of_work("seed") as conn:
            store.insert_organization(conn, _org())
            store.insert_entity(conn, _entity("e1"))

        with pytest.raises(sqlite3.IntegrityError):
            with store.unit_of_work("bad") as conn:
                conn.execute(
                    """
                    INSERT INTO core_dynamic_data (
                        entity_id, organization_id, field_name, field_type,
                        field_value_text, field_value_number, smart_code,
                        created_at, updated_at
                    ) VALUES ('e1', 'org_1', 'tier', 'text', 'gold', '5', 'HERA.CRM.DYN.TIER.v1', 0, 0)
                    """
                )

    def test_entity_requires_organization(self, store):
        """Foreign keys keep entities inside an existing organization."""
        with pytest.raises(sqlite3.IntegrityError):
            with store.unit_of_work("orphan") as conn:
                store.insert_entity(conn, _entity("e1", org_id="nowhere"))

    def test_version_compare_and_increment(self, store):
        with store.unit_of_work("seed") as conn:
            store.insert_organization(conn, _org())
            entity = _entity("e1")
            store.insert_entity(conn, entity)

        entity.entity_name = "Renamed"
        entity.version = 2
        with store.unit_of_work("update") as conn:
            assert store.update_entity_row(conn, entity, expected_version=1)
            assert not store.update_entity_row(conn, entity, expected_version=1)

        with store.read_snapshot("check") as conn:
            fetched = store.fetch_entity(conn, "org_1", "e1")
        assert fetched.entity_name == "Renamed"
        assert fetched.version == 2

    def test_search_escapes_wildcards(self, store):
        with store.unit_of_work("seed") as conn:
            store.insert_organization(conn, _org())
            a = _entity("e1")
            a.entity_name = "100% cotton"
            b = _entity("e2")
            b.entity_name = "100 percent"
            store.insert_entity(conn, a)
            store.insert_entity(conn, b)

        with store.read_snapshot("search") as conn:
            found = store.query_entities(conn, "org_1", search="100%")

        assert [e.id for e in found] == ["e1"]
