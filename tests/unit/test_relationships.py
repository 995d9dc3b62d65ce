"""
Unit tests for the relationship engine.

Tests cover:
- Edge creation and reads
- Cycle rejection on hierarchical types
- Duplicate active edges
- Organization isolation
- Rollup and ancestor traversal
"""

import pytest

from udb.udb_core.errors import (
    CrossOrgAccessError,
    CycleError,
    DuplicateCodeError,
    ReferentialError,
    SmartCodeError,
)

CATEGORY_CODE = "HERA.FURNITURE.CATEGORY.ENTITY.v1"
PARENT_CODE = "HERA.FURNITURE.CATEGORY.REL.PARENT.v1"


async def _org(api, code="FURN"):
    return await api.organization_engine.create_organization(name=f"{code} Co", code=code)


async def _category(api, org_id, name):
    return await api.entity_engine.create_entity(
        org_id, {"entity_type": "CATEGORY", "entity_name": name, "smart_code": CATEGORY_CODE}
    )


class TestRelationshipEngine:
    """Tests for RelationshipEngine."""

    @pytest.fixture
    def engine(self, api):
        return api.relationship_engine

    @pytest.mark.asyncio
    async def test_create_and_read(self, api, engine):
        org = await _org(api)
        a = await _category(api, org.id, "Furniture")
        b = await _category(api, org.id, "Chairs")

        rel = await engine.create_relationship(
            org.id, a.id, b.id, "parent_of", PARENT_CODE, relationship_data={"weight": 1}
        )

        assert rel.relationship_type == "PARENT_OF"
        assert rel.is_active
        fetched = await engine.get_relationship(org.id, rel.id)
        assert fetched.relationship_data == {"weight": 1}
        listed = await engine.read_relationships(org.id, {"to_entity_id": b.id})
        assert [r.id for r in listed] == [rel.id]

    @pytest.mark.asyncio
    async def test_cycle_rejected_and_not_written(self, api, engine):
        """Closing A -> B -> C -> A fails and leaves no C -> A edge."""
        org = await _org(api)
        a = await _category(api, org.id, "A")
        b = await _category(api, org.id, "B")
        c = await _category(api, org.id, "C")
        await engine.create_relationship(org.id, a.id, b.id, "PARENT_OF", PARENT_CODE)
        await engine.create_relationship(org.id, b.id, c.id, "PARENT_OF", PARENT_CODE)

        with pytest.raises(CycleError) as exc_info:
            await engine.create_relationship(org.id, c.id, a.id, "PARENT_OF", PARENT_CODE)

        assert exc_info.value.path == [a.id, b.id, c.id]
        assert await engine.read_relationships(org.id, {"from_entity_id": c.id}) == []

    @pytest.mark.asyncio
    async def test_self_loop_rejected(self, api, engine):
        org = await _org(api)
        a = await _category(api, org.id, "A")

        with pytest.raises(CycleError):
            await engine.create_relationship(org.id, a.id, a.id, "PARENT_OF", PARENT_CODE)

    @pytest.mark.asyncio
    async def test_cycles_allowed_for_plain_types(self, api, engine):
        """Only hierarchical types are checked for cycles."""
        org = await _org(api)
        a = await _category(api, org.id, "A")
        b = await _category(api, org.id, "B")
        code = "HERA.FURNITURE.CATEGORY.REL.RELATED.v1"

        await engine.create_relationship(org.id, a.id, b.id, "RELATED_TO", code)
        await engine.create_relationship(org.id, b.id, a.id, "RELATED_TO", code)

    @pytest.mark.asyncio
    async def test_duplicate_active_edge(self, api, engine):
        org = await _org(api)
        a = await _category(api, org.id, "A")
        b = await _category(api, org.id, "B")
        first = await engine.create_relationship(org.id, a.id, b.id, "PARENT_OF", PARENT_CODE)

        with pytest.raises(DuplicateCodeError) as exc_info:
            await engine.create_relationship(org.id, a.id, b.id, "PARENT_OF", PARENT_CODE)

        assert exc_info.value.existing_id == first.id

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, api, engine):
        org = await _org(api)
        a = await _category(api, org.id, "A")

        with pytest.raises(ReferentialError):
            await engine.create_relationship(org.id, a.id, "missing", "PARENT_OF", PARENT_CODE)

    @pytest.mark.asyncio
    async def test_cross_org_endpoint(self, api, engine):
        """Edges never connect entities of two organizations."""
        org_a = await _org(api, "ORG-A")
        org_b = await _org(api, "ORG-B")
        a = await _category(api, org_a.id, "A")
        b = await _category(api, org_b.id, "B")

        with pytest.raises(CrossOrgAccessError):
            await engine.create_relationship(org_a.id, a.id, b.id, "PARENT_OF", PARENT_CODE)

    @pytest.mark.asyncio
    async def test_get_missing_or_foreign_edge(self, api, engine):
        """Unknown ids are not found, ids of another organization are refused."""
        org_a = await _org(api, "ORG-A")
        org_b = await _org(api, "ORG-B")
        a = await _category(api, org_a.id, "A")
        b = await _category(api, org_a.id, "B")
        rel = await engine.create_relationship(org_a.id, a.id, b.id, "PARENT_OF", PARENT_CODE)

        with pytest.raises(ReferentialError):
            await engine.get_relationship(org_a.id, "missing")
        with pytest.raises(CrossOrgAccessError):
            await engine.get_relationship(org_b.id, rel.id)

    @pytest.mark.asyncio
    async def test_invalid_smart_code(self, api, engine):
        org = await _org(api)
        a = await _category(api, org.id, "A")
        b = await _category(api, org.id, "B")

        with pytest.raises(SmartCodeError):
            await engine.create_relationship(org.id, a.id, b.id, "PARENT_OF", "HERA.REL.v1")

    @pytest.mark.asyncio
    async def test_delete(self, api, engine):
        org = await _org(api)
        a = await _category(api, org.id, "A")
        b = await _category(api, org.id, "B")
        rel = await engine.create_relationship(org.id, a.id, b.id, "PARENT_OF", PARENT_CODE)

        assert await engine.delete_relationship(org.id, rel.id) is True
        assert await engine.delete_relationship(org.id, rel.id) is False

        # The edge can be created again once deleted
        await engine.create_relationship(org.id, a.id, b.id, "PARENT_OF", PARENT_CODE)

    @pytest.mark.asyncio
    async def test_rollup(self, api, engine):
        """Rollup returns each descendant once at its shallowest depth."""
        org = await _org(api)
        root = await _category(api, org.id, "Furniture")
        chairs = await _category(api, org.id, "Chairs")
        tables = await _category(api, org.id, "Tables")
        office = await _category(api, org.id, "Office chairs")
        await engine.create_relationship(org.id, root.id, chairs.id, "PARENT_OF", PARENT_CODE)
        await engine.create_relationship(org.id, root.id, tables.id, "PARENT_OF", PARENT_CODE)
        await engine.create_relationship(org.id, chairs.id, office.id, "PARENT_OF", PARENT_CODE)

        tree = await engine.rollup(org.id, root.id, "PARENT_OF")

        assert tree.depth == 0
        assert {child.entity.id for child in tree.children} == {chairs.id, tables.id}
        assert sorted(tree.descendant_ids()) == sorted([chairs.id, tables.id, office.id])
        rendered = tree.to_dict()
        assert rendered["entity"]["id"] == root.id
        assert len(rendered["children"]) == 2

        shallow = await engine.rollup(org.id, root.id, "PARENT_OF", max_depth=1)
        assert sorted(shallow.descendant_ids()) == sorted([chairs.id, tables.id])

    @pytest.mark.asyncio
    async def test_ancestors(self, api, engine):
        org = await _org(api)
        root = await _category(api, org.id, "Furniture")
        chairs = await _category(api, org.id, "Chairs")
        office = await _category(api, org.id, "Office chairs")
        await engine.create_relationship(org.id, root.id, chairs.id, "PARENT_OF", PARENT_CODE)
        await engine.create_relationship(org.id, chairs.id, office.id, "PARENT_OF", PARENT_CODE)

        ancestors = await engine.ancestors(org.id, office.id, "PARENT_OF")

        assert [e.id for e in ancestors] == [chairs.id, root.id]
        assert await engine.ancestors(org.id, root.id, "PARENT_OF") == []
