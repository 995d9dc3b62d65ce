"""
Unit tests for the organization registry.

Tests cover:
- Organization creation with its shadow entity
- Code uniqueness
- Lookups
"""

import pytest

from udb.udb_core.errors import DuplicateCodeError, ReferentialError, ValidationError


class TestOrganizationEngine:
    """Tests for OrganizationEngine."""

    @pytest.fixture
    def engine(self, api):
        return api.organization_engine

    @pytest.mark.asyncio
    async def test_create_with_shadow_entity(self, api, engine):
        org = await engine.create_organization(name="Demo Salon", code="DEMO-SALON", actor_id="u1")

        shadow = await api.entity_engine.get_entity(org.id, org.id)

        assert shadow.entity_type == "ORGANIZATION"
        assert shadow.entity_code == "DEMO-SALON"
        assert shadow.smart_code == "HERA.CORE.ORGANIZATION.ENTITY.v1"
        assert (await engine.get_organization(org.id)).name == "Demo Salon"

    @pytest.mark.asyncio
    async def test_duplicate_code(self, engine):
        await engine.create_organization(name="A", code="SAME")

        with pytest.raises(DuplicateCodeError):
            await engine.create_organization(name="B", code="SAME")

        assert [o.code for o in await engine.list_organizations()] == ["SAME"]

    @pytest.mark.asyncio
    async def test_requires_name_and_code(self, engine):
        with pytest.raises(ValidationError):
            await engine.create_organization(name="", code="X")
        with pytest.raises(ValidationError):
            await engine.create_organization(name="X", code=" ")

    @pytest.mark.asyncio
    async def test_get_missing(self, engine):
        with pytest.raises(ReferentialError):
            await engine.get_organization("missing")

    @pytest.mark.asyncio
    async def test_create_from_payload(self, engine):
        org = await engine.create_from_payload(
            {"organization_name": "Acme", "organization_code": "ACME", "id": "org-acme"}
        )

        assert org.id == "org-acme"
        assert org.to_dict()["organization_code"] == "ACME"
