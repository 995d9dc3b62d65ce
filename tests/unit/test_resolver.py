"""
Unit tests for the authorization resolver.

Tests cover:
- Organization, role and app resolution from identity edges
- Empty introspection for actors without memberships
- Missing actors
- Role scoping and inactive or deleted targets
"""

import pytest

from udb.udb_core.errors import ActorNotFoundError

USER_CODE = "HERA.CORE.USER.ENTITY.v1"
MEMBER_CODE = "HERA.CORE.USER.REL.MEMBER_OF.v1"
HAS_ROLE_CODE = "HERA.CORE.USER.REL.HAS_ROLE.v1"
APP_REL_CODE = "HERA.CORE.ORG.REL.HAS_APP.v1"


async def _org(api, code):
    return await api.organization_engine.create_organization(name=f"{code} Org", code=code)


async def _entity(api, org_id, entity_type, name, smart_code, code=None):
    payload = {"entity_type": entity_type, "entity_name": name, "smart_code": smart_code}
    if code is not None:
        payload["entity_code"] = code
    return await api.entity_engine.create_entity(org_id, payload)


async def _edge(api, org_id, from_id, to_id, relationship_type, smart_code, data=None):
    return await api.relationship_engine.create_relationship(
        org_id, from_id, to_id, relationship_type, smart_code, relationship_data=data
    )


class TestAuthorizationResolver:
    """Tests for AuthorizationResolver."""

    @pytest.fixture
    def resolver(self, api):
        return api.resolver

    @pytest.mark.asyncio
    async def test_member_with_role_and_app(self, api, resolver):
        org = await _org(api, "DEMO-SALON")
        user = await _entity(api, org.id, "USER", "Owner", USER_CODE, "salon@heraerp.com")
        role = await _entity(api, org.id, "ROLE", "Org owner", "HERA.SALON.ROLE.ORG_OWNER.v1")
        app = await _entity(api, org.id, "APP", "Salon", "HERA.CORE.APP.SALON.v1", "SALON")
        await _edge(api, org.id, user.id, org.id, "MEMBER_OF", MEMBER_CODE)
        await _edge(api, org.id, user.id, role.id, "HAS_ROLE", HAS_ROLE_CODE)
        await _edge(api, org.id, org.id, app.id, "ORG_HAS_APP", APP_REL_CODE)

        result = await resolver.introspect(user.id)

        assert len(result.organizations) == 1
        access = result.organizations[0]
        assert access.org_id == org.id
        assert access.org_code == "DEMO-SALON"
        assert access.role == "ORG_OWNER"
        assert access.roles == ["ORG_OWNER"]
        assert [(a.app_id, a.code, a.name) for a in access.apps] == [(app.id, "SALON", "Salon")]
        assert result.to_dict()["organizations"][0]["apps"][0]["code"] == "SALON"

    @pytest.mark.asyncio
    async def test_no_memberships_is_empty(self, api, resolver):
        org = await _org(api, "EMPTY")
        user = await _entity(api, org.id, "USER", "Loner", USER_CODE, "loner@example.com")

        result = await resolver.introspect(user.id)

        assert result.organizations == []
        assert result.to_dict() == {"actor_id": user.id, "organizations": []}

    @pytest.mark.asyncio
    async def test_actor_not_found(self, api, resolver):
        with pytest.raises(ActorNotFoundError) as exc_info:
            await resolver.introspect("nobody")

        assert exc_info.value.code == "ACTOR_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_role_name_comes_from_smart_code(self, api, resolver):
        """A ROLE entity_code never replaces the smart code segment."""
        org = await _org(api, "CODES")
        user = await _entity(api, org.id, "USER", "Ann", USER_CODE, "ann@example.com")
        role = await _entity(api, org.id, "ROLE", "Owner", "HERA.SALON.ROLE.ORG_OWNER.v1", "ROLE-001")
        await _edge(api, org.id, user.id, org.id, "MEMBER_OF", MEMBER_CODE)
        await _edge(api, org.id, user.id, role.id, "HAS_ROLE", HAS_ROLE_CODE)

        result = await resolver.introspect(user.id)

        assert result.organizations[0].role == "ORG_OWNER"
        assert result.organizations[0].roles == ["ORG_OWNER"]

    @pytest.mark.asyncio
    async def test_role_scoped_to_other_org_ignored(self, api, resolver):
        org = await _org(api, "SCOPED")
        user = await _entity(api, org.id, "USER", "Ann", USER_CODE, "ann@example.com")
        role = await _entity(api, org.id, "ROLE", "Auditor", "HERA.CORE.ROLE.AUDITOR.v1")
        await _edge(api, org.id, user.id, org.id, "MEMBER_OF", MEMBER_CODE)
        await _edge(
            api, org.id, user.id, role.id, "HAS_ROLE", HAS_ROLE_CODE, {"organization_id": "elsewhere"}
        )

        result = await resolver.introspect(user.id)

        assert result.organizations[0].role is None
        assert result.organizations[0].roles == []

    @pytest.mark.asyncio
    async def test_only_organization_targets_count(self, api, resolver):
        """MEMBER_OF edges to non-organization entities are not memberships."""
        org = await _org(api, "TEAMS")
        user = await _entity(api, org.id, "USER", "Ann", USER_CODE, "ann@example.com")
        team = await _entity(api, org.id, "TEAM", "Front desk", "HERA.SALON.TEAM.FRONT.v1")
        await _edge(api, org.id, user.id, team.id, "MEMBER_OF", MEMBER_CODE)

        result = await resolver.introspect(user.id)

        assert result.organizations == []

    @pytest.mark.asyncio
    async def test_deleted_app_excluded(self, api, resolver):
        org = await _org(api, "APPS")
        user = await _entity(api, org.id, "USER", "Ann", USER_CODE, "ann@example.com")
        app = await _entity(api, org.id, "APP", "Legacy", "HERA.CORE.APP.LEGACY.v1", "LEGACY")
        await _edge(api, org.id, user.id, org.id, "MEMBER_OF", MEMBER_CODE)
        await _edge(api, org.id, org.id, app.id, "ORG_HAS_APP", APP_REL_CODE)
        await api.entity_engine.delete_entity(org.id, app.id)

        result = await resolver.introspect(user.id)

        assert result.organizations[0].apps == []

    @pytest.mark.asyncio
    async def test_check_access(self, api, resolver):
        org = await _org(api, "CHECK")
        user = await _entity(api, org.id, "USER", "Ann", USER_CODE, "ann@example.com")
        role = await _entity(api, org.id, "ROLE", "Owner", "HERA.CORE.ROLE.OWNER.v1")
        await _edge(api, org.id, user.id, org.id, "MEMBER_OF", MEMBER_CODE)
        await _edge(api, org.id, user.id, role.id, "HAS_ROLE", HAS_ROLE_CODE)

        assert await resolver.check_access(user.id, org.id)
        assert await resolver.check_access(user.id, org.id, role="OWNER")
        assert not await resolver.check_access(user.id, org.id, role="ADMIN")
        assert not await resolver.check_access(user.id, org.id, app_code="SALON")
        assert not await resolver.check_access("nobody", org.id)
