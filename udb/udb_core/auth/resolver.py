"""
Authorization resolver.

Derives the organizations, roles and app entitlements visible to an actor
by reading the relationship graph:

    USER --MEMBER_OF--> ORGANIZATION --ORG_HAS_APP--> APP
    USER --HAS_ROLE---> ROLE

Invariants:
    - Read-only; one consistent snapshot per introspection
    - One hop per edge type, no inference (no role-of-role, no app-of-app)
    - Only active edges count
    - No memberships is an empty result, never an error
    - A missing actor entity is ActorNotFoundError

How to change safely:
    - New edge types are new explicit hops; never recurse
    - Keep role naming stable, callers compare role strings
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from ..deadline import Deadline
from ..errors import ActorNotFoundError
from ..engines.base import EngineBase
from ..schema.types import Entity

logger = logging.getLogger(__name__)

MEMBER_OF = "MEMBER_OF"
HAS_ROLE = "HAS_ROLE"
ORG_HAS_APP = "ORG_HAS_APP"
ORGANIZATION_TYPE = "ORGANIZATION"


@dataclass(frozen=True)
class AppEntitlement:
    """An application an organization is entitled to."""

    app_id: str
    code: str | None
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"app_id": self.app_id, "code": self.code, "name": self.name}


@dataclass
class OrganizationAccess:
    """What an actor can reach inside one organization.

    Attributes:
        org_id: Organization (entity) id
        org_name: Organization display name
        org_code: Organization code
        role: Primary role (first HAS_ROLE edge), None if no role
        roles: Every role in edge creation order
        apps: Entitled applications
    """

    org_id: str
    org_name: str
    org_code: str | None
    role: str | None = None
    roles: list[str] = field(default_factory=list)
    apps: list[AppEntitlement] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "org_name": self.org_name,
            "org_code": self.org_code,
            "role": self.role,
            "roles": list(self.roles),
            "apps": [app.to_dict() for app in self.apps],
        }


@dataclass
class Introspection:
    """Result of introspect()."""

    actor_id: str
    organizations: list[OrganizationAccess] = field(default_factory=list)

    def find(self, org_id: str) -> OrganizationAccess | None:
        for access in self.organizations:
            if access.org_id == org_id:
                return access
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "organizations": [access.to_dict() for access in self.organizations],
        }


def role_name(role_entity: Entity) -> str:
    """The ROLE smart code's last domain segment (HERA.SALON.ROLE.ORG_OWNER.v1 -> ORG_OWNER)."""
    return role_entity.smart_code.split(".")[-2]


class AuthorizationResolver(EngineBase):
    """Resolves actor access from identity edges.

    Thread safety:
        Stateless; every call opens its own read snapshot.

    Example:
        >>> resolver = AuthorizationResolver(store)
        >>> result = await resolver.introspect(user_id)
        >>> [o.role for o in result.organizations]
        ['ORG_OWNER']
    """

    def _targets(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        from_id: str,
        relationship_type: str,
        entity_type: str | None,
    ) -> list[tuple[dict[str, Any], Entity]]:
        """Active one-hop targets in edge creation order, with the edge data."""
        edges = self.store.query_relationships(
            conn,
            org_id,
            from_entity_id=from_id,
            relationship_type=relationship_type,
            is_active=True,
        )
        if not edges:
            return []
        entities = {
            e.id: e
            for e in self.store.query_entities(
                conn,
                org_id,
                entity_ids=[edge.to_entity_id for edge in edges],
                exclude_status=self.config.engine.soft_delete_status,
                limit=len(edges),
            )
        }
        result = []
        for edge in edges:
            target = entities.get(edge.to_entity_id)
            if target is None:
                continue
            if entity_type is not None and target.entity_type != entity_type:
                continue
            result.append((edge.relationship_data, target))
        return result

    async def introspect(self, actor_id: str, deadline: Deadline | None = None) -> Introspection:
        """Organizations, roles and apps visible to actor_id.

        The actor's organization is implied by the actor entity itself.

        Raises:
            ActorNotFoundError: If no entity has id actor_id
        """
        with self.store.read_snapshot("introspect", self._deadline(deadline)) as conn:
            actor_org = self.store.owner_of(conn, "entity", actor_id) if actor_id else None
            if actor_org is None:
                raise ActorNotFoundError(actor_id)

            result = Introspection(actor_id=actor_id)
            roles = self._targets(conn, actor_org, actor_id, HAS_ROLE, None)
            memberships = self._targets(conn, actor_org, actor_id, MEMBER_OF, ORGANIZATION_TYPE)
            for _, org_entity in memberships:
                access = OrganizationAccess(
                    org_id=org_entity.id,
                    org_name=org_entity.entity_name,
                    org_code=org_entity.entity_code,
                )
                for data, role_entity in roles:
                    scope = data.get("organization_id")
                    if scope is not None and scope != org_entity.id:
                        continue
                    name = role_name(role_entity)
                    if name not in access.roles:
                        access.roles.append(name)
                access.role = access.roles[0] if access.roles else None
                for _, app in self._targets(conn, actor_org, org_entity.id, ORG_HAS_APP, None):
                    access.apps.append(
                        AppEntitlement(app_id=app.id, code=app.entity_code, name=app.entity_name)
                    )
                result.organizations.append(access)

        logger.debug(
            "Introspected actor",
            extra={"actor_id": actor_id, "organization_count": len(result.organizations)},
        )
        return result

    async def check_access(
        self,
        actor_id: str,
        org_id: str,
        app_code: str | None = None,
        role: str | None = None,
        deadline: Deadline | None = None,
    ) -> bool:
        """True if actor is a member of org_id (with app_code and role when given)."""
        try:
            result = await self.introspect(actor_id, deadline=deadline)
        except ActorNotFoundError:
            return False
        access = result.find(org_id)
        if access is None:
            return False
        if role is not None and role not in access.roles:
            return False
        if app_code is not None and not any(app.code == app_code for app in access.apps):
            return False
        return True
