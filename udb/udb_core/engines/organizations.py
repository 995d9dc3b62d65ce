"""
Organization registry.

Creates tenants together with their ORGANIZATION shadow entity. The shadow
entity shares the organization's id and lives inside the organization, so
identity edges (MEMBER_OF, ORG_HAS_APP) can point at an organization like at
any other entity.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from ..deadline import Deadline
from ..errors import DuplicateCodeError, ReferentialError, ValidationError
from ..schema.types import Entity, Organization, now_ms
from .base import EngineBase

logger = logging.getLogger(__name__)

ORGANIZATION_ENTITY_TYPE = "ORGANIZATION"


class OrganizationEngine(EngineBase):
    """Creates and reads organizations."""

    def default_smart_code(self) -> str:
        return str(self.validator.build("CORE", "ORGANIZATION", "ENTITY"))

    async def create_organization(
        self,
        name: str,
        code: str,
        org_type: str = "business",
        smart_code: str | None = None,
        actor_id: str | None = None,
        organization_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Organization:
        """Create an organization and its shadow entity atomically.

        Args:
            name: Display name
            code: Globally unique organization code
            org_type: Free-form type
            smart_code: Smart code of the shadow entity
            actor_id: Creating actor
            organization_id: Optional specific id (generated if not provided)
            deadline: Optional deadline

        Returns:
            Created Organization

        Raises:
            ValidationError: If name/code are missing or smart_code is invalid
            DuplicateCodeError: If code is taken
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("'organization_name' is required", field_name="organization_name")
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("'organization_code' is required", field_name="organization_code")
        code = code.strip()
        smart_code = smart_code or self.default_smart_code()
        self._smart_code(smart_code, "smart_code")

        now = now_ms()
        org = Organization(
            id=organization_id or str(uuid.uuid4()),
            name=name.strip(),
            code=code,
            org_type=org_type,
            created_at=now,
            updated_at=now,
        )
        shadow = Entity(
            id=org.id,
            organization_id=org.id,
            entity_type=ORGANIZATION_ENTITY_TYPE,
            entity_name=org.name,
            entity_code=org.code,
            smart_code=smart_code,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
        )

        with self.store.unit_of_work("create_organization", self._deadline(deadline)) as conn:
            existing = self.store.fetch_organization_by_code(conn, code)
            if existing is not None:
                raise DuplicateCodeError("organization", code, existing_id=existing.id)
            if self.store.fetch_organization(conn, org.id) is not None:
                raise DuplicateCodeError("organization", org.id, existing_id=org.id)
            self.store.insert_organization(conn, org)
            self.store.insert_entity(conn, shadow)

        logger.info(
            "Created organization",
            extra={"organization_id": org.id, "organization_code": code, "actor_id": actor_id},
        )
        return org

    async def get_organization(
        self, organization_id: str, deadline: Deadline | None = None
    ) -> Organization:
        with self.store.read_snapshot("get_organization", self._deadline(deadline)) as conn:
            org = self.store.fetch_organization(conn, organization_id)
        if org is None:
            raise ReferentialError(
                f"Organization not found: {organization_id}",
                resource_type="organization",
                resource_id=organization_id,
            )
        return org

    async def list_organizations(self, deadline: Deadline | None = None) -> list[Organization]:
        with self.store.read_snapshot("list_organizations", self._deadline(deadline)) as conn:
            return self.store.list_organizations(conn)

    async def create_from_payload(
        self, payload: dict[str, Any], actor_id: str | None = None
    ) -> Organization:
        """Create from an API payload using organization_* keys."""
        return await self.create_organization(
            name=payload.get("organization_name") or payload.get("name"),
            code=payload.get("organization_code") or payload.get("code"),
            org_type=payload.get("organization_type", "business"),
            smart_code=payload.get("smart_code"),
            actor_id=actor_id,
            organization_id=payload.get("id"),
        )
