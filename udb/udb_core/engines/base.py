"""
Shared plumbing for the engines.

Every engine is stateless: it holds a store, the configuration and a smart
code validator, and receives organization_id and actor_id on each call.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from ..config import ServerConfig
from ..deadline import Deadline
from ..errors import CrossOrgAccessError, ReferentialError, ValidationError
from ..schema.smart_code import SmartCode, SmartCodeValidator
from ..schema.types import Entity, to_int
from ..store.universal_store import UniversalStore

DEFAULT_READ_LIMIT = 100
MAX_READ_LIMIT = 1000


def read_window(filters: dict[str, Any]) -> tuple[int, int]:
    """(limit, offset) of a filtered read.

    Raises:
        ValidationError: If limit is outside 1..MAX_READ_LIMIT or offset is negative
    """
    limit = filters.get("limit")
    limit = DEFAULT_READ_LIMIT if limit is None else to_int(limit, "limit")
    if limit < 1 or limit > MAX_READ_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_READ_LIMIT}", field_name="limit")
    offset = filters.get("offset")
    offset = 0 if offset is None else to_int(offset, "offset")
    if offset < 0:
        raise ValidationError("offset must not be negative", field_name="offset")
    return limit, offset


class EngineBase:
    """Store, configuration and validator shared by the engines."""

    def __init__(
        self,
        store: UniversalStore,
        config: ServerConfig | None = None,
        validator: SmartCodeValidator | None = None,
    ) -> None:
        self.store = store
        self.config = config or ServerConfig()
        self.validator = validator or SmartCodeValidator(self.config.smart_code.root_tag)

    def _deadline(self, deadline: Deadline | None) -> Deadline | None:
        if deadline is None and self.config.engine.default_timeout_ms > 0:
            return Deadline.after_ms(self.config.engine.default_timeout_ms)
        return deadline

    def _smart_code(self, value: Any, field_name: str) -> SmartCode:
        if value is None:
            raise ValidationError(f"'{field_name}' is required", field_name=field_name)
        return self.validator.validate(value, field_name=field_name)

    def _require_organization(self, conn: sqlite3.Connection, org_id: str) -> None:
        if not org_id:
            raise ValidationError("organization_id is required", field_name="organization_id")
        if self.store.fetch_organization(conn, org_id) is None:
            raise ReferentialError(
                f"Organization not found: {org_id}",
                resource_type="organization",
                resource_id=org_id,
            )

    def _check_owner(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        kind: str,
        resource_id: str,
    ) -> bool:
        """True if resource_id exists in org_id, False if it exists nowhere.

        Raises:
            CrossOrgAccessError: If it exists in another organization
        """
        owner = self.store.owner_of(conn, kind, resource_id)
        if owner is None:
            return False
        if owner != org_id:
            raise CrossOrgAccessError(kind, resource_id, org_id)
        return True

    def _require_entity(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        entity_id: Any,
        role: str = "entity",
    ) -> Entity:
        """Load an entity that must exist in org_id.

        Raises:
            ReferentialError: If the id exists nowhere
            CrossOrgAccessError: If it exists in another organization
        """
        if not isinstance(entity_id, str) or not entity_id:
            raise ValidationError(f"'{role}' must be an entity id", field_name=role)
        entity = self.store.fetch_entity(conn, org_id, entity_id, with_fields=False)
        if entity is None:
            self._check_owner(conn, org_id, "entity", entity_id)
            raise ReferentialError(
                f"Entity not found: {entity_id} ({role})",
                resource_type="entity",
                resource_id=entity_id,
            )
        return entity
