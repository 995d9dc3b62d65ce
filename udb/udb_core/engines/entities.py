"""
Entity engine.

Entities and their dynamic fields are written as one logical unit: every
smart code and field value is validated before the unit of work starts, and
the entity row, its fields and any relationships supplied with it commit
together.

Invariants:
    - organization_id of an entity equals that of each of its dynamic fields
    - version starts at 1 and increments on each effective update only
    - Re-applying an identical payload is a no-op (same state, same version)
    - entity_code is unique per organization for the configured entity types

How to change safely:
    - Keep all validation ahead of unit_of_work()
    - Updates must go through update_entity_row (compare-and-increment)
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from ..deadline import Deadline
from ..errors import DuplicateCodeError, ReferentialError, StaleVersionError, ValidationError
from ..schema.types import (
    DynamicField,
    Entity,
    FieldType,
    FieldValue,
    json_object,
    make_field_value,
    normalize_type_tag,
    now_ms,
)
from .base import EngineBase, read_window
from .relationships import RelationshipEngine

logger = logging.getLogger(__name__)


# Entity attributes an update may change
_MUTABLE_ATTRS = ("entity_type", "entity_name", "entity_code", "smart_code", "status", "metadata")


@dataclass(frozen=True)
class FieldSpec:
    """A validated dynamic field from a payload, not yet bound to an entity."""

    field_name: str
    value: FieldValue
    smart_code: str


def _infer_field_type(value: Any) -> FieldType:
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return FieldType.NUMBER
    if isinstance(value, (date, datetime)):
        return FieldType.DATE
    if isinstance(value, (dict, list)):
        return FieldType.JSON
    return FieldType.TEXT


def _extract_value(name: str, entry: dict[str, Any]) -> tuple[FieldType | None, Any]:
    """Pick the single value slot of a raw field entry.

    Accepts either a "value" key or exactly one field_value_<type> slot.
    """
    slots = {
        kind: entry[kind.slot] for kind in FieldType if entry.get(kind.slot) is not None
    }
    if "value" in entry and entry["value"] is not None:
        if slots:
            raise ValidationError(
                f"Field '{name}' supplies both 'value' and a typed slot", field_name=name
            )
        return None, entry["value"]
    if len(slots) > 1:
        raise ValidationError(
            f"Field '{name}' must populate exactly one value slot, got "
            f"{sorted(k.slot for k in slots)}",
            field_name=name,
        )
    if not slots:
        raise ValidationError(f"Field '{name}' has no value", field_name=name)
    kind, value = next(iter(slots.items()))
    return kind, value


class EntityEngine(EngineBase):
    """Entity create/read/update/delete/upsert with dynamic fields.

    Example:
        >>> engine = EntityEngine(store)
        >>> entity = await engine.upsert_entity(
        ...     org_id,
        ...     {"entity_type": "customer", "entity_name": "Acme",
        ...      "smart_code": "HERA.CRM.CUSTOMER.ENTITY.PROFILE.v1"},
        ...     dynamic_fields={"credit_limit": {"value": 5000,
        ...                     "smart_code": "HERA.CRM.CUSTOMER.DYN.CREDIT.v1"}},
        ...     actor_id=user_id,
        ... )
    """

    def __init__(self, store, config=None, validator=None, relationships=None) -> None:
        super().__init__(store, config, validator)
        self.relationships = relationships or RelationshipEngine(store, self.config, self.validator)

    # --- Payload validation ---

    def parse_dynamic_fields(self, raw: Any) -> list[FieldSpec]:
        """Validate dynamic fields in list or mapping form.

        List form: [{"field_name", "field_type"?, "value" | "field_value_<type>", "smart_code"}]
        Mapping form: {field_name: {"field_type"?, "value" | ..., "smart_code"}}

        Raises:
            ValidationError: On a missing name, a value not matching its
                field_type, several value slots or an invalid smart code
        """
        if raw is None:
            return []
        if isinstance(raw, dict):
            items = []
            for name, entry in raw.items():
                if not isinstance(entry, dict):
                    raise ValidationError(f"Field '{name}' must be an object", field_name=name)
                items.append({**entry, "field_name": name})
        elif isinstance(raw, list):
            items = raw
        else:
            raise ValidationError(
                "dynamic_fields must be a list or object", field_name="dynamic_fields"
            )

        parsed: list[FieldSpec] = []
        seen: set[str] = set()
        for entry in items:
            if not isinstance(entry, dict):
                raise ValidationError(
                    "dynamic field must be an object", field_name="dynamic_fields"
                )
            name = entry.get("field_name")
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("'field_name' is required", field_name="field_name")
            if name in seen:
                raise ValidationError(f"Field '{name}' supplied twice", field_name=name)
            seen.add(name)

            slot_kind, value = _extract_value(name, entry)
            declared = entry.get("field_type")
            if declared is not None:
                try:
                    kind = FieldType.from_str(str(declared).lower())
                except ValueError as e:
                    raise ValidationError(str(e), field_name=name)
                if slot_kind is not None and slot_kind is not kind:
                    raise ValidationError(
                        f"Field '{name}' is declared {kind.value} but populates {slot_kind.slot}",
                        field_name=name,
                    )
            else:
                kind = slot_kind or _infer_field_type(value)

            self._smart_code(entry.get("smart_code"), f"dynamic_fields.{name}.smart_code")
            parsed.append(
                FieldSpec(
                    field_name=name,
                    value=make_field_value(kind, value, name),
                    smart_code=entry["smart_code"],
                )
            )
        return parsed

    def parse_entity(self, payload: Any, for_insert: bool) -> dict[str, Any]:
        """Validate and normalize the entity attributes present in payload.

        Raises:
            ValidationError: On malformed attributes or a missing required one
        """
        if not isinstance(payload, dict):
            raise ValidationError("entity must be an object", field_name="entity")

        attrs: dict[str, Any] = {}
        if "entity_type" in payload or for_insert:
            attrs["entity_type"] = normalize_type_tag(payload.get("entity_type"), "entity_type")
        if "entity_name" in payload or for_insert:
            name = payload.get("entity_name")
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("'entity_name' is required", field_name="entity_name")
            attrs["entity_name"] = name.strip()
        if "smart_code" in payload or for_insert:
            self._smart_code(payload.get("smart_code"), "smart_code")
            attrs["smart_code"] = payload["smart_code"]
        if "entity_code" in payload:
            code = payload["entity_code"]
            if code is not None and not isinstance(code, str):
                raise ValidationError("'entity_code' must be a string", field_name="entity_code")
            attrs["entity_code"] = code
        if "status" in payload:
            status = payload["status"]
            if not isinstance(status, str) or not status:
                raise ValidationError("'status' must be a non-empty string", field_name="status")
            attrs["status"] = status
        if "metadata" in payload:
            attrs["metadata"] = json_object(payload["metadata"], "metadata")
        if payload.get("version") is not None:
            version = payload["version"]
            if isinstance(version, bool) or not isinstance(version, int) or version < 1:
                raise ValidationError("'version' must be a positive integer", field_name="version")
            attrs["version"] = version
        return attrs

    def _parse_relationships(self, raw: Any) -> list[dict[str, Any]]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise ValidationError("relationships must be a list", field_name="relationships")
        return [self.relationships.parse_payload(item) for item in raw]

    # --- Unit-of-work helpers ---

    def _check_unique_code(self, conn: sqlite3.Connection, entity: Entity) -> None:
        if entity.entity_code is None:
            return
        if entity.entity_type not in self.config.engine.unique_code_entity_types:
            return
        other = self.store.find_entity_by_code(
            conn, entity.organization_id, entity.entity_type, entity.entity_code
        )
        if other is not None and other.id != entity.id:
            raise DuplicateCodeError(
                entity.entity_type,
                entity.entity_code,
                organization_id=entity.organization_id,
                existing_id=other.id,
            )

    def _write_fields(
        self,
        conn: sqlite3.Connection,
        entity: Entity,
        fields: list[FieldSpec],
        now: int,
    ) -> None:
        for entry in fields:
            previous = entity.dynamic_fields.get(entry.field_name)
            dynamic_field = DynamicField(
                entity_id=entity.id,
                organization_id=entity.organization_id,
                field_name=entry.field_name,
                value=entry.value,
                smart_code=entry.smart_code,
                created_at=previous.created_at if previous else now,
                updated_at=now,
            )
            self.store.upsert_field(conn, dynamic_field)
            entity.dynamic_fields[entry.field_name] = dynamic_field

    def _write_relationships(
        self,
        conn: sqlite3.Connection,
        entity: Entity,
        relationships: list[dict[str, Any]],
        actor_id: str | None,
        reapply: bool = False,
    ) -> None:
        """Create inline relationships.

        With reapply, an edge that already exists identically is skipped so
        that re-sending an update or upsert stays a no-op.
        """
        # The omitted endpoint is the entity itself; "from" when both are omitted
        for parsed in relationships:
            if parsed["from_entity_id"] is None:
                parsed = {**parsed, "from_entity_id": entity.id}
            elif parsed["to_entity_id"] is None:
                parsed = {**parsed, "to_entity_id": entity.id}
            if reapply and self.relationships.find_identical(
                conn, entity.organization_id, parsed
            ):
                continue
            self.relationships.create_in_unit(conn, entity.organization_id, parsed, actor_id)

    def _insert(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        entity_id: str | None,
        attrs: dict[str, Any],
        fields: list[FieldSpec],
        actor_id: str | None,
    ) -> Entity:
        now = now_ms()
        entity = Entity(
            id=entity_id or str(uuid.uuid4()),
            organization_id=org_id,
            entity_type=attrs["entity_type"],
            entity_name=attrs["entity_name"],
            entity_code=attrs.get("entity_code"),
            smart_code=attrs["smart_code"],
            status=attrs.get("status", "active"),
            metadata=attrs.get("metadata", {}),
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        self._check_unique_code(conn, entity)
        self.store.insert_entity(conn, entity)
        self._write_fields(conn, entity, fields, now)
        return entity

    def _update(
        self,
        conn: sqlite3.Connection,
        existing: Entity,
        attrs: dict[str, Any],
        fields: list[FieldSpec],
        actor_id: str | None,
    ) -> Entity:
        """Merge attrs and fields into existing with compare-and-increment.

        An update that changes nothing returns existing untouched, before
        any version check, so identical re-application is always a no-op.
        """
        changes = {
            name: attrs[name]
            for name in _MUTABLE_ATTRS
            if name in attrs and attrs[name] != getattr(existing, name)
        }
        changed_fields = [
            entry
            for entry in fields
            if entry.field_name not in existing.dynamic_fields
            or existing.dynamic_fields[entry.field_name].value != entry.value
            or existing.dynamic_fields[entry.field_name].smart_code != entry.smart_code
        ]
        if not changes and not changed_fields:
            return existing

        expected = attrs.get("version", existing.version)
        if expected != existing.version:
            raise StaleVersionError(existing.id, expected, existing.version)

        now = now_ms()
        updated = replace(
            existing,
            **changes,
            updated_by=actor_id,
            updated_at=now,
            version=existing.version + 1,
            dynamic_fields=dict(existing.dynamic_fields),
        )
        if "entity_code" in changes or "entity_type" in changes:
            self._check_unique_code(conn, updated)
        if not self.store.update_entity_row(conn, updated, expected):
            current = self.store.fetch_entity(
                conn, existing.organization_id, existing.id, with_fields=False
            )
            raise StaleVersionError(existing.id, expected, current.version if current else 0)
        self._write_fields(conn, updated, changed_fields, now)
        return updated

    # --- Operations ---

    async def create_entity(
        self,
        org_id: str,
        entity: dict[str, Any],
        dynamic_fields: Any = None,
        actor_id: str | None = None,
        relationships: list[dict[str, Any]] | None = None,
        deadline: Deadline | None = None,
    ) -> Entity:
        """Strict insert of an entity with its fields.

        Raises:
            ValidationError: On malformed payload
            DuplicateCodeError: If the id or a unique entity_code is taken
        """
        attrs = self.parse_entity(entity, for_insert=True)
        fields = self.parse_dynamic_fields(dynamic_fields)
        rels = self._parse_relationships(relationships)
        entity_id = entity.get("id")

        with self.store.unit_of_work("create_entity", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            if entity_id and self._check_owner(conn, org_id, "entity", entity_id):
                raise DuplicateCodeError(
                    "entity", entity_id, organization_id=org_id, existing_id=entity_id
                )
            created = self._insert(conn, org_id, entity_id, attrs, fields, actor_id)
            self._write_relationships(conn, created, rels, actor_id)

        logger.debug(
            "Created entity",
            extra={
                "organization_id": org_id,
                "entity_id": created.id,
                "entity_type": created.entity_type,
            },
        )
        return created

    async def update_entity(
        self,
        org_id: str,
        entity: dict[str, Any],
        dynamic_fields: Any = None,
        actor_id: str | None = None,
        relationships: list[dict[str, Any]] | None = None,
        deadline: Deadline | None = None,
    ) -> Entity:
        """Update an existing entity and merge the supplied fields.

        Raises:
            ValidationError: On malformed payload or missing id
            ReferentialError: If the entity does not exist
            CrossOrgAccessError: If it belongs to another organization
            StaleVersionError: If a supplied version is not current
        """
        entity_id = entity.get("id") if isinstance(entity, dict) else None
        if not entity_id:
            raise ValidationError("'id' is required for update", field_name="id")
        attrs = self.parse_entity(entity, for_insert=False)
        fields = self.parse_dynamic_fields(dynamic_fields)
        rels = self._parse_relationships(relationships)

        with self.store.unit_of_work("update_entity", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            self._require_entity(conn, org_id, entity_id, "id")
            existing = self.store.fetch_entity(conn, org_id, entity_id)
            updated = self._update(conn, existing, attrs, fields, actor_id)
            self._write_relationships(conn, updated, rels, actor_id, reapply=True)

        logger.debug(
            "Updated entity",
            extra={"organization_id": org_id, "entity_id": entity_id, "version": updated.version},
        )
        return updated

    async def upsert_entity(
        self,
        org_id: str,
        entity: dict[str, Any],
        dynamic_fields: Any = None,
        actor_id: str | None = None,
        relationships: list[dict[str, Any]] | None = None,
        deadline: Deadline | None = None,
    ) -> Entity:
        """Insert, or update when entity["id"] already exists in org_id.

        All smart codes and field values are validated before any write.
        Supplied dynamic fields are merged; fields not mentioned are kept.

        Raises:
            ValidationError: On malformed payload
            CrossOrgAccessError: If the id lives in another organization
            DuplicateCodeError: On a unique entity_code collision
            StaleVersionError: If a supplied version is not current
        """
        if not isinstance(entity, dict):
            raise ValidationError("entity must be an object", field_name="entity")
        entity_id = entity.get("id")
        fields = self.parse_dynamic_fields(dynamic_fields)
        rels = self._parse_relationships(relationships)
        update_attrs = self.parse_entity(entity, for_insert=False)

        with self.store.unit_of_work("upsert_entity", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            if entity_id and self._check_owner(conn, org_id, "entity", entity_id):
                existing = self.store.fetch_entity(conn, org_id, entity_id)
                result = self._update(conn, existing, update_attrs, fields, actor_id)
            else:
                insert_attrs = self.parse_entity(entity, for_insert=True)
                result = self._insert(conn, org_id, entity_id, insert_attrs, fields, actor_id)
            self._write_relationships(conn, result, rels, actor_id, reapply=True)

        logger.debug(
            "Upserted entity",
            extra={"organization_id": org_id, "entity_id": result.id, "version": result.version},
        )
        return result

    async def get_entity(
        self, org_id: str, entity_id: str, deadline: Deadline | None = None
    ) -> Entity:
        """Load one entity with its dynamic fields.

        Raises:
            ReferentialError: If the entity does not exist
            CrossOrgAccessError: If it belongs to another organization
        """
        with self.store.read_snapshot("get_entity", self._deadline(deadline)) as conn:
            self._require_entity(conn, org_id, entity_id, "id")
            return self.store.fetch_entity(conn, org_id, entity_id)

    async def read_entities(
        self,
        org_id: str,
        filters: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> list[Entity]:
        """Filtered read.

        Filters: entity_type, entity_code, status, smart_code, search,
        include_deleted (default False), limit (default 100), offset.
        """
        filters = filters or {}
        entity_type = filters.get("entity_type")
        if entity_type is not None:
            entity_type = normalize_type_tag(entity_type, "entity_type")
        limit, offset = read_window(filters)
        status = filters.get("status")
        exclude_status = None
        if status is None and not filters.get("include_deleted", False):
            exclude_status = self.config.engine.soft_delete_status

        with self.store.read_snapshot("read_entities", self._deadline(deadline)) as conn:
            self._require_organization(conn, org_id)
            return self.store.query_entities(
                conn,
                org_id,
                entity_type=entity_type,
                entity_code=filters.get("entity_code"),
                status=status,
                smart_code=filters.get("smart_code"),
                search=filters.get("search"),
                exclude_status=exclude_status,
                entity_ids=filters.get("ids"),
                limit=limit,
                offset=offset,
            )

    async def delete_entity(
        self,
        org_id: str,
        entity_id: str,
        hard: bool = False,
        actor_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Entity:
        """Soft or hard delete.

        Soft delete sets the configured deleted status and bumps version.
        Hard delete removes the entity, its dynamic fields and every
        relationship touching it.

        Returns:
            The entity as it was after a soft delete or before a hard delete

        Raises:
            ReferentialError: If the entity does not exist, or transactions
                still reference it (hard delete)
            CrossOrgAccessError: If it belongs to another organization
        """
        deleted_status = self.config.engine.soft_delete_status
        with self.store.unit_of_work("delete_entity", self._deadline(deadline)) as conn:
            self._require_entity(conn, org_id, entity_id, "id")
            existing = self.store.fetch_entity(conn, org_id, entity_id)
            if hard:
                refs = self.store.count_transaction_references(conn, org_id, entity_id)
                if refs:
                    raise ReferentialError(
                        f"Entity {entity_id} is referenced by {refs} transaction rows",
                        resource_type="entity",
                        resource_id=entity_id,
                        code="STILL_REFERENCED",
                    )
                self.store.delete_entity_row(conn, org_id, entity_id)
                result = existing
            else:
                result = self._update(conn, existing, {"status": deleted_status}, [], actor_id)

        logger.info(
            "Deleted entity",
            extra={"organization_id": org_id, "entity_id": entity_id, "hard": hard},
        )
        return result
