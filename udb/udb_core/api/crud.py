"""
CRUD contract for callers.

Action-dispatching facade over the engines:
    entities.crud(action, actor_id, organization_id, entity, dynamic_fields, relationships, options)
    relationships.crud(action, actor_id, organization_id, relationship, options)
    transactions.crud(action, actor_id, organization_id, header, lines, options)
    auth.introspect(actor_id)

Every call returns a CrudResult. Engine errors (UdbError) become failed
results carrying error, error_code and details; storage errors propagate.

Invariants:
    - organization_id and actor_id are mandatory on every crud() call
    - Actions are matched case-insensitively
    - options["timeout_ms"] turns into a Deadline for the engine call
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..auth.resolver import AuthorizationResolver
from ..config import ServerConfig
from ..deadline import Deadline
from ..engines.entities import EntityEngine
from ..engines.organizations import OrganizationEngine
from ..engines.relationships import RelationshipEngine
from ..engines.transactions import TransactionEngine
from ..errors import UdbError, ValidationError
from ..schema.smart_code import SmartCodeValidator
from ..schema.types import to_int
from ..store.universal_store import UniversalStore

logger = logging.getLogger(__name__)


@dataclass
class CrudResult:
    """Structured result envelope.

    Attributes:
        success: True if the action completed
        data: Action result (record, list of records or None)
        error: Error message on failure
        error_code: Stable error code on failure
        details: Error context on failure
    """

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> CrudResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: UdbError) -> CrudResult:
        return cls(
            success=False,
            error=error.message,
            error_code=error.code,
            details=error.details,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_code": self.error_code,
            "details": self.details,
        }


def _action(action: Any, allowed: tuple[str, ...]) -> str:
    name = str(action or "").upper()
    if name not in allowed:
        raise ValidationError(
            f"Unsupported action '{action}'. Valid actions: {list(allowed)}",
            field_name="action",
            code="INVALID_ACTION",
        )
    return name


def _require_context(actor_id: Any, organization_id: Any) -> None:
    if not organization_id:
        raise ValidationError("organization_id is required", field_name="organization_id")
    if not actor_id:
        raise ValidationError("actor_id is required", field_name="actor_id")


def _deadline(options: Any) -> Deadline | None:
    if not isinstance(options, dict):
        raise ValidationError("options must be an object", field_name="options")
    timeout_ms = options.get("timeout_ms")
    if timeout_ms is None:
        return None
    timeout_ms = to_int(timeout_ms, "timeout_ms")
    return Deadline.after_ms(timeout_ms) if timeout_ms else None


def _require_id(payload: dict[str, Any] | None, what: str) -> str:
    resource_id = (payload or {}).get("id")
    if not resource_id:
        raise ValidationError(f"{what}.id is required", field_name="id")
    return resource_id


class _Crud:
    """Runs an action and folds engine errors into a CrudResult."""

    resource = "resource"

    async def _run(self, action: str, organization_id: Any, call) -> CrudResult:
        try:
            return CrudResult.ok(await call())
        except UdbError as e:
            logger.info(
                f"{self.resource} {action} failed: {e.code}",
                extra={"organization_id": organization_id, "error_code": e.code, "action": action},
            )
            return CrudResult.failure(e)


class EntitiesCrud(_Crud):
    ACTIONS = ("CREATE", "READ", "UPDATE", "DELETE", "UPSERT")
    resource = "entities"

    def __init__(self, engine: EntityEngine) -> None:
        self.engine = engine

    async def crud(
        self,
        action: str,
        actor_id: str,
        organization_id: str,
        entity: dict[str, Any] | None = None,
        dynamic_fields: Any = None,
        relationships: list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> CrudResult:
        options = options or {}

        async def call() -> Any:
            name = _action(action, self.ACTIONS)
            _require_context(actor_id, organization_id)
            deadline = _deadline(options)
            engine = self.engine
            if name == "CREATE":
                created = await engine.create_entity(
                    organization_id, entity or {}, dynamic_fields, actor_id, relationships, deadline
                )
                return created.to_dict()
            if name == "UPDATE":
                updated = await engine.update_entity(
                    organization_id, entity or {}, dynamic_fields, actor_id, relationships, deadline
                )
                return updated.to_dict()
            if name == "UPSERT":
                result = await engine.upsert_entity(
                    organization_id, entity or {}, dynamic_fields, actor_id, relationships, deadline
                )
                return result.to_dict()
            if name == "DELETE":
                deleted = await engine.delete_entity(
                    organization_id,
                    _require_id(entity, "entity"),
                    hard=bool(options.get("hard", False)),
                    actor_id=actor_id,
                    deadline=deadline,
                )
                return deleted.to_dict()
            if entity and entity.get("id"):
                found = await engine.get_entity(organization_id, entity["id"], deadline)
                return [found.to_dict()]
            filters = {**(entity or {}), **options}
            found = await engine.read_entities(organization_id, filters, deadline)
            return [e.to_dict() for e in found]

        return await self._run(str(action), organization_id, call)


class RelationshipsCrud(_Crud):
    ACTIONS = ("CREATE", "READ", "DELETE")
    resource = "relationships"

    def __init__(self, engine: RelationshipEngine) -> None:
        self.engine = engine

    async def crud(
        self,
        action: str,
        actor_id: str,
        organization_id: str,
        relationship: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> CrudResult:
        options = options or {}
        relationship = relationship or {}

        async def call() -> Any:
            name = _action(action, self.ACTIONS)
            _require_context(actor_id, organization_id)
            deadline = _deadline(options)
            if name == "CREATE":
                created = await self.engine.create_relationship(
                    organization_id,
                    relationship.get("from_entity_id"),
                    relationship.get("to_entity_id"),
                    relationship.get("relationship_type"),
                    relationship.get("smart_code"),
                    relationship_data=relationship.get("relationship_data"),
                    actor_id=actor_id,
                    effective_date=relationship.get("effective_date"),
                    deadline=deadline,
                )
                return created.to_dict()
            if name == "DELETE":
                relationship_id = _require_id(relationship, "relationship")
                deleted = await self.engine.delete_relationship(
                    organization_id, relationship_id, deadline
                )
                return {"id": relationship_id, "deleted": deleted}
            if relationship.get("id"):
                found = await self.engine.get_relationship(
                    organization_id, relationship["id"], deadline
                )
                return [found.to_dict()]
            filters = {**relationship, **options}
            rels = await self.engine.read_relationships(organization_id, filters, deadline)
            return [r.to_dict() for r in rels]

        return await self._run(str(action), organization_id, call)


class TransactionsCrud(_Crud):
    ACTIONS = ("CREATE", "READ", "QUERY", "UPDATE", "DELETE", "POST", "VOID", "REVERSE")
    resource = "transactions"

    def __init__(self, engine: TransactionEngine) -> None:
        self.engine = engine

    async def crud(
        self,
        action: str,
        actor_id: str,
        organization_id: str,
        header: dict[str, Any] | None = None,
        lines: list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> CrudResult:
        options = options or {}

        async def call() -> Any:
            name = _action(action, self.ACTIONS)
            _require_context(actor_id, organization_id)
            deadline = _deadline(options)
            engine = self.engine
            if name == "CREATE":
                txn = await engine.create_transaction(
                    organization_id,
                    header or {},
                    lines,
                    actor_id,
                    auto_post_ledger=bool(options.get("auto_post_ledger", False)),
                    validate_balance=bool(options.get("validate_balance", True)),
                    deadline=deadline,
                )
                return txn.to_dict()
            if name == "READ" and header and header.get("id"):
                txn = await engine.get_transaction(organization_id, header["id"], deadline)
                return [txn.to_dict()]
            if name in ("READ", "QUERY"):
                filters = {**(header or {}), **options}
                include_lines = bool(filters.get("include_lines", False))
                txns = await engine.read_transactions(organization_id, filters, deadline)
                return [t.to_dict(include_lines=include_lines) for t in txns]

            transaction_id = _require_id(header, "header")
            if name == "UPDATE":
                txn = await engine.update_transaction(
                    organization_id,
                    transaction_id,
                    {k: v for k, v in (header or {}).items() if k != "id"},
                    actor_id,
                    validate_balance=bool(options.get("validate_balance", True)),
                    deadline=deadline,
                )
                return txn.to_dict()
            if name == "DELETE":
                txn = await engine.delete_transaction(organization_id, transaction_id, deadline)
                return {"id": txn.id, "deleted": True}
            if name == "POST":
                if options.get("post_to_ledger", True):
                    txn = await engine.post_to_ledger(
                        organization_id, transaction_id, actor_id, deadline
                    )
                else:
                    txn = await engine.post_transaction(
                        organization_id, transaction_id, actor_id, deadline
                    )
                return txn.to_dict()
            reverse = engine.void_transaction if name == "VOID" else engine.reverse_transaction
            original, reversal = await reverse(
                organization_id, transaction_id, options.get("reason"), actor_id, deadline
            )
            return {"original": original.to_dict(), "reversal": reversal.to_dict()}

        return await self._run(str(action), organization_id, call)


class AuthCrud(_Crud):
    resource = "auth"

    def __init__(self, resolver: AuthorizationResolver) -> None:
        self.resolver = resolver

    async def introspect(self, actor_id: str, options: dict[str, Any] | None = None) -> CrudResult:
        options = options or {}

        async def call() -> Any:
            if not actor_id:
                raise ValidationError("actor_id is required", field_name="actor_id")
            result = await self.resolver.introspect(actor_id, deadline=_deadline(options))
            return result.to_dict()

        return await self._run("INTROSPECT", None, call)


class OrganizationsCrud(_Crud):
    resource = "organizations"

    def __init__(self, engine: OrganizationEngine) -> None:
        self.engine = engine

    async def create(self, payload: dict[str, Any], actor_id: str | None = None) -> CrudResult:
        async def call() -> Any:
            org = await self.engine.create_from_payload(payload, actor_id)
            return org.to_dict()

        return await self._run("CREATE", payload.get("id"), call)


class UniversalApi:
    """Entry point wiring one store into every engine and CRUD facade.

    Example:
        >>> api = UniversalApi.from_config(ServerConfig.from_env())
        >>> result = await api.entities.crud(
        ...     "CREATE", actor_id, org_id,
        ...     entity={"entity_type": "customer", "entity_name": "Acme",
        ...             "smart_code": "HERA.CRM.CUSTOMER.ENTITY.PROFILE.v1"},
        ... )
        >>> result.success
        True
    """

    def __init__(self, store: UniversalStore, config: ServerConfig | None = None) -> None:
        self.store = store
        self.config = config or ServerConfig()
        validator = SmartCodeValidator(self.config.smart_code.root_tag)

        self.organization_engine = OrganizationEngine(store, self.config, validator)
        self.relationship_engine = RelationshipEngine(store, self.config, validator)
        self.entity_engine = EntityEngine(store, self.config, validator, self.relationship_engine)
        self.transaction_engine = TransactionEngine(store, self.config, validator)
        self.resolver = AuthorizationResolver(store, self.config, validator)

        self.organizations = OrganizationsCrud(self.organization_engine)
        self.entities = EntitiesCrud(self.entity_engine)
        self.relationships = RelationshipsCrud(self.relationship_engine)
        self.transactions = TransactionsCrud(self.transaction_engine)
        self.auth = AuthCrud(self.resolver)

    @classmethod
    def from_config(cls, config: ServerConfig, initialize: bool = True) -> UniversalApi:
        store = UniversalStore.from_config(config.storage)
        if initialize:
            store.initialize()
        return cls(store, config)
