"""
Universal SQLite store.

This module manages the single SQLite database that holds the six
universal relations:
- core_organizations: tenants
- core_entities: every business object
- core_dynamic_data: typed attribute values of entities
- core_relationships: directed typed edges between entities
- universal_transactions: business event headers
- universal_transaction_lines: itemized transaction detail

The store owns connections, the schema and row (de)serialization. Business
rules live in the engines, which run their reads and writes inside one
unit of work obtained from this store.

Invariants:
    - Every row-level method takes organization_id, except owner_of(), which
      only reports which organization a bare id belongs to
    - Each unit of work is a single BEGIN IMMEDIATE transaction
    - Deadlines are checked when a unit starts and right before COMMIT
    - Decimals are stored as canonical text, never REAL
    - Exactly one value slot of a dynamic field row is non-null (CHECK constraint)

How to change safely:
    - Schema changes must be additive; bump SCHEMA_VERSION (PRAGMA user_version)
    - Never add durable tables outside the six relations
    - Keep row converters in sync with the CREATE TABLE statements

Table schema:
    core_entities:
        - id TEXT PRIMARY KEY
        - organization_id TEXT
        - entity_type TEXT (upper-case)
        - entity_name, entity_code, smart_code, status TEXT
        - metadata_json TEXT
        - version INTEGER
        - created_at / updated_at INTEGER (Unix ms)

    core_dynamic_data:
        - entity_id TEXT, field_name TEXT (PRIMARY KEY)
        - field_type TEXT
        - field_value_text / _number / _boolean / _date / _json
        - smart_code TEXT
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..deadline import Deadline, check_deadline
from ..schema.types import (
    BooleanValue,
    DateValue,
    DynamicField,
    Entity,
    FieldType,
    FieldValue,
    JsonValue,
    NumberValue,
    Organization,
    Relationship,
    TextValue,
    Transaction,
    TransactionLine,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

# Tables addressable by owner_of()
_OWNED_TABLES = {
    "entity": "core_entities",
    "relationship": "core_relationships",
    "transaction": "universal_transactions",
}


def _dump_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _to_dec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


class UniversalStore:
    """SQLite store for the universal relations.

    Thread safety:
        Each unit of work opens its own connection.
        SQLite serializes writers; WAL mode lets readers proceed.

    Example:
        >>> store = UniversalStore("/var/lib/udb/universal.db")
        >>> store.initialize()
        >>> with store.unit_of_work("create_entity") as conn:
        ...     store.insert_entity(conn, entity)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @classmethod
    def from_config(cls, config: Any) -> UniversalStore:
        """Build a store from a StorageConfig."""
        return cls(
            db_path=config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            cache_size_pages=config.cache_size_pages,
        )

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, closing it afterwards."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(
        self,
        operation: str,
        deadline: Deadline | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Run one atomic write unit.

        Everything executed on the yielded connection commits together or
        not at all. Any exception, including an expired deadline at commit
        time, rolls the unit back and propagates.

        Raises:
            DeadlineExceededError: If the deadline expired before start or commit
        """
        check_deadline(deadline, operation)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                check_deadline(deadline, operation)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    @contextmanager
    def read_snapshot(
        self,
        operation: str,
        deadline: Deadline | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Run reads against one consistent snapshot."""
        check_deadline(deadline, operation)
        with self._get_connection() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("COMMIT")
        check_deadline(deadline, operation)

    def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info("Initialized universal store", extra={"db_path": str(self.db_path)})

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS core_organizations (
                id TEXT PRIMARY KEY,
                organization_name TEXT NOT NULL,
                organization_code TEXT NOT NULL UNIQUE,
                organization_type TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS core_entities (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL REFERENCES core_organizations(id),
                entity_type TEXT NOT NULL,
                entity_name TEXT NOT NULL,
                entity_code TEXT,
                smart_code TEXT NOT NULL,
                status TEXT NOT NULL,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                created_by TEXT,
                updated_by TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_entities_type
                ON core_entities(organization_id, entity_type);
            CREATE INDEX IF NOT EXISTS idx_entities_code
                ON core_entities(organization_id, entity_code);

            CREATE TABLE IF NOT EXISTS core_dynamic_data (
                entity_id TEXT NOT NULL REFERENCES core_entities(id) ON DELETE CASCADE,
                organization_id TEXT NOT NULL,
                field_name TEXT NOT NULL,
                field_type TEXT NOT NULL
                    CHECK (field_type IN ('text', 'number', 'boolean', 'date', 'json')),
                field_value_text TEXT,
                field_value_number TEXT,
                field_value_boolean INTEGER,
                field_value_date TEXT,
                field_value_json TEXT,
                smart_code TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (entity_id, field_name),
                CHECK ((field_type = 'text') = (field_value_text IS NOT NULL)),
                CHECK ((field_type = 'number') = (field_value_number IS NOT NULL)),
                CHECK ((field_type = 'boolean') = (field_value_boolean IS NOT NULL)),
                CHECK ((field_type = 'date') = (field_value_date IS NOT NULL)),
                CHECK ((field_type = 'json') = (field_value_json IS NOT NULL))
            );

            CREATE INDEX IF NOT EXISTS idx_dynamic_org
                ON core_dynamic_data(organization_id, field_name);

            CREATE TABLE IF NOT EXISTS core_relationships (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL REFERENCES core_organizations(id),
                from_entity_id TEXT NOT NULL REFERENCES core_entities(id),
                to_entity_id TEXT NOT NULL REFERENCES core_entities(id),
                relationship_type TEXT NOT NULL,
                smart_code TEXT NOT NULL,
                relationship_data_json TEXT NOT NULL DEFAULT '{}',
                is_active INTEGER NOT NULL DEFAULT 1,
                effective_date TEXT,
                created_by TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_relationships_from
                ON core_relationships(organization_id, from_entity_id, relationship_type);
            CREATE INDEX IF NOT EXISTS idx_relationships_to
                ON core_relationships(organization_id, to_entity_id, relationship_type);

            CREATE TABLE IF NOT EXISTS universal_transactions (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL REFERENCES core_organizations(id),
                transaction_type TEXT NOT NULL,
                transaction_code TEXT NOT NULL,
                transaction_date TEXT NOT NULL,
                total_amount TEXT NOT NULL,
                smart_code TEXT NOT NULL,
                source_entity_id TEXT REFERENCES core_entities(id),
                target_entity_id TEXT REFERENCES core_entities(id),
                transaction_status TEXT NOT NULL,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                created_by TEXT,
                updated_by TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (organization_id, transaction_code)
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_type
                ON universal_transactions(organization_id, transaction_type, transaction_date);

            CREATE TABLE IF NOT EXISTS universal_transaction_lines (
                id TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL
                    REFERENCES universal_transactions(id) ON DELETE CASCADE,
                organization_id TEXT NOT NULL,
                line_number INTEGER NOT NULL,
                line_type TEXT NOT NULL,
                description TEXT,
                entity_id TEXT REFERENCES core_entities(id),
                quantity TEXT NOT NULL,
                unit_amount TEXT,
                line_amount TEXT NOT NULL,
                smart_code TEXT NOT NULL,
                line_data_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                UNIQUE (transaction_id, line_number)
            );

            CREATE INDEX IF NOT EXISTS idx_lines_entity
                ON universal_transaction_lines(organization_id, entity_id);
        """)
        conn.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")

    # --- Ownership ---

    def owner_of(self, conn: sqlite3.Connection, kind: str, resource_id: str) -> str | None:
        """Return the organization that owns a bare id, or None if absent.

        Only used to tell "not found" apart from "belongs elsewhere".
        """
        table = _OWNED_TABLES[kind]
        row = conn.execute(
            f"SELECT organization_id FROM {table} WHERE id = ?", (resource_id,)
        ).fetchone()
        return row["organization_id"] if row else None

    # --- Organizations ---

    def insert_organization(self, conn: sqlite3.Connection, org: Organization) -> None:
        conn.execute(
            """
            INSERT INTO core_organizations (id, organization_name, organization_code,
                                            organization_type, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (org.id, org.name, org.code, org.org_type, org.status, org.created_at, org.updated_at),
        )

    def fetch_organization(self, conn: sqlite3.Connection, org_id: str) -> Organization | None:
        row = conn.execute("SELECT * FROM core_organizations WHERE id = ?", (org_id,)).fetchone()
        return self._row_to_organization(row) if row else None

    def fetch_organization_by_code(
        self, conn: sqlite3.Connection, code: str
    ) -> Organization | None:
        row = conn.execute(
            "SELECT * FROM core_organizations WHERE organization_code = ?", (code,)
        ).fetchone()
        return self._row_to_organization(row) if row else None

    def list_organizations(self, conn: sqlite3.Connection) -> list[Organization]:
        rows = conn.execute("SELECT * FROM core_organizations ORDER BY created_at, id").fetchall()
        return [self._row_to_organization(r) for r in rows]

    # --- Entities ---

    def insert_entity(self, conn: sqlite3.Connection, entity: Entity) -> None:
        conn.execute(
            """
            INSERT INTO core_entities (id, organization_id, entity_type, entity_name,
                                       entity_code, smart_code, status, metadata_json,
                                       created_by, updated_by, created_at, updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entity.id,
                entity.organization_id,
                entity.entity_type,
                entity.entity_name,
                entity.entity_code,
                entity.smart_code,
                entity.status,
                _dump_json(entity.metadata),
                entity.created_by,
                entity.updated_by,
                entity.created_at,
                entity.updated_at,
                entity.version,
            ),
        )

    def update_entity_row(
        self,
        conn: sqlite3.Connection,
        entity: Entity,
        expected_version: int,
    ) -> bool:
        """Compare-and-increment update.

        Writes entity (whose version must already be expected_version + 1)
        only if the stored version still equals expected_version.

        Returns:
            True if the row was updated, False if the version moved on
        """
        cursor = conn.execute(
            """
            UPDATE core_entities
            SET entity_type = ?, entity_name = ?, entity_code = ?, smart_code = ?,
                status = ?, metadata_json = ?, updated_by = ?, updated_at = ?, version = ?
            WHERE organization_id = ? AND id = ? AND version = ?
            """,
            (
                entity.entity_type,
                entity.entity_name,
                entity.entity_code,
                entity.smart_code,
                entity.status,
                _dump_json(entity.metadata),
                entity.updated_by,
                entity.updated_at,
                entity.version,
                entity.organization_id,
                entity.id,
                expected_version,
            ),
        )
        return cursor.rowcount == 1

    def fetch_entity(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        entity_id: str,
        with_fields: bool = True,
    ) -> Entity | None:
        row = conn.execute(
            "SELECT * FROM core_entities WHERE organization_id = ? AND id = ?",
            (org_id, entity_id),
        ).fetchone()
        if not row:
            return None
        entity = self._row_to_entity(row)
        if with_fields:
            entity.dynamic_fields = self.fetch_fields(conn, org_id, [entity_id]).get(entity_id, {})
        return entity

    def find_entity_by_code(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        entity_type: str,
        entity_code: str,
    ) -> Entity | None:
        row = conn.execute(
            """
            SELECT * FROM core_entities
            WHERE organization_id = ? AND entity_type = ? AND entity_code = ?
            ORDER BY created_at, id LIMIT 1
            """,
            (org_id, entity_type, entity_code),
        ).fetchone()
        return self._row_to_entity(row) if row else None

    def query_entities(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        entity_type: str | None = None,
        entity_code: str | None = None,
        status: str | None = None,
        smart_code: str | None = None,
        search: str | None = None,
        exclude_status: str | None = None,
        entity_ids: Iterable[str] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Entity]:
        """Filtered entity query with dynamic fields attached."""
        query = "SELECT * FROM core_entities WHERE organization_id = ?"
        params: list[Any] = [org_id]

        if entity_type is not None:
            query += " AND entity_type = ?"
            params.append(entity_type)
        if entity_code is not None:
            query += " AND entity_code = ?"
            params.append(entity_code)
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        if exclude_status is not None:
            query += " AND status != ?"
            params.append(exclude_status)
        if smart_code is not None:
            query += " AND smart_code = ?"
            params.append(smart_code)
        if search:
            query += " AND entity_name LIKE ? ESCAPE '\\'"
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"%{escaped}%")
        if entity_ids is not None:
            ids = list(entity_ids)
            if not ids:
                return []
            query += f" AND id IN ({','.join('?' * len(ids))})"
            params.extend(ids)

        query += " ORDER BY created_at, id LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        entities = [self._row_to_entity(r) for r in conn.execute(query, params).fetchall()]
        fields = self.fetch_fields(conn, org_id, [e.id for e in entities])
        for entity in entities:
            entity.dynamic_fields = fields.get(entity.id, {})
        return entities

    def delete_entity_row(self, conn: sqlite3.Connection, org_id: str, entity_id: str) -> bool:
        """Remove an entity with its fields and every relationship touching it."""
        conn.execute(
            "DELETE FROM core_dynamic_data WHERE organization_id = ? AND entity_id = ?",
            (org_id, entity_id),
        )
        conn.execute(
            """
            DELETE FROM core_relationships
            WHERE organization_id = ? AND (from_entity_id = ? OR to_entity_id = ?)
            """,
            (org_id, entity_id, entity_id),
        )
        cursor = conn.execute(
            "DELETE FROM core_entities WHERE organization_id = ? AND id = ?",
            (org_id, entity_id),
        )
        return cursor.rowcount > 0

    def count_transaction_references(
        self, conn: sqlite3.Connection, org_id: str, entity_id: str
    ) -> int:
        row = conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM universal_transactions
                 WHERE organization_id = ? AND (source_entity_id = ? OR target_entity_id = ?))
              + (SELECT COUNT(*) FROM universal_transaction_lines
                 WHERE organization_id = ? AND entity_id = ?) AS refs
            """,
            (org_id, entity_id, entity_id, org_id, entity_id),
        ).fetchone()
        return row["refs"]

    # --- Dynamic fields ---

    def fetch_fields(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        entity_ids: list[str],
    ) -> dict[str, dict[str, DynamicField]]:
        """Dynamic fields for several entities, keyed by entity id then field name."""
        result: dict[str, dict[str, DynamicField]] = {}
        if not entity_ids:
            return result
        placeholders = ",".join("?" * len(entity_ids))
        rows = conn.execute(
            f"""
            SELECT * FROM core_dynamic_data
            WHERE organization_id = ? AND entity_id IN ({placeholders})
            ORDER BY field_name
            """,
            [org_id, *entity_ids],
        ).fetchall()
        for row in rows:
            dynamic_field = self._row_to_field(row)
            result.setdefault(dynamic_field.entity_id, {})[dynamic_field.field_name] = (
                dynamic_field
            )
        return result

    def upsert_field(self, conn: sqlite3.Connection, dynamic_field: DynamicField) -> None:
        slots = self._field_slots(dynamic_field.value)
        conn.execute(
            """
            INSERT INTO core_dynamic_data (entity_id, organization_id, field_name, field_type,
                                           field_value_text, field_value_number,
                                           field_value_boolean, field_value_date,
                                           field_value_json, smart_code, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (entity_id, field_name) DO UPDATE SET
                field_type = excluded.field_type,
                field_value_text = excluded.field_value_text,
                field_value_number = excluded.field_value_number,
                field_value_boolean = excluded.field_value_boolean,
                field_value_date = excluded.field_value_date,
                field_value_json = excluded.field_value_json,
                smart_code = excluded.smart_code,
                updated_at = excluded.updated_at
            """,
            (
                dynamic_field.entity_id,
                dynamic_field.organization_id,
                dynamic_field.field_name,
                dynamic_field.field_type.value,
                *slots,
                dynamic_field.smart_code,
                dynamic_field.created_at,
                dynamic_field.updated_at,
            ),
        )

    @staticmethod
    def _field_slots(value: FieldValue) -> tuple[Any, Any, Any, Any, Any]:
        text = number = boolean = date = doc = None
        if isinstance(value, TextValue):
            text = value.value
        elif isinstance(value, NumberValue):
            number = str(value.value)
        elif isinstance(value, BooleanValue):
            boolean = 1 if value.value else 0
        elif isinstance(value, DateValue):
            date = value.value.isoformat()
        else:
            doc = _dump_json(value.value)
        return text, number, boolean, date, doc

    # --- Relationships ---

    def insert_relationship(self, conn: sqlite3.Connection, rel: Relationship) -> None:
        conn.execute(
            """
            INSERT INTO core_relationships (id, organization_id, from_entity_id, to_entity_id,
                                            relationship_type, smart_code,
                                            relationship_data_json, is_active, effective_date,
                                            created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rel.id,
                rel.organization_id,
                rel.from_entity_id,
                rel.to_entity_id,
                rel.relationship_type,
                rel.smart_code,
                _dump_json(rel.relationship_data),
                1 if rel.is_active else 0,
                rel.effective_date,
                rel.created_by,
                rel.created_at,
            ),
        )

    def fetch_relationship(
        self, conn: sqlite3.Connection, org_id: str, relationship_id: str
    ) -> Relationship | None:
        row = conn.execute(
            "SELECT * FROM core_relationships WHERE organization_id = ? AND id = ?",
            (org_id, relationship_id),
        ).fetchone()
        return self._row_to_relationship(row) if row else None

    def query_relationships(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        from_entity_id: str | None = None,
        to_entity_id: str | None = None,
        relationship_type: str | None = None,
        is_active: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Relationship]:
        query = "SELECT * FROM core_relationships WHERE organization_id = ?"
        params: list[Any] = [org_id]

        if from_entity_id is not None:
            query += " AND from_entity_id = ?"
            params.append(from_entity_id)
        if to_entity_id is not None:
            query += " AND to_entity_id = ?"
            params.append(to_entity_id)
        if relationship_type is not None:
            query += " AND relationship_type = ?"
            params.append(relationship_type)
        if is_active is not None:
            query += " AND is_active = ?"
            params.append(1 if is_active else 0)

        query += " ORDER BY created_at, id"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        return [self._row_to_relationship(r) for r in conn.execute(query, params).fetchall()]

    def delete_relationship_row(
        self, conn: sqlite3.Connection, org_id: str, relationship_id: str
    ) -> bool:
        cursor = conn.execute(
            "DELETE FROM core_relationships WHERE organization_id = ? AND id = ?",
            (org_id, relationship_id),
        )
        return cursor.rowcount > 0

    # --- Transactions ---

    def insert_transaction(self, conn: sqlite3.Connection, txn: Transaction) -> None:
        conn.execute(
            """
            INSERT INTO universal_transactions (id, organization_id, transaction_type,
                                                transaction_code, transaction_date,
                                                total_amount, smart_code, source_entity_id,
                                                target_entity_id, transaction_status,
                                                metadata_json, created_by, updated_by,
                                                created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                txn.id,
                txn.organization_id,
                txn.transaction_type,
                txn.transaction_code,
                txn.transaction_date,
                _dec(txn.total_amount),
                txn.smart_code,
                txn.source_entity_id,
                txn.target_entity_id,
                txn.status.value,
                _dump_json(txn.metadata),
                txn.created_by,
                txn.updated_by,
                txn.created_at,
                txn.updated_at,
            ),
        )

    def update_transaction_row(self, conn: sqlite3.Connection, txn: Transaction) -> None:
        conn.execute(
            """
            UPDATE universal_transactions
            SET transaction_type = ?, transaction_code = ?, transaction_date = ?,
                total_amount = ?, smart_code = ?, source_entity_id = ?, target_entity_id = ?,
                transaction_status = ?, metadata_json = ?, updated_by = ?, updated_at = ?
            WHERE organization_id = ? AND id = ?
            """,
            (
                txn.transaction_type,
                txn.transaction_code,
                txn.transaction_date,
                _dec(txn.total_amount),
                txn.smart_code,
                txn.source_entity_id,
                txn.target_entity_id,
                txn.status.value,
                _dump_json(txn.metadata),
                txn.updated_by,
                txn.updated_at,
                txn.organization_id,
                txn.id,
            ),
        )

    def insert_line(self, conn: sqlite3.Connection, line: TransactionLine) -> None:
        conn.execute(
            """
            INSERT INTO universal_transaction_lines (id, transaction_id, organization_id,
                                                     line_number, line_type, description,
                                                     entity_id, quantity, unit_amount,
                                                     line_amount, smart_code, line_data_json,
                                                     created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                line.id,
                line.transaction_id,
                line.organization_id,
                line.line_number,
                line.line_type,
                line.description,
                line.entity_id,
                _dec(line.quantity),
                _dec(line.unit_amount),
                _dec(line.line_amount),
                line.smart_code,
                _dump_json(line.line_data),
                line.created_at,
            ),
        )

    def fetch_transaction(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        transaction_id: str,
        include_lines: bool = True,
    ) -> Transaction | None:
        row = conn.execute(
            "SELECT * FROM universal_transactions WHERE organization_id = ? AND id = ?",
            (org_id, transaction_id),
        ).fetchone()
        if not row:
            return None
        txn = self._row_to_transaction(row)
        if include_lines:
            txn.lines = self.fetch_lines(conn, org_id, transaction_id)
        return txn

    def fetch_lines(
        self, conn: sqlite3.Connection, org_id: str, transaction_id: str
    ) -> list[TransactionLine]:
        rows = conn.execute(
            """
            SELECT * FROM universal_transaction_lines
            WHERE organization_id = ? AND transaction_id = ?
            ORDER BY line_number
            """,
            (org_id, transaction_id),
        ).fetchall()
        return [self._row_to_line(r) for r in rows]

    def transaction_code_exists(self, conn: sqlite3.Connection, org_id: str, code: str) -> bool:
        row = conn.execute(
            """
            SELECT 1 FROM universal_transactions
            WHERE organization_id = ? AND transaction_code = ?
            """,
            (org_id, code),
        ).fetchone()
        return row is not None

    def query_transactions(
        self,
        conn: sqlite3.Connection,
        org_id: str,
        transaction_type: str | None = None,
        status: str | None = None,
        source_entity_id: str | None = None,
        target_entity_id: str | None = None,
        smart_code: str | None = None,
        transaction_code: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        include_lines: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        query = "SELECT * FROM universal_transactions WHERE organization_id = ?"
        params: list[Any] = [org_id]

        for column, value in (
            ("transaction_type", transaction_type),
            ("transaction_status", status),
            ("source_entity_id", source_entity_id),
            ("target_entity_id", target_entity_id),
            ("smart_code", smart_code),
            ("transaction_code", transaction_code),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        if date_from is not None:
            query += " AND transaction_date >= ?"
            params.append(date_from)
        if date_to is not None:
            query += " AND transaction_date <= ?"
            params.append(date_to)

        query += " ORDER BY transaction_date, created_at, id LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        txns = [self._row_to_transaction(r) for r in conn.execute(query, params).fetchall()]
        if include_lines:
            for txn in txns:
                txn.lines = self.fetch_lines(conn, org_id, txn.id)
        return txns

    def delete_transaction_row(
        self, conn: sqlite3.Connection, org_id: str, transaction_id: str
    ) -> bool:
        conn.execute(
            """
            DELETE FROM universal_transaction_lines
            WHERE organization_id = ? AND transaction_id = ?
            """,
            (org_id, transaction_id),
        )
        cursor = conn.execute(
            "DELETE FROM universal_transactions WHERE organization_id = ? AND id = ?",
            (org_id, transaction_id),
        )
        return cursor.rowcount > 0

    # --- Row converters ---

    @staticmethod
    def _row_to_organization(row: sqlite3.Row) -> Organization:
        return Organization(
            id=row["id"],
            name=row["organization_name"],
            code=row["organization_code"],
            org_type=row["organization_type"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> Entity:
        return Entity(
            id=row["id"],
            organization_id=row["organization_id"],
            entity_type=row["entity_type"],
            entity_name=row["entity_name"],
            entity_code=row["entity_code"],
            smart_code=row["smart_code"],
            status=row["status"],
            metadata=json.loads(row["metadata_json"]),
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )

    @staticmethod
    def _row_to_field(row: sqlite3.Row) -> DynamicField:
        field_type = FieldType.from_str(row["field_type"])
        value: FieldValue
        if field_type is FieldType.TEXT:
            value = TextValue(row["field_value_text"])
        elif field_type is FieldType.NUMBER:
            value = NumberValue(Decimal(row["field_value_number"]))
        elif field_type is FieldType.BOOLEAN:
            value = BooleanValue(bool(row["field_value_boolean"]))
        elif field_type is FieldType.DATE:
            value = DateValue(datetime.fromisoformat(row["field_value_date"]))
        else:
            value = JsonValue(json.loads(row["field_value_json"]))
        return DynamicField(
            entity_id=row["entity_id"],
            organization_id=row["organization_id"],
            field_name=row["field_name"],
            value=value,
            smart_code=row["smart_code"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_relationship(row: sqlite3.Row) -> Relationship:
        return Relationship(
            id=row["id"],
            organization_id=row["organization_id"],
            from_entity_id=row["from_entity_id"],
            to_entity_id=row["to_entity_id"],
            relationship_type=row["relationship_type"],
            smart_code=row["smart_code"],
            relationship_data=json.loads(row["relationship_data_json"]),
            is_active=bool(row["is_active"]),
            effective_date=row["effective_date"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            organization_id=row["organization_id"],
            transaction_type=row["transaction_type"],
            transaction_code=row["transaction_code"],
            transaction_date=row["transaction_date"],
            total_amount=Decimal(row["total_amount"]),
            smart_code=row["smart_code"],
            status=TransactionStatus(row["transaction_status"]),
            source_entity_id=row["source_entity_id"],
            target_entity_id=row["target_entity_id"],
            metadata=json.loads(row["metadata_json"]),
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_line(row: sqlite3.Row) -> TransactionLine:
        return TransactionLine(
            id=row["id"],
            transaction_id=row["transaction_id"],
            organization_id=row["organization_id"],
            line_number=row["line_number"],
            line_type=row["line_type"],
            description=row["description"],
            entity_id=row["entity_id"],
            quantity=Decimal(row["quantity"]),
            unit_amount=_to_dec(row["unit_amount"]),
            line_amount=Decimal(row["line_amount"]),
            smart_code=row["smart_code"],
            line_data=json.loads(row["line_data_json"]),
            created_at=row["created_at"],
        )
