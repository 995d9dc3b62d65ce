"""
Configuration management for the universal data engine.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Type-tag sets are stored upper-cased, matching write-edge normalization
    - Monetary settings are Decimals, never floats

How to change safely:
    - Add new settings with defaults that keep existing behavior
    - Keep env variable names stable; they are part of the deployment contract
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_set(name: str, default: str) -> frozenset[str]:
    raw = os.getenv(name, default)
    return frozenset(part.strip().upper() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class StorageConfig:
    """Relational store configuration.

    Attributes:
        data_dir: Directory holding the SQLite database file
        db_filename: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/udb"
    db_filename: str = "universal.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/udb"),
            db_filename=os.getenv("DB_FILENAME", "universal.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, self.db_filename)


@dataclass(frozen=True)
class SmartCodeConfig:
    """Smart code grammar configuration.

    Attributes:
        root_tag: Fixed first segment of every smart code
    """

    root_tag: str = "HERA"

    @classmethod
    def from_env(cls) -> SmartCodeConfig:
        """Load configuration from environment variables."""
        return cls(root_tag=os.getenv("SMART_CODE_ROOT", "HERA"))


@dataclass(frozen=True)
class EngineConfig:
    """Entity and relationship engine rules.

    Attributes:
        unique_code_entity_types: Entity types whose entity_code is unique per organization
        hierarchical_relationship_types: Relationship types checked for cycles
        soft_delete_status: Status written by a soft delete
        default_timeout_ms: Deadline applied when the caller supplies none (0 = none)
    """

    unique_code_entity_types: frozenset[str] = frozenset(
        {"USER", "ROLE", "APP", "ORGANIZATION", "GL_ACCOUNT"}
    )
    hierarchical_relationship_types: frozenset[str] = frozenset(
        {"PARENT_OF", "CHILD_OF", "REPORTS_TO", "ACCOUNT_PARENT_OF"}
    )
    soft_delete_status: str = "deleted"
    default_timeout_ms: int = 0

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables."""
        return cls(
            unique_code_entity_types=_env_set(
                "UNIQUE_CODE_ENTITY_TYPES", "USER,ROLE,APP,ORGANIZATION,GL_ACCOUNT"
            ),
            hierarchical_relationship_types=_env_set(
                "HIERARCHICAL_RELATIONSHIP_TYPES",
                "PARENT_OF,CHILD_OF,REPORTS_TO,ACCOUNT_PARENT_OF",
            ),
            soft_delete_status=os.getenv("SOFT_DELETE_STATUS", "deleted"),
            default_timeout_ms=int(os.getenv("DEFAULT_TIMEOUT_MS", "0")),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """Transaction balance and auto-posting configuration.

    Attributes:
        balance_tolerance: Maximum allowed difference between a header total
            and its line total (ledger sides always balance exactly)
        default_currency: Currency assumed for ledger lines without one
        gl_account_entity_type: Entity type of general ledger accounts
    """

    balance_tolerance: Decimal = Decimal("0.01")
    default_currency: str = "DOC"
    gl_account_entity_type: str = "GL_ACCOUNT"

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load configuration from environment variables."""
        raw = os.getenv("LEDGER_BALANCE_TOLERANCE", "0.01")
        try:
            tolerance = Decimal(raw)
        except InvalidOperation:
            raise ValueError(f"Invalid LEDGER_BALANCE_TOLERANCE '{raw}'")
        return cls(
            balance_tolerance=tolerance,
            default_currency=os.getenv("LEDGER_DEFAULT_CURRENCY", "DOC"),
            gl_account_entity_type=os.getenv("GL_ACCOUNT_ENTITY_TYPE", "GL_ACCOUNT").upper(),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete engine configuration.

    Attributes:
        storage: Relational store configuration
        smart_code: Smart code grammar configuration
        engine: Entity/relationship rules
        ledger: Balance and posting configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    smart_code: SmartCodeConfig = field(default_factory=SmartCodeConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            smart_code=SmartCodeConfig.from_env(),
            engine=EngineConfig.from_env(),
            ledger=LedgerConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        root = self.smart_code.root_tag
        if not (3 <= len(root) <= 15 and root.isalnum() and root == root.upper()):
            raise ValueError(
                f"SMART_CODE_ROOT '{root}' must be 3-15 upper-case alphanumeric characters"
            )
        if self.ledger.balance_tolerance < 0:
            raise ValueError("LEDGER_BALANCE_TOLERANCE must not be negative")
        if not self.engine.soft_delete_status:
            raise ValueError("SOFT_DELETE_STATUS must not be empty")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "smart_code_root": self.smart_code.root_tag,
                "unique_code_entity_types": sorted(self.engine.unique_code_entity_types),
                "hierarchical_relationship_types": sorted(
                    self.engine.hierarchical_relationship_types
                ),
                "balance_tolerance": str(self.ledger.balance_tolerance),
                "log_level": self.observability.log_level,
            },
        )
