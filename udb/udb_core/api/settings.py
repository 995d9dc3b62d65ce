"""
Configuration for the HTTP gateway.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

from ..config import ServerConfig, StorageConfig


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    # Store location
    data_dir: str = Field(default="/var/lib/udb", description="Directory of the SQLite file")
    db_filename: str = Field(default="universal.db", description="SQLite file name")

    # Gateway settings
    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Deadline applied when a request sets no timeout_ms (0 = none)
    request_timeout_ms: int = Field(default=0, description="Default request deadline in ms")

    model_config = {"env_prefix": "UDB_"}

    def to_server_config(self) -> ServerConfig:
        """Engine configuration with this gateway's store location."""
        base = ServerConfig.from_env()
        base.storage = StorageConfig(
            data_dir=self.data_dir,
            db_filename=self.db_filename,
            wal_mode=base.storage.wal_mode,
            busy_timeout_ms=base.storage.busy_timeout_ms,
            cache_size_pages=base.storage.cache_size_pages,
        )
        return base
