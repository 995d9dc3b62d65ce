"""
Universal data engine gateway entry point.

Loads configuration from the environment, configures logging and serves
the FastAPI application with uvicorn.

Usage:
    python -m udb.udb_core.main

Environment:
    UDB_DATA_DIR, UDB_DB_FILENAME, UDB_HOST, UDB_PORT (gateway settings)
    LOG_LEVEL, LOG_FORMAT, SMART_CODE_ROOT, ... (engine settings, see config.py)
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api.http_app import create_app
from .api.settings import Settings
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Engine configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        settings = Settings()
        config = settings.to_server_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
