"""
Campus EAV Server - Main entry point.

This module starts the HTTP gateway over the EAV core:
- Opens (and creates) the SQLite database
- Optionally seeds the attribute catalog
- Serves the FastAPI app under uvicorn

Usage:
    python -m campus.eav_server.main

Configuration is entirely via environment variables.
See config.py and api/config.py for all available settings.

Invariants:
    - Logging is configured before any component is created
    - The schema exists before the first request is accepted

How to change safely:
    - Keep startup work inside the app lifespan so tests and uvicorn share it
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def serve(config: ServerConfig, settings: Settings | None = None) -> None:
    """Run the gateway until interrupted."""
    settings = settings or Settings()
    app = create_app(config, settings)

    logger.info("Starting Campus EAV gateway", extra={"host": settings.host, "port": settings.port})
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)
    config.log_config()

    serve(config)


if __name__ == "__main__":
    main()
