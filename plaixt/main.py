"""
plaixt HTTP service - main entry point.

Loads the store under the configured root folder and serves the query API
with uvicorn until interrupted.

Usage:
    python -m plaixt.main
    plaixt serve --root ~/records

Configuration comes from plaixt.yaml and PLAIXT_* environment variables.
See config.py for all available settings.

Invariants:
    - Logging is configured before the first load
    - A store that fails to load still serves /health (as degraded)
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .config import ConfigError, Settings

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings.

    Args:
        settings: plaixt settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def serve(settings: Settings) -> None:
    """Run the HTTP API until interrupted."""
    from .api import create_app

    settings.log_config()
    settings.validate_paths()
    app = create_app(settings)
    logger.info(f"Serving plaixt on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def main() -> None:
    """Main entry point."""
    try:
        settings = Settings.load()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)

    try:
        serve(settings)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
