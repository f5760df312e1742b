"""Command line entry point: ``python -m dyehouse``."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import uvicorn

from .logging_conf import configure_logging
from .settings import load_settings
from .web.app import create_app

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Dyehouse finishing-floor service")
    parser.add_argument("--config", type=Path, help="INI file with a [dyehouse] section")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, help="Bind port (overrides config)")
    parser.add_argument("--db", type=Path, help="SQLite database file (overrides config)")
    parser.add_argument("--demo", action="store_true", help="Seed demo data on an empty database")
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.db:
        overrides["db_path"] = args.db
    if args.demo:
        overrides["seed_demo_data"] = True
    if overrides:
        settings = replace(settings, **overrides)

    configure_logging(settings)
    logger.info("Starting on %s:%s with database %s", settings.host, settings.port, settings.db_path)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
