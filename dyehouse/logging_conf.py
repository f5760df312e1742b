"""Root logger setup for the service and the demo script."""

from __future__ import annotations

import logging
import sys

from .settings import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Wall terminals poll the status page and the scan endpoint all shift long.
CHATTY_LOGGERS = ("uvicorn.access", "watchfiles")


def resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level {name!r}")
    return level


def configure_logging(settings: Settings) -> None:
    """Send every ``dyehouse.*`` record to stdout at ``settings.log_level``.

    Calling it again replaces the handler, so a reload does not duplicate lines.
    """

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.setLevel(resolve_level(settings.log_level))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["LOG_FORMAT", "configure_logging", "resolve_level"]
