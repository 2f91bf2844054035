"""Logging setup: Rich console output for the ``familyhub`` package.

Modules log through ``logging.getLogger(__name__)``; this only decides
where those records go.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_NAME = "familyhub"

NOISY_LOGGERS = ["httpx", "httpcore", "asyncio", "uvicorn.access"]

_console = Console(stderr=True)


def setup_logging(level: str = "INFO", quiet_third_party: bool = True) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(numeric_level)
    package_logger.handlers = []

    handler = RichHandler(
        console=_console,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=numeric_level == logging.DEBUG,
    )
    handler.setLevel(numeric_level)
    package_logger.addHandler(handler)

    if quiet_third_party:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.debug("Logging configured: level=%s", level)
