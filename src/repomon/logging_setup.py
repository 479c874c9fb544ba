"""Logging configuration for the CLI. Library modules only call getLogger."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_NAME = "repomon-rich"


def configure_logging(level: str = "WARNING", console: Console | None = None) -> None:
    """Install a single Rich handler on the ``repomon`` logger."""
    logger = logging.getLogger("repomon")
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="[%X]",
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
