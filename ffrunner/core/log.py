"""Logging configuration for ffrunner."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Global flag to track if logging has been initialized
_logging_initialized = False


def setup_logging(log_level: Optional[str] = None, verbose: bool = False) -> None:
    """Configure the logging system globally.

    Should be called once by the CLI. Library modules only ever call
    `logging.getLogger(__name__)`.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ...); default WARNING
        verbose: Force DEBUG regardless of `log_level`
    """
    global _logging_initialized

    if _logging_initialized:
        return

    level_name = "DEBUG" if verbose else (log_level or "WARNING")
    level = getattr(logging, level_name.upper(), logging.WARNING)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logging.root.setLevel(level)
    logging.root.addHandler(handler)

    _logging_initialized = True
    logging.getLogger(__name__).debug("Logging initialized at %s", level_name)
