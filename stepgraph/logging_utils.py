"""Logging utilities using rich console."""
from __future__ import annotations

import logging
from rich.console import Console
from rich.logging import RichHandler

# stdout carries the JSON graph, so everything human-facing goes to stderr
console = Console(stderr=True)

LOGGER_NAME = "stepgraph"


def setup_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """
    Attach a rich handler to the ``stepgraph`` logger.

    Args:
        verbose: DEBUG level with source paths, e.g. to see dropped transitions
        quiet: only warnings and errors (``verbose`` wins when both are set)

    Calling it again replaces the handler instead of stacking a second one.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(console=console, rich_tracebacks=True, show_path=verbose)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``stepgraph`` namespace."""
    if name != LOGGER_NAME and not name.startswith(LOGGER_NAME + "."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)
