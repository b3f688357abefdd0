"""Logging setup for applications using hookhttp.

Library modules only call :func:`logging.getLogger` with their module name,
so everything hangs off the ``hookhttp`` logger and nothing is printed
until an application opts in. :func:`configure_logging` attaches a
:class:`rich.logging.RichHandler` writing to stderr, following the
``NO_COLOR`` and ``TERM=dumb`` conventions.
"""

from __future__ import annotations

import logging
import os
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

_ROOT_LOGGER = "hookhttp"


def _should_disable_color() -> bool:
    """Return True when NO_COLOR is set (any value) or TERM=dumb."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return False


def configure_logging(level: Union[int, str] = "INFO", no_color: bool = False) -> logging.Logger:
    """Route ``hookhttp`` log records to stderr through rich.

    Calling this again replaces the handler installed by the previous call.

    Args:
        level: Logging level name or number.
        no_color: Disable colour and markup regardless of the environment.

    Returns:
        The configured ``hookhttp`` logger.
    """
    reset_logging()
    no_color = no_color or _should_disable_color()
    console = Console(stderr=True, no_color=no_color, highlight=not no_color)
    handler = RichHandler(
        console=console,
        show_path=False,
        markup=False,
        rich_tracebacks=not no_color,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


def reset_logging() -> None:
    """Remove handlers installed by :func:`configure_logging`."""
    logger = logging.getLogger(_ROOT_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)
