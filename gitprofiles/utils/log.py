"""Logging setup for applications embedding gitprofiles.

The library itself only creates ``gitprofiles.*`` loggers; installing
handlers is left to the host application, which can call
:func:`setup_logging` for Rich-formatted output.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> RichHandler:
    """Configure the root logger with a Rich handler.

    Args:
        verbose: Log at DEBUG instead of WARNING.
        console: Rich Console instance for coordinated output (optional).

    Returns:
        RichHandler: The installed handler.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
        log_time_format="[%H:%M:%S]",
    )

    logging.basicConfig(
        level=level,
        format="[%(name)s] %(message)s",
        handlers=[handler],
        force=True,
    )
    return handler
