"""Rich consoles and log wiring for epicswarm.

Command output goes to ``console`` (stdout); log records and tracebacks go
to ``stderr_console`` so piped plan/session output stays clean. Swarm and
session code logs through ``get_logger(__name__)``, which nests every module
under the ``epicswarm`` logger configured here.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "epicswarm"

console = Console()
stderr_console = Console(stderr=True)

# Verbose runs show which dispatcher or CLI thread emitted a record.
_PLAIN_FORMAT = "%(message)s"
_VERBOSE_FORMAT = "[%(threadName)s] %(name)s: %(message)s"


def _level_from(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _rich_handler(level: int, verbose: bool) -> RichHandler:
    # Error messages carry "[swarm=..., task=...]" context; markup would eat it.
    handler = RichHandler(
        console=stderr_console,
        level=level,
        markup=False,
        show_path=verbose,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setFormatter(logging.Formatter(_VERBOSE_FORMAT if verbose else _PLAIN_FORMAT))
    return handler


def _swap_handler(target: logging.Logger, handler: logging.Handler, level: int) -> None:
    for old in [h for h in target.handlers if isinstance(h, RichHandler)]:
        target.removeHandler(old)
    target.setLevel(level)
    target.addHandler(handler)


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Route epicswarm and third-party records through one Rich handler.

    Calling it again replaces the handler it installed earlier instead of
    stacking a second one. ``verbose`` forces DEBUG.
    """
    numeric = logging.DEBUG if verbose else _level_from(level)
    handler = _rich_handler(numeric, verbose)

    _swap_handler(logging.getLogger(), handler, numeric)

    app_logger = logging.getLogger(LOGGER_NAME)
    _swap_handler(app_logger, handler, numeric)
    app_logger.propagate = False
    return app_logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or LOGGER_NAME)


__all__ = ["LOGGER_NAME", "console", "get_logger", "setup_logging", "stderr_console"]
