"""
Logging for freeflow.

Modules log through children of the ``freeflow`` logger (``freeflow.store``,
``freeflow.pipeline``, ...). The library never configures handlers itself;
the CLI or a host application calls :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_PACKAGE = "freeflow"
_DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: str | int = "INFO",
    format: str | None = None,
    stream: TextIO | None = None,
    file: str | None = None,
) -> None:
    """
    Send freeflow log records to stderr (or ``stream``), and optionally a file.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Level name such as "DEBUG" or "WARNING", or a logging constant
        format: Record format, defaults to time, level, logger and message
        stream: Stream for the console handler
        file: Also append records to this file

    Example:
        setup_logging("DEBUG", file="freeflow.log")
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger(_PACKAGE)
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    formatter = logging.Formatter(format or _DEFAULT_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if file:
        handlers.append(logging.FileHandler(file))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        package_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Logger for a submodule, e.g. ``get_logger("store")`` is ``freeflow.store``."""
    if name == _PACKAGE or name.startswith(f"{_PACKAGE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_PACKAGE}.{name}")
