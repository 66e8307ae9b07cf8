"""
Package logging setup.

All modules log through children of the ``"stridex"`` logger obtained with
``logging.getLogger(__name__)``. The package installs only a ``NullHandler``;
applications opt into output with :func:`setup_logging`.

Environment::

    STRIDEX_LOG_LEVEL=debug|info|warn|error|off (default: warn)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

__all__ = ["logger", "setup_logging", "resolve_level"]

logger = logging.getLogger("stridex")
logger.addHandler(logging.NullHandler())

_NAME_TO_LEVEL = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "off": logging.CRITICAL + 10,
    "none": logging.CRITICAL + 10,
}

_HANDLER_NAME = "stridex-stream"


def resolve_level(level: Union[str, int, None]) -> int:
    """
    Map a level name (case-insensitive) or number to a `logging` level.

    Unknown names raise ``ValueError``; ``None`` falls back to
    ``STRIDEX_LOG_LEVEL`` and then to WARNING.
    """
    if level is None:
        level = os.environ.get("STRIDEX_LOG_LEVEL", "warn")
    if isinstance(level, int):
        return level
    key = str(level).strip().lower()
    if key not in _NAME_TO_LEVEL:
        raise ValueError(
            f"Unknown log level '{level}'. Expected one of: {', '.join(_NAME_TO_LEVEL)}"
        )
    return _NAME_TO_LEVEL[key]


def setup_logging(
    level: Union[str, int, None] = None, stream: Optional[object] = None
) -> logging.Logger:
    """
    Attach a single stream handler to the package logger.

    Calling this more than once only updates the level (and the stream, if
    given); handlers are never duplicated.
    """
    resolved = resolve_level(level)
    handler = next(
        (h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None
    )
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        logger.addHandler(handler)
    elif stream is not None:
        handler.setStream(stream)
    logger.setLevel(resolved)
    return logger
