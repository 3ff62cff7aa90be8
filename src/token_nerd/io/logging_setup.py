"""Logging bootstrap for processes that embed token-nerd (status line, TUI, scripts).

The correlation core only ever calls ``logging.getLogger(__name__)``; a host
calls configure() once to route the ``token_nerd`` hierarchy to stderr and,
when TOKEN_NERD_LOG_FILE is set, to a rotating log file.

// [LAW:single-enforcer] Logger handler wiring is enforced in this module only.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path


@dataclass(frozen=True)
class LoggingRuntime:
    """Resolved runtime logging configuration."""

    level: int
    file_path: str | None


_RUNTIME: LoggingRuntime | None = None

_LOGGER_NAME = "token_nerd"
_LOG_FILE_MAX_BYTES = 20 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


def _parse_level(raw: str | None) -> int:
    level = logging.getLevelName(str(raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure() -> LoggingRuntime:
    """Attach handlers to the token_nerd logger; later calls return the first runtime.

    Level comes from TOKEN_NERD_LOG_LEVEL (default INFO, unknown names fall
    back to INFO).
    """
    global _RUNTIME
    if _RUNTIME is not None:
        return _RUNTIME

    level = _parse_level(os.environ.get("TOKEN_NERD_LOG_LEVEL"))
    file_path = os.environ.get("TOKEN_NERD_LOG_FILE") or None

    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()

    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter("[%(name)s] %(levelname)s %(message)s"))
    logger.addHandler(stream)

    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            file_path,
            maxBytes=_LOG_FILE_MAX_BYTES,
            backupCount=_LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        rotating.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logger.addHandler(rotating)

    # redis-py is chatty at debug; keep it at warning+.
    logging.getLogger("redis").setLevel(logging.WARNING)

    _RUNTIME = LoggingRuntime(level=level, file_path=file_path)
    return _RUNTIME


def get_runtime() -> LoggingRuntime | None:
    return _RUNTIME


def reset() -> None:
    """Detach handlers and forget the runtime."""
    global _RUNTIME
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    _RUNTIME = None
