"""Logging setup for the hex pipe command line.

Console records are routed through ``tqdm.write`` so they land above the scan
progress bar instead of tearing it.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from tqdm import tqdm

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s"
LEVEL_ENV = "HEXPIPE_LOG_LEVEL"
FORMAT_ENV = "HEXPIPE_LOG_FORMAT"
FILE_ENV = "HEXPIPE_LOG_FILE"


class TqdmLoggingHandler(logging.Handler):
    """Write formatted records to stderr without disturbing tqdm bars."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=sys.stderr)
        except Exception:
            self.handleError(record)


def _resolve_level(level: int | str | None, default: str = "WARNING") -> int:
    """Resolve a level from an int or name, falling back to HEXPIPE_LOG_LEVEL."""
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if isinstance(resolved, int):
            return resolved
    resolved = logging.getLevelName(os.getenv(LEVEL_ENV, default).upper())
    if isinstance(resolved, int):
        return resolved
    return logging.getLevelName(default)


def level_for_flags(*, verbose: bool = False, debug: bool = False) -> int:
    """Map the CLI ``--verbose``/``--debug`` flags to a level.

    Without either flag the environment decides, defaulting to WARNING.
    """
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return _resolve_level(None)


def configure_logging(
    level: int | str | None = None,
    *,
    log_file: str | os.PathLike[str] | None = None,
    console: bool = True,
) -> list[logging.Handler]:
    """Replace the root handlers and return the ones installed.

    ``log_file`` falls back to HEXPIPE_LOG_FILE; an empty value disables file
    logging. At least one handler must remain.
    """
    formatter = logging.Formatter(os.getenv(FORMAT_ENV, DEFAULT_FORMAT))

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(TqdmLoggingHandler())

    if log_file is None:
        log_file = os.getenv(FILE_ENV, "")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    if not handlers:
        raise ValueError("configure_logging requires at least one handler")

    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=_resolve_level(level), handlers=handlers, force=True)
    return handlers


__all__ = ["TqdmLoggingHandler", "configure_logging", "level_for_flags"]
