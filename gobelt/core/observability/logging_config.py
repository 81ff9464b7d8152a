"""
Logging configuration — set up once by the CLI before any command runs.

Modules only ever do ``logger = logging.getLogger(__name__)``; handlers
and levels live here.

Console level precedence:
    --debug  >  --verbose  >  --quiet  >  GOBELT_LOG_LEVEL  >  WARNING

A second, independent sink can be added with GOBELT_LOG_FILE (level
from GOBELT_LOG_FILE_LEVEL, defaulting to the console level).  Install
output streams from several threads at once, so every format beyond the
bare one names the thread.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping

ENV_LEVEL = "GOBELT_LOG_LEVEL"
ENV_FILE = "GOBELT_LOG_FILE"
ENV_FILE_LEVEL = "GOBELT_LOG_FILE_LEVEL"

# (format, datefmt) per console verbosity; WARNING and up print bare messages
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: (
        "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s",
        "%H:%M:%S",
    ),
    logging.INFO: ("%(asctime)s [%(threadName)s] %(message)s", "%H:%M:%S"),
}
_BARE_FORMAT = "%(message)s"

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d — %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level name from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if env is None else env
    return env.get(ENV_LEVEL) or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with gobelt's console (and file) sink.

    Args:
        level: Console level name; unknown names fall back to WARNING.
        log_file: Optional path for a second sink that always carries
            full detail.
        log_file_level: Level for the file sink; defaults to ``level``.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    # A closed stream (e.g. after a CliRunner invocation) must not crash reader threads
    logging.raiseExceptions = False


def setup_from_env(level: str, env: Mapping[str, str] | None = None) -> None:
    """``setup_logging`` with the file sink taken from GOBELT_LOG_FILE*."""
    env = os.environ if env is None else env
    setup_logging(
        level=level,
        log_file=env.get(ENV_FILE) or None,
        log_file_level=env.get(ENV_FILE_LEVEL) or None,
    )


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _BARE_FORMAT, None


def _parse_level(name: str | None) -> int:
    numeric = logging.getLevelName(name.upper()) if name else None
    return numeric if isinstance(numeric, int) else logging.WARNING
