"""
Logging setup for the kubeship CLI.

Modules log through ``logging.getLogger(__name__)``; ``configure_logging``
is called once by the ``cli`` group callback and decides where records go.

Console level, highest precedence first:

    --debug (DEBUG)  >  --verbose (INFO)  >  --quiet (ERROR)
        >  KUBESHIP_LOG_LEVEL  >  WARNING

KUBESHIP_LOG_FILE adds a file handler at KUBESHIP_LOG_FILE_LEVEL
(default: the console level), so a long rollout watch can leave a
DEBUG trail of every kubectl / docker call behind a quiet terminal.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass

ENV_LEVEL = "KUBESHIP_LOG_LEVEL"
ENV_FILE = "KUBESHIP_LOG_FILE"
ENV_FILE_LEVEL = "KUBESHIP_LOG_FILE_LEVEL"

# Console format per level: terse for users, file:line when debugging
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT = ("%(levelname)s: %(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class LogSettings:
    """Resolved logging targets for one process."""

    level: int = logging.WARNING
    file: str | None = None
    file_level: int | None = None


def parse_level(name: str | None, default: int = logging.WARNING) -> int:
    """Level name (any case) to its number; unknown names give ``default``."""
    if not name:
        return default
    numeric = logging.getLevelName(name.strip().upper())
    return numeric if isinstance(numeric, int) else default


def resolve_settings(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> LogSettings:
    """Combine the global CLI flags with the KUBESHIP_LOG_* variables."""
    env = os.environ if environ is None else environ
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = parse_level(env.get(ENV_LEVEL))

    log_file = env.get(ENV_FILE) or None
    file_level = parse_level(env.get(ENV_FILE_LEVEL), default=level) if log_file else None
    return LogSettings(level=level, file=log_file, file_level=file_level)


def configure_logging(settings: LogSettings) -> None:
    """Install the console (and optional file) handler on the root logger.

    Replaces any handlers already on the root logger, so calling it twice
    in one process (CliRunner tests) does not duplicate output.
    """
    fmt, datefmt = _CONSOLE_FORMATS.get(settings.level, _CONSOLE_DEFAULT)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(settings.level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    threshold = settings.level
    if settings.file:
        file_level = settings.file_level if settings.file_level is not None else settings.level
        handler = logging.FileHandler(settings.file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(handler)
        threshold = min(threshold, file_level)

    # Root passes whatever the most verbose handler wants
    root.setLevel(threshold)

    # A closed stderr (piped output, test runners) must not surface as tracebacks
    logging.raiseExceptions = False


def setup_from_cli(*, debug: bool, verbose: bool, quiet: bool) -> LogSettings:
    """Resolve and install logging for a CLI invocation."""
    settings = resolve_settings(debug=debug, verbose=verbose, quiet=quiet)
    configure_logging(settings)
    return settings
