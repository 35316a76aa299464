"""Leveled terminal output for the CLI and the engine.

Messages at ``warning`` and above go to stderr; everything else goes to
stdout. The threshold comes from ``--log-level`` or ``REFINERY_LOG_LEVEL``
and colour is disabled by ``--no-color``, ``NO_COLOR`` or
``REFINERY_NO_COLOR``.
"""

from __future__ import annotations

import os
import sys
from enum import IntEnum
from typing import NamedTuple

from rich.console import Console
from rich.text import Text

LEVEL_ENV_VAR = "REFINERY_LOG_LEVEL"
NO_COLOR_ENV_VARS = ("NO_COLOR", "REFINERY_NO_COLOR")


class LogLevel(IntEnum):
    TRACE = 10
    DEBUG = 20
    INFO = 30
    WARNING = 40
    ERROR = 50


class _LevelStyle(NamedTuple):
    style: str
    stderr: bool


_STYLES = {
    LogLevel.TRACE: _LevelStyle("dim", False),
    LogLevel.DEBUG: _LevelStyle("cyan", False),
    LogLevel.INFO: _LevelStyle("", False),
    LogLevel.WARNING: _LevelStyle("yellow", True),
    LogLevel.ERROR: _LevelStyle("bold red", True),
}
LOG_LEVEL_NAMES = tuple(level.name.lower() for level in LogLevel)
_ALIASES = {"warn": LogLevel.WARNING}

_configured_level: LogLevel | None = None
_no_color_override: bool | None = None


def parse_level(value: str | None, *, default: LogLevel = LogLevel.INFO) -> LogLevel:
    """Map a level name to ``LogLevel``; unknown or empty names give ``default``.

    Example:
        >>> parse_level("Debug").name
        'DEBUG'
        >>> parse_level("chatty").name
        'INFO'
    """
    name = (value or "").strip().lower()
    if name in _ALIASES:
        return _ALIASES[name]
    try:
        return LogLevel[name.upper()] if name else default
    except KeyError:
        return default


def configured_level() -> LogLevel:
    global _configured_level
    if _configured_level is None:
        _configured_level = parse_level(os.environ.get(LEVEL_ENV_VAR))
    return _configured_level


def set_level(value: str | None) -> None:
    global _configured_level
    _configured_level = parse_level(value)


def set_no_color(value: bool) -> None:
    """Force colour off, or with ``False`` fall back to the environment."""
    global _no_color_override
    _no_color_override = True if value else None


def no_color() -> bool:
    if _no_color_override is not None:
        return _no_color_override
    return any(os.environ.get(name) for name in NO_COLOR_ENV_VARS)


def console(*, stderr: bool = False) -> Console:
    """Return a console bound to the current stdout or stderr."""
    return Console(
        file=sys.stderr if stderr else sys.stdout,
        soft_wrap=True,
        highlight=False,
        no_color=no_color(),
    )


def emit(level: LogLevel, message: str, *, style: str | None = None) -> None:
    if level < configured_level():
        return
    styling = _STYLES[level]
    console(stderr=styling.stderr).print(Text(message, style=style or styling.style))


def trace(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.TRACE, message, style=style)


def debug(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.DEBUG, message, style=style)


def info(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.INFO, message, style=style)


def warning(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.WARNING, message, style=style)
