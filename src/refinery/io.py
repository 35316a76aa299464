"""Plain stdout/stderr output for command results and fatal errors."""

from __future__ import annotations

import json
import sys
from typing import NoReturn


def say(message: str) -> None:
    """Write one line of command output to stdout.

    Example:
        >>> say("mr-1700000000-0a1b2c3d")
        mr-1700000000-0a1b2c3d
    """
    print(message)


def say_json(payload: object) -> None:
    """Write ``payload`` as indented, key-sorted JSON.

    Example:
        >>> say_json({"paused": False, "count": 2})
        {
          "count": 2,
          "paused": false
        }
    """
    say(json.dumps(payload, indent=2, sort_keys=True))


def warn(message: str) -> None:
    print(f"warning: {message}", file=sys.stderr)


def die(message: str, code: int = 1) -> NoReturn:
    """Report ``message`` on stderr and exit with ``code``."""
    print(f"error: {message}", file=sys.stderr)
    sys.exit(code)
