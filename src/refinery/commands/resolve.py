"""Rig resolution and output-format helpers shared by commands."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

from .. import paths
from ..errors import RefineryError
from ..io import die


def resolve_rig_root(args: object) -> Path:
    """Resolve the rig from ``--rig`` or by walking up from the working directory."""
    raw = getattr(args, "rig", None)
    start = Path(str(raw)).expanduser() if raw else Path.cwd()
    rig_root = paths.find_rig_root(start)
    if rig_root is None:
        die(
            f"no {paths.BEADS_DIRNAME} directory found from {start}; "
            "pass --rig or run inside a rig"
        )
    return rig_root


def die_with_error(exc: RefineryError) -> NoReturn:
    """Exit with a domain error's message and recovery hint."""
    message = exc.message
    if exc.recovery_hint:
        message = f"{message}\nhint: {exc.recovery_hint}"
    die(message)


OUTPUT_FORMATS = ("table", "json")


def output_format(args: object) -> str:
    """Return the validated ``--format`` value (``table`` when unset)."""
    value = str(getattr(args, "format", "") or "table").strip().lower()
    if value not in OUTPUT_FORMATS:
        die(f"unsupported format: {value}")
    return value
