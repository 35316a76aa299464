"""Configuration helpers for the merge queue.

This module reads the ``merge_queue`` section of the installed defaults file
and of a rig's ``config.json``, layers them over built-in defaults, applies
environment overrides, and validates the result with Pydantic.

Example:
    >>> from refinery.config import resolve_worker_id
    >>> resolve_worker_id({})
    'refinery-1'
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from . import paths
from .errors import ConfigError
from .models import MergeQueueConfig

MERGE_QUEUE_SECTION = "merge_queue"
WORKER_ENV_VAR = "REFINERY_WORKER"
DEFAULT_WORKER_ID = "refinery-1"
_ENV_OVERRIDES = {
    "REFINERY_POLL_INTERVAL": "poll_interval",
    "REFINERY_TARGET_BRANCH": "target_branch",
}


def load_json(path: Path) -> dict | None:
    """Load a JSON object from disk.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload, or ``None`` if the file does not exist.

    Raises:
        ConfigError: When the file cannot be read or is not a JSON object.

    Example:
        >>> load_json(Path("missing.json")) is None
        True
    """
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"reading config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"parsing config {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"parsing config {path}: expected a JSON object")
    return payload


def _merge_queue_section(payload: dict | None, *, source: Path) -> dict:
    if not payload:
        return {}
    section = payload.get(MERGE_QUEUE_SECTION)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"parsing {MERGE_QUEUE_SECTION} in {source}: expected an object")
    return section


def parse_merge_queue_config(
    *layers: Mapping[str, object], source: str = "merge_queue"
) -> MergeQueueConfig:
    """Validate layered ``merge_queue`` sections; later layers win per key.

    Example:
        >>> parse_merge_queue_config({"poll_interval": "5s"}, {"run_tests": False}).run_tests
        False
    """
    merged: dict[str, object] = {}
    for layer in layers:
        merged.update(layer)
    try:
        return MergeQueueConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"invalid {source} config: {exc}") from exc


def _env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for env_key, field in _ENV_OVERRIDES.items():
        value = env.get(env_key)
        if value is not None and value.strip():
            overrides[field] = value.strip()
    return overrides


def load_merge_queue_config(
    rig_root: Path,
    *,
    installed_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> MergeQueueConfig:
    """Resolve the merge queue config for a rig.

    Precedence, lowest first: built-in defaults, installed user defaults,
    the rig ``config.json`` ``merge_queue`` section, environment overrides.

    Args:
        rig_root: Rig directory holding ``config.json``.
        installed_path: Override for the installed defaults file.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated ``MergeQueueConfig``.

    Raises:
        ConfigError: When any layer is malformed.
    """
    installed = installed_path or paths.installed_config_path()
    rig_path = paths.rig_config_path(rig_root)
    installed_section = _merge_queue_section(load_json(installed), source=installed)
    rig_section = _merge_queue_section(load_json(rig_path), source=rig_path)
    overrides = _env_overrides(env if env is not None else os.environ)
    return parse_merge_queue_config(
        installed_section, rig_section, overrides, source=str(rig_path)
    )


def resolve_worker_id(env: Mapping[str, str] | None = None) -> str:
    """Return the refinery worker id from the environment or the default.

    Example:
        >>> resolve_worker_id({})
        'refinery-1'
        >>> resolve_worker_id({"REFINERY_WORKER": "refinery-2"})
        'refinery-2'
    """
    source = env if env is not None else os.environ
    value = (source.get(WORKER_ENV_VAR) or "").strip()
    return value or DEFAULT_WORKER_ID


def resolve_worktree(rig_root: Path, config: MergeQueueConfig) -> Path:
    """Return the working tree the engine merges in."""
    if not config.worktree:
        return rig_root
    worktree = Path(config.worktree).expanduser()
    if not worktree.is_absolute():
        worktree = rig_root / worktree
    return worktree
