"""Path helpers for locating rig queue directories and Refinery data files."""

from __future__ import annotations

import hashlib
from pathlib import Path

from platformdirs import user_data_dir

REFINERY_APP_NAME = "refinery"
BEADS_DIRNAME = ".beads"
MQ_DIRNAME = "mq"
REFINERY_DIRNAME = "refinery"
EVENTS_FILENAME = "mq_events.jsonl"
CLAIMS_LOCK_FILENAME = ".claims.lock"
PAUSE_MARKER_FILENAME = "paused"
RIG_CONFIG_FILENAME = "config.json"
INSTALLED_CONFIG_USER_FILENAME = "config.user.json"
MR_RECORD_SUFFIX = ".json"


def refinery_data_dir() -> Path:
    """Return the base Refinery user data directory.

    Returns:
        Path to the user data directory for Refinery.

    Example:
        >>> isinstance(refinery_data_dir(), Path)
        True
    """
    return Path(user_data_dir(REFINERY_APP_NAME))


def installed_config_path() -> Path:
    """Return the path to the installed defaults config file."""
    return refinery_data_dir() / INSTALLED_CONFIG_USER_FILENAME


def find_rig_root(start: Path) -> Path | None:
    """Walk up from ``start`` to the nearest directory holding ``.beads/``.

    Args:
        start: Directory to search from.

    Returns:
        The rig root, or ``None`` when no ``.beads`` directory is found.
    """
    current = start.expanduser().resolve()
    for candidate in (current, *current.parents):
        if (candidate / BEADS_DIRNAME).is_dir():
            return candidate
    return None


def beads_dir(rig_root: Path) -> Path:
    return rig_root / BEADS_DIRNAME


def mq_dir(rig_root: Path) -> Path:
    """Return the merge queue record directory for a rig.

    Example:
        >>> mq_dir(Path("/rigs/demo")).as_posix()
        '/rigs/demo/.beads/mq'
    """
    return beads_dir(rig_root) / MQ_DIRNAME


def events_path(rig_root: Path) -> Path:
    """Return the append-only merge event log for a rig.

    Example:
        >>> events_path(Path("/rigs/demo")).name
        'mq_events.jsonl'
    """
    return beads_dir(rig_root) / EVENTS_FILENAME


def refinery_dir(rig_root: Path) -> Path:
    return beads_dir(rig_root) / REFINERY_DIRNAME


def pause_marker_path(rig_root: Path) -> Path:
    return refinery_dir(rig_root) / PAUSE_MARKER_FILENAME


def status_path(rig_root: Path, worker_id: str) -> Path:
    """Return the status file for one refinery worker.

    Example:
        >>> status_path(Path("/rigs/demo"), "refinery/2").name
        'refinery-2.status.json'
    """
    return refinery_dir(rig_root) / f"{worker_key(worker_id)}.status.json"


def worktree_lock_path(rig_root: Path, worktree: Path) -> Path:
    """Return the lock file serializing engines driving one working tree."""
    return refinery_dir(rig_root) / f"worktree-{_short_hash(str(worktree))}.lock"


def rig_config_path(rig_root: Path) -> Path:
    return rig_root / RIG_CONFIG_FILENAME


def worker_key(worker_id: str) -> str:
    """Return a filesystem-safe key for a worker identity.

    Example:
        >>> worker_key("refinery/2")
        'refinery-2'
    """
    normalized = worker_id.strip().replace("/", "-").replace("\\", "-")
    return normalized.lstrip(".") or "refinery"


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def ensure_dir(path: Path) -> None:
    """Create a directory if it does not exist.

    Args:
        path: Directory path to ensure exists.

    Returns:
        None.
    """
    path.mkdir(parents=True, exist_ok=True)
