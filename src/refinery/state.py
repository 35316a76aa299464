"""Persisted engine status, pause markers, and stop requests."""

from __future__ import annotations

import os
import signal
from pathlib import Path

from pydantic import ValidationError

from . import log, paths
from .errors import StorageError
from .fs import write_text_atomic
from .models import RefineryStatus, utc_now

_STATUS_SUFFIX = ".status.json"


def pid_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_status(rig_root: Path, worker_id: str) -> RefineryStatus | None:
    """Return the recorded status for ``worker_id``, or ``None`` if absent or unreadable."""
    path = paths.status_path(rig_root, worker_id)
    return _load_status(path)


def _load_status(path: Path) -> RefineryStatus | None:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        log.debug(f"unable to read status file {path}: {exc}")
        return None
    try:
        return RefineryStatus.model_validate_json(raw)
    except (ValueError, ValidationError) as exc:
        log.debug(f"ignoring malformed status file {path}: {exc}")
        return None


def write_status(rig_root: Path, status: RefineryStatus) -> None:
    """Atomically write ``status``, stamping ``updated_at``.

    Raises:
        StorageError: When the status file cannot be written.
    """
    status.updated_at = utc_now()
    path = paths.status_path(rig_root, status.worker_id)
    try:
        write_text_atomic(path, status.model_dump_json(indent=2, exclude_none=True) + "\n")
    except OSError as exc:
        raise StorageError(f"writing status file {path}: {exc}") from exc


def effective_status(status: RefineryStatus | None, *, worker_id: str = "") -> RefineryStatus:
    """Return ``status`` adjusted for liveness.

    A recorded running or paused engine whose pid is gone reports
    ``stopped`` with no current MR.
    """
    if status is None:
        return RefineryStatus(state="stopped", worker_id=worker_id)
    if status.state == "stopped":
        return status
    if status.pid is not None and pid_running(status.pid):
        return status
    return status.model_copy(update={"state": "stopped", "current_mr": None, "pid": None})


def list_statuses(rig_root: Path) -> list[RefineryStatus]:
    """Return effective statuses for every worker with a status file, sorted by worker id."""
    directory = paths.refinery_dir(rig_root)
    try:
        entries = sorted(directory.glob(f"*{_STATUS_SUFFIX}"))
    except OSError:
        return []
    statuses: list[RefineryStatus] = []
    for entry in entries:
        loaded = _load_status(entry)
        if loaded is None:
            continue
        statuses.append(effective_status(loaded))
    statuses.sort(key=lambda item: item.worker_id)
    return statuses


def is_paused(rig_root: Path) -> bool:
    return paths.pause_marker_path(rig_root).exists()


def pause(rig_root: Path) -> bool:
    """Create the pause marker; return ``False`` if it already existed."""
    marker = paths.pause_marker_path(rig_root)
    if marker.exists():
        return False
    try:
        write_text_atomic(marker, f"{utc_now().isoformat()}\n")
    except OSError as exc:
        raise StorageError(f"writing pause marker {marker}: {exc}") from exc
    return True


def resume(rig_root: Path) -> bool:
    """Remove the pause marker; return ``False`` if the rig was not paused."""
    marker = paths.pause_marker_path(rig_root)
    try:
        marker.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageError(f"removing pause marker {marker}: {exc}") from exc
    return True


def request_stop(rig_root: Path, worker_id: str) -> int | None:
    """Send SIGTERM to the recorded engine for ``worker_id``.

    Returns:
        The signalled pid, or ``None`` when no live engine is recorded.
    """
    status = effective_status(read_status(rig_root, worker_id), worker_id=worker_id)
    if status.state == "stopped" or status.pid is None:
        return None
    try:
        os.kill(status.pid, signal.SIGTERM)
    except ProcessLookupError:
        return None
    return status.pid
