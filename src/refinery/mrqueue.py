"""Merge request queue storage.

MRs live one JSON document per file under ``<rig>/.beads/mq/`` and are
deleted after a successful merge; the queue holds transient state only.
"""

from __future__ import annotations

import datetime as dt
import secrets
import time
from pathlib import Path

from pydantic import ValidationError

from . import log, paths
from .errors import NotFoundError, StorageError
from .fs import write_text_atomic
from .models import MergeRequest, utc_now


def generate_id(*, now: float | None = None) -> str:
    """Create a unique MR id from the current time and a random suffix.

    Example:
        >>> generate_id(now=1700000000).startswith("mr-1700000000-")
        True
    """
    seconds = int(time.time() if now is None else now)
    return f"mr-{seconds}-{secrets.token_hex(4)}"


def _valid_id(mr_id: str) -> bool:
    return bool(mr_id) and "/" not in mr_id and "\\" not in mr_id and not mr_id.startswith(".")


class MergeQueue:
    """Directory-backed store of merge request records.

    The store is an explicit object handed to every collaborator; several
    stores (one per rig, or per test) can coexist in one process.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @classmethod
    def for_rig(cls, rig_root: Path) -> MergeQueue:
        return cls(paths.mq_dir(rig_root))

    @classmethod
    def from_workdir(cls, workdir: Path) -> MergeQueue:
        """Find the queue by walking up from ``workdir`` to the rig root."""
        rig_root = paths.find_rig_root(workdir)
        if rig_root is None:
            raise StorageError(
                f"could not find {paths.BEADS_DIRNAME} directory from {workdir}",
                recovery_hint="run inside a rig or pass --rig",
            )
        return cls.for_rig(rig_root)

    @property
    def rig_root(self) -> Path:
        return self.directory.parent.parent

    @property
    def claims_lock_path(self) -> Path:
        return self.directory / paths.CLAIMS_LOCK_FILENAME

    def ensure_dir(self) -> None:
        try:
            paths.ensure_dir(self.directory)
        except OSError as exc:
            raise StorageError(f"creating mq directory {self.directory}: {exc}") from exc

    def record_path(self, mr_id: str) -> Path:
        if not _valid_id(mr_id):
            raise NotFoundError(mr_id)
        return self.directory / f"{mr_id}{paths.MR_RECORD_SUFFIX}"

    def submit(self, mr: MergeRequest, *, now: dt.datetime | None = None) -> MergeRequest:
        """Persist a new MR, assigning ``id`` and ``created_at`` when absent.

        Args:
            mr: Record to store; it is updated in place.
            now: Clock override for ``created_at``.

        Returns:
            The stored record.

        Raises:
            StorageError: When the record cannot be written.
        """
        self.ensure_dir()
        if not mr.id:
            mr.id = generate_id()
        if not _valid_id(mr.id):
            raise StorageError(f"invalid MR id: {mr.id!r}")
        if mr.created_at is None:
            mr.created_at = now or utc_now()
        self.save(mr)
        log.debug(f"submitted {mr.id} branch={mr.branch} target={mr.target} p{mr.priority}")
        return mr

    def save(self, mr: MergeRequest) -> None:
        """Atomically replace the record for ``mr``."""
        path = self.record_path(mr.id)
        try:
            write_text_atomic(path, mr.to_json())
        except OSError as exc:
            raise StorageError(f"writing MR file {path}: {exc}") from exc

    def _load(self, path: Path) -> MergeRequest:
        return MergeRequest.model_validate_json(path.read_text(encoding="utf-8"))

    def _record_paths(self) -> list[Path]:
        try:
            entries = list(self.directory.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"reading mq directory {self.directory}: {exc}") from exc
        return [
            entry
            for entry in entries
            if entry.name.endswith(paths.MR_RECORD_SUFFIX)
            and not entry.name.startswith(".")
            and entry.is_file()
        ]

    def list(self) -> list[MergeRequest]:
        """Return all MRs ordered by priority, then creation time.

        Malformed or vanished records are skipped.
        """
        mrs: list[MergeRequest] = []
        for path in self._record_paths():
            try:
                mrs.append(self._load(path))
            except (OSError, ValueError, ValidationError) as exc:
                log.trace(f"skipping unreadable MR record {path.name}: {exc}")
                continue
        mrs.sort(key=MergeRequest.sort_key)
        return mrs

    def get(self, mr_id: str) -> MergeRequest:
        """Return one MR.

        Raises:
            NotFoundError: When no record exists for ``mr_id``.
            StorageError: When the record exists but cannot be read.
        """
        path = self.record_path(mr_id)
        try:
            return self._load(path)
        except FileNotFoundError as exc:
            raise NotFoundError(mr_id) from exc
        except (OSError, ValueError, ValidationError) as exc:
            raise StorageError(f"reading MR file {path}: {exc}") from exc

    def remove(self, mr_id: str) -> None:
        """Delete an MR record; removing an absent record succeeds."""
        try:
            path = self.record_path(mr_id)
        except NotFoundError:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"removing MR file {path}: {exc}") from exc

    def count(self) -> int:
        """Return the number of MR records (best effort)."""
        try:
            return len(self._record_paths())
        except StorageError:
            return 0
