"""Crash-safe file writes and ``flock``-based cross-process locks (POSIX)."""

from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Iterator, TextIO


class LockBusyError(OSError):
    """A non-blocking lock attempt found the lock held elsewhere."""


def _flock(handle: TextIO, *, blocking: bool) -> None:
    operation = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
    try:
        fcntl.flock(handle.fileno(), operation)
    except BlockingIOError as exc:
        raise LockBusyError(f"lock busy: {handle.name}") from exc


@contextmanager
def exclusive_lock(lock_path: Path, *, blocking: bool = True) -> Iterator[TextIO]:
    """Hold an exclusive lock on ``lock_path`` for the body of the block.

    The lock file is created on first use and left in place; removing it
    would let a later opener lock a different inode.

    Raises:
        LockBusyError: When ``blocking`` is false and the lock is held.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as handle:
        _flock(handle, blocking=blocking)
        try:
            yield handle
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def write_text_atomic(
    path: Path,
    content: str,
    *,
    encoding: str = "utf-8",
    mode: int | None = None,
) -> None:
    """Replace ``path`` with ``content`` in one rename.

    The data is fsynced to a sibling temp file first, so readers see either
    the old file or the whole new one, never a prefix.
    """
    directory = path.parent
    directory.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile(
        "w",
        encoding=encoding,
        dir=directory,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as staged:
        staged_path = Path(staged.name)
        try:
            staged.write(content)
            staged.flush()
            os.fsync(staged.fileno())
        except BaseException:
            staged_path.unlink(missing_ok=True)
            raise
    try:
        if mode is not None:
            staged_path.chmod(mode)
        os.replace(staged_path, path)
    except BaseException:
        staged_path.unlink(missing_ok=True)
        raise


def append_line_locked(path: Path, line: str, *, encoding: str = "utf-8") -> None:
    """Append ``line`` (newline-terminated) while holding an exclusive lock on the file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    record = line if line.endswith("\n") else line + "\n"
    with path.open("a", encoding=encoding) as handle:
        _flock(handle, blocking=True)
        try:
            handle.write(record)
            handle.flush()
            os.fsync(handle.fileno())
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
