"""Refinery failure contracts.

Queue, claim, and engine operations raise ``RefineryError`` subclasses on
expected domain/runtime failures. Programmer bugs raise normal exceptions.
Callers catch ``RefineryError`` and handle it per their interface (the CLI
dies with the message, the engine records it against the MR and keeps
polling).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

RefineryErrorCode = Literal[
    "not_found",
    "already_claimed",
    "io_failed",
    "external_command_failed",
    "merge_conflict",
    "validation_failed",
]


class RefineryError(Exception):
    """Expected failure raised by queue, claim, and engine operations.

    Use ``raise RefineryError(...) from exc`` to chain a causing exception;
    it is available as ``__cause__``.
    """

    def __init__(
        self,
        code: RefineryErrorCode,
        message: str,
        *,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recovery_hint = recovery_hint


class NotFoundError(RefineryError):
    """Referenced merge request is absent from the queue."""

    def __init__(self, mr_id: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("not_found", f"MR {mr_id} not found in queue", recovery_hint=recovery_hint)
        self.mr_id = mr_id


class AlreadyClaimedError(RefineryError):
    """An unexpired claim by a different worker exists."""

    def __init__(self, mr_id: str, claimed_by: str) -> None:
        super().__init__(
            "already_claimed",
            f"MR {mr_id} is already claimed by {claimed_by}",
            recovery_hint="pick the next unclaimed MR or wait for the lease to expire",
        )
        self.mr_id = mr_id
        self.claimed_by = claimed_by


class StorageError(RefineryError):
    """I/O failure on the MR record store or event log."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("io_failed", message, recovery_hint=recovery_hint)


class BackendError(RefineryError):
    """Version-control command failed for a reason other than a merge conflict."""

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        output: str = "",
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__("external_command_failed", message, recovery_hint=recovery_hint)
        self.argv = tuple(argv)
        self.output = output


class ConflictDetected(RefineryError):
    """A merge stopped on conflicting paths.

    Conflicts are an expected outcome rather than a system failure; the
    detector reports them as a value and this exception only carries them
    out of the integration merge when a conflict appears there.
    """

    def __init__(self, source: str, target: str, paths: Sequence[str]) -> None:
        listed = ", ".join(paths) if paths else "unknown paths"
        super().__init__(
            "merge_conflict",
            f"merge conflict merging {source} into {target}: {listed}",
            recovery_hint=f"rebase {source} onto {target} and resubmit",
        )
        self.source = source
        self.target = target
        self.paths = tuple(paths)


class ConfigError(RefineryError):
    """Malformed merge queue configuration; fatal at startup."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("validation_failed", message, recovery_hint=recovery_hint)
