"""Trial merge used to test mergeability without committing.

The trial merge mutates the shared working tree, so callers must serialize it per
tree and hand it a clean tree. On every exit path the tree is left on the
target branch with no merge in progress.
"""

from __future__ import annotations

from dataclasses import dataclass

from . import log
from .errors import BackendError, ConflictDetected
from .ports import VcsBackend


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of one speculative merge; empty ``paths`` means mergeable."""

    source: str
    target: str
    paths: tuple[str, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.paths

    def to_error(self) -> ConflictDetected:
        return ConflictDetected(self.source, self.target, self.paths)


def trial_merge(backend: VcsBackend, source: str, target: str) -> ConflictResult:
    """Test-merge ``source`` into ``target`` and report conflicting paths.

    Args:
        backend: Working tree to merge in; must be clean.
        source: Branch to merge.
        target: Branch to merge into.

    Returns:
        ``ConflictResult`` listing conflicting paths in sorted order.

    Raises:
        BackendError: When checkout or the merge fails for a reason other
            than a conflict. Any partial merge is aborted first.
    """
    backend.checkout(target)
    attempt = backend.merge(source, no_commit=True, no_ff=True)
    if attempt.ok:
        # Drops the staged result along with MERGE_HEAD.
        backend.reset_hard("HEAD")
        return ConflictResult(source=source, target=target)

    try:
        paths = backend.conflicted_paths()
    except BackendError:
        paths = []
    if attempt.conflict_reported or paths:
        _abort(backend)
        log.debug(f"trial merge {source} -> {target}: {len(paths)} conflicting path(s)")
        return ConflictResult(source=source, target=target, paths=tuple(paths) or ("<unknown>",))

    _abort(backend)
    detail = attempt.output or f"exit status {attempt.returncode}"
    raise BackendError(f"merge {source} into {target} failed: {detail}", output=attempt.output)


def check_conflicts(backend: VcsBackend, source: str, target: str) -> list[str]:
    """Return the paths that conflict when merging ``source`` into ``target``.

    An empty list means the branches merge cleanly.
    """
    return list(trial_merge(backend, source, target).paths)


def _abort(backend: VcsBackend) -> None:
    if backend.merge_in_progress():
        backend.abort_merge()
        return
    # Refused merges (e.g. untracked files in the way) leave no MERGE_HEAD.
    backend.reset_hard("HEAD")
