"""Typed collaborator ports consumed by the refinery engine."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .gate import GateResult
from .git import MergeAttempt
from .models import MergeRequest


class VcsBackend(Protocol):
    """Version-control operations against one working tree."""

    repo_dir: Path

    def checkout(self, ref: str) -> None: ...

    def merge(
        self,
        source: str,
        *,
        no_commit: bool = False,
        no_ff: bool = False,
        message: str | None = None,
    ) -> MergeAttempt: ...

    def abort_merge(self) -> None: ...

    def reset_hard(self, ref: str = "HEAD") -> None: ...

    def conflicted_paths(self) -> list[str]: ...

    def merge_in_progress(self) -> bool: ...

    def is_clean(self) -> bool | None: ...

    def commit_merge(self, message: str) -> str: ...

    def rev_parse(self, ref: str) -> str | None: ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool | None: ...

    def branch_exists(self, branch: str) -> bool: ...

    def delete_branch(self, branch: str, *, force: bool = False) -> None: ...

    def push_delete_remote_branch(self, remote: str, branch: str) -> None: ...


class IssueTracker(Protocol):
    """Issue-tracker updates performed around a merge."""

    def close_issue(self, issue_id: str, reason: str) -> None: ...

    def set_active_mr(self, agent_bead: str, mr_id: str) -> None: ...

    def clear_active_mr(self, agent_bead: str) -> None: ...


class MergeGate(Protocol):
    """Pass/fail decision taken on a staged merge before it is committed."""

    def check(self, repo_dir: Path, mr: MergeRequest) -> GateResult: ...
