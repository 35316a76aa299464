"""Git helper functions used by the merge queue."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from . import exec as exec_util
from .errors import BackendError

CONFLICT_MARKERS = ("CONFLICT", "Merge conflict", "Automatic merge failed")


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"])
        ['git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = "git"
    return [resolved, *args]


def _run_git(
    repo_dir: Path, args: list[str], *, git_path: str | None = None
) -> subprocess.CompletedProcess[str]:
    cmd = git_command(["-C", str(repo_dir), *args], git_path=git_path)
    result = exec_util.run_with_runner(
        exec_util.CommandRequest(
            argv=tuple(cmd),
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
        )
    )
    if result is None:
        raise BackendError("missing required command: git", argv=cmd)
    return subprocess.CompletedProcess(
        args=list(result.argv),
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )


def _run_git_checked(
    repo_dir: Path, args: list[str], *, git_path: str | None = None
) -> subprocess.CompletedProcess[str]:
    result = _run_git(repo_dir, args, git_path=git_path)
    if result.returncode != 0:
        output = (result.stderr or result.stdout or "").strip()
        detail = f"git {' '.join(args)} failed"
        if output:
            detail = f"{detail}: {output}"
        raise BackendError(detail, argv=result.args, output=output)
    return result


def git_is_clean(
    repo_dir: Path, *, untracked: bool = True, git_path: str | None = None
) -> bool | None:
    """Check whether the working tree is clean.

    Args:
        repo_dir: Git repository directory.
        untracked: Whether untracked files make the tree dirty.

    Returns:
        ``True`` if clean, ``False`` if dirty, ``None`` on error.
    """
    args = ["status", "--porcelain"]
    if not untracked:
        args.append("--untracked-files=no")
    result = _run_git(repo_dir, args, git_path=git_path)
    if result.returncode != 0:
        return None
    return result.stdout.strip() == ""


def git_ref_exists(repo_dir: Path, ref: str, *, git_path: str | None = None) -> bool:
    """Check whether a git ref exists (e.g. ``refs/heads/main``)."""
    result = _run_git(repo_dir, ["show-ref", "--verify", "--quiet", ref], git_path=git_path)
    return result.returncode == 0


def git_branch_exists(repo_dir: Path, branch: str, *, git_path: str | None = None) -> bool:
    return git_ref_exists(repo_dir, f"refs/heads/{branch}", git_path=git_path)


def git_rev_parse(repo_dir: Path, ref: str, *, git_path: str | None = None) -> str | None:
    """Resolve a ref to its commit hash, or ``None`` when it does not resolve."""
    result = _run_git(
        repo_dir, ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], git_path=git_path
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_is_ancestor(
    repo_dir: Path,
    ancestor: str,
    descendant: str,
    *,
    git_path: str | None = None,
) -> bool | None:
    """Return whether ``ancestor`` is an ancestor of ``descendant``.

    Returns ``True``/``False`` for git's explicit status codes, or ``None`` when
    git fails for another reason (missing ref, invalid repo, etc.).
    """
    result = _run_git(
        repo_dir, ["merge-base", "--is-ancestor", ancestor, descendant], git_path=git_path
    )
    if result.returncode == 0:
        return True
    if result.returncode == 1:
        return False
    return None


def git_checkout(repo_dir: Path, ref: str, *, git_path: str | None = None) -> None:
    """Switch the working tree to ``ref``."""
    _run_git_checked(repo_dir, ["checkout", "--quiet", ref], git_path=git_path)


@dataclass(frozen=True)
class MergeAttempt:
    """Outcome of one ``git merge`` invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def conflict_reported(self) -> bool:
        """Whether git reported a conflict on either output channel."""
        return any(
            marker in channel
            for channel in (self.stdout, self.stderr)
            for marker in CONFLICT_MARKERS
        )

    @property
    def output(self) -> str:
        return "\n".join(
            part.strip() for part in (self.stdout, self.stderr) if part and part.strip()
        )


def git_merge(
    repo_dir: Path,
    source: str,
    *,
    no_commit: bool = False,
    no_ff: bool = False,
    message: str | None = None,
    git_path: str | None = None,
) -> MergeAttempt:
    """Merge ``source`` into the checked-out branch and report the raw outcome.

    A non-zero exit is returned, not raised, so callers can tell conflicts
    from other failures.
    """
    args = ["merge"]
    if no_commit:
        args.append("--no-commit")
    if no_ff:
        args.append("--no-ff")
    if message:
        args.extend(["-m", message])
    args.append(source)
    result = _run_git(repo_dir, args, git_path=git_path)
    return MergeAttempt(
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
    )


def git_conflicted_paths(repo_dir: Path, *, git_path: str | None = None) -> list[str]:
    """Return paths currently in the unmerged state, sorted."""
    result = _run_git_checked(
        repo_dir, ["diff", "--name-only", "--diff-filter=U"], git_path=git_path
    )
    return sorted({line.strip() for line in result.stdout.splitlines() if line.strip()})


def git_merge_in_progress(repo_dir: Path, *, git_path: str | None = None) -> bool:
    """Return whether a merge is in progress (``MERGE_HEAD`` exists)."""
    args = ["rev-parse", "--verify", "--quiet", "MERGE_HEAD"]
    result = _run_git(repo_dir, args, git_path=git_path)
    return result.returncode == 0


def git_abort_merge(repo_dir: Path, *, git_path: str | None = None) -> None:
    """Abort an in-progress merge."""
    _run_git_checked(repo_dir, ["merge", "--abort"], git_path=git_path)


def git_reset_hard(repo_dir: Path, ref: str = "HEAD", *, git_path: str | None = None) -> None:
    """Hard-reset the working tree and index to ``ref``."""
    _run_git_checked(repo_dir, ["reset", "--hard", "--quiet", ref], git_path=git_path)


def git_commit_merge(repo_dir: Path, message: str, *, git_path: str | None = None) -> str:
    """Commit a staged merge and return the new commit hash."""
    args = ["commit", "--no-verify", "--quiet", "-m", message]
    _run_git_checked(repo_dir, args, git_path=git_path)
    head = git_rev_parse(repo_dir, "HEAD", git_path=git_path)
    if not head:
        raise BackendError("could not resolve HEAD after merge commit")
    return head


def git_delete_branch(
    repo_dir: Path, branch: str, *, force: bool = False, git_path: str | None = None
) -> None:
    """Delete a local branch."""
    flag = "-D" if force else "-d"
    _run_git_checked(repo_dir, ["branch", flag, branch], git_path=git_path)


def git_push_delete_remote_branch(
    repo_dir: Path, remote: str, branch: str, *, git_path: str | None = None
) -> None:
    """Delete ``branch`` on ``remote``."""
    _run_git_checked(repo_dir, ["push", remote, "--delete", branch], git_path=git_path)


@dataclass(frozen=True)
class GitBackend:
    """Version-control port bound to one working tree."""

    repo_dir: Path
    git_path: str | None = None

    def checkout(self, ref: str) -> None:
        git_checkout(self.repo_dir, ref, git_path=self.git_path)

    def merge(
        self,
        source: str,
        *,
        no_commit: bool = False,
        no_ff: bool = False,
        message: str | None = None,
    ) -> MergeAttempt:
        return git_merge(
            self.repo_dir,
            source,
            no_commit=no_commit,
            no_ff=no_ff,
            message=message,
            git_path=self.git_path,
        )

    def abort_merge(self) -> None:
        git_abort_merge(self.repo_dir, git_path=self.git_path)

    def reset_hard(self, ref: str = "HEAD") -> None:
        git_reset_hard(self.repo_dir, ref, git_path=self.git_path)

    def conflicted_paths(self) -> list[str]:
        return git_conflicted_paths(self.repo_dir, git_path=self.git_path)

    def merge_in_progress(self) -> bool:
        return git_merge_in_progress(self.repo_dir, git_path=self.git_path)

    def is_clean(self) -> bool | None:
        return git_is_clean(self.repo_dir, untracked=False, git_path=self.git_path)

    def commit_merge(self, message: str) -> str:
        return git_commit_merge(self.repo_dir, message, git_path=self.git_path)

    def rev_parse(self, ref: str) -> str | None:
        return git_rev_parse(self.repo_dir, ref, git_path=self.git_path)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool | None:
        return git_is_ancestor(self.repo_dir, ancestor, descendant, git_path=self.git_path)

    def branch_exists(self, branch: str) -> bool:
        return git_branch_exists(self.repo_dir, branch, git_path=self.git_path)

    def delete_branch(self, branch: str, *, force: bool = False) -> None:
        git_delete_branch(self.repo_dir, branch, force=force, git_path=self.git_path)

    def push_delete_remote_branch(self, remote: str, branch: str) -> None:
        git_push_delete_remote_branch(self.repo_dir, remote, branch, git_path=self.git_path)
