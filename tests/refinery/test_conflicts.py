from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from refinery.conflicts import check_conflicts, trial_merge
from refinery.errors import BackendError, ConflictDetected
from refinery.git import GitBackend, MergeAttempt
from tests.refinery.helpers import commit_file, git, init_repo, make_branch


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    return init_repo(tmp_path / "repo")


def _snapshot(repo: Path) -> tuple[str, str, str]:
    return (
        git(repo, "rev-parse", "HEAD"),
        git(repo, "rev-parse", "--abbrev-ref", "HEAD"),
        git(repo, "status", "--porcelain", "--untracked-files=no"),
    )


def test_clean_merge_reports_no_conflicts_and_leaves_tree_untouched(repo: Path) -> None:
    make_branch(repo, "work/a", {"a.txt": "a\n"})
    before = _snapshot(repo)

    result = trial_merge(GitBackend(repo), "work/a", "main")

    assert result.clean
    assert result.paths == ()
    assert _snapshot(repo) == before
    assert not (repo / "a.txt").exists()
    assert not (repo / ".git" / "MERGE_HEAD").exists()


def test_conflict_lists_paths_and_restores_target(repo: Path) -> None:
    make_branch(repo, "work/a", {"README.md": "branch\n", "b.txt": "b1\n"})
    commit_file(repo, "README.md", "main\n")
    commit_file(repo, "b.txt", "b2\n")
    git(repo, "checkout", "-q", "work/a")

    paths = check_conflicts(GitBackend(repo), "work/a", "main")

    assert paths == ["README.md", "b.txt"]
    _, branch, status = _snapshot(repo)
    assert branch == "main"
    assert status == ""
    assert not (repo / ".git" / "MERGE_HEAD").exists()


def test_conflict_result_converts_to_error(repo: Path) -> None:
    make_branch(repo, "work/a", {"README.md": "branch\n"})
    commit_file(repo, "README.md", "main\n")

    result = trial_merge(GitBackend(repo), "work/a", "main")
    error = result.to_error()

    assert isinstance(error, ConflictDetected)
    assert error.code == "merge_conflict"
    assert error.paths == ("README.md",)
    assert "README.md" in error.message


def test_unknown_source_raises_backend_error_and_leaves_tree_clean(repo: Path) -> None:
    before = _snapshot(repo)

    with pytest.raises(BackendError):
        trial_merge(GitBackend(repo), "work/missing", "main")

    assert _snapshot(repo) == before


def test_missing_target_raises_backend_error(repo: Path) -> None:
    make_branch(repo, "work/a", {"a.txt": "a\n"})
    with pytest.raises(BackendError):
        trial_merge(GitBackend(repo), "work/a", "develop")


def test_reported_conflict_without_paths_is_flagged(repo: Path) -> None:
    backend = GitBackend(repo)
    attempt = MergeAttempt(returncode=1, stdout="CONFLICT (modify/delete)", stderr="")

    with (
        patch.object(GitBackend, "merge", return_value=attempt),
        patch.object(GitBackend, "conflicted_paths", return_value=[]),
    ):
        result = trial_merge(backend, "work/a", "main")

    assert result.paths == ("<unknown>",)
