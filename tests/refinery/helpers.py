# ruff: noqa: E402

from __future__ import annotations

import datetime as dt
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from refinery import paths
from refinery.models import MergeRequest
from refinery.mrqueue import MergeQueue

T0 = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def init_repo(repo: Path, *, branch: str = "main") -> Path:
    """Create a repo with one commit on ``branch`` and an ignored ``.beads``."""
    repo.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-q", str(repo)], check=True)
    git(repo, "checkout", "-q", "-b", branch)
    git(repo, "config", "user.email", "refinery@example.com")
    git(repo, "config", "user.name", "Refinery Tests")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / ".gitignore").write_text(".beads/\n", encoding="utf-8")
    (repo / "README.md").write_text("base\n", encoding="utf-8")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "initial")
    paths.beads_dir(repo).mkdir(parents=True, exist_ok=True)
    return repo


def commit_file(repo: Path, name: str, content: str, *, message: str | None = None) -> str:
    (repo / name).write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message or f"update {name}")
    return git(repo, "rev-parse", "HEAD")


def make_branch(repo: Path, branch: str, files: dict[str, str], *, base: str = "main") -> str:
    """Create ``branch`` from ``base`` with one commit per file, then return to ``base``."""
    git(repo, "checkout", "-q", "-b", branch, base)
    head = ""
    for name, content in files.items():
        head = commit_file(repo, name, content, message=f"{branch}: {name}")
    git(repo, "checkout", "-q", base)
    return head


def make_rig(tmp_path: Path) -> tuple[Path, MergeQueue]:
    rig = init_repo(tmp_path / "rig")
    return rig, MergeQueue.for_rig(rig)


def submit(
    queue: MergeQueue,
    branch: str,
    *,
    priority: int = 2,
    created_at: dt.datetime = T0,
    **fields: object,
) -> MergeRequest:
    mr = MergeRequest(branch=branch, priority=priority, created_at=created_at, **fields)
    return queue.submit(mr)
