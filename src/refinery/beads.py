"""Beads (``bd``) helpers for the narrow issue-tracker updates the queue needs.

The merge queue never owns issue data. After a merge it closes the source
issue and clears the ``active_mr`` back-reference on the producing agent's
bead; producers set that field when they submit.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

from . import exec
from .errors import BackendError, NotFoundError

ACTIVE_MR_FIELD = "active_mr"
BD_ACTOR_SOURCE_ENV = "REFINERY_WORKER"


class BeadsIssue(BaseModel):
    """Subset of a ``bd show --json`` payload used by the merge queue."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    status: str = ""
    description: str = ""

    @field_validator("title", "status", "description", mode="before")
    @classmethod
    def none_to_empty(cls, value: object) -> object:
        return "" if value is None else value


def beads_env(beads_root: Path) -> dict[str, str]:
    """Environment for ``bd``: the rig's BEADS_DIR, and the worker as actor."""
    env = {**os.environ, "BEADS_DIR": str(beads_root)}
    worker = env.get(BD_ACTOR_SOURCE_ENV)
    if worker and "BD_ACTOR" not in env:
        env["BD_ACTOR"] = worker
    return env


def run_bd_command(
    args: list[str],
    *,
    beads_root: Path,
    cwd: Path,
    allow_failure: bool = False,
) -> exec.CommandResult:
    """Run ``bd <args>`` against ``beads_root``.

    Raises:
        BackendError: When bd is not installed, or exits non-zero and
            ``allow_failure`` is false.
    """
    request = exec.CommandRequest(
        argv=("bd", *args),
        cwd=cwd,
        env=beads_env(beads_root),
        stdin=subprocess.DEVNULL,
    )
    result = exec.run_with_runner(request)
    if result is None:
        raise BackendError(exec.missing_command_detail(request), argv=request.argv)
    if not result.ok and not allow_failure:
        raise BackendError(
            exec.command_failure_detail(request, result),
            argv=request.argv,
            output=result.output,
        )
    return result


def show_issue(issue_id: str, *, beads_root: Path, cwd: Path) -> BeadsIssue:
    """Return one issue.

    Raises:
        NotFoundError: When bd returns no issue for ``issue_id``.
        BackendError: When bd fails or its output does not parse.
    """
    result = run_bd_command(["show", issue_id, "--json"], beads_root=beads_root, cwd=cwd)
    if not result.stdout.strip():
        raise NotFoundError(issue_id)
    try:
        issues = exec.parse_json_model_list(result, model_type=BeadsIssue, context="bd show")
    except exec.CommandParseError as exc:
        raise BackendError(str(exc), argv=result.argv, output=result.output) from exc
    if not issues:
        raise NotFoundError(issue_id)
    return issues[0]


def close_issue_with_reason(issue_id: str, reason: str, *, beads_root: Path, cwd: Path) -> None:
    """Close a bead, recording ``reason`` (for example ``Merged in mr-...``)."""
    issue_id = issue_id.strip()
    if not issue_id:
        raise ValueError("issue_id must not be empty")
    run_bd_command(["close", issue_id, f"--reason={reason}"], beads_root=beads_root, cwd=cwd)


def update_description_field(description: str | None, *, key: str, value: str | None) -> str:
    """Upsert one ``key: value`` line, storing ``null`` for ``None``.

    The first matching line is rewritten in place and later duplicates are
    dropped; a missing key is appended.

    Example:
        >>> update_description_field("role: polecat\\nactive_mr: mr-1\\n", key="active_mr", value=None)
        'role: polecat\\nactive_mr: null\\n'
    """
    entry = f"{key}: {'null' if value is None else value}"
    kept: list[str] = []
    placed = False
    for line in (description or "").rstrip("\n").splitlines():
        if line.strip().startswith(f"{key}:"):
            if not placed:
                kept.append(entry)
            placed = True
        else:
            kept.append(line)
    if not placed:
        kept.append(entry)
    return "\n".join(kept) + "\n"


def write_issue_description(
    issue_id: str, description: str, *, beads_root: Path, cwd: Path
) -> None:
    """Replace a bead's description through ``bd update --body-file``."""
    with tempfile.TemporaryDirectory(prefix="refinery-bd-") as scratch:
        body = Path(scratch) / "body.md"
        body.write_text(description, encoding="utf-8")
        run_bd_command(
            ["update", issue_id, "--body-file", str(body)], beads_root=beads_root, cwd=cwd
        )


def set_agent_active_mr(
    agent_bead: str, mr_id: str | None, *, beads_root: Path, cwd: Path
) -> bool:
    """Point an agent bead at its active MR, or clear it with ``None``.

    Returns ``True`` when the description changed and was written back.
    """
    current = show_issue(agent_bead, beads_root=beads_root, cwd=cwd).description
    updated = update_description_field(current, key=ACTIVE_MR_FIELD, value=mr_id)
    if updated == current:
        return False
    write_issue_description(agent_bead, updated, beads_root=beads_root, cwd=cwd)
    return True


@dataclass(frozen=True)
class BeadsIssueTracker:
    """Issue-tracker port backed by the ``bd`` CLI for one rig."""

    beads_root: Path
    cwd: Path

    def close_issue(self, issue_id: str, reason: str) -> None:
        close_issue_with_reason(issue_id, reason, beads_root=self.beads_root, cwd=self.cwd)

    def set_active_mr(self, agent_bead: str, mr_id: str) -> None:
        set_agent_active_mr(agent_bead, mr_id, beads_root=self.beads_root, cwd=self.cwd)

    def clear_active_mr(self, agent_bead: str) -> None:
        set_agent_active_mr(agent_bead, None, beads_root=self.beads_root, cwd=self.cwd)
