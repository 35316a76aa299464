"""Pydantic models for merge queue records, events, and configuration."""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MrStatus = Literal["open", "in_progress", "closed"]
CloseReason = Literal["merged", "rejected", "conflict", "superseded"]
EventType = Literal["merge_started", "merged", "merge_failed"]
OnConflict = Literal["assign_back", "auto_rebase"]
RefineryState = Literal["stopped", "running", "paused"]

DEFAULT_PRIORITY = 2
DEFAULT_LEASE_SECONDS = 600

_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def as_utc(value: dt.datetime) -> dt.datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def utc_now() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


def parse_duration(value: object) -> float:
    """Parse a Go-style duration string into seconds.

    Bare numbers are taken as seconds.

    Args:
        value: Duration such as ``"30s"``, ``"1m30s"``, ``"500ms"`` or ``45``.

    Returns:
        Duration in seconds.

    Raises:
        ValueError: When the value is not a valid non-negative duration.

    Example:
        >>> parse_duration("1m30s")
        90.0
        >>> parse_duration("250ms")
        0.25
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"invalid duration: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")
    raw = value.strip()
    if raw == "0":
        return 0.0
    if not raw:
        raise ValueError("invalid duration: empty string")
    total = 0.0
    position = 0
    for match in _DURATION_PART_RE.finditer(raw):
        if match.start() != position:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(raw) or position == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total


@dataclass(frozen=True)
class Claim:
    """Time-bounded, worker-scoped lease over one merge request."""

    worker_id: str
    claimed_at: dt.datetime

    def expired(self, now: dt.datetime, lease: dt.timedelta) -> bool:
        return as_utc(now) - as_utc(self.claimed_at) > lease


class MergeRequest(BaseModel):
    """One pending integration of ``branch`` into ``target``.

    Attributes:
        id: Queue-assigned identifier (``mr-<unix>-<hex>``).
        branch: Source branch name.
        target: Destination branch name.
        source_issue: Upstream work item closed after the merge.
        worker: Identity of the producer.
        rig: Namespace the MR belongs to.
        title: Human-readable summary.
        priority: Lower values are processed first.
        created_at: Submission time.
        agent_bead: Actor record carrying an ``active_mr`` back-reference.
        status: ``open``, ``in_progress`` or ``closed``.
        claimed_by: Worker holding the lease while in progress.
        claimed_at: Lease start time.
        close_reason: Terminal reason, set only when closed.
        merge_commit: Commit created by a successful merge.
        error: Last failure message.
        failed_head: Branch tip at the last rework-class failure.
        failed_at: Time of the last failure; transient failures wait one
            poll interval from here before the MR is retried.

    Example:
        >>> mr = MergeRequest(branch="work/a", priority=1)
        >>> (mr.target, mr.status, mr.claim)
        ('main', 'open', None)
    """

    model_config = ConfigDict(extra="allow")

    id: str = ""
    branch: str
    target: str = "main"
    source_issue: str = ""
    worker: str = ""
    rig: str = ""
    title: str = ""
    priority: int = DEFAULT_PRIORITY
    created_at: dt.datetime | None = None
    agent_bead: str | None = None
    status: MrStatus = "open"
    claimed_by: str | None = None
    claimed_at: dt.datetime | None = None
    close_reason: CloseReason | None = None
    merge_commit: str | None = None
    error: str | None = None
    failed_head: str | None = None
    failed_at: dt.datetime | None = None

    @field_validator("id", "branch", "target", "source_issue", "worker", "rig", mode="before")
    @classmethod
    def strip_strings(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("agent_bead", "claimed_by", "merge_commit", "error", mode="before")
    @classmethod
    def normalize_optional_strings(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or None
        return value

    @field_validator("created_at", "claimed_at", "failed_at")
    @classmethod
    def normalize_timestamp(cls, value: dt.datetime | None) -> dt.datetime | None:
        if value is None:
            return None
        return as_utc(value)

    @model_validator(mode="after")
    def close_reason_only_when_closed(self) -> MergeRequest:
        if self.status != "closed":
            self.close_reason = None
        return self

    @property
    def claim(self) -> Claim | None:
        if not self.claimed_by or self.claimed_at is None:
            return None
        return Claim(worker_id=self.claimed_by, claimed_at=self.claimed_at)

    @property
    def needs_rework(self) -> bool:
        return self.status == "open" and bool(self.error)

    def sort_key(self) -> tuple[int, dt.datetime, str]:
        return (self.priority, self.created_at or _EPOCH, self.id)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, exclude_none=True) + "\n"


class EventRecord(BaseModel):
    """Append-only lifecycle entry in the rig event log."""

    model_config = ConfigDict(extra="allow")

    event_type: EventType
    mr_id: str
    timestamp: dt.datetime
    branch: str | None = None
    target: str | None = None
    worker: str | None = None
    merge_commit: str | None = None
    error: str | None = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: dt.datetime) -> dt.datetime:
        return as_utc(value)


class QueueItem(BaseModel):
    """A merge request annotated with its queue position and display age."""

    position: int
    age: str
    label: str
    mr: MergeRequest


class CurrentMR(BaseModel):
    """Summary of the merge request an engine is processing."""

    id: str
    branch: str
    target: str
    worker: str = ""
    source_issue: str = ""
    started_at: dt.datetime


class RefineryStatus(BaseModel):
    """Persisted engine status for one refinery worker."""

    model_config = ConfigDict(extra="allow")

    state: RefineryState = "stopped"
    worker_id: str = ""
    pid: int | None = None
    started_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    current_mr: CurrentMR | None = None
    last_merge_at: dt.datetime | None = None
    merged_count: int = 0
    failed_count: int = 0


class MergeQueueConfig(BaseModel):
    """Merge queue settings for a rig.

    Attributes:
        enabled: Engine refuses to start when false.
        target_branch: Default target for submissions.
        integration_branches: Accepted for compatibility with existing rig
            configs; the engine does not read it.
        on_conflict: ``assign_back`` or ``auto_rebase``.
        run_tests: Whether the command gate runs before committing a merge.
        test_command: Shell command for the gate; empty disables it.
        delete_merged_branches: Delete the local source branch after merge.
        delete_remote_branches: Also delete the branch on ``origin``.
        retry_flaky_tests: Extra gate attempts before failing.
        poll_interval: Duration between empty polls (``"30s"``).
        max_concurrent: Maximum MRs processed at once per engine.
        lease_seconds: Claim lease duration.
        worktree: Working tree path, relative to the rig (default: the rig).

    Example:
        >>> MergeQueueConfig(poll_interval="1m").poll_interval_seconds
        60.0
    """

    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    target_branch: str = "main"
    integration_branches: bool = True
    on_conflict: OnConflict = "assign_back"
    run_tests: bool = True
    test_command: str = ""
    delete_merged_branches: bool = True
    delete_remote_branches: bool = False
    retry_flaky_tests: int = Field(default=1, ge=0)
    poll_interval: str = "30s"
    max_concurrent: int = Field(default=1, ge=1)
    lease_seconds: int = Field(default=DEFAULT_LEASE_SECONDS, gt=0)
    worktree: str = ""

    @field_validator("target_branch", mode="before")
    @classmethod
    def normalize_target_branch(cls, value: object) -> object:
        if value is None:
            return "main"
        if isinstance(value, str):
            return value.strip() or "main"
        return value

    @field_validator("on_conflict", mode="before")
    @classmethod
    def normalize_on_conflict(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("test_command", "worktree", mode="before")
    @classmethod
    def normalize_strings(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("poll_interval", mode="before")
    @classmethod
    def validate_poll_interval(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            parse_duration(value)
            return f"{value}s"
        if isinstance(value, str):
            parse_duration(value)
            return value.strip()
        return value

    @property
    def poll_interval_seconds(self) -> float:
        return parse_duration(self.poll_interval)

    @property
    def lease(self) -> dt.timedelta:
        return dt.timedelta(seconds=self.lease_seconds)
