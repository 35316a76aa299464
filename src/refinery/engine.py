"""Refinery engine: polls the merge queue and integrates branches one at a time.

Each cycle recovers the working tree, sweeps merged records left by a crash,
claims the head of the unclaimed queue, checks it for conflicts, merges it
behind the configured gate, and runs the success or failure compensating
actions. Storage and backend errors are recorded against the MR or logged;
they never stop the poll loop.
"""

from __future__ import annotations

import datetime as dt
import os
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from . import claims, log, paths, state
from .beads import BeadsIssueTracker
from .config import load_merge_queue_config, resolve_worker_id, resolve_worktree
from .conflicts import trial_merge
from .errors import (
    AlreadyClaimedError,
    BackendError,
    ConfigError,
    ConflictDetected,
    NotFoundError,
    RefineryError,
    StorageError,
)
from .events import EventLog
from .fs import LockBusyError, exclusive_lock
from .gate import gate_from_config
from .git import GitBackend
from .models import (
    CurrentMR,
    MergeQueueConfig,
    MergeRequest,
    RefineryState,
    RefineryStatus,
    utc_now,
)
from .mrqueue import MergeQueue
from .ports import IssueTracker, MergeGate, VcsBackend

EMIT_PREFIX = "[Engineer]"
REMOTE_NAME = "origin"
_SLEEP_SLICE_SECONDS = 1.0


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of processing one merge request.

    Attributes:
        success: The branch is integrated into the target.
        merge_commit: Commit on the target that contains the branch.
        error: Failure text when ``success`` is false.
        conflict: The failure was a merge conflict.
        tests_failed: The merge gate rejected the staged merge.
        rework: The branch must change before a retry can succeed.
        failed_head: Branch tip the failure was observed at.
        already_merged: The target already contained the branch.
    """

    success: bool
    merge_commit: str | None = None
    error: str | None = None
    conflict: bool = False
    tests_failed: bool = False
    rework: bool = False
    failed_head: str | None = None
    already_merged: bool = False

    @property
    def transient(self) -> bool:
        return not self.success and not self.rework


def _default_emit(message: str) -> None:
    log.info(message)


class Engineer:
    """Merge queue processor bound to one queue and one working tree.

    Args:
        queue: MR store to consume.
        backend: Working tree the engine merges in.
        config: Merge queue settings.
        worker_id: Claim identity of this engine.
        events: Event log; defaults to the rig's log.
        tracker: Issue tracker for post-merge updates; ``None`` skips them.
        gate: Merge gate; defaults to the one configured by ``config``.
        emit: Sink for user-facing progress lines.
        clock: Source of the current time.
        sleep_fn: Blocking sleep used between polls.
    """

    def __init__(
        self,
        queue: MergeQueue,
        backend: VcsBackend,
        *,
        config: MergeQueueConfig | None = None,
        worker_id: str = "refinery-1",
        events: EventLog | None = None,
        tracker: IssueTracker | None = None,
        gate: MergeGate | None = None,
        emit: Callable[[str], None] = _default_emit,
        clock: Callable[[], dt.datetime] = utc_now,
        sleep_fn: Callable[[float], None] = time.sleep,
        write_status: bool = True,
    ) -> None:
        self.queue = queue
        self.backend = backend
        self.config = config or MergeQueueConfig()
        self.worker_id = worker_id
        self.events = events or EventLog.for_rig(queue.rig_root, worker_id=worker_id)
        self.tracker = tracker
        self.gate = gate or gate_from_config(self.config)
        self._emit = emit
        self._clock = clock
        self._sleep = sleep_fn
        self._write_status_enabled = write_status
        self._stop_requested = False
        self.status = RefineryStatus(state="stopped", worker_id=worker_id)

    @classmethod
    def for_rig(
        cls,
        rig_root: Path,
        *,
        config: MergeQueueConfig | None = None,
        worker_id: str | None = None,
        emit: Callable[[str], None] = _default_emit,
    ) -> Engineer:
        """Build an engine wired to a rig's queue, worktree, and beads store."""
        resolved_config = config or load_merge_queue_config(rig_root)
        resolved_worker = worker_id or resolve_worker_id()
        worktree = resolve_worktree(rig_root, resolved_config)
        return cls(
            MergeQueue.for_rig(rig_root),
            GitBackend(worktree),
            config=resolved_config,
            worker_id=resolved_worker,
            tracker=BeadsIssueTracker(beads_root=paths.beads_dir(rig_root), cwd=rig_root),
            emit=emit,
        )

    @property
    def rig_root(self) -> Path:
        return self.queue.rig_root

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def emit(self, message: str) -> None:
        self._emit(f"{EMIT_PREFIX} {message}")

    def stop(self) -> None:
        """Ask the run loop to exit after the in-flight MR completes."""
        self._stop_requested = True

    # Run loop

    def run(self, *, once: bool = False, max_cycles: int | None = None) -> int:
        """Poll and process the queue until stopped.

        Args:
            once: Exit as soon as no MR is eligible instead of polling.
            max_cycles: Exit after this many cycles.

        Returns:
            Number of MRs merged.

        Raises:
            ConfigError: When the merge queue is disabled.
            BackendError: When another engine drives the same working tree.
        """
        if not self.config.enabled:
            raise ConfigError(
                "merge queue is disabled for this rig",
                recovery_hint="set merge_queue.enabled to true in config.json",
            )
        lock_path = paths.worktree_lock_path(self.rig_root, self.backend.repo_dir)
        try:
            with exclusive_lock(lock_path, blocking=False):
                with self._signal_handlers():
                    return self._run_loop(once=once, max_cycles=max_cycles)
        except LockBusyError as exc:
            raise BackendError(
                f"another refinery is already driving {self.backend.repo_dir}",
                recovery_hint="stop the other engine or configure a separate worktree",
            ) from exc

    def _run_loop(self, *, once: bool, max_cycles: int | None) -> int:
        self._stop_requested = False
        self.status = RefineryStatus(
            state="running",
            worker_id=self.worker_id,
            pid=os.getpid(),
            started_at=self._clock(),
        )
        self._carry_over_totals()
        self._save_status()
        interval = self.config.poll_interval_seconds
        self.emit(
            f"Started as {self.worker_id} on {self.backend.repo_dir}"
            f" (poll {self.config.poll_interval})"
        )
        if self.config.max_concurrent > 1:
            log.debug("max_concurrent > 1 is ignored; one MR is processed at a time per worktree")
        merged = 0
        cycles = 0
        try:
            while not self._stop_requested:
                if max_cycles is not None and cycles >= max_cycles:
                    break
                cycles += 1
                if state.is_paused(self.rig_root):
                    self._set_state("paused")
                    if once:
                        self.emit("Paused; exiting")
                        break
                    self._wait(interval)
                    continue
                self._set_state("running")
                try:
                    result = self.run_cycle()
                except RefineryError as exc:
                    log.warning(f"{EMIT_PREFIX} cycle failed: {exc.message}")
                    if once:
                        break
                    self._wait(interval)
                    continue
                if result is None:
                    if once:
                        break
                    log.trace(f"queue idle; sleeping {interval}s")
                    self._wait(interval)
                    continue
                if result.success:
                    merged += 1
        finally:
            self.status.state = "stopped"
            self.status.current_mr = None
            self.status.pid = None
            self._save_status()
            self.emit(f"Stopped ({merged} merged)")
        return merged

    def _carry_over_totals(self) -> None:
        if not self._write_status_enabled:
            return
        previous = state.read_status(self.rig_root, self.worker_id)
        if previous is None:
            return
        self.status.last_merge_at = previous.last_merge_at
        self.status.merged_count = previous.merged_count
        self.status.failed_count = previous.failed_count

    def _wait(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0 and not self._stop_requested:
            step = min(_SLEEP_SLICE_SECONDS, remaining)
            self._sleep(step)
            remaining -= step

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def _handle(signum: int, frame: object) -> None:
            self.emit(f"Received {signal.Signals(signum).name}; stopping after current MR")
            self.stop()

        previous = {
            signum: signal.signal(signum, _handle) for signum in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

    # Cycle

    def run_cycle(self) -> ProcessResult | None:
        """Run one poll cycle.

        Returns:
            The processing result, or ``None`` when no MR was eligible.
        """
        self.recover_worktree()
        self.sweep_merged()
        now = self._clock()
        for candidate in claims.list_unclaimed(self.queue, now=now, lease=self.config.lease):
            if self._awaiting_rework(candidate) or self._backing_off(candidate, now):
                continue
            try:
                mr = claims.claim(
                    self.queue, candidate.id, self.worker_id, now=now, lease=self.config.lease
                )
            except AlreadyClaimedError as exc:
                log.debug(f"{candidate.id} claimed by {exc.claimed_by}; trying next")
                continue
            except NotFoundError:
                continue
            return self.process_mr(mr)
        return None

    def recover_worktree(self) -> None:
        """Return the working tree to a clean state left by an interrupted run."""
        if self.backend.merge_in_progress():
            self.emit("Aborting interrupted merge in worktree")
            self.backend.abort_merge()
        clean = self.backend.is_clean()
        if clean is False:
            self.emit("Worktree has uncommitted changes; resetting to HEAD")
            self.backend.reset_hard("HEAD")

    def sweep_merged(self) -> int:
        """Finish MRs recorded as merged whose cleanup was interrupted.

        Returns:
            Number of records removed.
        """
        now = self._clock()
        swept = 0
        for mr in self.queue.list():
            if mr.status != "closed" or mr.close_reason != "merged":
                continue
            if claims.claim_active(mr, now=now, lease=self.config.lease):
                continue
            self.emit(f"Completing interrupted merge cleanup for {mr.id}")
            self._complete_success(mr)
            swept += 1
        return swept

    def _awaiting_rework(self, mr: MergeRequest) -> bool:
        if not mr.error or mr.failed_head is None:
            return False
        tip = self.backend.rev_parse(mr.branch) or ""
        return tip == mr.failed_head

    @property
    def retry_backoff(self) -> dt.timedelta:
        """Wait before a transiently failed MR is claimed again."""
        return dt.timedelta(seconds=max(self.config.poll_interval_seconds, _SLEEP_SLICE_SECONDS))

    def _backing_off(self, mr: MergeRequest, now: dt.datetime) -> bool:
        if not mr.error or mr.failed_head is not None or mr.failed_at is None:
            return False
        return now < mr.failed_at + self.retry_backoff

    # Processing

    def process_mr(self, mr: MergeRequest) -> ProcessResult:
        """Attempt to integrate a claimed MR and run the compensating actions."""
        self.emit(f"Processing {mr.id}: {mr.branch} -> {mr.target}")
        self.status.current_mr = CurrentMR(
            id=mr.id,
            branch=mr.branch,
            target=mr.target,
            worker=mr.worker,
            source_issue=mr.source_issue,
            started_at=self._clock(),
        )
        self._save_status()
        try:
            self.events.log_merge_started(mr, now=self._clock())
        except StorageError as exc:
            log.warning(f"{EMIT_PREFIX} failed to log merge_started event: {exc.message}")

        try:
            result = self._attempt(mr)
        except RefineryError as exc:
            self._cleanup_after_error()
            result = ProcessResult(success=False, error=exc.message)

        if result.success:
            self.handle_success(mr, result)
        else:
            self.handle_failure(mr, result)
        self.status.current_mr = None
        self._save_status()
        return result

    def _attempt(self, mr: MergeRequest) -> ProcessResult:
        backend = self.backend
        tip = backend.rev_parse(mr.branch)
        if tip is None:
            if mr.merge_commit and backend.is_ancestor(mr.merge_commit, mr.target):
                return ProcessResult(
                    success=True, merge_commit=mr.merge_commit, already_merged=True
                )
            return ProcessResult(
                success=False,
                error=f"branch {mr.branch} not found",
                rework=True,
                failed_head="",
            )
        target_tip = backend.rev_parse(mr.target)
        if target_tip is None:
            raise BackendError(f"target branch {mr.target} not found")
        if backend.is_ancestor(tip, mr.target):
            self.emit(f"{mr.branch} is already contained in {mr.target}")
            return ProcessResult(
                success=True,
                merge_commit=mr.merge_commit or target_tip,
                already_merged=True,
            )

        trial = trial_merge(backend, mr.branch, mr.target)
        if not trial.clean:
            return ProcessResult(
                success=False,
                error=trial.to_error().message,
                conflict=True,
                rework=True,
                failed_head=tip,
            )

        attempt = backend.merge(mr.branch, no_commit=True, no_ff=True)
        if not attempt.ok:
            try:
                paths_in_conflict = backend.conflicted_paths()
            finally:
                self._cleanup_after_error()
            if attempt.conflict_reported or paths_in_conflict:
                return ProcessResult(
                    success=False,
                    error=ConflictDetected(mr.branch, mr.target, paths_in_conflict).message,
                    conflict=True,
                    rework=True,
                    failed_head=tip,
                )
            raise BackendError(
                f"merge {mr.branch} into {mr.target} failed: {attempt.output}",
                output=attempt.output,
            )

        verdict = self.gate.check(backend.repo_dir, mr)
        if verdict.misconfigured:
            raise ConfigError(
                f"merge gate could not run: {verdict.detail.strip()}",
                recovery_hint="fix merge_queue.test_command and restart the refinery",
            )
        if not verdict.passed:
            self._cleanup_after_error()
            detail = verdict.detail.strip()
            message = "tests failed"
            if verdict.attempts > 1:
                message = f"{message} after {verdict.attempts} attempts"
            if detail:
                message = f"{message}: {detail}"
            return ProcessResult(
                success=False,
                error=message,
                tests_failed=True,
                rework=True,
                failed_head=tip,
            )

        commit = backend.commit_merge(self._commit_message(mr))
        return ProcessResult(success=True, merge_commit=commit)

    def _commit_message(self, mr: MergeRequest) -> str:
        subject = f"Merge branch '{mr.branch}' into {mr.target}"
        lines = [subject, "", f"MR: {mr.id}"]
        if mr.title:
            lines.append(f"Title: {mr.title}")
        if mr.source_issue:
            lines.append(f"Issue: {mr.source_issue}")
        if mr.worker:
            lines.append(f"Worker: {mr.worker}")
        return "\n".join(lines)

    def _cleanup_after_error(self) -> None:
        try:
            if self.backend.merge_in_progress():
                self.backend.abort_merge()
            elif self.backend.is_clean() is False:
                self.backend.reset_hard("HEAD")
        except BackendError as exc:
            log.warning(f"{EMIT_PREFIX} worktree cleanup failed: {exc.message}")

    # Compensating actions

    def handle_success(self, mr: MergeRequest, result: ProcessResult) -> None:
        """Record the merge and clean up after it.

        The closed record carrying the merge commit is saved before anything
        else so an interrupted cleanup is finished by a later sweep.
        """
        commit = result.merge_commit or ""
        mr.merge_commit = commit or None
        mr.status = "closed"
        mr.close_reason = "merged"
        mr.error = None
        mr.failed_head = None
        mr.failed_at = None
        try:
            self.queue.save(mr)
        except RefineryError as exc:
            log.warning(f"{EMIT_PREFIX} failed to record merge commit on {mr.id}: {exc.message}")
        try:
            self.events.log_merged(mr, commit, now=self._clock())
        except StorageError as exc:
            log.warning(f"{EMIT_PREFIX} failed to log merged event: {exc.message}")
        self._complete_success(mr)
        self.status.last_merge_at = self._clock()
        self.status.merged_count += 1
        suffix = " (already merged)" if result.already_merged else ""
        self.emit(f"✓ Merged: {mr.id} (commit: {commit[:12] or 'unknown'}){suffix}")

    def _complete_success(self, mr: MergeRequest) -> None:
        if self.tracker is not None and mr.source_issue:
            try:
                self.tracker.close_issue(mr.source_issue, f"Merged in {mr.id}")
            except RefineryError as exc:
                log.warning(
                    f"{EMIT_PREFIX} failed to close source issue {mr.source_issue}: {exc.message}"
                )
            else:
                self.emit(f"Closed source issue: {mr.source_issue}")
        if self.tracker is not None and mr.agent_bead:
            try:
                self.tracker.clear_active_mr(mr.agent_bead)
            except RefineryError as exc:
                log.warning(
                    f"{EMIT_PREFIX} failed to clear agent bead {mr.agent_bead} active_mr:"
                    f" {exc.message}"
                )
        if self.config.delete_merged_branches:
            self._delete_branch(mr)
        try:
            self.queue.remove(mr.id)
        except StorageError as exc:
            log.warning(f"{EMIT_PREFIX} failed to remove {mr.id} from queue: {exc.message}")

    def _delete_branch(self, mr: MergeRequest) -> None:
        if not mr.branch or mr.branch == mr.target:
            return
        try:
            if self.backend.branch_exists(mr.branch):
                self.backend.delete_branch(mr.branch, force=True)
                self.emit(f"Deleted local branch: {mr.branch}")
        except BackendError as exc:
            log.warning(f"{EMIT_PREFIX} failed to delete branch {mr.branch}: {exc.message}")
        if not self.config.delete_remote_branches:
            return
        try:
            self.backend.push_delete_remote_branch(REMOTE_NAME, mr.branch)
            self.emit(f"Deleted remote branch: {REMOTE_NAME}/{mr.branch}")
        except BackendError as exc:
            log.warning(f"{EMIT_PREFIX} failed to delete remote branch {mr.branch}: {exc.message}")

    def handle_failure(self, mr: MergeRequest, result: ProcessResult) -> None:
        """Log the failure and return the MR to the queue with its error."""
        error = result.error or "merge failed"
        if result.conflict and self.config.on_conflict == "auto_rebase":
            error = f"{error}; rebase onto {mr.target}"
        try:
            self.events.log_merge_failed(mr, error, now=self._clock())
        except StorageError as exc:
            log.warning(f"{EMIT_PREFIX} failed to log merge_failed event: {exc.message}")
        try:
            claims.release(
                self.queue,
                mr.id,
                error=error,
                failed_head=result.failed_head if result.rework else None,
                failed_at=self._clock(),
            )
        except RefineryError as exc:
            log.warning(f"{EMIT_PREFIX} failed to release {mr.id}: {exc.message}")
        self.status.failed_count += 1
        self.emit(f"✗ Failed: {mr.id} - {error}")
        if result.rework:
            self.emit("MR needs rework before it can be retried")
        else:
            wait = self.retry_backoff.total_seconds()
            self.emit(f"MR remains in queue; retrying in {wait:g}s")

    # Status

    def _set_state(self, value: RefineryState) -> None:
        if self.status.state == value:
            return
        self.status.state = value
        if value == "paused":
            self.emit("Paused")
        self._save_status()

    def _save_status(self) -> None:
        if not self._write_status_enabled:
            return
        try:
            state.write_status(self.rig_root, self.status)
        except StorageError as exc:
            log.debug(f"unable to write refinery status: {exc.message}")
