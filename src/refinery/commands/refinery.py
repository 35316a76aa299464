"""Implementation for the refinery engine commands (run, status, pause, ...)."""

from __future__ import annotations

import datetime as dt
from pathlib import Path

from rich import box
from rich.table import Table

from .. import config, log, state
from ..engine import Engineer
from ..errors import RefineryError
from ..io import say, say_json
from ..models import RefineryStatus
from ..mrqueue import MergeQueue
from ..queue_view import queue_items
from .resolve import die_with_error, output_format, resolve_rig_root


def _worker_id(args: object) -> str:
    value = str(getattr(args, "worker", "") or "").strip()
    return value or config.resolve_worker_id()


def run_refinery(args: object) -> None:
    """Run the merge engine in the foreground until stopped."""
    rig_root = resolve_rig_root(args)
    once = bool(getattr(args, "once", False))
    try:
        engineer = Engineer.for_rig(rig_root, worker_id=_worker_id(args))
        merged = engineer.run(once=once)
    except RefineryError as exc:
        die_with_error(exc)
    if once:
        say(f"Merged {merged} MR(s).")


def _timestamp(value: dt.datetime | None) -> str:
    return value.isoformat(timespec="seconds") if value else "-"


def _pending_count(rig_root: Path) -> int:
    """Count queued MRs that no engine holds a live claim on."""
    try:
        lease = config.load_merge_queue_config(rig_root).lease
    except RefineryError as exc:
        die_with_error(exc)
    items = queue_items(MergeQueue.for_rig(rig_root), lease=lease)
    return sum(1 for item in items if item.position > 0)


def _render_status(statuses: list[RefineryStatus], *, paused: bool, pending: int) -> None:
    table = Table(title="Refinery", box=box.SIMPLE)
    table.add_column("Worker", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("PID", justify="right", no_wrap=True)
    table.add_column("Started", no_wrap=True)
    table.add_column("Current MR", overflow="fold")
    table.add_column("Last merge", no_wrap=True)
    table.add_column("Merged", justify="right")
    table.add_column("Failed", justify="right")
    for status in statuses:
        current = status.current_mr
        table.add_row(
            status.worker_id,
            status.state,
            str(status.pid) if status.pid else "-",
            _timestamp(status.started_at),
            f"{current.id} ({current.branch})" if current else "-",
            _timestamp(status.last_merge_at),
            str(status.merged_count),
            str(status.failed_count),
        )
    log.console().print(table)
    say(f"Pending: {pending}")
    if paused:
        say("Rig is paused; run 'refinery resume' to continue.")


def show_status(args: object) -> None:
    """Show engine state, current MR, last merge time and the pending count."""
    format_value = output_format(args)
    rig_root = resolve_rig_root(args)
    requested = str(getattr(args, "worker", "") or "").strip()
    if requested:
        recorded = state.read_status(rig_root, requested)
        statuses = [state.effective_status(recorded, worker_id=requested)]
    else:
        statuses = state.list_statuses(rig_root) or [
            state.effective_status(None, worker_id=config.resolve_worker_id())
        ]
    paused = state.is_paused(rig_root)
    pending = _pending_count(rig_root)
    if format_value == "json":
        payload = {
            "paused": paused,
            "pending": pending,
            "workers": [status.model_dump(mode="json", exclude_none=True) for status in statuses],
        }
        say_json(payload)
        return
    _render_status(statuses, paused=paused, pending=pending)


def pause_refinery(args: object) -> None:
    """Pause polling for every engine on the rig."""
    rig_root = resolve_rig_root(args)
    try:
        changed = state.pause(rig_root)
    except RefineryError as exc:
        die_with_error(exc)
    say("Refinery paused." if changed else "Refinery already paused.")


def resume_refinery(args: object) -> None:
    """Resume polling after a pause."""
    rig_root = resolve_rig_root(args)
    try:
        changed = state.resume(rig_root)
    except RefineryError as exc:
        die_with_error(exc)
    say("Refinery resumed." if changed else "Refinery was not paused.")


def stop_refinery(args: object) -> None:
    """Ask a running engine to stop after its current MR."""
    rig_root = resolve_rig_root(args)
    worker = _worker_id(args)
    pid = state.request_stop(rig_root, worker)
    if pid is None:
        say(f"Refinery {worker} is not running.")
        return
    say(f"Sent stop request to {worker} (pid {pid}).")
