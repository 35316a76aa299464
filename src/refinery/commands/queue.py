"""Implementation for the merge queue commands (submit, queue, claim, ...)."""

from __future__ import annotations

from pathlib import Path

from rich import box
from rich.table import Table

from .. import claims, config, log, paths
from ..beads import BeadsIssueTracker
from ..errors import RefineryError
from ..io import die, say, say_json, warn
from ..models import DEFAULT_PRIORITY, MergeQueueConfig, MergeRequest, QueueItem
from ..mrqueue import MergeQueue
from ..queue_view import display_label, format_age, queue_items
from .resolve import die_with_error, output_format, resolve_rig_root


def _load(args: object) -> tuple[Path, MergeQueue, MergeQueueConfig]:
    rig_root = resolve_rig_root(args)
    try:
        mq_config = config.load_merge_queue_config(rig_root)
    except RefineryError as exc:
        die_with_error(exc)
    return rig_root, MergeQueue.for_rig(rig_root), mq_config


def _mr_payload(mr: MergeRequest) -> dict[str, object]:
    return mr.model_dump(mode="json", exclude_none=True)


def _item_payload(item: QueueItem) -> dict[str, object]:
    return {
        "position": item.position,
        "age": item.age,
        "label": item.label,
        "mr": _mr_payload(item.mr),
    }


def _display_value(value: object) -> str:
    if value is None or value == "":
        return "-"
    return str(value)


def _render_items(items: list[QueueItem], *, title: str) -> None:
    if not items:
        say("Queue is empty.")
        return
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Pos", justify="right", no_wrap=True)
    table.add_column("ID", no_wrap=True)
    table.add_column("P", justify="right", no_wrap=True)
    table.add_column("Branch", overflow="fold")
    table.add_column("Target", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Age", justify="right", no_wrap=True)
    table.add_column("Worker", no_wrap=True)
    table.add_column("Error", overflow="fold")
    for item in items:
        mr = item.mr
        table.add_row(
            str(item.position),
            mr.id,
            str(mr.priority),
            mr.branch,
            mr.target,
            item.label,
            item.age,
            _display_value(mr.claimed_by or mr.worker),
            _display_value(mr.error),
        )
    log.console().print(table)


def submit_mr(args: object) -> None:
    """Submit a branch to the merge queue and print the assigned id."""
    rig_root, queue, mq_config = _load(args)
    branch = str(getattr(args, "branch", "") or "").strip()
    if not branch:
        die("--branch must not be empty")
    target = str(getattr(args, "target", "") or "").strip() or mq_config.target_branch
    priority = getattr(args, "priority", None)
    mr = MergeRequest(
        branch=branch,
        target=target,
        source_issue=str(getattr(args, "issue", "") or ""),
        worker=str(getattr(args, "worker", "") or ""),
        rig=rig_root.name,
        title=str(getattr(args, "title", "") or ""),
        priority=int(priority) if priority is not None else DEFAULT_PRIORITY,
        agent_bead=getattr(args, "agent_bead", None) or None,
    )
    try:
        queue.submit(mr)
    except RefineryError as exc:
        die_with_error(exc)
    if mr.agent_bead:
        tracker = BeadsIssueTracker(beads_root=paths.beads_dir(rig_root), cwd=rig_root)
        try:
            tracker.set_active_mr(mr.agent_bead, mr.id)
        except RefineryError as exc:
            warn(f"could not update agent bead {mr.agent_bead} with active_mr: {exc.message}")
    say(mr.id)


def show_queue(args: object) -> None:
    """Show every MR with its queue position, age, and status label."""
    format_value = output_format(args)
    _rig_root, queue, mq_config = _load(args)
    try:
        items = queue_items(queue, lease=mq_config.lease)
    except RefineryError as exc:
        die_with_error(exc)
    if format_value == "json":
        say_json([_item_payload(item) for item in items])
        return
    _render_items(items, title="Merge Queue")


def show_unclaimed(args: object) -> None:
    """Show MRs that no worker holds an unexpired claim on."""
    format_value = output_format(args)
    _rig_root, queue, mq_config = _load(args)
    try:
        pending = claims.list_unclaimed(queue, lease=mq_config.lease)
    except RefineryError as exc:
        die_with_error(exc)
    items = [
        QueueItem(
            position=index,
            age=format_age(mr.created_at),
            label=display_label(mr, processing=False),
            mr=mr,
        )
        for index, mr in enumerate(pending, start=1)
    ]
    if format_value == "json":
        say_json([_item_payload(item) for item in items])
        return
    _render_items(items, title="Unclaimed")


def show_mr(args: object) -> None:
    """Show one MR record."""
    format_value = output_format(args)
    _rig_root, queue, mq_config = _load(args)
    mr_id = str(getattr(args, "mr_id", "") or "").strip()
    try:
        mr = queue.get(mr_id)
    except RefineryError as exc:
        die_with_error(exc)
    if format_value == "json":
        say_json(_mr_payload(mr))
        return
    processing = claims.claim_active(mr, lease=mq_config.lease)
    table = Table(title=f"MR {mr.id}", box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value", overflow="fold")
    table.add_row("Status", display_label(mr, processing=processing))
    table.add_row("Branch", mr.branch)
    table.add_row("Target", mr.target)
    table.add_row("Priority", str(mr.priority))
    table.add_row("Age", format_age(mr.created_at))
    table.add_row("Title", _display_value(mr.title))
    table.add_row("Source issue", _display_value(mr.source_issue))
    table.add_row("Worker", _display_value(mr.worker))
    table.add_row("Agent bead", _display_value(mr.agent_bead))
    table.add_row("Claimed by", _display_value(mr.claimed_by))
    table.add_row("Merge commit", _display_value(mr.merge_commit))
    table.add_row("Error", _display_value(mr.error))
    log.console().print(table)


def count_mrs(args: object) -> None:
    """Print the number of MR records in the queue."""
    rig_root = resolve_rig_root(args)
    say(str(MergeQueue.for_rig(rig_root).count()))


def claim_mr(args: object) -> None:
    """Claim an MR for a worker identity."""
    _rig_root, queue, mq_config = _load(args)
    mr_id = str(getattr(args, "mr_id", "") or "").strip()
    worker = str(getattr(args, "worker", "") or "").strip() or config.resolve_worker_id()
    try:
        claims.claim(queue, mr_id, worker, lease=mq_config.lease)
    except RefineryError as exc:
        die_with_error(exc)
    say(f"Claimed {mr_id} for {worker}")


def release_mr(args: object) -> None:
    """Release the claim on an MR."""
    _rig_root, queue, _mq_config = _load(args)
    mr_id = str(getattr(args, "mr_id", "") or "").strip()
    try:
        claims.release(queue, mr_id)
    except RefineryError as exc:
        die_with_error(exc)
    say(f"Released {mr_id}")
