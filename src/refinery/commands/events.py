"""Implementation for the ``refinery events`` command."""

from __future__ import annotations

from rich import box
from rich.table import Table

from .. import log
from ..errors import RefineryError
from ..events import EventLog
from ..io import say, say_json
from .resolve import die_with_error, output_format, resolve_rig_root


def show_events(args: object) -> None:
    """Show the most recent merge lifecycle events."""
    rig_root = resolve_rig_root(args)
    limit = int(getattr(args, "limit", 20) or 20)
    mr_id = str(getattr(args, "mr_id", "") or "").strip() or None
    format_value = output_format(args)
    try:
        records = EventLog.for_rig(rig_root).read(limit=limit, mr_id=mr_id)
    except RefineryError as exc:
        die_with_error(exc)
    if format_value == "json":
        say_json([record.model_dump(mode="json", exclude_none=True) for record in records])
        return
    if not records:
        say("No events.")
        return
    table = Table(title="Merge Events", box=box.SIMPLE)
    table.add_column("Time", no_wrap=True)
    table.add_column("Event", no_wrap=True)
    table.add_column("MR", no_wrap=True)
    table.add_column("Branch", overflow="fold")
    table.add_column("Detail", overflow="fold")
    for record in records:
        detail = record.merge_commit or record.error or ""
        table.add_row(
            record.timestamp.isoformat(timespec="seconds"),
            record.event_type,
            record.mr_id,
            record.branch or "-",
            detail or "-",
        )
    log.console().print(table)
