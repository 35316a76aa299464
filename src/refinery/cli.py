"""Refinery command-line interface."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Optional

import typer

from . import __version__
from . import log as refinery_log
from .commands import events as events_cmd
from .commands import queue as queue_cmd
from .commands import refinery as refinery_cmd

app = typer.Typer(
    help="Merge queue coordination for a rig: submit branches, run the refinery.",
    no_args_is_help=True,
    add_completion=False,
)

_FORMAT_HELP = "output format: table or json"


def _validate_log_level(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in refinery_log.LOG_LEVEL_NAMES:
        raise typer.BadParameter(
            f"expected one of: {', '.join(refinery_log.LOG_LEVEL_NAMES)}"
        )
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"refinery {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help=f"log level ({', '.join(refinery_log.LOG_LEVEL_NAMES)})",
        callback=_validate_log_level,
    ),
    no_color: bool = typer.Option(False, "--no-color", help="disable colored output"),
    rig: Optional[str] = typer.Option(
        None, "--rig", help="rig directory (default: search upward from the cwd)"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="show the version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Global options."""
    if log_level is not None:
        refinery_log.set_level(log_level)
    if no_color:
        refinery_log.set_no_color(True)
    ctx.obj = {"rig": rig}


def _args(ctx: typer.Context, **values: object) -> SimpleNamespace:
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    return SimpleNamespace(rig=obj.get("rig"), **values)


@app.command("submit")
def submit(
    ctx: typer.Context,
    branch: str = typer.Option(..., "--branch", "-b", help="source branch"),
    target: Optional[str] = typer.Option(
        None, "--target", "-t", help="target branch (default: merge_queue.target_branch)"
    ),
    issue: str = typer.Option("", "--issue", help="source issue closed after merge"),
    worker: str = typer.Option("", "--worker", help="producer identity"),
    title: str = typer.Option("", "--title", help="human-readable summary"),
    priority: Optional[int] = typer.Option(None, "--priority", "-p", help="lower runs first"),
    agent_bead: Optional[str] = typer.Option(
        None, "--agent-bead", help="agent bead to point at the new MR"
    ),
) -> None:
    """Submit a branch to the merge queue."""
    queue_cmd.submit_mr(
        _args(
            ctx,
            branch=branch,
            target=target,
            issue=issue,
            worker=worker,
            title=title,
            priority=priority,
            agent_bead=agent_bead,
        )
    )


@app.command("queue")
def queue(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", help=_FORMAT_HELP),
) -> None:
    """List the queue with positions and status labels."""
    queue_cmd.show_queue(_args(ctx, format=format))


@app.command("unclaimed")
def unclaimed(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", help=_FORMAT_HELP),
) -> None:
    """List MRs without an active claim."""
    queue_cmd.show_unclaimed(_args(ctx, format=format))


@app.command("show")
def show(
    ctx: typer.Context,
    mr_id: str = typer.Argument(..., help="MR id"),
    format: str = typer.Option("table", "--format", help=_FORMAT_HELP),
) -> None:
    """Show one MR."""
    queue_cmd.show_mr(_args(ctx, mr_id=mr_id, format=format))


@app.command("count")
def count(ctx: typer.Context) -> None:
    """Print the number of queued MRs."""
    queue_cmd.count_mrs(_args(ctx))


@app.command("claim")
def claim(
    ctx: typer.Context,
    mr_id: str = typer.Argument(..., help="MR id"),
    worker: str = typer.Option("", "--worker", help="worker id (default: $REFINERY_WORKER)"),
) -> None:
    """Claim an MR for a worker."""
    queue_cmd.claim_mr(_args(ctx, mr_id=mr_id, worker=worker))


@app.command("release")
def release(ctx: typer.Context, mr_id: str = typer.Argument(..., help="MR id")) -> None:
    """Release the claim on an MR."""
    queue_cmd.release_mr(_args(ctx, mr_id=mr_id))


@app.command("run")
def run(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="exit when no MR is eligible"),
    worker: str = typer.Option("", "--worker", help="worker id (default: $REFINERY_WORKER)"),
) -> None:
    """Run the refinery engine in the foreground."""
    refinery_cmd.run_refinery(_args(ctx, once=once, worker=worker))


@app.command("status")
def status(
    ctx: typer.Context,
    worker: str = typer.Option("", "--worker", help="only show this worker"),
    format: str = typer.Option("table", "--format", help=_FORMAT_HELP),
) -> None:
    """Show refinery engine status."""
    refinery_cmd.show_status(_args(ctx, worker=worker, format=format))


@app.command("pause")
def pause(ctx: typer.Context) -> None:
    """Pause every refinery on the rig."""
    refinery_cmd.pause_refinery(_args(ctx))


@app.command("resume")
def resume(ctx: typer.Context) -> None:
    """Resume paused refineries."""
    refinery_cmd.resume_refinery(_args(ctx))


@app.command("stop")
def stop(
    ctx: typer.Context,
    worker: str = typer.Option("", "--worker", help="worker id (default: $REFINERY_WORKER)"),
) -> None:
    """Ask a running refinery to stop after its current MR."""
    refinery_cmd.stop_refinery(_args(ctx, worker=worker))


@app.command("events")
def events(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="number of events"),
    mr_id: str = typer.Option("", "--mr", help="only events for this MR"),
    format: str = typer.Option("table", "--format", help=_FORMAT_HELP),
) -> None:
    """Show recent merge events."""
    events_cmd.show_events(_args(ctx, limit=limit, mr_id=mr_id, format=format))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
