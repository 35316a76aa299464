"""Command implementations exposed by the Refinery CLI."""

from .events import show_events
from .queue import (
    claim_mr,
    count_mrs,
    release_mr,
    show_mr,
    show_queue,
    show_unclaimed,
    submit_mr,
)
from .refinery import (
    pause_refinery,
    resume_refinery,
    run_refinery,
    show_status,
    stop_refinery,
)

__all__ = [
    "claim_mr",
    "count_mrs",
    "pause_refinery",
    "release_mr",
    "resume_refinery",
    "run_refinery",
    "show_events",
    "show_mr",
    "show_queue",
    "show_status",
    "show_unclaimed",
    "stop_refinery",
    "submit_mr",
]
