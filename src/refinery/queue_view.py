"""Derived queue views: positions, ages, and display labels."""

from __future__ import annotations

import datetime as dt

from .claims import LEASE_DURATION, claim_active
from .models import MergeRequest, QueueItem, as_utc, utc_now
from .mrqueue import MergeQueue


def format_age(created_at: dt.datetime | None, *, now: dt.datetime | None = None) -> str:
    """Render a compact age string for display.

    Example:
        >>> import datetime as dt
        >>> start = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
        >>> format_age(start, now=start + dt.timedelta(minutes=12, seconds=5))
        '12m'
        >>> format_age(start, now=start + dt.timedelta(days=3))
        '3d'
    """
    if created_at is None:
        return "?"
    seconds = int((as_utc(now or utc_now()) - as_utc(created_at)).total_seconds())
    if seconds < 0:
        seconds = 0
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def display_label(mr: MergeRequest, *, processing: bool) -> str:
    """Return the status label shown for an MR in queue listings.

    Example:
        >>> display_label(MergeRequest(branch="b", error="conflict"), processing=False)
        'needs-rework'
    """
    if processing:
        return "processing"
    if mr.status == "closed":
        return mr.close_reason or "closed"
    if mr.status == "in_progress":
        return "stale-claim"
    if mr.needs_rework:
        return "needs-rework"
    return "pending"


def queue_items(
    queue: MergeQueue,
    *,
    now: dt.datetime | None = None,
    lease: dt.timedelta = LEASE_DURATION,
) -> list[QueueItem]:
    """Build the queue view from the live MR set.

    MRs holding an unexpired claim get position 0; the rest are numbered
    1..N in queue order.
    """
    timestamp = now or utc_now()
    items: list[QueueItem] = []
    position = 0
    for mr in queue.list():
        processing = claim_active(mr, now=timestamp, lease=lease)
        if processing:
            item_position = 0
        else:
            position += 1
            item_position = position
        items.append(
            QueueItem(
                position=item_position,
                age=format_age(mr.created_at, now=timestamp),
                label=display_label(mr, processing=processing),
                mr=mr,
            )
        )
    items.sort(key=lambda item: (item.position != 0, item.position))
    return items
