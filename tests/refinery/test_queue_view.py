from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from refinery import claims, paths
from refinery.models import MergeRequest
from refinery.mrqueue import MergeQueue
from refinery.queue_view import display_label, format_age, queue_items
from tests.refinery.helpers import T0, submit


@pytest.fixture
def queue(tmp_path: Path) -> MergeQueue:
    rig = tmp_path / "rig"
    paths.beads_dir(rig).mkdir(parents=True)
    return MergeQueue.for_rig(rig)


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (dt.timedelta(seconds=45), "45s"),
        (dt.timedelta(minutes=12), "12m"),
        (dt.timedelta(hours=3, minutes=59), "3h"),
        (dt.timedelta(days=2, hours=5), "2d"),
        (dt.timedelta(seconds=-30), "0s"),
    ],
)
def test_format_age(delta: dt.timedelta, expected: str) -> None:
    assert format_age(T0, now=T0 + delta) == expected


def test_format_age_without_timestamp() -> None:
    assert format_age(None, now=T0) == "?"


def test_display_labels_cover_lifecycle() -> None:
    pending = MergeRequest(branch="a")
    rework = MergeRequest(branch="a", error="conflict")
    merged = MergeRequest(branch="a", status="closed", close_reason="merged")
    closed = MergeRequest(branch="a", status="closed")
    stale = MergeRequest(branch="a", status="in_progress", claimed_by="w1", claimed_at=T0)

    assert display_label(pending, processing=False) == "pending"
    assert display_label(pending, processing=True) == "processing"
    assert display_label(rework, processing=False) == "needs-rework"
    assert display_label(merged, processing=False) == "merged"
    assert display_label(closed, processing=False) == "closed"
    assert display_label(stale, processing=False) == "stale-claim"


def test_close_reason_is_dropped_unless_closed() -> None:
    assert MergeRequest(branch="a", close_reason="merged").close_reason is None


def test_queue_items_number_pending_and_pin_processing(queue: MergeQueue) -> None:
    first = submit(queue, "a", priority=1)
    second = submit(queue, "b", priority=2)
    third = submit(queue, "c", priority=3)
    claims.claim(queue, second.id, "w1", now=T0)

    items = queue_items(queue, now=T0 + dt.timedelta(minutes=1))

    assert [(item.position, item.mr.id, item.label) for item in items] == [
        (0, second.id, "processing"),
        (1, first.id, "pending"),
        (2, third.id, "pending"),
    ]
    assert items[1].age == "1m"


def test_queue_items_treat_expired_claims_as_pending(queue: MergeQueue) -> None:
    mr = submit(queue, "a")
    claims.claim(queue, mr.id, "w1", now=T0)

    items = queue_items(queue, now=T0 + claims.LEASE_DURATION + dt.timedelta(seconds=1))

    assert [(item.position, item.label) for item in items] == [(1, "stale-claim")]


def test_failed_mr_is_listed_as_needs_rework(queue: MergeQueue) -> None:
    mr = submit(queue, "a", priority=5)
    claims.claim(queue, mr.id, "w1", now=T0)
    claims.release(queue, mr.id, error="tests failed")

    [item] = queue_items(queue, now=T0)

    assert item.position == 1
    assert item.label == "needs-rework"
    assert item.mr.error == "tests failed"
