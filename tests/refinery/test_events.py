from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from refinery.errors import StorageError
from refinery.events import EventLog
from refinery.models import MergeRequest
from tests.refinery.helpers import T0


@pytest.fixture
def event_log(tmp_path: Path) -> EventLog:
    return EventLog.for_rig(tmp_path / "rig", worker_id="refinery-1")


def _mr(mr_id: str) -> MergeRequest:
    return MergeRequest(id=mr_id, branch=f"work/{mr_id}", target="main")


def test_events_are_appended_as_json_lines(event_log: EventLog) -> None:
    mr = _mr("mr-1")
    event_log.log_merge_started(mr, now=T0)
    event_log.log_merged(mr, "abc123", now=T0 + dt.timedelta(seconds=5))

    lines = event_log.path.read_text(encoding="utf-8").splitlines()
    first, second = (json.loads(line) for line in lines)

    assert event_log.path.name == "mq_events.jsonl"
    assert first == {
        "event_type": "merge_started",
        "mr_id": "mr-1",
        "timestamp": "2026-01-01T12:00:00Z",
        "branch": "work/mr-1",
        "target": "main",
        "worker": "refinery-1",
    }
    assert second["event_type"] == "merged"
    assert second["merge_commit"] == "abc123"


def test_read_filters_and_limits(event_log: EventLog) -> None:
    for index in range(5):
        mr = _mr(f"mr-{index % 2}")
        event_log.log_merge_failed(mr, f"failure {index}", now=T0 + dt.timedelta(minutes=index))

    everything = event_log.read()
    recent = event_log.read(limit=2)
    only_odd = event_log.read(mr_id="mr-1")

    assert [event.error for event in everything] == [f"failure {index}" for index in range(5)]
    assert [event.error for event in recent] == ["failure 3", "failure 4"]
    assert [event.error for event in only_odd] == ["failure 1", "failure 3"]
    assert event_log.read(limit=0) == []


def test_read_skips_malformed_lines(event_log: EventLog) -> None:
    event_log.log_merge_started(_mr("mr-1"), now=T0)
    with event_log.path.open("a", encoding="utf-8") as handle:
        handle.write("{truncated\n\n")
        handle.write('{"event_type": "exploded", "mr_id": "x", "timestamp": "2026-01-01T00:00:00Z"}\n')
    event_log.log_merged(_mr("mr-1"), "abc", now=T0)

    assert [event.event_type for event in event_log.read()] == ["merge_started", "merged"]


def test_read_missing_log_is_empty(event_log: EventLog) -> None:
    assert event_log.read() == []


def test_append_failure_raises_storage_error(event_log: EventLog) -> None:
    with patch("refinery.events.append_line_locked", side_effect=OSError("read-only")):
        with pytest.raises(StorageError, match="read-only"):
            event_log.log_merge_started(_mr("mr-1"))
