from __future__ import annotations

import datetime as dt

import pytest
from pydantic import ValidationError

from refinery.models import (
    Claim,
    EventRecord,
    MergeQueueConfig,
    MergeRequest,
    parse_duration,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("30s", 30.0),
        ("1m30s", 90.0),
        ("2h", 7200.0),
        ("1.5s", 1.5),
        ("500ms", 0.5),
        ("0", 0.0),
        (15, 15.0),
    ],
)
def test_parse_duration(value: object, expected: float) -> None:
    assert parse_duration(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "30", "s", "1x", "-5s", "5s junk", True, None, -1])
def test_parse_duration_rejects_invalid(value: object) -> None:
    with pytest.raises(ValueError):
        parse_duration(value)


def test_naive_timestamps_are_taken_as_utc() -> None:
    mr = MergeRequest(branch="a", created_at=dt.datetime(2026, 1, 1, 9, 0))
    assert mr.created_at == dt.datetime(2026, 1, 1, 9, 0, tzinfo=dt.timezone.utc)


def test_strings_are_normalized() -> None:
    mr = MergeRequest(branch=" work/a ", target=" main ", agent_bead="  ", error="")
    assert mr.branch == "work/a"
    assert mr.target == "main"
    assert mr.agent_bead is None
    assert mr.error is None


def test_branch_is_required() -> None:
    with pytest.raises(ValidationError):
        MergeRequest.model_validate({"id": "mr-1"})


def test_claim_expiry_is_strictly_after_lease() -> None:
    start = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    claim = Claim(worker_id="w1", claimed_at=start)
    lease = dt.timedelta(minutes=10)

    assert claim.expired(start + lease, lease) is False
    assert claim.expired(start + lease + dt.timedelta(microseconds=1), lease) is True


def test_claim_property_requires_worker_and_time() -> None:
    start = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    assert MergeRequest(branch="a", claimed_by="w1").claim is None
    assert MergeRequest(branch="a", claimed_by="w1", claimed_at=start).claim == Claim(
        worker_id="w1", claimed_at=start
    )


def test_sort_key_puts_missing_created_at_first_within_priority() -> None:
    start = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    dated = MergeRequest(id="mr-b", branch="a", created_at=start)
    undated = MergeRequest(id="mr-a", branch="a")
    assert sorted([dated, undated], key=MergeRequest.sort_key) == [undated, dated]


def test_event_record_rejects_unknown_types() -> None:
    with pytest.raises(ValidationError):
        EventRecord.model_validate(
            {"event_type": "submitted", "mr_id": "mr-1", "timestamp": "2026-01-01T00:00:00Z"}
        )


def test_merge_queue_config_lease() -> None:
    assert MergeQueueConfig(lease_seconds=60).lease == dt.timedelta(minutes=1)
    with pytest.raises(ValidationError):
        MergeQueueConfig(lease_seconds=0)


def test_merge_queue_config_accepts_integration_branches() -> None:
    config = MergeQueueConfig.model_validate(
        {"integration_branches": False, "target_branch": "develop"}
    )

    assert config.integration_branches is False
    assert config.target_branch == "develop"
