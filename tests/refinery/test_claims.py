from __future__ import annotations

import datetime as dt
import multiprocessing
from pathlib import Path

import pytest

from refinery import claims, paths
from refinery.errors import AlreadyClaimedError, NotFoundError
from refinery.mrqueue import MergeQueue
from tests.refinery.helpers import T0, submit

LEASE = claims.LEASE_DURATION


@pytest.fixture
def queue(tmp_path: Path) -> MergeQueue:
    rig = tmp_path / "rig"
    paths.beads_dir(rig).mkdir(parents=True)
    return MergeQueue.for_rig(rig)


def test_lease_is_ten_minutes() -> None:
    assert LEASE == dt.timedelta(minutes=10)


def test_claim_sets_in_progress_and_records_worker(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")

    claimed = claims.claim(queue, mr.id, "w1", now=T0)

    assert claimed.status == "in_progress"
    assert claimed.claimed_by == "w1"
    assert claimed.claimed_at == T0
    assert queue.get(mr.id).claimed_by == "w1"


def test_second_worker_is_rejected_while_lease_is_valid(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")
    claims.claim(queue, mr.id, "w1", now=T0)

    with pytest.raises(AlreadyClaimedError) as excinfo:
        claims.claim(queue, mr.id, "w2", now=T0 + dt.timedelta(minutes=9))

    assert excinfo.value.claimed_by == "w1"
    assert excinfo.value.code == "already_claimed"
    assert queue.get(mr.id).claimed_by == "w1"


def test_reclaim_by_holder_is_idempotent_and_refreshes_lease(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")
    claims.claim(queue, mr.id, "w1", now=T0)

    later = T0 + dt.timedelta(minutes=5)
    again = claims.claim(queue, mr.id, "w1", now=later)

    assert again.claimed_by == "w1"
    assert again.claimed_at == later


def test_expired_claim_is_overwritten_by_new_worker(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")
    claims.claim(queue, mr.id, "w1", now=T0)

    taken = claims.claim(queue, mr.id, "w2", now=T0 + LEASE + dt.timedelta(seconds=1))

    assert taken.claimed_by == "w2"
    assert taken.status == "in_progress"


def test_claim_missing_mr_raises_not_found(queue: MergeQueue) -> None:
    with pytest.raises(NotFoundError):
        claims.claim(queue, "mr-absent", "w1", now=T0)


def test_claim_rejects_empty_worker(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")
    with pytest.raises(ValueError):
        claims.claim(queue, mr.id, "  ")


def test_release_clears_claim_regardless_of_holder(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")
    claims.claim(queue, mr.id, "w1", now=T0)

    released = claims.release(queue, mr.id)

    assert released.status == "open"
    assert released.claimed_by is None
    assert released.claimed_at is None
    assert released.error is None


def test_release_with_error_records_failure(queue: MergeQueue) -> None:
    mr = submit(queue, "work/a")
    claims.claim(queue, mr.id, "w1", now=T0)

    released = claims.release(queue, mr.id, error="conflict in a.txt", failed_head="abc")

    stored = queue.get(mr.id)
    assert released.error == stored.error == "conflict in a.txt"
    assert stored.failed_head == "abc"
    assert stored.needs_rework is True


def test_release_missing_mr_raises_not_found(queue: MergeQueue) -> None:
    with pytest.raises(NotFoundError):
        claims.release(queue, "mr-absent")


def test_list_unclaimed_excludes_active_claims_until_expiry(queue: MergeQueue) -> None:
    first = submit(queue, "a", priority=1)
    second = submit(queue, "b", priority=2)
    claims.claim(queue, first.id, "w1", now=T0)

    during = claims.list_unclaimed(queue, now=T0 + dt.timedelta(minutes=1))
    after = claims.list_unclaimed(queue, now=T0 + LEASE + dt.timedelta(seconds=1))

    assert [mr.id for mr in during] == [second.id]
    assert [mr.id for mr in after] == [first.id, second.id]


def test_list_unclaimed_skips_closed_records(queue: MergeQueue) -> None:
    mr = submit(queue, "a")
    closed = queue.get(mr.id)
    closed.status = "closed"
    closed.close_reason = "merged"
    queue.save(closed)

    assert claims.list_unclaimed(queue, now=T0) == []


def test_claims_lock_file_is_shared_and_kept(queue: MergeQueue) -> None:
    mr = submit(queue, "a")
    claims.claim(queue, mr.id, "w1", now=T0)
    claims.release(queue, mr.id)

    assert queue.claims_lock_path.exists()
    assert [item.id for item in queue.list()] == [mr.id]


def _claim_in_subprocess(directory: str, mr_id: str, worker: str, results: object) -> None:
    queue = MergeQueue(Path(directory))
    try:
        claims.claim(queue, mr_id, worker)
    except AlreadyClaimedError:
        results.put((worker, False))  # type: ignore[attr-defined]
    else:
        results.put((worker, True))  # type: ignore[attr-defined]


def test_concurrent_claims_from_processes_grant_one_winner(queue: MergeQueue) -> None:
    mr = submit(queue, "contended", created_at=dt.datetime.now(tz=dt.timezone.utc))
    context = multiprocessing.get_context("fork")
    results = context.Queue()
    workers = [
        context.Process(
            target=_claim_in_subprocess,
            args=(str(queue.directory), mr.id, f"w{index}", results),
        )
        for index in range(6)
    ]
    for process in workers:
        process.start()
    for process in workers:
        process.join(timeout=30)

    outcomes = [results.get(timeout=5) for _ in workers]
    winners = [worker for worker, won in outcomes if won]

    assert len(winners) == 1
    assert queue.get(mr.id).claimed_by == winners[0]
