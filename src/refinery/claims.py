"""Lease-based claiming of merge requests.

A claim is a pure data transition on the MR record: the read-check-write
runs under an exclusive ``flock`` on the queue's claims lock file and the new
state lands through one atomic file replace, so separate processes sharing
the queue directory never both hold a valid claim on the same MR. Expiry is
evaluated lazily against local wall time; there is no background reaper.
"""

from __future__ import annotations

import datetime as dt

from . import log
from .errors import AlreadyClaimedError, StorageError
from .fs import exclusive_lock
from .models import DEFAULT_LEASE_SECONDS, MergeRequest, utc_now
from .mrqueue import MergeQueue

LEASE_DURATION = dt.timedelta(seconds=DEFAULT_LEASE_SECONDS)


def claim_active(
    mr: MergeRequest,
    *,
    now: dt.datetime | None = None,
    lease: dt.timedelta = LEASE_DURATION,
) -> bool:
    """Return whether ``mr`` carries an unexpired claim."""
    current = mr.claim
    if current is None:
        return False
    return not current.expired(now or utc_now(), lease)


def claim(
    queue: MergeQueue,
    mr_id: str,
    worker_id: str,
    *,
    now: dt.datetime | None = None,
    lease: dt.timedelta = LEASE_DURATION,
) -> MergeRequest:
    """Claim an MR for ``worker_id``.

    Re-claiming by the current holder refreshes the lease. An expired claim
    by any worker is overwritten.

    Args:
        queue: Store holding the MR.
        mr_id: MR to claim.
        worker_id: Claiming worker identity.
        now: Clock override.
        lease: Lease duration.

    Returns:
        The claimed record (``status=in_progress``).

    Raises:
        NotFoundError: When the MR does not exist.
        AlreadyClaimedError: When another worker holds an unexpired claim.
        StorageError: When the record cannot be read or written.
    """
    worker = worker_id.strip()
    if not worker:
        raise ValueError("worker_id must not be empty")
    timestamp = now or utc_now()
    queue.ensure_dir()
    try:
        with exclusive_lock(queue.claims_lock_path):
            mr = queue.get(mr_id)
            current = mr.claim
            if (
                current is not None
                and current.worker_id != worker
                and not current.expired(timestamp, lease)
            ):
                raise AlreadyClaimedError(mr_id, current.worker_id)
            if current is not None and current.worker_id != worker:
                log.debug(f"overwriting expired claim on {mr_id} held by {current.worker_id}")
            mr.claimed_by = worker
            mr.claimed_at = timestamp
            mr.status = "in_progress"
            queue.save(mr)
    except OSError as exc:
        raise StorageError(f"locking claims for {mr_id}: {exc}") from exc
    return mr


def release(
    queue: MergeQueue,
    mr_id: str,
    *,
    error: str | None = None,
    failed_head: str | None = None,
    failed_at: dt.datetime | None = None,
) -> MergeRequest:
    """Clear the claim on an MR and return it to ``status=open``.

    Release is advisory cleanup and does not check which worker holds the
    claim. ``error``, ``failed_head`` and ``failed_at`` record the failure
    that caused the release; when ``error`` is omitted the previous failure
    is kept.

    Raises:
        NotFoundError: When the MR does not exist.
        StorageError: When the record cannot be read or written.
    """
    queue.ensure_dir()
    try:
        with exclusive_lock(queue.claims_lock_path):
            mr = queue.get(mr_id)
            mr.claimed_by = None
            mr.claimed_at = None
            mr.status = "open"
            if error is not None:
                mr.error = error
                mr.failed_head = failed_head
                mr.failed_at = failed_at
            queue.save(mr)
    except OSError as exc:
        raise StorageError(f"locking claims for {mr_id}: {exc}") from exc
    return mr


def list_unclaimed(
    queue: MergeQueue,
    *,
    now: dt.datetime | None = None,
    lease: dt.timedelta = LEASE_DURATION,
) -> list[MergeRequest]:
    """Return open MRs without an unexpired claim, in queue order."""
    timestamp = now or utc_now()
    return [
        mr
        for mr in queue.list()
        if mr.status != "closed" and not claim_active(mr, now=timestamp, lease=lease)
    ]
