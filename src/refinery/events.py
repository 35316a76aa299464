"""Append-only merge lifecycle event log (``<rig>/.beads/mq_events.jsonl``)."""

from __future__ import annotations

import datetime as dt
from collections import deque
from pathlib import Path

from pydantic import ValidationError

from . import log, paths
from .errors import StorageError
from .fs import append_line_locked
from .models import EventRecord, EventType, MergeRequest, utc_now


class EventLog:
    """JSON-lines journal of ``merge_started``, ``merged`` and ``merge_failed`` events.

    Entries are only ever appended; each append is one locked write of one
    line so concurrent engines never interleave partial records.
    """

    def __init__(self, path: Path, *, worker_id: str = "") -> None:
        self.path = path
        self.worker_id = worker_id

    @classmethod
    def for_rig(cls, rig_root: Path, *, worker_id: str = "") -> EventLog:
        return cls(paths.events_path(rig_root), worker_id=worker_id)

    def append(self, record: EventRecord) -> EventRecord:
        """Write one event.

        Raises:
            StorageError: When the log cannot be written.
        """
        line = record.model_dump_json(exclude_none=True)
        try:
            append_line_locked(self.path, line)
        except OSError as exc:
            raise StorageError(f"appending to event log {self.path}: {exc}") from exc
        return record

    def _event(
        self,
        event_type: EventType,
        mr: MergeRequest,
        *,
        now: dt.datetime | None = None,
        merge_commit: str | None = None,
        error: str | None = None,
    ) -> EventRecord:
        return EventRecord(
            event_type=event_type,
            mr_id=mr.id,
            timestamp=now or utc_now(),
            branch=mr.branch or None,
            target=mr.target or None,
            worker=self.worker_id or None,
            merge_commit=merge_commit,
            error=error,
        )

    def log_merge_started(self, mr: MergeRequest, *, now: dt.datetime | None = None) -> EventRecord:
        return self.append(self._event("merge_started", mr, now=now))

    def log_merged(
        self, mr: MergeRequest, merge_commit: str, *, now: dt.datetime | None = None
    ) -> EventRecord:
        return self.append(self._event("merged", mr, now=now, merge_commit=merge_commit))

    def log_merge_failed(
        self, mr: MergeRequest, error: str, *, now: dt.datetime | None = None
    ) -> EventRecord:
        return self.append(self._event("merge_failed", mr, now=now, error=error))

    def read(self, *, limit: int | None = None, mr_id: str | None = None) -> list[EventRecord]:
        """Return events in append order, newest last.

        Args:
            limit: Keep only the most recent ``limit`` matching events.
            mr_id: Only return events for this MR.

        Malformed lines are skipped.
        """
        if limit is not None and limit <= 0:
            return []
        records: deque[EventRecord] = deque(maxlen=limit)
        try:
            handle = self.path.open("r", encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"reading event log {self.path}: {exc}") from exc
        with handle:
            for lineno, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    record = EventRecord.model_validate_json(line)
                except (ValueError, ValidationError):
                    log.trace(f"skipping malformed event at {self.path.name}:{lineno}")
                    continue
                if mr_id is not None and record.mr_id != mr_id:
                    continue
                records.append(record)
        return list(records)
