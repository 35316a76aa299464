from __future__ import annotations

import os
import signal
from pathlib import Path
from unittest.mock import patch

from refinery import paths, state
from refinery.models import CurrentMR, RefineryStatus
from tests.refinery.helpers import T0


def _running(worker_id: str, pid: int) -> RefineryStatus:
    return RefineryStatus(
        state="running",
        worker_id=worker_id,
        pid=pid,
        started_at=T0,
        current_mr=CurrentMR(id="mr-1", branch="a", target="main", started_at=T0),
    )


def test_status_round_trips_per_worker(tmp_path: Path) -> None:
    state.write_status(tmp_path, _running("refinery/1", os.getpid()))

    loaded = state.read_status(tmp_path, "refinery/1")

    assert paths.status_path(tmp_path, "refinery/1").name == "refinery-1.status.json"
    assert loaded is not None
    assert loaded.updated_at is not None
    assert loaded.current_mr is not None
    assert state.read_status(tmp_path, "refinery-9") is None


def test_malformed_status_is_ignored(tmp_path: Path) -> None:
    path = paths.status_path(tmp_path, "refinery-1")
    path.parent.mkdir(parents=True)
    path.write_text("{broken", encoding="utf-8")

    assert state.read_status(tmp_path, "refinery-1") is None
    assert state.list_statuses(tmp_path) == []


def test_effective_status_reports_dead_engine_as_stopped() -> None:
    with patch("refinery.state.pid_running", return_value=False):
        status = state.effective_status(_running("refinery-1", 4242))

    assert status.state == "stopped"
    assert status.current_mr is None
    assert status.pid is None


def test_effective_status_defaults_when_missing() -> None:
    status = state.effective_status(None, worker_id="refinery-3")
    assert (status.state, status.worker_id) == ("stopped", "refinery-3")


def test_list_statuses_sorted_by_worker(tmp_path: Path) -> None:
    state.write_status(tmp_path, _running("refinery-2", os.getpid()))
    state.write_status(tmp_path, _running("refinery-1", os.getpid()))

    assert [status.worker_id for status in state.list_statuses(tmp_path)] == [
        "refinery-1",
        "refinery-2",
    ]


def test_pause_and_resume_are_idempotent(tmp_path: Path) -> None:
    assert state.is_paused(tmp_path) is False
    assert state.pause(tmp_path) is True
    assert state.pause(tmp_path) is False
    assert state.is_paused(tmp_path) is True
    assert state.resume(tmp_path) is True
    assert state.resume(tmp_path) is False


def test_request_stop_signals_live_engine(tmp_path: Path) -> None:
    state.write_status(tmp_path, _running("refinery-1", 4242))

    with (
        patch("refinery.state.pid_running", return_value=True),
        patch("refinery.state.os.kill") as kill,
    ):
        assert state.request_stop(tmp_path, "refinery-1") == 4242

    kill.assert_called_once_with(4242, signal.SIGTERM)


def test_request_stop_without_engine_is_noop(tmp_path: Path) -> None:
    with patch("refinery.state.os.kill") as kill:
        assert state.request_stop(tmp_path, "refinery-1") is None
    kill.assert_not_called()
