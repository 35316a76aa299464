# ruff: noqa: E402

import builtins
import sys
from pathlib import Path

import pytest
from _pytest.doctest import DoctestModule

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import refinery.log as refinery_log

DOCTEST_MODULES = {
    ROOT / "src" / "refinery" / "__init__.py",
    ROOT / "src" / "refinery" / "beads.py",
    ROOT / "src" / "refinery" / "config.py",
    ROOT / "src" / "refinery" / "gate.py",
    ROOT / "src" / "refinery" / "git.py",
    ROOT / "src" / "refinery" / "io.py",
    ROOT / "src" / "refinery" / "log.py",
    ROOT / "src" / "refinery" / "models.py",
    ROOT / "src" / "refinery" / "mrqueue.py",
    ROOT / "src" / "refinery" / "paths.py",
    ROOT / "src" / "refinery" / "queue_view.py",
}


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "REFINERY_WORKER",
        "REFINERY_POLL_INTERVAL",
        "REFINERY_TARGET_BRANCH",
        "REFINERY_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setattr(
        "refinery.paths.installed_config_path",
        lambda: tmp_path / "installed" / "config.user.json",
    )
    monkeypatch.setattr(refinery_log, "_configured_level", None)
    monkeypatch.setattr(refinery_log, "_no_color_override", None)

    def fail_input(prompt: str = "") -> str:
        raise AssertionError("prompted unexpectedly")

    monkeypatch.setattr(builtins, "input", fail_input)


def pytest_collect_file(
    parent: pytest.Collector, file_path: Path
) -> DoctestModule | None:
    path = file_path if isinstance(file_path, Path) else Path(str(file_path))
    if path in DOCTEST_MODULES:
        return DoctestModule.from_parent(parent, path=path)
    return None
