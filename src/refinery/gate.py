"""Merge gates: pass/fail checks run on a staged merge before it is committed."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path

from . import exec, log
from .models import MergeQueueConfig, MergeRequest

_DETAIL_LIMIT = 2000


@dataclass(frozen=True)
class GateResult:
    """Verdict from a merge gate.

    ``misconfigured`` marks a gate that could not run at all; the branch was
    not judged.
    """

    passed: bool
    detail: str = ""
    attempts: int = 0
    misconfigured: bool = False


class PassGate:
    """Gate that accepts every merge."""

    def check(self, repo_dir: Path, mr: MergeRequest) -> GateResult:
        return GateResult(passed=True, detail="gate disabled")


@dataclass(frozen=True)
class CommandGate:
    """Run a test command in the working tree, retrying flaky failures.

    Attributes:
        command: Shell-style command line; split with ``shlex``.
        retries: Extra attempts after the first failure.
        timeout_seconds: Per-attempt timeout, or ``None`` for no limit.
    """

    command: str
    retries: int = 0
    timeout_seconds: float | None = None

    def check(self, repo_dir: Path, mr: MergeRequest) -> GateResult:
        try:
            argv = tuple(shlex.split(self.command))
        except ValueError as exc:
            return GateResult(
                passed=False, detail=f"invalid test command: {exc}", misconfigured=True
            )
        if not argv:
            return GateResult(passed=True, detail="no test command")
        request = exec.CommandRequest(
            argv=argv,
            cwd=repo_dir,
            capture_output=True,
            text=True,
            timeout_seconds=self.timeout_seconds,
        )
        detail = ""
        total = self.retries + 1
        for attempt in range(1, total + 1):
            result = exec.run_with_runner(request)
            if result is None:
                return GateResult(
                    passed=False,
                    detail=exec.missing_command_detail(request),
                    attempts=attempt,
                    misconfigured=True,
                )
            if result.returncode == 0:
                if attempt > 1:
                    log.warning(f"tests for {mr.id} passed on attempt {attempt}/{total}")
                return GateResult(passed=True, detail=result.output, attempts=attempt)
            detail = result.output[-_DETAIL_LIMIT:]
            if result.timed_out:
                detail = f"timed out after {self.timeout_seconds}s\n{detail}".strip()
            log.debug(f"tests for {mr.id} failed (attempt {attempt}/{total})")
        return GateResult(passed=False, detail=detail, attempts=total)


def gate_from_config(config: MergeQueueConfig) -> CommandGate | PassGate:
    """Return the gate configured by ``run_tests`` and ``test_command``.

    Example:
        >>> gate_from_config(MergeQueueConfig(test_command="pytest -q")).command
        'pytest -q'
        >>> type(gate_from_config(MergeQueueConfig(run_tests=False))).__name__
        'PassGate'
    """
    if not config.run_tests or not config.test_command:
        return PassGate()
    return CommandGate(command=config.test_command, retries=config.retry_flaky_tests)
