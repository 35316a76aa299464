"""External command execution for git, bd, and merge gate commands.

Every subprocess the refinery starts goes through ``run_with_runner`` so
tests can substitute a runner (or patch this one function) and so missing
executables and timeouts come back as values rather than exceptions.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

TIMEOUT_RETURNCODE = 124


@dataclass(frozen=True)
class CommandRequest:
    """One external command invocation."""

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    capture_output: bool = True
    text: bool = True
    timeout_seconds: float | None = None
    stdin: int | None = None

    @property
    def display(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a finished command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Stdout then stderr, each stripped, blank channels dropped."""
        return "\n".join(part.strip() for part in (self.stdout, self.stderr) if part.strip())


class CommandRunner(Protocol):
    def run(self, request: CommandRequest) -> CommandResult | None: ...


def _as_text(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class SubprocessCommandRunner:
    """Runner backed by ``subprocess.run``; returns ``None`` when argv[0] is missing."""

    extra_env: Mapping[str, str] = field(default_factory=dict)

    def run(self, request: CommandRequest) -> CommandResult | None:
        env = request.env
        if self.extra_env:
            env = {**(env or {}), **self.extra_env}
        try:
            completed = subprocess.run(
                list(request.argv),
                cwd=request.cwd,
                env=env,
                stdin=request.stdin,
                capture_output=request.capture_output,
                text=request.text,
                timeout=request.timeout_seconds,
                check=False,
            )
        except (FileNotFoundError, NotADirectoryError):
            return None
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                argv=request.argv,
                returncode=TIMEOUT_RETURNCODE,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                timed_out=True,
            )
        return CommandResult(
            argv=request.argv,
            returncode=completed.returncode,
            stdout=_as_text(completed.stdout),
            stderr=_as_text(completed.stderr),
        )


_default_runner: CommandRunner = SubprocessCommandRunner()


def run_with_runner(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult | None:
    """Run ``request`` and return its result, or ``None`` if the executable is missing."""
    return (runner or _default_runner).run(request)


def missing_command_detail(request: CommandRequest) -> str:
    if not request.argv:
        return "missing required command"
    return f"missing required command: {request.argv[0]}"


def command_failure_detail(request: CommandRequest, result: CommandResult) -> str:
    """Describe a failed command, preferring stderr over stdout."""
    output = (result.stderr or result.stdout).strip()
    headline = f"command failed: {request.display}"
    if result.timed_out:
        headline = f"command timed out: {request.display}"
    return f"{headline}\n{output}" if output else headline


@dataclass(frozen=True)
class CommandParseError(RuntimeError):
    """Command output could not be parsed into the expected shape."""

    argv: tuple[str, ...]
    detail: str

    def __str__(self) -> str:
        return self.detail


def parse_json_model_list(
    result: CommandResult, *, model_type: type[ModelT], context: str | None = None
) -> list[ModelT]:
    """Validate JSON stdout (one object or an array of objects) as ``model_type``.

    Raises:
        CommandParseError: On empty output, invalid JSON, a non-list payload,
            or an item that fails validation.
    """
    label = f" ({context})" if context else ""

    def fail(reason: str) -> CommandParseError:
        return CommandParseError(argv=result.argv, detail=f"unparseable output{label}: {reason}")

    raw = result.stdout.strip()
    if not raw:
        raise fail("empty output")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise fail(str(exc)) from exc
    items = [payload] if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise fail(f"expected an object or a list, got {type(payload).__name__}")
    parsed: list[ModelT] = []
    for index, item in enumerate(items):
        try:
            parsed.append(model_type.model_validate(item))
        except ValidationError as exc:
            raise fail(f"item {index}: {exc}") from exc
    return parsed
