"""Post-materialization tooling: dependency install, git init, formatters.

Steps run one after another in the project directory.  A failing step is
recorded and the run moves on, unless the step is *critical*, in which case
every remaining step is skipped.  Nothing is retried; each outcome carries
the command and a hint for re-running it by hand.

Processes are started through a ``ProcessRunner`` so the orchestrator can be
driven by a fake runner in tests.
"""

from __future__ import annotations

import asyncio
import shlex
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.markup import escape

from .errors import ToolingStepFailure

console = Console()

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = -1
DIAGNOSTIC_LINES = 20

_INSTALL_HINTS: dict[str, str] = {
    "bun": "Install bun from https://bun.sh",
    "bunx": "Install bun from https://bun.sh",
    "npm": "Install Node.js from https://nodejs.org",
    "npx": "Install Node.js from https://nodejs.org",
    "pnpm": "Install pnpm from https://pnpm.io/installation",
    "yarn": "Install yarn from https://yarnpkg.com/getting-started/install",
    "git": "Install git from https://git-scm.com/downloads",
}


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ToolingStep:
    """One external command to run after the project files exist."""

    name: str
    argv: tuple[str, ...]
    critical: bool = False
    depends_on: str | None = None
    timeout: float | None = None

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


@dataclass
class ProcessOutcome:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0


@dataclass
class StepOutcome:
    """Structured record of what happened to one step."""

    step: str
    command: str
    status: StepStatus
    exit_code: int | None = None
    diagnostics: str = ""
    retry_hint: str = ""
    duration_seconds: float = 0.0
    error: ToolingStepFailure | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


class ProcessRunner(Protocol):
    """Capability to run one external command and capture its outcome."""

    async def run(
        self, argv: Sequence[str], cwd: Path, timeout: float | None = None
    ) -> ProcessOutcome: ...


# ---------------------------------------------------------------------------
# Real process runner
# ---------------------------------------------------------------------------


class AsyncProcessRunner:
    """Runs commands with ``asyncio.create_subprocess_exec``.

    A missing executable is reported as exit status 127 with an install hint
    instead of an exception.  A timeout kills the process and reports -1.
    Cancelling the awaiting task kills the process before the cancellation
    propagates.
    """

    async def run(
        self, argv: Sequence[str], cwd: Path, timeout: float | None = None
    ) -> ProcessOutcome:
        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )
        except FileNotFoundError:
            hint = _INSTALL_HINTS.get(argv[0], "Check that it is installed and in PATH")
            return ProcessOutcome(
                exit_code=EXIT_NOT_FOUND,
                stderr=f"'{argv[0]}' is not installed or not in PATH. {hint}.",
                duration_seconds=time.monotonic() - start,
            )
        except PermissionError:
            return ProcessOutcome(
                exit_code=EXIT_NOT_FOUND,
                stderr=f"Permission denied executing '{argv[0]}'. Check file permissions.",
                duration_seconds=time.monotonic() - start,
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            await _kill(process)
            return ProcessOutcome(
                exit_code=EXIT_TIMEOUT,
                stderr=f"Command timed out after {timeout}s: {shlex.join(argv)}",
                duration_seconds=time.monotonic() - start,
            )
        except asyncio.CancelledError:
            await _kill(process)
            raise

        return ProcessOutcome(
            exit_code=process.returncode if process.returncode is not None else EXIT_TIMEOUT,
            stdout=(stdout_bytes or b"").decode("utf-8", errors="replace").strip(),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace").strip(),
            duration_seconds=time.monotonic() - start,
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ToolingOrchestrator:
    """Runs tooling steps in order with independent failure handling."""

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        default_timeout: float | None = 300.0,
        quiet: bool = False,
    ) -> None:
        self.runner = runner or AsyncProcessRunner()
        self.default_timeout = default_timeout
        self.quiet = quiet

    async def run(
        self,
        steps: Sequence[ToolingStep],
        cwd: str | Path,
        cancel_event: asyncio.Event | None = None,
    ) -> list[StepOutcome]:
        """Run *steps* in *cwd* and return one outcome per step, in order.

        Args:
            steps: Steps to execute, in order.
            cwd: Working directory (the created project root).
            cancel_event: When set, the in-flight process is killed, its step
                is marked cancelled and every later step skipped.
        """
        workdir = Path(cwd)
        outcomes: list[StepOutcome] = []
        status_by_name: dict[str, StepStatus] = {}
        halted_by: str | None = None
        cancelled = False

        for step in steps:
            if cancelled:
                outcome = _skipped(step, "cancelled before this step started")
            elif halted_by is not None:
                outcome = _skipped(step, f"critical step '{halted_by}' failed")
            elif cancel_event is not None and cancel_event.is_set():
                # The first step that never ran because of the cancel carries it.
                cancelled = True
                outcome = StepOutcome(
                    step=step.name,
                    command=step.command,
                    status=StepStatus.CANCELLED,
                    diagnostics="cancelled before this step started",
                    retry_hint=f"cd {shlex.quote(str(workdir))} && {step.command}",
                )
            elif step.depends_on and status_by_name.get(step.depends_on) is not StepStatus.SUCCEEDED:
                outcome = _skipped(step, f"step '{step.depends_on}' did not succeed")
            else:
                outcome = await self._run_step(step, workdir, cancel_event)
                if outcome.status is StepStatus.CANCELLED:
                    cancelled = True
                elif outcome.status is StepStatus.FAILED and step.critical:
                    halted_by = step.name

            status_by_name[step.name] = outcome.status
            outcomes.append(outcome)
            self._report(outcome)

        return outcomes

    async def _run_step(
        self, step: ToolingStep, cwd: Path, cancel_event: asyncio.Event | None
    ) -> StepOutcome:
        retry_hint = f"cd {shlex.quote(str(cwd))} && {step.command}"
        timeout = step.timeout if step.timeout is not None else self.default_timeout
        if not self.quiet:
            console.print(f"  [cyan]>[/cyan] {step.name}: [dim]{escape(step.command)}[/dim]")

        start = time.monotonic()
        run_task = asyncio.ensure_future(self.runner.run(step.argv, cwd, timeout))
        try:
            if cancel_event is None:
                process = await run_task
            else:
                cancel_wait = asyncio.ensure_future(cancel_event.wait())
                try:
                    await asyncio.wait(
                        {run_task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    cancel_wait.cancel()
                if not run_task.done():
                    run_task.cancel()
                    try:
                        await run_task
                    except asyncio.CancelledError:
                        pass
                    return StepOutcome(
                        step=step.name,
                        command=step.command,
                        status=StepStatus.CANCELLED,
                        diagnostics="cancelled while running; the process was terminated",
                        retry_hint=retry_hint,
                        duration_seconds=time.monotonic() - start,
                    )
                process = run_task.result()
        except asyncio.CancelledError:
            run_task.cancel()
            raise

        try:
            _check(step, process)
        except ToolingStepFailure as failure:
            return StepOutcome(
                step=step.name,
                command=step.command,
                status=StepStatus.FAILED,
                exit_code=process.exit_code,
                diagnostics=failure.diagnostics,
                retry_hint=retry_hint,
                duration_seconds=process.duration_seconds,
                error=failure,
            )
        return StepOutcome(
            step=step.name,
            command=step.command,
            status=StepStatus.SUCCEEDED,
            exit_code=process.exit_code,
            duration_seconds=process.duration_seconds,
        )

    def _report(self, outcome: StepOutcome) -> None:
        if self.quiet:
            return
        if outcome.status is StepStatus.SUCCEEDED:
            console.print(f"    [green]{outcome.step} done[/green] ({outcome.duration_seconds:.1f}s)")
        elif outcome.status is StepStatus.FAILED:
            console.print(f"    [red]{outcome.step} failed (exit {outcome.exit_code})[/red]")
            for line in outcome.diagnostics.splitlines()[-5:]:
                console.print(f"      [dim]{escape(line)}[/dim]")
        else:
            console.print(f"    [yellow]{outcome.step} {outcome.status.value}[/yellow]: {escape(outcome.diagnostics)}")


def _check(step: ToolingStep, process: ProcessOutcome) -> None:
    if process.exit_code != 0:
        raise ToolingStepFailure(step.name, process.exit_code, extract_diagnostics(process))


def _skipped(step: ToolingStep, reason: str) -> StepOutcome:
    return StepOutcome(
        step=step.name,
        command=step.command,
        status=StepStatus.SKIPPED,
        diagnostics=reason,
    )


def extract_diagnostics(process: ProcessOutcome, limit: int = DIAGNOSTIC_LINES) -> str:
    """Return the tail of the process output that best explains a failure.

    Package managers often report errors on stdout, so stdout is used when
    stderr is empty.
    """
    text = process.stderr.strip() or process.stdout.strip()
    if not text:
        return f"exited with status {process.exit_code} and no output"
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines[-limit:])
