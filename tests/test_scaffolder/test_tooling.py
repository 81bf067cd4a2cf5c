"""Unit tests for the tooling orchestrator (nextfast.scaffolder.tooling).

Tests cover:
- Sequential execution and per-step outcomes
- Non-critical failures continue, critical failures skip the rest
- depends_on skipping
- Cancellation via asyncio.Event
- AsyncProcessRunner with a mocked subprocess (success, missing binary, timeout)
- extract_diagnostics
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from nextfast.scaffolder.errors import ToolingStepFailure
from nextfast.scaffolder.tooling import (
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
    AsyncProcessRunner,
    ProcessOutcome,
    StepStatus,
    ToolingOrchestrator,
    ToolingStep,
    extract_diagnostics,
)

pytestmark = pytest.mark.unit

STEPS = (
    ToolingStep(name="install", argv=("bun", "install"), critical=True, timeout=900),
    ToolingStep(name="format", argv=("bunx", "prettier", "--write", "."), depends_on="install"),
    ToolingStep(name="git-init", argv=("git", "init")),
    ToolingStep(name="git-add", argv=("git", "add", "-A"), depends_on="git-init"),
)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_all_steps_succeed_in_order(self, fake_runner, tmp_path: Path):
        runner = fake_runner()
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path)
        assert [o.status for o in outcomes] == [StepStatus.SUCCEEDED] * 4
        assert runner.commands == [
            "bun install", "bunx prettier --write .", "git init", "git add -A",
        ]
        assert all(cwd == tmp_path for _, cwd, _ in runner.calls)

    @pytest.mark.asyncio
    async def test_step_timeout_overrides_default(self, fake_runner, tmp_path: Path):
        runner = fake_runner()
        await ToolingOrchestrator(runner, default_timeout=42, quiet=True).run(STEPS[:3], tmp_path)
        assert [timeout for _, _, timeout in runner.calls] == [900, 42, 42]

    @pytest.mark.asyncio
    async def test_non_critical_failure_continues(self, fake_runner, tmp_path: Path):
        runner = fake_runner({"bunx prettier": 2})
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path)
        statuses = {o.step: o.status for o in outcomes}
        assert statuses == {
            "install": StepStatus.SUCCEEDED,
            "format": StepStatus.FAILED,
            "git-init": StepStatus.SUCCEEDED,
            "git-add": StepStatus.SUCCEEDED,
        }
        failed = outcomes[1]
        assert failed.exit_code == 2
        assert failed.command == "bunx prettier --write ."
        assert "simulated failure" in failed.diagnostics
        assert failed.retry_hint.endswith("&& bunx prettier --write .")
        assert str(tmp_path) in failed.retry_hint
        assert isinstance(failed.error, ToolingStepFailure)
        assert failed.error.step == "format"

    @pytest.mark.asyncio
    async def test_critical_failure_skips_remaining(self, fake_runner, tmp_path: Path):
        runner = fake_runner({"bun install": 1})
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path)
        assert [o.status for o in outcomes] == [
            StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.SKIPPED, StepStatus.SKIPPED,
        ]
        assert runner.commands == ["bun install"]
        assert "install" in outcomes[2].diagnostics

    @pytest.mark.asyncio
    async def test_depends_on_failed_step_is_skipped(self, fake_runner, tmp_path: Path):
        runner = fake_runner({"git init": 128})
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path)
        assert outcomes[2].status is StepStatus.FAILED
        assert outcomes[3].status is StepStatus.SKIPPED
        assert "git-init" in outcomes[3].diagnostics
        assert "git add -A" not in runner.commands

    @pytest.mark.asyncio
    async def test_no_retries(self, fake_runner, tmp_path: Path):
        runner = fake_runner({"git init": 1})
        await ToolingOrchestrator(runner, quiet=True).run(STEPS[2:3], tmp_path)
        assert runner.commands == ["git init"]

    @pytest.mark.asyncio
    async def test_empty_plan(self, fake_runner, tmp_path: Path):
        assert await ToolingOrchestrator(fake_runner(), quiet=True).run([], tmp_path) == []

    @pytest.mark.asyncio
    async def test_reports_progress_when_not_quiet(self, fake_runner, tmp_path: Path):
        with patch("nextfast.scaffolder.tooling.console") as mock_console:
            await ToolingOrchestrator(fake_runner({"git init": 1})).run(STEPS[2:3], tmp_path)
        printed = " ".join(str(call.args[0]) for call in mock_console.print.call_args_list)
        assert "git-init" in printed
        assert "failed" in printed


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_kills_running_step_and_skips_rest(self, fake_runner, tmp_path: Path):
        runner = fake_runner(block=["bun install"])
        cancel = asyncio.Event()

        async def cancel_when_started() -> None:
            await runner.started.wait()
            cancel.set()

        canceller = asyncio.create_task(cancel_when_started())
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path, cancel)
        await canceller
        assert outcomes[0].status is StepStatus.CANCELLED
        assert all(o.status is StepStatus.SKIPPED for o in outcomes[1:])
        assert runner.commands == ["bun install"]

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, fake_runner, tmp_path: Path):
        runner = fake_runner()
        cancel = asyncio.Event()
        cancel.set()
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path, cancel)
        assert [o.status for o in outcomes] == [StepStatus.CANCELLED] + [StepStatus.SKIPPED] * 3
        assert outcomes[0].retry_hint.endswith("&& bun install")
        assert runner.commands == []

    @pytest.mark.asyncio
    async def test_cancel_between_steps(self, fake_runner, tmp_path: Path):
        runner = fake_runner()
        cancel = asyncio.Event()
        original_run = runner.run

        async def run_then_cancel(argv, cwd, timeout=None):
            outcome = await original_run(argv, cwd, timeout)
            cancel.set()
            return outcome

        runner.run = run_then_cancel
        outcomes = await ToolingOrchestrator(runner, quiet=True).run(STEPS, tmp_path, cancel)
        assert [o.status for o in outcomes] == [
            StepStatus.SUCCEEDED, StepStatus.CANCELLED, StepStatus.SKIPPED, StepStatus.SKIPPED,
        ]
        assert runner.commands == ["bun install"]

    @pytest.mark.asyncio
    async def test_cancel_kills_real_runner_process(self, mock_subprocess, tmp_path: Path):
        proc = mock_subprocess()
        proc.returncode = None
        communicating = asyncio.Event()

        async def never_finishes():
            communicating.set()
            await asyncio.Event().wait()

        proc.communicate = never_finishes
        cancel = asyncio.Event()

        async def cancel_when_running() -> None:
            await communicating.wait()
            cancel.set()

        with patch("asyncio.create_subprocess_exec", return_value=proc):
            canceller = asyncio.create_task(cancel_when_running())
            outcomes = await ToolingOrchestrator(quiet=True).run(STEPS[:1], tmp_path, cancel)
            await canceller
        assert outcomes[0].status is StepStatus.CANCELLED
        proc.kill.assert_called_once()
        proc.wait.assert_awaited()

    @pytest.mark.asyncio
    async def test_unset_event_does_not_interfere(self, fake_runner, tmp_path: Path):
        outcomes = await ToolingOrchestrator(fake_runner(), quiet=True).run(
            STEPS, tmp_path, asyncio.Event()
        )
        assert all(o.ok for o in outcomes)


# ---------------------------------------------------------------------------
# AsyncProcessRunner
# ---------------------------------------------------------------------------


class TestAsyncProcessRunner:
    @pytest.mark.asyncio
    async def test_success(self, mock_subprocess, tmp_path: Path):
        proc = mock_subprocess(stdout="done\n", returncode=0)
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            outcome = await AsyncProcessRunner().run(["bun", "install"], tmp_path, timeout=10)
        assert outcome.exit_code == 0
        assert outcome.stdout == "done"
        args, kwargs = mock_exec.call_args
        assert args == ("bun", "install")
        assert kwargs["cwd"] == str(tmp_path)

    @pytest.mark.asyncio
    async def test_failure_output_captured(self, mock_subprocess, tmp_path: Path):
        proc = mock_subprocess(stderr="error: lockfile broken", returncode=1)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            outcome = await AsyncProcessRunner().run(["bun", "install"], tmp_path)
        assert outcome.exit_code == 1
        assert outcome.stderr == "error: lockfile broken"

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path: Path):
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("bun")):
            outcome = await AsyncProcessRunner().run(["bun", "install"], tmp_path)
        assert outcome.exit_code == EXIT_NOT_FOUND
        assert "https://bun.sh" in outcome.stderr

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, mock_subprocess, tmp_path: Path):
        proc = mock_subprocess()
        proc.returncode = None
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            outcome = await AsyncProcessRunner().run(["bun", "install"], tmp_path, timeout=1)
        assert outcome.exit_code == EXIT_TIMEOUT
        assert "timed out" in outcome.stderr
        proc.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_binary_through_orchestrator(self, tmp_path: Path):
        step = ToolingStep(name="install", argv=("pnpm", "install"), critical=True)
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("pnpm")):
            outcomes = await ToolingOrchestrator(quiet=True).run([step], tmp_path)
        assert outcomes[0].status is StepStatus.FAILED
        assert outcomes[0].exit_code == EXIT_NOT_FOUND
        assert "pnpm.io" in outcomes[0].diagnostics


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class TestDiagnostics:
    def test_prefers_stderr(self):
        assert extract_diagnostics(ProcessOutcome(1, stdout="out", stderr="err")) == "err"

    def test_falls_back_to_stdout(self):
        assert extract_diagnostics(ProcessOutcome(1, stdout="npm ERR! 404")) == "npm ERR! 404"

    def test_keeps_tail_without_blank_lines(self):
        stderr = "\n".join(f"line {i}\n" for i in range(30))
        tail = extract_diagnostics(ProcessOutcome(1, stderr=stderr), limit=3)
        assert tail == "line 27\nline 28\nline 29"

    def test_no_output(self):
        assert "no output" in extract_diagnostics(ProcessOutcome(3))

    def test_command_quoting(self):
        step = ToolingStep(name="commit", argv=("git", "commit", "-m", "Initial commit"))
        assert step.command == "git commit -m 'Initial commit'"
