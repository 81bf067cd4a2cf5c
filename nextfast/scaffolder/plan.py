"""Plan and result types exchanged between the engine and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from .errors import ScaffoldError
from .models import ResolvedFileSet
from .tooling import StepOutcome, StepStatus, ToolingStep


class Outcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"

    @property
    def exit_code(self) -> int:
        # 2 is left to argparse usage errors
        return {"success": 0, "failure": 1, "partial_failure": 3}[self.value]


@dataclass(frozen=True)
class ScaffoldPlan:
    """Everything needed to create one project, computed before any write."""

    files: ResolvedFileSet
    steps: tuple[ToolingStep, ...] = ()
    bindings: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    templates: tuple[str, ...] = ()


@dataclass
class ScaffoldResult:
    """Outcome of one scaffold invocation, ready to be rendered by the CLI."""

    outcome: Outcome
    project_root: Path | None = None
    steps: list[StepOutcome] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    error: ScaffoldError | None = None
    files_written: list[str] = field(default_factory=list)
    templates: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [
            s for s in self.steps if s.status in (StepStatus.FAILED, StepStatus.CANCELLED)
        ]

    def summary(self) -> str:
        """Return a human-readable summary of the result."""
        status = {
            Outcome.SUCCESS: "[green]SUCCESS[/green]",
            Outcome.PARTIAL_FAILURE: "[yellow]PARTIAL FAILURE[/yellow]",
            Outcome.FAILURE: "[red]FAILURE[/red]",
        }[self.outcome]
        lines = [f"Status: {status}"]
        if self.project_root is not None:
            lines.append(f"Project: {self.project_root}")
        lines.append(f"Files written: {len(self.files_written)}")
        if self.steps:
            done = sum(1 for s in self.steps if s.ok)
            lines.append(f"Tooling steps: {done}/{len(self.steps)} succeeded")
        if self.error is not None:
            lines.append(f"Error ({self.error.kind}): {self.error}")
        for message in self.diagnostics[:5]:
            lines.append(f"  - {message[:200]}")
        return "\n".join(lines)
