"""next-fast scaffold engine.

Drives one scaffold invocation through its stages:

1. RESOLVE     -- framework + feature ids to ordered template descriptors.
2. MERGE       -- descriptor fragments to a single resolved file set.
3. SUBSTITUTE  -- project variables rendered into paths, contents and argv.
4. MATERIALIZE -- the file set written to the target directory.
5. TOOLING     -- install, template steps and git run inside the project.

Stages 1-3 form the plan and touch nothing on disk.  Any ``ScaffoldError``
raised up to and including materialization yields a ``FAILURE`` result with
no project left behind; failed tooling yields ``PARTIAL_FAILURE`` with the
project intact.
"""

from __future__ import annotations

import asyncio
import time
from types import MappingProxyType

from rich.markup import escape

from nextfast.config import EngineConfig
from nextfast.scaffolder.errors import ScaffoldError
from nextfast.scaffolder.materializer import Materializer
from nextfast.scaffolder.merger import merge
from nextfast.scaffolder.models import ScaffoldRequest, TemplateDescriptor
from nextfast.scaffolder.plan import Outcome, ScaffoldPlan, ScaffoldResult
from nextfast.scaffolder.registry import TemplateRegistry
from nextfast.scaffolder.substitution import Substituter, derive_bindings
from nextfast.scaffolder.tooling import (
    ProcessRunner,
    StepOutcome,
    StepStatus,
    ToolingOrchestrator,
    ToolingStep,
)
from nextfast.utils import console, format_duration, print_banner, print_error, print_stage

INITIAL_COMMIT_MESSAGE = "Initial commit from next-fast"


class ScaffoldEngine:
    """Plans and executes scaffold requests against one template registry.

    Attributes:
        registry: Template catalog, loaded once by the caller.
        config: Engine-wide settings (timeouts, write parallelism, git).
        materializer: Writes the planned file set to disk.
        orchestrator: Runs the planned tooling steps.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        config: EngineConfig | None = None,
        runner: ProcessRunner | None = None,
        materializer: Materializer | None = None,
        quiet: bool = False,
    ) -> None:
        self.registry = registry
        self.config = config or EngineConfig()
        self.quiet = quiet
        self.substituter = Substituter()
        self.materializer = materializer or Materializer(self.config.max_write_workers)
        self.orchestrator = ToolingOrchestrator(
            runner=runner, default_timeout=self.config.step_timeout, quiet=quiet
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, request: ScaffoldRequest) -> ScaffoldPlan:
        """Compute the complete scaffold plan without touching the filesystem.

        Raises:
            UnknownTemplate, UnsatisfiedDependency: Resolution failed.
            MergeConflict: Fragments could not be combined.
            MissingVariable, TemplateRenderError, InvalidTemplatePath:
                Substitution failed.
        """
        descriptors = self.registry.resolve(request.framework, sorted(request.features))
        merged = merge(descriptors)
        bindings = derive_bindings(request)
        files = self.substituter.substitute(merged, bindings)
        steps = self._build_steps(request, descriptors, bindings)
        return ScaffoldPlan(
            files=files,
            steps=tuple(steps),
            bindings=MappingProxyType(bindings),
            templates=tuple(d.id for d in descriptors),
        )

    def _build_steps(
        self,
        request: ScaffoldRequest,
        descriptors: list[TemplateDescriptor],
        bindings: dict[str, str],
    ) -> list[ToolingStep]:
        pm = request.package_manager
        steps: list[ToolingStep] = []

        if not request.skip_install:
            steps.append(
                ToolingStep(
                    name="install",
                    argv=(pm.value, "install"),
                    critical=True,
                    timeout=self.config.install_timeout,
                )
            )

        for descriptor in descriptors:
            for template in descriptor.steps:
                # Package binaries only exist after install.
                if template.exec_local and request.skip_install:
                    continue
                argv = self.substituter.substitute_argv(
                    template.argv, bindings, where=f"{descriptor.id}:{template.name}"
                )
                if template.exec_local:
                    argv = pm.exec_argv + argv
                steps.append(
                    ToolingStep(
                        name=template.name,
                        argv=argv,
                        critical=template.critical,
                        depends_on="install" if template.exec_local else None,
                    )
                )

        if request.git:
            steps.append(ToolingStep(name="git-init", argv=("git", "init")))
            steps.append(
                ToolingStep(name="git-add", argv=("git", "add", "-A"), depends_on="git-init")
            )
            if self.config.git_initial_commit:
                steps.append(
                    ToolingStep(
                        name="git-commit",
                        argv=("git", "commit", "--no-verify", "-m", INITIAL_COMMIT_MESSAGE),
                        depends_on="git-add",
                    )
                )
        return steps

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def scaffold(
        self, request: ScaffoldRequest, cancel_event: asyncio.Event | None = None
    ) -> ScaffoldResult:
        """Run a full scaffold and return its structured result.

        Args:
            request: The validated request.
            cancel_event: Set by the caller (e.g. on SIGINT) to stop tooling;
                the running command is killed and later steps are skipped.
        """
        start = time.monotonic()
        if not self.quiet:
            print_banner(
                "next-fast",
                f"Project   : {request.project_name}\n"
                f"Directory : {request.project_root}\n"
                f"Framework : {request.framework}\n"
                f"Features  : {', '.join(sorted(request.features)) or '(none)'}",
            )

        try:
            self._stage("Resolving templates and rendering files")
            plan = self.plan(request)
        except ScaffoldError as exc:
            return self._failure(exc, start)

        try:
            self._stage(f"Writing {len(plan.files)} files to {request.project_root}")
            root = await self.materializer.materialize(
                plan.files, request.project_root, request.overwrite
            )
        except ScaffoldError as exc:
            return self._failure(exc, start, templates=list(plan.templates))

        outcomes: list[StepOutcome] = []
        if plan.steps:
            self._stage(f"Running {len(plan.steps)} tooling steps")
            outcomes = await self.orchestrator.run(plan.steps, root, cancel_event)

        failed = [o for o in outcomes if o.status in (StepStatus.FAILED, StepStatus.CANCELLED)]
        diagnostics = [
            f"{o.step} {o.status.value}: {o.diagnostics}\n  retry with: {o.retry_hint}"
            for o in failed
        ]
        duration = time.monotonic() - start
        if not self.quiet:
            console.print(f"  [dim]Finished in {format_duration(duration)}[/dim]")

        return ScaffoldResult(
            outcome=Outcome.PARTIAL_FAILURE if failed else Outcome.SUCCESS,
            project_root=root,
            steps=outcomes,
            diagnostics=diagnostics,
            error=next((o.error for o in failed if o.error is not None), None),
            files_written=list(plan.files),
            templates=list(plan.templates),
            duration_seconds=duration,
        )

    def _failure(
        self, exc: ScaffoldError, start: float, templates: list[str] | None = None
    ) -> ScaffoldResult:
        if not self.quiet:
            print_error(f"  {exc.kind}: {escape(str(exc))}")
        return ScaffoldResult(
            outcome=Outcome.FAILURE,
            diagnostics=[str(exc)],
            error=exc,
            templates=templates or [],
            duration_seconds=time.monotonic() - start,
        )

    def _stage(self, message: str) -> None:
        if not self.quiet:
            print_stage(message)
