"""Command-line entry point for ``next-fast`` / ``python -m nextfast``.

Usage::

    next-fast my-app
    next-fast my-app --no-ui --prisma --package-manager pnpm
    next-fast my-app --no-ui --no-tailwind --no-eslint
    next-fast my-app --dir ./apps/web --overwrite merge --skip-install
    next-fast --list-templates
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from nextfast import __version__
from nextfast.config import EngineConfig
from nextfast.engine import ScaffoldEngine
from nextfast.scaffolder.catalog import load_catalog
from nextfast.scaffolder.models import OverwritePolicy, PackageManager, ScaffoldRequest
from nextfast.scaffolder.plan import Outcome, ScaffoldResult
from nextfast.scaffolder.registry import RegistryError, TemplateRegistry
from nextfast.scaffolder.tooling import StepStatus
from nextfast.utils import (
    console,
    format_duration,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
)

# Boolean CLI flags and the feature descriptor each one selects.
FEATURE_FLAGS: dict[str, str] = {
    "tailwind": "tailwind",
    "eslint": "eslint",
    "ui": "shadcn",
    "highlighter": "shiki",
    "formatter": "prettier",
    "prisma": "prisma",
}

_STATUS_STYLES = {
    StepStatus.SUCCEEDED: "green",
    StepStatus.FAILED: "red",
    StepStatus.SKIPPED: "dim",
    StepStatus.CANCELLED: "yellow",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="next-fast",
        description="Scaffold a preconfigured Next.js project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  next-fast my-app\n"
            "  next-fast my-app --prisma --package-manager pnpm\n"
            "  next-fast my-app --dir ./apps/web --overwrite merge\n"
        ),
    )
    parser.add_argument("project_name", nargs="?", help="Name of the project to create")
    parser.add_argument(
        "--dir", dest="target_dir", default=None,
        help="Directory to create the project in (default: ./<project_name>)",
    )
    parser.add_argument("--framework", default="next", help="Framework template id (default: next)")
    parser.add_argument(
        "--tailwind", action=argparse.BooleanOptionalAction, default=True,
        help="Include Tailwind CSS (default: on; required by --ui)",
    )
    parser.add_argument(
        "--eslint", action=argparse.BooleanOptionalAction, default=True,
        help="Include ESLint with the Next.js presets (default: on)",
    )
    parser.add_argument(
        "--ui", action=argparse.BooleanOptionalAction, default=True,
        help="Include shadcn/ui component wiring (default: on)",
    )
    parser.add_argument(
        "--highlighter", action=argparse.BooleanOptionalAction, default=True,
        help="Include shiki syntax highlighting (default: on)",
    )
    parser.add_argument(
        "--formatter", action=argparse.BooleanOptionalAction, default=True,
        help="Include prettier, lint-staged and a husky pre-commit hook (default: on)",
    )
    parser.add_argument(
        "--prisma", action=argparse.BooleanOptionalAction, default=False,
        help="Include a Prisma SQLite database layer (default: off)",
    )
    parser.add_argument(
        "--package-manager", choices=[pm.value for pm in PackageManager], default=None,
        help="Package manager used for install and scripts (default: bun)",
    )
    parser.add_argument(
        "--overwrite", choices=[p.value for p in OverwritePolicy],
        default=OverwritePolicy.FAIL_IF_EXISTS.value,
        help="What to do when the target directory is not empty (default: fail)",
    )
    parser.add_argument("--skip-install", action="store_true", help="Do not install dependencies")
    parser.add_argument("--no-git", dest="git", action="store_false", help="Do not initialise git")
    parser.add_argument(
        "--list-templates", action="store_true", help="List the available templates and exit"
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print the final summary")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_request(args: argparse.Namespace, config: EngineConfig) -> ScaffoldRequest:
    """Turn parsed arguments into a validated request.

    Raises:
        pydantic.ValidationError: The project name or another field is invalid.
    """
    features = frozenset(
        feature for flag, feature in FEATURE_FLAGS.items() if getattr(args, flag)
    )
    package_manager = args.package_manager or config.default_package_manager
    return ScaffoldRequest(
        project_name=args.project_name,
        target_dir=Path(args.target_dir) if args.target_dir else None,
        framework=args.framework,
        features=features,
        package_manager=package_manager,
        overwrite=OverwritePolicy(args.overwrite),
        skip_install=args.skip_install,
        git=args.git,
    )


async def run(engine: ScaffoldEngine, request: ScaffoldRequest) -> ScaffoldResult:
    """Run *request*, turning SIGINT into a graceful cancellation of tooling."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        return await engine.scaffold(request, cancel_event)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def print_templates(registry: TemplateRegistry) -> None:
    table = Table(title="Templates", show_header=True, header_style="bold cyan")
    table.add_column("Id", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Version")
    table.add_column("Requires")
    table.add_column("Description")
    for descriptor in registry.frameworks() + registry.features():
        table.add_row(
            descriptor.id,
            descriptor.kind.value,
            descriptor.version,
            ", ".join(descriptor.requires) or "-",
            descriptor.description,
        )
    console.print(table)


def print_result(result: ScaffoldResult, request: ScaffoldRequest) -> None:
    """Render the final summary, step table, diagnostics and next steps."""
    console.print()
    print_summary_table(
        {
            "Outcome": result.outcome.value,
            "Project": str(result.project_root or request.project_root),
            "Templates": ", ".join(result.templates) or "-",
            "Files written": str(len(result.files_written)),
            "Duration": format_duration(result.duration_seconds),
        },
        title="Scaffold Summary",
    )

    if result.steps:
        table = Table(title="Tooling", show_header=True, header_style="bold cyan")
        table.add_column("Step", no_wrap=True)
        table.add_column("Command")
        table.add_column("Status")
        table.add_column("Exit")
        for step in result.steps:
            style = _STATUS_STYLES[step.status]
            table.add_row(
                step.step,
                escape(step.command),
                f"[{style}]{step.status.value}[/{style}]",
                "" if step.exit_code is None else str(step.exit_code),
            )
        console.print(table)
        console.print()

    if result.outcome is Outcome.FAILURE:
        kind = result.error.kind if result.error is not None else "error"
        print_error(f"Scaffold failed ({kind}): {escape(str(result.error))}")
        return

    for message in result.diagnostics:
        print_warning(escape(message))

    if result.outcome is Outcome.PARTIAL_FAILURE:
        print_warning("Project created, but some tooling steps failed. Re-run them by hand.")
    else:
        print_success("Project created successfully!")
    _print_next_steps(result, request)


def _print_next_steps(result: ScaffoldResult, request: ScaffoldRequest) -> None:
    pm = request.package_manager
    exec_prefix = " ".join(pm.exec_argv)
    root = result.project_root or request.project_root
    lines = [f"cd {root}"]
    if request.skip_install or any(
        s.step == "install" and s.status is not StepStatus.SUCCEEDED for s in result.steps
    ):
        lines.append(f"{pm.value} install")
    if "prisma" in request.features:
        lines.append(f"{exec_prefix} prisma db push")
    lines.append(f"{pm.run_command} dev")

    console.print("\n[bold bright_blue]Next steps:[/bold bright_blue]")
    for number, line in enumerate(lines, start=1):
        console.print(f"  {number}. [cyan]{line}[/cyan]")

    if "prisma" in request.features:
        console.print("\n[bold bright_blue]Prisma commands:[/bold bright_blue]")
        for label, command in (
            ("Push schema to database", "prisma db push"),
            ("Open Prisma Studio", "prisma studio"),
            ("Generate client", "prisma generate"),
            ("Create migration", "prisma migrate dev"),
        ):
            console.print(f"  - [yellow]{label}[/yellow]: [cyan]{exec_prefix} {command}[/cyan]")
    console.print()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point; exits with the scaffold result's exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig.from_env()
    except (ValueError, ValidationError) as exc:
        print_error(f"Invalid NEXTFAST_* environment configuration: {escape(str(exc))}")
        sys.exit(1)

    try:
        registry = load_catalog(config.template_dir)
    except RegistryError as exc:
        print_error(f"Cannot load template catalog: {escape(str(exc))}")
        sys.exit(1)

    if args.list_templates:
        print_templates(registry)
        sys.exit(0)

    if not args.project_name:
        parser.error("the following arguments are required: project_name")

    try:
        request = build_request(args, config)
    except ValidationError as exc:
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "request"
            print_error(f"Invalid {field}: {escape(error['msg'])}")
        sys.exit(1)

    engine = ScaffoldEngine(registry, config=config, quiet=args.quiet)
    result = asyncio.run(run(engine, request))
    print_result(result, request)
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
