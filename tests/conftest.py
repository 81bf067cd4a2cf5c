"""Shared pytest fixtures for the next-fast test suite.

Provides reusable fixtures for:
- Small in-memory template registries
- A fake ``ProcessRunner`` that records commands instead of running them
- Mock subprocess helpers for ``AsyncProcessRunner``
- Scaffold requests pointing into ``tmp_path``
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from nextfast.scaffolder.models import (
    FileFragment,
    MergeStrategy,
    ScaffoldRequest,
    StepTemplate,
    TemplateDescriptor,
    TemplateKind,
)
from nextfast.scaffolder.registry import TemplateRegistry
from nextfast.scaffolder.tooling import ProcessOutcome


# ---------------------------------------------------------------------------
# Fake process runner
# ---------------------------------------------------------------------------


class FakeRunner:
    """Records every command and answers with scripted outcomes.

    ``results`` maps a command prefix (joined argv, e.g. ``"bun install"``)
    to an exit code or a full ``ProcessOutcome``.  Unscripted commands
    succeed.  Commands listed in ``block`` never finish on their own, which
    lets tests exercise cancellation.
    """

    def __init__(
        self,
        results: dict[str, int | ProcessOutcome] | None = None,
        block: Sequence[str] = (),
    ) -> None:
        self.results = results or {}
        self.block = set(block)
        self.calls: list[tuple[tuple[str, ...], Path, float | None]] = []
        self.started = asyncio.Event()

    async def run(
        self, argv: Sequence[str], cwd: Path, timeout: float | None = None
    ) -> ProcessOutcome:
        argv = tuple(argv)
        self.calls.append((argv, Path(cwd), timeout))
        command = " ".join(argv)
        if any(command.startswith(prefix) for prefix in self.block):
            self.started.set()
            await asyncio.Event().wait()
        for prefix, result in self.results.items():
            if command.startswith(prefix):
                if isinstance(result, ProcessOutcome):
                    return result
                stderr = f"{argv[0]}: simulated failure" if result else ""
                return ProcessOutcome(exit_code=result, stderr=stderr, duration_seconds=0.01)
        return ProcessOutcome(exit_code=0, stdout="ok", duration_seconds=0.01)

    @property
    def commands(self) -> list[str]:
        return [" ".join(argv) for argv, _, _ in self.calls]


@pytest.fixture
def fake_runner():
    """Factory for ``FakeRunner`` instances.

    Usage:
        def test_install(fake_runner):
            runner = fake_runner({"bun install": 1})
    """
    def factory(
        results: dict[str, Any] | None = None, block: Sequence[str] = ()
    ) -> FakeRunner:
        return FakeRunner(results, block)

    return factory


@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


# ---------------------------------------------------------------------------
# Descriptors & registries
# ---------------------------------------------------------------------------


def _framework(id: str = "web", *fragments: FileFragment, **kwargs: Any) -> TemplateDescriptor:
    return TemplateDescriptor(
        id=id, kind=TemplateKind.FRAMEWORK, fragments=tuple(fragments), **kwargs
    )


def _feature(id: str, *fragments: FileFragment, requires: Sequence[str] = ("web",),
            **kwargs: Any) -> TemplateDescriptor:
    return TemplateDescriptor(
        id=id,
        kind=TemplateKind.FEATURE,
        requires=tuple(requires),
        fragments=tuple(fragments),
        **kwargs,
    )


@pytest.fixture
def web_registry() -> TemplateRegistry:
    """A framework with a base lint config plus UI, formatter and theme features."""
    return TemplateRegistry([
        _framework(
            "web",
            FileFragment.structured(
                "package.json",
                {"name": "{= project_slug =}", "scripts": {"dev": "web dev"}},
            ),
            FileFragment.structured(
                ".eslintrc.json",
                {"extends": ["web/recommended"], "rules": {"no-console": "warn"}},
            ),
            FileFragment.text(".gitignore", "node_modules\n.env\n",
                              strategy=MergeStrategy.APPEND_LIST),
            FileFragment.text("README.md", "# {= project_title =}\n"),
            FileFragment.text("src/index.tsx", "export const Root = () => <div style={{ margin: 0 }} />;\n"),
        ),
        _feature(
            "ui",
            FileFragment.structured(".eslintrc.json", {"rules": {"ui/no-inline-styles": "error"}}),
            FileFragment.structured("package.json", {"dependencies": {"ui-kit": "^1.0.0"}}),
            FileFragment.text("src/components/button.tsx", "export const Button = () => null;\n"),
        ),
        _feature(
            "formatter",
            FileFragment.structured(
                ".eslintrc.json", {"extends": ["formatter"]}, strategy=MergeStrategy.APPEND_LIST
            ),
            FileFragment.text(".gitignore", ".env\n.cache\n", strategy=MergeStrategy.APPEND_LIST),
            FileFragment.text(".hooks/pre-commit", "#!/bin/sh\n{= package_manager_exec =} fmt\n",
                              executable=True),
            steps=(StepTemplate(name="format", argv=("fmt", "--write", "."), exec_local=True),),
        ),
        _feature(
            "theme-light",
            FileFragment.structured("config/theme.json", {"mode": "light"},
                                    strategy=MergeStrategy.REPLACE),
        ),
        _feature(
            "theme-dark",
            FileFragment.structured("config/theme.json", {"mode": "dark"},
                                    strategy=MergeStrategy.REPLACE),
        ),
    ])


@pytest.fixture
def make_request(tmp_path: Path):
    """Factory for requests whose target directory lives under ``tmp_path``."""
    def factory(project_name: str = "my-app", **kwargs: Any) -> ScaffoldRequest:
        kwargs.setdefault("target_dir", tmp_path / project_name)
        kwargs.setdefault("framework", "web")
        return ScaffoldRequest(project_name=project_name, **kwargs)

    return factory
