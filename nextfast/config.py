"""next-fast configuration.

Engine-wide settings that are not part of a single scaffold request:
where the template catalog lives, how many files are written at once and
how long external tooling may run.  Pydantic v2 validates the values at
construction time and handles JSON round-tripping.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from nextfast.scaffolder.models import PackageManager

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class EngineConfig(BaseModel):
    """Global scaffolding engine configuration.

    Instances are created once by the CLI (usually via ``from_env``) and
    passed into ``ScaffoldEngine``.
    """

    template_dir: Path | None = Field(
        default=None, description="Template catalog directory; None uses the bundled catalog"
    )
    max_write_workers: int = Field(
        default=4, ge=1, description="Maximum concurrent file writes"
    )
    step_timeout: float = Field(
        default=300.0, gt=0, description="Per-step timeout for tooling commands in seconds"
    )
    install_timeout: float = Field(
        default=900.0, gt=0, description="Timeout for the dependency install step in seconds"
    )
    git_initial_commit: bool = Field(
        default=True, description="Create an initial commit after git init"
    )
    default_package_manager: PackageManager = Field(default=PackageManager.BUN)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file; parent directories are created.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build an ``EngineConfig`` from environment variables.

        Recognised variables (all optional):
            NEXTFAST_TEMPLATE_DIR, NEXTFAST_MAX_WRITE_WORKERS,
            NEXTFAST_STEP_TIMEOUT, NEXTFAST_INSTALL_TIMEOUT,
            NEXTFAST_GIT_COMMIT, NEXTFAST_PACKAGE_MANAGER.

        Raises:
            ValueError: A variable holds a value that cannot be parsed.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("NEXTFAST_TEMPLATE_DIR"):
            kwargs["template_dir"] = Path(os.environ["NEXTFAST_TEMPLATE_DIR"])
        if os.environ.get("NEXTFAST_MAX_WRITE_WORKERS"):
            kwargs["max_write_workers"] = int(os.environ["NEXTFAST_MAX_WRITE_WORKERS"])
        if os.environ.get("NEXTFAST_STEP_TIMEOUT"):
            kwargs["step_timeout"] = float(os.environ["NEXTFAST_STEP_TIMEOUT"])
        if os.environ.get("NEXTFAST_INSTALL_TIMEOUT"):
            kwargs["install_timeout"] = float(os.environ["NEXTFAST_INSTALL_TIMEOUT"])
        if os.environ.get("NEXTFAST_GIT_COMMIT"):
            kwargs["git_initial_commit"] = _parse_bool(
                "NEXTFAST_GIT_COMMIT", os.environ["NEXTFAST_GIT_COMMIT"]
            )
        if os.environ.get("NEXTFAST_PACKAGE_MANAGER"):
            kwargs["default_package_manager"] = PackageManager(
                os.environ["NEXTFAST_PACKAGE_MANAGER"].strip().lower()
            )
        return cls(**kwargs)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")
