"""Core data model of the scaffolding engine.

Descriptors and fragments are frozen dataclasses owned by the registry.
``ScaffoldRequest`` is a frozen pydantic model so that the project name and
target directory are validated once, at construction, by the caller.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidTemplatePath
from .values import ConfigValue, from_python


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class MergeStrategy(str, Enum):
    REPLACE = "replace"
    DEEP_MERGE = "deep-merge"
    APPEND_LIST = "append-list"


class TemplateKind(str, Enum):
    FRAMEWORK = "framework"
    FEATURE = "feature"


class OverwritePolicy(str, Enum):
    FAIL_IF_EXISTS = "fail"
    OVERWRITE = "overwrite"
    MERGE = "merge"


class PackageManager(str, Enum):
    BUN = "bun"
    NPM = "npm"
    PNPM = "pnpm"
    YARN = "yarn"

    @property
    def run_command(self) -> str:
        """Prefix used to run a ``package.json`` script."""
        return {"bun": "bun run", "npm": "npm run", "pnpm": "pnpm", "yarn": "yarn"}[self.value]

    @property
    def exec_argv(self) -> tuple[str, ...]:
        """Argv prefix that runs a locally installed package binary."""
        return {
            "bun": ("bunx",),
            "npm": ("npx",),
            "pnpm": ("pnpm", "exec"),
            "yarn": ("yarn",),
        }[self.value]


# ---------------------------------------------------------------------------
# Template descriptors
# ---------------------------------------------------------------------------

Content = Union[bytes, str, ConfigValue]


def check_relative_path(path: str) -> str:
    """Normalise a fragment path to POSIX form, rejecting escapes."""
    normalised = path.replace("\\", "/")
    pure = PurePosixPath(normalised)
    if not normalised or pure.is_absolute() or ".." in pure.parts or re.match(r"^[A-Za-z]:", normalised):
        raise InvalidTemplatePath(path)
    return str(pure)


@dataclass(frozen=True)
class FileFragment:
    """One file (or config sub-tree) contributed by a template.

    ``when`` names another template; the fragment is only used when that
    template is selected too.  ``render=False`` writes the content verbatim,
    for sources whose own syntax clashes with placeholders (``{#if}``, ``{%``).
    """

    path: str
    content: Content
    strategy: MergeStrategy = MergeStrategy.REPLACE
    executable: bool = False
    when: str | None = None
    render: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", check_relative_path(self.path))

    @classmethod
    def text(cls, path: str, content: str, *, executable: bool = False,
             strategy: MergeStrategy = MergeStrategy.REPLACE,
             when: str | None = None, render: bool = True) -> "FileFragment":
        return cls(path=path, content=content, strategy=strategy, executable=executable,
                   when=when, render=render)

    @classmethod
    def structured(cls, path: str, data: Any,
                   strategy: MergeStrategy = MergeStrategy.DEEP_MERGE,
                   when: str | None = None) -> "FileFragment":
        return cls(path=path, content=from_python(data), strategy=strategy, when=when)


@dataclass(frozen=True)
class StepTemplate:
    """A post-materialization command declared by a template.

    ``exec_local`` steps run a package binary through the package manager
    (``bunx prisma generate``) and therefore need dependencies installed.
    """

    name: str
    argv: tuple[str, ...]
    exec_local: bool = False
    critical: bool = False


@dataclass(frozen=True)
class TemplateDescriptor:
    id: str
    kind: TemplateKind = TemplateKind.FEATURE
    version: str = "0.0.0"
    description: str = ""
    requires: tuple[str, ...] = ()
    fragments: tuple[FileFragment, ...] = ()
    steps: tuple[StepTemplate, ...] = ()


# ---------------------------------------------------------------------------
# Resolved file set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedFile:
    path: str
    content: Content
    strategy: MergeStrategy = MergeStrategy.REPLACE
    executable: bool = False
    sources: tuple[str, ...] = ()
    render: bool = True

    def with_content(self, content: Content, path: str | None = None) -> "ResolvedFile":
        return replace(self, content=content, path=path if path is not None else self.path)


class ResolvedFileSet(Mapping[str, ResolvedFile]):
    """Read-only mapping of final relative path to resolved file.

    Iteration follows the order in which paths were first contributed, which
    is the topological order of the descriptors that produced them.
    """

    def __init__(self, files: Mapping[str, ResolvedFile] | None = None) -> None:
        self._files: dict[str, ResolvedFile] = dict(files or {})

    def __getitem__(self, path: str) -> ResolvedFile:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResolvedFileSet):
            return list(self._files.items()) == list(other._files.items())
        return NotImplemented

    def __repr__(self) -> str:
        return f"ResolvedFileSet({list(self._files)!r})"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

_PROJECT_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
_RESERVED_PREFIXES = (".", "_", "-")
_RESERVED_NAMES = {"node_modules", "favicon.ico", "con", "prn", "aux", "nul"}


class ScaffoldRequest(BaseModel):
    """A single, validated scaffold invocation.

    ``features`` holds feature descriptor ids (``"shadcn"``, ``"prettier"``
    ...); the CLI maps its boolean flags onto them.
    """

    model_config = ConfigDict(frozen=True)

    project_name: str = Field(..., description="Package name of the new project")
    target_dir: Path | None = Field(
        default=None, description="Directory to create (defaults to ./<project_name>)"
    )
    framework: str = Field(default="next")
    features: frozenset[str] = Field(default_factory=frozenset)
    package_manager: PackageManager = Field(default=PackageManager.BUN)
    overwrite: OverwritePolicy = Field(default=OverwritePolicy.FAIL_IF_EXISTS)
    skip_install: bool = Field(default=False)
    git: bool = Field(default=True)

    @field_validator("project_name")
    @classmethod
    def _validate_project_name(cls, value: str) -> str:
        if not value:
            raise ValueError("project name must not be empty")
        if len(value) > 214:
            raise ValueError("project name must be at most 214 characters")
        if value.startswith(_RESERVED_PREFIXES):
            raise ValueError(f"project name must not start with one of {' '.join(_RESERVED_PREFIXES)}")
        if value.lower() in _RESERVED_NAMES:
            raise ValueError(f"'{value}' is a reserved name")
        if not _PROJECT_NAME_RE.match(value):
            raise ValueError(
                "project name may only contain lowercase letters, digits, '.', '_' and '-'"
            )
        return value

    @model_validator(mode="before")
    @classmethod
    def _default_target_dir(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("target_dir") and data.get("project_name"):
            data = {**data, "target_dir": Path.cwd() / str(data["project_name"])}
        return data

    @property
    def project_root(self) -> Path:
        if self.target_dir is None:
            raise ValueError("ScaffoldRequest was built without validation and has no target_dir")
        return self.target_dir
