"""Error types raised by the scaffolding engine.

Every error carries a ``kind`` tag plus the structured fields needed to
explain it, so the engine can turn it into a ``ScaffoldResult`` diagnostic
without string parsing.

Plan-time errors (raised before anything touches the filesystem):
    UnknownTemplate, UnsatisfiedDependency, MergeConflict, MissingVariable,
    TemplateRenderError, InvalidTemplatePath

Materialization errors:
    DirectoryExists, IOFailure

Tooling errors:
    ToolingStepFailure
"""

from __future__ import annotations

from pathlib import Path


class ScaffoldError(Exception):
    """Base class for every error the engine reports as a structured failure."""

    kind = "scaffold_error"
    plan_time = False


class UnknownTemplate(ScaffoldError):
    """Raised when a framework or feature id is not in the registry."""

    kind = "unknown_template"
    plan_time = True

    def __init__(self, template_id: str, expected_kind: str | None = None) -> None:
        self.template_id = template_id
        self.expected_kind = expected_kind
        if expected_kind:
            message = f"Unknown {expected_kind} template: '{template_id}'"
        else:
            message = f"Unknown template: '{template_id}'"
        super().__init__(message)


class UnsatisfiedDependency(ScaffoldError):
    """Raised when a selected template requires one that was not selected."""

    kind = "unsatisfied_dependency"
    plan_time = True

    def __init__(self, template_id: str, missing: str) -> None:
        self.template_id = template_id
        self.missing = missing
        super().__init__(
            f"Template '{template_id}' requires '{missing}', which is not selected"
        )


class MergeConflict(ScaffoldError):
    """Raised when two fragments cannot be combined at the same path."""

    kind = "merge_conflict"
    plan_time = True

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Merge conflict at '{path}': {reason}")


class MissingVariable(ScaffoldError):
    """Raised when a placeholder token has no binding."""

    kind = "missing_variable"
    plan_time = True

    def __init__(self, token: str, path: str = "") -> None:
        self.token = token
        self.path = path
        where = f" in '{path}'" if path else ""
        super().__init__(f"No value bound for variable '{token}'{where}")


class TemplateRenderError(ScaffoldError):
    """Raised when a template source is not valid template syntax."""

    kind = "template_render_error"
    plan_time = True

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot render '{path}': {reason}")


class InvalidTemplatePath(ScaffoldError):
    """Raised when a fragment path is absolute or escapes the project root."""

    kind = "invalid_template_path"
    plan_time = True

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Template path '{path}' must stay inside the project root")


class DirectoryExists(ScaffoldError):
    """Raised when the target exists and the overwrite policy forbids reuse."""

    kind = "directory_exists"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(
            f"Target directory '{self.path}' already exists and is not empty. "
            "Choose another name or pass --overwrite overwrite|merge."
        )


class IOFailure(ScaffoldError):
    """Raised when writing the project tree fails; the tree has been cleaned up."""

    kind = "io_failure"

    def __init__(self, path: str | Path, reason: str = "") -> None:
        self.path = str(path)
        self.reason = reason
        message = f"Failed to write '{self.path}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ToolingStepFailure(ScaffoldError):
    """Raised inside the orchestrator when a tooling command does not succeed."""

    kind = "tooling_step_failure"

    def __init__(self, step: str, exit_code: int, diagnostics: str = "") -> None:
        self.step = step
        self.exit_code = exit_code
        self.diagnostics = diagnostics
        super().__init__(f"Step '{step}' exited with status {exit_code}")
