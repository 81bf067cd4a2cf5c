"""Jinja2 variable substitution for resolved file sets.

Placeholders are Jinja2 expressions written ``{= project_name =}`` so that
the ``{{ ... }}`` braces of JSX and other template languages in the scaffold
sources pass through untouched.  Substitution covers file paths, text
contents, every string inside structured config values, and tooling argv.

Files flagged ``render=False`` keep their content verbatim; only their path
is rendered.

Rendered output contains no placeholders, so running the substituter over an
already substituted file set returns it unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError, TemplateSyntaxError, meta

from .errors import InvalidTemplatePath, MergeConflict, MissingVariable, TemplateRenderError
from .models import ResolvedFile, ResolvedFileSet, ScaffoldRequest, check_relative_path
from .values import ConfigArray, ConfigObject, ConfigScalar, ConfigValue

VARIABLE_START = "{="
VARIABLE_END = "=}"


def create_environment() -> Environment:
    env = Environment(
        variable_start_string=VARIABLE_START,
        variable_end_string=VARIABLE_END,
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["slugify"] = _slugify_filter
    env.filters["pascal_case"] = _pascal_case_filter
    env.filters["snake_case"] = _snake_case_filter
    env.filters["camel_case"] = _camel_case_filter
    return env


# ---------------------------------------------------------------------------
# Substituter
# ---------------------------------------------------------------------------


class Substituter:
    """Renders placeholders across a ResolvedFileSet."""

    def __init__(self, env: Environment | None = None) -> None:
        self.env = env or create_environment()

    def substitute(
        self, files: ResolvedFileSet, bindings: Mapping[str, Any]
    ) -> ResolvedFileSet:
        """Return a new file set with every placeholder replaced.

        Raises:
            MissingVariable: A placeholder names a variable not in *bindings*.
            TemplateRenderError: A source is not valid template syntax.
            InvalidTemplatePath: A rendered path escapes the project root.
            MergeConflict: Two paths render to the same final path, or two keys
                of one config object render to the same key.
        """
        rendered: dict[str, ResolvedFile] = {}
        for path, resolved in files.items():
            new_path = self.render_string(path, bindings, where=path)
            try:
                new_path = check_relative_path(new_path)
            except InvalidTemplatePath:
                raise InvalidTemplatePath(new_path) from None
            if new_path in rendered:
                raise MergeConflict(
                    new_path, f"'{path}' and '{rendered[new_path].path}' render to the same path"
                )
            if resolved.render:
                content = self._render_content(resolved.content, bindings, path)
            else:
                content = resolved.content
            rendered[new_path] = resolved.with_content(content, path=new_path)
        return ResolvedFileSet(rendered)

    def substitute_argv(
        self, argv: tuple[str, ...], bindings: Mapping[str, Any], where: str = "command"
    ) -> tuple[str, ...]:
        return tuple(self.render_string(arg, bindings, where=where) for arg in argv)

    def render_string(self, source: str, bindings: Mapping[str, Any], where: str = "") -> str:
        """Render one template string, checking every token is bound first."""
        if VARIABLE_START not in source and "{%" not in source and "{#" not in source:
            return source
        try:
            parsed = self.env.parse(source)
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(where, exc.message or str(exc)) from exc

        missing = sorted(meta.find_undeclared_variables(parsed) - set(bindings))
        if missing:
            raise MissingVariable(missing[0], where)

        try:
            return self.env.from_string(source).render(**bindings)
        except TemplateError as exc:
            raise TemplateRenderError(where, str(exc)) from exc

    # -- Content dispatch ----------------------------------------------------

    def _render_content(self, content: Any, bindings: Mapping[str, Any], path: str) -> Any:
        if isinstance(content, bytes):
            return content
        if isinstance(content, str):
            return self.render_string(content, bindings, where=path)
        return self._render_value(content, bindings, path)

    def _render_value(
        self, value: ConfigValue, bindings: Mapping[str, Any], path: str
    ) -> ConfigValue:
        if isinstance(value, ConfigObject):
            entries: dict[str, ConfigValue] = {}
            for key, item in value.entries:
                rendered_key = self.render_string(key, bindings, where=path)
                if rendered_key in entries:
                    raise MergeConflict(
                        path, f"key '{key}' renders to the existing key '{rendered_key}'"
                    )
                entries[rendered_key] = self._render_value(item, bindings, path)
            return ConfigObject(tuple(entries.items()))
        if isinstance(value, ConfigArray):
            return ConfigArray(tuple(self._render_value(item, bindings, path) for item in value))
        if isinstance(value.value, str):
            return ConfigScalar(self.render_string(value.value, bindings, where=path))
        return value


# ---------------------------------------------------------------------------
# Derived bindings
# ---------------------------------------------------------------------------


def derive_bindings(request: ScaffoldRequest) -> dict[str, str]:
    """Compute every project-name derived variable once, before substitution."""
    name = request.project_name
    pm = request.package_manager
    return {
        "project_name": name,
        "project_slug": _slugify_filter(name),
        "project_identifier": _snake_case_filter(_slugify_filter(name)) or "app",
        "project_title": " ".join(
            word.capitalize() for word in re.split(r"[-_.\s]+", name) if word
        ),
        "project_pascal": _pascal_case_filter(_slugify_filter(name)),
        "framework": request.framework,
        "package_manager": pm.value,
        "package_manager_run": pm.run_command,
        "package_manager_exec": " ".join(pm.exec_argv),
    }


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------


def _slugify_filter(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_.\s]+", value)
    return "".join(word.capitalize() for word in parts if word)


def _snake_case_filter(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-.\s]+", "_", s2).lower()


def _camel_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = _pascal_case_filter(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""
