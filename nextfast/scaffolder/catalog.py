"""Loading template descriptors from a directory of YAML manifests.

Layout::

    templates/
        catalog.yaml            # ordered list of template ids
        next/
            manifest.yaml       # descriptor metadata, files and steps
            package.json        # fragment sources referenced by the manifest
            ...

The order in ``catalog.yaml`` is the declaration order the registry uses to
break ties between independent templates.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidTemplatePath
from .models import (
    FileFragment,
    MergeStrategy,
    StepTemplate,
    TemplateDescriptor,
    TemplateKind,
)
from .registry import RegistryError, TemplateRegistry
from .values import is_structured_path, parse

BUNDLED_TEMPLATE_DIR = Path(__file__).parent / "templates"


class ManifestFile(BaseModel):
    path: str
    source: str | None = Field(default=None, description="Defaults to `path`")
    strategy: MergeStrategy = MergeStrategy.REPLACE
    executable: bool = False
    binary: bool = False
    when: str | None = Field(default=None, description="Only used when this template is selected")
    render: bool = Field(default=True, description="False writes the source verbatim")


class ManifestStep(BaseModel):
    name: str
    argv: list[str] = Field(..., min_length=1)
    exec_local: bool = False
    critical: bool = False


class Manifest(BaseModel):
    id: str
    kind: TemplateKind = TemplateKind.FEATURE
    version: str = "0.0.0"
    description: str = ""
    requires: list[str] = Field(default_factory=list)
    files: list[ManifestFile] = Field(default_factory=list)
    steps: list[ManifestStep] = Field(default_factory=list)


class CatalogIndex(BaseModel):
    templates: list[str] = Field(default_factory=list)


def load_catalog(template_dir: str | Path | None = None) -> TemplateRegistry:
    """Build a registry from *template_dir* (the bundled catalog by default)."""
    root = Path(template_dir) if template_dir is not None else BUNDLED_TEMPLATE_DIR
    index = CatalogIndex.model_validate(_read_yaml(root / "catalog.yaml"))
    return TemplateRegistry(load_descriptor(root / template_id) for template_id in index.templates)


def load_descriptor(directory: Path) -> TemplateDescriptor:
    """Read ``manifest.yaml`` and every fragment source it references."""
    manifest_path = directory / "manifest.yaml"
    try:
        manifest = Manifest.model_validate(_read_yaml(manifest_path))
    except ValidationError as exc:
        raise RegistryError(f"Invalid manifest {manifest_path}: {exc}") from exc
    if manifest.id != directory.name:
        raise RegistryError(
            f"Manifest {manifest_path} declares id '{manifest.id}', expected '{directory.name}'"
        )

    fragments = []
    for entry in manifest.files:
        source = directory / (entry.source or entry.path)
        try:
            fragments.append(_load_fragment(entry, source))
        except InvalidTemplatePath as exc:
            raise RegistryError(f"Invalid file path in {manifest_path}: {exc}") from exc

    steps = tuple(
        StepTemplate(
            name=step.name,
            argv=tuple(step.argv),
            exec_local=step.exec_local,
            critical=step.critical,
        )
        for step in manifest.steps
    )
    return TemplateDescriptor(
        id=manifest.id,
        kind=manifest.kind,
        version=manifest.version,
        description=manifest.description,
        requires=tuple(manifest.requires),
        fragments=tuple(fragments),
        steps=steps,
    )


def _load_fragment(entry: ManifestFile, source: Path) -> FileFragment:
    if not source.is_file():
        raise RegistryError(f"Template source not found: {source}")
    if entry.binary:
        if entry.strategy is not MergeStrategy.REPLACE:
            raise RegistryError(f"Binary file {source} only supports the replace strategy")
        content: object = source.read_bytes()
    else:
        text = source.read_text(encoding="utf-8")
        if entry.strategy is not MergeStrategy.REPLACE and is_structured_path(entry.path):
            try:
                content = parse(text, entry.path)
            except (ValueError, TypeError, yaml.YAMLError) as exc:
                raise RegistryError(f"Cannot parse structured template {source}: {exc}") from exc
        else:
            content = text
    return FileFragment(
        path=entry.path,
        content=content,  # type: ignore[arg-type]
        strategy=entry.strategy,
        executable=entry.executable,
        when=entry.when,
        render=entry.render and not entry.binary,
    )


def _read_yaml(path: Path) -> dict:
    if not path.is_file():
        raise RegistryError(f"Catalog file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise RegistryError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise RegistryError(f"{path} must contain a mapping")
    return data
