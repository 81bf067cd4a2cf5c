"""next-fast scaffolder -- turns template descriptors into a project tree.

The pieces run leaf-first: the registry resolves template ids to ordered
descriptors, the merger folds their fragments into one file set, the
substituter renders placeholders, the materializer writes the tree and the
tooling orchestrator runs install/git/formatter steps inside it.

Quick usage::

    from nextfast.scaffolder import load_catalog, merge, Substituter

    registry = load_catalog()
    descriptors = registry.resolve("next", ["shadcn", "prettier"])
    files = merge(descriptors)
"""

from nextfast.scaffolder.catalog import BUNDLED_TEMPLATE_DIR, load_catalog, load_descriptor
from nextfast.scaffolder.errors import (
    DirectoryExists,
    InvalidTemplatePath,
    IOFailure,
    MergeConflict,
    MissingVariable,
    ScaffoldError,
    TemplateRenderError,
    ToolingStepFailure,
    UnknownTemplate,
    UnsatisfiedDependency,
)
from nextfast.scaffolder.materializer import Materializer
from nextfast.scaffolder.merger import merge
from nextfast.scaffolder.models import (
    FileFragment,
    MergeStrategy,
    OverwritePolicy,
    PackageManager,
    ResolvedFile,
    ResolvedFileSet,
    ScaffoldRequest,
    StepTemplate,
    TemplateDescriptor,
    TemplateKind,
)
from nextfast.scaffolder.plan import Outcome, ScaffoldPlan, ScaffoldResult
from nextfast.scaffolder.registry import RegistryError, TemplateRegistry
from nextfast.scaffolder.substitution import Substituter, derive_bindings
from nextfast.scaffolder.tooling import (
    AsyncProcessRunner,
    ProcessOutcome,
    ProcessRunner,
    StepOutcome,
    StepStatus,
    ToolingOrchestrator,
    ToolingStep,
)

__all__ = [
    "AsyncProcessRunner",
    "BUNDLED_TEMPLATE_DIR",
    "DirectoryExists",
    "FileFragment",
    "IOFailure",
    "InvalidTemplatePath",
    "Materializer",
    "MergeConflict",
    "MergeStrategy",
    "MissingVariable",
    "Outcome",
    "OverwritePolicy",
    "PackageManager",
    "ProcessOutcome",
    "ProcessRunner",
    "RegistryError",
    "ResolvedFile",
    "ResolvedFileSet",
    "ScaffoldError",
    "ScaffoldPlan",
    "ScaffoldRequest",
    "ScaffoldResult",
    "StepOutcome",
    "StepStatus",
    "StepTemplate",
    "Substituter",
    "TemplateDescriptor",
    "TemplateKind",
    "TemplateRegistry",
    "TemplateRenderError",
    "ToolingOrchestrator",
    "ToolingStep",
    "ToolingStepFailure",
    "UnknownTemplate",
    "UnsatisfiedDependency",
    "derive_bindings",
    "load_catalog",
    "load_descriptor",
    "merge",
]
