"""Template registry: named, versioned descriptors and dependency resolution."""

from __future__ import annotations

import heapq
from collections.abc import Iterable

from .errors import UnknownTemplate, UnsatisfiedDependency
from .models import TemplateDescriptor, TemplateKind


class RegistryError(ValueError):
    """Raised when a catalog is internally inconsistent (duplicate ids, cycles)."""


class TemplateRegistry:
    """Immutable collection of template descriptors.

    Built once per process (usually by :func:`~nextfast.scaffolder.catalog.load_catalog`)
    and handed to the engine.  Declaration order is remembered and used to
    break ties during resolution, so identical requests always resolve to the
    same order.
    """

    def __init__(self, descriptors: Iterable[TemplateDescriptor]) -> None:
        self._descriptors: dict[str, TemplateDescriptor] = {}
        self._order: dict[str, int] = {}
        for descriptor in descriptors:
            if descriptor.id in self._descriptors:
                raise RegistryError(f"Duplicate template id: '{descriptor.id}'")
            self._order[descriptor.id] = len(self._order)
            self._descriptors[descriptor.id] = descriptor

        for descriptor in self._descriptors.values():
            for dep in descriptor.requires:
                if dep not in self._descriptors:
                    raise RegistryError(
                        f"Template '{descriptor.id}' requires unknown template '{dep}'"
                    )
            for fragment in descriptor.fragments:
                if fragment.when is not None and fragment.when not in self._descriptors:
                    raise RegistryError(
                        f"Template '{descriptor.id}' file '{fragment.path}' is conditional "
                        f"on unknown template '{fragment.when}'"
                    )
        self._check_acyclic()

    # -- Lookup --------------------------------------------------------------

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def get(self, template_id: str) -> TemplateDescriptor:
        try:
            return self._descriptors[template_id]
        except KeyError:
            raise UnknownTemplate(template_id) from None

    def frameworks(self) -> list[TemplateDescriptor]:
        return [d for d in self._descriptors.values() if d.kind is TemplateKind.FRAMEWORK]

    def features(self) -> list[TemplateDescriptor]:
        return [d for d in self._descriptors.values() if d.kind is TemplateKind.FEATURE]

    # -- Resolution ----------------------------------------------------------

    def resolve(
        self, framework_id: str, feature_ids: Iterable[str] = ()
    ) -> list[TemplateDescriptor]:
        """Return the selected descriptors in dependency order.

        Args:
            framework_id: Id of a ``framework`` descriptor.
            feature_ids: Ids of ``feature`` descriptors to layer on top.

        Raises:
            UnknownTemplate: An id is not registered, or names the wrong kind.
            UnsatisfiedDependency: A selected descriptor requires one that was
                not selected.
        """
        framework = self._descriptors.get(framework_id)
        if framework is None or framework.kind is not TemplateKind.FRAMEWORK:
            raise UnknownTemplate(framework_id, TemplateKind.FRAMEWORK.value)

        selected = {framework_id}
        for feature_id in feature_ids:
            feature = self._descriptors.get(feature_id)
            if feature is None or feature.kind is not TemplateKind.FEATURE:
                raise UnknownTemplate(feature_id, TemplateKind.FEATURE.value)
            selected.add(feature_id)

        for template_id in sorted(selected, key=self._order.__getitem__):
            for dep in self._descriptors[template_id].requires:
                if dep not in selected:
                    raise UnsatisfiedDependency(template_id, dep)

        return [self._descriptors[i] for i in self._topological(selected)]

    def _topological(self, selected: set[str]) -> list[str]:
        """Kahn's algorithm; ready nodes are taken in declaration order."""
        indegree = {i: 0 for i in selected}
        dependents: dict[str, list[str]] = {i: [] for i in selected}
        for template_id in selected:
            for dep in self._descriptors[template_id].requires:
                indegree[template_id] += 1
                dependents[dep].append(template_id)

        ready = [(self._order[i], i) for i, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)
        ordered: list[str] = []
        while ready:
            _, template_id = heapq.heappop(ready)
            ordered.append(template_id)
            for child in dependents[template_id]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._order[child], child))

        if len(ordered) != len(selected):
            raise RegistryError("Dependency cycle between selected templates")
        return ordered

    def _check_acyclic(self) -> None:
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(template_id: str, trail: tuple[str, ...]) -> None:
            if template_id in done:
                return
            if template_id in visiting:
                cycle = " -> ".join(trail + (template_id,))
                raise RegistryError(f"Dependency cycle: {cycle}")
            visiting.add(template_id)
            for dep in self._descriptors[template_id].requires:
                visit(dep, trail + (template_id,))
            visiting.discard(template_id)
            done.add(template_id)

        for template_id in self._descriptors:
            visit(template_id, ())
