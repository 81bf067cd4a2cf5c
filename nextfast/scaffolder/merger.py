"""Fragment merging: ordered descriptors to a ResolvedFileSet.

Merge rules per strategy:

- ``replace``: the later fragment (in resolution order) wins.
- ``deep-merge``: objects merge key by key; scalar leaves must be identical;
  arrays must be identical.
- ``append-list``: like deep-merge, but arrays are concatenated with duplicates
  removed.  On plain text content, lines are appended the same way.

At one path every deep-merge fragment is folded in before any append-list
fragment, so independent templates give the same result in any order.
Mixing ``replace`` with a merging strategy at one path, or merging values of
different shapes, raises ``MergeConflict``.  Fragments whose ``when``
template is not selected are dropped.  Nothing here touches the filesystem.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from .errors import MergeConflict
from .models import FileFragment, MergeStrategy, ResolvedFile, ResolvedFileSet, TemplateDescriptor
from .values import ConfigArray, ConfigObject, ConfigScalar, ConfigValue, shape_of


def merge(descriptors: Iterable[TemplateDescriptor]) -> ResolvedFileSet:
    """Combine the fragments of *descriptors*, in order, into one file set.

    Raises:
        MergeConflict: Two fragments target the same path with incompatible
            strategies or incompatible content.
    """
    descriptors = list(descriptors)
    selected = {descriptor.id for descriptor in descriptors}
    contributions: dict[str, list[tuple[str, FileFragment]]] = {}
    for descriptor in descriptors:
        for fragment in descriptor.fragments:
            if fragment.when is not None and fragment.when not in selected:
                continue
            contributions.setdefault(fragment.path, []).append((descriptor.id, fragment))
    return ResolvedFileSet(
        {path: _merge_path(entries) for path, entries in contributions.items()}
    )


def _merge_path(entries: list[tuple[str, FileFragment]]) -> ResolvedFile:
    folded = sorted(entries, key=lambda entry: entry[1].strategy is MergeStrategy.APPEND_LIST)
    source, fragment = folded[0]
    resolved = ResolvedFile(
        path=fragment.path,
        content=fragment.content,
        strategy=fragment.strategy,
        executable=fragment.executable,
        sources=(source,),
        render=fragment.render,
    )
    for source, fragment in folded[1:]:
        resolved = merge_fragment(resolved, fragment, source)
    # Report contributors in resolution order, not folding order.
    return replace(resolved, sources=tuple(dict.fromkeys(source for source, _ in entries)))


def merge_fragment(existing: ResolvedFile, fragment: FileFragment, source: str) -> ResolvedFile:
    """Layer one fragment on top of an already resolved file."""
    path = fragment.path
    sources = existing.sources + (source,)

    if fragment.strategy is MergeStrategy.REPLACE or existing.strategy is MergeStrategy.REPLACE:
        if fragment.strategy is not existing.strategy:
            raise MergeConflict(
                path,
                f"'{source}' uses {fragment.strategy.value} but "
                f"'{existing.sources[-1]}' uses {existing.strategy.value}",
            )
        return ResolvedFile(
            path=path,
            content=fragment.content,
            strategy=MergeStrategy.REPLACE,
            executable=fragment.executable,
            sources=sources,
            render=fragment.render,
        )

    if fragment.render is not existing.render:
        raise MergeConflict(path, "cannot combine rendered and verbatim fragments")

    base, incoming = existing.content, fragment.content
    if isinstance(base, str) and isinstance(incoming, str):
        if fragment.strategy is not MergeStrategy.APPEND_LIST:
            raise MergeConflict(path, "text content can only be combined with append-list")
        content: object = append_lines(base, incoming)
    elif isinstance(base, (bytes, str)) or isinstance(incoming, (bytes, str)):
        raise MergeConflict(path, "cannot merge structured content with raw content")
    else:
        content = merge_values(base, incoming, fragment.strategy, path)

    return ResolvedFile(
        path=path,
        content=content,  # type: ignore[arg-type]
        strategy=existing.strategy,
        executable=existing.executable or fragment.executable,
        sources=sources,
        render=existing.render,
    )


def merge_values(
    base: ConfigValue,
    incoming: ConfigValue,
    strategy: MergeStrategy,
    path: str,
    trail: tuple[str, ...] = (),
) -> ConfigValue:
    """Recursively merge two tagged values under *strategy*."""
    where = ".".join(trail) or "<root>"

    if isinstance(base, ConfigObject) and isinstance(incoming, ConfigObject):
        merged: dict[str, ConfigValue] = dict(base.entries)
        for key, value in incoming.entries:
            if key in merged:
                merged[key] = merge_values(merged[key], value, strategy, path, trail + (key,))
            else:
                merged[key] = value
        return ConfigObject(tuple(merged.items()))

    if isinstance(base, ConfigArray) and isinstance(incoming, ConfigArray):
        if strategy is MergeStrategy.APPEND_LIST:
            return ConfigArray(_dedupe(base.items + incoming.items))
        if base == incoming:
            return base
        raise MergeConflict(path, f"lists differ at {where}; use append-list to combine them")

    if isinstance(base, ConfigScalar) and isinstance(incoming, ConfigScalar):
        if base == incoming:
            return base
        raise MergeConflict(
            path, f"conflicting values at {where}: {base.value!r} vs {incoming.value!r}"
        )

    raise MergeConflict(
        path, f"cannot merge {shape_of(incoming)} into {shape_of(base)} at {where}"
    )


def append_lines(base: str, incoming: str) -> str:
    """Append the lines of *incoming* to *base*, skipping non-blank duplicates."""
    lines = base.splitlines()
    seen = {line for line in lines if line.strip()}
    for line in incoming.splitlines():
        if line.strip() and line in seen:
            continue
        seen.add(line)
        lines.append(line)
    return "\n".join(lines) + "\n"


def _dedupe(items: tuple[ConfigValue, ...]) -> tuple[ConfigValue, ...]:
    unique: list[ConfigValue] = []
    for item in items:
        if item not in unique:
            unique.append(item)
    return tuple(unique)
