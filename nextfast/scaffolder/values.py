"""Tagged structured values for mergeable configuration files.

Configuration fragments (``package.json``, ``.eslintrc.json``,
``components.json`` ...) are parsed into one of three variants so that
merging is defined per shape instead of by duck typing:

- ``ConfigObject``: ordered key/value tree
- ``ConfigArray``: ordered list
- ``ConfigScalar``: string, number, boolean or null

Values are frozen and hashable.  Scalar equality is type-sensitive, so
``true`` and ``1`` are never considered the same value.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Union

import yaml

Scalar = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class ConfigScalar:
    value: Scalar

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigScalar):
            return NotImplemented
        return type(self.value) is type(other.value) and self.value == other.value

    def __hash__(self) -> int:
        return hash((type(self.value).__name__, self.value))


@dataclass(frozen=True)
class ConfigArray:
    items: tuple["ConfigValue", ...] = ()

    def __iter__(self) -> Iterator["ConfigValue"]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ConfigObject:
    """Ordered mapping of string keys to values.

    Key order is preserved for output but ignored by equality, so two objects
    holding the same keys in a different order compare equal.
    """

    entries: tuple[tuple[str, "ConfigValue"], ...] = ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigObject):
            return NotImplemented
        return dict(self.entries) == dict(other.entries)

    def __hash__(self) -> int:
        return hash(frozenset(self.entries))

    def keys(self) -> list[str]:
        return [key for key, _ in self.entries]

    def get(self, key: str) -> "ConfigValue | None":
        for existing, value in self.entries:
            if existing == key:
                return value
        return None

    def __contains__(self, key: object) -> bool:
        return any(existing == key for existing, _ in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


ConfigValue = Union[ConfigObject, ConfigArray, ConfigScalar]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def from_python(data: Any) -> ConfigValue:
    """Convert plain JSON-compatible Python data into a tagged value."""
    if isinstance(data, dict):
        entries = []
        for key, value in data.items():
            if not isinstance(key, str):
                raise TypeError(f"Config keys must be strings, got {key!r}")
            entries.append((key, from_python(value)))
        return ConfigObject(tuple(entries))
    if isinstance(data, (list, tuple)):
        return ConfigArray(tuple(from_python(item) for item in data))
    if data is None or isinstance(data, (str, bool, int, float)):
        return ConfigScalar(data)
    raise TypeError(f"Unsupported config value type: {type(data).__name__}")


def to_python(value: ConfigValue) -> Any:
    """Convert a tagged value back into plain dicts, lists and scalars."""
    if isinstance(value, ConfigObject):
        return {key: to_python(item) for key, item in value.entries}
    if isinstance(value, ConfigArray):
        return [to_python(item) for item in value.items]
    return value.value


def shape_of(value: ConfigValue) -> str:
    """Return ``"object"``, ``"array"`` or ``"scalar"``."""
    if isinstance(value, ConfigObject):
        return "object"
    if isinstance(value, ConfigArray):
        return "array"
    return "scalar"


# ---------------------------------------------------------------------------
# Parsing and serialisation by file type
# ---------------------------------------------------------------------------

STRUCTURED_SUFFIXES = (".json", ".yaml", ".yml")


def is_structured_path(path: str) -> bool:
    return path.lower().endswith(STRUCTURED_SUFFIXES)


def parse(text: str, path: str) -> ConfigValue:
    """Parse JSON or YAML *text* according to the suffix of *path*."""
    if path.lower().endswith(".json"):
        return from_python(json.loads(text))
    return from_python(yaml.safe_load(text) or {})


def serialize(value: ConfigValue, path: str) -> str:
    """Render *value* as JSON (2-space indent) or YAML, with a trailing newline."""
    data = to_python(value)
    if path.lower().endswith((".yaml", ".yml")):
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
