from __future__ import annotations

"""Environment descriptors.

CONTRACT
- Inputs: mapping of NAME -> value, or list of "NAME=value" assignments
- Outputs:
  - EnvironmentDescriptor (immutable, ordered, unique names)
- Invariants:
  - overlay() never mutates either side; keys of the overlay win
  - Insertion order is preserved (later entries may reference earlier ones)
- Failure:
  - Raises ConfigurationError on malformed assignments or names
"""

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass

from .errors import ConfigurationError

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_name(name: str) -> str:
    if not _NAME_RE.fullmatch(name):
        raise ConfigurationError(f"Invalid environment variable name: {name!r}")
    return name


@dataclass(frozen=True)
class EnvironmentDescriptor:
    pairs: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> EnvironmentDescriptor:
        return cls(tuple((_check_name(str(k)), str(v)) for k, v in data.items()))

    @classmethod
    def from_assignments(cls, items: Iterable[str]) -> EnvironmentDescriptor:
        """Parse the `.travis.yml` style `["NAME=value", ...]` form.

        A name listed twice keeps its first position and its last value.
        """
        out: dict[str, str] = {}
        for item in items:
            name, sep, value = str(item).partition("=")
            if not sep:
                raise ConfigurationError(f"Expected NAME=value, got {item!r}")
            out[_check_name(name.strip())] = value
        return cls(tuple(out.items()))

    @classmethod
    def parse(cls, raw: object) -> EnvironmentDescriptor:
        if raw is None:
            return cls()
        if isinstance(raw, EnvironmentDescriptor):
            return raw
        if isinstance(raw, Mapping):
            return cls.from_mapping(raw)
        if isinstance(raw, str):
            return cls.from_assignments([raw])
        if isinstance(raw, list | tuple):
            return cls.from_assignments(raw)
        raise ConfigurationError(f"Unsupported env value: {raw!r}")

    def overlay(self, other: EnvironmentDescriptor | None) -> EnvironmentDescriptor:
        if not other:
            return self
        merged = dict(self.pairs)
        merged.update(other.pairs)
        return EnvironmentDescriptor(tuple(merged.items()))

    def get(self, name: str, default: str | None = None) -> str | None:
        for k, v in self.pairs:
            if k == name:
                return v
        return default

    def contains_all(self, other: EnvironmentDescriptor) -> bool:
        mine = dict(self.pairs)
        return all(mine.get(k) == v for k, v in other.pairs)

    def as_dict(self) -> dict[str, str]:
        return dict(self.pairs)

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    def __bool__(self) -> bool:
        return bool(self.pairs)
