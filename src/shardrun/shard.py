from __future__ import annotations

"""Matrix entries and resolved shards.

CONTRACT
- Inputs: toolchain labels, include entries, predicates (plain values)
- Outputs (required):
  - ToolchainEntry, OverrideEntry, ShardPredicate, DefaultSteps, Shard
- Invariants:
  - All types are frozen; a Shard never changes after expansion
  - Shard.steps is never empty
  - Shard.id is derived from toolchain + tag only (deterministic)
- Failure:
  - Raises ConfigurationError on empty step lists or invalid ids
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Literal

from .env import EnvironmentDescriptor
from .errors import ConfigurationError
from .util.ids import validate_shard_id

Phase = Literal["before_script", "script"]


def derive_shard_id(toolchain: str | None, tag: str | None) -> str:
    if toolchain and tag:
        return f"{toolchain}/{tag}"
    if tag:
        return tag
    if toolchain:
        return toolchain
    raise ConfigurationError("Entry needs a toolchain or a tag to derive a shard id")


@dataclass(frozen=True)
class ToolchainEntry:
    label: str
    tag: str | None = None

    @property
    def shard_id(self) -> str:
        return derive_shard_id(self.label, self.tag)


@dataclass(frozen=True)
class OverrideEntry:
    """One `include` entry. Additive: it does not modify an existing row."""

    toolchain: str | None = None
    tag: str | None = None
    env: EnvironmentDescriptor = field(default_factory=EnvironmentDescriptor)
    before_steps: tuple[str, ...] | None = None
    steps: tuple[str, ...] | None = None
    allow_failure: bool = False

    @property
    def shard_id(self) -> str:
        return derive_shard_id(self.toolchain, self.tag)


@dataclass(frozen=True)
class DefaultSteps:
    before: tuple[str, ...] = ()
    script: tuple[str, ...] = ()


@dataclass(frozen=True)
class ShardPredicate:
    """Matches a shard by resolved attributes; every given field must match."""

    toolchain: str | None = None
    tag: str | None = None
    shard_id: str | None = None
    env: EnvironmentDescriptor = field(default_factory=EnvironmentDescriptor)

    def is_empty(self) -> bool:
        return self.toolchain is None and self.tag is None and self.shard_id is None and not self.env

    def matches(self, shard: Shard) -> bool:
        if self.is_empty():
            return False
        if self.toolchain is not None and shard.toolchain != self.toolchain:
            return False
        if self.tag is not None and shard.tag != self.tag:
            return False
        if self.shard_id is not None and shard.id != self.shard_id:
            return False
        return shard.env.contains_all(self.env)


@dataclass(frozen=True)
class Shard:
    id: str
    env: EnvironmentDescriptor
    steps: tuple[str, ...]
    before_steps: tuple[str, ...] = ()
    toolchain: str | None = None
    tag: str | None = None
    allow_failure: bool = False
    explicit: bool = False

    def __post_init__(self) -> None:
        validate_shard_id(self.id)
        if not self.steps:
            raise ConfigurationError(f"Shard {self.id!r} has an empty script step list")

    def iter_steps(self) -> Iterator[tuple[Phase, str]]:
        for s in self.before_steps:
            yield "before_script", s
        for s in self.steps:
            yield "script", s

    def describe(self) -> dict[str, object]:
        return {
            "id": self.id,
            "toolchain": self.toolchain,
            "tag": self.tag,
            "explicit": self.explicit,
            "allow_failure": self.allow_failure,
            "env": self.env.as_dict(),
            "before_script": list(self.before_steps),
            "script": list(self.steps),
        }
