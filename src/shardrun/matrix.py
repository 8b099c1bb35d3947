from __future__ import annotations

"""Matrix expansion.

CONTRACT
- Inputs: base env, toolchain entries, include (override) entries,
  default steps, allow_failures / exclude predicates
- Outputs (required):
  - Ordered tuple of Shards: implicit (listed order) then explicit (listed order)
- Invariants:
  - Pure: same inputs -> structurally identical output
  - allow_failures resolved here into Shard.allow_failure, once
  - exclude removes implicit shards only
  - Ids are unique; collisions are never resolved by "last write wins"
- Failure:
  - Raises ConfigurationError on id collision, empty steps, zero shards
"""

import dataclasses
from collections.abc import Sequence

from .env import EnvironmentDescriptor
from .errors import ConfigurationError
from .shard import DefaultSteps, OverrideEntry, Shard, ShardPredicate, ToolchainEntry


def _implicit_shard(entry: ToolchainEntry, base: EnvironmentDescriptor, defaults: DefaultSteps) -> Shard:
    return Shard(
        id=entry.shard_id,
        env=base,
        before_steps=defaults.before,
        steps=defaults.script,
        toolchain=entry.label,
        tag=entry.tag,
    )


def _explicit_shard(entry: OverrideEntry, base: EnvironmentDescriptor, defaults: DefaultSteps) -> Shard:
    return Shard(
        id=entry.shard_id,
        env=base.overlay(entry.env),
        before_steps=entry.before_steps if entry.before_steps is not None else defaults.before,
        steps=entry.steps if entry.steps is not None else defaults.script,
        toolchain=entry.toolchain,
        tag=entry.tag,
        allow_failure=entry.allow_failure,
        explicit=True,
    )


def expand(
    base: EnvironmentDescriptor,
    toolchains: Sequence[ToolchainEntry],
    overrides: Sequence[OverrideEntry],
    *,
    defaults: DefaultSteps,
    allow_failures: Sequence[ShardPredicate] = (),
    exclude: Sequence[ShardPredicate] = (),
) -> tuple[Shard, ...]:
    """Turn a compact matrix into the flat, ordered list of shards to run."""
    if not toolchains and not overrides:
        raise ConfigurationError("Matrix has no toolchain entries and no include entries: nothing to run")

    candidates: list[tuple[str, Shard]] = []
    for i, t in enumerate(toolchains):
        try:
            shard = _implicit_shard(t, base, defaults)
        except ConfigurationError as exc:
            raise ConfigurationError(f"toolchain entry #{i} ({t.label!r}): {exc}") from exc
        if any(p.matches(shard) for p in exclude):
            continue
        candidates.append((f"toolchain entry #{i} ({t.label!r})", shard))

    for i, o in enumerate(overrides):
        try:
            shard = _explicit_shard(o, base, defaults)
        except ConfigurationError as exc:
            raise ConfigurationError(f"include entry #{i}: {exc}") from exc
        candidates.append((f"include entry #{i}", shard))

    if not candidates:
        raise ConfigurationError("Matrix expanded to zero shards (everything excluded?)")

    seen: dict[str, str] = {}
    shards: list[Shard] = []
    for origin, shard in candidates:
        if shard.id in seen:
            raise ConfigurationError(
                f"Duplicate shard id {shard.id!r}: {origin} collides with {seen[shard.id]} "
                "(ambiguous override target)"
            )
        seen[shard.id] = origin
        if not shard.allow_failure and any(p.matches(shard) for p in allow_failures):
            shard = dataclasses.replace(shard, allow_failure=True)
        shards.append(shard)
    return tuple(shards)
