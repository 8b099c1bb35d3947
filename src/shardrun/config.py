from __future__ import annotations

"""Configuration models.

CONTRACT
- Inputs: YAML matrix description (a `.travis.yml`-compatible subset) or dictionary data
- Outputs (required):
  - Validated MatrixFileConfig (expandable into Shards) and RunConfig objects
- Invariants:
  - Toolchain key is `toolchain_key`, else the `language` name, else "toolchain"
  - An include entry carrying only the toolchain key (and optionally a tag)
    is a toolchain entry; anything more makes it an override entry
  - Include tag is `tag`, else `name`, else the SHARD env variable
- Failure:
  - Raises ConfigurationError on unreadable files, invalid YAML, schema or semantic errors
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .env import EnvironmentDescriptor
from .errors import ConfigurationError
from .matrix import expand
from .shard import DefaultSteps, OverrideEntry, Shard, ShardPredicate, ToolchainEntry

DEFAULT_TOOLCHAIN_KEY = "toolchain"

_STEPS = {"oneOf": [{"type": "string"}, {"type": "array", "items": {"type": "string"}}]}
_ENV = {
    "oneOf": [
        {"type": "string"},
        {"type": "array", "items": {"type": "string"}},
        {"type": "object"},
        {"type": "null"},
    ]
}
_ENTRY_LIST = {"type": ["array", "null"], "items": {"type": "object"}}
_INCLUDE_LIST = {
    "type": ["array", "null"],
    "items": {
        "type": "object",
        "properties": {
            "tag": {"type": ["string", "number"]},
            "name": {"type": ["string", "number"]},
            "env": _ENV,
            "before_script": _STEPS,
            "script": _STEPS,
            "allow_failure": {"type": "boolean"},
        },
    },
}

MATRIX_SCHEMA = {
    "type": "object",
    "properties": {
        "language": {"type": "string"},
        "toolchain_key": {"type": "string", "pattern": "^[A-Za-z_][A-Za-z0-9_]*$"},
        "env": _ENV,
        "before_script": _STEPS,
        "script": _STEPS,
        "matrix": {
            "type": "object",
            "properties": {
                "fast_finish": {"type": "boolean"},
                "include": _INCLUDE_LIST,
                "exclude": _ENTRY_LIST,
                "allow_failures": _ENTRY_LIST,
            },
        },
    },
}
MATRIX_SCHEMA["properties"]["jobs"] = MATRIX_SCHEMA["properties"]["matrix"]

_PREDICATE_KEYS = {"tag", "name", "id", "env"}
_OVERRIDE_KEYS = {"tag", "name", "env", "before_script", "script", "allow_failure"}
_ENV_JOB_KEYS = {"matrix", "jobs"}


@dataclass(frozen=True)
class MatrixFileConfig:
    base: EnvironmentDescriptor = field(default_factory=EnvironmentDescriptor)
    defaults: DefaultSteps = field(default_factory=DefaultSteps)
    toolchains: tuple[ToolchainEntry, ...] = ()
    overrides: tuple[OverrideEntry, ...] = ()
    allow_failures: tuple[ShardPredicate, ...] = ()
    exclude: tuple[ShardPredicate, ...] = ()
    fast_finish: bool = False
    toolchain_key: str = DEFAULT_TOOLCHAIN_KEY

    def expand(self) -> tuple[Shard, ...]:
        return expand(
            self.base,
            self.toolchains,
            self.overrides,
            defaults=self.defaults,
            allow_failures=self.allow_failures,
            exclude=self.exclude,
        )


@dataclass(frozen=True)
class RunConfig:
    matrix_path: Path
    run_id: str
    artifacts_root: Path
    cwd: Path = field(default_factory=Path.cwd)
    parallelism: int | None = None
    fast_finish: bool | None = None  # None: use the matrix file's value
    step_timeout_s: float | None = None
    wait_for_allowed_failures: bool = False
    use_docker: bool = False
    docker_image: str = "{toolchain}"

    def run_dir(self) -> Path:
        return self.artifacts_root / self.run_id


def _steps(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(s) for s in raw)


def _optional_steps(entry: dict[str, Any], key: str) -> tuple[str, ...] | None:
    return _steps(entry[key]) if key in entry else None


def _base_env(raw: Any) -> EnvironmentDescriptor:
    if isinstance(raw, dict) and _ENV_JOB_KEYS & set(raw):
        # Travis `env: {matrix: [...]}` declares one job per row.
        raise ConfigurationError(
            f"env: {sorted(_ENV_JOB_KEYS & set(raw))} rows are not supported; "
            "declare one matrix.include entry per job instead"
        )
    # Travis `env: {global: ...}` form.
    if isinstance(raw, dict) and "global" in raw:
        extra = set(raw) - {"global"}
        if extra:
            raise ConfigurationError(f"env: unknown keys {sorted(extra)} next to `global`")
        return EnvironmentDescriptor.parse(raw["global"])
    return EnvironmentDescriptor.parse(raw)


def _label(value: Any) -> str | None:
    return None if value is None else str(value)


def _tag(entry: dict[str, Any], env: EnvironmentDescriptor) -> str | None:
    for key in ("tag", "name"):
        if entry.get(key) is not None:
            return str(entry[key])
    return env.get("SHARD")


def _predicate(entry: dict[str, Any], key: str, where: str) -> ShardPredicate:
    unknown = set(entry) - _PREDICATE_KEYS - {key}
    if unknown:
        raise ConfigurationError(f"{where}: unknown predicate keys {sorted(unknown)}")
    pred = ShardPredicate(
        toolchain=_label(entry.get(key)),
        tag=_label(entry.get("tag", entry.get("name"))),
        shard_id=_label(entry.get("id")),
        env=EnvironmentDescriptor.parse(entry.get("env")),
    )
    if pred.is_empty():
        raise ConfigurationError(f"{where}: empty predicate matches nothing")
    return pred


def _include(
    entry: dict[str, Any], key: str, where: str
) -> ToolchainEntry | OverrideEntry:
    unknown = set(entry) - _OVERRIDE_KEYS - {key}
    if unknown:
        raise ConfigurationError(f"{where}: unknown keys {sorted(unknown)}")
    env = EnvironmentDescriptor.parse(entry.get("env"))
    tag = _tag(entry, env)
    toolchain = _label(entry.get(key))
    if toolchain is not None and set(entry) <= {key, "tag", "name"}:
        return ToolchainEntry(label=toolchain, tag=tag)
    if toolchain is None and tag is None:
        raise ConfigurationError(f"{where}: needs `{key}` or a tag (tag/name/SHARD env) to name the shard")
    return OverrideEntry(
        toolchain=toolchain,
        tag=tag,
        env=env,
        before_steps=_optional_steps(entry, "before_script"),
        steps=_optional_steps(entry, "script"),
        allow_failure=bool(entry.get("allow_failure", False)),
    )


def parse_matrix(data: dict[str, Any]) -> MatrixFileConfig:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=MATRIX_SCHEMA)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid matrix description at {where}: {e.message}") from e

    key = str(data.get("toolchain_key") or data.get("language") or DEFAULT_TOOLCHAIN_KEY)
    matrix_raw = data.get("matrix") or data.get("jobs") or {}

    toolchains: list[ToolchainEntry] = [ToolchainEntry(label=str(t)) for t in _steps(data.get(key))]
    overrides: list[OverrideEntry] = []
    for i, entry in enumerate(matrix_raw.get("include") or []):
        parsed = _include(entry, key, f"matrix.include[{i}]")
        if isinstance(parsed, ToolchainEntry):
            toolchains.append(parsed)
        else:
            overrides.append(parsed)

    return MatrixFileConfig(
        base=_base_env(data.get("env")),
        defaults=DefaultSteps(
            before=_steps(data.get("before_script")),
            script=_steps(data.get("script")),
        ),
        toolchains=tuple(toolchains),
        overrides=tuple(overrides),
        allow_failures=tuple(
            _predicate(e, key, f"matrix.allow_failures[{i}]")
            for i, e in enumerate(matrix_raw.get("allow_failures") or [])
        ),
        exclude=tuple(
            _predicate(e, key, f"matrix.exclude[{i}]")
            for i, e in enumerate(matrix_raw.get("exclude") or [])
        ),
        fast_finish=bool(matrix_raw.get("fast_finish", False)),
        toolchain_key=key,
    )


def load_matrix_file(path: Path) -> MatrixFileConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read matrix description {path}: {e}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Unparseable matrix description {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Matrix description {path} must be a mapping at the top level")
    return parse_matrix(data)


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Matrix loader CLI")
    parser.add_argument("--matrix", required=True, help="Path to the matrix description (.travis.yml)")
    args = parser.parse_args()

    try:
        cfg = load_matrix_file(Path(args.matrix))
        shards = cfg.expand()
        print(f"Loaded {len(shards)} shards (fast_finish={cfg.fast_finish}).")
        for s in shards:
            print(f"  {s.id}{' (allow_failure)' if s.allow_failure else ''}")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
