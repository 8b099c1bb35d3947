from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ..artifacts.schemas import StepResult
from ..artifacts.store import ArtifactStore
from ..shard import Phase, Shard
from ..util.shell import expand_env, run_cmd
from .base import Executor


def shard_environment(shard: Shard, base: dict[str, str] | None = None) -> dict[str, str]:
    env = expand_env(shard.env.pairs, os.environ if base is None else base)
    env["SHARDRUN_SHARD_ID"] = shard.id
    env["SHARDRUN_TOOLCHAIN"] = shard.toolchain or ""
    if shard.tag:
        env["SHARDRUN_TAG"] = shard.tag
    return env


@dataclass
class LocalShellExecutor(Executor):
    """Run steps through the local shell.

    CONTRACT
    - Inputs: step text, shard (env is exported on top of os.environ)
    - Outputs:
      - StepResult with combined output stored under shards/<shard>/
    - Invariants:
      - Env values are `$VAR`-expanded in declaration order
    - Failure:
      - ExecutorError if the shell cannot be spawned
    """

    store: ArtifactStore
    cwd: Path = field(default_factory=Path.cwd)

    async def execute(self, step: str, *, shard: Shard, phase: Phase, index: int) -> StepResult:
        res = await run_cmd(
            step,
            cwd=self.cwd,
            output_path=self.store.step_log_path(shard.id, index, phase),
            env=shard_environment(shard),
        )
        return StepResult(
            step=step,
            phase=phase,
            exit_status=res.returncode,
            output_path=self.store.relative(res.output_path),
            elapsed_s=res.elapsed_s,
            failure="exit" if res.returncode != 0 else None,
        )
