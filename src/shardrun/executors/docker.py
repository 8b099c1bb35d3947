from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from ..artifacts.schemas import StepResult
from ..artifacts.store import ArtifactStore
from ..errors import ExecutorError
from ..shard import Phase, Shard
from ..util.paths import safe_filename
from ..util.shell import run_cmd, which
from .base import Executor


def _dq(value: str) -> str:
    # Double-quoted so `$VAR` still expands inside the container shell.
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("`", "\\`")
    return f'"{escaped}"'


def container_script(step: str, exports: Iterable[tuple[str, str]]) -> str:
    lines = [f"export {k}={_dq(v)}" for k, v in exports]
    lines.append(step)
    return "\n".join(lines)


def docker_argv(
    step: str, *, cwd: Path, exports: Iterable[tuple[str, str]], image: str, name: str
) -> list[str]:
    """Build the `docker run` argv for one step.

    The step itself still goes through /bin/sh inside the container; the host
    launch never uses a shell.
    """
    argv = [
        "docker", "run",
        "--rm",
        "--init",
        "--name", name,
        "-v", f"{cwd.resolve()}:/repo",
        "-w", "/repo",
    ]
    argv.extend([image, "/bin/sh", "-c", container_script(step, exports)])
    return argv


async def docker_kill(name: str) -> None:
    """Stop a step container; killing the `docker run` client alone leaves it running."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "docker", "kill", name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        logger.warning(f"Could not run docker kill {name}: {exc}")
        return
    await proc.wait()


@dataclass
class DockerExecutor(Executor):
    """Run each step in a throwaway container.

    CONTRACT
    - Inputs: step text, shard
    - Outputs:
      - StepResult, output stored like LocalShellExecutor
    - Invariants:
      - Image is `image_template` formatted with toolchain/shard/tag
        (e.g. "rust:{toolchain}")
      - Shard env is exported inside the container, in order, so
        `PATH=$HOME/.cargo/bin:$PATH` expands against the container's PATH
      - Host env is never forwarded
      - Each step container is named; cancelling the step kills the container
    - Failure:
      - ExecutorError if docker is not on PATH, cannot be spawned,
        or the image template is invalid
    """

    store: ArtifactStore
    cwd: Path = field(default_factory=Path.cwd)
    image_template: str = "{toolchain}"

    def image_for(self, shard: Shard) -> str:
        try:
            return self.image_template.format(
                toolchain=shard.toolchain or "latest", shard=shard.id, tag=shard.tag or ""
            )
        except (KeyError, IndexError) as exc:
            raise ExecutorError(f"Bad docker image template {self.image_template!r}: {exc}") from exc

    def container_name(self, shard: Shard) -> str:
        return f"shardrun-{safe_filename(shard.id, default='shard')}-{uuid.uuid4().hex[:8]}"

    def exports_for(self, shard: Shard) -> list[tuple[str, str]]:
        exports = list(shard.env.pairs)
        exports.append(("SHARDRUN_SHARD_ID", shard.id))
        exports.append(("SHARDRUN_TOOLCHAIN", shard.toolchain or ""))
        return exports

    async def execute(self, step: str, *, shard: Shard, phase: Phase, index: int) -> StepResult:
        if which("docker") is None:
            raise ExecutorError("docker not found in PATH")
        name = self.container_name(shard)
        argv = docker_argv(
            step, cwd=self.cwd, exports=self.exports_for(shard), image=self.image_for(shard), name=name
        )
        try:
            res = await run_cmd(argv, cwd=self.cwd, output_path=self.store.step_log_path(shard.id, index, phase))
        except asyncio.CancelledError:
            await docker_kill(name)
            raise
        return StepResult(
            step=step,
            phase=phase,
            exit_status=res.returncode,
            output_path=self.store.relative(res.output_path),
            elapsed_s=res.elapsed_s,
            failure="exit" if res.returncode != 0 else None,
        )
