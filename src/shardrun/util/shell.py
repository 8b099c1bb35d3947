from __future__ import annotations

"""Shell command execution.

CONTRACT
- Inputs: Command string (or argv list), cwd, output path, env
- Outputs (required):
  - CmdResult(returncode, output_path, elapsed_s, output_bytes)
- Invariants:
  - Writes combined stdout/stderr to output_path
  - Each command runs in its own session (process group); cancelling the
    awaiting task kills the whole group, so subshells and pipelines started
    by a step stop with it (this is how step timeouts and abandoned shards
    stop their processes)
- Failure:
  - Returns CmdResult with exit code (does NOT raise on non-zero exit)
  - Raises ExecutorError if the process cannot be spawned at all
"""

import asyncio
import os
import signal
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from string import Template

from ..errors import ExecutorError


def which(cmd: str) -> str | None:
    for p in os.environ.get("PATH", "").split(os.pathsep):
        candidate = Path(p) / cmd
        if candidate.exists() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


def expand_env(pairs: Iterable[tuple[str, str]], base: Mapping[str, str]) -> dict[str, str]:
    """Export pairs in order on top of `base`, expanding `$VAR` / `${VAR}` references.

    `PATH=$HOME/.cargo/bin:$PATH` sees the PATH of `base` (or of an earlier pair).
    Unknown references are left as-is.
    """
    out = dict(base)
    for k, v in pairs:
        out[k] = Template(v).safe_substitute(out)
    return out


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int
    output_path: Path
    elapsed_s: float
    output_bytes: int


async def _kill(proc: asyncio.subprocess.Process) -> None:
    # The child leads its own process group (start_new_session=True).
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_cmd(
    cmd: str | list[str],
    cwd: Path,
    output_path: Path,
    env: dict[str, str] | None = None,
) -> CmdResult:
    """Run a command and store its combined output to a file.

    CONTRACT:
    - Accepts cmd as str (run through the shell) or list[str] (exec, no shell).
    - Never raises for non-zero exit; caller inspects return code.
    - Records duration and output size.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    use_shell = isinstance(cmd, str)

    start_t = time.monotonic()
    with output_path.open("wb") as out_f:
        try:
            if use_shell:
                proc = await asyncio.create_subprocess_shell(
                    cmd,
                    cwd=str(cwd),
                    env=env,
                    stdout=out_f,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                )
            else:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=str(cwd),
                    env=env,
                    stdout=out_f,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            raise ExecutorError(f"Failed to spawn {cmd!r}: {exc}") from exc

        try:
            rc = await proc.wait()
        except asyncio.CancelledError:
            await _kill(proc)
            raise

    return CmdResult(
        cmd=cmd if use_shell else " ".join(cmd),
        returncode=rc,
        output_path=output_path,
        elapsed_s=time.monotonic() - start_t,
        output_bytes=output_path.stat().st_size if output_path.exists() else 0,
    )
