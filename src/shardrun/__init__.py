"""shardrun package.

Simple API for embedding callers:

    import shardrun

    # Run every shard of a .travis.yml-style matrix
    result = shardrun.run_matrix(".travis.yml", parallelism=2)
    result["status"]   # "SUCCESS" / "FAILURE"
"""

__version__ = "0.1.0"

import asyncio
from pathlib import Path
from typing import Optional

from .artifacts.schemas import RunVerdict, ShardReport, ShardStatus, StepResult, VerdictStatus
from .config import MatrixFileConfig, RunConfig, load_matrix_file, parse_matrix
from .env import EnvironmentDescriptor
from .errors import ConfigurationError, ExecutorError
from .matrix import expand
from .orchestrator import run_session
from .runner import run_shard
from .scheduler import RunPolicy, run_all
from .shard import DefaultSteps, OverrideEntry, Shard, ShardPredicate, ToolchainEntry
from .util.ids import new_run_id


def run_matrix(
    matrix: str | Path,
    *,
    parallelism: Optional[int] = None,
    fast_finish: Optional[bool] = None,
    step_timeout_s: Optional[float] = None,
    cwd: Optional[str | Path] = None,
    artifacts_dir: Optional[str | Path] = None,
    run_id: Optional[str] = None,
) -> dict:
    """Run a matrix description. Returns structured result.

    Args:
        matrix: Path to the matrix description
        parallelism: Max shards at once (None = unlimited)
        fast_finish: Override the file's fast_finish (None = use file)
        step_timeout_s: Optional per-step timeout
        cwd: Working directory for steps (default: the matrix file's directory)
        artifacts_dir: Artifacts root (default: <cwd>/.shardrun/runs)
        run_id: Optional custom run ID (auto-generated if not provided)

    Returns:
        dict with keys: status, run_dir, report_file, shards

    Raises:
        ConfigurationError: the matrix description is malformed
    """
    matrix_path = Path(matrix).resolve()
    work_dir = Path(cwd).resolve() if cwd else matrix_path.parent
    cfg = RunConfig(
        matrix_path=matrix_path,
        run_id=run_id or new_run_id(),
        artifacts_root=Path(artifacts_dir) if artifacts_dir else work_dir / ".shardrun" / "runs",
        cwd=work_dir,
        parallelism=parallelism,
        fast_finish=fast_finish,
        step_timeout_s=step_timeout_s,
    )
    result = asyncio.run(run_session(cfg))
    shards = {}
    if result.verdict is not None:
        shards = {r.shard_id: r.status.value for r in result.verdict.shards}
    return {
        "status": result.status,
        "run_dir": str(result.run_dir),
        "report_file": str(result.report_file) if result.report_file else None,
        "shards": shards,
    }


__all__ = [
    "run_matrix",
    "expand",
    "run_all",
    "run_shard",
    "run_session",
    "load_matrix_file",
    "parse_matrix",
    "ConfigurationError",
    "DefaultSteps",
    "EnvironmentDescriptor",
    "ExecutorError",
    "MatrixFileConfig",
    "OverrideEntry",
    "RunConfig",
    "RunPolicy",
    "RunVerdict",
    "Shard",
    "ShardPredicate",
    "ShardReport",
    "ShardStatus",
    "StepResult",
    "ToolchainEntry",
    "VerdictStatus",
]
