from __future__ import annotations

"""Orchestrator for a matrix run.

CONTRACT
- Inputs: RunConfig (matrix path, run id, artifacts root, policy overrides)
- Outputs (required):
  - RunResult (status, run_dir, report_file, verdict)
  - Artifacts in <artifacts-dir>/<run_id>/
    - RUN.json, RUN_STATUS.json, REPORT.json, events.jsonl
    - shards/<shard>/<NN>_<phase>.log
- Invariants:
  - The matrix is fully loaded and expanded before any shard runs
  - Always writes RUN_STATUS.json
  - Catches unexpected exceptions, writes CRASH.txt, and reports CRASH status
- Failure:
  - ConfigurationError propagates (after RUN_STATUS.json records it)
"""

import traceback
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .artifacts.schemas import RunMeta, RunStatus, RunVerdict, ShardReport
from .artifacts.store import ArtifactStore
from .config import MatrixFileConfig, RunConfig, load_matrix_file
from .errors import ConfigurationError
from .executors import DockerExecutor, Executor, LocalShellExecutor
from .scheduler import RunPolicy, run_all
from .shard import Shard
from .util.events import EventLog
from .util.redaction import Redactor

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILURE = "FAILURE"
STATUS_CONFIG_ERROR = "CONFIG_ERROR"
STATUS_CRASH = "CRASH"


@dataclass(frozen=True)
class RunResult:
    status: str
    run_dir: Path
    report_file: Path | None = None
    verdict: RunVerdict | None = None


def policy_for(cfg: RunConfig, matrix: MatrixFileConfig) -> RunPolicy:
    return RunPolicy(
        fast_finish=matrix.fast_finish if cfg.fast_finish is None else cfg.fast_finish,
        parallelism=cfg.parallelism,
        step_timeout_s=cfg.step_timeout_s,
        abandon_allowed_failures=not cfg.wait_for_allowed_failures,
    )


def executor_for(cfg: RunConfig, store: ArtifactStore) -> Executor:
    if cfg.use_docker:
        return DockerExecutor(store=store, cwd=cfg.cwd, image_template=cfg.docker_image)
    return LocalShellExecutor(store=store, cwd=cfg.cwd)


def _run_meta(cfg: RunConfig, policy: RunPolicy, shards: tuple[Shard, ...]) -> RunMeta:
    redactor = Redactor()
    described = []
    for s in shards:
        d = s.describe()
        d["env"] = redactor.redact_env(s.env.as_dict())
        described.append(d)
    return RunMeta(
        run_id=cfg.run_id,
        matrix_path=str(cfg.matrix_path),
        cwd=str(cfg.cwd),
        fast_finish=policy.fast_finish,
        parallelism=policy.parallelism,
        step_timeout_s=policy.step_timeout_s,
        use_docker=cfg.use_docker,
        shards=described,
    )


async def run_session(cfg: RunConfig, *, executor: Executor | None = None) -> RunResult:
    store = ArtifactStore(cfg.run_dir())
    store.ensure()
    ev = EventLog(store.path("events.jsonl"), run_id=cfg.run_id)

    try:
        matrix = load_matrix_file(cfg.matrix_path)
        shards = matrix.expand()
        policy = policy_for(cfg, matrix)
    except ConfigurationError as exc:
        ev.emit(stage="load", action="config_error", error=str(exc))
        store.write_status(RunStatus(run_id=cfg.run_id, status=STATUS_CONFIG_ERROR, message=str(exc)))
        raise

    try:
        store.write_run_meta(_run_meta(cfg, policy, shards))
        store.write_status(
            RunStatus(run_id=cfg.run_id, status="RUNNING", message=f"{len(shards)} shards")
        )
        ev.emit(stage="expand", action="done", shards=[s.id for s in shards])
        logger.info(
            f"Run {cfg.run_id}: {len(shards)} shards, parallelism={policy.parallelism or 'unlimited'}, "
            f"fast_finish={policy.fast_finish}"
        )

        def _on_report(report: ShardReport) -> None:
            ev.shard(
                report.shard_id,
                report.status.value,
                allow_failure=report.allow_failure,
                cancelled=report.cancelled,
                exit_statuses=report.exit_statuses,
            )

        verdict = await run_all(
            shards,
            executor or executor_for(cfg, store),
            policy,
            on_report=_on_report,
        )
        report_file = store.write_report(verdict)
        blocking = [r.shard_id for r in verdict.shards if r.blocking]
        status = STATUS_SUCCESS if verdict.ok else STATUS_FAILURE
        store.write_status(
            RunStatus(
                run_id=cfg.run_id,
                status=status,
                message=f"{len(verdict.shards)} shards, {len(blocking)} blocking failure(s)",
                blocking_failures=blocking,
            )
        )
        ev.emit(stage="verdict", action="done", status=verdict.status.value)
        return RunResult(status=status, run_dir=store.run_dir, report_file=report_file, verdict=verdict)
    except Exception as exc:
        logger.exception(f"Run {cfg.run_id} crashed")
        ev.emit(stage="crash", action="exception", error=str(exc))
        store.write_text("CRASH.txt", traceback.format_exc())
        store.write_status(RunStatus(run_id=cfg.run_id, status=STATUS_CRASH, message=f"crash: {exc}"))
        return RunResult(status=STATUS_CRASH, run_dir=store.run_dir)
