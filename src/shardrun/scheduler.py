from __future__ import annotations

"""Scheduler / aggregator.

CONTRACT
- Inputs: ordered Shards, Executor, RunPolicy
- Outputs (required):
  - RunVerdict with exactly one ShardReport per shard, in shard order
- Invariants:
  - At most `parallelism` shards run at once (None = unlimited)
  - Verdict is FAILURE iff some shard FAILED with allow_failure=False
  - With fast_finish, the first blocking failure cancels everything that has
    not finished (pending -> SKIPPED, in-flight stop before their next step);
    the FAILURE decision is never reversed
  - With fast_finish, once every required shard is terminal the run returns
    without waiting for allow-failure shards (unless
    abandon_allowed_failures=False); unfinished ones are reported SKIPPED
- Failure:
  - An exception escaping a shard task becomes a FAILED report
    (failure="executor"); the run itself never raises for a shard
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from loguru import logger

from .artifacts.schemas import RunVerdict, ShardReport, ShardStatus, StepResult, verdict_from_reports
from .errors import ConfigurationError
from .executors.base import Executor
from .runner import run_shard, skipped_report
from .shard import Shard

ReportHook = Callable[[ShardReport], None]


@dataclass(frozen=True)
class RunPolicy:
    fast_finish: bool = False
    parallelism: int | None = None
    step_timeout_s: float | None = None
    abandon_allowed_failures: bool = True

    def __post_init__(self) -> None:
        if self.parallelism is not None and self.parallelism < 1:
            raise ConfigurationError(f"parallelism must be >= 1 (or unlimited), got {self.parallelism}")
        if self.step_timeout_s is not None and self.step_timeout_s <= 0:
            raise ConfigurationError(f"step timeout must be positive, got {self.step_timeout_s}")


def _crash_report(shard: Shard, exc: BaseException) -> ShardReport:
    return ShardReport(
        shard_id=shard.id,
        status=ShardStatus.FAILED,
        allow_failure=shard.allow_failure,
        steps=(StepResult(step="<scheduler>", exit_status=1, failure="executor", detail=repr(exc)),),
        error=f"{type(exc).__name__}: {exc}",
    )


async def run_all(
    shards: Sequence[Shard],
    executor: Executor,
    policy: RunPolicy = RunPolicy(),
    *,
    on_report: ReportHook | None = None,
) -> RunVerdict:
    if not shards:
        raise ConfigurationError("No shards to run")
    ids = [s.id for s in shards]
    if len(set(ids)) != len(ids):
        raise ConfigurationError(f"Duplicate shard ids in run: {ids}")

    abort = asyncio.Event()
    sem = asyncio.Semaphore(policy.parallelism) if policy.parallelism else None

    async def _guarded(shard: Shard) -> ShardReport:
        if abort.is_set():
            return skipped_report(shard, cancelled=True)
        logger.info(f"[{shard.id}] start")
        try:
            report = await run_shard(shard, executor, cancel=abort, timeout_s=policy.step_timeout_s)
        except Exception as exc:
            logger.error(f"[{shard.id}] crashed: {exc!r}")
            report = _crash_report(shard, exc)
        # Must be set before this task releases its semaphore slot.
        if report.blocking and policy.fast_finish:
            abort.set()
        return report

    async def _one(shard: Shard) -> ShardReport:
        if sem is None:
            return await _guarded(shard)
        # Pending shards skipped by an abort never occupy a slot.
        if abort.is_set():
            return skipped_report(shard, cancelled=True)
        async with sem:
            return await _guarded(shard)

    reports: list[ShardReport | None] = [None] * len(shards)
    tasks = {asyncio.create_task(_one(s), name=f"shard:{s.id}"): i for i, s in enumerate(shards)}
    required = [i for i, s in enumerate(shards) if not s.allow_failure]
    pending: set[asyncio.Task[ShardReport]] = set(tasks)
    blocking = False

    def _record(i: int, report: ShardReport) -> None:
        nonlocal blocking
        reports[i] = report
        logger.info(f"[{report.shard_id}] {report.status.value}" + (" (allowed)" if report.allow_failure else ""))
        if on_report is not None:
            on_report(report)
        if report.blocking and not blocking:
            blocking = True
            logger.error(f"[{report.shard_id}] blocking failure; run verdict is FAILURE")

    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for t in done:
                _record(tasks[t], t.result())
            if (
                policy.fast_finish
                and (policy.abandon_allowed_failures or blocking)
                and pending
                and all(reports[i] is not None for i in required)
            ):
                logger.info(f"fast_finish: not waiting for {len(pending)} allow-failure shard(s)")
                break
    finally:
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    for t in pending:
        i = tasks[t]
        if t.cancelled():
            _record(i, skipped_report(shards[i], cancelled=True))
        else:
            _record(i, t.result())

    return verdict_from_reports([r for r in reports if r is not None])
