from __future__ import annotations

"""Step runner.

CONTRACT
- Inputs: Shard, Executor, optional cancellation event, optional step timeout
- Outputs (required):
  - ShardReport (passed / failed / skipped) with one StepResult per executed step
- Invariants:
  - before_script steps run before script steps, each list in order
  - Stops at the first non-zero exit; later steps are never executed
  - Cancellation is checked before every step; a cancelled shard is
    SKIPPED (cancelled=True), never FAILED
  - Knows nothing about shells or tools; the executor does the work
- Failure:
  - Timeout -> StepResult(exit_status=124, failure="timeout")
  - ExecutorError -> StepResult(failure="executor")
"""

import asyncio

from loguru import logger

from .artifacts.schemas import ShardReport, ShardStatus, StepResult
from .errors import ExecutorError
from .executors.base import Executor
from .shard import Shard

TIMEOUT_EXIT = 124


def skipped_report(shard: Shard, *, steps: list[StepResult] | None = None, cancelled: bool = False) -> ShardReport:
    return ShardReport(
        shard_id=shard.id,
        status=ShardStatus.SKIPPED,
        allow_failure=shard.allow_failure,
        steps=tuple(steps or ()),
        cancelled=cancelled,
    )


async def run_shard(
    shard: Shard,
    executor: Executor,
    *,
    cancel: asyncio.Event | None = None,
    timeout_s: float | None = None,
) -> ShardReport:
    results: list[StepResult] = []
    for index, (phase, step) in enumerate(shard.iter_steps()):
        if cancel is not None and cancel.is_set():
            logger.info(f"[{shard.id}] cancelled before step {index} ({phase})")
            return skipped_report(shard, steps=results, cancelled=True)

        logger.debug(f"[{shard.id}] {phase}: {step}")
        try:
            res = await asyncio.wait_for(
                executor.execute(step, shard=shard, phase=phase, index=index),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            res = StepResult(
                step=step,
                phase=phase,
                exit_status=TIMEOUT_EXIT,
                failure="timeout",
                detail=f"step timed out after {timeout_s}s",
            )
        except ExecutorError as exc:
            logger.warning(f"[{shard.id}] executor failure on {phase} step {index}: {exc}")
            res = StepResult(
                step=step,
                phase=phase,
                exit_status=exc.exit_status,
                failure="executor",
                detail=str(exc),
            )
        results.append(res)

        if res.exit_status != 0:
            return ShardReport(
                shard_id=shard.id,
                status=ShardStatus.FAILED,
                allow_failure=shard.allow_failure,
                steps=tuple(results),
                error=res.detail,
            )

    return ShardReport(
        shard_id=shard.id,
        status=ShardStatus.PASSED,
        allow_failure=shard.allow_failure,
        steps=tuple(results),
    )
