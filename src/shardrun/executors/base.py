from __future__ import annotations

"""Executor protocol definition.

CONTRACT
- Inputs: step text, the shard it belongs to, its phase and position
- Outputs (required):
  - StepResult (exit_status, output_path, elapsed_s, failure kind)
- Invariants:
  - The only extension point for "what a step actually does"
  - Must be safe to await concurrently from several shard tasks
  - Must not raise for a non-zero exit; that is a StepResult
- Failure:
  - Raises ExecutorError when the step cannot be run at all
"""

from typing import Protocol

from ..artifacts.schemas import StepResult
from ..shard import Phase, Shard


class Executor(Protocol):
    async def execute(
        self,
        step: str,
        *,
        shard: Shard,
        phase: Phase,
        index: int,
    ) -> StepResult: ...
