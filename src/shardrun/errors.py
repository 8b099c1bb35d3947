from __future__ import annotations

"""Error taxonomy.

CONTRACT
- ConfigurationError: fatal, raised before any shard runs
  (duplicate shard id, empty step list, zero shards, bad matrix file)
- ExecutorError: the command-execution collaborator itself failed
  (could not spawn, docker missing, ...). Tagged distinctly in reports.
- Step failures and cancellations are NOT exceptions; they are recorded
  in StepResult / ShardReport.
"""


class ConfigurationError(ValueError):
    """Matrix description cannot be turned into a runnable set of shards."""


class ExecutorError(RuntimeError):
    """The executor could not run a step at all."""

    def __init__(self, message: str, *, exit_status: int = 127) -> None:
        super().__init__(message)
        self.exit_status = exit_status
