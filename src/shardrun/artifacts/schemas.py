from __future__ import annotations

"""Artifact schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects (RUN.json, RUN_STATUS.json, REPORT.json)
- Invariants:
  - All schemas have schema_version int field
  - StepResult / ShardReport / RunVerdict are frozen once built
  - RunVerdict.shards follows expansion order, never completion order
- Failure:
  - Raises ValidationError on schema mismatch
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ShardStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class VerdictStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


FailureKind = Literal["exit", "timeout", "executor"]


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    phase: Literal["before_script", "script"] = "script"
    exit_status: int
    output_path: str | None = None
    elapsed_s: float = 0.0
    failure: FailureKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class ShardReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: int = 1
    shard_id: str
    status: ShardStatus
    allow_failure: bool = False
    steps: tuple[StepResult, ...] = ()
    cancelled: bool = False
    error: str = ""

    @property
    def blocking(self) -> bool:
        return self.status is ShardStatus.FAILED and not self.allow_failure

    @property
    def exit_statuses(self) -> list[int]:
        return [s.exit_status for s in self.steps]


class RunVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: int = 1
    status: VerdictStatus
    shards: tuple[ShardReport, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is VerdictStatus.SUCCESS

    def report_for(self, shard_id: str) -> ShardReport:
        for r in self.shards:
            if r.shard_id == shard_id:
                return r
        raise KeyError(shard_id)


class RunStatus(BaseModel):
    schema_version: int = 1
    run_id: str
    status: str
    message: str = ""
    blocking_failures: list[str] = Field(default_factory=list)


class RunMeta(BaseModel):
    schema_version: int = 1
    run_id: str
    matrix_path: str
    cwd: str
    fast_finish: bool = False
    parallelism: int | None = None
    step_timeout_s: float | None = None
    use_docker: bool = False
    shards: list[dict[str, Any]] = Field(default_factory=list)


def verdict_from_reports(reports: list[ShardReport]) -> RunVerdict:
    failed = any(r.blocking for r in reports)
    return RunVerdict(
        status=VerdictStatus.FAILURE if failed else VerdictStatus.SUCCESS,
        shards=tuple(reports),
    )


def validate_report(data: dict[str, Any]) -> tuple[bool, RunVerdict | None, str]:
    """Validate REPORT.json against schema.

    Returns: (is_valid, parsed_verdict, error_message)
    """
    try:
        verdict = RunVerdict(**data)
        return True, verdict, ""
    except Exception as e:
        return False, None, str(e)
