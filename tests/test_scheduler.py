import asyncio

import pytest

from shardrun.artifacts.schemas import ShardStatus, VerdictStatus
from shardrun.env import EnvironmentDescriptor
from shardrun.errors import ConfigurationError
from shardrun.matrix import expand
from shardrun.scheduler import RunPolicy, run_all
from shardrun.shard import DefaultSteps, OverrideEntry, Shard, ShardPredicate, ToolchainEntry


def _rust_matrix():
    """stable/beta/nightly + a rustfmt shard; nightly is allowed to fail."""
    return expand(
        EnvironmentDescriptor(),
        [ToolchainEntry("stable"), ToolchainEntry("beta"), ToolchainEntry("nightly")],
        [OverrideEntry(tag="rustfmt", allow_failure=False, steps=("check-fmt",))],
        defaults=DefaultSteps(script=("cargo test",)),
        allow_failures=[ShardPredicate(toolchain="nightly")],
    )


def _shards(*ids, allow=()):
    return [
        Shard(id=i, env=EnvironmentDescriptor(), steps=("s1", "s2"), allow_failure=i in allow) for i in ids
    ]


def _run(shards, ex, **policy):
    return asyncio.run(run_all(shards, ex, RunPolicy(**policy)))


def test_nightly_failure_is_non_blocking(scripted):
    shards = _rust_matrix()
    verdict = _run(shards, scripted(exits={"nightly:cargo test": 1}))

    assert len(verdict.shards) == 4
    nightly = verdict.report_for("nightly")
    assert nightly.status is ShardStatus.FAILED
    assert nightly.allow_failure is True
    assert verdict.status is VerdictStatus.SUCCESS


def test_rustfmt_failure_is_blocking(scripted):
    verdict = _run(_rust_matrix(), scripted(exits={"rustfmt:check-fmt": 1}))

    assert verdict.status is VerdictStatus.FAILURE
    assert verdict.report_for("rustfmt").blocking is True


def test_required_failure_wins_over_passing_allowed_shards(scripted):
    shards = _shards("a", "b", "c", allow=("b", "c"))
    verdict = _run(shards, scripted(exits={"a:s2": 1}))
    assert verdict.status is VerdictStatus.FAILURE


def test_every_allowed_shard_failing_is_still_success(scripted):
    shards = _shards("a", "b", "c", allow=("b", "c"))
    verdict = _run(shards, scripted(exits={"b": 1, "c": 1}))

    assert verdict.status is VerdictStatus.SUCCESS
    assert [r.status for r in verdict.shards] == [ShardStatus.PASSED, ShardStatus.FAILED, ShardStatus.FAILED]


def test_fast_finish_skips_pending_shards_after_blocking_failure(scripted):
    shards = _shards("one", "two", "three", "four")
    ex = scripted(exits={"one:s1": 1})
    verdict = _run(shards, ex, fast_finish=True, parallelism=1)

    assert verdict.status is VerdictStatus.FAILURE
    assert [r.shard_id for r in verdict.shards] == ["one", "two", "three", "four"]
    assert [r.status for r in verdict.shards] == [
        ShardStatus.FAILED,
        ShardStatus.SKIPPED,
        ShardStatus.SKIPPED,
        ShardStatus.SKIPPED,
    ]
    assert all(r.cancelled for r in verdict.shards[1:])
    assert ex.calls == [("one", "s1")]


def test_without_fast_finish_every_shard_runs(scripted):
    shards = _shards("one", "two", "three")
    ex = scripted(exits={"one:s1": 1})
    verdict = _run(shards, ex, parallelism=1)

    assert verdict.status is VerdictStatus.FAILURE
    assert [r.status for r in verdict.shards] == [ShardStatus.FAILED, ShardStatus.PASSED, ShardStatus.PASSED]
    assert {sid for sid, _ in ex.calls} == {"one", "two", "three"}


def test_fast_finish_stops_in_flight_required_shard_between_steps(scripted):
    shards = _shards("fails", "slow")
    ex = scripted(exits={"fails:s1": 1}, delays={"fails:s1": 0.05, "slow:s1": 0.3})
    verdict = _run(shards, ex, fast_finish=True)

    slow = verdict.report_for("slow")
    assert slow.status is ShardStatus.SKIPPED
    assert slow.cancelled is True
    assert [s.step for s in slow.steps] == ["s1"]
    assert ("slow", "s2") not in ex.calls
    assert verdict.status is VerdictStatus.FAILURE


@pytest.mark.timeout(5)
def test_fast_finish_does_not_wait_for_allowed_failures(scripted):
    shards = _shards("required", "flaky", allow=("flaky",))
    ex = scripted(delays={"flaky:s1": 30.0})
    verdict = _run(shards, ex, fast_finish=True)

    assert verdict.status is VerdictStatus.SUCCESS
    flaky = verdict.report_for("flaky")
    assert flaky.status is ShardStatus.SKIPPED
    assert flaky.allow_failure is True
    assert len(verdict.shards) == 2


@pytest.mark.timeout(5)
def test_fast_finish_can_wait_for_allowed_failures(scripted):
    shards = _shards("required", "flaky", allow=("flaky",))
    ex = scripted(delays={"flaky:s1": 0.1}, exits={"flaky:s2": 1})
    verdict = _run(shards, ex, fast_finish=True, abandon_allowed_failures=False)

    assert verdict.status is VerdictStatus.SUCCESS
    assert verdict.report_for("flaky").status is ShardStatus.FAILED


@pytest.mark.timeout(5)
def test_fast_finish_failure_does_not_wait_for_allowed_failures(scripted):
    shards = _shards("required", "flaky", allow=("flaky",))
    ex = scripted(exits={"required:s1": 1}, delays={"flaky:s1": 30.0})
    verdict = _run(shards, ex, fast_finish=True, abandon_allowed_failures=False)

    assert verdict.status is VerdictStatus.FAILURE
    assert verdict.report_for("flaky").status is ShardStatus.SKIPPED


def test_report_order_follows_shard_order_not_completion_order(scripted):
    shards = _shards("slowest", "slow", "fast")
    ex = scripted(delays={"slowest": 0.15, "slow": 0.05})
    verdict = _run(shards, ex)

    assert [r.shard_id for r in verdict.shards] == ["slowest", "slow", "fast"]
    assert ex.finished[-1][0] == "slowest"


def test_serial_and_parallel_aggregate_identically(scripted):
    def _outcome(parallelism):
        verdict = _run(
            _rust_matrix(),
            scripted(exits={"nightly:cargo test": 1, "beta:cargo test": 3}),
            parallelism=parallelism,
        )
        return verdict.status, [(r.shard_id, r.status, r.exit_statuses) for r in verdict.shards]

    assert _outcome(1) == _outcome(None) == _outcome(2)


def test_parallelism_bound_is_respected(scripted):
    running = 0
    peak = 0

    class Counting(scripted):
        async def execute(self, step, *, shard, phase, index):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            try:
                await asyncio.sleep(0.02)
                return await super().execute(step, shard=shard, phase=phase, index=index)
            finally:
                running -= 1

    _run(_shards("a", "b", "c", "d", "e"), Counting(), parallelism=2)
    assert peak == 2


def test_unexpected_executor_exception_becomes_failed_report(scripted):
    shards = _shards("a", "b")
    verdict = _run(shards, scripted(crashes={"a:s1"}))

    a = verdict.report_for("a")
    assert a.status is ShardStatus.FAILED
    assert a.steps[-1].failure == "executor"
    assert "RuntimeError" in a.error
    assert verdict.report_for("b").status is ShardStatus.PASSED
    assert verdict.status is VerdictStatus.FAILURE


def test_report_hook_sees_every_shard(scripted):
    seen = []
    shards = _shards("a", "b")
    asyncio.run(run_all(shards, scripted(), RunPolicy(), on_report=lambda r: seen.append(r.shard_id)))
    assert sorted(seen) == ["a", "b"]


def test_empty_run_is_a_configuration_error(scripted):
    with pytest.raises(ConfigurationError):
        _run([], scripted())


def test_duplicate_ids_are_rejected(scripted):
    with pytest.raises(ConfigurationError, match="Duplicate"):
        _run(_shards("a", "a"), scripted())


def test_invalid_policy():
    with pytest.raises(ConfigurationError):
        RunPolicy(parallelism=0)
    with pytest.raises(ConfigurationError):
        RunPolicy(step_timeout_s=0)
