import asyncio
import time

import pytest

from shardrun.artifacts.schemas import ShardStatus
from shardrun.artifacts.store import ArtifactStore
from shardrun.env import EnvironmentDescriptor
from shardrun.executors.shell import LocalShellExecutor
from shardrun.scheduler import RunPolicy, run_all
from shardrun.shard import Shard


def _sleepers(n, seconds=0.5):
    return [Shard(id=f"s{i}", env=EnvironmentDescriptor(), steps=(f"sleep {seconds}",)) for i in range(n)]


def _run(tmp_path, shards, **policy):
    store = ArtifactStore(tmp_path / "run")
    store.ensure()
    ex = LocalShellExecutor(store=store, cwd=tmp_path)
    start = time.monotonic()
    verdict = asyncio.run(run_all(shards, ex, RunPolicy(**policy)))
    return verdict, time.monotonic() - start


@pytest.mark.timeout(10)
def test_parallel_shards_execution(tmp_path):
    """Shards run concurrently (total time < sum of parts)."""
    verdict, elapsed = _run(tmp_path, _sleepers(4))

    assert verdict.ok
    assert all(r.status is ShardStatus.PASSED for r in verdict.shards)
    assert elapsed < 1.5


@pytest.mark.timeout(10)
def test_serial_shards_execution(tmp_path):
    verdict, elapsed = _run(tmp_path, _sleepers(3, 0.2), parallelism=1)

    assert verdict.ok
    assert elapsed >= 0.6


@pytest.mark.timeout(10)
def test_step_timeout_kills_real_process(tmp_path):
    shards = [Shard(id="hang", env=EnvironmentDescriptor(), steps=("sleep 30",))]
    verdict, elapsed = _run(tmp_path, shards, step_timeout_s=0.3)

    report = verdict.report_for("hang")
    assert report.status is ShardStatus.FAILED
    assert report.steps[-1].failure == "timeout"
    assert report.steps[-1].exit_status == 124
    assert elapsed < 5


@pytest.mark.timeout(10)
def test_fast_finish_abandons_real_allowed_failure(tmp_path):
    shards = [
        Shard(id="quick", env=EnvironmentDescriptor(), steps=("true",)),
        Shard(id="slow", env=EnvironmentDescriptor(), steps=("sleep 30",), allow_failure=True),
    ]
    verdict, elapsed = _run(tmp_path, shards, fast_finish=True)

    assert verdict.ok
    assert verdict.report_for("slow").status is ShardStatus.SKIPPED
    assert elapsed < 5


@pytest.mark.timeout(10)
def test_step_timeout_stops_processes_the_step_spawned(tmp_path):
    shards = [
        Shard(id="spawner", env=EnvironmentDescriptor(), steps=("true; (sleep 1; echo MARK > late.txt); true",))
    ]
    verdict, _ = _run(tmp_path, shards, step_timeout_s=0.3)

    assert verdict.report_for("spawner").steps[-1].exit_status == 124
    time.sleep(1.5)
    assert not (tmp_path / "late.txt").exists()
