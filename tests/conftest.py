import asyncio
import sys
from dataclasses import dataclass, field

import pytest
from loguru import logger

from shardrun.artifacts.schemas import StepResult
from shardrun.errors import ExecutorError


@dataclass
class ScriptedExecutor:
    """Fake executor: exit statuses / delays / errors keyed by "shard:step", step text or shard id."""

    exits: dict[str, int] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)
    errors: set[str] = field(default_factory=set)
    crashes: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    finished: list[tuple[str, str]] = field(default_factory=list)

    @staticmethod
    def _lookup(table, shard_id, step, default):
        for key in (f"{shard_id}:{step}", step, shard_id):
            if key in table:
                return table[key]
        return default

    async def execute(self, step, *, shard, phase, index):
        self.calls.append((shard.id, step))
        delay = self._lookup(self.delays, shard.id, step, 0.0)
        if delay:
            await asyncio.sleep(delay)
        key = f"{shard.id}:{step}"
        if key in self.errors:
            raise ExecutorError("executor unreachable")
        if key in self.crashes:
            raise RuntimeError("unexpected bug")
        rc = self._lookup(self.exits, shard.id, step, 0)
        self.finished.append((shard.id, step))
        return StepResult(step=step, phase=phase, exit_status=rc, failure="exit" if rc else None)


@pytest.fixture
def scripted():
    return ScriptedExecutor


@pytest.fixture(autouse=True)
def _reset_loguru():
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")
