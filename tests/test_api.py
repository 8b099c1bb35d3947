import json

import pytest

import shardrun
from shardrun.errors import ConfigurationError

MATRIX = """\
toolchain: [a, b]
env: GREETING=hello
script:
  - echo "$GREETING from $SHARDRUN_TOOLCHAIN"
matrix:
  include:
    - tag: flaky
      script: "exit 1"
      allow_failure: true
"""


def test_run_matrix_returns_structured_result(tmp_path):
    matrix = tmp_path / ".travis.yml"
    matrix.write_text(MATRIX)

    result = shardrun.run_matrix(matrix, run_id="api1", parallelism=2)

    assert result["status"] == "SUCCESS"
    assert result["shards"] == {"a": "passed", "b": "passed", "flaky": "failed"}
    run_dir = tmp_path.resolve() / ".shardrun" / "runs" / "api1"
    assert result["run_dir"] == str(run_dir)
    assert json.loads((run_dir / "REPORT.json").read_text())["status"] == "success"
    assert "hello from b" in (run_dir / "shards" / "b" / "00_script.log").read_text()


def test_run_matrix_fast_finish_override(tmp_path):
    matrix = tmp_path / "m.yml"
    matrix.write_text('toolchain: [a, b, c]\nscript: "test $SHARDRUN_TOOLCHAIN != a"\n')

    result = shardrun.run_matrix(
        matrix, run_id="api2", parallelism=1, fast_finish=True, artifacts_dir=tmp_path / "out"
    )

    assert result["status"] == "FAILURE"
    assert result["shards"] == {"a": "failed", "b": "skipped", "c": "skipped"}
    assert result["report_file"] == str(tmp_path / "out" / "api2" / "REPORT.json")


def test_run_matrix_malformed_raises(tmp_path):
    matrix = tmp_path / "m.yml"
    matrix.write_text("matrix: []\n")
    with pytest.raises(ConfigurationError):
        shardrun.run_matrix(matrix, run_id="api3")
