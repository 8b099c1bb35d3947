from shardrun.util.events import EventLog
from shardrun.util.redaction import Redactor


def test_emit_adds_timestamp_and_run_id(tmp_path):
    log = EventLog(tmp_path / "logs" / "events.jsonl", run_id="r1")
    log.emit(stage="expand", action="done")
    log.shard("stable", "passed", exit_statuses=[0])

    events = log.read()
    assert [e["stage"] for e in events] == ["expand", "shard"]
    assert all(e["run_id"] == "r1" and "ts_ms" in e for e in events)
    assert events[1]["shard"] == "stable"
    assert events[1]["exit_statuses"] == [0]


def test_read_missing_log(tmp_path):
    assert EventLog(tmp_path / "none.jsonl").read() == []


def test_redact_env_masks_secret_names_and_token_shapes():
    env = {
        "CODECOV_TOKEN": "abc",
        "PATH": "/bin",
        "NOTE": "token ghp_" + "a" * 24,
    }
    out = Redactor().redact_env(env)
    assert out["CODECOV_TOKEN"] == "[REDACTED]"
    assert out["PATH"] == "/bin"
    assert out["NOTE"] == "token [REDACTED]"
