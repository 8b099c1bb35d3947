from shardrun.util.paths import ensure_dir, safe_filename, shard_dirname


def test_safe_filename():
    assert safe_filename("foo") == "foo"
    assert safe_filename("foo bar") == "foo_bar"
    assert safe_filename("stable/rustfmt") == "stable_rustfmt"
    assert safe_filename("../../etc/passwd") == "etc_passwd"
    assert safe_filename("") == "item"  # Default
    assert safe_filename("", default="shard") == "shard"


def test_ensure_dir(tmp_path):
    target = tmp_path / "a" / "b"
    ensure_dir(target)
    ensure_dir(target)
    assert target.is_dir()


def test_shard_dirname_keeps_clean_ids():
    assert shard_dirname("stable") == "stable"
    assert shard_dirname("1.70.0") == "1.70.0"


def test_shard_dirname_never_collides():
    a = shard_dirname("stable/rustfmt")
    b = shard_dirname("stable_rustfmt")
    assert a != b
    assert b == "stable_rustfmt"
    assert a.startswith("stable_rustfmt-")
    assert "/" not in a
