from __future__ import annotations

"""Path utilities.

CONTRACT
- Inputs: strings (shard ids, filenames) or paths
- Outputs:
  - safe_filename() returns sanitized string (no path separators)
  - shard_dirname() returns a per-shard directory name
  - ensure_dir() creates directory tree
- Invariants:
  - safe_filename replaces dangerous chars `[^A-Za-z0-9_.-]`
  - shard_dirname is injective: distinct shard ids never share a directory
- Failure:
  - None expected
"""

import hashlib
import re
from pathlib import Path

_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def safe_filename(name: str, *, default: str = "item") -> str:
    cleaned = _SAFE_FILENAME_RE.sub("_", name).strip("._-")
    return cleaned or default


def shard_dirname(shard_id: str) -> str:
    cleaned = safe_filename(shard_id, default="shard")
    if cleaned == shard_id:
        return cleaned
    # "stable/rustfmt" and "stable_rustfmt" both sanitize to the same name.
    digest = hashlib.sha1(shard_id.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned}-{digest}"
