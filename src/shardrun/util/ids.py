from __future__ import annotations

"""ID generation and validation.

CONTRACT
- Inputs: Run IDs, shard ids
- Outputs (required):
  - new_run_id() returns time-sortable string
  - validate_run_id() / validate_shard_id() return the validated ID or raise
- Invariants:
  - Run IDs match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}`
  - Shard ids match `[A-Za-z0-9][A-Za-z0-9_.+/-]{0,63}`
- Failure:
  - Raises ValueError (run ids) / ConfigurationError (shard ids)
"""

import datetime
import random
import re
import string

from ..errors import ConfigurationError

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
_SHARD_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.+/-]{0,63}$")


def new_run_id() -> str:
    # YYYYMMDD_HHMMSS_<rand4>
    ts = datetime.datetime.now(datetime.UTC).strftime("%Y%m%d_%H%M%S")
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    return f"{ts}_{suffix}"


def validate_run_id(run_id: str) -> str:
    if not _RUN_ID_RE.fullmatch(run_id):
        raise ValueError(
            "Invalid run id. Use 1-64 chars: letters/digits, plus '._-'. Must start with a letter "
            "or digit."
        )
    return run_id


def validate_shard_id(shard_id: str) -> str:
    if not _SHARD_ID_RE.fullmatch(shard_id):
        raise ConfigurationError(
            f"Invalid shard id {shard_id!r}. Use 1-64 chars: letters/digits, plus '_.+/-'. "
            "Must start with a letter or digit."
        )
    return shard_id


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Utilities for run IDs and shard ids")
    parser.add_argument("--new-run-id", action="store_true", help="Generate a new run ID")
    parser.add_argument("--validate-run-id", help="Validate a run ID (returns it or fails)")
    parser.add_argument("--validate-shard", help="Validate a shard id (returns it or fails)")
    args = parser.parse_args()

    try:
        if args.new_run_id:
            print(new_run_id())
        elif args.validate_run_id:
            print(validate_run_id(args.validate_run_id))
        elif args.validate_shard:
            print(validate_shard_id(args.validate_shard))
        else:
            parser.print_help()
            sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
