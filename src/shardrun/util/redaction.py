from __future__ import annotations

"""Redaction utility.

CONTRACT
- Inputs: text strings, environment mappings
- Outputs:
  - redacted text / mapping
- Invariants:
  - Replaces known token shapes (GitHub tokens, API keys) with [REDACTED]
  - Masks whole values whose variable name looks secret (TOKEN, SECRET, ...)
  - Best-effort; does not guarantee all secrets are caught
- Failure:
  - None (returns original text on no match)
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_PATTERNS = [
    re.compile(r"ghp_[A-Za-z0-9]{20,}"),
    re.compile(r"github_pat_[A-Za-z0-9_]{20,}"),
    re.compile(r"sk-[A-Za-z0-9]{20,}"),
]

_SECRET_NAME_RE = re.compile(r"(TOKEN|SECRET|PASSWORD|PASSWD|API_?KEY|CREDENTIALS?)", re.IGNORECASE)


@dataclass(frozen=True)
class Redactor:
    patterns: list[re.Pattern] = field(default_factory=lambda: list(DEFAULT_PATTERNS))

    def redact(self, text: str) -> str:
        out = text
        for pat in self.patterns:
            out = pat.sub("[REDACTED]", out)
        return out

    def redact_env(self, env: Mapping[str, str]) -> dict[str, str]:
        return {
            k: "[REDACTED]" if _SECRET_NAME_RE.search(k) else self.redact(v)
            for k, v in env.items()
        }
