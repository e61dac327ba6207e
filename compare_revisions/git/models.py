"""Value types shared by the git layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import NewType

# Opaque wrappers: composed into git arguments, never parsed.
Branch = NewType("Branch", str)
Hash = NewType("Hash", str)
RevSpec = NewType("RevSpec", str)


@dataclass(frozen=True)
class Revision:
    """One first-parent log entry, as reported by ``git log``."""

    hash: str
    author: str
    committed_at: datetime
    subject: str

    @property
    def short_hash(self) -> str:
        return self.hash[:7]
