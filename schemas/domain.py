"""Core domain types — the shapes that cross layer boundaries.

Collectors produce Resource, the purity checker produces Classification,
and everything above them (wizard, controller, chat handlers) only ever
sees these dataclasses, never SDK models or raw HTML.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

UNKNOWN = "Unknown"


# ── Resources ─────────────────────────────────────────────────────

class ResourceState(str, Enum):
    PROVISIONING = "provisioning"
    AVAILABLE = "available"
    DELETED = "deleted"


@dataclass(frozen=True)
class Resource:
    """A reserved public IP as seen by the bot."""
    id: str
    address: str = ""
    display_name: str = ""
    state: ResourceState = ResourceState.AVAILABLE


# ── Classification ────────────────────────────────────────────────

_SCORE_RE = re.compile(r"^\s*(\d+)\s*%?\s*$")


def parse_score(text: str | None) -> int | None:
    """``"7%"`` → 7.  Anything non-numeric → None (treated as worst score)."""
    if not text:
        return None
    m = _SCORE_RE.match(text)
    return int(m.group(1)) if m else None


@dataclass(frozen=True)
class Classification:
    """The purity oracle's verdict on one address."""
    address: str
    score_text: str = UNKNOWN      # as displayed, e.g. "7%"
    level: str = UNKNOWN           # qualitative level, e.g. "Very clean"
    category: str = UNKNOWN        # IP type: data center / residential
    origin: str = UNKNOWN          # Native IP / Non-native IP / Broadcast IP

    @property
    def score(self) -> int | None:
        return parse_score(self.score_text)

    def short(self) -> str:
        """Compact form used in IP lists: ``7%/Data Center/Native IP``."""
        return f"{self.score_text}/{self.category}/{self.origin}"
