"""Acceptance policy — decides whether a classified IP is worth keeping.

    purity_ok = threshold is UNLIMITED or score <= threshold
    origin_ok = requirement is Any or origin == requirement.label
    match     = mode == ALL ? purity_ok and origin_ok : purity_ok or origin_ok

A missing or non-numeric score is the worst possible score: it never
satisfies a finite threshold.  Lowering the threshold can only make a
policy stricter.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from schemas.domain import Classification

# Sentinel threshold: every score (known or not) passes.
UNLIMITED: Optional[int] = None


class MatchMode(str, Enum):
    ALL = "all"
    ANY = "any"


@dataclass(frozen=True)
class OriginRequirement:
    """``Required(label)`` when *label* is set, ``Any`` otherwise."""
    label: Optional[str] = None

    @classmethod
    def any(cls) -> "OriginRequirement":
        return cls(None)

    @classmethod
    def required(cls, label: str) -> "OriginRequirement":
        if not label:
            raise ValueError("origin label must be non-empty")
        return cls(label)

    @property
    def is_any(self) -> bool:
        return self.label is None

    def describe(self) -> str:
        return "any" if self.is_any else str(self.label)


@dataclass(frozen=True)
class Policy:
    score_threshold: Optional[int]
    origin: OriginRequirement
    mode: MatchMode

    def purity_ok(self, classification: Classification) -> bool:
        if self.score_threshold is UNLIMITED:
            return True
        score = classification.score
        return score is not None and score <= self.score_threshold

    def origin_ok(self, classification: Classification) -> bool:
        return self.origin.is_any or classification.origin == self.origin.label

    def describe_threshold(self) -> str:
        if self.score_threshold is UNLIMITED:
            return "unlimited"
        return f"<= {self.score_threshold}%"


def match(classification: Classification, policy: Policy) -> bool:
    purity_ok = policy.purity_ok(classification)
    origin_ok = policy.origin_ok(classification)
    if policy.mode is MatchMode.ALL:
        return purity_ok and origin_ok
    return purity_ok or origin_ok
