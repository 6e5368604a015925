"""Backoff interval — operator input grammar and uniform sampling.

Grammar (surrounding whitespace ignored)::

    200        → fixed 200 s
    200-300    → uniform in [200, 300]
    300-200    → same as 200-300

The minimum accepted value is MIN_INTERVAL_SECONDS.
"""
from __future__ import annotations

import random
import re
from dataclasses import dataclass

from schemas.errors import ValidationError

MIN_INTERVAL_SECONDS = 10

_NUMBER_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class IntervalRange:
    minimum: int
    maximum: int

    def sample(self, rng: random.Random | None = None) -> int:
        """Inclusive on both ends; constant when minimum == maximum."""
        if self.maximum <= self.minimum:
            return self.minimum
        return (rng or random).randint(self.minimum, self.maximum)

    def describe(self) -> str:
        if self.minimum == self.maximum:
            return f"{self.minimum}s"
        return f"{self.minimum}-{self.maximum}s (random)"


def _parse_number(token: str) -> int:
    token = token.strip()
    if not _NUMBER_RE.match(token):
        raise ValidationError(f"Invalid number: {token!r}")
    return int(token)


def parse_interval(text: str) -> IntervalRange:
    """Parse operator free text into an IntervalRange or raise ValidationError."""
    text = (text or "").strip()
    if "-" in text:
        parts = text.split("-")
        if len(parts) != 2:
            raise ValidationError("Format error, expected: 200 or 200-300")
        lo, hi = _parse_number(parts[0]), _parse_number(parts[1])
        if lo > hi:
            lo, hi = hi, lo
    else:
        lo = hi = _parse_number(text)

    if lo < MIN_INTERVAL_SECONDS:
        raise ValidationError(
            f"Interval {lo} is below the minimum of {MIN_INTERVAL_SECONDS} seconds"
        )
    return IntervalRange(lo, hi)
