"""Classification cache — address → last known purity verdict.

Display aid only: entries are overwritten on every new check and never
expire or get invalidated.  Callers serialise access through the session
lock, so the cache itself does no locking.
"""
from __future__ import annotations

from schemas.domain import Classification


class ClassificationCache:
    """In-memory, overwrite-only store keyed by IP address."""

    def __init__(self) -> None:
        self._store: dict[str, Classification] = {}
        self.hits = 0
        self.misses = 0

    def get(self, address: str) -> Classification | None:
        entry = self._store.get(address)
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    def put(self, classification: Classification) -> None:
        self._store[classification.address] = classification

    @property
    def size(self) -> int:
        return len(self._store)

    def stats(self) -> dict:
        return {
            "entries": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / max(self.hits + self.misses, 1) * 100, 1),
        }
