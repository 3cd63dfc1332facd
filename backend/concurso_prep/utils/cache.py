"""In-memory key/value cache with per-entry expiry.

Entries are grouped by a scope (the user id) so invalidation can target
one user's keys. Values are deep-copied on the way in and out, so callers
never share mutable state with the store.

Every delete bumps the scope's generation. A reader that captured the
generation before computing passes it to `set`; if a delete happened in
between, the value is dropped instead of stored.
"""

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Optional


def performance_key(user_id: int, variant: str) -> str:
    """Key for a performance snapshot variant (`complete`, `simulados`, `questoes`, `disciplinas`)."""
    return f"performance:{user_id}:{variant}"


def discipline_stats_key(user_id: int, disciplina: str) -> str:
    # subject names are matched exactly, as in the stats table
    return f"discipline_stats:{user_id}:{disciplina}"


class SnapshotCache:
    """Scoped TTL cache; expired entries are dropped lazily on access."""

    def __init__(self):
        self._entries: dict[str, dict[str, tuple[float, Any]]] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def generation(self, scope: Any) -> int:
        with self._lock:
            return self._generations.get(str(scope), 0)

    def get(self, scope: Any, key: str) -> Optional[Any]:
        now = time.monotonic()
        with self._lock:
            bucket = self._entries.get(str(scope))
            if not bucket or key not in bucket:
                return None
            expires_at, value = bucket[key]
            if expires_at <= now:
                bucket.pop(key, None)
                return None
            return copy.deepcopy(value)

    def set(self, scope: Any, key: str, value: Any, ttl_minutes: float, generation: Optional[int] = None) -> bool:
        """Store `value`; returns False when `generation` is stale."""
        expires_at = time.monotonic() + ttl_minutes * 60.0
        with self._lock:
            if generation is not None and generation != self._generations.get(str(scope), 0):
                return False
            self._entries.setdefault(str(scope), {})[key] = (expires_at, copy.deepcopy(value))
            return True

    def delete(self, scope: Any, key: str) -> bool:
        with self._lock:
            self._generations[str(scope)] = self._generations.get(str(scope), 0) + 1
            bucket = self._entries.get(str(scope))
            if not bucket:
                return False
            return bucket.pop(key, None) is not None
