# wayback_rewind/cache.py
"""
In-process TTL cache for expensive remote calls (CDX lookups, LLM insights).

One ResultCache is constructed per app and handed to whatever needs it.
Entries leave via TTL expiry (lazily on get, or in bulk via cleanup()),
LRU eviction when max_entries is set, or process restart.
"""
from __future__ import annotations

import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from wayback_rewind.cache_utils import is_cache_expired

DEFAULT_TTL_S = float(os.environ.get("REWIND_CACHE_TTL_S", str(60 * 60 * 24)))
_max_entries_env = os.environ.get("REWIND_CACHE_MAX_ENTRIES")
DEFAULT_MAX_ENTRIES = int(_max_entries_env) if _max_entries_env else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    value: Any
    created_at: datetime
    ttl_s: float

    def expired(self, now: datetime) -> bool:
        return is_cache_expired(self.created_at, self.ttl_s, now)


class ResultCache:
    def __init__(
        self,
        *,
        default_ttl_s: float = DEFAULT_TTL_S,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.default_ttl_s = default_ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss (absent or expired)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        entry = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl_s=self.default_ttl_s if ttl_s is None else ttl_s,
        )
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)

    def cleanup(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "default_ttl_s": self.default_ttl_s,
                "keys": list(self._entries.keys()),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
