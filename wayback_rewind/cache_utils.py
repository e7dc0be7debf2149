"""Cache key utilities for the in-process result cache.

Provides deterministic cache key computation for snapshot lists and
insight results.
"""
from __future__ import annotations

from datetime import datetime

from wayback_rewind.normalize import normalize_url


def generate_key(url: str, date1: str, date2: str, *, namespace: str = "analysis") -> str:
    """
    Compute the cache key for a two-sided comparison.

    Key = "{namespace}:{normalized_url}:{earlier}:{later}"

    IMPORTANT INVARIANTS:
    - Order-independent: the two dates are sorted before joining, so
      (A, B) and (B, A) hit the same entry
    - URL is normalized so "https://www.x.com/" and "x.com" share entries
    - Namespace keeps structured analysis and freeform insights apart

    Args:
        url: Site URL as entered by the user
        date1: One side of the comparison
        date2: The other side

    Returns:
        Cache key string
    """
    first, second = sorted([(date1 or "").strip(), (date2 or "").strip()])
    return f"{namespace}:{normalize_url(url)}:{first}:{second}"


def snapshot_cache_key(url: str, collapse: str, limit: int) -> str:
    """
    Key for a CDX snapshot list.

    Granularity is part of the key: day- and month-collapsed results for
    the same URL have different counts and must never share an entry.
    """
    return f"snapshots:{normalize_url(url)}:{collapse}:{limit}"


def is_cache_expired(created_at: datetime, ttl_seconds: float, now: datetime) -> bool:
    """
    Check if a cache entry has exceeded its TTL.
    Args:
        created_at: when the cache entry was created (timezone-aware)
        ttl_seconds: max age in seconds before expiration
        now: Current time (timezone-aware)
    Returns:
        True if expired (age > ttl), False if fresh
    """
    age_seconds = (now - created_at).total_seconds()
    return age_seconds > ttl_seconds
