# wayback_rewind/normalize.py
"""
URL normalization for CDX lookups.
Pure functions: no I/O, never raise.
"""
from __future__ import annotations

import re

_SCHEME_RE = re.compile(r"^https?://")
_WWW_RE = re.compile(r"^www\.")


def normalize_url(raw_url: str | None) -> str:
    """
    Canonicalize a user-supplied site URL into the form the CDX index expects:
    - Trim + lowercase
    - Strip a leading http:// or https://
    - Strip a leading www.
    - Strip one trailing slash

    Anything else (bad hosts, odd paths) passes through untouched and
    simply yields zero captures downstream.
    """
    if raw_url is None:
        return ""
    normalized = raw_url.strip().lower()
    normalized = _SCHEME_RE.sub("", normalized, count=1)
    normalized = _WWW_RE.sub("", normalized, count=1)
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def site_label(raw_url: str | None) -> str:
    """Host part of the normalized URL, e.g. 'example.com' for 'https://www.example.com/about'."""
    normalized = normalize_url(raw_url)
    return normalized.split("/", 1)[0].split("?", 1)[0]
