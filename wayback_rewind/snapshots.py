# wayback_rewind/snapshots.py
"""
Snapshot value type plus the dedupe/sort/grouping helpers built on it.
Pure functions: no I/O.
"""
from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Sequence

ARCHIVE_ROOT = "https://web.archive.org"

# Rendering-mode suffixes appended to the timestamp segment.
#   if_ : raw page without the Wayback toolbar, safe to embed in an iframe
#   im_ : image-style render
#   id_ : original bytes, no rewriting
RENDER_MODES = ("if_", "im_", "id_")
DEFAULT_RENDER_MODE = "if_"

TIMESTAMP_RE = re.compile(r"^\d{14}$")


class Collapse(str, Enum):
    """CDX collapse granularity: one capture per bucket."""

    DAY = "day"
    MONTH = "month"

    @property
    def prefix_len(self) -> int:
        return 8 if self is Collapse.DAY else 6

    @property
    def directive(self) -> str:
        return f"timestamp:{self.prefix_len}"

    @classmethod
    def parse(cls, value: "str | Collapse | None", default: "Collapse | None" = None) -> "Collapse":
        if isinstance(value, Collapse):
            return value
        if value is None or not str(value).strip():
            return default or cls.DAY
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"collapse must be one of: {', '.join(c.value for c in cls)}") from None


def timestamp_date(timestamp: str) -> date | None:
    """Calendar date from [0:4], [4:6], [6:8] of a 14-digit timestamp, or None if it isn't one."""
    if not isinstance(timestamp, str) or not TIMESTAMP_RE.match(timestamp):
        return None
    try:
        return date(int(timestamp[0:4]), int(timestamp[4:6]), int(timestamp[6:8]))
    except ValueError:
        return None


def is_valid_timestamp(timestamp: str) -> bool:
    return timestamp_date(timestamp) is not None


def format_display_date(d: date) -> str:
    """'Jan 5, 2020' style, no zero padding on the day."""
    return f"{d:%b} {d.day}, {d.year}"


def archive_url(timestamp: str, original_url: str) -> str:
    return f"{ARCHIVE_ROOT}/web/{timestamp}/{original_url}"


def preview_url(timestamp: str, original_url: str, mode: str = DEFAULT_RENDER_MODE) -> str:
    if mode not in RENDER_MODES:
        raise ValueError(f"unknown render mode: {mode}")
    return f"{ARCHIVE_ROOT}/web/{timestamp}{mode}/{original_url}"


@dataclass(frozen=True)
class Snapshot:
    timestamp: str
    original_url: str
    mime_type: str
    status_code: str

    @classmethod
    def from_row(cls, row: Sequence) -> "Snapshot | None":
        """
        Build from a CDX row in `timestamp,original,mimetype,statuscode` order.
        Returns None for anything malformed (never partially parsed).
        """
        if not isinstance(row, (list, tuple)) or len(row) != 4:
            return None
        if not all(isinstance(cell, str) for cell in row):
            return None
        timestamp, original, mimetype, statuscode = row
        if not is_valid_timestamp(timestamp) or not original:
            return None
        return cls(timestamp=timestamp, original_url=original, mime_type=mimetype, status_code=statuscode)

    @property
    def date(self) -> date:
        return timestamp_date(self.timestamp)

    @property
    def year(self) -> int:
        return int(self.timestamp[0:4])

    @property
    def month(self) -> int:
        return int(self.timestamp[4:6])

    @property
    def day(self) -> int:
        return int(self.timestamp[6:8])

    @property
    def display_date(self) -> str:
        return format_display_date(self.date)

    @property
    def archive_url(self) -> str:
        return archive_url(self.timestamp, self.original_url)

    @property
    def screenshot_url(self) -> str:
        return preview_url(self.timestamp, self.original_url)

    def bucket_key(self, collapse: Collapse) -> str:
        return self.timestamp[: collapse.prefix_len]

    def to_public(self) -> dict:
        """JSON shape the UI consumes."""
        return {
            "timestamp": self.timestamp,
            "date": self.display_date,
            "isoDate": self.date.isoformat(),
            "year": self.year,
            "month": self.month,
            "day": self.day,
            "archiveUrl": self.archive_url,
            "screenshotUrl": self.screenshot_url,
            "statusCode": self.status_code,
            "mimeType": self.mime_type,
            "originalUrl": self.original_url,
        }


def dedupe_and_sort(
    snapshots: Iterable[Snapshot],
    *,
    collapse: Collapse,
    limit: int | None = None,
    newest_first: bool = True,
) -> list[Snapshot]:
    """
    Keep the first capture per collapse bucket, sort by timestamp, cap to limit.

    The CDX query already collapses server-side; this pass only enforces
    the one-per-bucket guarantee on whatever came back.
    """
    seen: set[str] = set()
    out: list[Snapshot] = []
    for snap in snapshots:
        key = snap.bucket_key(collapse)
        if key in seen:
            continue
        seen.add(key)
        out.append(snap)

    # Fixed-width numeric strings: lexicographic == chronological
    out.sort(key=lambda s: s.timestamp, reverse=newest_first)
    if limit is not None:
        out = out[: max(limit, 0)]
    return out


def group_by_year(snapshots: Iterable[Snapshot]) -> "OrderedDict[int, list[Snapshot]]":
    """Group for timeline display, preserving input order within and across years."""
    groups: OrderedDict[int, list[Snapshot]] = OrderedDict()
    for snap in snapshots:
        groups.setdefault(snap.year, []).append(snap)
    return groups


def order_pair(a: Snapshot, b: Snapshot) -> tuple[Snapshot, Snapshot]:
    """Return (earlier, later) regardless of argument order."""
    if b.timestamp < a.timestamp:
        return b, a
    return a, b


_LOOSE_DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%m/%d/%Y", "%d %b %Y")


def parse_loose_date(value: str | None) -> date | None:
    """
    Best-effort parse of the date strings the UI sends back.

    Accepts 14-digit timestamps, YYYYMMDD, ISO dates/datetimes and
    'Jan 5, 2020' style display dates. Returns None when nothing fits.
    """
    if not value:
        return None
    text = value.strip()
    if text.isdigit():
        if len(text) == 14:
            return timestamp_date(text)
        if len(text) == 8:
            return timestamp_date(text + "000000")
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _LOOSE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def dates_swapped(date1: str, date2: str) -> bool:
    """
    True when date2 is strictly earlier than date1.

    Unparseable dates are left in the order given.
    """
    d1, d2 = parse_loose_date(date1), parse_loose_date(date2)
    if d1 is None or d2 is None:
        return False
    return d2 < d1
