from __future__ import annotations

import http.client
import os
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from urllib.parse import urlencode

from wayback_rewind.errors import IndexTimeout, IndexUnavailable, RateLimited
from wayback_rewind.json_utils import safe_parse_json
from wayback_rewind.logging_utils import log_event
from wayback_rewind.normalize import normalize_url
from wayback_rewind.redact import truncate
from wayback_rewind.snapshots import Collapse, Snapshot, dedupe_and_sort


CDX_API = "https://web.archive.org/cdx/search/cdx"
CDX_FIELDS = "timestamp,original,mimetype,statuscode"
CDX_STATUS_FILTER = "statuscode:200"
USER_AGENT = "wayback-rewind/0.1"

DEFAULT_TIMEOUT_S = float(os.environ.get("REWIND_CDX_TIMEOUT_S", "30"))
MAX_RETRIES = 3
BACKOFF_BASE_S = 2.0
# Each backoff delay is stretched by up to this fraction so concurrent
# callers don't retry in lockstep.
BACKOFF_JITTER = 0.25


@dataclass
class SnapshotBatch:
    normalized_url: str
    collapse: Collapse
    snapshots: list[Snapshot] = field(default_factory=list)
    skipped: int = 0
    attempts: int = 0

    @property
    def count(self) -> int:
        return len(self.snapshots)


def build_cdx_url(normalized_url: str, *, limit: int, collapse: Collapse) -> str:
    params = {
        "url": normalized_url,
        "output": "json",
        "limit": str(limit),
        "filter": CDX_STATUS_FILTER,
        "collapse": collapse.directive,
        "fl": CDX_FIELDS,
    }
    return f"{CDX_API}?{urlencode(params)}"


def fetch_cdx(normalized_url: str, *, limit: int, collapse: Collapse, timeout_s: float = DEFAULT_TIMEOUT_S) -> str:
    """
    One CDX request, no retries. Returns the raw response body.

    Raises:
        IndexTimeout: the request exceeded timeout_s
        IndexUnavailable: any non-2xx (status_code set, 429 included) or network failure
    """
    req = urllib.request.Request(
        build_cdx_url(normalized_url, limit=limit, collapse=collapse),
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    )

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            status = getattr(resp, "status", None) or 200
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        raise IndexUnavailable(
            f"Wayback Machine API error: {exc.code}",
            status_code=exc.code,
        ) from exc
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise IndexTimeout() from exc
        raise IndexUnavailable(f"Wayback Machine unreachable: {exc.reason}") from exc
    except TimeoutError as exc:
        raise IndexTimeout() from exc
    except (http.client.HTTPException, OSError) as exc:
        # dropped connections and short reads surface after the request is sent
        raise IndexUnavailable(f"Wayback Machine unreachable: {exc}") from exc

    if not 200 <= status < 300:
        log_event("cdx_http_error", url=normalized_url, status=status, body=truncate(body))
        raise IndexUnavailable(f"Wayback Machine API error: {status}", status_code=status)

    return body


def parse_cdx_body(body: str) -> tuple[list[Snapshot], int]:
    """
    Parse a CDX `output=json` body into Snapshots.

    Row 0 is the header and is always skipped. Malformed rows are dropped
    and counted. Empty, header-only or non-JSON bodies mean "no captures".

    Returns:
        (snapshots in response order, number of rows skipped)
    """
    data = safe_parse_json(body)
    if data is None:
        if body and body.strip():
            log_event("cdx_unparseable", body=truncate(body, 200))
        return [], 0
    if not isinstance(data, list) or len(data) <= 1:
        return [], 0

    snapshots: list[Snapshot] = []
    skipped = 0
    for row in data[1:]:
        snap = Snapshot.from_row(row)
        if snap is None:
            skipped += 1
            continue
        snapshots.append(snap)
    return snapshots, skipped


def backoff_delay(retry_index: int, *, base_s: float = BACKOFF_BASE_S, jitter: float = BACKOFF_JITTER) -> float:
    """base * 2**i (2s, 4s, 8s by default), stretched by up to `jitter` of itself."""
    delay = base_s * (2 ** retry_index)
    if jitter > 0:
        delay += delay * random.uniform(0, jitter)
    return delay


def fetch_snapshots(
    url: str,
    limit: int = 30,
    *,
    collapse: Collapse = Collapse.DAY,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    max_retries: int = MAX_RETRIES,
    backoff_base_s: float = BACKOFF_BASE_S,
    jitter: float = BACKOFF_JITTER,
) -> SnapshotBatch:
    """
    Fetch, parse, dedupe and sort snapshots for a site URL.

    Contract:
    - 429 is retried up to max_retries times with exponential backoff, then RateLimited
    - Timeouts fail fast with IndexTimeout (a slow origin won't speed up mid-request)
    - Other non-2xx fail fast with IndexUnavailable carrying the status code
    - Zero captures is a valid, empty result
    """
    normalized = normalize_url(url)
    t0 = time.perf_counter()
    attempts = 0

    while True:
        attempts += 1
        try:
            body = fetch_cdx(normalized, limit=limit, collapse=collapse, timeout_s=timeout_s)
            break
        except IndexTimeout:
            log_event("cdx_timeout", url=normalized, attempts=attempts, timeout_s=timeout_s)
            raise
        except IndexUnavailable as exc:
            if exc.status_code != 429:
                log_event("cdx_error", url=normalized, attempts=attempts, status=exc.status_code, error=str(exc))
                raise
            if attempts > max_retries:
                log_event("cdx_rate_limited", url=normalized, attempts=attempts)
                raise RateLimited(attempts=attempts) from exc

            delay = backoff_delay(attempts - 1, base_s=backoff_base_s, jitter=jitter)
            log_event("cdx_retry", url=normalized, attempt=attempts, sleep_s=round(delay, 3))
            time.sleep(delay)

    parsed, skipped = parse_cdx_body(body)
    snapshots = dedupe_and_sort(parsed, collapse=collapse, limit=limit)

    log_event(
        "cdx_fetch",
        url=normalized,
        collapse=collapse.value,
        limit=limit,
        count=len(snapshots),
        skipped=skipped,
        attempts=attempts,
        latency_ms=int((time.perf_counter() - t0) * 1000),
    )
    return SnapshotBatch(
        normalized_url=normalized,
        collapse=collapse,
        snapshots=snapshots,
        skipped=skipped,
        attempts=attempts,
    )
