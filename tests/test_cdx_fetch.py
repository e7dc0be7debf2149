import http.client
import json
import time
import urllib.error
from urllib.parse import parse_qs, urlsplit

import pytest

from wayback_rewind.cdx_fetch import (
    backoff_delay,
    build_cdx_url,
    fetch_cdx,
    fetch_snapshots,
    parse_cdx_body,
)
from wayback_rewind.errors import IndexTimeout, IndexUnavailable, RateLimited
from wayback_rewind.snapshots import Collapse

HEADER = ["timestamp", "original", "mimetype", "statuscode"]


# ---------- helpers ----------

class FakeResponse:
    """Mimics the context-manager response urllib.request.urlopen returns."""

    def __init__(self, *, status: int = 200, body: bytes = b""):
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def cdx_body(*rows) -> bytes:
    return json.dumps([HEADER, *rows]).encode("utf-8")


def http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://web.archive.org/cdx/search/cdx", code, "error", {}, None)


@pytest.fixture
def sleeps(monkeypatch):
    recorded: list[float] = []
    monkeypatch.setattr(time, "sleep", lambda s: recorded.append(s))
    return recorded


# ---------- query building ----------

def test_build_cdx_url_params():
    url = build_cdx_url("example.com", limit=30, collapse=Collapse.DAY)
    params = parse_qs(urlsplit(url).query)

    assert url.startswith("https://web.archive.org/cdx/search/cdx?")
    assert params == {
        "url": ["example.com"],
        "output": ["json"],
        "limit": ["30"],
        "filter": ["statuscode:200"],
        "collapse": ["timestamp:8"],
        "fl": ["timestamp,original,mimetype,statuscode"],
    }


def test_build_cdx_url_month_collapse():
    url = build_cdx_url("example.com", limit=50, collapse=Collapse.MONTH)
    assert parse_qs(urlsplit(url).query)["collapse"] == ["timestamp:6"]


def test_fetch_snapshots_queries_normalized_url(monkeypatch, sleeps):
    seen = []

    def fake_urlopen(req, timeout):
        seen.append((req.full_url, timeout))
        return FakeResponse(body=cdx_body())

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    fetch_snapshots("HTTPS://WWW.Example.com/", 30, timeout_s=15)

    assert len(seen) == 1
    assert parse_qs(urlsplit(seen[0][0]).query)["url"] == ["example.com"]
    assert seen[0][1] == 15


# ---------- parsing ----------

def test_parse_cdx_body_skips_header_and_malformed_rows():
    body = json.dumps([
        HEADER,
        ["20200105123000", "http://example.com/", "text/html", "200"],
        ["2020010512", "http://example.com/", "text/html", "200"],     # short timestamp
        ["20201305123000", "http://example.com/", "text/html", "200"], # month 13
        ["20210105123000", "http://example.com/"],                     # wrong arity
        ["20220105123000", "http://example.com/", "text/html", "200"],
    ])

    snapshots, skipped = parse_cdx_body(body)

    assert [s.timestamp for s in snapshots] == ["20200105123000", "20220105123000"]
    assert skipped == 3


@pytest.mark.parametrize("body", ["", "   ", "[]", json.dumps([HEADER]), "<html>oops</html>", '{"a": 1}'])
def test_parse_cdx_body_empty_outcomes(body):
    assert parse_cdx_body(body) == ([], 0)


# ---------- single request ----------

def test_fetch_cdx_http_error_carries_status(monkeypatch):
    def fake_urlopen(req, timeout):
        raise http_error(503)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(IndexUnavailable) as info:
        fetch_cdx("example.com", limit=10, collapse=Collapse.DAY)
    assert info.value.status_code == 503


def test_fetch_cdx_non_2xx_status_on_response(monkeypatch):
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: FakeResponse(status=404, body=b"nope"))

    with pytest.raises(IndexUnavailable) as info:
        fetch_cdx("example.com", limit=10, collapse=Collapse.DAY)
    assert info.value.status_code == 404


def test_fetch_cdx_network_error(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.URLError("Name or service not known")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(IndexUnavailable) as info:
        fetch_cdx("example.com", limit=10, collapse=Collapse.DAY)
    assert info.value.status_code is None
    assert not isinstance(info.value, IndexTimeout)


# ---------- fetch_snapshots ----------

def test_fetch_snapshots_success_sorted_newest_first(monkeypatch, sleeps):
    body = cdx_body(
        ["20150101000000", "http://example.com/", "text/html", "200"],
        ["20230101000000", "http://example.com/", "text/html", "200"],
        ["20190101000000", "http://example.com/", "text/html", "200"],
    )
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: FakeResponse(body=body))

    batch = fetch_snapshots("example.com", 30)

    stamps = [s.timestamp for s in batch.snapshots]
    assert stamps == ["20230101000000", "20190101000000", "20150101000000"]
    assert len(set(stamps)) == len(stamps)
    assert batch.count == 3
    assert batch.attempts == 1
    assert batch.skipped == 0
    assert batch.normalized_url == "example.com"
    assert sleeps == []


def test_fetch_snapshots_no_captures_is_empty_not_error(monkeypatch):
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: FakeResponse(body=b"[]"))

    batch = fetch_snapshots("never-archived.example", 30)

    assert batch.snapshots == []
    assert batch.count == 0


def test_fetch_snapshots_caps_to_limit(monkeypatch):
    rows = [[f"20{y:02d}0101000000", "http://example.com/", "text/html", "200"] for y in range(10, 20)]
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: FakeResponse(body=cdx_body(*rows)))

    batch = fetch_snapshots("example.com", 4)

    assert [s.year for s in batch.snapshots] == [2019, 2018, 2017, 2016]


def test_fetch_snapshots_reports_skipped_rows(monkeypatch):
    body = cdx_body(
        ["20200101000000", "http://example.com/", "text/html", "200"],
        ["garbage"],
    )
    monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: FakeResponse(body=body))

    batch = fetch_snapshots("example.com", 30)

    assert batch.count == 1
    assert batch.skipped == 1


def test_fetch_snapshots_429_twice_then_200(monkeypatch, sleeps):
    """Two 429s then success: exactly 3 requests, delays growing."""
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        if calls["n"] < 3:
            raise http_error(429)
        return FakeResponse(body=cdx_body(["20200101000000", "http://example.com/", "text/html", "200"]))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    batch = fetch_snapshots("example.com", 30)

    assert calls["n"] == 3
    assert batch.attempts == 3
    assert batch.count == 1
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0]
    # 2s and 4s, each stretched by at most 25% jitter
    assert 2.0 <= sleeps[0] <= 2.5
    assert 4.0 <= sleeps[1] <= 5.0


def test_fetch_snapshots_backoff_without_jitter(monkeypatch, sleeps):
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        if calls["n"] < 4:
            raise http_error(429)
        return FakeResponse(body=cdx_body())

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    fetch_snapshots("example.com", 30, jitter=0)

    assert sleeps == [2.0, 4.0, 8.0]


def test_fetch_snapshots_429_exhausts_retries(monkeypatch, sleeps):
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        raise http_error(429)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(RateLimited) as info:
        fetch_snapshots("example.com", 30, jitter=0)

    assert calls["n"] == 4  # first try + 3 retries
    assert info.value.attempts == 4
    assert sleeps == [2.0, 4.0, 8.0]


def test_fetch_snapshots_timeout_fails_fast(monkeypatch, sleeps):
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        raise urllib.error.URLError(TimeoutError("timed out"))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(IndexTimeout):
        fetch_snapshots("example.com", 30, timeout_s=0.01)

    assert calls["n"] == 1
    assert sleeps == []


def test_fetch_snapshots_read_timeout_fails_fast(monkeypatch, sleeps):
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        raise TimeoutError("The read operation timed out")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(IndexTimeout):
        fetch_snapshots("example.com", 30)

    assert calls["n"] == 1


def test_fetch_snapshots_500_not_retried(monkeypatch, sleeps):
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        raise http_error(500)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(IndexUnavailable) as info:
        fetch_snapshots("example.com", 30)

    assert info.value.status_code == 500
    assert calls["n"] == 1
    assert sleeps == []


def test_backoff_delay_bounds():
    assert backoff_delay(0, jitter=0) == 2.0
    assert backoff_delay(2, jitter=0) == 8.0
    for _ in range(20):
        assert 4.0 <= backoff_delay(1) <= 5.0


@pytest.mark.parametrize("exc", [
    http.client.RemoteDisconnected("Remote end closed connection without response"),
    http.client.IncompleteRead(b"[[\"timestamp\""),
    ConnectionResetError(104, "Connection reset by peer"),
])
def test_fetch_snapshots_dropped_connection_is_unavailable(monkeypatch, sleeps, exc):
    calls = {"n": 0}

    def fake_urlopen(req, timeout):
        calls["n"] += 1
        raise exc

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(IndexUnavailable) as info:
        fetch_snapshots("example.com", 30)

    assert not isinstance(info.value, IndexTimeout)
    assert info.value.status_code is None
    assert calls["n"] == 1
    assert sleeps == []
