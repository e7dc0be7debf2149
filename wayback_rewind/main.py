# Load .env file BEFORE other imports (so env vars are available)
from dotenv import load_dotenv
load_dotenv()

import os

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from wayback_rewind.cache import ResultCache
from wayback_rewind.cache_utils import snapshot_cache_key
from wayback_rewind.cdx_fetch import DEFAULT_TIMEOUT_S, SnapshotBatch, fetch_snapshots
from wayback_rewind.clients.llm_openai import (
    ComparisonContext,
    EvolutionContext,
    generate_comparison,
    generate_evolution_insights,
)
from wayback_rewind.errors import InvalidInput, RewindError, problem
from wayback_rewind.logging_utils import log_event
from wayback_rewind.middleware import request_id_middleware
from wayback_rewind.schemas import AnalyzeRequest, InsightsRequest
from wayback_rewind.snapshots import Collapse


DEFAULT_COLLAPSE = Collapse.parse(os.environ.get("REWIND_COLLAPSE"), Collapse.DAY)
DEFAULT_SNAPSHOT_LIMIT = int(os.environ.get("REWIND_SNAPSHOT_LIMIT", "30"))
MAX_SNAPSHOT_LIMIT = 100


app = FastAPI(title="Wayback Rewind")

# One cache per app; tests swap it out via app.state
app.state.result_cache = ResultCache()

#Register middleware
app.middleware("http")(request_id_middleware)


def get_cache(request: Request) -> ResultCache:
    return request.app.state.result_cache


@app.get("/health")
def health(request: Request):
    request_id = request.state.request_id
    log_event("health_check", request_id=request_id)
    return {"status": "ok"}


@app.get("/api/snapshots")
def api_snapshots(
    request: Request,
    url: str | None = None,
    limit: int = Query(DEFAULT_SNAPSHOT_LIMIT, ge=1, le=MAX_SNAPSHOT_LIMIT),
    collapse: str | None = None,
):
    """
    List archived snapshots for a site, newest first.

    One capture per day (or per month with collapse=month). Results are
    cached per (url, collapse, limit).
    """
    request_id = request.state.request_id
    if not url or not url.strip():
        raise InvalidInput("URL parameter is required")
    try:
        granularity = Collapse.parse(collapse, DEFAULT_COLLAPSE)
    except ValueError as exc:
        raise InvalidInput(str(exc)) from exc

    cache = get_cache(request)
    key = snapshot_cache_key(url, granularity.value, limit)
    batch: SnapshotBatch | None = cache.get(key)
    cached = batch is not None

    if batch is None:
        log_event("snapshots_requested", request_id=request_id, url=url, collapse=granularity.value, limit=limit)
        batch = fetch_snapshots(url, limit, collapse=granularity, timeout_s=DEFAULT_TIMEOUT_S)
        cache.set(key, batch)
    else:
        log_event("cache_hit", kind="snapshots", request_id=request_id, key=key)

    return {
        "snapshots": [s.to_public() for s in batch.snapshots],
        "count": batch.count,
        "url": url,
        "normalizedUrl": batch.normalized_url,
        "collapse": batch.collapse.value,
        "skipped": batch.skipped,
        "cached": cached,
    }


@app.post("/api/analyze")
def api_analyze(payload: AnalyzeRequest, request: Request):
    """Structured AI comparison of two snapshots. Falls back to a canned analysis without an API key."""
    if not payload.url or not payload.date1 or not payload.date2:
        raise InvalidInput("Missing required parameters")

    ctx = ComparisonContext(
        url=payload.url,
        date1=payload.date1,
        date2=payload.date2,
        archive_url1=payload.archive_url1 or "",
        archive_url2=payload.archive_url2 or "",
    )
    result = generate_comparison(ctx, cache=get_cache(request))

    log_event("analysis_served", request_id=request.state.request_id, url=payload.url,
              source=result.source, cached=result.cached, code=result.error_code)
    return result.to_public("analysis")


@app.post("/api/insights")
def api_insights(payload: InsightsRequest, request: Request):
    """Freeform narrative about a site's whole archived history."""
    if not payload.url or payload.date_range is None:
        raise InvalidInput("Missing required parameters")
    if not payload.date_range.oldest or not payload.date_range.newest:
        raise InvalidInput("dateRange.oldest and dateRange.newest are required")

    ctx = EvolutionContext(
        url=payload.url,
        snapshot_count=payload.snapshot_count,
        oldest=payload.date_range.oldest,
        newest=payload.date_range.newest,
    )
    result = generate_evolution_insights(ctx, cache=get_cache(request))

    log_event("insights_served", request_id=request.state.request_id, url=payload.url,
              source=result.source, cached=result.cached, code=result.error_code)
    return result.to_public("insights")


@app.get("/debug/cache")
def debug_cache(request: Request):
    return get_cache(request).stats()


@app.post("/debug/cache/cleanup")
def debug_cache_cleanup(request: Request):
    removed = get_cache(request).cleanup()
    log_event("cache_cleanup", request_id=request.state.request_id, removed=removed)
    return {"removed": removed}


def _error_response(request: Request, *, status: int, code: str, error: str) -> JSONResponse:
    rid = request.state.request_id
    payload = problem(status=status, code=code, error=error, request_id=rid)
    resp = JSONResponse(status_code=status, content=payload.model_dump())
    resp.headers["X-Request-ID"] = rid
    return resp


@app.exception_handler(RewindError)
async def rewind_error_handler(request: Request, exc: RewindError):
    log_event("request_failed", request_id=request.state.request_id, code=exc.code,
              status=exc.status, message=exc.detail)
    return _error_response(request, status=exc.status, code=exc.code, error=exc.detail)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_event("http_error", request_id=request.state.request_id, status=exc.status_code, message=str(exc.detail))
    return _error_response(request, status=exc.status_code, code="http_error", error=str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return the error envelope (400) for query/body validation errors."""
    # Extract first error for a clean message
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(x) for x in first.get("loc", []))  #e.g., "query.limit"
        msg = first.get("msg", "Validation error")
        message = f"{loc}: {msg}"
    else:
        message = "Validation error"

    log_event("validation_error", request_id=request.state.request_id, message=message)
    return _error_response(request, status=400, code="validation_error", error=message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Don't leak details to the client, but do log them
    log_event("internal_error", request_id=request.state.request_id, error_type=type(exc).__name__)
    return _error_response(request, status=500, code="internal_error", error="Internal server error")
