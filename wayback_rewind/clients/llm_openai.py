from __future__ import annotations

import http.client
import json
import os
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Union

from wayback_rewind.cache import ResultCache
from wayback_rewind.cache_utils import generate_key
from wayback_rewind.error_codes import LLM_DISABLED, LLM_PARSE_FAIL
from wayback_rewind.errors import GenerationTimeout, GenerationUnavailable
from wayback_rewind.json_utils import parse_json_object
from wayback_rewind.llm_schemas.insight import InsightAnalysis
from wayback_rewind.logging_utils import log_event
from wayback_rewind.normalize import site_label
from wayback_rewind.redact import redact, truncate
from wayback_rewind.snapshots import dates_swapped, parse_loose_date


#Config
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
TIMEOUT_S = 30.0
TEMPERATURE = 0.7
MAX_TOKENS_ANALYSIS = 1000
MAX_TOKENS_INSIGHTS = 500

#Cost estimates (per 1k tokens) - for logging only
COST_PER_1K_PROMPT = 0.00015
COST_PER_1K_COMPLETION = 0.0006

SOURCE_LIVE = "live"
SOURCE_CACHE = "cache"
SOURCE_FALLBACK = "fallback"

HISTORIAN_PROMPT = (
    "You are a web design historian and digital trends analyst. "
    "Provide concise, insightful analysis of website evolution."
)

ANALYSIS_PROMPT = """You are analyzing the evolution of a website over time.

Website: {url}
Comparing two snapshots:
- Earlier version: {earlier_date}
- Later version: {later_date}

Archive URLs for reference:
- Earlier: {earlier_archive_url}
- Later: {later_archive_url}

Based on typical website evolution patterns and the time gap between these dates, provide a detailed analysis:

1. **Summary**: A 2-3 sentence overview of likely changes between these dates
2. **Key Changes**: 3-5 bullet points of the most significant likely changes
3. **Design Evolution**: Any likely visual/UX changes (layout, colors, typography)
4. **Content Shifts**: How the messaging or content likely evolved
5. **Business Insights**: What these changes might indicate about the company's strategy
6. **Sentiment**: The tone of each version (professional, playful, minimal, aggressive, corporate, startup) and the trend between them (more_corporate, more_casual, more_minimal, no_change, complete_rebrand)
7. **Actionable Insights**: 2-3 takeaways a competitor or designer could act on

Format your response as JSON with this structure:
{{
  "summary": "string",
  "keyChanges": ["string", ...],
  "designChanges": ["string", ...],
  "contentChanges": ["string", ...],
  "businessInsights": ["string", ...],
  "sentiment": {{"earlier": "string", "later": "string", "trend": "string"}},
  "actionableInsights": ["string", ...]
}}

Be specific and insightful. Consider industry context and typical patterns of website evolution.
"""

EVOLUTION_PROMPT = """Analyze the evolution of {url} based on this data:
- Number of archived snapshots: {snapshot_count}
- Date range: {oldest} to {newest}

Provide insights about:
1. Likely major redesigns based on the timeline
2. Industry trends this site probably adopted
3. What these changes tell us about the company/product evolution
4. Notable web design patterns from different eras

Keep it concise, insightful, and engaging. Use bullet points where helpful. Maximum 200 words.
"""


@dataclass(frozen=True)
class ComparisonContext:
    url: str
    date1: str
    date2: str
    archive_url1: str = ""
    archive_url2: str = ""

    def ordered(self) -> "ComparisonContext":
        """Same comparison with the earlier snapshot first."""
        if dates_swapped(self.date1, self.date2):
            return ComparisonContext(
                url=self.url,
                date1=self.date2,
                date2=self.date1,
                archive_url1=self.archive_url2,
                archive_url2=self.archive_url1,
            )
        return self


@dataclass(frozen=True)
class EvolutionContext:
    url: str
    snapshot_count: int
    oldest: str
    newest: str


@dataclass
class InsightResult:
    payload: Union[InsightAnalysis, str]
    cached: bool = False
    source: str = SOURCE_LIVE
    error_code: str | None = None

    def to_public(self, field_name: str) -> dict:
        payload = self.payload.to_public() if isinstance(self.payload, InsightAnalysis) else self.payload
        out = {field_name: payload, "cached": self.cached, "source": self.source}
        if self.error_code:
            out["code"] = self.error_code
        return out


# --- Structured comparison (/api/analyze) ---

def generate_comparison(ctx: ComparisonContext, *, cache: ResultCache) -> InsightResult:
    """
    Structured AI comparison of two snapshots.

    Contract:
    - ALWAYS returns InsightResult (never raises)
    - Earlier/later is decided by date, not argument order
    - Cache hit -> cached=True, no outbound call
    - No API key -> deterministic fallback, no outbound call
    - API error/timeout -> deterministic fallback with error_code, not cached
    - Unparseable JSON -> empty analysis with LLM_PARSE_FAIL, not cached
    """
    ctx = ctx.ordered()
    key = generate_key(ctx.url, ctx.date1, ctx.date2, namespace="analysis")

    hit = cache.get(key)
    if hit is not None:
        log_event("cache_hit", kind="analysis", key=key)
        return InsightResult(payload=hit, cached=True, source=SOURCE_CACHE)

    if not OPENAI_API_KEY:
        log_event("llm_disabled", kind="analysis", reason="OPENAI_API_KEY not set")
        return InsightResult(payload=fallback_comparison(ctx), source=SOURCE_FALLBACK, error_code=LLM_DISABLED)

    prompt = ANALYSIS_PROMPT.format(
        url=ctx.url,
        earlier_date=ctx.date1,
        later_date=ctx.date2,
        earlier_archive_url=ctx.archive_url1 or "n/a",
        later_archive_url=ctx.archive_url2 or "n/a",
    )
    try:
        content = _call_openai(
            [{"role": "user", "content": prompt}],
            json_mode=True,
            max_tokens=MAX_TOKENS_ANALYSIS,
            kind="analysis",
        )
    except GenerationUnavailable as exc:
        return InsightResult(
            payload=fallback_comparison(ctx, reason=exc.code),
            source=SOURCE_FALLBACK,
            error_code=exc.code,
        )

    analysis = _try_parse(content)
    if analysis is None:
        log_event("llm_parse_fail", kind="analysis", raw=truncate(content or "", 200))
        return InsightResult(payload=InsightAnalysis(), source=SOURCE_LIVE, error_code=LLM_PARSE_FAIL)

    cache.set(key, analysis)
    return InsightResult(payload=analysis, source=SOURCE_LIVE)


def fallback_comparison(ctx: ComparisonContext, *, reason: str = LLM_DISABLED) -> InsightAnalysis:
    """Deterministic stand-in used when live generation is off or failing."""
    earlier, later = parse_loose_date(ctx.date1), parse_loose_date(ctx.date2)
    gap = ""
    if earlier and later:
        years = round((later - earlier).days / 365)
        gap = f" ({years} year{'s' if years != 1 else ''} apart)"

    if reason == LLM_DISABLED:
        note = "AI-powered analysis requires an OpenAI API key."
    else:
        note = "AI-powered analysis is temporarily unavailable. Please try again shortly."

    return InsightAnalysis(
        summary=f"Comparing {ctx.url} between {ctx.date1} and {ctx.date2}{gap}. {note}",
        key_changes=[
            "Configure OPENAI_API_KEY environment variable for detailed AI analysis",
            "Visual comparison is available in the Compare view above",
            "Use side-by-side, slider, or overlay modes to spot differences",
        ],
        design_changes=["Visual comparison available without API key"],
        content_changes=["Check the archived snapshots directly for content differences"],
        business_insights=["Add OPENAI_API_KEY for AI-powered business insights"],
    )


# --- Freeform evolution insights (/api/insights) ---

def generate_evolution_insights(ctx: EvolutionContext, *, cache: ResultCache) -> InsightResult:
    """
    Freeform narrative about how a site evolved across its archived range.
    Same never-raise contract as generate_comparison.
    """
    oldest, newest = ctx.oldest, ctx.newest
    if dates_swapped(oldest, newest):
        oldest, newest = newest, oldest
    key = generate_key(ctx.url, oldest, newest, namespace="insights")

    hit = cache.get(key)
    if hit is not None:
        log_event("cache_hit", kind="insights", key=key)
        return InsightResult(payload=hit, cached=True, source=SOURCE_CACHE)

    if not OPENAI_API_KEY:
        log_event("llm_disabled", kind="insights", reason="OPENAI_API_KEY not set")
        return InsightResult(
            payload=fallback_evolution(ctx.url, ctx.snapshot_count, oldest, newest),
            source=SOURCE_FALLBACK,
            error_code=LLM_DISABLED,
        )

    prompt = EVOLUTION_PROMPT.format(
        url=ctx.url,
        snapshot_count=ctx.snapshot_count,
        oldest=_display(oldest),
        newest=_display(newest),
    )
    try:
        content = _call_openai(
            [
                {"role": "system", "content": HISTORIAN_PROMPT},
                {"role": "user", "content": prompt},
            ],
            json_mode=False,
            max_tokens=MAX_TOKENS_INSIGHTS,
            kind="insights",
        )
    except GenerationUnavailable as exc:
        return InsightResult(
            payload=fallback_evolution(ctx.url, ctx.snapshot_count, oldest, newest),
            source=SOURCE_FALLBACK,
            error_code=exc.code,
        )

    text = (content or "").strip()
    if not text:
        return InsightResult(payload="Unable to generate insights.", source=SOURCE_LIVE, error_code=LLM_PARSE_FAIL)

    cache.set(key, text)
    return InsightResult(payload=text, source=SOURCE_LIVE)


def fallback_evolution(url: str, snapshot_count: int, oldest: str, newest: str) -> str:
    d_old, d_new = parse_loose_date(oldest), parse_loose_date(newest)
    years = round((d_new - d_old).days / 365) if d_old and d_new else 0
    site = site_label(url) or url

    return f"""**{site} Evolution Analysis**

Based on {snapshot_count} snapshots spanning {years} year{'s' if years != 1 else ''}:

**Design Eras Detected:**
- Early snapshots likely show classic web 1.0/2.0 design patterns
- Mid-period probably features mobile-responsive redesign
- Recent versions show modern minimalist trends

**Key Observations:**
- {snapshot_count} archived versions suggest active development
- Multi-year presence indicates established brand
- Frequent updates show commitment to user experience

**Web Design Trends Reflected:**
- Transition from table-based to CSS layouts
- Adoption of responsive design (post-2012)
- Move toward flat design, then subtle gradients
- Recent focus on accessibility and performance

*Note: For detailed AI analysis, configure OpenAI API key.*"""


def _display(value: str) -> str:
    d = parse_loose_date(value)
    return d.isoformat() if d else value


# --- Transport ---

def _try_parse(raw: str | None) -> InsightAnalysis | None:
    """Attempt to parse raw LLM output into InsightAnalysis. Returns None on failure."""
    data = parse_json_object(raw)
    if data is None:
        return None
    try:
        return InsightAnalysis.model_validate(data)
    except ValueError:
        return None


def _call_openai(messages: list[dict], *, json_mode: bool, max_tokens: int, kind: str) -> str:
    """
    POST one chat completion. Returns message content ("" if the envelope has none).

    No retries: insight generation is best-effort and cheap to re-request.

    Raises:
        GenerationTimeout: deadline exceeded
        GenerationUnavailable: non-2xx or network failure
    """
    payload = {
        "model": MODEL,
        "messages": messages,
        "temperature": TEMPERATURE,
        "max_tokens": max_tokens,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    req = urllib.request.Request(
        OPENAI_URL,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": f"Bearer {OPENAI_API_KEY}",
            "Content-Type": "application/json",
        },
    )

    t0 = time.perf_counter()
    try:
        with urllib.request.urlopen(req, timeout=TIMEOUT_S) as resp:
            body = json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        error_body = _read_error_body(exc)
        log_event("llm_api_error", kind=kind, status=exc.code, body=redact(truncate(error_body)),
                  latency_ms=_elapsed_ms(t0))
        raise GenerationUnavailable(f"OpenAI API error: {exc.code}", status_code=exc.code) from exc
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            log_event("llm_timeout", kind=kind, timeout_s=TIMEOUT_S, latency_ms=_elapsed_ms(t0))
            raise GenerationTimeout() from exc
        log_event("llm_api_error", kind=kind, error=str(exc.reason), latency_ms=_elapsed_ms(t0))
        raise GenerationUnavailable(f"OpenAI unreachable: {exc.reason}") from exc
    except TimeoutError as exc:
        log_event("llm_timeout", kind=kind, timeout_s=TIMEOUT_S, latency_ms=_elapsed_ms(t0))
        raise GenerationTimeout() from exc
    except (http.client.HTTPException, OSError) as exc:
        log_event("llm_api_error", kind=kind, error=f"{type(exc).__name__}: {exc}", latency_ms=_elapsed_ms(t0))
        raise GenerationUnavailable(f"OpenAI connection failed: {exc}") from exc
    except ValueError as exc:
        log_event("llm_api_error", kind=kind, error="invalid JSON envelope", latency_ms=_elapsed_ms(t0))
        raise GenerationUnavailable("OpenAI returned an invalid envelope") from exc

    try:
        content = body["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        content = ""
    usage = {}
    if isinstance(body, dict):
        usage = body.get("usage") or {}

    _log_call(
        kind=kind,
        latency_ms=_elapsed_ms(t0),
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
    )
    return content


def _read_error_body(exc: urllib.error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except Exception:
        return ""


def _log_call(*, kind: str, latency_ms: int, prompt_tokens: int = 0, completion_tokens: int = 0):
    """Log every successful LLM call with cost + latency."""
    log_event("llm_call",
        kind=kind,
        model=MODEL,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        latency_ms=latency_ms,
        cost_usd=_compute_cost(prompt_tokens, completion_tokens),
    )


def _elapsed_ms(t0: float) -> int:
    """Calculate elapsed milliseconds since t0."""
    return int((time.perf_counter() - t0) * 1000)


def _compute_cost(prompt_tokens: int, completion_tokens: int) -> float:
    """Compute cost in USD from token counts."""
    return round(
        prompt_tokens / 1000 * COST_PER_1K_PROMPT +
        completion_tokens / 1000 * COST_PER_1K_COMPLETION,
        6
    )
