"""Stable failure codes for index fetches and insight generation.

Used by: cdx_fetch, clients.llm_openai, errors, logging, API error envelopes.
"""

INVALID_INPUT = "INVALID_INPUT"

# Snapshot index codes
FETCH_TIMEOUT = "FETCH_TIMEOUT"
RATE_LIMITED = "RATE_LIMITED"
INDEX_UNAVAILABLE = "INDEX_UNAVAILABLE"

# LLM codes
LLM_PARSE_FAIL = "LLM_PARSE_FAIL"      # JSON didn't match InsightAnalysis
LLM_API_FAIL = "LLM_API_FAIL"          # Non-2xx or network error
LLM_TIMEOUT = "LLM_TIMEOUT"            # Deadline exceeded
LLM_DISABLED = "LLM_DISABLED"          # No API key configured
