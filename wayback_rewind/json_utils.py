import json
import re
from typing import Any


def safe_parse_json(raw: str | bytes | None) -> Any | None:
    """
    Parse messy upstream JSON safely.

    - Never crash
    - Never return partial garbage
    - Handle common LLM quirks (markdown fences)

    NOTE:
    - Does NOT attempt partial recovery (e.g., trailing commas, missing braces)
    - Returns None instead of guessing
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return None

    text = raw.strip()
    # Strip markdown code fences: ```json ... ``` or ``` ... ```
    fence_pattern = r'^```(?:json)?\s*\n?(.*?)\n?```$'
    match = re.match(fence_pattern, text, re.DOTALL)
    if match:
        text = match.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def parse_json_object(raw: str | None) -> dict | None:
    """Like safe_parse_json, but only accepts a top-level JSON object."""
    data = safe_parse_json(raw)
    if isinstance(data, dict):
        return data
    return None
