import re


EMAIL_PATTERN = r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}'
API_KEY_PATTERN = r'\bsk-[A-Za-z0-9_-]{8,}'
BEARER_PATTERN = r'(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+'


def redact(text: str) -> str:
    """Replace API keys, bearer tokens and emails with redaction markers."""
    result = re.sub(BEARER_PATTERN, 'Bearer [REDACTED_TOKEN]', text)
    result = re.sub(API_KEY_PATTERN, '[REDACTED_KEY]', result)
    result = re.sub(EMAIL_PATTERN, '[REDACTED_EMAIL]', result)
    return result


def truncate(text: str, limit: int = 500) -> str:
    """Clip long upstream bodies before they reach the log."""
    if len(text) <= limit:
        return text
    return text[:limit] + f"...[{len(text) - limit} more chars]"
