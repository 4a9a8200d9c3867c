import re

_OPAQUE_TOKEN = re.compile(r"[A-Za-z0-9_-]{32,}")
_BEARER_VALUE = re.compile(r"Bearer\s+\S+", re.IGNORECASE)
_TOKEN_PAIR = re.compile(r"token[\"']?:\s*[\"'][^\"']+[\"']", re.IGNORECASE)


def redact_sensitive_info(message: str) -> str:
    """
    Scrub anything that looks like a credential from provider or error text
    before it is logged or stored on a job.
    """
    if not message:
        return message
    message = _OPAQUE_TOKEN.sub("[REDACTED]", message)
    message = _BEARER_VALUE.sub("Bearer [REDACTED]", message)
    return _TOKEN_PAIR.sub('token: "[REDACTED]"', message)


def truncate(text: str, limit: int = 500) -> str:
    # Truncate long provider payloads before they reach the logs
    if text is None or len(text) <= limit:
        return text
    return f"{text[:limit]}..."
