import random

DEFAULTS = dict(max_attempts=5, base=0.25, cap=8.0, jitter=0.25)


def backoff(attempt: int, *, base: float = 0.25, cap: float = 8.0, jitter: float = 0.25) -> float:
    """Return delay seconds for the given *attempt* using exponential backoff with jitter."""
    delay = min(cap, base * (2 ** max(0, attempt - 1)))
    return max(0.0, delay * (1.0 - jitter + random.random() * jitter * 2))


def classify_error(exc: Exception) -> str:
    """Return a retry kind for transport exceptions."""
    name = exc.__class__.__name__.lower()
    status = getattr(getattr(exc, "response", None), "status_code", None)
    if status is not None:
        if status == 429:
            return "rate_limit"
        if status >= 500:
            return "transient"
        return "client"
    if "timeout" in name:
        return "timeout"
    if "connect" in name or "network" in name or "protocol" in name or "transport" in name:
        return "transient"
    if isinstance(exc, (ValueError, TypeError)) or "validation" in name:
        return "validation"
    return "transient"


def should_retry(kind: str) -> bool:
    """Return True if errors of *kind* are retryable."""
    return kind in {"rate_limit", "transient", "timeout"}
