import logging

logger = logging.getLogger("trace_view")
logger.setLevel(logging.INFO)

if not logger.handlers:
    h = logging.StreamHandler()
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    h.setFormatter(fmt)
    logger.addHandler(h)

PREVIEW_CHARS = 256


def set_level(level: str | int) -> None:
    """Apply ``level`` (name or number) to the package logger."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)


def _preview(raw: str | bytes | None) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = (raw or "").replace("\n", " ")
    if len(text) > PREVIEW_CHARS:
        return text[:PREVIEW_CHARS] + "…"
    return text


def log_transport_error(trace_id: str | None, attempt: int, exc: Exception) -> None:
    logger.warning(
        "stream_transport_error trace_id=%s attempt=%d error=%s: %s",
        trace_id or "",
        attempt,
        exc.__class__.__name__,
        exc,
    )


def log_dropped_frame(trace_id: str | None, reason: str, raw: str | bytes | None) -> None:
    logger.warning(
        "stream_frame_dropped trace_id=%s reason=%s head=%r",
        trace_id or "",
        reason,
        _preview(raw),
    )


def log_load_error(trace_id: str | None, support_id: str, message: str) -> None:
    logger.error("trace_load_error trace_id=%s support_id=%s message=%s", trace_id or "", support_id, message)


def safe_exc(log: logging.Logger | None, msg: str, exc: BaseException, trace_id: str | None = None) -> None:
    base = f"{msg}: {exc.__class__.__name__}: {exc}"
    if trace_id:
        base = f"{base} [trace={trace_id}]"
    (log or logger).error(base)
