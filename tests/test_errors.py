import json

import httpx

from trace_view.utils.errors import (
    FrameDecodeError,
    TraceLoadError,
    as_json,
    classify,
    make_safe_error,
)
from trace_view.utils.retry import backoff, classify_error, should_retry


class TimeoutCustomError(Exception):
    pass


def test_classify_kinds():
    assert classify(TraceLoadError("gone", status_code=404)) == "not_found"
    assert classify(TraceLoadError("denied", status_code=403)) == "api"
    assert classify(TimeoutCustomError("slow")) == "timeout"
    assert classify(FrameDecodeError("bad")) == "validation"
    assert classify(ConnectionError("refused")) == "io"
    assert classify(RuntimeError("?")) == "unknown"


def test_safe_error_uses_cause_kind():
    try:
        try:
            raise httpx.ConnectTimeout("connect timed out")
        except httpx.ConnectTimeout as exc:
            raise TraceLoadError("fetching info failed", trace_id="t1") from exc
    except TraceLoadError as err:
        safe = make_safe_error(err, trace_id="t1")
    assert safe.kind == "timeout"
    assert safe.context == {"trace_id": "t1"}
    assert len(safe.support_id) == 8
    payload = json.loads(as_json(safe))
    assert payload["tech_message"] == "fetching info failed"


def test_backoff_monotonic():
    vals = [backoff(i, jitter=0.0) for i in range(1, 5)]
    assert vals == sorted(vals)
    assert backoff(50, cap=2.0, jitter=0.0) == 2.0


def test_classify_transport_errors():
    request = httpx.Request("GET", "http://trace.local")
    assert classify_error(httpx.ReadTimeout("slow", request=request)) == "timeout"
    assert classify_error(httpx.ConnectError("refused", request=request)) == "transient"
    assert classify_error(ValueError("bad")) == "validation"


def test_should_retry_truth_table():
    cases = {
        "rate_limit": True,
        "transient": True,
        "timeout": True,
        "client": False,
        "validation": False,
        "unknown": False,
    }
    for k, v in cases.items():
        assert should_retry(k) is v
