import pytest
import requests

from trace_view.stream.snapshot import SnapshotLoader, history_actions
from trace_view.utils.errors import KIND_MESSAGES, TraceLoadError, make_safe_error


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


def _loader(**kwargs):
    return SnapshotLoader("http://trace.local/api/", token="secret", **kwargs)


def test_fetch_info_parses_trace(monkeypatch):
    calls = {}

    def fake_get(url, headers=None, timeout=None, verify=None):
        calls["url"] = url
        calls["headers"] = headers
        return FakeResponse(payload={"id": "t1", "driver": "local", "status": "running", "created_at": 5, "extra": 1})

    monkeypatch.setattr("requests.get", fake_get)
    info = _loader().fetch_info("t1")
    assert info.id == "t1"
    assert info.status == "running"
    assert calls["url"] == "http://trace.local/api/trace/traces/t1/info"
    assert calls["headers"]["Authorization"] == "Bearer secret"


def test_fetch_info_unwraps_data_envelope(monkeypatch):
    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResponse(payload={"data": {"id": "t1"}}))
    assert _loader().fetch_info("t1").id == "t1"


def test_missing_trace_is_load_error(monkeypatch):
    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResponse(status_code=404))
    with pytest.raises(TraceLoadError) as exc_info:
        _loader().fetch_info("nope")
    assert exc_info.value.status_code == 404
    safe = make_safe_error(exc_info.value, trace_id="nope")
    assert safe.kind == "not_found"
    assert safe.user_message == KIND_MESSAGES["not_found"]
    assert len(safe.support_id) == 8


def test_empty_trace_id_is_rejected_without_request(monkeypatch):
    def boom(*a, **k):
        raise AssertionError("no request expected")

    monkeypatch.setattr("requests.get", boom)
    with pytest.raises(TraceLoadError):
        _loader().fetch_info("  ")


def test_server_errors_are_retried(monkeypatch):
    responses = [FakeResponse(status_code=503), FakeResponse(payload={"id": "t1", "status": "completed"})]
    monkeypatch.setattr("requests.get", lambda *a, **k: responses.pop(0))
    monkeypatch.setattr("trace_view.stream.snapshot.time.sleep", lambda s: None)
    assert _loader(retries=2).fetch_info("t1").status == "completed"


def test_client_errors_are_not_retried(monkeypatch):
    calls = []

    def fake_get(*a, **k):
        calls.append(1)
        return FakeResponse(status_code=403)

    monkeypatch.setattr("requests.get", fake_get)
    with pytest.raises(TraceLoadError) as exc_info:
        _loader(retries=3).fetch_info("t1")
    assert exc_info.value.status_code == 403
    assert len(calls) == 1


def test_invalid_payloads_are_load_errors(monkeypatch):
    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResponse(bad_json=True))
    with pytest.raises(TraceLoadError):
        _loader().fetch_info("t1")
    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResponse(payload={"status": "running"}))
    with pytest.raises(TraceLoadError):
        _loader().fetch_info("t1")


def test_history_replays_events_and_skips_bad_ones(monkeypatch):
    body = {
        "id": "t1",
        "status": "completed",
        "events": [
            {"type": "init", "timestamp": 1, "data": {}},
            {"timestamp": 2},
            {"type": "node_start", "timestamp": 3, "data": {"node": {"id": "n1"}}},
        ],
    }
    monkeypatch.setattr("requests.get", lambda *a, **k: FakeResponse(payload=body))
    history = _loader().fetch_events("t1")
    actions = history_actions(history.events, "t1")
    assert [type(a).__name__ for a in actions] == ["UpdateTraceStatus", "UpsertNodes", "RecolorEdgesForTarget"]
